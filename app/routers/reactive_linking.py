"""
ClaimFlow - Reactive Linking Router

Lets a new organization member move their personal drafts into the
organization, or dismiss the prompt.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import SessionUser, require_session
from app.schemas.requests import LinkingAction, ReactiveLinkingRequest
from app.services.rate_limiter import rate_limit
from app.services.reactive_linking_service import get_reactive_linking_service
from app.utils.error_handling import ValidationException

router = APIRouter(prefix="/reactive-linking", tags=["Reactive Linking"])


@router.get("", summary="Pending linking prompt")
async def get_notification(
    organization_id: Optional[uuid.UUID] = Query(None, alias="organizationId"),
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    if organization_id is None:
        raise ValidationException("Organization ID required", field="organizationId")

    notification = await get_reactive_linking_service(db).find_pending(session.user_id, organization_id)
    return {"notification": notification.to_dict() if notification else None}


@router.post(
    "",
    summary="Link or dismiss",
    dependencies=[Depends(rate_limit("reactive-linking"))],
)
async def resolve_notification(
    request: ReactiveLinkingRequest,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """
    ``link`` moves every personal draft into the organization in one
    transaction. ``dismiss`` only resolves the prompt; dismissing twice
    is harmless.
    """
    if not request.action or request.organization_id is None:
        raise ValidationException("Missing required fields")
    if request.action not in {a.value for a in LinkingAction}:
        raise ValidationException("Invalid action", field="action")
    if request.notification_id is None:
        raise ValidationException("Notification ID required", field="notificationId")

    service = get_reactive_linking_service(db)
    if request.action == LinkingAction.LINK.value:
        linked_count = await service.link(session.user_id, request.organization_id, request.notification_id)
        return {"success": True, "linkedCount": linked_count}

    await service.dismiss(request.notification_id, session.user_id)
    return {"success": True}
