"""
ClaimFlow - Organizations Router

Manager directory and membership management.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import SessionUser, require_session
from app.models.organization import OrganizationRole
from app.schemas.requests import MemberCreate
from app.services.organization_service import get_organization_service
from app.services.permission_service import get_permission_service
from app.services.rate_limiter import rate_limit
from app.utils.error_handling import (
    AuthorizationException,
    OrganizationNotFoundException,
    ValidationException,
)

router = APIRouter(prefix="/organizations", tags=["Organizations"])


@router.get("/managers", summary="Possible managers for an expense")
async def list_managers(
    organization_id: Optional[uuid.UUID] = Query(None, alias="organizationId"),
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """Admins and owners of the organization, excluding the caller."""
    if organization_id is None:
        raise ValidationException("Organization ID required", field="organizationId")
    if await get_permission_service(db).find_member(session.user_id, organization_id) is None:
        raise AuthorizationException("Not a member of this organization")

    return await get_organization_service(db).get_managers(organization_id, exclude_user_id=session.user_id)


@router.post(
    "/members",
    status_code=status.HTTP_201_CREATED,
    summary="Add a member",
    dependencies=[Depends(rate_limit("organizations:members"))],
)
async def add_member(
    request: MemberCreate,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """
    Add a user to the organization (admin only). Owners are the only
    ones who can grant the owner role.
    """
    permissions = get_permission_service(db)
    if await permissions.find_organization(request.organization_id) is None:
        raise OrganizationNotFoundException(request.organization_id)

    required = OrganizationRole.OWNER if request.role == OrganizationRole.OWNER else OrganizationRole.ADMIN
    if not await permissions.verify_permission(session.user_id, required, request.organization_id):
        raise AuthorizationException(
            "Not authorized to add members",
            required_role=required.value,
        )

    member, notification = await get_organization_service(db).add_member(
        organization_id=request.organization_id,
        user_id=request.user_id,
        role=request.role,
        added_by_id=session.user_id,
    )
    return {
        "success": True,
        "data": {
            "member": {
                "id": str(member.id),
                "organizationId": str(member.organization_id),
                "userId": str(member.user_id),
                "role": member.role.value,
            },
            "notification": notification.to_dict() if notification else None,
        },
    }
