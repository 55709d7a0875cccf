"""
ClaimFlow - Finance Router

Finance dashboard for organization admins: approved expenses awaiting
payout, batch reimbursement and file exports.
"""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import SessionUser, require_session
from app.models.audit import OrganizationAuditAction
from app.models.expense import ExpenseState
from app.models.organization import OrganizationRole
from app.schemas.expense import serialize_expense_with_owner
from app.schemas.requests import ExportRequest, ReimburseRequest
from app.services.audit_service import AuditService
from app.services.expense_export_service import ExportFile, ExportFormat, get_expense_export_service
from app.services.expense_query_service import get_expense_query_service, total_payout
from app.services.expense_workflow_service import get_expense_workflow_service
from app.services.permission_service import get_permission_service
from app.services.rate_limiter import rate_limit
from app.utils.error_handling import (
    AuthorizationException,
    NotFoundException,
    OrganizationNotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/finance", tags=["Finance"])


def file_response(export: ExportFile) -> Response:
    """Attachment response for a rendered export."""
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


def _parse_ids(values: List[str]) -> List[uuid.UUID]:
    ids = []
    for value in values:
        try:
            ids.append(uuid.UUID(str(value)))
        except ValueError:
            continue
    return ids


@router.get("/expenses", summary="Approved expenses awaiting payout")
async def get_finance_expenses(
    organization_id: Optional[uuid.UUID] = Query(None, alias="organizationId"),
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """
    Approved expenses of the organization with the total payout.

    Every access is recorded as a FINANCE_DASHBOARD_ACCESS event.
    """
    if organization_id is None:
        raise ValidationException("Organization ID required", field="organizationId")

    permissions = get_permission_service(db)
    if await permissions.find_organization(organization_id) is None:
        raise OrganizationNotFoundException(organization_id)
    if not await permissions.verify_permission(session.user_id, OrganizationRole.ADMIN, organization_id):
        raise AuthorizationException(
            "Finance access required",
            required_role=OrganizationRole.ADMIN.value,
        )

    expenses = await get_expense_query_service(db).get_expenses_by_status_and_organization(
        ExpenseState.APPROVED, organization_id
    )
    payout = total_payout(expenses)

    AuditService(db).log_organization_event(
        organization_id=organization_id,
        actor_id=session.user_id,
        action=OrganizationAuditAction.FINANCE_DASHBOARD_ACCESS,
        role=OrganizationRole.ADMIN.value,
        metadata={"action": "view_approved_expenses", "count": len(expenses), "totalPayout": payout},
    )
    await db.commit()

    return {
        "success": True,
        "data": {
            "expenses": [serialize_expense_with_owner(e) for e in expenses],
            "totalPayout": str(payout),
            "count": len(expenses),
        },
    }


@router.post(
    "/reimburse",
    summary="Reimburse approved expenses",
    dependencies=[Depends(rate_limit("finance:reimburse"))],
)
async def reimburse_expenses(
    request: ReimburseRequest,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """All requested expenses move to Reimbursed, or none do."""
    result = await get_expense_workflow_service(db).reimburse(request.expense_ids, session.user_id)
    return {"success": True, "data": result}


@router.post(
    "/export",
    summary="Export expenses as CSV or PDF",
    dependencies=[Depends(rate_limit("finance:export"))],
)
async def export_expenses(
    request: ExportRequest,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    if request.format not in {f.value for f in ExportFormat}:
        raise ValidationException("Invalid format. Must be csv or pdf.", field="format")
    if not request.expense_ids:
        raise ValidationException("Expense IDs array is required", field="expenseIds")

    expenses = await get_expense_query_service(db).get_expenses_by_ids(_parse_ids(request.expense_ids))
    if not expenses:
        raise NotFoundException("Expense", message="No expenses found")

    permissions = get_permission_service(db)
    for organization_id in {e.organization_id for e in expenses if not e.is_personal}:
        if not await permissions.verify_permission(session.user_id, OrganizationRole.ADMIN, organization_id):
            raise AuthorizationException(
                "Not authorized to export expenses",
                required_role=OrganizationRole.ADMIN.value,
            )
    if any(e.is_personal and e.user_id != session.user_id for e in expenses):
        raise AuthorizationException("Not authorized to export expenses")

    export = get_expense_export_service().export(expenses, ExportFormat(request.format))

    audit = AuditService(db)
    for organization_id in {e.organization_id for e in expenses if not e.is_personal}:
        audit.log_organization_event(
            organization_id=organization_id,
            actor_id=session.user_id,
            action=OrganizationAuditAction.FINANCE_EXPORT,
            role=OrganizationRole.ADMIN.value,
            metadata={"format": request.format, "count": len(expenses)},
        )
    await db.commit()

    logger.info(f"Exported {len(expenses)} expenses as {request.format} for {session.user_id}")
    return file_response(export)
