"""
ClaimFlow - Expenses Router

Authoring, reading and the approval workflow of individual expenses.
"""

import math
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import SessionUser, require_session
from app.schemas.expense import (
    ExpenseCreate,
    ExpenseListType,
    ExpenseUpdate,
    OverrideRequest,
    SubmitRequest,
    TotalOverrideRequest,
    serialize_expense,
)
from app.services.audit_service import AuditService, audit_action_label
from app.services.expense_query_service import get_expense_query_service
from app.services.expense_service import get_expense_service
from app.services.expense_state_machine import ExpenseAction
from app.services.expense_workflow_service import get_expense_workflow_service
from app.services.permission_service import get_permission_service
from app.services.rate_limiter import rate_limit
from app.utils.error_handling import AuthorizationException

router = APIRouter(prefix="/expenses", tags=["Expenses"])

write_limit = [Depends(rate_limit("expenses:write"))]


def _expense_response(expense) -> dict:
    return {"success": True, "data": serialize_expense(expense)}


# ===========================================
# AUTHORING
# ===========================================

@router.get("", summary="List my expenses")
async def list_expenses(
    list_type: ExpenseListType = Query(ExpenseListType.ALL, alias="type"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    include_deleted: bool = Query(False, alias="includeDeleted"),
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """The caller's own expenses, newest first."""
    service = get_expense_service(db)
    expenses, total = await service.list_user_expenses(
        user_id=session.user_id,
        list_type=list_type,
        search=search,
        page=page,
        limit=limit,
        include_deleted=include_deleted,
    )
    return {
        "success": True,
        "data": {
            "expenses": [serialize_expense(e, include_audit_trail=False) for e in expenses],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit) if total else 0,
            },
        },
    }


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft expense",
    dependencies=write_limit,
)
async def create_expense(
    request: ExpenseCreate,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    service = get_expense_service(db)
    expense = await service.create_expense(
        actor_id=session.user_id,
        line_items=request.line_items,
        organization_id=request.organization_id,
        manager_ids=request.manager_ids,
        total_amount=request.total_amount,
        currency=request.currency,
    )
    return _expense_response(expense)


@router.get("/visible", summary="Expenses visible in an organization context")
async def list_visible_expenses(
    organization_id: Optional[uuid.UUID] = Query(None, alias="organizationId"),
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """
    Personal expenses plus, with an organization, the organization
    expenses the caller's role allows.
    """
    role = None
    if organization_id is not None:
        role = await get_permission_service(db).get_member_role(session.user_id, organization_id)
        if role is None:
            raise AuthorizationException("Not a member of this organization")

    expenses = await get_expense_query_service(db).get_visible_expenses(
        session.user_id, organization_id, role
    )
    return {
        "success": True,
        "data": [serialize_expense(e, include_audit_trail=False) for e in expenses],
    }


@router.get("/{expense_id}", summary="Get an expense")
async def get_expense(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_service(db).get_expense_for_actor(expense_id, session.user_id)
    return _expense_response(expense)


@router.put("/{expense_id}", summary="Edit a draft expense", dependencies=write_limit)
async def update_expense(
    expense_id: uuid.UUID,
    request: ExpenseUpdate,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_service(db).update_draft(
        expense_id=expense_id,
        actor_id=session.user_id,
        manager_ids=request.manager_ids,
        line_items=request.line_items,
        total_amount=request.total_amount,
    )
    return _expense_response(expense)


@router.delete("/{expense_id}", summary="Soft delete an expense", dependencies=write_limit)
async def delete_expense(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_workflow_service(db).delete(expense_id, session.user_id)
    return _expense_response(expense)


@router.get("/{expense_id}/audit-trail", summary="Audit trail of an expense")
async def get_audit_trail(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """Entries oldest first."""
    await get_expense_service(db).get_expense_for_actor(expense_id, session.user_id)
    entries = await AuditService(db).get_audit_trail(expense_id)
    return {
        "success": True,
        "data": [{**entry.to_dict(), "label": audit_action_label(entry.action)} for entry in entries],
    }


# ===========================================
# WORKFLOW
# ===========================================

@router.post("/{expense_id}/submit", summary="Submit for pre-approval", dependencies=write_limit)
async def submit_expense(
    expense_id: uuid.UUID,
    request: Optional[SubmitRequest] = None,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """
    Draft -> Pre-Approval Pending.

    With ``reconcileTotal`` a total that differs from the line items is
    replaced by their sum instead of rejecting the submission.
    """
    expense = await get_expense_workflow_service(db).transition(
        expense_id,
        ExpenseAction.SUBMIT,
        session.user_id,
        reconcile_total=request.reconcile_total if request else False,
    )
    return _expense_response(expense)


@router.post("/{expense_id}/pre-approve", summary="Pre-approve", dependencies=write_limit)
async def pre_approve_expense(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_workflow_service(db).transition(
        expense_id, ExpenseAction.PRE_APPROVE, session.user_id
    )
    return _expense_response(expense)


@router.post(
    "/{expense_id}/submit-for-approval",
    summary="Submit for final approval",
    dependencies=write_limit,
)
async def submit_for_approval(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_workflow_service(db).transition(
        expense_id, ExpenseAction.SUBMIT_FOR_APPROVAL, session.user_id
    )
    return _expense_response(expense)


@router.post("/{expense_id}/approve", summary="Final approval", dependencies=write_limit)
async def approve_expense(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_workflow_service(db).transition(
        expense_id, ExpenseAction.APPROVE, session.user_id
    )
    return _expense_response(expense)


@router.post("/{expense_id}/reject", summary="Reject", dependencies=write_limit)
async def reject_expense(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_workflow_service(db).transition(
        expense_id, ExpenseAction.REJECT, session.user_id
    )
    return _expense_response(expense)


@router.post("/{expense_id}/restore", summary="Restore a deleted expense", dependencies=write_limit)
async def restore_expense(
    expense_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_workflow_service(db).restore(expense_id, session.user_id)
    return _expense_response(expense)


@router.post("/{expense_id}/override", summary="Admin state override", dependencies=write_limit)
async def override_expense_state(
    expense_id: uuid.UUID,
    request: OverrideRequest,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_workflow_service(db).admin_override(
        expense_id, request.state, session.user_id, request.reason
    )
    return _expense_response(expense)


@router.post(
    "/{expense_id}/total-override",
    summary="Admin total override",
    dependencies=write_limit,
)
async def override_expense_total(
    expense_id: uuid.UUID,
    request: TotalOverrideRequest,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    expense = await get_expense_workflow_service(db).override_total(
        expense_id, session.user_id, request.total_amount, request.reason
    )
    return _expense_response(expense)
