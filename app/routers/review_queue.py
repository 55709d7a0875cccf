"""
ClaimFlow - Review Queue Router

Pending expenses awaiting the caller's decision, and the decision endpoint
that routes approve / pre-approve / reject through the workflow.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import SessionUser, require_session
from app.models.expense import ExpenseState
from app.schemas.expense import DateRange, serialize_expense_with_owner
from app.schemas.requests import ReviewDecision
from app.services.expense_query_service import get_expense_query_service
from app.services.expense_state_machine import ExpenseAction
from app.services.expense_workflow_service import get_expense_workflow_service
from app.services.permission_service import get_permission_service
from app.services.rate_limiter import rate_limit
from app.utils.error_handling import AuthorizationException, ValidationException

router = APIRouter(prefix="/review-queue", tags=["Review Queue"])

REVIEW_ACTIONS = {
    "pre-approve": ExpenseAction.PRE_APPROVE,
    "approve": ExpenseAction.APPROVE,
    "reject": ExpenseAction.REJECT,
}


def _parse_filter(value: Optional[str], parser, field: str):
    if value is None or value == "all":
        return None
    try:
        return parser(value)
    except ValueError:
        raise ValidationException(f"Invalid {field} filter", field=field)


@router.get("", summary="Expenses awaiting my review")
async def get_review_queue(
    organization_id: Optional[uuid.UUID] = Query(None, alias="organizationId"),
    status_filter: Optional[str] = Query(None, alias="status"),
    employee: Optional[str] = None,
    date_range: DateRange = Query(DateRange.ALL, alias="dateRange"),
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    if organization_id is not None:
        member = await get_permission_service(db).find_member(session.user_id, organization_id)
        if member is None:
            raise AuthorizationException("Not a member of this organization")

    expenses = await get_expense_query_service(db).get_review_queue(
        actor_id=session.user_id,
        organization_id=organization_id,
        state=_parse_filter(status_filter, ExpenseState, "status"),
        employee_id=_parse_filter(employee, uuid.UUID, "employee"),
        date_range=date_range,
    )
    return {"success": True, "data": [serialize_expense_with_owner(e) for e in expenses]}


@router.post(
    "",
    summary="Decide on an expense",
    dependencies=[Depends(rate_limit("review:decide"))],
)
async def decide(
    request: ReviewDecision,
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    if request.expense_id is None or not request.action:
        raise ValidationException("Missing required fields")
    action = REVIEW_ACTIONS.get(request.action)
    if action is None:
        raise ValidationException("Invalid action", field="action")

    expense = await get_expense_workflow_service(db).transition(
        request.expense_id,
        action,
        session.user_id,
        comment=request.comment,
    )
    return {
        "success": True,
        "data": {"expenseId": str(expense.id), "newStatus": expense.state.value},
    }
