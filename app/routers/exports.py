"""
ClaimFlow - Exports Router

Self-service export of the caller's own expenses and the expenses they are
assigned to manage.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import SessionUser, require_session
from app.models.expense import ExpenseState
from app.routers.finance import file_response
from app.services.expense_export_service import ExportFormat, get_expense_export_service
from app.services.expense_query_service import get_expense_query_service
from app.utils.error_handling import NotFoundException, ValidationException

router = APIRouter(prefix="/exports", tags=["Exports"])


@router.get("", summary="Export my expenses")
async def export_my_expenses(
    export_format: ExportFormat = Query(ExportFormat.CSV, alias="format"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    user_id: Optional[uuid.UUID] = Query(None, alias="userId"),
    state: Optional[ExpenseState] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    session: SessionUser = Depends(require_session),
):
    """
    Expenses owned by or assigned to the caller, filtered by line-item
    date range, owner and state.
    """
    if start_date and end_date and start_date > end_date:
        raise ValidationException("startDate must not be after endDate", field="startDate")

    expenses = await get_expense_query_service(db).get_export_candidates(
        actor_id=session.user_id,
        state=state,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )
    if not expenses:
        raise NotFoundException("Expense", message="No expenses found matching the specified filters")

    return file_response(get_expense_export_service().export(expenses, export_format))
