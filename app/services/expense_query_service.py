"""
ClaimFlow - Expense Query Service

Read-only queries for finance, reviewers and the expense overview. Access
checks happen at the API boundary before these run.
"""

import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.expense import PENDING_STATES, Expense, ExpenseState
from app.models.organization import OrganizationMember, OrganizationRole
from app.schemas.expense import DateRange
from app.utils.permissions import is_role_at_least


def total_payout(expenses: Iterable[Expense]) -> Decimal:
    """Sum of ``total_amount`` over the given expenses."""
    return sum((expense.total_amount for expense in expenses), Decimal("0.00"))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def date_range_start(date_range: DateRange, now: Optional[datetime] = None) -> Optional[datetime]:
    """Earliest creation time included by a review-queue date filter."""
    now = _as_utc(now or datetime.now(timezone.utc))
    start_of_today = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    if date_range == DateRange.TODAY:
        return start_of_today
    if date_range == DateRange.WEEK:
        return start_of_today - timedelta(days=7)
    if date_range == DateRange.MONTH:
        return start_of_today.replace(day=1)
    return None


class ExpenseQueryService:
    """Service for finance, review and visibility queries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fetch(self, query) -> List[Expense]:
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def get_expenses_by_status_and_organization(
        self,
        state: ExpenseState,
        organization_id: uuid.UUID,
    ) -> List[Expense]:
        """Non-deleted expenses of one organization in one state, newest first."""
        return await self._fetch(
            select(Expense)
            .where(
                Expense.organization_id == organization_id,
                Expense.state == state,
            )
            .order_by(Expense.created_at.desc())
        )

    async def get_expenses_by_ids(self, expense_ids: Sequence[uuid.UUID]) -> List[Expense]:
        """Existing, non-deleted expenses among ``expense_ids``."""
        if not expense_ids:
            return []
        return await self._fetch(
            select(Expense)
            .where(
                Expense.id.in_(list(expense_ids)),
                Expense.state != ExpenseState.DELETED,
            )
            .order_by(Expense.created_at.desc())
        )

    async def get_personal_drafts(self, user_id: uuid.UUID) -> List[Expense]:
        """The user's personal (organization-less) drafts."""
        return await self._fetch(
            select(Expense)
            .where(
                Expense.user_id == user_id,
                Expense.organization_id.is_(None),
                Expense.state == ExpenseState.DRAFT,
            )
            .order_by(Expense.created_at.desc())
        )

    async def get_visible_expenses(
        self,
        user_id: uuid.UUID,
        organization_id: Optional[uuid.UUID] = None,
        role: Optional[OrganizationRole] = None,
    ) -> List[Expense]:
        """
        Expenses the user can see in an organization context.

        Admins and owners see their personal expenses plus every expense of
        the organization. Members see their personal expenses plus their own
        organization expenses. Without an organization only personal
        expenses are returned.
        """
        personal = and_(Expense.user_id == user_id, Expense.organization_id.is_(None))

        if organization_id is None or role is None:
            condition = personal
        elif is_role_at_least(role, OrganizationRole.ADMIN):
            condition = or_(personal, Expense.organization_id == organization_id)
        else:
            condition = or_(
                personal,
                and_(Expense.user_id == user_id, Expense.organization_id == organization_id),
            )

        return await self._fetch(
            select(Expense)
            .where(condition, Expense.state != ExpenseState.DELETED)
            .order_by(Expense.created_at.desc())
        )

    async def get_review_queue(
        self,
        actor_id: uuid.UUID,
        organization_id: Optional[uuid.UUID] = None,
        state: Optional[ExpenseState] = None,
        employee_id: Optional[uuid.UUID] = None,
        date_range: DateRange = DateRange.ALL,
    ) -> List[Expense]:
        """
        Pending expenses the actor may act on.

        - Pre-Approval Pending: the actor is an assigned manager, or an admin
        - Approval Pending: the actor is an admin

        The actor's own expenses are never included.
        """
        memberships_query = select(OrganizationMember).where(OrganizationMember.user_id == actor_id)
        if organization_id is not None:
            memberships_query = memberships_query.where(
                OrganizationMember.organization_id == organization_id
            )
        memberships = (await self.db.execute(memberships_query)).scalars().all()
        roles = {member.organization_id: member.role for member in memberships}
        if not roles:
            return []

        if state is not None and state not in PENDING_STATES:
            return []
        states = [state] if state is not None else list(PENDING_STATES)

        query = select(Expense).where(
            Expense.organization_id.in_(list(roles.keys())),
            Expense.state.in_(states),
            Expense.user_id != actor_id,
        )
        if employee_id is not None:
            query = query.where(Expense.user_id == employee_id)

        candidates = await self._fetch(query.order_by(Expense.created_at.desc()))

        since = date_range_start(date_range)
        queue = []
        for expense in candidates:
            role = roles.get(expense.organization_id)
            is_admin = is_role_at_least(role, OrganizationRole.ADMIN)
            if expense.state == ExpenseState.PRE_APPROVAL_PENDING:
                allowed = is_admin or expense.is_managed_by(actor_id)
            else:
                allowed = is_admin
            if not allowed:
                continue
            if since is not None and _as_utc(expense.created_at) < since:
                continue
            queue.append(expense)
        return queue

    async def get_export_candidates(
        self,
        actor_id: uuid.UUID,
        state: Optional[ExpenseState] = None,
        user_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Expense]:
        """
        Expenses the actor owns or manages, filtered for an export.

        Dates filter on line-item dates: an expense is included when any of
        its line items falls inside the range.
        """
        organization_ids = (
            await self.db.execute(
                select(OrganizationMember.organization_id).where(OrganizationMember.user_id == actor_id)
            )
        ).scalars().all()

        query = select(Expense).where(
            Expense.state != ExpenseState.DELETED,
            or_(Expense.user_id == actor_id, Expense.organization_id.in_(list(organization_ids))),
        )
        if state is not None:
            query = query.where(Expense.state == state)
        if user_id is not None:
            query = query.where(Expense.user_id == user_id)

        expenses = await self._fetch(query.order_by(Expense.created_at.desc()))

        selected = []
        for expense in expenses:
            if expense.user_id != actor_id and not expense.is_managed_by(actor_id):
                continue
            if start_date or end_date:
                in_range = any(
                    (start_date is None or item.expense_date >= start_date)
                    and (end_date is None or item.expense_date <= end_date)
                    for item in expense.line_items
                )
                if not in_range:
                    continue
            selected.append(expense)
        return selected


def get_expense_query_service(db: AsyncSession) -> ExpenseQueryService:
    """Factory function to create ExpenseQueryService instance."""
    return ExpenseQueryService(db)
