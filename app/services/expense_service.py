"""
ClaimFlow - Expense Service

Authoring side of expenses: create, read, list and edit drafts. Workflow
state changes live in ExpenseWorkflowService.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.audit import AuditAction
from app.models.expense import Expense, ExpenseLineItem, ExpenseState
from app.models.organization import OrganizationRole
from app.schemas.expense import ExpenseListType, LineItemInput
from app.services.audit_service import AuditService, FieldChange
from app.services.expense_workflow_service import commit_or_conflict
from app.services.permission_service import PermissionService
from app.utils.error_handling import (
    AuthorizationException,
    ExpenseNotFoundException,
    OrganizationNotFoundException,
    ValidationException,
)
from app.utils.permissions import PERSONAL_ROLE, is_role_at_least

logger = logging.getLogger(__name__)


def _build_line_items(items: Sequence[LineItemInput]) -> List[ExpenseLineItem]:
    return [
        ExpenseLineItem(
            position=position,
            amount=item.amount,
            expense_date=item.expense_date,
            description=item.description,
            category=item.category,
            attachments=list(item.attachments),
        )
        for position, item in enumerate(items)
    ]


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"))


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _line_items_snapshot(items: Sequence[Any]) -> List[Dict[str, Any]]:
    snapshot = []
    for item in items:
        snapshot.append({
            "amount": str(_money(item.amount)),
            "date": item.expense_date.isoformat(),
            "description": item.description,
            "category": item.category,
            "attachments": list(item.attachments or []),
        })
    return snapshot


class ExpenseService:
    """Service for creating, reading and editing expenses."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.permissions = PermissionService(db)

    async def _role_label(self, user_id: uuid.UUID, organization_id: Optional[uuid.UUID]) -> str:
        role = await self.permissions.get_member_role(user_id, organization_id)
        return role.value if role else PERSONAL_ROLE

    async def _validate_managers(
        self,
        organization_id: Optional[uuid.UUID],
        owner_id: uuid.UUID,
        manager_ids: Sequence[uuid.UUID],
    ) -> List[str]:
        """Managers must be members of the organization and cannot be the owner."""
        unique_ids = list(dict.fromkeys(manager_ids))
        if unique_ids and organization_id is None:
            raise ValidationException(
                "Managers can only be assigned to organization expenses",
                field="managerIds",
            )
        for manager_id in unique_ids:
            if manager_id == owner_id:
                raise ValidationException("You cannot assign yourself as a manager", field="managerIds")
            if not await self.permissions.verify_permission(manager_id, OrganizationRole.MEMBER, organization_id):
                raise ValidationException(
                    f"Manager {manager_id} is not a member of this organization",
                    field="managerIds",
                )
        return [str(manager_id) for manager_id in unique_ids]

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def create_expense(
        self,
        actor_id: uuid.UUID,
        line_items: Sequence[LineItemInput],
        organization_id: Optional[uuid.UUID] = None,
        manager_ids: Sequence[uuid.UUID] = (),
        total_amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> Expense:
        """
        Create a Draft expense.

        Without an organization the expense is a personal (vault) draft.
        The total defaults to the line-item sum.
        """
        if organization_id is not None:
            if await self.permissions.find_organization(organization_id) is None:
                raise OrganizationNotFoundException(organization_id)
            if not await self.permissions.verify_permission(actor_id, OrganizationRole.MEMBER, organization_id):
                raise AuthorizationException("Not a member of this organization")

        managers = await self._validate_managers(organization_id, actor_id, manager_ids)

        expense = Expense(
            user_id=actor_id,
            organization_id=organization_id,
            manager_ids=managers,
            currency=(currency or settings.default_currency).upper(),
            state=ExpenseState.DRAFT,
        )
        expense.line_items = _build_line_items(line_items)
        expense.total_amount = total_amount if total_amount is not None else expense.line_items_total
        self.db.add(expense)

        self.audit.append(
            expense,
            action=AuditAction.CREATE,
            actor_id=actor_id,
            role=await self._role_label(actor_id, organization_id),
            changes=[
                FieldChange("status", None, ExpenseState.DRAFT),
                FieldChange("lineItemsCount", None, len(expense.line_items)),
                FieldChange("totalAmount", None, expense.total_amount),
            ],
        )
        await self.db.commit()

        logger.info(f"Expense {expense.id} created by {actor_id} (organization={organization_id})")
        return expense

    async def get_expense(self, expense_id: uuid.UUID) -> Optional[Expense]:
        result = await self.db.execute(
            select(Expense)
            .where(Expense.id == expense_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_expense_for_actor(self, expense_id: uuid.UUID, actor_id: uuid.UUID) -> Expense:
        """Owner, assigned managers and organization admins may read an expense."""
        expense = await self.get_expense(expense_id)
        if expense is None:
            raise ExpenseNotFoundException(expense_id)
        if expense.user_id == actor_id:
            return expense
        role = await self.permissions.get_member_role(actor_id, expense.organization_id)
        if is_role_at_least(role, OrganizationRole.ADMIN):
            return expense
        if expense.is_managed_by(actor_id) and is_role_at_least(role, OrganizationRole.MEMBER):
            return expense
        raise AuthorizationException("You do not have access to this expense")

    async def list_user_expenses(
        self,
        user_id: uuid.UUID,
        list_type: ExpenseListType = ExpenseListType.ALL,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        include_deleted: bool = False,
    ) -> Tuple[List[Expense], int]:
        """The user's own expenses, newest first, with the total count for paging."""
        if search and len(search) > settings.max_search_length:
            raise ValidationException(
                f"Search query must be at most {settings.max_search_length} characters",
                field="search",
            )
        limit = max(1, min(limit, settings.max_page_size))
        page = max(1, page)

        conditions = [Expense.user_id == user_id]
        if list_type == ExpenseListType.PRIVATE:
            conditions.append(Expense.organization_id.is_(None))
        elif list_type == ExpenseListType.ORG:
            conditions.append(Expense.organization_id.is_not(None))
        if not include_deleted:
            conditions.append(Expense.state != ExpenseState.DELETED)
        if search:
            pattern = f"%{_escape_like(search.strip())}%"
            conditions.append(
                Expense.line_items.any(
                    or_(
                        ExpenseLineItem.description.ilike(pattern, escape="\\"),
                        ExpenseLineItem.category.ilike(pattern, escape="\\"),
                    )
                )
            )

        total = await self.db.scalar(select(func.count(Expense.id)).where(*conditions))
        result = await self.db.execute(
            select(Expense)
            .where(*conditions)
            .order_by(Expense.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total or 0

    # =========================================================================
    # EDIT
    # =========================================================================

    async def update_draft(
        self,
        expense_id: uuid.UUID,
        actor_id: uuid.UUID,
        manager_ids: Optional[Sequence[uuid.UUID]] = None,
        line_items: Optional[Sequence[LineItemInput]] = None,
        total_amount: Optional[Decimal] = None,
    ) -> Expense:
        """
        Edit a Draft expense (owner only).

        Replacing the line items resets the total to their sum unless a
        total is given explicitly. The audit entry lists only the fields
        that actually changed; an edit that changes nothing is not audited.
        """
        expense = await self.get_expense(expense_id)
        if expense is None:
            raise ExpenseNotFoundException(expense_id)
        if expense.user_id != actor_id:
            raise AuthorizationException("Only the expense owner can edit this expense")
        if expense.state != ExpenseState.DRAFT:
            raise ValidationException("Only draft expenses can be edited", field="state")

        before = {
            "managerIds": list(expense.manager_ids or []),
            "lineItems": _line_items_snapshot(expense.line_items),
            "totalAmount": _money(expense.total_amount),
        }

        if manager_ids is not None:
            expense.manager_ids = await self._validate_managers(
                expense.organization_id, actor_id, manager_ids
            )
        if line_items is not None:
            expense.line_items = _build_line_items(line_items)
            if total_amount is None:
                expense.total_amount = expense.line_items_total
        if total_amount is not None:
            expense.total_amount = _money(total_amount)

        after = {
            "managerIds": list(expense.manager_ids or []),
            "lineItems": _line_items_snapshot(expense.line_items),
            "totalAmount": _money(expense.total_amount),
        }
        changes = self.audit.calculate_changes(before, after)
        # An owner edit to the amounts voids any earlier admin total override
        if expense.total_overridden and any(c.field in ("lineItems", "totalAmount") for c in changes):
            expense.total_overridden = False
            changes.append(FieldChange("totalOverridden", True, False))
        if not changes:
            return expense

        self.audit.append(
            expense,
            action=AuditAction.UPDATE,
            actor_id=actor_id,
            role=await self._role_label(actor_id, expense.organization_id),
            changes=changes,
        )
        await commit_or_conflict(self.db, f"update of expense {expense_id}")

        logger.info(f"Expense {expense_id} updated by {actor_id}: {[c.field for c in changes]}")
        return expense


def get_expense_service(db: AsyncSession) -> ExpenseService:
    """Factory function to create ExpenseService instance."""
    return ExpenseService(db)
