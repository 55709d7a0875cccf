"""
ClaimFlow - Expense Workflow Service

Executes state changes planned by the state machine. Every operation:

1. loads the current rows,
2. validates (guards and preconditions raise before anything is touched),
3. applies the change and appends the audit entries,
4. commits once.

Expense rows carry a version stamp, so a concurrent writer makes the flush
fail with StaleDataError; the whole transaction is then rolled back and a
ConflictException is raised. Batch operations therefore either commit every
expense and audit entry or none of them.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.models.audit import AuditAction
from app.models.base import utcnow
from app.models.expense import EDITABLE_TOTAL_STATES, Expense, ExpenseState
from app.models.organization import OrganizationRole
from app.services.audit_service import AuditService, FieldChange
from app.services.expense_state_machine import (
    Actor,
    ExpenseAction,
    TransitionPlan,
    plan_delete,
    plan_override,
    plan_restore,
    plan_transition,
)
from app.services.permission_service import PermissionService
from app.utils.error_handling import (
    AuthorizationException,
    ConflictException,
    ErrorCode,
    ExpenseNotFoundException,
    PartialMatchException,
    ValidationException,
)
from app.utils.permissions import is_role_at_least

logger = logging.getLogger(__name__)


async def commit_or_conflict(db: AsyncSession, context: str) -> None:
    """Commit, converting a lost optimistic-concurrency race into ConflictException."""
    try:
        await db.commit()
    except (StaleDataError, IntegrityError) as e:
        await db.rollback()
        logger.warning(f"Concurrent modification during {context}: {e}")
        raise ConflictException(original_error=e)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Database error during {context}")
        raise


class ExpenseWorkflowService:
    """Transactional executor for expense state changes."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.permissions = PermissionService(db)

    # =========================================================================
    # LOADING
    # =========================================================================

    async def get_expense(self, expense_id: uuid.UUID) -> Expense:
        """Load an expense with its line items and audit trail, or raise 404."""
        result = await self.db.execute(
            select(Expense)
            .where(Expense.id == expense_id)
            .execution_options(populate_existing=True)
        )
        expense = result.scalar_one_or_none()
        if expense is None:
            raise ExpenseNotFoundException(expense_id)
        return expense

    async def _load_reimbursable(self, expense_ids: Sequence[uuid.UUID]) -> List[Expense]:
        """Every requested expense that still exists and is not deleted."""
        result = await self.db.execute(
            select(Expense)
            .where(
                Expense.id.in_(expense_ids),
                Expense.state != ExpenseState.DELETED,
            )
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_actor(self, expense: Expense, actor_id: uuid.UUID) -> Actor:
        role = await self.permissions.get_member_role(actor_id, expense.organization_id)
        return Actor(user_id=actor_id, role=role)

    # =========================================================================
    # TRANSACTION HANDLING
    # =========================================================================

    async def _commit(self, context: str) -> None:
        await commit_or_conflict(self.db, context)

    def _apply(
        self,
        expense: Expense,
        plan: TransitionPlan,
        actor_id: uuid.UUID,
        extra_changes: Sequence[FieldChange] = (),
    ) -> None:
        changes = [FieldChange("status", plan.from_state, plan.to_state)]
        changes.extend(extra_changes)

        expense.state = plan.to_state
        self.audit.append(
            expense,
            action=plan.action,
            actor_id=actor_id,
            role=plan.audit_role,
            changes=changes,
            metadata=plan.metadata,
        )

    # =========================================================================
    # SINGLE EXPENSE OPERATIONS
    # =========================================================================

    async def transition(
        self,
        expense_id: uuid.UUID,
        action: ExpenseAction,
        actor_id: uuid.UUID,
        reconcile_total: bool = False,
        comment: Optional[str] = None,
    ) -> Expense:
        """
        Run one workflow action (submit, pre-approve, approve, ...).

        Args:
            reconcile_total: on submit, replace a mismatching total with the
                line-item sum instead of rejecting the submission. The
                correction is recorded in the same audit entry.
            comment: reviewer note stored in the audit entry metadata
        """
        expense = await self.get_expense(expense_id)
        actor = await self.get_actor(expense, actor_id)
        plan = plan_transition(expense, action, actor, reconcile_total=reconcile_total)
        if comment:
            plan.metadata = {"comment": comment}

        extra_changes = []
        if plan.reconciled_total is not None:
            extra_changes.append(FieldChange("totalAmount", expense.total_amount, plan.reconciled_total))
            expense.total_amount = plan.reconciled_total

        self._apply(expense, plan, actor_id, extra_changes)
        await self._commit(f"{ExpenseAction(action).value} of expense {expense_id}")

        logger.info(
            f"Expense {expense_id}: {plan.from_state.value} -> {plan.to_state.value} by {actor_id}"
        )
        return expense

    async def delete(self, expense_id: uuid.UUID, actor_id: uuid.UUID) -> Expense:
        """Soft delete an expense."""
        expense = await self.get_expense(expense_id)
        actor = await self.get_actor(expense, actor_id)
        plan = plan_delete(expense, actor)

        deleted_at = utcnow()
        self._apply(expense, plan, actor_id, [FieldChange("deletedAt", None, deleted_at)])
        expense.deleted_at = deleted_at
        await self._commit(f"delete of expense {expense_id}")

        logger.info(f"Expense {expense_id} deleted by {actor_id}")
        return expense

    async def restore(self, expense_id: uuid.UUID, actor_id: uuid.UUID) -> Expense:
        """Restore a soft-deleted expense to the state it was deleted from."""
        expense = await self.get_expense(expense_id)
        actor = await self.get_actor(expense, actor_id)
        plan = plan_restore(expense, actor)

        self._apply(expense, plan, actor_id, [FieldChange("deletedAt", expense.deleted_at, None)])
        expense.deleted_at = None
        await self._commit(f"restore of expense {expense_id}")

        logger.info(f"Expense {expense_id} restored to {plan.to_state.value} by {actor_id}")
        return expense

    async def admin_override(
        self,
        expense_id: uuid.UUID,
        target_state: ExpenseState,
        actor_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Expense:
        """Move an expense to any state outside the normal workflow (admin only)."""
        expense = await self.get_expense(expense_id)
        actor = await self.get_actor(expense, actor_id)
        plan = plan_override(expense, target_state, actor, reason)

        self._apply(expense, plan, actor_id)
        await self._commit(f"override of expense {expense_id}")

        logger.warning(
            f"Admin override on expense {expense_id}: {plan.from_state.value} -> "
            f"{plan.to_state.value} by {actor_id}"
        )
        return expense

    async def override_total(
        self,
        expense_id: uuid.UUID,
        actor_id: uuid.UUID,
        total_amount: Decimal,
        reason: Optional[str] = None,
    ) -> Expense:
        """
        Set a total that differs from the line-item sum.

        Admin only, and only while totals are still editable. The expense
        can then be submitted with the overridden total.
        """
        expense = await self.get_expense(expense_id)
        if expense.is_personal:
            raise ValidationException("Personal expenses cannot have an admin total override")
        actor = await self.get_actor(expense, actor_id)
        if not is_role_at_least(actor.role, OrganizationRole.ADMIN):
            raise AuthorizationException(
                "Admin access is required to override the total",
                required_role=OrganizationRole.ADMIN.value,
            )
        if expense.state not in EDITABLE_TOTAL_STATES:
            raise ValidationException(
                f"Total amount is read-only in state '{expense.state.value}'",
                field="totalAmount",
            )

        metadata: Dict[str, Any] = {"adminOverride": True}
        if reason:
            metadata["reason"] = reason
        self.audit.append(
            expense,
            action=AuditAction.ADMIN_OVERRIDE,
            actor_id=actor_id,
            role=actor.audit_role(expense),
            changes=[FieldChange("totalAmount", expense.total_amount, total_amount)],
            metadata=metadata,
        )
        expense.total_amount = total_amount
        expense.total_overridden = True
        await self._commit(f"total override of expense {expense_id}")

        logger.warning(f"Admin total override on expense {expense_id} by {actor_id}")
        return expense

    # =========================================================================
    # BATCH REIMBURSEMENT
    # =========================================================================

    async def reimburse(
        self,
        expense_ids: Sequence[uuid.UUID],
        actor_id: uuid.UUID,
    ) -> Dict[str, Any]:
        """
        Reimburse a batch of approved expenses, all or nothing.

        Raises:
            ValidationException: no ids, or a personal expense in the batch
            AuthorizationException: actor is not admin in every organization
            PartialMatchException: an id is missing or not Approved
            ConflictException: another request changed an expense meanwhile
        """
        requested = list(dict.fromkeys(expense_ids))
        if not requested:
            raise ValidationException("Expense IDs array is required", field="expenseIds")

        expenses = await self._load_reimbursable(requested)

        if any(expense.is_personal for expense in expenses):
            raise ValidationException(
                "Cannot reimburse personal expenses",
                code=ErrorCode.PERSONAL_EXPENSE,
            )

        roles: Dict[uuid.UUID, Optional[OrganizationRole]] = {}
        for organization_id in {expense.organization_id for expense in expenses}:
            if not await self.permissions.verify_permission(actor_id, OrganizationRole.ADMIN, organization_id):
                raise AuthorizationException(
                    "Not authorized to reimburse expenses",
                    required_role=OrganizationRole.ADMIN.value,
                )
            roles[organization_id] = await self.permissions.get_member_role(actor_id, organization_id)

        eligible = [expense for expense in expenses if expense.state == ExpenseState.APPROVED]
        if len(eligible) != len(requested):
            raise PartialMatchException(requested=len(requested), matched=len(eligible))

        metadata = {"batchReimbursement": True, "expenseCount": len(eligible)}
        for expense in eligible:
            actor = Actor(user_id=actor_id, role=roles[expense.organization_id])
            plan = plan_transition(expense, ExpenseAction.REIMBURSE, actor)
            plan.metadata = metadata
            self._apply(expense, plan, actor_id)

        await self._commit(f"batch reimbursement of {len(eligible)} expenses")

        logger.info(f"Reimbursed {len(eligible)} expenses by {actor_id}")
        return {
            "updatedCount": len(eligible),
            "expenseIds": [str(expense.id) for expense in eligible],
        }


def get_expense_workflow_service(db: AsyncSession) -> ExpenseWorkflowService:
    """Factory function to create ExpenseWorkflowService instance."""
    return ExpenseWorkflowService(db)
