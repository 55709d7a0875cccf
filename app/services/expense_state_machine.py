"""
ClaimFlow - Expense State Machine

Pure decision logic for the approval workflow. Given an expense, an action
and the acting user, it either returns a TransitionPlan or raises the error
that explains why the action is not allowed. It never mutates the expense;
ExpenseWorkflowService applies plans inside a transaction.

Transition table:

| Action              | From                 | To                   | Guard    |
|---------------------|----------------------|----------------------|----------|
| submit              | Draft                | Pre-Approval Pending | owner    |
| pre_approve         | Pre-Approval Pending | Pre-Approved         | reviewer |
| reject              | Pre-Approval Pending | Rejected             | reviewer |
| submit_for_approval | Pre-Approved         | Approval Pending     | owner    |
| approve             | Approval Pending     | Approved             | admin    |
| reject              | Approval Pending     | Rejected             | admin    |
| reimburse           | Approved             | Reimbursed           | finance  |

owner:    the expense's creator
reviewer: an organization member listed in manager_ids, or an admin/owner
admin:    an admin/owner of the expense's organization
finance:  as admin, batch operation only (no self-approval rule)

Delete, restore and admin overrides sit outside the table and have their
own planners below.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from app.models.audit import AuditAction
from app.models.expense import Expense, ExpenseState
from app.models.organization import OrganizationRole
from app.utils.error_handling import (
    AuthorizationException,
    ErrorCode,
    InvalidTransitionException,
    TotalMismatchException,
    ValidationException,
)
from app.utils.permissions import PERSONAL_ROLE, is_role_at_least


class ExpenseAction(str, Enum):
    """Workflow actions that move an expense along the graph."""
    SUBMIT = "submit"
    PRE_APPROVE = "pre_approve"
    SUBMIT_FOR_APPROVAL = "submit_for_approval"
    APPROVE = "approve"
    REJECT = "reject"
    REIMBURSE = "reimburse"


class Guard(str, Enum):
    OWNER = "owner"
    REVIEWER = "reviewer"
    ADMIN = "admin"
    FINANCE = "finance"


TRANSITIONS: Dict[Tuple[ExpenseAction, ExpenseState], Tuple[ExpenseState, Guard]] = {
    (ExpenseAction.SUBMIT, ExpenseState.DRAFT): (ExpenseState.PRE_APPROVAL_PENDING, Guard.OWNER),
    (ExpenseAction.PRE_APPROVE, ExpenseState.PRE_APPROVAL_PENDING): (ExpenseState.PRE_APPROVED, Guard.REVIEWER),
    (ExpenseAction.REJECT, ExpenseState.PRE_APPROVAL_PENDING): (ExpenseState.REJECTED, Guard.REVIEWER),
    (ExpenseAction.SUBMIT_FOR_APPROVAL, ExpenseState.PRE_APPROVED): (ExpenseState.APPROVAL_PENDING, Guard.OWNER),
    (ExpenseAction.APPROVE, ExpenseState.APPROVAL_PENDING): (ExpenseState.APPROVED, Guard.ADMIN),
    (ExpenseAction.REJECT, ExpenseState.APPROVAL_PENDING): (ExpenseState.REJECTED, Guard.ADMIN),
    (ExpenseAction.REIMBURSE, ExpenseState.APPROVED): (ExpenseState.REIMBURSED, Guard.FINANCE),
}

# Reimbursement entries always carry the finance role, whichever admin-level role acted.
FINANCE_AUDIT_ROLE = OrganizationRole.ADMIN.value


@dataclass
class Actor:
    """The acting user and their role in the expense's organization (if any)."""
    user_id: uuid.UUID
    role: Optional[OrganizationRole] = None

    def audit_role(self, expense: Expense) -> str:
        if expense.is_personal or self.role is None:
            return PERSONAL_ROLE
        return self.role.value


@dataclass
class TransitionPlan:
    """What applying an action will change, and how it is audited."""
    action: AuditAction
    from_state: ExpenseState
    to_state: ExpenseState
    audit_role: str
    reconciled_total: Optional[Decimal] = None
    metadata: Optional[dict] = field(default=None)


def _is_owner(expense: Expense, actor: Actor) -> bool:
    return expense.user_id == actor.user_id


def _check_guard(expense: Expense, action: ExpenseAction, guard: Guard, actor: Actor) -> None:
    if guard == Guard.OWNER:
        if not _is_owner(expense, actor):
            raise AuthorizationException("Only the expense owner can perform this action")
        return

    if guard in (Guard.REVIEWER, Guard.ADMIN) and _is_owner(expense, actor):
        raise AuthorizationException(
            "You cannot approve your own expenses",
            code=ErrorCode.SELF_APPROVAL,
        )

    if guard == Guard.REVIEWER:
        is_admin = is_role_at_least(actor.role, OrganizationRole.ADMIN)
        is_assigned = expense.is_managed_by(actor.user_id) and is_role_at_least(
            actor.role, OrganizationRole.MEMBER
        )
        if not (is_admin or is_assigned):
            raise AuthorizationException(
                "Only an assigned manager or an organization admin can review this expense",
                required_role=OrganizationRole.ADMIN.value,
            )
        return

    if not is_role_at_least(actor.role, OrganizationRole.ADMIN):
        raise AuthorizationException(
            f"Admin access is required to {action.value.replace('_', ' ')} expenses",
            required_role=OrganizationRole.ADMIN.value,
        )


def check_totals(expense: Expense, reconcile_total: bool = False) -> Optional[Decimal]:
    """
    Enforce that the total matches the line items when leaving Draft.

    Returns the reconciled total when ``reconcile_total`` is set and the
    amounts differ, None when nothing needs to change. An admin override
    of the total (``total_overridden``) is accepted as is.
    """
    line_items_total = expense.line_items_total
    if expense.total_amount == line_items_total or expense.total_overridden:
        return None
    if reconcile_total:
        return line_items_total
    raise TotalMismatchException(expense.total_amount, line_items_total)


def _check_submission(expense: Expense, reconcile_total: bool) -> Optional[Decimal]:
    if expense.is_personal:
        raise ValidationException(
            "Personal expenses must be linked to an organization before submission",
            field="organizationId",
        )
    if not expense.line_items:
        raise ValidationException(
            "Expense must have at least one line item",
            field="lineItems",
        )
    if not expense.manager_ids:
        raise ValidationException(
            "At least one manager must be assigned before submission",
            field="managerIds",
        )
    return check_totals(expense, reconcile_total)


def plan_transition(
    expense: Expense,
    action: ExpenseAction,
    actor: Actor,
    reconcile_total: bool = False,
) -> TransitionPlan:
    """Validate a workflow action and describe its effect."""
    action = ExpenseAction(action)
    target = TRANSITIONS.get((action, expense.state))
    if target is None:
        raise InvalidTransitionException(action.value, expense.state.value)
    to_state, guard = target

    _check_guard(expense, action, guard, actor)

    reconciled_total = None
    if action == ExpenseAction.SUBMIT:
        reconciled_total = _check_submission(expense, reconcile_total)

    audit_role = FINANCE_AUDIT_ROLE if guard == Guard.FINANCE else actor.audit_role(expense)
    return TransitionPlan(
        action=AuditAction.UPDATE_STATUS,
        from_state=expense.state,
        to_state=to_state,
        audit_role=audit_role,
        reconciled_total=reconciled_total,
    )


def _check_owner_or_admin(expense: Expense, actor: Actor, verb: str) -> None:
    if _is_owner(expense, actor):
        return
    if expense.organization_id is not None and is_role_at_least(actor.role, OrganizationRole.ADMIN):
        return
    raise AuthorizationException(f"Only the owner or an organization admin can {verb} this expense")


def plan_delete(expense: Expense, actor: Actor) -> TransitionPlan:
    """Soft delete from any state."""
    if expense.is_deleted:
        raise InvalidTransitionException("delete", expense.state.value, "Expense is already deleted")
    _check_owner_or_admin(expense, actor, "delete")
    return TransitionPlan(
        action=AuditAction.DELETE,
        from_state=expense.state,
        to_state=ExpenseState.DELETED,
        audit_role=actor.audit_role(expense),
    )


def previous_state_before_delete(expense: Expense) -> ExpenseState:
    """State recorded by the most recent DELETE entry, Draft if none is found."""
    for entry in reversed(expense.audit_trail):
        if entry.action != AuditAction.DELETE.value:
            continue
        for change in entry.changes:
            if change.get("field") == "status":
                try:
                    return ExpenseState(change.get("oldValue"))
                except ValueError:
                    break
        break
    return ExpenseState.DRAFT


def plan_restore(expense: Expense, actor: Actor) -> TransitionPlan:
    """Undo a soft delete, returning to the state the expense was deleted from."""
    if not expense.is_deleted:
        raise InvalidTransitionException("restore", expense.state.value, "Expense is not deleted")
    _check_owner_or_admin(expense, actor, "restore")
    return TransitionPlan(
        action=AuditAction.RESTORE,
        from_state=expense.state,
        to_state=previous_state_before_delete(expense),
        audit_role=actor.audit_role(expense),
    )


def plan_override(
    expense: Expense,
    target_state: ExpenseState,
    actor: Actor,
    reason: Optional[str] = None,
) -> TransitionPlan:
    """Admin override to any workflow state, bypassing the transition table."""
    target_state = ExpenseState(target_state)
    if expense.is_personal:
        raise ValidationException("Personal expenses cannot be overridden into an organization workflow")
    if not is_role_at_least(actor.role, OrganizationRole.ADMIN):
        raise AuthorizationException(
            "Admin access is required to override expense status",
            required_role=OrganizationRole.ADMIN.value,
        )
    if expense.is_deleted or target_state == ExpenseState.DELETED:
        raise ValidationException("Use delete or restore to change the deleted state", field="state")
    if target_state == expense.state:
        raise ValidationException(f"Expense is already in state '{target_state.value}'", field="state")

    metadata = {"adminOverride": True}
    if reason:
        metadata["reason"] = reason
    return TransitionPlan(
        action=AuditAction.ADMIN_OVERRIDE,
        from_state=expense.state,
        to_state=target_state,
        audit_role=actor.audit_role(expense),
        metadata=metadata,
    )
