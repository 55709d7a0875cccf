"""
ClaimFlow - Audit Trail Service

Appends entries to an expense's audit trail and records organization-scoped
compliance events. Entries are only ever added; nothing in this service
updates or removes them.

The service adds rows to the caller's session and never commits: the entry
must land in the same transaction as the change it describes.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import (
    AuditAction,
    ExpenseAuditEntry,
    OrganizationAuditAction,
    OrganizationAuditEvent,
)
from app.models.base import utcnow
from app.models.expense import Expense


AUDIT_ACTION_LABELS = {
    AuditAction.CREATE.value: "Created",
    AuditAction.UPDATE.value: "Updated",
    AuditAction.UPDATE_STATUS.value: "Status Changed",
    AuditAction.DELETE.value: "Deleted",
    AuditAction.RESTORE.value: "Restored",
    AuditAction.ADMIN_OVERRIDE.value: "Admin Override",
    AuditAction.LINK_ORG.value: "Linked to Organization",
}


def audit_action_label(action: str) -> str:
    """Readable label for an audit action, e.g. ``LINK_ORG`` -> ``Linked to Organization``."""
    if action in AUDIT_ACTION_LABELS:
        return AUDIT_ACTION_LABELS[action]
    return action.replace("_", " ").title()


def to_audit_value(value: Any) -> Any:
    """Convert a field value into its JSON form inside ``changes``."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_audit_value(v) for v in value]
    if isinstance(value, dict):
        return {k: to_audit_value(v) for k, v in value.items()}
    return value


@dataclass
class FieldChange:
    """One ``{field, oldValue, newValue}`` element of an audit entry."""
    field: str
    old_value: Any = None
    new_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "oldValue": to_audit_value(self.old_value),
            "newValue": to_audit_value(self.new_value),
        }


class AuditService:
    """Service for the expense audit trail and organization audit events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def append(
        self,
        expense: Expense,
        action: Union[AuditAction, str],
        actor_id: uuid.UUID,
        role: str,
        changes: Iterable[FieldChange] = (),
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ExpenseAuditEntry:
        """
        Append exactly one entry to the expense's trail.

        ``expense.audit_trail`` must already be loaded; the new entry takes
        the next sequence number.
        """
        entry = ExpenseAuditEntry(
            sequence=len(expense.audit_trail),
            timestamp=utcnow(),
            action=AuditAction(action).value,
            actor_id=str(actor_id),
            role=role.value if isinstance(role, Enum) else role,
            changes=[change.to_dict() for change in changes],
            entry_metadata=to_audit_value(metadata) if metadata is not None else None,
        )
        expense.audit_trail.append(entry)
        return entry

    def calculate_changes(
        self,
        old_values: Dict[str, Any],
        new_values: Dict[str, Any],
    ) -> List[FieldChange]:
        """Changes between two snapshots, in the order the fields appear."""
        changes = []
        fields = list(old_values.keys()) + [k for k in new_values.keys() if k not in old_values]

        for field in fields:
            old_val = old_values.get(field)
            new_val = new_values.get(field)

            if to_audit_value(old_val) != to_audit_value(new_val):
                changes.append(FieldChange(field, old_val, new_val))

        return changes

    async def get_audit_trail(self, expense_id: uuid.UUID) -> List[ExpenseAuditEntry]:
        """Entries of one expense, oldest first."""
        result = await self.db.execute(
            select(ExpenseAuditEntry)
            .where(ExpenseAuditEntry.expense_id == expense_id)
            .order_by(ExpenseAuditEntry.sequence)
        )
        return list(result.scalars().all())

    def log_organization_event(
        self,
        organization_id: uuid.UUID,
        actor_id: uuid.UUID,
        action: Union[OrganizationAuditAction, str],
        role: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OrganizationAuditEvent:
        """Record an organization-scoped event such as finance dashboard access."""
        event = OrganizationAuditEvent(
            organization_id=organization_id,
            actor_id=actor_id,
            action=OrganizationAuditAction(action).value,
            role=role.value if isinstance(role, Enum) else role,
            event_metadata=to_audit_value(metadata) if metadata is not None else None,
            created_at=utcnow(),
        )
        self.db.add(event)
        return event

    async def get_organization_events(
        self,
        organization_id: uuid.UUID,
        action: Optional[Union[OrganizationAuditAction, str]] = None,
        limit: int = 100,
    ) -> List[OrganizationAuditEvent]:
        query = select(OrganizationAuditEvent).where(
            OrganizationAuditEvent.organization_id == organization_id
        )
        if action:
            query = query.where(OrganizationAuditEvent.action == OrganizationAuditAction(action).value)
        query = query.order_by(OrganizationAuditEvent.created_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
