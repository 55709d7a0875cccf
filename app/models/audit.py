"""
ClaimFlow - Audit Models

Two append-only logs:

- ExpenseAuditEntry: the per-expense audit trail. Its serialized form is a
  compatibility contract with existing clients and must not change.
- OrganizationAuditEvent: organization-scoped compliance events such as
  finance dashboard access.

Neither table has an UPDATE or DELETE path in the application.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.base import utcnow

if TYPE_CHECKING:
    from app.models.expense import Expense


class AuditAction(str, Enum):
    """Audit action types recorded on an expense."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    UPDATE_STATUS = "UPDATE_STATUS"
    DELETE = "DELETE"
    RESTORE = "RESTORE"
    ADMIN_OVERRIDE = "ADMIN_OVERRIDE"
    LINK_ORG = "LINK_ORG"


class OrganizationAuditAction(str, Enum):
    """Organization-scoped audit events."""
    FINANCE_DASHBOARD_ACCESS = "FINANCE_DASHBOARD_ACCESS"
    FINANCE_EXPORT = "FINANCE_EXPORT"
    MEMBER_ADDED = "MEMBER_ADDED"


def format_timestamp(value: datetime) -> str:
    """ISO 8601 in UTC with millisecond precision, e.g. 2025-03-01T10:15:00.000Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class ExpenseAuditEntry(Base):
    """
    One entry of an expense's audit trail.

    ``sequence`` is the position in the trail. The unique constraint on
    ``(expense_id, sequence)`` rejects two writers appending the same slot.
    """

    __tablename__ = "expense_audit_entries"
    __table_args__ = (
        UniqueConstraint("expense_id", "sequence", name="uq_expense_audit_entries_expense_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    expense_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)

    # [{"field", "oldValue", "newValue"}]
    changes: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    entry_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True,
    )

    expense: Mapped["Expense"] = relationship("Expense", back_populates="audit_trail")

    def to_dict(self) -> Dict[str, Any]:
        entry = {
            "timestamp": format_timestamp(self.timestamp),
            "action": self.action,
            "actorId": self.actor_id,
            "role": self.role,
            "changes": [dict(change) for change in self.changes or []],
        }
        if self.entry_metadata is not None:
            entry["metadata"] = dict(self.entry_metadata)
        return entry

    def __repr__(self) -> str:
        return f"<ExpenseAuditEntry(expense_id={self.expense_id}, sequence={self.sequence}, action={self.action})>"


class OrganizationAuditEvent(Base):
    """Organization-scoped compliance event, independent of any expense."""

    __tablename__ = "organization_audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    event_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "organizationId": str(self.organization_id),
            "actorId": str(self.actor_id),
            "action": self.action,
            "role": self.role,
            "metadata": self.event_metadata,
            "timestamp": format_timestamp(self.created_at),
        }
