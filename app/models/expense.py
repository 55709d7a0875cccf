"""
ClaimFlow - Expense Models

Expenses move through a two-tier approval workflow:

Draft -> Pre-Approval Pending -> Pre-Approved -> Approval Pending
      -> Approved -> Reimbursed

Rejected is reachable from either pending state and is terminal. Deleted is
a soft-delete marker reachable from every state.

An expense without an organization is a personal ("vault") expense and can
only sit in Draft until it is linked to an organization.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.audit import ExpenseAuditEntry
    from app.models.user import User


class ExpenseState(str, Enum):
    """Workflow state of an expense. Values are the labels stored in audit entries."""
    DRAFT = "Draft"
    PRE_APPROVAL_PENDING = "Pre-Approval Pending"
    PRE_APPROVED = "Pre-Approved"
    APPROVAL_PENDING = "Approval Pending"
    APPROVED = "Approved"
    REIMBURSED = "Reimbursed"
    REJECTED = "Rejected"
    DELETED = "Deleted"


PENDING_STATES = (ExpenseState.PRE_APPROVAL_PENDING, ExpenseState.APPROVAL_PENDING)

# Totals stay editable until pre-approval.
EDITABLE_TOTAL_STATES = (ExpenseState.DRAFT, ExpenseState.PRE_APPROVAL_PENDING)


# ===========================================
# EXPENSE
# ===========================================

class Expense(BaseModel):
    """
    An expense report owned by one user.

    Every UPDATE is guarded by ``version``: SQLAlchemy adds
    ``WHERE version = :expected`` and raises ``StaleDataError`` when another
    transaction changed the row first.
    """

    __tablename__ = "expenses"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="NULL for personal (vault) expenses",
    )

    # Reviewers, stored as a list of user id strings
    manager_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # Amounts
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_overridden: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Set by an audited admin override of the total",
    )

    # Status
    state: Mapped[ExpenseState] = mapped_column(
        SQLEnum(ExpenseState, native_enum=False, length=30),
        default=ExpenseState.DRAFT,
        nullable=False,
        index=True,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    owner: Mapped["User"] = relationship("User", lazy="selectin")
    line_items: Mapped[List["ExpenseLineItem"]] = relationship(
        "ExpenseLineItem",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseLineItem.position",
        lazy="selectin",
    )
    audit_trail: Mapped[List["ExpenseAuditEntry"]] = relationship(
        "ExpenseAuditEntry",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseAuditEntry.sequence",
        lazy="selectin",
    )

    @property
    def is_personal(self) -> bool:
        return self.organization_id is None

    @property
    def is_deleted(self) -> bool:
        return self.state == ExpenseState.DELETED

    @property
    def line_items_total(self) -> Decimal:
        return sum((item.amount for item in self.line_items), Decimal("0.00"))

    def is_managed_by(self, user_id: uuid.UUID) -> bool:
        return str(user_id) in (self.manager_ids or [])


# ===========================================
# LINE ITEM
# ===========================================

class ExpenseLineItem(BaseModel):
    """Single receipt line of an expense."""

    __tablename__ = "expense_line_items"

    expense_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Blob storage keys; upload and removal happen outside this service
    attachments: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    expense: Mapped["Expense"] = relationship("Expense", back_populates="line_items")

    def to_dict(self) -> dict:
        return {
            "amount": str(self.amount),
            "date": self.expense_date.isoformat(),
            "description": self.description,
            "category": self.category,
            "attachments": list(self.attachments or []),
        }
