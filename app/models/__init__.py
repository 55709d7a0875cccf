"""
ClaimFlow - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin
from app.models.user import User
from app.models.organization import Organization, OrganizationMember, OrganizationRole
from app.models.expense import (
    Expense,
    ExpenseLineItem,
    ExpenseState,
    PENDING_STATES,
    EDITABLE_TOTAL_STATES,
)
from app.models.audit import (
    AuditAction,
    ExpenseAuditEntry,
    OrganizationAuditAction,
    OrganizationAuditEvent,
)
from app.models.notification import NotificationStatus, ReactiveLinkingNotification

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "User",
    "Organization",
    "OrganizationMember",
    "OrganizationRole",
    "Expense",
    "ExpenseLineItem",
    "ExpenseState",
    "PENDING_STATES",
    "EDITABLE_TOTAL_STATES",
    "AuditAction",
    "ExpenseAuditEntry",
    "OrganizationAuditAction",
    "OrganizationAuditEvent",
    "NotificationStatus",
    "ReactiveLinkingNotification",
]
