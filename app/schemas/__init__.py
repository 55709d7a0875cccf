"""
ClaimFlow - Schemas Package

Pydantic schemas for request/response validation.
"""

from app.schemas.expense import (
    CamelModel,
    DateRange,
    ExpenseCreate,
    ExpenseListType,
    ExpenseUpdate,
    LineItemInput,
    OverrideRequest,
    SubmitRequest,
    TotalOverrideRequest,
    serialize_expense,
    serialize_expense_with_owner,
)
from app.schemas.requests import (
    ExportRequest,
    LinkingAction,
    MemberCreate,
    ReactiveLinkingRequest,
    ReimburseRequest,
    ReviewDecision,
)

__all__ = [
    "CamelModel",
    "DateRange",
    "ExpenseCreate",
    "ExpenseListType",
    "ExpenseUpdate",
    "LineItemInput",
    "OverrideRequest",
    "SubmitRequest",
    "TotalOverrideRequest",
    "serialize_expense",
    "serialize_expense_with_owner",
    "ExportRequest",
    "LinkingAction",
    "MemberCreate",
    "ReactiveLinkingRequest",
    "ReimburseRequest",
    "ReviewDecision",
]
