"""
ClaimFlow - Expense Schemas

Pydantic schemas for expense requests and the JSON shape of expense
responses. Field names are camelCase on the wire.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.audit import format_timestamp
from app.models.expense import Expense, ExpenseState


class CamelModel(BaseModel):
    """Accepts both camelCase (wire) and snake_case (Python) field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# REQUESTS
# =============================================================================

class LineItemInput(CamelModel):
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    expense_date: date = Field(..., alias="date")
    description: Optional[str] = Field(None, max_length=1000)
    category: Optional[str] = Field(None, max_length=100)
    attachments: List[str] = Field(default_factory=list)

    @field_validator("expense_date")
    @classmethod
    def date_not_in_future(cls, value: date) -> date:
        if value > date.today():
            raise ValueError("Line item date cannot be in the future")
        return value


class ExpenseCreate(CamelModel):
    organization_id: Optional[UUID] = None
    manager_ids: List[UUID] = Field(default_factory=list)
    line_items: List[LineItemInput] = Field(default_factory=list)
    total_amount: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class ExpenseUpdate(CamelModel):
    """Draft edit; omitted fields stay unchanged."""
    manager_ids: Optional[List[UUID]] = None
    line_items: Optional[List[LineItemInput]] = None
    total_amount: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2)


class SubmitRequest(CamelModel):
    reconcile_total: bool = False


class OverrideRequest(CamelModel):
    state: ExpenseState
    reason: Optional[str] = Field(None, max_length=500)


class TotalOverrideRequest(CamelModel):
    total_amount: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=500)


class ExpenseListType(str, Enum):
    ALL = "all"
    PRIVATE = "private"
    ORG = "org"


class DateRange(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


# =============================================================================
# RESPONSES
# =============================================================================

def serialize_expense(expense: Expense, include_audit_trail: bool = True) -> Dict[str, Any]:
    """JSON form of an expense."""
    data: Dict[str, Any] = {
        "id": str(expense.id),
        "userId": str(expense.user_id),
        "organizationId": str(expense.organization_id) if expense.organization_id else None,
        "managerIds": list(expense.manager_ids or []),
        "lineItems": [item.to_dict() for item in expense.line_items],
        "totalAmount": str(expense.total_amount),
        "totalOverridden": expense.total_overridden,
        "currency": expense.currency,
        "state": expense.state.value,
        "version": expense.version,
        "createdAt": format_timestamp(expense.created_at),
        "updatedAt": format_timestamp(expense.updated_at),
        "deletedAt": format_timestamp(expense.deleted_at) if expense.deleted_at else None,
    }
    if include_audit_trail:
        data["auditTrail"] = [entry.to_dict() for entry in expense.audit_trail]
    return data


def serialize_expense_with_owner(expense: Expense) -> Dict[str, Any]:
    """Expense plus the owner's display fields, for reviewers and finance."""
    data = serialize_expense(expense, include_audit_trail=False)
    owner = expense.owner
    data["employee"] = {
        "id": str(owner.id),
        "name": owner.name,
        "email": owner.email,
    } if owner else None
    return data
