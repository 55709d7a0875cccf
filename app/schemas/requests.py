"""
ClaimFlow - Request Schemas

Bodies of the finance, reactive-linking and organization endpoints.
"""

from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from app.models.organization import OrganizationRole
from app.schemas.expense import CamelModel


class ReimburseRequest(CamelModel):
    expense_ids: List[UUID] = Field(default_factory=list)


class ExportRequest(CamelModel):
    """Format and ids are checked by the endpoint so it can answer with its own messages."""
    format: Optional[str] = None
    expense_ids: List[str] = Field(default_factory=list)


class LinkingAction(str, Enum):
    LINK = "link"
    DISMISS = "dismiss"


class ReactiveLinkingRequest(CamelModel):
    action: Optional[str] = None
    organization_id: Optional[UUID] = None
    notification_id: Optional[UUID] = None


class MemberCreate(CamelModel):
    organization_id: UUID
    user_id: UUID
    role: OrganizationRole = OrganizationRole.MEMBER


class ReviewDecision(CamelModel):
    expense_id: Optional[UUID] = None
    action: Optional[str] = None
    comment: Optional[str] = Field(None, max_length=1000)
