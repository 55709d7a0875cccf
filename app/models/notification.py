"""
ClaimFlow - Reactive Linking Notification Model

Created when a user who owns personal drafts joins an organization. The user
either links the drafts to the organization or dismisses the prompt; both
resolve the notification.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel
from app.models.audit import format_timestamp


class NotificationStatus(str, Enum):
    PENDING = "pending"
    LINKED = "linked"
    DISMISSED = "dismissed"


class ReactiveLinkingNotification(BaseModel):
    """Prompt to link personal drafts to a newly joined organization."""

    __tablename__ = "reactive_linking_notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[NotificationStatus] = mapped_column(
        SQLEnum(NotificationStatus, native_enum=False, length=20),
        default=NotificationStatus.PENDING,
        nullable=False,
        index=True,
    )
    personal_draft_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    linked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_pending(self) -> bool:
        return self.status == NotificationStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "organizationId": str(self.organization_id),
            "status": self.status.value,
            "personalDraftCount": self.personal_draft_count,
            "linkedAt": format_timestamp(self.linked_at) if self.linked_at else None,
            "createdAt": format_timestamp(self.created_at),
        }
