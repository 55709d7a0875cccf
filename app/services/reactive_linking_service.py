"""
ClaimFlow - Reactive Linking Service

When a user with personal drafts joins an organization, a pending
notification offers to move those drafts into the organization. Linking
updates every matching draft and its audit trail in one transaction;
dismissing only resolves the notification.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditAction
from app.models.base import utcnow
from app.models.notification import NotificationStatus, ReactiveLinkingNotification
from app.models.organization import OrganizationRole
from app.services.audit_service import AuditService, FieldChange
from app.services.expense_query_service import ExpenseQueryService
from app.services.expense_workflow_service import commit_or_conflict
from app.services.permission_service import PermissionService
from app.utils.error_handling import (
    AuthorizationException,
    ErrorCode,
    NotFoundException,
)

logger = logging.getLogger(__name__)


class ReactiveLinkingService:
    """Service for linking personal drafts to an organization."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.permissions = PermissionService(db)
        self.queries = ExpenseQueryService(db)

    async def find_pending(
        self,
        user_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> Optional[ReactiveLinkingNotification]:
        """Most recent pending notification for the user in the organization."""
        result = await self.db.execute(
            select(ReactiveLinkingNotification)
            .where(
                ReactiveLinkingNotification.user_id == user_id,
                ReactiveLinkingNotification.organization_id == organization_id,
                ReactiveLinkingNotification.status == NotificationStatus.PENDING,
            )
            .order_by(ReactiveLinkingNotification.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_if_needed(
        self,
        user_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> Optional[ReactiveLinkingNotification]:
        """
        Add a pending notification when the user owns personal drafts and has
        none pending for this organization yet. The caller commits.
        """
        drafts = await self.queries.get_personal_drafts(user_id)
        if not drafts:
            return None
        if await self.find_pending(user_id, organization_id) is not None:
            return None

        notification = ReactiveLinkingNotification(
            user_id=user_id,
            organization_id=organization_id,
            status=NotificationStatus.PENDING,
            personal_draft_count=len(drafts),
        )
        self.db.add(notification)
        return notification

    async def link(
        self,
        user_id: uuid.UUID,
        organization_id: uuid.UUID,
        notification_id: uuid.UUID,
    ) -> int:
        """
        Move the user's personal drafts into the organization.

        Only expenses with no organization that are still in Draft move;
        everything else is untouched. Returns the number of linked expenses.
        """
        notification = await self.find_pending(user_id, organization_id)
        if notification is None or notification.id != notification_id:
            raise NotFoundException(
                "Notification",
                notification_id,
                code=ErrorCode.NOTIFICATION_NOT_FOUND,
            )
        if not await self.permissions.verify_permission(user_id, OrganizationRole.MEMBER, organization_id):
            raise AuthorizationException("Not a member of this organization")

        role = await self.permissions.get_member_role(user_id, organization_id)
        drafts = await self.queries.get_personal_drafts(user_id)
        for expense in drafts:
            self.audit.append(
                expense,
                action=AuditAction.LINK_ORG,
                actor_id=user_id,
                role=role.value,
                changes=[FieldChange("organizationId", None, organization_id)],
            )
            expense.organization_id = organization_id

        notification.status = NotificationStatus.LINKED
        notification.linked_at = utcnow()
        await commit_or_conflict(self.db, f"linking drafts of {user_id} to {organization_id}")

        logger.info(f"Linked {len(drafts)} personal drafts of {user_id} to organization {organization_id}")
        return len(drafts)

    async def dismiss(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """
        Dismiss a pending notification. Returns False when there was nothing
        pending to dismiss (unknown id, another user's notification, or
        already resolved).
        """
        result = await self.db.execute(
            select(ReactiveLinkingNotification).where(
                ReactiveLinkingNotification.id == notification_id,
                ReactiveLinkingNotification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None or not notification.is_pending:
            return False

        notification.status = NotificationStatus.DISMISSED
        await self.db.commit()

        logger.info(f"Notification {notification_id} dismissed by {user_id}")
        return True


def get_reactive_linking_service(db: AsyncSession) -> ReactiveLinkingService:
    """Factory function to create ReactiveLinkingService instance."""
    return ReactiveLinkingService(db)
