"""
ClaimFlow - Organization Service

Membership store used by the core: member lookups, the manager directory
and adding members (which may prompt reactive linking).
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import OrganizationAuditAction
from app.models.notification import ReactiveLinkingNotification
from app.models.organization import OrganizationMember, OrganizationRole
from app.models.user import User
from app.services.audit_service import AuditService
from app.services.reactive_linking_service import ReactiveLinkingService
from app.utils.error_handling import (
    ConflictException,
    ErrorCode,
    NotFoundException,
)
from app.utils.permissions import is_role_at_least

logger = logging.getLogger(__name__)


class OrganizationService:
    """Service for organization membership operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_organization_members(
        self,
        organization_id: uuid.UUID,
    ) -> List[Tuple[OrganizationMember, User]]:
        result = await self.db.execute(
            select(OrganizationMember, User)
            .join(User, User.id == OrganizationMember.user_id)
            .where(OrganizationMember.organization_id == organization_id)
            .order_by(User.name)
        )
        return [(member, user) for member, user in result.all()]

    async def get_managers(
        self,
        organization_id: uuid.UUID,
        exclude_user_id: Optional[uuid.UUID] = None,
    ) -> List[Dict[str, Any]]:
        """Admins and owners of the organization, optionally excluding one user."""
        managers = []
        for member, user in await self.get_organization_members(organization_id):
            if not is_role_at_least(member.role, OrganizationRole.ADMIN):
                continue
            if exclude_user_id is not None and user.id == exclude_user_id:
                continue
            managers.append({
                "id": str(user.id),
                "name": user.name,
                "email": user.email,
                "role": member.role.value,
            })
        return managers

    async def add_member(
        self,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        role: OrganizationRole,
        added_by_id: uuid.UUID,
    ) -> Tuple[OrganizationMember, Optional[ReactiveLinkingNotification]]:
        """
        Add a user to the organization.

        If the user owns personal drafts, a pending reactive-linking
        notification is created in the same transaction.
        """
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", user_id)

        existing = await self.db.execute(
            select(OrganizationMember).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictException(
                "User is already a member of this organization",
                code=ErrorCode.DUPLICATE_ENTRY,
            )

        member = OrganizationMember(
            organization_id=organization_id,
            user_id=user_id,
            role=OrganizationRole(role),
        )
        self.db.add(member)

        notification = await ReactiveLinkingService(self.db).create_if_needed(user_id, organization_id)

        AuditService(self.db).log_organization_event(
            organization_id=organization_id,
            actor_id=added_by_id,
            action=OrganizationAuditAction.MEMBER_ADDED,
            metadata={"userId": user_id, "role": member.role},
        )
        await self.db.commit()

        logger.info(
            f"User {user_id} added to organization {organization_id} as {member.role.value}"
            f"{' (linking prompt created)' if notification else ''}"
        )
        return member, notification


def get_organization_service(db: AsyncSession) -> OrganizationService:
    """Factory function to create OrganizationService instance."""
    return OrganizationService(db)
