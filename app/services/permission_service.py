"""
ClaimFlow - Permission Gate

Answers "does this actor hold at least this role in this organization?".
The gate never raises: a missing organization, a missing membership or a
failed lookup all answer False. Callers translate False into 403 and check
organization existence separately when they need a 404.
"""

import logging
import uuid
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.organization import Organization, OrganizationMember, OrganizationRole
from app.utils.permissions import is_role_at_least

logger = logging.getLogger(__name__)


class PermissionService:
    """Organization role lookups for the current request."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_member(
        self,
        user_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> Optional[OrganizationMember]:
        result = await self.db.execute(
            select(OrganizationMember).where(
                OrganizationMember.user_id == user_id,
                OrganizationMember.organization_id == organization_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_organization(self, organization_id: uuid.UUID) -> Optional[Organization]:
        return await self.db.get(Organization, organization_id)

    async def get_member_role(
        self,
        user_id: uuid.UUID,
        organization_id: Optional[uuid.UUID],
    ) -> Optional[OrganizationRole]:
        """Role of the user in the organization, or None. Never raises."""
        if organization_id is None:
            return None
        try:
            member = await self.find_member(user_id, organization_id)
        except SQLAlchemyError as e:
            logger.error(
                f"Membership lookup failed for user {user_id} in organization {organization_id}: {e}"
            )
            return None
        return member.role if member else None

    async def verify_permission(
        self,
        actor_id: uuid.UUID,
        required_role: Union[OrganizationRole, str],
        organization_id: Optional[uuid.UUID],
    ) -> bool:
        """
        Check that the actor holds ``required_role`` or higher.

        Returns False (never raises) when the organization id is missing,
        the actor is not a member, or the lookup fails.
        """
        role = await self.get_member_role(actor_id, organization_id)
        if role is None:
            logger.debug(
                f"Permission denied: user {actor_id} has no membership in organization {organization_id}"
            )
            return False
        allowed = is_role_at_least(role, required_role)
        if not allowed:
            logger.debug(
                f"Permission denied: user {actor_id} is {role.value} in {organization_id}, "
                f"requires {OrganizationRole(required_role).value}"
            )
        return allowed


def get_permission_service(db: AsyncSession) -> PermissionService:
    """Factory function to create PermissionService instance."""
    return PermissionService(db)


async def verify_permission(
    db: AsyncSession,
    actor_id: uuid.UUID,
    required_role: Union[OrganizationRole, str],
    organization_id: Optional[uuid.UUID],
) -> bool:
    """Module-level shortcut for ``PermissionService.verify_permission``."""
    return await PermissionService(db).verify_permission(actor_id, required_role, organization_id)
