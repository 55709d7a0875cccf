"""
ClaimFlow - User Model

Users are provisioned by the authentication provider; the core only keeps
the fields it shows to reviewers and finance staff.
"""

from typing import TYPE_CHECKING, List

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.organization import OrganizationMember


class User(BaseModel):
    """Expense owner, reviewer or finance actor."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    memberships: Mapped[List["OrganizationMember"]] = relationship(
        "OrganizationMember",
        back_populates="user",
        cascade="all, delete-orphan",
    )
