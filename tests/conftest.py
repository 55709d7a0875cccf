"""
ClaimFlow - Test Configuration

Pytest fixtures and configuration.
"""

import os

# Settings are read at import time; configure before importing the app.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-claimflow")
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("APP_ENV", "test")

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Callable, Dict, List, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_async_session
from app.models.expense import Expense, ExpenseState
from app.models.organization import Organization, OrganizationMember, OrganizationRole
from app.models.user import User
from app.schemas.expense import LineItemInput
from app.services.expense_service import ExpenseService
from app.utils.security import create_access_token
from main import app


# In-memory SQLite shared by every connection of the test engine
test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    # Unhandled errors are answered by the app's own 500 handler
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

async def create_user(db: AsyncSession, name: str) -> User:
    user = User(id=uuid4(), name=name, email=f"{name.lower()}@example.com")
    db.add(user)
    await db.commit()
    return user


async def add_membership(
    db: AsyncSession,
    organization: Organization,
    user: User,
    role: OrganizationRole,
) -> OrganizationMember:
    member = OrganizationMember(organization_id=organization.id, user_id=user.id, role=role)
    db.add(member)
    await db.commit()
    return member


@pytest_asyncio.fixture
async def test_organization(db_session: AsyncSession) -> Organization:
    """Create a test organization."""
    org = Organization(id=uuid4(), name="Acme Corp", slug="acme")
    db_session.add(org)
    await db_session.commit()
    return org


@pytest_asyncio.fixture
async def other_organization(db_session: AsyncSession) -> Organization:
    org = Organization(id=uuid4(), name="Globex", slug="globex")
    db_session.add(org)
    await db_session.commit()
    return org


@pytest_asyncio.fixture
async def owner(db_session: AsyncSession, test_organization: Organization) -> User:
    """Organization owner."""
    user = await create_user(db_session, "Olivia")
    await add_membership(db_session, test_organization, user, OrganizationRole.OWNER)
    return user


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession, test_organization: Organization) -> User:
    """Organization admin (finance)."""
    user = await create_user(db_session, "Adam")
    await add_membership(db_session, test_organization, user, OrganizationRole.ADMIN)
    return user


@pytest_asyncio.fixture
async def manager(db_session: AsyncSession, test_organization: Organization) -> User:
    """Plain member who is assigned as a reviewer."""
    user = await create_user(db_session, "Maya")
    await add_membership(db_session, test_organization, user, OrganizationRole.MEMBER)
    return user


@pytest_asyncio.fixture
async def employee(db_session: AsyncSession, test_organization: Organization) -> User:
    """Plain member who files expenses."""
    user = await create_user(db_session, "Ethan")
    await add_membership(db_session, test_organization, user, OrganizationRole.MEMBER)
    return user


@pytest_asyncio.fixture
async def outsider(db_session: AsyncSession) -> User:
    """User without any membership."""
    return await create_user(db_session, "Oscar")


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    """Bearer headers for a user."""

    def _headers(user: User) -> Dict[str, str]:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers


def line_item(amount: str, days_ago: int = 1, **kwargs) -> LineItemInput:
    return LineItemInput(
        amount=Decimal(amount),
        expense_date=date.today() - timedelta(days=days_ago),
        **kwargs,
    )


@pytest.fixture
def make_expense(db_session: AsyncSession):
    """
    Create an expense through the service, then optionally force it into a
    given state (bypassing the workflow) for setup purposes.
    """

    async def _make(
        owner: User,
        organization: Optional[Organization] = None,
        managers: Optional[List[User]] = None,
        amounts: Optional[List[str]] = None,
        total_amount: Optional[Decimal] = None,
        state: Optional[ExpenseState] = None,
    ) -> Expense:
        service = ExpenseService(db_session)
        expense = await service.create_expense(
            actor_id=owner.id,
            line_items=[line_item(a, description=f"Item {i}", category="Travel")
                        for i, a in enumerate(amounts or ["100.00"])],
            organization_id=organization.id if organization else None,
            manager_ids=[m.id for m in managers or []],
            total_amount=total_amount,
        )
        if state is not None:
            expense.state = state
            await db_session.commit()
        return expense

    return _make
