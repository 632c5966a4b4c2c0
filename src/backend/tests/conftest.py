"""Pytest configuration and fixtures for Buildstate tests."""

import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from buildstate.main import app
from buildstate.models.base import Base
# Import all models to ensure they're registered with Base.metadata
from buildstate.models import (
    Organization, SubscriptionStatus, User, UserRole,
    Property, PropertyOwner, Unit, UnitTenant,
    Inspection, InspectionStatus, InspectionType,
    Finding, FindingSeverity,
)
from buildstate.core.deps import build_identity, get_db, get_session_factory
from buildstate.core.security import create_access_token
from buildstate.services.access_scope import IdentityContext

# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

DEFAULT_SCHEDULED_DATE = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine with shared connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with database override."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _add(db_session: AsyncSession, instance):
    db_session.add(instance)
    await db_session.commit()
    await db_session.refresh(instance)
    return instance


async def _user(db_session: AsyncSession, org: Organization, role: UserRole, name: str) -> User:
    return await _add(
        db_session,
        User(
            id=uuid.uuid4(),
            email=f"{name.lower().replace(' ', '.')}@example.com",
            full_name=name,
            role=role,
            org_id=org.id,
            is_active=True,
        ),
    )


@pytest_asyncio.fixture
async def organization(db_session: AsyncSession) -> Organization:
    """Create an organization with an active subscription."""
    return await _add(
        db_session,
        Organization(id=uuid.uuid4(), name="Palm Residences LLC", subscription_status=SubscriptionStatus.ACTIVE),
    )


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession, organization: Organization) -> User:
    return await _user(db_session, organization, UserRole.ADMIN, "Admin User")


@pytest_asyncio.fixture
async def manager_user(db_session: AsyncSession, organization: Organization) -> User:
    return await _user(db_session, organization, UserRole.PROPERTY_MANAGER, "Maya Manager")


@pytest_asyncio.fixture
async def other_manager(db_session: AsyncSession, organization: Organization) -> User:
    """A manager with no properties."""
    return await _user(db_session, organization, UserRole.PROPERTY_MANAGER, "Omar Manager")


@pytest_asyncio.fixture
async def technician_user(db_session: AsyncSession, organization: Organization) -> User:
    return await _user(db_session, organization, UserRole.TECHNICIAN, "Tariq Technician")


@pytest_asyncio.fixture
async def other_technician(db_session: AsyncSession, organization: Organization) -> User:
    return await _user(db_session, organization, UserRole.TECHNICIAN, "Ravi Technician")


@pytest_asyncio.fixture
async def test_property(db_session: AsyncSession, organization: Organization, manager_user: User) -> Property:
    """Create a property managed by ``manager_user``."""
    return await _add(
        db_session,
        Property(
            id=uuid.uuid4(),
            org_id=organization.id,
            name="Marina Heights",
            address="12 Marina Walk, Dubai",
            manager_id=manager_user.id,
        ),
    )


@pytest_asyncio.fixture
async def test_unit(db_session: AsyncSession, test_property: Property) -> Unit:
    return await _add(db_session, Unit(id=uuid.uuid4(), property_id=test_property.id, unit_number="1204"))


@pytest_asyncio.fixture
async def owner_user(db_session: AsyncSession, organization: Organization, test_property: Property) -> User:
    """An owner of ``test_property``."""
    user = await _user(db_session, organization, UserRole.OWNER, "Olivia Owner")
    await _add(db_session, PropertyOwner(id=uuid.uuid4(), property_id=test_property.id, owner_id=user.id))
    return user


@pytest_asyncio.fixture
async def tenant_user(db_session: AsyncSession, organization: Organization, test_unit: Unit) -> User:
    """A resident with an active lease on ``test_unit``."""
    user = await _user(db_session, organization, UserRole.TENANT, "Tina Tenant")
    await _add(db_session, UnitTenant(id=uuid.uuid4(), unit_id=test_unit.id, tenant_id=user.id, is_active=True))
    return user


@pytest_asyncio.fixture
async def make_inspection(
    db_session: AsyncSession,
    organization: Organization,
    test_property: Property,
) -> Callable[..., Awaitable[Inspection]]:
    """Factory for inspections on ``test_property``."""

    async def _make(**kwargs) -> Inspection:
        tags = kwargs.pop("tags", None)
        values = {
            "id": uuid.uuid4(),
            "org_id": organization.id,
            "property_id": test_property.id,
            "title": "Quarterly Inspection",
            "inspection_type": InspectionType.ROUTINE,
            "status": InspectionStatus.SCHEDULED,
            "scheduled_date": DEFAULT_SCHEDULED_DATE,
        }
        values.update(kwargs)
        inspection = Inspection(**values)
        inspection.tag_rows = []
        if tags:
            inspection.set_tags(tags)
        return await _add(db_session, inspection)

    return _make


@pytest_asyncio.fixture
async def make_finding(db_session: AsyncSession) -> Callable[..., Awaitable[Finding]]:
    """Factory for structured findings."""

    async def _make(inspection: Inspection, system: str, severity: FindingSeverity, note: str | None = None) -> Finding:
        return await _add(
            db_session,
            Finding(id=uuid.uuid4(), inspection_id=inspection.id, system=system, severity=severity, note=note),
        )

    return _make


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Bearer headers for a user."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}

    return _headers


@pytest_asyncio.fixture
async def identity_for(db_session: AsyncSession) -> Callable[[User], Awaitable[IdentityContext]]:
    """Identity context for a user, as the API would build it."""

    async def _identity(user: User) -> IdentityContext:
        return await build_identity(db_session, user)

    return _identity
