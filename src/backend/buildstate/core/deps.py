"""Dependency injection utilities for FastAPI."""

import uuid
from enum import Enum
from typing import Annotated, AsyncGenerator

import structlog
from structlog.contextvars import bind_contextvars
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from buildstate.core.config import settings
from buildstate.core.security import verify_token
from buildstate.models.property import Property, PropertyOwner, UnitTenant
from buildstate.models.user import User, UserRole
from buildstate.services.access_scope import IdentityContext

logger = structlog.get_logger()


class Permission(str, Enum):
    """Granular permissions for RBAC."""

    INSPECTION_READ = "inspection:read"
    INSPECTION_CREATE = "inspection:create"
    INSPECTION_UPDATE = "inspection:update"
    INSPECTION_COMPLETE = "inspection:complete"
    INSPECTION_DELETE = "inspection:delete"
    INSPECTION_AUDIT = "inspection:audit"

    # Sees every inspection regardless of relationships. Audited on use.
    INSPECTION_SCOPE_BYPASS = "inspection:scope_bypass"


# Role to permissions mapping
ROLE_PERMISSIONS: dict[UserRole, set[Permission]] = {
    UserRole.ADMIN: set(Permission),  # All permissions
    UserRole.PROPERTY_MANAGER: {
        Permission.INSPECTION_READ,
        Permission.INSPECTION_CREATE,
        Permission.INSPECTION_UPDATE,
        Permission.INSPECTION_COMPLETE,
        Permission.INSPECTION_DELETE,
        Permission.INSPECTION_AUDIT,
    },
    UserRole.TECHNICIAN: {
        Permission.INSPECTION_READ,
        Permission.INSPECTION_UPDATE,
        Permission.INSPECTION_COMPLETE,
    },
    UserRole.OWNER: {
        Permission.INSPECTION_READ,
    },
    UserRole.TENANT: {
        Permission.INSPECTION_READ,
    },
}

# Database engine and session factory
engine = create_async_engine(settings.database_url, echo=settings.debug)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for writers that need their own transaction."""
    return async_session_factory


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get current authenticated user from JWT token."""
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = verify_token(credentials.credentials)
    if payload is None:
        logger.warning("Rejected bearer token")
        raise _unauthorized("Invalid or expired token")

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise _unauthorized("Invalid token subject")

    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user",
        )
    return user


def get_user_permissions(user: User) -> set[Permission]:
    """Get all permissions for a user."""
    return ROLE_PERMISSIONS.get(user.role, set())


async def build_identity(db: AsyncSession, user: User) -> IdentityContext:
    """Load the relationship sets that scope what ``user`` can see."""
    managed: frozenset[uuid.UUID] = frozenset()
    owned: frozenset[uuid.UUID] = frozenset()
    units: frozenset[uuid.UUID] = frozenset()

    if user.role == UserRole.PROPERTY_MANAGER:
        result = await db.execute(select(Property.id).where(Property.manager_id == user.id))
        managed = frozenset(result.scalars().all())
    elif user.role == UserRole.OWNER:
        result = await db.execute(select(PropertyOwner.property_id).where(PropertyOwner.owner_id == user.id))
        owned = frozenset(result.scalars().all())
    elif user.role == UserRole.TENANT:
        result = await db.execute(
            select(UnitTenant.unit_id).where(UnitTenant.tenant_id == user.id, UnitTenant.is_active.is_(True))
        )
        units = frozenset(result.scalars().all())

    return IdentityContext(
        user_id=user.id,
        role=user.role,
        org_id=user.org_id,
        managed_property_ids=managed,
        owned_property_ids=owned,
        tenant_unit_ids=units,
        permissions=frozenset(p.value for p in get_user_permissions(user)),
    )


async def get_identity(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> IdentityContext:
    """Identity context for the authenticated caller."""
    identity = await build_identity(db, current_user)
    bind_contextvars(user_id=str(identity.user_id), role=identity.role.value)
    return identity


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
CurrentUser = Annotated[User, Depends(get_current_user)]
Identity = Annotated[IdentityContext, Depends(get_identity)]
