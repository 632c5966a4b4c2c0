"""Role-based visibility of inspections.

``resolve_scope`` turns who the caller is into a ``ScopePredicate``; the
predicate is compiled to SQL only at the query boundary. The union is closed
so a missing relationship can never silently widen into "no filter": an
empty id set resolves to ``DenyAll``, and the only unconstrained predicate is
``AllowAll``, granted through the ``INSPECTION_SCOPE_BYPASS`` permission.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Union

import structlog
from sqlalchemy import and_, false, true
from sqlalchemy.sql.elements import ColumnElement

from buildstate.models.inspection import Inspection
from buildstate.models.user import UserRole

logger = structlog.get_logger()


@dataclass(frozen=True)
class IdentityContext:
    """The caller plus the relationships that decide what they can see."""

    user_id: uuid.UUID
    role: UserRole
    org_id: uuid.UUID | None = None
    managed_property_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)
    owned_property_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)
    tenant_unit_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has_permission(self, permission: Any) -> bool:
        return getattr(permission, "value", permission) in self.permissions


@dataclass(frozen=True)
class AllowAll:
    """No constraint. Only granted by the scope-bypass permission."""


@dataclass(frozen=True)
class ByPropertyIds:
    ids: frozenset[uuid.UUID]


@dataclass(frozen=True)
class ByUnitIds:
    ids: frozenset[uuid.UUID]


@dataclass(frozen=True)
class ByAssignee:
    user_id: uuid.UUID


@dataclass(frozen=True)
class DenyAll:
    """Matches nothing."""


ScopePredicate = Union[AllowAll, ByPropertyIds, ByUnitIds, ByAssignee, DenyAll]

SCOPE_BYPASS_PERMISSION = "inspection:scope_bypass"


def _ids_or_deny(cls, ids: frozenset[uuid.UUID]) -> ScopePredicate:
    if not ids:
        return DenyAll()
    return cls(frozenset(ids))


def resolve_scope(identity: IdentityContext) -> ScopePredicate:
    """Resolve the inspection scope for an identity. Pure."""
    if identity.has_permission(SCOPE_BYPASS_PERMISSION):
        return AllowAll()

    if identity.role == UserRole.PROPERTY_MANAGER:
        return _ids_or_deny(ByPropertyIds, identity.managed_property_ids)
    if identity.role == UserRole.OWNER:
        return _ids_or_deny(ByPropertyIds, identity.owned_property_ids)
    if identity.role == UserRole.TENANT:
        return _ids_or_deny(ByUnitIds, identity.tenant_unit_ids)
    if identity.role == UserRole.TECHNICIAN:
        return ByAssignee(identity.user_id)

    return DenyAll()


def compile_inspection_scope(predicate: ScopePredicate) -> ColumnElement[bool]:
    """Compile a predicate into a WHERE clause over ``Inspection``."""
    if isinstance(predicate, AllowAll):
        return true()
    if isinstance(predicate, ByPropertyIds):
        if not predicate.ids:
            return false()
        return Inspection.property_id.in_(list(predicate.ids))
    if isinstance(predicate, ByUnitIds):
        if not predicate.ids:
            return false()
        return Inspection.unit_id.in_(list(predicate.ids))
    if isinstance(predicate, ByAssignee):
        return Inspection.assigned_to_id == predicate.user_id
    return false()


def inspection_filter(identity: IdentityContext, predicate: ScopePredicate | None = None) -> ColumnElement[bool]:
    """Scope clause plus the organization boundary."""
    predicate = predicate if predicate is not None else resolve_scope(identity)
    clause = compile_inspection_scope(predicate)
    if identity.org_id is not None:
        clause = and_(Inspection.org_id == identity.org_id, clause)
    return clause


def scope_allows(predicate: ScopePredicate, inspection: Inspection) -> bool:
    """In-memory counterpart of ``compile_inspection_scope``."""
    if isinstance(predicate, AllowAll):
        return True
    if isinstance(predicate, ByPropertyIds):
        return inspection.property_id in predicate.ids
    if isinstance(predicate, ByUnitIds):
        return inspection.unit_id is not None and inspection.unit_id in predicate.ids
    if isinstance(predicate, ByAssignee):
        return inspection.assigned_to_id == predicate.user_id
    return False


def is_scope_bypass(predicate: ScopePredicate) -> bool:
    return isinstance(predicate, AllowAll)
