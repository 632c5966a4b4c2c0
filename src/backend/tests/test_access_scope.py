"""Tests for role-based inspection scoping."""

import uuid

import pytest
from sqlalchemy import select

from buildstate.core.deps import Permission
from buildstate.models.inspection import Inspection
from buildstate.models.user import UserRole
from buildstate.services.access_scope import (
    AllowAll,
    ByAssignee,
    ByPropertyIds,
    ByUnitIds,
    DenyAll,
    IdentityContext,
    compile_inspection_scope,
    inspection_filter,
    is_scope_bypass,
    resolve_scope,
    scope_allows,
)


def _identity(role: UserRole, **kwargs) -> IdentityContext:
    return IdentityContext(user_id=uuid.uuid4(), role=role, org_id=uuid.uuid4(), **kwargs)


class TestResolveScope:
    """Tests for resolve_scope."""

    def test_manager_scoped_to_managed_properties(self):
        property_id = uuid.uuid4()
        identity = _identity(UserRole.PROPERTY_MANAGER, managed_property_ids=frozenset({property_id}))
        assert resolve_scope(identity) == ByPropertyIds(frozenset({property_id}))

    def test_manager_without_properties_sees_nothing(self):
        assert resolve_scope(_identity(UserRole.PROPERTY_MANAGER)) == DenyAll()

    def test_owner_without_properties_sees_nothing(self):
        assert resolve_scope(_identity(UserRole.OWNER)) == DenyAll()

    def test_tenant_scoped_to_leased_units(self):
        unit_id = uuid.uuid4()
        identity = _identity(UserRole.TENANT, tenant_unit_ids=frozenset({unit_id}))
        assert resolve_scope(identity) == ByUnitIds(frozenset({unit_id}))

    def test_tenant_without_lease_sees_nothing(self):
        assert resolve_scope(_identity(UserRole.TENANT)) == DenyAll()

    def test_technician_scoped_to_assignments(self):
        identity = _identity(UserRole.TECHNICIAN)
        assert resolve_scope(identity) == ByAssignee(identity.user_id)

    def test_bypass_requires_permission(self):
        admin = _identity(UserRole.ADMIN, permissions=frozenset({Permission.INSPECTION_SCOPE_BYPASS.value}))
        assert resolve_scope(admin) == AllowAll()
        assert is_scope_bypass(resolve_scope(admin))

        # The role alone grants nothing
        assert resolve_scope(_identity(UserRole.ADMIN)) == DenyAll()


class TestCompileScope:
    """Tests for compiling predicates to SQL."""

    def test_empty_id_set_compiles_to_false(self):
        clause = compile_inspection_scope(ByPropertyIds(frozenset()))
        assert str(clause.compile(compile_kwargs={"literal_binds": True})) in ("false", "0", "FALSE")

    def test_scope_allows_matches_predicates(self):
        property_id, unit_id, user_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        inspection = Inspection(property_id=property_id, unit_id=unit_id, assigned_to_id=user_id)

        assert scope_allows(AllowAll(), inspection)
        assert scope_allows(ByPropertyIds(frozenset({property_id})), inspection)
        assert not scope_allows(ByPropertyIds(frozenset()), inspection)
        assert scope_allows(ByUnitIds(frozenset({unit_id})), inspection)
        assert scope_allows(ByAssignee(user_id), inspection)
        assert not scope_allows(ByAssignee(uuid.uuid4()), inspection)
        assert not scope_allows(DenyAll(), inspection)


class TestScopedQueries:
    """Predicates applied to real rows."""

    async def _visible(self, db_session, identity) -> set[uuid.UUID]:
        result = await db_session.execute(select(Inspection.id).where(inspection_filter(identity)))
        return set(result.scalars().all())

    @pytest.mark.asyncio
    async def test_manager_with_no_properties_gets_zero_rows(
        self, db_session, make_inspection, other_manager, identity_for
    ):
        await make_inspection()
        await make_inspection(title="Second")

        identity = await identity_for(other_manager)

        assert identity.managed_property_ids == frozenset()
        assert await self._visible(db_session, identity) == set()

    @pytest.mark.asyncio
    async def test_manager_sees_managed_property(self, db_session, make_inspection, manager_user, identity_for):
        inspection = await make_inspection()
        identity = await identity_for(manager_user)
        assert await self._visible(db_session, identity) == {inspection.id}

    @pytest.mark.asyncio
    async def test_roles_see_their_relationships(
        self,
        db_session,
        make_inspection,
        test_unit,
        owner_user,
        tenant_user,
        technician_user,
        other_technician,
        identity_for,
    ):
        on_unit = await make_inspection(unit_id=test_unit.id, assigned_to_id=technician_user.id)
        whole_property = await make_inspection(title="Roof survey")

        assert await self._visible(db_session, await identity_for(owner_user)) == {on_unit.id, whole_property.id}
        assert await self._visible(db_session, await identity_for(tenant_user)) == {on_unit.id}
        assert await self._visible(db_session, await identity_for(technician_user)) == {on_unit.id}
        assert await self._visible(db_session, await identity_for(other_technician)) == set()

    @pytest.mark.asyncio
    async def test_admin_bypass_stays_inside_organization(self, db_session, make_inspection, admin_user, identity_for):
        inspection = await make_inspection()
        identity = await identity_for(admin_user)
        assert await self._visible(db_session, identity) == {inspection.id}

        outsider = IdentityContext(
            user_id=uuid.uuid4(),
            role=UserRole.ADMIN,
            org_id=uuid.uuid4(),
            permissions=identity.permissions,
        )
        assert await self._visible(db_session, outsider) == set()
