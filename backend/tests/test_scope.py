# Overview: Pytest coverage for access scope resolution.

"""
Access Scope Tests

SECURITY TESTS: Tenant-scoped callers only ever see their own franchises,
and a foreign franchise is indistinguishable from a missing one.
"""

import pytest

from franchise_ledger.errors import AccessDeniedError, DuplicateKeyError, NotFoundError, ValidationError
from franchise_ledger.models import Franchise, FranchiseStatus, Sale
from franchise_ledger.services import franchise_service
from franchise_ledger.services.scope_service import (
    CallerIdentity,
    Role,
    apply_scope,
    require_franchise_access,
    require_role,
    resolve_scope,
)


class TestResolveScope:
    """resolve_scope for global and tenant-scoped callers."""

    def test_admin_unrestricted(self, db_session, admin, t1, t2):
        scope = resolve_scope(admin)
        assert scope.is_unrestricted
        assert scope.allows(t1.id)
        assert scope.allows(t2.id)

    def test_admin_requested_franchise(self, db_session, admin, t2):
        scope = resolve_scope(admin, t2.id)
        assert scope.franchise_ids == frozenset({t2.id})
        assert scope.single() == t2.id

    def test_admin_missing_franchise_not_found(self, db_session, admin):
        with pytest.raises(NotFoundError):
            resolve_scope(admin, 99999)

    def test_manager_own_set(self, db_session, manager_t1, t1, t2):
        scope = resolve_scope(manager_t1)
        assert scope.franchise_ids == frozenset({t1.id})
        assert not scope.allows(t2.id)

    def test_manager_foreign_franchise_denied(self, db_session, manager_t1, t2):
        with pytest.raises(AccessDeniedError):
            resolve_scope(manager_t1, t2.id)

    def test_manager_missing_franchise_denied_not_404(self, db_session, manager_t1):
        """Missing and foreign franchises look the same to tenant callers."""
        with pytest.raises(AccessDeniedError):
            resolve_scope(manager_t1, 99999)

    def test_caller_without_franchises_denied(self, db_session):
        orphan = CallerIdentity(user_id="u-0", role=Role.MANAGER)
        with pytest.raises(AccessDeniedError):
            resolve_scope(orphan)


class TestRequireFranchiseAccess:
    """Single-franchise checks used before every mutation."""

    def test_returns_franchise(self, db_session, manager_t1, t1):
        franchise = require_franchise_access(manager_t1, t1.id, write=True)
        assert franchise.id == t1.id

    def test_sales_role_cannot_write(self, db_session, sales_t1, t1):
        assert require_franchise_access(sales_t1, t1.id).id == t1.id
        with pytest.raises(AccessDeniedError):
            require_franchise_access(sales_t1, t1.id, write=True)

    def test_inactive_franchise_rejects_mutations(self, db_session, admin, manager_t2, t2):
        franchise_service.set_franchise_status(identity=admin, franchise_id=t2.id, status="maintenance")
        db_session.commit()

        with pytest.raises(ValidationError):
            require_franchise_access(manager_t2, t2.id, write=True, require_active=True)
        # Reads are still allowed
        assert require_franchise_access(manager_t2, t2.id).status == FranchiseStatus.MAINTENANCE

    def test_missing_franchise_id(self, db_session, admin):
        with pytest.raises(ValidationError):
            require_franchise_access(admin, None)

    def test_require_role(self, db_session, manager_t1):
        require_role(manager_t1, Role.ADMIN, Role.MANAGER)
        with pytest.raises(AccessDeniedError):
            require_role(manager_t1, Role.ADMIN)


class TestApplyScope:
    """Query filtering by franchise columns."""

    def test_filters_to_scope(self, db_session, admin, manager_t1, t1, t2):
        scope = resolve_scope(manager_t1)
        ids = [f.id for f in apply_scope(db_session.query(Franchise), scope, Franchise.id).all()]
        assert ids == [t1.id]

        everything = apply_scope(db_session.query(Franchise), resolve_scope(admin), Franchise.id).count()
        assert everything == 2

    def test_empty_for_other_tenant(self, db_session, manager_t2, t2):
        scope = resolve_scope(manager_t2)
        assert apply_scope(db_session.query(Sale), scope, Sale.franchise_id).count() == 0


class TestCallerIdentity:
    def test_build_parses_role_and_ids(self):
        identity = CallerIdentity.build("42", "Manager", ["3", 5])
        assert identity.role == Role.MANAGER
        assert identity.franchise_ids == frozenset({3, 5})
        assert not identity.is_global

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            CallerIdentity.build("42", "owner", [])


class TestFranchiseAdministration:
    def test_create_franchise_admin_only(self, db_session, admin, manager_t1):
        franchise = franchise_service.create_franchise(identity=admin, name="Harbour", code="hb01")
        assert franchise.code == "HB01"
        assert franchise.status == FranchiseStatus.ACTIVE

        with pytest.raises(AccessDeniedError):
            franchise_service.create_franchise(identity=manager_t1, name="Rogue", code="RG")

    def test_duplicate_code(self, db_session, admin, t1):
        with pytest.raises(DuplicateKeyError):
            franchise_service.create_franchise(identity=admin, name="Again", code="t1")

    def test_list_is_scoped(self, db_session, admin, manager_t2, t1, t2):
        assert [f.id for f in franchise_service.list_franchises(identity=manager_t2)] == [t2.id]
        assert len(franchise_service.list_franchises(identity=admin)) == 2
