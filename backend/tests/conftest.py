"""
Pytest fixtures for franchise ledger tests.

Provides an in-memory database, two franchises, caller identities for each
role, a stocked product and the test client.
"""

import pytest

from franchise_ledger import create_app
from franchise_ledger.extensions import db
from franchise_ledger.models import Franchise, FranchiseStatus
from franchise_ledger.services import catalog_service
from franchise_ledger.services.scope_service import CallerIdentity, Role


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def t1(db_session):
    """Franchise T1 (first tenant)."""
    franchise = Franchise(name="Downtown Store", code="T1", status=FranchiseStatus.ACTIVE)
    db_session.add(franchise)
    db_session.commit()
    return franchise


@pytest.fixture(scope='function')
def t2(db_session):
    """Franchise T2 (second tenant)."""
    franchise = Franchise(name="Airport Store", code="T2", status=FranchiseStatus.ACTIVE)
    db_session.add(franchise)
    db_session.commit()
    return franchise


@pytest.fixture(scope='function')
def admin():
    return CallerIdentity(user_id="admin-1", role=Role.ADMIN)


@pytest.fixture(scope='function')
def manager_t1(t1):
    return CallerIdentity(user_id="mgr-t1", role=Role.MANAGER, franchise_ids=frozenset({t1.id}))


@pytest.fixture(scope='function')
def manager_t2(t2):
    return CallerIdentity(user_id="mgr-t2", role=Role.MANAGER, franchise_ids=frozenset({t2.id}))


@pytest.fixture(scope='function')
def sales_t1(t1):
    return CallerIdentity(user_id="sales-t1", role=Role.SALES, franchise_ids=frozenset({t1.id}))


@pytest.fixture(scope='function')
def product(db_session, admin, t1):
    """Electronics product owned by T1: 10 on hand, cost 50, price 80."""
    product = catalog_service.create_product(
        identity=admin,
        franchise_id=t1.id,
        name="Wireless Mouse",
        category="Electronics",
        buying_price="50",
        selling_price="80",
        sku="MOUSE-1",
        stock_quantity=10,
    )
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def t2_product(db_session, admin, t2):
    """Book owned by T2: 4 on hand, cost 10, price 15."""
    product = catalog_service.create_product(
        identity=admin,
        franchise_id=t2.id,
        name="Field Guide",
        category="Books",
        buying_price="10",
        selling_price="15",
        sku="BOOK-1",
        stock_quantity=4,
    )
    db_session.commit()
    return product


def auth_headers(identity):
    """Gateway headers for a CallerIdentity."""
    return {
        "X-User-Id": identity.user_id,
        "X-User-Role": identity.role.value,
        "X-Franchise-Ids": ",".join(str(f) for f in sorted(identity.franchise_ids)),
    }


@pytest.fixture(scope='function')
def headers():
    """Callable building request headers for an identity."""
    return auth_headers
