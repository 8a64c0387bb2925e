# Overview: Pytest coverage for retry helpers and concurrent stock writers.

"""
Concurrency Tests

run_with_retry replays one operation inside a savepoint; commit_with_retry
replays a whole unit of work when the work or its COMMIT hits a lock. Two
writers racing for the same stock on a real file database must never both
succeed.
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from franchise_ledger import create_app
from franchise_ledger.errors import ValidationError
from franchise_ledger.extensions import db
from franchise_ledger.models import Franchise, FranchiseStatus, MovementKind, Product, StockMovement
from franchise_ledger.services import catalog_service, sales_service
from franchise_ledger.services.concurrency import commit_with_retry, run_with_retry
from franchise_ledger.services.scope_service import CallerIdentity, Role


def _locked(statement="COMMIT"):
    return OperationalError(statement, {}, Exception("database is locked"))


def _create(identity, franchise, sku, stock=3):
    return catalog_service.create_product(
        identity=identity,
        franchise_id=franchise.id,
        name="Retry Widget",
        category="Other",
        buying_price="4",
        selling_price="6",
        sku=sku,
        stock_quantity=stock,
    )


class TestCommitWithRetry:
    def test_failed_commit_replays_work(self, db_session, admin, t1, monkeypatch):
        session = db.session()
        real_commit = session.commit
        calls = []

        def flaky_commit():
            calls.append(1)
            if len(calls) == 1:
                raise _locked()
            real_commit()

        monkeypatch.setattr(session, "commit", flaky_commit)

        product = commit_with_retry(lambda: _create(admin, t1, "RETRY-1"), backoff_base=0)

        assert len(calls) == 2
        assert product.id is not None
        assert db_session.query(Product).filter_by(sku="RETRY-1").count() == 1
        assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == 1

    def test_gives_up_after_last_attempt(self, db_session, admin, t1, monkeypatch):
        session = db.session()
        calls = []

        def locked_commit():
            calls.append(1)
            raise _locked()

        monkeypatch.setattr(session, "commit", locked_commit)

        with pytest.raises(OperationalError):
            commit_with_retry(lambda: _create(admin, t1, "RETRY-2"), attempts=2, backoff_base=0)

        assert len(calls) == 2
        assert db_session.query(Product).filter_by(sku="RETRY-2").count() == 0


class TestRunWithRetry:
    def test_retry_keeps_earlier_work_in_transaction(self, db_session, admin, t1):
        _create(admin, t1, "KEEP-1")
        db_session.flush()
        attempts = []

        def op():
            attempts.append(1)
            db_session.add(Franchise(name="Pop-up", code=f"TMP{len(attempts)}"))
            db_session.flush()
            if len(attempts) == 1:
                raise _locked("UPDATE")
            return len(attempts)

        assert run_with_retry(op, backoff_base=0) == 2
        db_session.commit()

        assert db_session.query(Product).filter_by(sku="KEEP-1").count() == 1
        assert {f.code for f in db_session.query(Franchise).all()} == {"T1", "TMP2"}

    def test_domain_error_is_not_retried(self, db_session, admin, t1):
        _create(admin, t1, "KEEP-2")
        db_session.flush()
        attempts = []

        def op():
            attempts.append(1)
            db_session.add(Franchise(name="Pop-up", code="TMP"))
            db_session.flush()
            raise ValidationError("bad row")

        with pytest.raises(ValidationError):
            run_with_retry(op, backoff_base=0)
        db_session.commit()

        assert len(attempts) == 1
        assert db_session.query(Product).filter_by(sku="KEEP-2").count() == 1
        assert db_session.query(Franchise).filter_by(code="TMP").count() == 0


class TestConcurrentSales:
    """Two threads, two connections, one file database."""

    def test_oversell_race_has_one_winner(self, tmp_path):
        race_app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'LOG_LEVEL': 'WARNING',
        })
        admin = CallerIdentity(user_id="admin-1", role=Role.ADMIN)

        with race_app.app_context():
            db.create_all()
            franchise = Franchise(name="Downtown Store", code="T1", status=FranchiseStatus.ACTIVE)
            db.session.add(franchise)
            db.session.commit()
            product = _create(admin, franchise, "RACE-1", stock=10)
            db.session.commit()
            franchise_id, product_id = franchise.id, product.id

        barrier = threading.Barrier(2)
        results = []

        def sell_six(invoice):
            with race_app.app_context():
                barrier.wait()
                try:
                    commit_with_retry(
                        lambda: sales_service.create_sale(
                            identity=admin,
                            franchise_id=franchise_id,
                            items=[{"product_id": product_id, "quantity": 6}],
                            payment_method="cash",
                            sale_type="offline",
                            invoice_number=invoice,
                        )
                    )
                    results.append("ok")
                except Exception as exc:  # recorded for the assertion below
                    results.append(type(exc).__name__)

        threads = [threading.Thread(target=sell_six, args=(invoice,)) for invoice in ("RACE-A", "RACE-B")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        with race_app.app_context():
            try:
                assert sorted(results) == ["InsufficientStockError", "ok"]
                assert db.session.get(Product, product_id).stock_quantity == 4
                assert db.session.query(StockMovement).filter_by(kind=MovementKind.SALE).count() == 1
            finally:
                db.session.remove()
                db.drop_all()
                db.engine.dispose()
