# Overview: Pytest coverage for inter-franchise transfers and direct stock moves.

"""
Transfer Engine Tests

Covers the approval workflow (pending -> approved -> in_transit ->
completed), terminal states, who may act on which side, and the direct
stock_in / stock_out paths.
"""

from decimal import Decimal

import pytest

from franchise_ledger.errors import AccessDeniedError, ConflictError, InsufficientStockError, ValidationError
from franchise_ledger.models import (
    Franchise,
    MovementKind,
    Product,
    ProductAllocation,
    StockMovement,
    Transfer,
    TransferHistory,
    TransferMode,
    TransferStatus,
)
from franchise_ledger.services import ledger_service, transfer_service
from franchise_ledger.services.scope_service import CallerIdentity, Role


def _initiate(identity, product, source, destination, quantity=5, **kwargs):
    return transfer_service.initiate_transfer(
        identity=identity,
        product_id=product.id,
        from_franchise_id=source.id,
        to_franchise_id=destination.id,
        quantity=quantity,
        **kwargs,
    )


class TestTransferWorkflow:
    """Requested, approved and completed transfers."""

    def test_shared_transfer_moves_stock_into_allocation(
        self, db_session, product, manager_t1, manager_t2, t1, t2
    ):
        transfer = _initiate(manager_t1, product, t1, t2, quantity=5)
        db_session.commit()
        assert transfer.status == TransferStatus.PENDING
        assert transfer.transfer_number.startswith(f"TRF-{t1.id:03d}-")
        # Requesting has no ledger effect
        assert ledger_service.resolve_franchise_stock(product, t1.id) == 10

        transfer_service.approve_transfer(identity=manager_t2, transfer_id=transfer.id)
        transfer_service.complete_transfer(identity=manager_t2, transfer_id=transfer.id)
        db_session.commit()

        assert transfer.status == TransferStatus.COMPLETED
        assert transfer.completed_by == "mgr-t2"
        assert transfer.destination_product_id == product.id
        assert product.stock_quantity == 5
        allocation = db_session.query(ProductAllocation).filter_by(product_id=product.id, franchise_id=t2.id).one()
        assert allocation.quantity == 5

        statuses = [
            h.status for h in db_session.query(TransferHistory).filter_by(transfer_id=transfer.id).order_by(TransferHistory.id)
        ]
        assert statuses == [TransferStatus.PENDING, TransferStatus.APPROVED, TransferStatus.COMPLETED]

        kinds = {
            m.kind for m in db_session.query(StockMovement).filter_by(transfer_id=transfer.id)
        }
        assert kinds == {MovementKind.TRANSFER_OUT, MovementKind.TRANSFER_IN}

    def test_exclusive_transfer_creates_destination_copy(self, db_session, admin, product, t1, t2):
        transfer = _initiate(admin, product, t1, t2, quantity=3, mode="exclusive")
        transfer_service.approve_transfer(identity=admin, transfer_id=transfer.id)
        transfer_service.ship_transfer(
            identity=admin, transfer_id=transfer.id, carrier="BlueDart", tracking_number="BD123"
        )
        transfer_service.complete_transfer(identity=admin, transfer_id=transfer.id)
        db_session.commit()

        copy = db_session.query(Product).filter_by(franchise_id=t2.id, sku=product.sku).one()
        assert transfer.mode == TransferMode.EXCLUSIVE
        assert transfer.destination_product_id == copy.id
        assert transfer.carrier == "BlueDart"
        assert copy.stock_quantity == 3
        assert copy.original_franchise_id == t1.id
        assert product.stock_quantity == 7
        assert db_session.query(ProductAllocation).count() == 0

    def test_completion_checks_stock_at_completion_time(
        self, db_session, product, manager_t1, manager_t2, t1, t2
    ):
        transfer = _initiate(manager_t1, product, t1, t2, quantity=8)
        transfer_service.approve_transfer(identity=manager_t2, transfer_id=transfer.id)
        ledger_service.apply_movement(
            product=product, franchise_id=t1.id, quantity_delta=-5, kind=MovementKind.ADJUSTMENT
        )
        db_session.commit()

        with pytest.raises(InsufficientStockError) as exc_info:
            transfer_service.complete_transfer(identity=manager_t2, transfer_id=transfer.id)
        db_session.rollback()

        assert exc_info.value.available == 5
        assert exc_info.value.requested == 8
        assert db_session.get(Transfer, transfer.id).status == TransferStatus.APPROVED
        assert ledger_service.resolve_franchise_stock(product, t1.id) == 5
        assert ledger_service.resolve_franchise_stock(product, t2.id) == 0

    def test_list_transfers_by_direction(self, db_session, product, manager_t1, manager_t2, t1, t2):
        transfer = _initiate(manager_t1, product, t1, t2)
        db_session.commit()

        assert [t.id for t in transfer_service.list_transfers(identity=manager_t2, direction="incoming")] == [transfer.id]
        assert transfer_service.list_transfers(identity=manager_t2, direction="outgoing") == []
        assert [t.id for t in transfer_service.list_transfers(identity=manager_t1)] == [transfer.id]
        with pytest.raises(ValidationError):
            transfer_service.list_transfers(identity=manager_t1, direction="sideways")


class TestTransferStateMachine:
    """Illegal transitions are conflicts and terminal states are final."""

    def test_cannot_complete_pending(self, db_session, admin, product, t1, t2):
        transfer = _initiate(admin, product, t1, t2)
        with pytest.raises(ConflictError):
            transfer_service.complete_transfer(identity=admin, transfer_id=transfer.id)

    def test_cannot_complete_twice(self, db_session, admin, product, t1, t2):
        transfer = _initiate(admin, product, t1, t2, quantity=2)
        transfer_service.approve_transfer(identity=admin, transfer_id=transfer.id)
        transfer_service.complete_transfer(identity=admin, transfer_id=transfer.id)
        db_session.commit()

        with pytest.raises(ConflictError):
            transfer_service.complete_transfer(identity=admin, transfer_id=transfer.id)
        with pytest.raises(ConflictError):
            transfer_service.reject_transfer(identity=admin, transfer_id=transfer.id)
        assert product.stock_quantity == 8

    def test_cancel_pending_releases_nothing(self, db_session, manager_t1, product, t1, t2):
        transfer = _initiate(manager_t1, product, t1, t2)
        transfer_service.cancel_transfer(identity=manager_t1, transfer_id=transfer.id, reason="Ordered by mistake")
        db_session.commit()

        assert transfer.status == TransferStatus.CANCELLED
        assert transfer.reason == "Ordered by mistake"
        assert ledger_service.resolve_franchise_stock(product, t1.id) == 10
        with pytest.raises(ConflictError):
            transfer_service.cancel_transfer(identity=manager_t1, transfer_id=transfer.id)

    def test_reject_by_destination(self, db_session, manager_t1, manager_t2, product, t1, t2):
        transfer = _initiate(manager_t1, product, t1, t2)
        transfer_service.reject_transfer(identity=manager_t2, transfer_id=transfer.id, reason="No shelf space")
        db_session.commit()
        assert transfer.status == TransferStatus.REJECTED
        assert transfer.rejected_by == "mgr-t2"

    def test_ship_requires_approval(self, db_session, admin, product, t1, t2):
        transfer = _initiate(admin, product, t1, t2)
        with pytest.raises(ConflictError):
            transfer_service.ship_transfer(identity=admin, transfer_id=transfer.id)


class TestTransferAccess:
    """Each side may only perform its own steps."""

    def test_source_cannot_approve(self, db_session, manager_t1, product, t1, t2):
        transfer = _initiate(manager_t1, product, t1, t2)
        with pytest.raises(AccessDeniedError):
            transfer_service.approve_transfer(identity=manager_t1, transfer_id=transfer.id)

    def test_source_cannot_complete(self, db_session, manager_t1, manager_t2, product, t1, t2):
        transfer = _initiate(manager_t1, product, t1, t2)
        transfer_service.approve_transfer(identity=manager_t2, transfer_id=transfer.id)
        db_session.commit()

        with pytest.raises(AccessDeniedError):
            transfer_service.complete_transfer(identity=manager_t1, transfer_id=transfer.id)
        db_session.rollback()
        assert ledger_service.resolve_franchise_stock(product, t1.id) == 10

    def test_destination_cannot_cancel(self, db_session, manager_t1, manager_t2, product, t1, t2):
        transfer = _initiate(manager_t1, product, t1, t2)
        with pytest.raises(AccessDeniedError):
            transfer_service.cancel_transfer(identity=manager_t2, transfer_id=transfer.id)

    def test_cannot_initiate_from_foreign_franchise(self, db_session, manager_t2, product, t1, t2):
        with pytest.raises(AccessDeniedError):
            _initiate(manager_t2, product, t1, t2)

    def test_sales_role_cannot_transfer(self, db_session, sales_t1, product, t1, t2):
        with pytest.raises(AccessDeniedError):
            _initiate(sales_t1, product, t1, t2)

    def test_same_franchise_rejected(self, db_session, admin, product, t1):
        with pytest.raises(ValidationError):
            _initiate(admin, product, t1, t1)

    def test_unrelated_tenant_cannot_see_transfer(self, db_session, admin, manager_t1, product, t1, t2):
        t3 = Franchise(name="Mall Store", code="T3")
        db_session.add(t3)
        db_session.commit()
        transfer = _initiate(admin, product, t1, t3)

        outsider = CallerIdentity(user_id="mgr-t2", role=Role.MANAGER, franchise_ids=frozenset({t2.id}))
        with pytest.raises(AccessDeniedError):
            transfer_service.get_transfer(identity=outsider, transfer_id=transfer.id)
        with pytest.raises(AccessDeniedError):
            transfer_service.get_transfer(identity=outsider, transfer_id=99999)
        assert transfer_service.get_transfer(identity=manager_t1, transfer_id=transfer.id).id == transfer.id


class TestDirectStockMoves:
    """stock_in / stock_out record already-completed direct transfers."""

    def test_stock_out_insufficient_leaves_stock_untouched(self, db_session, admin, product, t1, t2):
        with pytest.raises(InsufficientStockError) as exc_info:
            transfer_service.stock_out(
                identity=admin, product_id=product.id, quantity=15, from_franchise_id=t1.id, to_franchise_id=t2.id
            )

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 15
        assert ledger_service.resolve_franchise_stock(product, t1.id) == 10
        assert db_session.query(Transfer).count() == 0

    def test_stock_out_moves_into_destination_copy(self, db_session, manager_t1, product, t1, t2):
        transfer = transfer_service.stock_out(
            identity=manager_t1, product_id=product.id, quantity=4, from_franchise_id=t1.id, to_franchise_id=t2.id
        )
        db_session.commit()

        copy = db_session.get(Product, transfer.destination_product_id)
        assert transfer.is_direct
        assert transfer.status == TransferStatus.COMPLETED
        assert copy.franchise_id == t2.id
        assert copy.stock_quantity == 4
        assert product.stock_quantity == 6

    def test_stock_in_only_touches_destination(self, db_session, manager_t2, product, t1, t2):
        transfer = transfer_service.stock_in(
            identity=manager_t2,
            product_id=product.id,
            quantity=7,
            unit_cost="45",
            from_franchise_id=t1.id,
            to_franchise_id=t2.id,
        )
        db_session.commit()

        copy = db_session.get(Product, transfer.destination_product_id)
        assert copy.franchise_id == t2.id
        assert copy.stock_quantity == 7
        assert copy.buying_price == Decimal("45")
        assert product.stock_quantity == 10
        movement = db_session.query(StockMovement).filter_by(transfer_id=transfer.id).one()
        assert movement.kind == MovementKind.TRANSFER_IN
        assert movement.unit_cost == Decimal("45")

    def test_stock_in_requires_destination_access(self, db_session, manager_t1, product, t1, t2):
        with pytest.raises(AccessDeniedError):
            transfer_service.stock_in(
                identity=manager_t1,
                product_id=product.id,
                quantity=1,
                unit_cost="45",
                from_franchise_id=t1.id,
                to_franchise_id=t2.id,
            )

    def test_stock_in_requires_source_to_hold_product(self, db_session, manager_t2, product, t1, t2):
        t3 = Franchise(name="Mall Store", code="T3")
        db_session.add(t3)
        db_session.commit()

        with pytest.raises(AccessDeniedError):
            transfer_service.stock_in(
                identity=manager_t2,
                product_id=product.id,
                quantity=5,
                unit_cost="1",
                from_franchise_id=t3.id,
                to_franchise_id=t2.id,
            )
        db_session.rollback()

        assert ledger_service.find_owned_product(t2.id, "MOUSE-1") is None
        assert db_session.query(Transfer).count() == 0
        assert product.stock_quantity == 10


    def test_summary(self, db_session, admin, product, t1, t2):
        transfer_service.stock_out(
            identity=admin, product_id=product.id, quantity=4, from_franchise_id=t1.id, to_franchise_id=t2.id
        )
        _initiate(admin, product, t1, t2, quantity=1)
        db_session.commit()

        summary = transfer_service.transfer_summary(identity=admin, franchise_id=t1.id)
        assert summary["exports"] == {"count": 1, "quantity": 4, "value": 200.0}
        assert summary["imports"]["count"] == 0
        assert summary["open_transfers"] == 1
