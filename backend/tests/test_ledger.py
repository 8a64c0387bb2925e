# Overview: Pytest coverage for the inventory ledger.

"""
Inventory Ledger Tests

Every quantity change goes through apply_movement: the availability check
and the write are a single conditional UPDATE, a failed change stores
nothing, and every successful change appends a StockMovement.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from franchise_ledger.errors import InsufficientStockError, ValidationError
from franchise_ledger.models import MovementKind, Product, ProductAllocation, StockMovement
from franchise_ledger.services import catalog_service, ledger_service
from franchise_ledger.services.scope_service import resolve_scope
from franchise_ledger.time_utils import utcnow


def _movements(db_session, product_id, kind=None):
    query = db_session.query(StockMovement).filter_by(product_id=product_id)
    if kind is not None:
        query = query.filter_by(kind=kind)
    return query.order_by(StockMovement.id).all()


class TestApplyMovement:
    """Signed quantity changes against the owning franchise."""

    def test_opening_stock_is_a_purchase(self, db_session, product):
        movements = _movements(db_session, product.id)
        assert len(movements) == 1
        assert movements[0].kind == MovementKind.PURCHASE
        assert movements[0].quantity_delta == 10
        assert movements[0].balance_after == 10

    def test_decrement_and_increment(self, db_session, product, t1):
        ledger_service.apply_movement(
            product=product, franchise_id=t1.id, quantity_delta=-3, kind=MovementKind.ADJUSTMENT
        )
        movement = ledger_service.apply_movement(
            product=product, franchise_id=t1.id, quantity_delta=5, kind=MovementKind.PURCHASE
        )
        db_session.commit()

        assert product.stock_quantity == 12
        assert movement.balance_after == 12
        assert len(_movements(db_session, product.id)) == 3

    def test_overdraw_rejected_and_nothing_written(self, db_session, product, t1):
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger_service.apply_movement(
                product=product, franchise_id=t1.id, quantity_delta=-11, kind=MovementKind.ADJUSTMENT
            )

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        assert exc_info.value.to_dict()["details"] == {"available": 10, "requested": 11}
        assert ledger_service.resolve_franchise_stock(product, t1.id) == 10
        assert len(_movements(db_session, product.id)) == 1

    def test_stale_in_memory_quantity_is_not_trusted(self, db_session, product, t1):
        """A concurrent writer lowered stock; the in-memory row still says 10."""
        db_session.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(stock_quantity=1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger_service.apply_movement(
                product=product, franchise_id=t1.id, quantity_delta=-5, kind=MovementKind.SALE
            )
        assert exc_info.value.available == 1
        assert exc_info.value.requested == 5

    def test_exact_drain_to_zero(self, db_session, product, t1):
        movement = ledger_service.apply_movement(
            product=product, franchise_id=t1.id, quantity_delta=-10, kind=MovementKind.ADJUSTMENT
        )
        assert movement.balance_after == 0
        assert ledger_service.resolve_franchise_stock(product, t1.id) == 0

    @pytest.mark.parametrize("delta", [0, 1.5, "3", True])
    def test_invalid_deltas(self, db_session, product, t1, delta):
        with pytest.raises(ValidationError):
            ledger_service.apply_movement(
                product=product, franchise_id=t1.id, quantity_delta=delta, kind=MovementKind.ADJUSTMENT
            )

    def test_sale_must_decrease(self, db_session, product, t1):
        with pytest.raises(ValidationError):
            ledger_service.apply_movement(product=product, franchise_id=t1.id, quantity_delta=2, kind=MovementKind.SALE)

    def test_sale_updates_lifetime_counters(self, db_session, product, t1):
        ledger_service.apply_movement(
            product=product,
            franchise_id=t1.id,
            quantity_delta=-2,
            kind=MovementKind.SALE,
            revenue=Decimal("160"),
            profit=Decimal("60"),
        )
        db_session.commit()

        assert product.total_sold == 2
        assert product.total_revenue == Decimal("160")
        assert product.total_profit == Decimal("60")
        assert product.last_sold_at is not None


class TestAllocations:
    """Quantities held by franchises that do not own the product row."""

    def test_positive_delta_creates_allocation(self, db_session, product, t2):
        ledger_service.apply_movement(
            product=product, franchise_id=t2.id, quantity_delta=4, kind=MovementKind.TRANSFER_IN
        )
        db_session.commit()

        allocation = db_session.query(ProductAllocation).filter_by(product_id=product.id, franchise_id=t2.id).one()
        assert allocation.quantity == 4
        assert product.is_global is True
        assert ledger_service.franchise_can_sell(product, t2.id)
        assert ledger_service.get_franchise_stock_entry(product, t2.id) == {
            "franchise_id": t2.id, "quantity": 4, "is_original": False,
        }

    def test_negative_delta_without_allocation(self, db_session, product, t2):
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger_service.apply_movement(
                product=product, franchise_id=t2.id, quantity_delta=-1, kind=MovementKind.ADJUSTMENT
            )
        assert exc_info.value.available == 0
        assert db_session.query(ProductAllocation).count() == 0

    def test_allocation_overdraw(self, db_session, product, t2):
        ledger_service.apply_movement(product=product, franchise_id=t2.id, quantity_delta=2, kind=MovementKind.TRANSFER_IN)
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger_service.apply_movement(
                product=product, franchise_id=t2.id, quantity_delta=-3, kind=MovementKind.SALE
            )
        assert exc_info.value.available == 2
        assert ledger_service.resolve_franchise_stock(product, t2.id) == 2

    def test_unrelated_franchise_has_no_entry(self, db_session, product, t2):
        assert ledger_service.get_franchise_stock_entry(product, t2.id) is None
        assert ledger_service.resolve_franchise_stock(product, t2.id) == 0
        assert not ledger_service.franchise_can_sell(product, t2.id)


class TestRelocate:
    """Paired TRANSFER_OUT / TRANSFER_IN movements."""

    def test_relocate_into_allocation(self, db_session, product, t1, t2):
        out_movement, in_movement = ledger_service.relocate(
            product=product, from_franchise_id=t1.id, to_franchise_id=t2.id, quantity=6
        )
        db_session.commit()

        assert out_movement.kind == MovementKind.TRANSFER_OUT
        assert out_movement.quantity_delta == -6
        assert in_movement.kind == MovementKind.TRANSFER_IN
        assert in_movement.product_id == product.id
        assert ledger_service.resolve_franchise_stock(product, t1.id) == 4
        assert ledger_service.resolve_franchise_stock(product, t2.id) == 6

    def test_relocate_prefers_destination_owned_row(self, db_session, admin, product, t1, t2):
        own_copy, created = catalog_service.ensure_owned_copy(source=product, franchise_id=t2.id)
        assert created

        _, in_movement = ledger_service.relocate(
            product=product, from_franchise_id=t1.id, to_franchise_id=t2.id, quantity=3
        )
        db_session.commit()

        assert in_movement.product_id == own_copy.id
        assert own_copy.stock_quantity == 3
        assert db_session.query(ProductAllocation).count() == 0

    def test_relocate_overdraw_is_atomic(self, db_session, product, t1, t2):
        with pytest.raises(InsufficientStockError):
            ledger_service.relocate(product=product, from_franchise_id=t1.id, to_franchise_id=t2.id, quantity=15)

        assert ledger_service.resolve_franchise_stock(product, t1.id) == 10
        assert ledger_service.resolve_franchise_stock(product, t2.id) == 0
        assert _movements(db_session, product.id, MovementKind.TRANSFER_IN) == []
        assert _movements(db_session, product.id, MovementKind.TRANSFER_OUT) == []

    def test_same_franchise_rejected(self, db_session, product, t1):
        with pytest.raises(ValidationError):
            ledger_service.relocate(product=product, from_franchise_id=t1.id, to_franchise_id=t1.id, quantity=1)


class TestLedgerQueries:
    def test_movement_history_is_scoped(self, db_session, admin, manager_t2, product, t2_product):
        assert {m.franchise_id for m in ledger_service.list_movements(scope=resolve_scope(admin))} == {
            product.franchise_id, t2_product.franchise_id,
        }
        scoped = ledger_service.list_movements(scope=resolve_scope(manager_t2))
        assert [m.product_id for m in scoped] == [t2_product.id]

    def test_positions_and_net_deltas(self, db_session, admin, product, t1, t2):
        before = utcnow() - timedelta(days=1)
        ledger_service.relocate(product=product, from_franchise_id=t1.id, to_franchise_id=t2.id, quantity=2)
        db_session.commit()

        scope = resolve_scope(admin)
        positions = {(p.id, fid): qty for p, fid, qty in ledger_service.inventory_positions(scope)}
        assert positions == {(product.id, t1.id): 8, (product.id, t2.id): 2}

        deltas = ledger_service.net_deltas_since(scope, before, inclusive=True)
        assert deltas[(product.id, t1.id)] == 8
        assert deltas[(product.id, t2.id)] == 2
