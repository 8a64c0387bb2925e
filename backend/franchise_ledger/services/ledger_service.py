"""
Inventory Ledger: single source of truth for per-franchise quantities.

WHY: Sales, transfers and imports all race for the same stock. Every change
goes through apply_movement, which checks and writes the quantity in one
conditional UPDATE, so two concurrent callers can never both pass a stale
"enough stock" check. Every successful change appends a StockMovement.

WHERE A FRANCHISE'S QUANTITY LIVES:
- owning franchise: products.stock_quantity
- any other franchise: product_allocations.quantity for (product, franchise)

Functions here flush but never commit; callers own the transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStockError, ValidationError
from ..extensions import db
from ..models import MovementKind, Product, ProductAllocation, StockMovement
from ..money import ZERO
from ..time_utils import utcnow
from .concurrency import guarded_update
from .scope_service import AccessScope, apply_scope

logger = logging.getLogger(__name__)

_COUNTER_ATTRS = ["stock_quantity", "total_sold", "total_revenue", "total_profit", "last_sold_at", "is_global", "updated_at"]


def _check_delta(quantity_delta, kind: MovementKind) -> None:
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int):
        raise ValidationError("quantity_delta must be an integer", field="quantity")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must not be zero", field="quantity")
    if kind == MovementKind.SALE and quantity_delta > 0:
        raise ValidationError("sale movements must decrease stock", field="quantity")


def _owner_quantity(product_id: int) -> int:
    return db.session.execute(
        select(Product.stock_quantity).where(Product.id == product_id)
    ).scalar_one()


def _allocation_quantity(product_id: int, franchise_id: int) -> int | None:
    return db.session.execute(
        select(ProductAllocation.quantity).where(
            ProductAllocation.product_id == product_id,
            ProductAllocation.franchise_id == franchise_id,
        )
    ).scalar_one_or_none()


def _sale_counter_values(quantity_delta: int, revenue, profit, occurred_at) -> dict:
    return {
        "total_sold": Product.total_sold - quantity_delta,
        "total_revenue": Product.total_revenue + (revenue or ZERO),
        "total_profit": Product.total_profit + (profit or ZERO),
        "last_sold_at": occurred_at,
    }


def _apply_owner_delta(product, quantity_delta, kind, revenue, profit, occurred_at) -> int:
    values = {"stock_quantity": Product.stock_quantity + quantity_delta}
    if kind == MovementKind.SALE:
        values.update(_sale_counter_values(quantity_delta, revenue, profit, occurred_at))

    if not guarded_update(
        Product,
        Product.id == product.id,
        Product.stock_quantity + quantity_delta >= 0,
        **values,
    ):
        raise InsufficientStockError(_owner_quantity(product.id), -quantity_delta)
    return _owner_quantity(product.id)


def _create_allocation(product, franchise_id: int, quantity: int) -> bool:
    """Insert the first allocation row; False if a concurrent caller beat us to it."""
    try:
        with db.session.begin_nested():
            db.session.add(ProductAllocation(product_id=product.id, franchise_id=franchise_id, quantity=quantity))
    except IntegrityError:
        return False
    guarded_update(Product, Product.id == product.id, is_global=True)
    logger.info("Allocated product %s to franchise %s", product.id, franchise_id)
    return True


def _apply_allocation_delta(product, franchise_id, quantity_delta, kind, revenue, profit, occurred_at) -> int:
    def _guarded_write() -> bool:
        return guarded_update(
            ProductAllocation,
            ProductAllocation.product_id == product.id,
            ProductAllocation.franchise_id == franchise_id,
            ProductAllocation.quantity + quantity_delta >= 0,
            quantity=ProductAllocation.quantity + quantity_delta,
        )

    if not _guarded_write():
        current = _allocation_quantity(product.id, franchise_id)
        if current is not None:
            raise InsufficientStockError(current, -quantity_delta)
        if quantity_delta < 0:
            raise InsufficientStockError(0, -quantity_delta)
        # Lost the insert race: the row exists now, so retry the guarded write
        if not _create_allocation(product, franchise_id, quantity_delta) and not _guarded_write():
            raise InsufficientStockError(_allocation_quantity(product.id, franchise_id) or 0, -quantity_delta)

    if kind == MovementKind.SALE:
        guarded_update(
            Product,
            Product.id == product.id,
            **_sale_counter_values(quantity_delta, revenue, profit, occurred_at),
        )
    return _allocation_quantity(product.id, franchise_id)


def apply_movement(
    *,
    product: Product,
    franchise_id: int,
    quantity_delta: int,
    kind: MovementKind,
    note: str | None = None,
    unit_cost: Decimal | None = None,
    reference: str | None = None,
    revenue: Decimal | None = None,
    profit: Decimal | None = None,
    sale_id: int | None = None,
    sale_item_id: int | None = None,
    transfer_id: int | None = None,
    import_log_id: int | None = None,
    actor_user_id: str | None = None,
    occurred_at: datetime | None = None,
) -> StockMovement:
    """
    Apply a signed quantity change for (product, franchise) and record it.

    The check and the write are one statement: if the result would go
    negative no row matches and InsufficientStockError(available, requested)
    is raised with nothing stored. A positive delta for a franchise that
    neither owns nor holds an allocation of the product creates the
    allocation. SALE movements also bump the product's lifetime counters.
    """
    _check_delta(quantity_delta, kind)
    occurred_at = occurred_at or utcnow()

    with db.session.begin_nested():
        if product.franchise_id == franchise_id:
            balance = _apply_owner_delta(product, quantity_delta, kind, revenue, profit, occurred_at)
        else:
            balance = _apply_allocation_delta(product, franchise_id, quantity_delta, kind, revenue, profit, occurred_at)

        movement = StockMovement(
            product_id=product.id,
            franchise_id=franchise_id,
            kind=kind,
            quantity_delta=quantity_delta,
            balance_after=balance,
            unit_cost=unit_cost,
            reference=reference,
            note=note,
            sale_id=sale_id,
            sale_item_id=sale_item_id,
            transfer_id=transfer_id,
            import_log_id=import_log_id,
            actor_user_id=actor_user_id,
            occurred_at=occurred_at,
        )
        db.session.add(movement)

    db.session.expire(product, _COUNTER_ATTRS)
    if product.franchise_id != franchise_id:
        db.session.expire(product, ["allocations"])
    return movement


def find_owned_product(franchise_id: int, sku: str) -> Product | None:
    """The product row a franchise owns outright for a SKU, if any."""
    return db.session.query(Product).filter_by(franchise_id=franchise_id, sku=sku).first()


def relocate(
    *,
    product: Product,
    from_franchise_id: int,
    to_franchise_id: int,
    quantity: int,
    note: str | None = None,
    destination_product: Product | None = None,
    unit_cost: Decimal | None = None,
    transfer_id: int | None = None,
    import_log_id: int | None = None,
    actor_user_id: str | None = None,
    occurred_at: datetime | None = None,
) -> tuple[StockMovement, StockMovement]:
    """
    Move quantity between franchises as one unit.

    Decrements the source, then increments the destination's own row for
    the SKU when it owns one outright, otherwise its allocation of this row.
    Runs inside a SAVEPOINT: either both movements exist or neither does.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", field="quantity")
    if from_franchise_id == to_franchise_id:
        raise ValidationError("Source and destination franchise must differ", field="to_franchise_id")

    target = destination_product
    if target is None:
        owned = find_owned_product(to_franchise_id, product.sku)
        target = owned if owned is not None else product
    elif target.franchise_id != to_franchise_id:
        raise ValidationError("Destination product must belong to the destination franchise")

    occurred_at = occurred_at or utcnow()
    common = dict(
        note=note,
        unit_cost=unit_cost,
        transfer_id=transfer_id,
        import_log_id=import_log_id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at,
    )
    with db.session.begin_nested():
        out_movement = apply_movement(
            product=product,
            franchise_id=from_franchise_id,
            quantity_delta=-quantity,
            kind=MovementKind.TRANSFER_OUT,
            reference=f"to:{to_franchise_id}",
            **common,
        )
        in_movement = apply_movement(
            product=target,
            franchise_id=to_franchise_id,
            quantity_delta=quantity,
            kind=MovementKind.TRANSFER_IN,
            reference=f"from:{from_franchise_id}",
            **common,
        )

    logger.info(
        "Relocated %d x %s from franchise %s to %s (product %s -> %s)",
        quantity, product.sku, from_franchise_id, to_franchise_id, product.id, target.id,
    )
    return out_movement, in_movement


def resolve_franchise_stock(product: Product, franchise_id: int) -> int:
    """Quantity a franchise may sell: own stock, else its allocation, else 0."""
    if product.franchise_id == franchise_id:
        return _owner_quantity(product.id)
    return _allocation_quantity(product.id, franchise_id) or 0


def get_franchise_stock_entry(product: Product, franchise_id: int) -> dict | None:
    """Stock entry for a franchise, or None if it neither owns nor was allocated the product."""
    if product.franchise_id == franchise_id:
        return {"franchise_id": franchise_id, "quantity": _owner_quantity(product.id), "is_original": True}
    quantity = _allocation_quantity(product.id, franchise_id)
    if quantity is None:
        return None
    return {"franchise_id": franchise_id, "quantity": quantity, "is_original": False}


def franchise_can_sell(product: Product, franchise_id: int) -> bool:
    return product.franchise_id == franchise_id or _allocation_quantity(product.id, franchise_id) is not None


def list_movements(
    *,
    scope: AccessScope,
    product_id: int | None = None,
    kind: MovementKind | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    """Movement history inside scope, newest first."""
    query = apply_scope(db.session.query(StockMovement), scope, StockMovement.franchise_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if kind is not None:
        query = query.filter(StockMovement.kind == kind)
    if start is not None:
        query = query.filter(StockMovement.occurred_at >= start)
    if end is not None:
        query = query.filter(StockMovement.occurred_at <= end)
    return query.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc()).limit(limit).all()


def inventory_positions(scope: AccessScope) -> list[tuple[Product, int, int]]:
    """
    Current (product, franchise_id, quantity) positions inside scope.

    Covers owner stock and allocations, including zero quantities.
    """
    owner_query = apply_scope(db.session.query(Product), scope, Product.franchise_id)
    positions = [(p, p.franchise_id, p.stock_quantity or 0) for p in owner_query.all()]

    alloc_query = apply_scope(
        db.session.query(ProductAllocation, Product).join(Product, ProductAllocation.product_id == Product.id),
        scope,
        ProductAllocation.franchise_id,
    )
    positions.extend((p, a.franchise_id, a.quantity or 0) for a, p in alloc_query.all())
    return positions


def net_deltas_since(scope: AccessScope, since: datetime, *, inclusive: bool) -> dict[tuple[int, int], int]:
    """
    Sum of quantity_delta per (product_id, franchise_id) for movements at or
    after (inclusive) / strictly after ``since``.

    Current quantity minus this sum is the quantity at that moment.
    """
    time_filter = StockMovement.occurred_at >= since if inclusive else StockMovement.occurred_at > since
    query = apply_scope(
        db.session.query(
            StockMovement.product_id,
            StockMovement.franchise_id,
            func.coalesce(func.sum(StockMovement.quantity_delta), 0),
        ).filter(time_filter),
        scope,
        StockMovement.franchise_id,
    ).group_by(StockMovement.product_id, StockMovement.franchise_id)
    return {(pid, fid): int(total) for pid, fid, total in query.all()}


def sold_since(scope: AccessScope, since: datetime) -> set[tuple[int, int]]:
    """(product_id, franchise_id) pairs with at least one SALE movement at or after ``since``."""
    query = apply_scope(
        db.session.query(StockMovement.product_id, StockMovement.franchise_id)
        .filter(StockMovement.kind == MovementKind.SALE, StockMovement.occurred_at >= since)
        .distinct(),
        scope,
        StockMovement.franchise_id,
    )
    return {(pid, fid) for pid, fid in query.all()}
