# backend/franchise_ledger/services/transfer_service.py
"""
Inter-franchise transfer service.

WHY: Move stock between franchises with an approval workflow and an audit
trail. Stock only moves on completion, through ledger_service.relocate.

LIFECYCLE:
1. PENDING: created by the sending side, no stock effect
2. APPROVED: approved by the receiving side (or an admin)
3. IN_TRANSIT: shipped, carrier and tracking recorded (optional step)
4. COMPLETED: stock relocated
REJECTED / CANCELLED: terminal, from any non-terminal state

Nothing is reserved before completion, so rejecting or cancelling never
has to release stock; availability is checked when the transfer completes.

stock_in / stock_out are direct moves recorded as already-completed
transfers (is_direct=True).
"""
from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import AccessDeniedError, ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Franchise, MovementKind, Product, Transfer, TransferHistory, TransferMode, TransferStatus
from ..money import ZERO, money_out
from ..time_utils import utcnow
from ..validation import clean_text, parse_datetime, parse_enum, parse_int, parse_money
from . import ledger_service
from .catalog_service import ensure_owned_copy
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_transfer_number
from .scope_service import CallerIdentity, Role, apply_scope, require_franchise_access, resolve_scope

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {TransferStatus.COMPLETED, TransferStatus.REJECTED, TransferStatus.CANCELLED}

ALLOWED_TRANSITIONS = {
    TransferStatus.PENDING: {TransferStatus.APPROVED, TransferStatus.REJECTED, TransferStatus.CANCELLED},
    TransferStatus.APPROVED: {
        TransferStatus.IN_TRANSIT,
        TransferStatus.COMPLETED,
        TransferStatus.REJECTED,
        TransferStatus.CANCELLED,
    },
    TransferStatus.IN_TRANSIT: {TransferStatus.COMPLETED, TransferStatus.REJECTED, TransferStatus.CANCELLED},
    TransferStatus.COMPLETED: set(),
    TransferStatus.REJECTED: set(),
    TransferStatus.CANCELLED: set(),
}


def _require_transition(transfer: Transfer, target: TransferStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[transfer.status]:
        raise ConflictError(
            f"Cannot move transfer {transfer.transfer_number} from {transfer.status.value} to {target.value}",
            {"status": transfer.status.value, "target": target.value},
        )


def _record_history(transfer: Transfer, status: TransferStatus, actor: str | None, note: str | None = None) -> None:
    db.session.add(TransferHistory(transfer_id=transfer.id, status=status, actor_user_id=actor, note=note))


def _require_write_role(identity: CallerIdentity) -> None:
    if identity.role not in (Role.ADMIN, Role.MANAGER):
        raise AccessDeniedError("Only managers and admins can manage transfers")


def _load_transfer(identity: CallerIdentity, transfer_id: int, *, lock: bool = False) -> Transfer:
    query = db.session.query(Transfer).filter_by(id=transfer_id)
    if lock:
        query = lock_for_update(query)
    transfer = query.first()
    if transfer is None:
        if identity.is_global:
            raise NotFoundError(f"Transfer {transfer_id} not found")
        raise AccessDeniedError("You do not have access to this transfer", {"transfer_id": transfer_id})
    if not identity.is_global and not (
        {transfer.from_franchise_id, transfer.to_franchise_id} & identity.franchise_ids
    ):
        raise AccessDeniedError("You do not have access to this transfer", {"transfer_id": transfer_id})
    return transfer


def _load_product(identity: CallerIdentity, product_id, field: str = "product_id") -> Product:
    product_id = parse_int(product_id, field=field, minimum=1)
    product = db.session.get(Product, product_id)
    if product is None:
        if identity.is_global:
            raise NotFoundError(f"Product {product_id} not found")
        raise AccessDeniedError("You do not have access to this product", {"product_id": product_id})
    return product


def _check_endpoints(from_franchise_id, to_franchise_id):
    from_id = parse_int(from_franchise_id, field="from_franchise_id", minimum=1)
    to_id = parse_int(to_franchise_id, field="to_franchise_id", minimum=1)
    if from_id == to_id:
        raise ValidationError("Cannot transfer to the same franchise", field="to_franchise_id")
    return from_id, to_id


def get_transfer(*, identity: CallerIdentity, transfer_id: int) -> Transfer:
    return _load_transfer(identity, transfer_id)


def list_transfers(
    *,
    identity: CallerIdentity,
    franchise_id: int | None = None,
    status=None,
    direction: str | None = None,
    product_id: int | None = None,
    limit: int = 100,
) -> list[Transfer]:
    """
    Transfers where a franchise in scope is the source or destination.

    direction: "incoming", "outgoing" or None for both.
    """
    scope = resolve_scope(identity, franchise_id)
    query = db.session.query(Transfer)
    if direction == "incoming":
        query = apply_scope(query, scope, Transfer.to_franchise_id)
    elif direction == "outgoing":
        query = apply_scope(query, scope, Transfer.from_franchise_id)
    elif direction in (None, "", "all"):
        query = apply_scope(query, scope, Transfer.from_franchise_id, Transfer.to_franchise_id)
    else:
        raise ValidationError("direction must be incoming, outgoing or all", field="direction")
    if status is not None:
        query = query.filter(Transfer.status == parse_enum(TransferStatus, status, field="status"))
    if product_id is not None:
        query = query.filter(Transfer.product_id == product_id)
    return query.order_by(Transfer.created_at.desc(), Transfer.id.desc()).limit(limit).all()


def initiate_transfer(
    *,
    identity: CallerIdentity,
    product_id: int,
    from_franchise_id: int,
    to_franchise_id: int,
    quantity,
    unit_price=None,
    mode=TransferMode.SHARED,
    notes: str | None = None,
    expected_delivery=None,
) -> Transfer:
    """
    Create a PENDING transfer. No ledger effect.

    The caller needs write scope over the source; both franchises must be
    active and the source must hold the product (own row or allocation).
    """
    _require_write_role(identity)
    from_id, to_id = _check_endpoints(from_franchise_id, to_franchise_id)
    qty = parse_int(quantity, field="quantity", minimum=1)
    require_franchise_access(identity, from_id, write=True, require_active=True)
    product = _load_product(identity, product_id)
    if not ledger_service.franchise_can_sell(product, from_id):
        raise AccessDeniedError(
            "Product is not held by the source franchise",
            {"product_id": product.id, "franchise_id": from_id},
        )
    if not product.transferable:
        raise ValidationError(f"Product {product.sku} is not transferable", field="product_id")

    destination = db.session.get(Franchise, to_id)
    if destination is None:
        raise NotFoundError(f"Franchise {to_id} not found")
    if not destination.is_active:
        raise ValidationError(f"Franchise {destination.code} is not active", field="to_franchise_id")

    transfer_mode = parse_enum(TransferMode, mode, field="mode")
    price = parse_money(unit_price, field="unit_price", required=False, default=Decimal(product.buying_price or 0))
    expected = parse_datetime(expected_delivery, field="expected_delivery")

    def _op() -> Transfer:
        transfer = Transfer(
            transfer_number=next_transfer_number(franchise_id=from_id),
            product_id=product.id,
            from_franchise_id=from_id,
            to_franchise_id=to_id,
            quantity=qty,
            unit_price=price,
            total_value=price * qty,
            mode=transfer_mode,
            status=TransferStatus.PENDING,
            initiated_by=identity.user_id,
            notes=clean_text(notes),
            expected_delivery_at=expected,
        )
        db.session.add(transfer)
        db.session.flush()
        _record_history(transfer, TransferStatus.PENDING, identity.user_id, "Transfer requested")
        db.session.flush()
        return transfer

    transfer = run_with_retry(_op)
    logger.info(
        "Transfer %s initiated: %d x %s from %s to %s",
        transfer.transfer_number, qty, product.sku, from_id, to_id,
    )
    return transfer


def approve_transfer(*, identity: CallerIdentity, transfer_id: int, notes: str | None = None) -> Transfer:
    """Receiving side (or an admin) approves. PENDING -> APPROVED."""
    _require_write_role(identity)

    def _op() -> Transfer:
        transfer = _load_transfer(identity, transfer_id, lock=True)
        require_franchise_access(identity, transfer.to_franchise_id, write=True)
        _require_transition(transfer, TransferStatus.APPROVED)
        transfer.status = TransferStatus.APPROVED
        transfer.approved_by = identity.user_id
        transfer.approved_at = utcnow()
        _record_history(transfer, TransferStatus.APPROVED, identity.user_id, clean_text(notes) or "Transfer approved")
        db.session.flush()
        return transfer

    transfer = run_with_retry(_op)
    logger.info("Transfer %s approved by %s", transfer.transfer_number, identity.user_id)
    return transfer


def ship_transfer(
    *,
    identity: CallerIdentity,
    transfer_id: int,
    carrier: str | None = None,
    tracking_number: str | None = None,
    expected_delivery=None,
) -> Transfer:
    """Sending side marks an approved transfer as shipped. APPROVED -> IN_TRANSIT."""
    _require_write_role(identity)

    def _op() -> Transfer:
        transfer = _load_transfer(identity, transfer_id, lock=True)
        require_franchise_access(identity, transfer.from_franchise_id, write=True)
        _require_transition(transfer, TransferStatus.IN_TRANSIT)
        transfer.status = TransferStatus.IN_TRANSIT
        transfer.shipped_by = identity.user_id
        transfer.shipped_at = utcnow()
        transfer.carrier = clean_text(carrier, max_length=120, field="carrier")
        transfer.tracking_number = clean_text(tracking_number, max_length=120, field="tracking_number")
        if expected_delivery:
            transfer.expected_delivery_at = parse_datetime(expected_delivery, field="expected_delivery")
        _record_history(transfer, TransferStatus.IN_TRANSIT, identity.user_id, "Transfer shipped")
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def complete_transfer(*, identity: CallerIdentity, transfer_id: int, notes: str | None = None) -> Transfer:
    """
    Relocate the stock and mark the transfer COMPLETED.

    If the source no longer has enough stock, InsufficientStockError
    propagates and the transfer keeps its current status.
    """
    _require_write_role(identity)

    def _op() -> Transfer:
        transfer = _load_transfer(identity, transfer_id, lock=True)
        # Receiving side confirms arrival
        require_franchise_access(identity, transfer.to_franchise_id, write=True)
        _require_transition(transfer, TransferStatus.COMPLETED)

        with db.session.begin_nested():
            destination_product = None
            if transfer.mode == TransferMode.EXCLUSIVE:
                destination_product, _ = ensure_owned_copy(
                    source=transfer.product,
                    franchise_id=transfer.to_franchise_id,
                )
            _, in_movement = ledger_service.relocate(
                product=transfer.product,
                from_franchise_id=transfer.from_franchise_id,
                to_franchise_id=transfer.to_franchise_id,
                quantity=transfer.quantity,
                destination_product=destination_product,
                unit_cost=transfer.unit_price,
                transfer_id=transfer.id,
                actor_user_id=identity.user_id,
                note=f"Transfer {transfer.transfer_number}",
            )
            now = utcnow()
            transfer.destination_product_id = in_movement.product_id
            transfer.status = TransferStatus.COMPLETED
            transfer.completed_by = identity.user_id
            transfer.completed_at = now
            transfer.actual_delivery_at = now
            _record_history(transfer, TransferStatus.COMPLETED, identity.user_id, clean_text(notes) or "Transfer completed")
            db.session.flush()
        return transfer

    try:
        transfer = run_with_retry(_op)
    except InsufficientStockError as exc:
        logger.warning(
            "Transfer %s cannot complete: available %s, requested %s",
            transfer_id, exc.available, exc.requested,
        )
        raise
    logger.info("Transfer %s completed", transfer.transfer_number)
    return transfer


def _close_transfer(identity, transfer_id, target: TransferStatus, reason: str | None) -> Transfer:
    _require_write_role(identity)

    def _op() -> Transfer:
        transfer = _load_transfer(identity, transfer_id, lock=True)
        _require_transition(transfer, target)
        now = utcnow()
        if target == TransferStatus.REJECTED:
            # Only the receiving side (or an admin) can decline
            require_franchise_access(identity, transfer.to_franchise_id, write=True)
            transfer.rejected_by = identity.user_id
            transfer.rejected_at = now
        else:
            require_franchise_access(identity, transfer.from_franchise_id, write=True)
            transfer.cancelled_by = identity.user_id
            transfer.cancelled_at = now
        transfer.status = target
        transfer.reason = clean_text(reason)
        _record_history(transfer, target, identity.user_id, transfer.reason)
        db.session.flush()
        return transfer

    transfer = run_with_retry(_op)
    logger.info("Transfer %s %s", transfer.transfer_number, target.value)
    return transfer


def reject_transfer(*, identity: CallerIdentity, transfer_id: int, reason: str | None = None) -> Transfer:
    return _close_transfer(identity, transfer_id, TransferStatus.REJECTED, reason)


def cancel_transfer(*, identity: CallerIdentity, transfer_id: int, reason: str | None = None) -> Transfer:
    return _close_transfer(identity, transfer_id, TransferStatus.CANCELLED, reason)


def _direct_transfer(
    *,
    identity: CallerIdentity,
    product: Product,
    destination_product: Product,
    from_id: int,
    to_id: int,
    qty: int,
    unit_cost: Decimal,
    notes: str | None,
    label: str,
) -> Transfer:
    now = utcnow()
    transfer = Transfer(
        transfer_number=next_transfer_number(franchise_id=from_id),
        product_id=product.id,
        destination_product_id=destination_product.id,
        from_franchise_id=from_id,
        to_franchise_id=to_id,
        quantity=qty,
        unit_price=unit_cost,
        total_value=unit_cost * qty,
        mode=TransferMode.EXCLUSIVE,
        status=TransferStatus.COMPLETED,
        is_direct=True,
        initiated_by=identity.user_id,
        approved_by=identity.user_id,
        completed_by=identity.user_id,
        approved_at=now,
        completed_at=now,
        actual_delivery_at=now,
        notes=clean_text(notes),
    )
    db.session.add(transfer)
    db.session.flush()
    _record_history(transfer, TransferStatus.COMPLETED, identity.user_id, label)
    return transfer


def stock_in(
    *,
    identity: CallerIdentity,
    product_id: int,
    quantity,
    unit_cost,
    from_franchise_id: int,
    to_franchise_id: int,
    notes: str | None = None,
    import_log_id: int | None = None,
) -> Transfer:
    """
    Receive stock directly into the destination franchise.

    Only the destination quantity changes: one TRANSFER_IN movement at the
    stated unit cost lands in the destination's own row for the SKU, which
    is created from the catalog (buying price = unit cost) when missing. The
    source franchise is recorded as provenance.
    """
    _require_write_role(identity)
    from_id, to_id = _check_endpoints(from_franchise_id, to_franchise_id)
    qty = parse_int(quantity, field="quantity", minimum=1)
    cost = parse_money(unit_cost, field="unit_cost")
    require_franchise_access(identity, to_id, write=True, require_active=True)
    product = _load_product(identity, product_id)
    if not ledger_service.franchise_can_sell(product, from_id):
        raise AccessDeniedError(
            "Product is not held by the source franchise",
            {"product_id": product.id, "franchise_id": from_id},
        )

    def _op() -> Transfer:
        with db.session.begin_nested():
            destination_product, _ = ensure_owned_copy(source=product, franchise_id=to_id, buying_price=cost)
            transfer = _direct_transfer(
                identity=identity,
                product=product,
                destination_product=destination_product,
                from_id=from_id,
                to_id=to_id,
                qty=qty,
                unit_cost=cost,
                notes=notes,
                label="Direct stock in",
            )
            ledger_service.apply_movement(
                product=destination_product,
                franchise_id=to_id,
                quantity_delta=qty,
                kind=MovementKind.TRANSFER_IN,
                unit_cost=cost,
                reference=f"from:{from_id}",
                note=f"Stock in {transfer.transfer_number}",
                transfer_id=transfer.id,
                import_log_id=import_log_id,
                actor_user_id=identity.user_id,
            )
            db.session.flush()
        return transfer

    transfer = run_with_retry(_op)
    logger.info("Stock in %s: %d x %s into franchise %s", transfer.transfer_number, qty, product.sku, to_id)
    return transfer


def stock_out(
    *,
    identity: CallerIdentity,
    product_id: int,
    quantity,
    unit_cost=None,
    from_franchise_id: int,
    to_franchise_id: int,
    notes: str | None = None,
    import_log_id: int | None = None,
) -> Transfer:
    """
    Dispatch stock directly from the source franchise to the destination.

    Fails with InsufficientStockError(available, requested) before anything
    is written when the source cannot cover the quantity; otherwise the
    stock is relocated into the destination's own row for the SKU.
    """
    _require_write_role(identity)
    from_id, to_id = _check_endpoints(from_franchise_id, to_franchise_id)
    qty = parse_int(quantity, field="quantity", minimum=1)
    require_franchise_access(identity, from_id, write=True, require_active=True)
    product = _load_product(identity, product_id)
    if not ledger_service.franchise_can_sell(product, from_id):
        raise AccessDeniedError(
            "Product is not held by the source franchise",
            {"product_id": product.id, "franchise_id": from_id},
        )
    cost = parse_money(unit_cost, field="unit_cost", required=False, default=Decimal(product.buying_price or 0))

    available = ledger_service.resolve_franchise_stock(product, from_id)
    if available < qty:
        raise InsufficientStockError(available, qty)

    def _op() -> Transfer:
        with db.session.begin_nested():
            destination_product, _ = ensure_owned_copy(source=product, franchise_id=to_id)
            transfer = _direct_transfer(
                identity=identity,
                product=product,
                destination_product=destination_product,
                from_id=from_id,
                to_id=to_id,
                qty=qty,
                unit_cost=cost,
                notes=notes,
                label="Direct stock out",
            )
            ledger_service.relocate(
                product=product,
                from_franchise_id=from_id,
                to_franchise_id=to_id,
                quantity=qty,
                destination_product=destination_product,
                unit_cost=cost,
                transfer_id=transfer.id,
                import_log_id=import_log_id,
                actor_user_id=identity.user_id,
                note=f"Stock out {transfer.transfer_number}",
            )
            db.session.flush()
        return transfer

    transfer = run_with_retry(_op)
    logger.info("Stock out %s: %d x %s from franchise %s", transfer.transfer_number, qty, product.sku, from_id)
    return transfer


def transfer_summary(*, identity: CallerIdentity, franchise_id: int) -> dict:
    """Completed imports vs exports for one franchise, with counts and values."""
    require_franchise_access(identity, franchise_id)
    completed = db.session.query(Transfer).filter(Transfer.status == TransferStatus.COMPLETED)
    incoming = completed.filter(Transfer.to_franchise_id == franchise_id).all()
    outgoing = completed.filter(Transfer.from_franchise_id == franchise_id).all()
    pending = (
        db.session.query(Transfer)
        .filter(Transfer.status.in_([TransferStatus.PENDING, TransferStatus.APPROVED, TransferStatus.IN_TRANSIT]))
        .filter((Transfer.to_franchise_id == franchise_id) | (Transfer.from_franchise_id == franchise_id))
        .count()
    )

    def _totals(rows):
        return {
            "count": len(rows),
            "quantity": sum(t.quantity for t in rows),
            "value": money_out(sum((Decimal(t.total_value) for t in rows), ZERO)),
        }

    return {
        "franchise_id": franchise_id,
        "imports": _totals(incoming),
        "exports": _totals(outgoing),
        "open_transfers": pending,
    }
