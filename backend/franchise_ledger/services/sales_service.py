"""
Sale-creation path: invoice-level sales that decrement stock exactly once.

WHY: A completed Sale is the canonical record of its stock decrement. The
sale, its items and one SALE movement per item are written inside a single
SAVEPOINT, and stock_movements has a unique (sale_item_id, kind) key, so a
sale can never be applied to the ledger twice.

REFUND / CANCEL POLICY:
Refunds and cancellations change status and amounts only. Stock comes back
through RETURN movements only when REFUND_RESTORES_STOCK is enabled, and
then at most once per sale (guarded by sale.stock_restored).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import AccessDeniedError, ConflictError, DuplicateKeyError, NotFoundError, ValidationError
from ..extensions import db
from ..models import MovementKind, PaymentMethod, Product, Sale, SaleItem, SaleStatus, SaleType
from ..money import HUNDRED, ZERO
from ..time_utils import utcnow
from ..validation import clean_text, parse_datetime, parse_enum, parse_int, parse_money, parse_percent
from . import ledger_service
from .concurrency import run_with_retry
from .document_service import next_invoice_number
from .scope_service import CallerIdentity, apply_scope, require_franchise_access, resolve_scope

logger = logging.getLogger(__name__)


@dataclass
class LineAmounts:
    quantity: int
    unit_cost: Decimal
    unit_price: Decimal
    discount_pct: Decimal
    tax_pct: Decimal

    @property
    def gross(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def discount(self) -> Decimal:
        return self.gross * self.discount_pct / HUNDRED

    @property
    def tax(self) -> Decimal:
        return (self.gross - self.discount) * self.tax_pct / HUNDRED

    @property
    def line_total(self) -> Decimal:
        return self.gross - self.discount + self.tax

    @property
    def cost(self) -> Decimal:
        return self.unit_cost * self.quantity

    @property
    def profit(self) -> Decimal:
        return (self.unit_price - self.unit_cost) * self.quantity


def compute_sale_totals(lines: list[LineAmounts]) -> dict[str, Decimal]:
    """
    Aggregate invoice totals from line amounts, unrounded.

    grand_total = subtotal - total_discount + total_tax, and equals the sum
    of line totals.
    """
    subtotal = sum((line.gross for line in lines), ZERO)
    discount = sum((line.discount for line in lines), ZERO)
    tax = sum((line.tax for line in lines), ZERO)
    return {
        "subtotal": subtotal,
        "total_discount": discount,
        "total_tax": tax,
        "grand_total": subtotal - discount + tax,
        "total_profit": sum((line.profit for line in lines), ZERO),
        "total_cost": sum((line.cost for line in lines), ZERO),
    }


def _resolve_item_product(raw: dict, franchise_id: int, index: int) -> Product:
    product = None
    product_id = raw.get("product_id")
    if product_id not in (None, ""):
        product_id = parse_int(product_id, field=f"items[{index}].product_id", minimum=1)
        product = db.session.get(Product, product_id)
    elif raw.get("sku"):
        sku = str(raw["sku"]).strip().upper()
        product = ledger_service.find_owned_product(franchise_id, sku)
    else:
        raise ValidationError("product_id or sku is required", field=f"items[{index}].product_id")

    # Same error for missing and foreign products so ids cannot be probed
    if product is None or not ledger_service.franchise_can_sell(product, franchise_id):
        raise AccessDeniedError(
            "Product is not available to this franchise",
            {"product_id": raw.get("product_id"), "sku": raw.get("sku"), "franchise_id": franchise_id},
            field=f"items[{index}].product_id",
        )
    return product


def _prepare_lines(items: list[dict], franchise_id: int) -> list[tuple[Product, LineAmounts]]:
    if not items:
        raise ValidationError("At least one item is required", field="items")
    prepared = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", field=f"items[{index}]")
        product = _resolve_item_product(raw, franchise_id, index)
        amounts = LineAmounts(
            quantity=parse_int(raw.get("quantity"), field=f"items[{index}].quantity", minimum=1),
            unit_cost=parse_money(
                raw.get("unit_cost"), field=f"items[{index}].unit_cost", required=False,
                default=Decimal(product.buying_price or 0),
            ),
            unit_price=parse_money(
                raw.get("unit_price"), field=f"items[{index}].unit_price", required=False,
                default=Decimal(product.selling_price or 0),
            ),
            discount_pct=parse_percent(raw.get("discount"), field=f"items[{index}].discount"),
            tax_pct=parse_percent(raw.get("tax"), field=f"items[{index}].tax"),
        )
        prepared.append((product, amounts))
    return prepared


def invoice_exists(invoice_number: str) -> bool:
    return db.session.query(Sale.id).filter_by(invoice_number=invoice_number.strip().upper()).first() is not None


def create_sale(
    *,
    identity: CallerIdentity,
    franchise_id: int,
    items: list[dict],
    payment_method,
    sale_type,
    invoice_number: str | None = None,
    customer_name: str | None = None,
    customer_email: str | None = None,
    notes: str | None = None,
    sold_at=None,
    import_log_id: int | None = None,
) -> Sale:
    """
    Create a completed sale and decrement stock once per item.

    Raises AccessDeniedError for products the franchise neither owns nor
    holds an allocation of, DuplicateKeyError for a reused invoice number and
    InsufficientStockError if any item cannot be covered. On any error
    nothing is written.
    """
    require_franchise_access(identity, franchise_id, require_active=True)
    method = parse_enum(PaymentMethod, payment_method, field="payment_method")
    kind = parse_enum(SaleType, sale_type, field="sale_type")
    sold_at_dt = parse_datetime(sold_at, field="sold_at") or utcnow()

    lines = _prepare_lines(items, franchise_id)
    totals = compute_sale_totals([amounts for _, amounts in lines])

    invoice = clean_text(invoice_number, max_length=64, field="invoice_number")
    if invoice:
        invoice = invoice.upper()
        if invoice_exists(invoice):
            raise DuplicateKeyError(
                f"Invoice {invoice} already exists", {"invoice_number": invoice}, field="invoice_number"
            )

    def _op() -> Sale:
        with db.session.begin_nested():
            sale = Sale(
                invoice_number=invoice or next_invoice_number(franchise_id=franchise_id, when=sold_at_dt),
                franchise_id=franchise_id,
                payment_method=method,
                sale_type=kind,
                status=SaleStatus.COMPLETED,
                subtotal=totals["subtotal"],
                total_discount=totals["total_discount"],
                total_tax=totals["total_tax"],
                grand_total=totals["grand_total"],
                total_profit=totals["total_profit"],
                customer_name=clean_text(customer_name, max_length=255, field="customer_name"),
                customer_email=clean_text(customer_email, max_length=255, field="customer_email"),
                notes=clean_text(notes),
                created_by=identity.user_id,
                import_log_id=import_log_id,
                sold_at=sold_at_dt,
            )
            try:
                with db.session.begin_nested():
                    db.session.add(sale)
                    db.session.flush()
            except IntegrityError as exc:
                # Another writer took the same invoice number after the pre-check
                raise DuplicateKeyError(
                    f"Invoice {sale.invoice_number} already exists",
                    {"invoice_number": sale.invoice_number},
                    field="invoice_number",
                ) from exc

            for product, amounts in lines:
                item = SaleItem(
                    sale_id=sale.id,
                    product_id=product.id,
                    sku=product.sku,
                    product_name=product.name,
                    category=product.category.value,
                    quantity=amounts.quantity,
                    unit_cost=amounts.unit_cost,
                    unit_price=amounts.unit_price,
                    discount_pct=amounts.discount_pct,
                    tax_pct=amounts.tax_pct,
                    line_total=amounts.line_total,
                    profit=amounts.profit,
                )
                db.session.add(item)
                db.session.flush()

                ledger_service.apply_movement(
                    product=product,
                    franchise_id=franchise_id,
                    quantity_delta=-amounts.quantity,
                    kind=MovementKind.SALE,
                    unit_cost=amounts.unit_cost,
                    revenue=amounts.line_total,
                    profit=amounts.profit,
                    reference=sale.invoice_number,
                    sale_id=sale.id,
                    sale_item_id=item.id,
                    import_log_id=import_log_id,
                    actor_user_id=identity.user_id,
                    occurred_at=sold_at_dt,
                )
        return sale

    sale = run_with_retry(_op)
    logger.info(
        "Sale %s created for franchise %s: %d item(s), grand total %s",
        sale.invoice_number, franchise_id, len(lines), totals["grand_total"],
    )
    return sale


def get_sale(*, identity: CallerIdentity, sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        if identity.is_global:
            raise NotFoundError(f"Sale {sale_id} not found")
        raise AccessDeniedError("You do not have access to this sale", {"sale_id": sale_id})
    require_franchise_access(identity, sale.franchise_id)
    return sale


def list_sales(
    *,
    identity: CallerIdentity,
    franchise_id: int | None = None,
    status=None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[Sale]:
    scope = resolve_scope(identity, franchise_id)
    query = apply_scope(db.session.query(Sale), scope, Sale.franchise_id)
    if status is not None:
        query = query.filter(Sale.status == parse_enum(SaleStatus, status, field="status"))
    if start is not None:
        query = query.filter(Sale.sold_at >= start)
    if end is not None:
        query = query.filter(Sale.sold_at <= end)
    return query.order_by(Sale.sold_at.desc(), Sale.id.desc()).limit(limit).all()


def _restore_stock(sale: Sale, identity: CallerIdentity) -> None:
    if sale.stock_restored:
        return
    for item in sale.items:
        ledger_service.apply_movement(
            product=item.product,
            franchise_id=sale.franchise_id,
            quantity_delta=item.quantity,
            kind=MovementKind.RETURN,
            unit_cost=item.unit_cost,
            reference=sale.invoice_number,
            note=f"Stock restored for {sale.status.value} sale",
            sale_id=sale.id,
            sale_item_id=item.id,
            actor_user_id=identity.user_id,
        )
    sale.stock_restored = True


def refund_sale(
    *,
    identity: CallerIdentity,
    sale_id: int,
    amount=None,
    reason: str | None = None,
) -> Sale:
    """
    Refund part or all of a completed sale.

    amount defaults to the remaining refundable balance and may not exceed
    it. A full refund moves the sale to REFUNDED.
    """
    sale = get_sale(identity=identity, sale_id=sale_id)
    require_franchise_access(identity, sale.franchise_id, write=True)
    if sale.status != SaleStatus.COMPLETED:
        raise ConflictError(f"Cannot refund a sale in {sale.status.value} status", {"status": sale.status.value})

    remaining = Decimal(sale.grand_total) - Decimal(sale.refunded_amount or 0)
    refund = parse_money(amount, field="amount", required=False, default=remaining)
    if refund <= 0:
        raise ValidationError("Refund amount must be greater than 0", field="amount")
    if refund > remaining:
        raise ValidationError(
            "Refund amount exceeds the remaining sale balance",
            {"requested": str(refund), "remaining": str(remaining)},
            field="amount",
        )

    with db.session.begin_nested():
        sale.refunded_amount = Decimal(sale.refunded_amount or 0) + refund
        sale.refund_reason = clean_text(reason) or sale.refund_reason
        sale.refunded_at = utcnow()
        if refund == remaining:
            sale.status = SaleStatus.REFUNDED
            if current_app.config.get("REFUND_RESTORES_STOCK"):
                _restore_stock(sale, identity)
        db.session.flush()

    logger.info("Sale %s refunded %s (status %s)", sale.invoice_number, refund, sale.status.value)
    return sale


def cancel_sale(*, identity: CallerIdentity, sale_id: int, reason: str | None = None) -> Sale:
    sale = get_sale(identity=identity, sale_id=sale_id)
    require_franchise_access(identity, sale.franchise_id, write=True)
    if sale.status not in (SaleStatus.COMPLETED, SaleStatus.PENDING):
        raise ConflictError(f"Cannot cancel a sale in {sale.status.value} status", {"status": sale.status.value})
    if Decimal(sale.refunded_amount or 0) > 0:
        raise ConflictError("Cannot cancel a partially refunded sale")

    with db.session.begin_nested():
        was_completed = sale.status == SaleStatus.COMPLETED
        sale.status = SaleStatus.CANCELLED
        sale.cancelled_at = utcnow()
        sale.refund_reason = clean_text(reason) or sale.refund_reason
        if was_completed and current_app.config.get("REFUND_RESTORES_STOCK"):
            _restore_stock(sale, identity)
        db.session.flush()

    logger.info("Sale %s cancelled", sale.invoice_number)
    return sale
