# Overview: Profit & Loss and inventory reporting; read-only over sales and the stock ledger.

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.orm import selectinload

from ..errors import ValidationError
from ..extensions import db
from ..models import MovementKind, Product, ProductStatus, Sale, SaleStatus, StockMovement
from ..money import ZERO, money_out, percent, to_decimal
from ..time_utils import month_key, to_utc_z, trailing_window, utcnow
from ..validation import parse_datetime
from . import ledger_service
from .scope_service import AccessScope, CallerIdentity, apply_scope, resolve_scope

logger = logging.getLogger(__name__)

# Movements that are the ledger side of a sale (or its reversal); the
# cross-check derives their cost instead of counting them as flows.
CONSUMPTION_KINDS = (MovementKind.SALE, MovementKind.RETURN)


def _parse_range(start, end) -> tuple[datetime, datetime]:
    start_dt = parse_datetime(start, field="start")
    end_dt = parse_datetime(end, field="end")

    if start_dt is None:
        start_dt, end_dt = trailing_window(end_dt, int(current_app.config.get("REPORT_DEFAULT_DAYS", 30)))
    elif end_dt is None:
        end_dt = utcnow()
    if start_dt > end_dt:
        raise ValidationError("start must be before end", {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt)})
    return start_dt, end_dt


def _bucket() -> dict:
    return {"revenue": ZERO, "cogs": ZERO, "units": 0, "transactions": 0}


def _row(name_key: str, name, bucket: dict) -> dict:
    profit = bucket["revenue"] - bucket["cogs"]
    return {
        name_key: name,
        "revenue": money_out(bucket["revenue"]),
        "cogs": money_out(bucket["cogs"]),
        "profit": money_out(profit),
        "margin_pct": money_out(percent(profit, bucket["revenue"])),
        "units_sold": bucket["units"],
    }


def _movement_cost(movement: StockMovement, buying_price) -> Decimal:
    if movement.unit_cost is not None:
        return to_decimal(movement.unit_cost)
    return to_decimal(buying_price, default=ZERO)


def cross_check_cogs(scope: AccessScope, start: datetime, end: datetime) -> dict:
    """
    COGS from stock history:
    beginning inventory + imported - exported - written off - ending.

    Inventory is valued at current buying price; quantity at a moment is the
    current quantity minus every delta recorded after it. Non-sale inflows are
    "imported" and non-sale outflows "exported", at their recorded unit cost
    (buying price when none was recorded).

    Stock consumed by sales that are no longer COMPLETED (refunded or
    cancelled without a stock restore) left the shelf but is not in primary
    COGS; its net cost is "written off" so an ordinary refund does not read
    as divergence.
    """
    positions = ledger_service.inventory_positions(scope)
    since_start = ledger_service.net_deltas_since(scope, start, inclusive=True)
    after_end = ledger_service.net_deltas_since(scope, end, inclusive=False)

    beginning = ZERO
    ending = ZERO
    for product, franchise_id, quantity in positions:
        key = (product.id, franchise_id)
        price = to_decimal(product.buying_price, default=ZERO)
        beginning += (quantity - since_start.get(key, 0)) * price
        ending += (quantity - after_end.get(key, 0)) * price

    in_window = apply_scope(
        db.session.query(StockMovement, Product.buying_price)
        .join(Product, StockMovement.product_id == Product.id)
        .filter(StockMovement.occurred_at >= start, StockMovement.occurred_at <= end),
        scope,
        StockMovement.franchise_id,
    )

    imported = ZERO
    exported = ZERO
    for movement, buying_price in in_window.filter(StockMovement.kind.notin_(CONSUMPTION_KINDS)).all():
        cost = _movement_cost(movement, buying_price)
        if movement.quantity_delta > 0:
            imported += movement.quantity_delta * cost
        else:
            exported += -movement.quantity_delta * cost

    written_off = ZERO
    reversed_sales = (
        in_window.join(Sale, StockMovement.sale_id == Sale.id)
        .filter(StockMovement.kind.in_(CONSUMPTION_KINDS))
        .filter(Sale.status != SaleStatus.COMPLETED)
    )
    for movement, buying_price in reversed_sales.all():
        written_off += -movement.quantity_delta * _movement_cost(movement, buying_price)

    return {
        "beginning_inventory_value": beginning,
        "imported_stock_cost": imported,
        "exported_stock_value": exported,
        "written_off_value": written_off,
        "ending_inventory_value": ending,
        "cogs": beginning + imported - exported - written_off - ending,
    }


def compute_profit_loss(
    *,
    identity: CallerIdentity,
    franchise_id: int | None = None,
    start=None,
    end=None,
    top_n: int = 10,
) -> dict:
    """
    Profit & Loss for the caller's scope over [start, end].

    Revenue and primary COGS come from completed sales; the ledger-derived
    COGS is reported next to it and a divergence beyond
    COGS_DIVERGENCE_TOLERANCE raises integrity_alert without changing any
    figure. Amounts are rounded only here, when building the output.
    """
    scope = resolve_scope(identity, franchise_id)
    start_dt, end_dt = _parse_range(start, end)

    sales = (
        apply_scope(db.session.query(Sale), scope, Sale.franchise_id)
        .options(selectinload(Sale.items))
        .filter(Sale.status == SaleStatus.COMPLETED)
        .filter(Sale.sold_at >= start_dt, Sale.sold_at <= end_dt)
        .order_by(Sale.sold_at)
        .all()
    )

    revenue = ZERO
    cogs = ZERO
    discounts = ZERO
    taxes = ZERO
    units = 0
    by_category: dict[str, dict] = defaultdict(_bucket)
    by_month: dict[str, dict] = defaultdict(_bucket)
    by_product: dict[int, dict] = {}

    for sale in sales:
        revenue += to_decimal(sale.grand_total, default=ZERO)
        discounts += to_decimal(sale.total_discount, default=ZERO)
        taxes += to_decimal(sale.total_tax, default=ZERO)
        month = by_month[month_key(sale.sold_at)]
        month["revenue"] += to_decimal(sale.grand_total, default=ZERO)
        month["transactions"] += 1
        for item in sale.items:
            item_cost = to_decimal(item.unit_cost, default=ZERO) * item.quantity
            item_revenue = to_decimal(item.line_total, default=ZERO)
            cogs += item_cost
            units += item.quantity
            month["cogs"] += item_cost
            month["units"] += item.quantity

            category = by_category[item.category]
            category["revenue"] += item_revenue
            category["cogs"] += item_cost
            category["units"] += item.quantity

            product = by_product.setdefault(
                item.product_id,
                {"sku": item.sku, "name": item.product_name, "category": item.category, **_bucket()},
            )
            product["revenue"] += item_revenue
            product["cogs"] += item_cost
            product["units"] += item.quantity

    refunds = (
        apply_scope(db.session.query(db.func.coalesce(db.func.sum(Sale.refunded_amount), 0)), scope, Sale.franchise_id)
        .filter(Sale.refunded_at >= start_dt, Sale.refunded_at <= end_dt)
        .scalar()
    )

    gross_profit = revenue - cogs
    operating_expenses = ZERO
    net_profit = gross_profit - operating_expenses

    cross = cross_check_cogs(scope, start_dt, end_dt)
    tolerance = to_decimal(current_app.config.get("COGS_DIVERGENCE_TOLERANCE", "0.01"))
    difference = cross["cogs"] - cogs
    integrity_alert = abs(difference) > tolerance
    if integrity_alert:
        logger.warning(
            "COGS divergence for scope %s %s..%s: primary=%s cross_check=%s difference=%s",
            "all" if scope.is_unrestricted else sorted(scope.franchise_ids),
            to_utc_z(start_dt), to_utc_z(end_dt), cogs, cross["cogs"], difference,
        )

    categories = sorted(
        (_row("category", name, bucket) for name, bucket in by_category.items()),
        key=lambda r: r["revenue"],
        reverse=True,
    )
    products = []
    for product_id, bucket in by_product.items():
        row = _row("product_id", product_id, bucket)
        row.update(sku=bucket["sku"], name=bucket["name"], category=bucket["category"])
        products.append(row)
    products.sort(key=lambda r: r["profit"], reverse=True)

    trend = []
    for month in sorted(by_month):
        row = _row("month", month, by_month[month])
        row["transactions"] = by_month[month]["transactions"]
        trend.append(row)

    best = max(categories, key=lambda r: r["profit"]) if categories else None
    worst = min(categories, key=lambda r: r["profit"]) if categories else None

    return {
        "period": {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt)},
        "franchise_ids": None if scope.is_unrestricted else sorted(scope.franchise_ids),
        "revenue": money_out(revenue),
        "cogs": money_out(cogs),
        "gross_profit": money_out(gross_profit),
        "operating_expenses": money_out(operating_expenses),
        "net_profit": money_out(net_profit),
        "gross_margin_pct": money_out(percent(gross_profit, revenue)),
        "net_margin_pct": money_out(percent(net_profit, revenue)),
        "total_discounts": money_out(discounts),
        "total_tax": money_out(taxes),
        "total_refunds": money_out(to_decimal(refunds, default=ZERO)),
        "cogs_reconciliation": {
            "primary_cogs": money_out(cogs),
            "cross_check_cogs": money_out(cross["cogs"]),
            "beginning_inventory_value": money_out(cross["beginning_inventory_value"]),
            "imported_stock_cost": money_out(cross["imported_stock_cost"]),
            "exported_stock_value": money_out(cross["exported_stock_value"]),
            "written_off_value": money_out(cross["written_off_value"]),
            "ending_inventory_value": money_out(cross["ending_inventory_value"]),
            "difference": money_out(difference),
            "tolerance": float(tolerance),
            "integrity_alert": integrity_alert,
        },
        "category_breakdown": categories,
        "monthly_trend": trend,
        "top_products": products[:top_n],
        "loss_products": [p for p in products if p["profit"] < 0],
        "insights": {
            "transaction_count": len(sales),
            "units_sold": units,
            "average_transaction_value": money_out(revenue / len(sales)) if sales else 0.0,
            "best_category": best["category"] if best else None,
            "worst_category": worst["category"] if worst else None,
        },
    }


def _position_row(product: Product, franchise_id: int, quantity: int) -> dict:
    return {
        "product_id": product.id,
        "sku": product.sku,
        "name": product.name,
        "category": product.category.value,
        "franchise_id": franchise_id,
        "quantity": quantity,
        "minimum_stock": product.minimum_stock or 0,
        "stock_value": money_out(quantity * to_decimal(product.buying_price, default=ZERO)),
    }


def _active_positions(scope: AccessScope) -> list[tuple[Product, int, int]]:
    return [
        (product, franchise_id, quantity)
        for product, franchise_id, quantity in ledger_service.inventory_positions(scope)
        if product.status == ProductStatus.ACTIVE
    ]


def low_stock_products(*, identity: CallerIdentity, franchise_id: int | None = None, limit: int = 50) -> list[dict]:
    """Active positions with 0 < quantity <= minimum stock, lowest first."""
    scope = resolve_scope(identity, franchise_id)
    rows = [
        _position_row(product, fid, quantity)
        for product, fid, quantity in _active_positions(scope)
        if 0 < quantity <= (product.minimum_stock or 0)
    ]
    rows.sort(key=lambda r: (r["quantity"], r["sku"]))
    return rows[:limit]


def inventory_report(
    *,
    identity: CallerIdentity,
    franchise_id: int | None = None,
    dead_stock_days: int | None = None,
) -> dict:
    """
    Stock snapshot for the caller's scope: totals, value per category and
    stock health.

    Health buckets follow the product's minimum stock: out (0), low
    (0 < qty <= min) and healthy (qty > 2 * min). Dead stock is any position
    holding units without a sale in the last dead_stock_days
    (DEAD_STOCK_DAYS by default).
    """
    scope = resolve_scope(identity, franchise_id)
    days = dead_stock_days if dead_stock_days is not None else int(current_app.config.get("DEAD_STOCK_DAYS", 90))
    if days < 1:
        raise ValidationError("dead_stock_days must be at least 1", field="dead_stock_days")
    cutoff, now = trailing_window(None, days)

    positions = _active_positions(scope)
    recently_sold = ledger_service.sold_since(scope, cutoff)

    units = 0
    stock_value = ZERO
    retail_value = ZERO
    categories: dict[str, dict] = defaultdict(lambda: {"positions": 0, "units": 0, "value": ZERO, "margins": []})
    low, out, dead = [], [], []
    healthy = 0

    for product, fid, quantity in positions:
        minimum = product.minimum_stock or 0
        value = quantity * to_decimal(product.buying_price, default=ZERO)
        units += quantity
        stock_value += value
        retail_value += quantity * to_decimal(product.selling_price, default=ZERO)

        category = categories[product.category.value]
        category["positions"] += 1
        category["units"] += quantity
        category["value"] += value
        category["margins"].append(product.profit_margin)

        if quantity == 0:
            out.append(_position_row(product, fid, quantity))
        elif quantity <= minimum:
            low.append(_position_row(product, fid, quantity))
        elif quantity > 2 * minimum:
            healthy += 1
        if quantity > 0 and (product.id, fid) not in recently_sold:
            dead.append(_position_row(product, fid, quantity))

    category_rows = [
        {
            "category": name,
            "positions": bucket["positions"],
            "units": bucket["units"],
            "stock_value": money_out(bucket["value"]),
            "average_margin_pct": money_out(sum(bucket["margins"], ZERO) / len(bucket["margins"])),
        }
        for name, bucket in categories.items()
    ]
    category_rows.sort(key=lambda r: r["stock_value"], reverse=True)
    low.sort(key=lambda r: r["quantity"])
    dead.sort(key=lambda r: r["stock_value"], reverse=True)

    return {
        "generated_at": to_utc_z(now),
        "franchise_ids": None if scope.is_unrestricted else sorted(scope.franchise_ids),
        "dead_stock_days": days,
        "totals": {
            "positions": len(positions),
            "units": units,
            "stock_value": money_out(stock_value),
            "retail_value": money_out(retail_value),
        },
        "category_breakdown": category_rows,
        "stock_health": {"healthy": healthy, "low": len(low), "out_of_stock": len(out), "dead": len(dead)},
        "low_stock": low,
        "out_of_stock": out,
        "dead_stock": dead,
    }
