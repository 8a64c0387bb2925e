from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from ..errors import AccessDeniedError, DuplicateKeyError, LedgerError, ValidationError
from ..extensions import db
from ..models import ImportAuditLog, ImportKind, MovementKind, Product
from ..validation import clean_text, normalize_sku, parse_int, parse_money
from . import catalog_service, ledger_service, sales_service, transfer_service
from .scope_service import CallerIdentity, require_franchise_access

# Spreadsheet numbering: header is row 1, first data row is row 2
FIRST_DATA_ROW = 2
BATCH_ROW = 0

_HEADER_STRIP = re.compile(r"[\s_\-]+")


def normalize_header(key: Any) -> str:
    """'Invoice No' / 'invoice_no' / 'INVOICE-NO' -> 'invoiceno'."""
    return _HEADER_STRIP.sub("", str(key or "")).lower()


def normalize_keys(raw_row: dict[str, Any]) -> dict[str, Any]:
    return {normalize_header(k): v for k, v in (raw_row or {}).items()}


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def is_empty_row(row: dict[str, Any]) -> bool:
    return all(_to_text(v) is None for v in row.values())


@dataclass
class RowIssue:
    row: int
    field: str | None
    message: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if value is not None and not isinstance(value, (str, int, float, bool, dict, list)):
            value = str(value)
        return {"row": self.row, "field": self.field, "message": self.message, "value": value}


@dataclass
class ImportContext:
    """Per-batch state shared by the schema and the import service."""

    identity: CallerIdentity
    kind: ImportKind
    log: ImportAuditLog
    default_franchise_id: int | None
    max_errors: int
    max_warnings: int
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    error_count: int = 0
    warning_count: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    created_or_updated: list[dict[str, Any]] = field(default_factory=list)

    def add_error(self, row: int, field_name: str | None, message: str, value: Any = None) -> None:
        self.error_count += 1
        if len(self.errors) < self.max_errors:
            self.errors.append(RowIssue(row, field_name, message, value).to_dict())

    def add_warning(self, row: int, field_name: str | None, message: str, value: Any = None) -> None:
        self.warning_count += 1
        if len(self.warnings) < self.max_warnings:
            self.warnings.append(RowIssue(row, field_name, message, value).to_dict())

    def record_exception(self, row: int, exc: LedgerError) -> None:
        value = exc.details.get("value") if exc.details else None
        if value is None and exc.details:
            value = {k: v for k, v in exc.details.items() if k not in ("value", "row")} or None
        self.add_error(row, exc.field, exc.message, value)

    def franchise_for(self, row: dict[str, Any], column: str = "franchiseid") -> int:
        raw = row.get(column)
        if raw in (None, ""):
            if self.default_franchise_id is None:
                raise ValidationError(f"{column} is required", field=column)
            return self.default_franchise_id
        return parse_int(raw, field=column, minimum=1)


class BaseImportSchema:
    kind: ImportKind
    required_columns: tuple[str, ...] = ()

    def missing_columns(self, headers: set[str]) -> list[str]:
        return [c for c in self.required_columns if c not in headers]

    def process(self, ctx: ImportContext, rows: list[tuple[int, dict[str, Any]]]) -> None:
        """Apply each row in its own SAVEPOINT; one bad row never aborts the batch."""
        for row_number, row in rows:
            try:
                with db.session.begin_nested():
                    outcome = self.post_row(ctx, row_number, row)
            except LedgerError as exc:
                ctx.failed += 1
                ctx.record_exception(row_number, exc)
                continue
            if outcome is None:
                ctx.skipped += 1
            else:
                ctx.succeeded += 1
                ctx.created_or_updated.append(outcome)

    def post_row(self, ctx: ImportContext, row_number: int, row: dict[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError


class ProductsSchema(BaseImportSchema):
    """
    Upsert catalog rows.

    Match by id, else by (sku, franchise). stockquantity is an absolute
    target; the difference goes through the ledger.
    """
    kind = ImportKind.PRODUCTS
    required_columns = ("sku", "name", "category", "buyingprice", "sellingprice")

    def process(self, ctx: ImportContext, rows: list[tuple[int, dict[str, Any]]]) -> None:
        self._seen: dict[tuple[int | None, str], int] = {}
        super().process(ctx, rows)

    def _check_in_file_duplicate(self, franchise_id: int, sku: str, row_number: int) -> None:
        key = (franchise_id, sku)
        first = self._seen.get(key)
        if first is not None:
            raise DuplicateKeyError(
                f"Duplicate SKU {sku} in file (first seen on row {first})", {"value": sku}, field="sku"
            )
        self._seen[key] = row_number

    def post_row(self, ctx, row_number, row):
        franchise_id = ctx.franchise_for(row)
        require_franchise_access(ctx.identity, franchise_id, write=True, require_active=True)

        sku = normalize_sku(row.get("sku"))
        if not sku:
            raise ValidationError("sku is required", field="sku")
        self._check_in_file_duplicate(franchise_id, sku, row_number)

        target_qty = parse_int(row.get("stockquantity"), field="stockquantity", minimum=0, required=False)
        attrs = {
            "sku": sku,
            "name": row.get("name"),
            "category": row.get("category"),
            "buying_price": row.get("buyingprice"),
            "selling_price": row.get("sellingprice"),
        }
        for column, attr in (("brand", "brand"), ("description", "description"), ("minimumstock", "minimum_stock")):
            if _to_text(row.get(column)) is not None:
                attrs[attr] = row.get(column)

        product = self._match(ctx, franchise_id, sku, row)
        if product is None:
            product = catalog_service.create_product(
                identity=ctx.identity,
                franchise_id=franchise_id,
                stock_quantity=target_qty or 0,
                import_log_id=ctx.log.id,
                **attrs,
            )
            return {"row": row_number, "action": "created", "product_id": product.id, "sku": product.sku}

        catalog_service.update_product(identity=ctx.identity, product_id=product.id, changes=attrs)
        if target_qty is not None:
            current = ledger_service.resolve_franchise_stock(product, franchise_id)
            if target_qty != current:
                ledger_service.apply_movement(
                    product=product,
                    franchise_id=franchise_id,
                    quantity_delta=target_qty - current,
                    kind=MovementKind.ADJUSTMENT,
                    note="Bulk import stock reconciliation",
                    import_log_id=ctx.log.id,
                    actor_user_id=ctx.identity.user_id,
                )
        return {"row": row_number, "action": "updated", "product_id": product.id, "sku": product.sku}

    def _match(self, ctx, franchise_id: int, sku: str, row: dict[str, Any]) -> Product | None:
        raw_id = row.get("id") or row.get("productid")
        if raw_id not in (None, ""):
            product_id = parse_int(raw_id, field="id", minimum=1)
            product = db.session.get(Product, product_id)
            if product is None or product.franchise_id != franchise_id:
                raise ValidationError(
                    f"Product {product_id} not found in franchise {franchise_id}", {"value": raw_id}, field="id"
                )
            clash = ledger_service.find_owned_product(franchise_id, sku)
            if clash is not None and clash.id != product.id:
                raise DuplicateKeyError(
                    f"SKU {sku} already belongs to product {clash.id}", {"value": sku}, field="sku"
                )
            return product
        return ledger_service.find_owned_product(franchise_id, sku)


class SalesSchema(BaseImportSchema):
    """
    Rows grouped by invoice number; each invoice becomes one sale.

    An invoice already in the store is a warning and its rows are skipped.
    Any bad row fails the whole invoice.
    """
    kind = ImportKind.SALES
    required_columns = (
        "invoiceno",
        "saledate",
        "franchiseid",
        "productid",
        "quantity",
        "sellingprice",
        "paymentmethod",
        "saletype",
    )

    def process(self, ctx: ImportContext, rows: list[tuple[int, dict[str, Any]]]) -> None:
        groups: dict[str, list[tuple[int, dict[str, Any]]]] = {}
        for row_number, row in rows:
            invoice = _to_text(row.get("invoiceno"))
            if invoice is None:
                ctx.failed += 1
                ctx.add_error(row_number, "invoiceno", "invoiceno is required")
                continue
            groups.setdefault(invoice.upper(), []).append((row_number, row))

        for invoice, group in groups.items():
            row_numbers = [n for n, _ in group]
            if sales_service.invoice_exists(invoice):
                ctx.skipped += len(group)
                ctx.add_warning(row_numbers[0], "invoiceno", f"Invoice {invoice} already exists; skipped", invoice)
                continue
            try:
                with db.session.begin_nested():
                    sale = self._post_invoice(ctx, invoice, group)
            except LedgerError as exc:
                ctx.failed += len(group)
                row = exc.details.get("row", row_numbers[0]) if exc.details else row_numbers[0]
                ctx.record_exception(row, exc)
                continue
            ctx.succeeded += len(group)
            ctx.created_or_updated.append(
                {"rows": row_numbers, "action": "created", "sale_id": sale.id, "invoice_number": sale.invoice_number}
            )

    def _post_invoice(self, ctx: ImportContext, invoice: str, group: list[tuple[int, dict[str, Any]]]):
        first_number, first = group[0]
        franchise_id = ctx.franchise_for(first)
        items = []
        for row_number, row in group:
            try:
                row_franchise = ctx.franchise_for(row)
                if row_franchise != franchise_id:
                    raise ValidationError(
                        "All rows of an invoice must share one franchise", {"value": row.get("franchiseid")},
                        field="franchiseid",
                    )
                items.append(self._item(ctx, row, franchise_id))
            except LedgerError as exc:
                exc.details["row"] = row_number
                raise

        try:
            return sales_service.create_sale(
                identity=ctx.identity,
                franchise_id=franchise_id,
                items=items,
                payment_method=first.get("paymentmethod"),
                sale_type=first.get("saletype"),
                invoice_number=invoice,
                customer_name=first.get("customername"),
                customer_email=first.get("customeremail"),
                notes=first.get("notes"),
                sold_at=_to_text(first.get("saledate")),
                import_log_id=ctx.log.id,
            )
        except LedgerError as exc:
            exc.details.setdefault("row", first_number)
            raise

    def _item(self, ctx: ImportContext, row: dict[str, Any], franchise_id: int) -> dict[str, Any]:
        product_id = parse_int(row.get("productid"), field="productid", minimum=1, required=False)
        sku = normalize_sku(row.get("productsku"))
        product = db.session.get(Product, product_id) if product_id else None
        if product is None and sku:
            product = ledger_service.find_owned_product(franchise_id, sku)
        if product is None or not ledger_service.franchise_can_sell(product, franchise_id):
            raise AccessDeniedError(
                "Product is not available to this franchise",
                {"value": row.get("productid") or row.get("productsku")},
                field="productid",
            )
        unit_cost = parse_money(row.get("buyingprice"), field="buyingprice", required=False)
        return {
            "product_id": product.id,
            "quantity": parse_int(row.get("quantity"), field="quantity", minimum=1),
            "unit_price": parse_money(row.get("sellingprice"), field="sellingprice"),
            # Enrich missing cost from the catalog so profit is still computed
            "unit_cost": unit_cost if unit_cost is not None else product.buying_price,
            "discount": row.get("discount"),
            "tax": row.get("tax"),
        }


class _StockMoveSchema(BaseImportSchema):
    required_columns = ("sku", "quantity", "unitcost", "fromfranchiseid", "tofranchiseid")

    def _product(self, ctx: ImportContext, row: dict[str, Any], lookup_franchise_id: int) -> Product:
        product_id = parse_int(row.get("productid"), field="productid", minimum=1, required=False)
        if product_id:
            product = db.session.get(Product, product_id)
        else:
            sku = normalize_sku(row.get("sku"))
            if not sku:
                raise ValidationError("sku is required", field="sku")
            product = ledger_service.find_owned_product(lookup_franchise_id, sku)
            if product is None:
                # A shared product the source holds through an allocation
                candidates = db.session.query(Product).filter_by(sku=sku).order_by(Product.id)
                product = next(
                    (p for p in candidates if ledger_service.franchise_can_sell(p, lookup_franchise_id)), None
                )
        if product is None:
            raise ValidationError("Product not found", {"value": row.get("productid") or row.get("sku")}, field="sku")
        return product

    def _endpoints(self, row: dict[str, Any]) -> tuple[int, int]:
        return (
            parse_int(row.get("fromfranchiseid"), field="fromfranchiseid", minimum=1),
            parse_int(row.get("tofranchiseid"), field="tofranchiseid", minimum=1),
        )


class StockInSchema(_StockMoveSchema):
    kind = ImportKind.STOCK_IN

    def post_row(self, ctx, row_number, row):
        from_id, to_id = self._endpoints(row)
        product = self._product(ctx, row, from_id)
        transfer = transfer_service.stock_in(
            identity=ctx.identity,
            product_id=product.id,
            quantity=row.get("quantity"),
            unit_cost=row.get("unitcost"),
            from_franchise_id=from_id,
            to_franchise_id=to_id,
            notes=clean_text(row.get("notes")),
            import_log_id=ctx.log.id,
        )
        return {"row": row_number, "action": "stock_in", "transfer_id": transfer.id, "sku": product.sku}


class StockOutSchema(_StockMoveSchema):
    kind = ImportKind.STOCK_OUT

    def post_row(self, ctx, row_number, row):
        from_id, to_id = self._endpoints(row)
        product = self._product(ctx, row, from_id)
        transfer = transfer_service.stock_out(
            identity=ctx.identity,
            product_id=product.id,
            quantity=row.get("quantity"),
            unit_cost=row.get("unitcost"),
            from_franchise_id=from_id,
            to_franchise_id=to_id,
            notes=clean_text(row.get("notes")),
            import_log_id=ctx.log.id,
        )
        return {"row": row_number, "action": "stock_out", "transfer_id": transfer.id, "sku": product.sku}


SCHEMAS: dict[ImportKind, type[BaseImportSchema]] = {
    ImportKind.PRODUCTS: ProductsSchema,
    ImportKind.SALES: SalesSchema,
    ImportKind.STOCK_IN: StockInSchema,
    ImportKind.STOCK_OUT: StockOutSchema,
}
