# Overview: Product catalog operations; stock changes are delegated to the ledger.

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select

from ..errors import AccessDeniedError, DuplicateKeyError, NotFoundError, ValidationError
from ..extensions import db
from ..models import MovementKind, Product, ProductAllocation, ProductCategory, ProductStatus
from ..validation import clean_text, normalize_sku, parse_enum, parse_int, parse_money
from . import ledger_service
from .document_service import next_generated_sku
from .scope_service import CallerIdentity, AccessScope, apply_scope, require_franchise_access, resolve_scope

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "sku",
    "name",
    "category",
    "brand",
    "description",
    "buying_price",
    "selling_price",
    "minimum_stock",
    "transferable",
    "status",
}


def _sku_taken(franchise_id: int, sku: str, exclude_product_id: int | None = None) -> bool:
    query = db.session.query(Product.id).filter_by(franchise_id=franchise_id, sku=sku)
    if exclude_product_id is not None:
        query = query.filter(Product.id != exclude_product_id)
    return query.first() is not None


def create_product(
    *,
    identity: CallerIdentity,
    franchise_id: int,
    name: str,
    category,
    buying_price,
    selling_price,
    sku: str | None = None,
    stock_quantity=0,
    minimum_stock=0,
    brand: str | None = None,
    description: str | None = None,
    transferable: bool = True,
    import_log_id: int | None = None,
) -> Product:
    """
    Create a product owned by franchise_id.

    A missing SKU is generated from the category. Opening stock is posted to
    the ledger as a PURCHASE so it shows up in movement history.
    """
    require_franchise_access(identity, franchise_id, write=True, require_active=True)

    name = clean_text(name, max_length=255, field="name")
    if not name:
        raise ValidationError("name is required", field="name")
    category = parse_enum(ProductCategory, category, field="category")
    buying = parse_money(buying_price, field="buying_price")
    selling = parse_money(selling_price, field="selling_price")
    opening = parse_int(stock_quantity, field="stock_quantity", minimum=0, required=False) or 0
    minimum = parse_int(minimum_stock, field="minimum_stock", minimum=0, required=False) or 0

    sku = normalize_sku(sku) or next_generated_sku(franchise_id=franchise_id, category_prefix=category.name)
    if _sku_taken(franchise_id, sku):
        raise DuplicateKeyError(f"SKU {sku} already exists in this franchise", {"sku": sku}, field="sku")

    product = Product(
        franchise_id=franchise_id,
        original_franchise_id=franchise_id,
        sku=sku,
        name=name,
        category=category,
        brand=clean_text(brand, max_length=120, field="brand"),
        description=clean_text(description),
        buying_price=buying,
        selling_price=selling,
        stock_quantity=0,
        minimum_stock=minimum,
        transferable=bool(transferable),
        status=ProductStatus.ACTIVE,
    )
    db.session.add(product)
    db.session.flush()

    if opening:
        ledger_service.apply_movement(
            product=product,
            franchise_id=franchise_id,
            quantity_delta=opening,
            kind=MovementKind.PURCHASE,
            unit_cost=buying,
            note="Opening stock",
            import_log_id=import_log_id,
            actor_user_id=identity.user_id,
        )

    logger.info("Created product %s (%s) for franchise %s", product.id, product.sku, franchise_id)
    return product


def update_product(*, identity: CallerIdentity, product_id: int, changes: dict) -> Product:
    """Patch catalog attributes. Quantities only move through the ledger."""
    product = _load_owned_product(identity, product_id, write=True)

    unknown = set(changes) - UPDATABLE_FIELDS
    if "stock_quantity" in unknown:
        raise ValidationError("stock_quantity cannot be set directly; post a stock movement", field="stock_quantity")
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    if "sku" in changes:
        sku = normalize_sku(changes["sku"])
        if not sku:
            raise ValidationError("sku cannot be blank", field="sku")
        if _sku_taken(product.franchise_id, sku, exclude_product_id=product.id):
            raise DuplicateKeyError(f"SKU {sku} already exists in this franchise", {"sku": sku}, field="sku")
        product.sku = sku
    if "name" in changes:
        name = clean_text(changes["name"], max_length=255, field="name")
        if not name:
            raise ValidationError("name cannot be blank", field="name")
        product.name = name
    if "category" in changes:
        product.category = parse_enum(ProductCategory, changes["category"], field="category")
    if "brand" in changes:
        product.brand = clean_text(changes["brand"], max_length=120, field="brand")
    if "description" in changes:
        product.description = clean_text(changes["description"])
    if "buying_price" in changes:
        product.buying_price = parse_money(changes["buying_price"], field="buying_price")
    if "selling_price" in changes:
        product.selling_price = parse_money(changes["selling_price"], field="selling_price")
    if "minimum_stock" in changes:
        product.minimum_stock = parse_int(changes["minimum_stock"], field="minimum_stock", minimum=0)
    if "transferable" in changes:
        product.transferable = bool(changes["transferable"])
    if "status" in changes:
        product.status = parse_enum(ProductStatus, changes["status"], field="status")

    db.session.flush()
    return product


def deactivate_product(*, identity: CallerIdentity, product_id: int) -> Product:
    """Soft delete; history and allocations stay intact."""
    return update_product(identity=identity, product_id=product_id, changes={"status": ProductStatus.INACTIVE})


def adjust_stock(
    *,
    identity: CallerIdentity,
    product_id: int,
    franchise_id: int,
    quantity_delta,
    note: str | None = None,
    kind=MovementKind.ADJUSTMENT,
    unit_cost=None,
):
    """Manual restock or correction for one franchise's quantity."""
    require_franchise_access(identity, franchise_id, write=True, require_active=True)
    kind = parse_enum(MovementKind, kind, field="kind")
    if kind not in (MovementKind.ADJUSTMENT, MovementKind.PURCHASE):
        raise ValidationError("Only purchase and adjustment movements can be posted manually", field="kind")
    delta = parse_int(quantity_delta, field="quantity_delta")
    if kind == MovementKind.PURCHASE and delta <= 0:
        raise ValidationError("Purchases must increase stock", field="quantity_delta")

    product = db.session.get(Product, product_id)
    if product is None or not ledger_service.franchise_can_sell(product, franchise_id):
        raise NotFoundError(f"Product {product_id} is not stocked by franchise {franchise_id}")

    return ledger_service.apply_movement(
        product=product,
        franchise_id=franchise_id,
        quantity_delta=delta,
        kind=kind,
        unit_cost=parse_money(unit_cost, field="unit_cost", required=False),
        note=clean_text(note),
        actor_user_id=identity.user_id,
    )


def _visible_franchises(product: Product) -> set[int]:
    ids = {product.franchise_id}
    ids.update(
        fid for (fid,) in db.session.query(ProductAllocation.franchise_id).filter_by(product_id=product.id).all()
    )
    return ids


def get_product(*, identity: CallerIdentity, product_id: int) -> Product:
    """
    SECURITY: tenant-scoped callers get AccessDeniedError for both foreign
    and missing products; only global callers see NotFoundError.
    """
    product = db.session.get(Product, product_id)
    if identity.is_global:
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product
    if product is None or not (_visible_franchises(product) & identity.franchise_ids):
        raise AccessDeniedError("You do not have access to this product", {"product_id": product_id})
    return product


def _load_owned_product(identity: CallerIdentity, product_id: int, *, write: bool) -> Product:
    product = get_product(identity=identity, product_id=product_id)
    require_franchise_access(identity, product.franchise_id, write=write)
    return product


def list_products(
    *,
    identity: CallerIdentity,
    franchise_id: int | None = None,
    category=None,
    status=None,
    search: str | None = None,
    include_shared: bool = True,
) -> list[Product]:
    """Products owned by, or allocated to, franchises in scope."""
    scope = resolve_scope(identity, franchise_id)
    owned = apply_scope(db.session.query(Product), scope, Product.franchise_id)
    query = owned
    if include_shared and not scope.is_unrestricted:
        shared_ids = apply_scope(
            select(ProductAllocation.product_id), scope, ProductAllocation.franchise_id
        )
        query = db.session.query(Product).filter(
            (Product.franchise_id.in_(sorted(scope.franchise_ids))) | (Product.id.in_(shared_ids))
        )
    if category is not None:
        query = query.filter(Product.category == parse_enum(ProductCategory, category, field="category"))
    if status is not None:
        query = query.filter(Product.status == parse_enum(ProductStatus, status, field="status"))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter((Product.name.ilike(like)) | (Product.sku.ilike(like)) | (Product.brand.ilike(like)))
    return query.order_by(Product.franchise_id, Product.sku).all()


def product_stock_view(product: Product, scope: AccessScope) -> dict:
    """Product dict plus the quantity each in-scope franchise holds."""
    data = product.to_dict()
    entries = []
    if scope.allows(product.franchise_id):
        entries.append(ledger_service.get_franchise_stock_entry(product, product.franchise_id))
    for allocation in product.allocations:
        if scope.allows(allocation.franchise_id):
            entries.append(
                {"franchise_id": allocation.franchise_id, "quantity": allocation.quantity, "is_original": False}
            )
    data["stock_by_franchise"] = entries
    return data


def ensure_owned_copy(
    *,
    source: Product,
    franchise_id: int,
    buying_price: Decimal | None = None,
) -> tuple[Product, bool]:
    """
    The destination franchise's own row for source.sku, created from the
    catalog attributes with zero stock when missing.
    """
    existing = ledger_service.find_owned_product(franchise_id, source.sku)
    if existing is not None:
        return existing, False

    copy = Product(
        franchise_id=franchise_id,
        original_franchise_id=source.original_franchise_id or source.franchise_id,
        sku=source.sku,
        name=source.name,
        category=source.category,
        brand=source.brand,
        description=source.description,
        buying_price=buying_price if buying_price is not None else source.buying_price,
        selling_price=source.selling_price,
        stock_quantity=0,
        minimum_stock=source.minimum_stock,
        transferable=source.transferable,
        status=ProductStatus.ACTIVE,
    )
    db.session.add(copy)
    db.session.flush()
    logger.info("Created franchise copy %s of product %s for franchise %s", copy.id, source.id, franchise_id)
    return copy, True
