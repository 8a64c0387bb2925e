from __future__ import annotations

import enum
from decimal import Decimal

from ..extensions import db
from ..money import ZERO, money_out, percent
from ..time_utils import to_utc_z, utcnow


class ProductCategory(enum.Enum):
    ELECTRONICS = "Electronics"
    CLOTHING = "Clothing"
    BOOKS = "Books"
    HOME_KITCHEN = "Home & Kitchen"
    SPORTS = "Sports"
    OTHER = "Other"


class ProductStatus(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DISCONTINUED = "discontinued"


class MovementKind(enum.Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"


class Product(db.Model):
    """
    Catalog entry owned by one franchise.

    OWNERSHIP:
    - stock_quantity is the owning franchise's own sellable quantity
    - other franchises sell this row only through a ProductAllocation
    - original_franchise_id survives sharing and records the creator

    WHY no version_id: stock and lifetime counters are only ever changed by
    conditional UPDATE statements in ledger_service, never by ORM flushes.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("franchise_id", "sku", name="uq_products_franchise_sku"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_franchise_status", "franchise_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False, index=True)
    original_franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False)

    sku = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.Enum(ProductCategory, name="product_category"), nullable=False)
    brand = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=True)

    buying_price = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    selling_price = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=0)

    is_global = db.Column(db.Boolean, nullable=False, default=False)
    transferable = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(
        db.Enum(ProductStatus, name="product_status"),
        nullable=False,
        default=ProductStatus.ACTIVE,
        index=True,
    )

    # Lifetime counters, bumped by SALE movements
    total_sold = db.Column(db.Integer, nullable=False, default=0)
    total_revenue = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    total_profit = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    last_sold_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    franchise = db.relationship("Franchise", foreign_keys=[franchise_id], backref=db.backref("products", lazy=True))
    original_franchise = db.relationship("Franchise", foreign_keys=[original_franchise_id])
    allocations = db.relationship(
        "ProductAllocation",
        back_populates="product",
        order_by="ProductAllocation.id",
        lazy=True,
    )

    @property
    def profit_margin(self) -> Decimal:
        buying = Decimal(self.buying_price or 0)
        return percent(Decimal(self.selling_price or 0) - buying, buying)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} franchise_id={self.franchise_id}>"

    def to_dict(self, include_allocations: bool = False) -> dict:
        data = {
            "id": self.id,
            "franchise_id": self.franchise_id,
            "original_franchise_id": self.original_franchise_id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category.value if self.category else None,
            "brand": self.brand,
            "description": self.description,
            "buying_price": money_out(self.buying_price),
            "selling_price": money_out(self.selling_price),
            "profit_margin": money_out(self.profit_margin),
            "stock_quantity": self.stock_quantity,
            "minimum_stock": self.minimum_stock,
            "is_global": self.is_global,
            "transferable": self.transferable,
            "status": self.status.value if self.status else None,
            "total_sold": self.total_sold,
            "total_revenue": money_out(self.total_revenue),
            "total_profit": money_out(self.total_profit),
            "last_sold_at": to_utc_z(self.last_sold_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_allocations:
            data["allocations"] = [a.to_dict() for a in self.allocations]
        return data


class ProductAllocation(db.Model):
    """
    Quantity of a product row that a non-owning franchise may sell.

    Created on the first inbound shared transfer; ordered by creation.
    """
    __tablename__ = "product_allocations"
    __table_args__ = (
        db.UniqueConstraint("product_id", "franchise_id", name="uq_product_allocations_product_franchise"),
        db.CheckConstraint("quantity >= 0", name="ck_product_allocations_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product", back_populates="allocations")
    franchise = db.relationship("Franchise")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "franchise_id": self.franchise_id,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only history of every quantity change.

    INVARIANTS:
    - Rows are never updated or deleted
    - balance_after is the (product, franchise) quantity right after the change
    - A sale line produces at most one SALE movement (uq on sale_item_id, kind)
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("sale_item_id", "kind", name="uq_stock_movements_sale_item_kind"),
        db.Index("ix_stock_movements_franchise_occurred", "franchise_id", "occurred_at"),
        db.Index("ix_stock_movements_product_franchise", "product_id", "franchise_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False)

    kind = db.Column(db.Enum(MovementKind, name="movement_kind"), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)

    reference = db.Column(db.String(128), nullable=True)
    note = db.Column(db.Text, nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=True, index=True)
    import_log_id = db.Column(db.Integer, db.ForeignKey("import_audit_logs.id"), nullable=True, index=True)
    actor_user_id = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "franchise_id": self.franchise_id,
            "kind": self.kind.value,
            "quantity_delta": self.quantity_delta,
            "balance_after": self.balance_after,
            "unit_cost": money_out(self.unit_cost) if self.unit_cost is not None else None,
            "reference": self.reference,
            "note": self.note,
            "sale_id": self.sale_id,
            "sale_item_id": self.sale_item_id,
            "transfer_id": self.transfer_id,
            "import_log_id": self.import_log_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
