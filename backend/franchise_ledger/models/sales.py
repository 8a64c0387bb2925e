from __future__ import annotations

import enum

from ..extensions import db
from ..money import ZERO, money_out
from ..time_utils import to_utc_z, utcnow


class PaymentMethod(enum.Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    CREDIT = "credit"


class SaleType(enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class SaleStatus(enum.Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class Sale(db.Model):
    """
    Invoice-level sale record.

    INVARIANTS:
    - grand_total = subtotal - total_discount + total_tax
    - total_profit = sum(item.profit)
    - a completed sale is the one record of its stock decrement
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_franchise_status_sold", "franchise_id", "status", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False, index=True)

    payment_method = db.Column(db.Enum(PaymentMethod, name="payment_method"), nullable=False)
    sale_type = db.Column(db.Enum(SaleType, name="sale_type"), nullable=False)
    status = db.Column(db.Enum(SaleStatus, name="sale_status"), nullable=False, default=SaleStatus.COMPLETED, index=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    total_discount = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    total_tax = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    grand_total = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    total_profit = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)

    refunded_amount = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    refund_reason = db.Column(db.Text, nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    stock_restored = db.Column(db.Boolean, nullable=False, default=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    import_log_id = db.Column(db.Integer, db.ForeignKey("import_audit_logs.id"), nullable=True, index=True)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    franchise = db.relationship("Franchise", backref=db.backref("sales", lazy=True))
    items = db.relationship("SaleItem", back_populates="sale", order_by="SaleItem.id", lazy=True)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "franchise_id": self.franchise_id,
            "payment_method": self.payment_method.value,
            "sale_type": self.sale_type.value,
            "status": self.status.value,
            "subtotal": money_out(self.subtotal),
            "total_discount": money_out(self.total_discount),
            "total_tax": money_out(self.total_tax),
            "grand_total": money_out(self.grand_total),
            "total_profit": money_out(self.total_profit),
            "refunded_amount": money_out(self.refunded_amount),
            "refund_reason": self.refund_reason,
            "refunded_at": to_utc_z(self.refunded_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "stock_restored": self.stock_restored,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "notes": self.notes,
            "created_by": self.created_by,
            "import_log_id": self.import_log_id,
            "sold_at": to_utc_z(self.sold_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line item with a snapshot of the product at sale time.

    unit_cost is captured when the sale is posted so later price edits
    never change historical COGS.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    discount_pct = db.Column(db.Numeric(5, 2), nullable=False, default=ZERO)
    tax_pct = db.Column(db.Numeric(5, 2), nullable=False, default=ZERO)

    # Amount the customer pays for the line: gross - discount + tax
    line_total = db.Column(db.Numeric(14, 2), nullable=False)
    profit = db.Column(db.Numeric(14, 2), nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "sku": self.sku,
            "product_name": self.product_name,
            "category": self.category,
            "quantity": self.quantity,
            "unit_cost": money_out(self.unit_cost),
            "unit_price": money_out(self.unit_price),
            "discount_pct": money_out(self.discount_pct),
            "tax_pct": money_out(self.tax_pct),
            "line_total": money_out(self.line_total),
            "profit": money_out(self.profit),
        }
