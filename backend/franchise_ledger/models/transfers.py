from __future__ import annotations

import enum

from ..extensions import db
from ..money import ZERO, money_out
from ..time_utils import to_utc_z, utcnow


class TransferStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class TransferMode(enum.Enum):
    # Destination sells the source row through an allocation
    SHARED = "shared"
    # Destination receives stock into a product row of its own
    EXCLUSIVE = "exclusive"


class Transfer(db.Model):
    """
    Inter-franchise stock transfer.

    LIFECYCLE:
    1. PENDING: created, no stock effect
    2. APPROVED: receiving side (or admin) approved
    3. IN_TRANSIT: shipped, carrier/tracking recorded
    4. COMPLETED: stock relocated in the ledger
    REJECTED / CANCELLED: terminal, reachable from any non-terminal state

    INVARIANTS:
    - quantity is fixed at creation
    - only status (and its timestamps/actors) changes afterwards
    - never deleted
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_transfers_quantity_positive"),
        db.CheckConstraint("from_franchise_id <> to_franchise_id", name="ck_transfers_distinct_franchises"),
        db.Index("ix_transfers_from_status", "from_franchise_id", "status"),
        db.Index("ix_transfers_to_status", "to_franchise_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    from_franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False)
    to_franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False)
    # Destination product row that received the stock (EXCLUSIVE / direct moves)
    destination_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_value = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)

    mode = db.Column(db.Enum(TransferMode, name="transfer_mode"), nullable=False, default=TransferMode.SHARED)
    status = db.Column(
        db.Enum(TransferStatus, name="transfer_status"),
        nullable=False,
        default=TransferStatus.PENDING,
        index=True,
    )
    # Stock-in / stock-out shortcuts are recorded as already-completed transfers
    is_direct = db.Column(db.Boolean, nullable=False, default=False)

    initiated_by = db.Column(db.String(64), nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    shipped_by = db.Column(db.String(64), nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)
    rejected_by = db.Column(db.String(64), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    expected_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)
    carrier = db.Column(db.String(120), nullable=True)
    tracking_number = db.Column(db.String(120), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", foreign_keys=[product_id])
    destination_product = db.relationship("Product", foreign_keys=[destination_product_id])
    from_franchise = db.relationship("Franchise", foreign_keys=[from_franchise_id])
    to_franchise = db.relationship("Franchise", foreign_keys=[to_franchise_id])
    history = db.relationship(
        "TransferHistory",
        back_populates="transfer",
        order_by="TransferHistory.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "transfer_number": self.transfer_number,
            "product_id": self.product_id,
            "destination_product_id": self.destination_product_id,
            "from_franchise_id": self.from_franchise_id,
            "to_franchise_id": self.to_franchise_id,
            "quantity": self.quantity,
            "unit_price": money_out(self.unit_price),
            "total_value": money_out(self.total_value),
            "mode": self.mode.value,
            "status": self.status.value,
            "is_direct": self.is_direct,
            "initiated_by": self.initiated_by,
            "approved_by": self.approved_by,
            "shipped_by": self.shipped_by,
            "completed_by": self.completed_by,
            "rejected_by": self.rejected_by,
            "cancelled_by": self.cancelled_by,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "completed_at": to_utc_z(self.completed_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "expected_delivery_at": to_utc_z(self.expected_delivery_at),
            "actual_delivery_at": to_utc_z(self.actual_delivery_at),
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "notes": self.notes,
            "reason": self.reason,
            "version_id": self.version_id,
        }
        if include_history:
            data["history"] = [entry.to_dict() for entry in self.history]
        return data


class TransferHistory(db.Model):
    """Append-only status trail for a transfer."""
    __tablename__ = "transfer_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=False, index=True)
    status = db.Column(db.Enum(TransferStatus, name="transfer_status"), nullable=False)
    note = db.Column(db.Text, nullable=True)
    actor_user_id = db.Column(db.String(64), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    transfer = db.relationship("Transfer", back_populates="history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "status": self.status.value,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
