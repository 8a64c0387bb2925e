from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class FranchiseStatus(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class Franchise(db.Model):
    """
    Tenant root: every product, sale, transfer and import belongs to a franchise.

    DESIGN:
    - Franchises are created administratively and never deleted
    - Only ACTIVE franchises accept stock or sales mutations
    - code is unique and stored upper-cased
    """
    __tablename__ = "franchises"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    status = db.Column(
        db.Enum(FranchiseStatus, name="franchise_status"),
        nullable=False,
        default=FranchiseStatus.ACTIVE,
        index=True,
    )

    location = db.Column(db.String(255), nullable=True)
    manager_name = db.Column(db.String(120), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)

    # Display only; the ledger is single-currency
    currency = db.Column(db.String(8), nullable=False, default="INR")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == FranchiseStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Franchise id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "status": self.status.value if self.status else None,
            "location": self.location,
            "manager_name": self.manager_name,
            "contact_email": self.contact_email,
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
