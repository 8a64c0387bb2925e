from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Per-franchise counter for human-readable document numbers.

    Incremented with a single UPDATE so concurrent sales never share an
    invoice number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("franchise_id", "document_type", name="uq_document_sequences_franchise_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
