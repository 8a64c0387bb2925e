# Overview: Atomic allocation of invoice, transfer and SKU numbers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


def _current_number(franchise_id: int, document_type: str) -> int:
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(franchise_id=franchise_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_sequence_value(*, franchise_id: int, document_type: str) -> int:
    """
    Atomically allocate the next counter value for a franchise/type.

    The increment is a single UPDATE; the first allocation inserts the row
    inside a SAVEPOINT so a concurrent first insert only loses the savepoint.
    """
    if not franchise_id:
        raise ValidationError("franchise_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.franchise_id == franchise_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    if db.session.execute(stmt).rowcount:
        return _current_number(franchise_id, document_type)

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(franchise_id=franchise_id, document_type=document_type, next_number=2))
        return 1
    except IntegrityError:
        if not db.session.execute(stmt).rowcount:
            raise
        return _current_number(franchise_id, document_type)


def next_invoice_number(*, franchise_id: int, when: datetime | None = None) -> str:
    when = when or utcnow()
    seq = next_sequence_value(franchise_id=franchise_id, document_type="INVOICE")
    return f"INV-{when:%Y%m%d}-{franchise_id:03d}-{seq:04d}"


def next_transfer_number(*, franchise_id: int) -> str:
    seq = next_sequence_value(franchise_id=franchise_id, document_type="TRANSFER")
    return f"TRF-{franchise_id:03d}-{seq:05d}"


def next_generated_sku(*, franchise_id: int, category_prefix: str, when: datetime | None = None) -> str:
    """CAT-YYMMDD-0001 style SKU, unique per franchise."""
    when = when or utcnow()
    prefix = (category_prefix or "GEN")[:3].upper()
    seq = next_sequence_value(franchise_id=franchise_id, document_type=f"SKU:{prefix}")
    return f"{prefix}-{when:%y%m%d}-{seq:04d}"
