from __future__ import annotations

import enum

from sqlalchemy import event, inspect

from ..errors import ConflictError
from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class ImportKind(enum.Enum):
    PRODUCTS = "products"
    SALES = "sales"
    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"


class ImportStatus(enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


FINAL_IMPORT_STATUSES = {ImportStatus.COMPLETED, ImportStatus.PARTIAL, ImportStatus.FAILED}


class ImportAuditLog(db.Model):
    """
    One row per bulk reconciliation batch.

    LIFECYCLE:
    1. PROCESSING: rows being applied
    2. COMPLETED / PARTIAL / FAILED: final, immutable from here on

    errors / warnings hold at most IMPORT_MAX_ERRORS / IMPORT_MAX_WARNINGS
    entries of {row, field, message, value}; error_count / warning_count
    always hold the full totals.
    """
    __tablename__ = "import_audit_logs"
    __table_args__ = (
        db.Index("ix_import_audit_logs_franchise_kind", "franchise_id", "kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.Enum(ImportKind, name="import_kind"), nullable=False, index=True)
    status = db.Column(
        db.Enum(ImportStatus, name="import_status"),
        nullable=False,
        default=ImportStatus.PENDING,
        index=True,
    )

    file_name = db.Column(db.String(255), nullable=True)
    # None when an admin imported across franchises
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=True)
    imported_by = db.Column(db.String(64), nullable=True)

    total_rows = db.Column(db.Integer, nullable=False, default=0)
    succeeded_rows = db.Column(db.Integer, nullable=False, default=0)
    failed_rows = db.Column(db.Integer, nullable=False, default=0)
    skipped_rows = db.Column(db.Integer, nullable=False, default=0)

    errors = db.Column(db.JSON, nullable=False, default=list)
    warnings = db.Column(db.JSON, nullable=False, default=list)
    error_count = db.Column(db.Integer, nullable=False, default=0)
    warning_count = db.Column(db.Integer, nullable=False, default=0)

    failure_reason = db.Column(db.Text, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_IMPORT_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "file_name": self.file_name,
            "franchise_id": self.franchise_id,
            "imported_by": self.imported_by,
            "total_rows": self.total_rows,
            "succeeded_rows": self.succeeded_rows,
            "failed_rows": self.failed_rows,
            "skipped_rows": self.skipped_rows,
            "errors": list(self.errors or []),
            "warnings": list(self.warnings or []),
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "failure_reason": self.failure_reason,
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "duration_ms": self.duration_ms,
        }


@event.listens_for(ImportAuditLog, "before_update")
def _block_finalized_log_updates(mapper, connection, target):
    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous in FINAL_IMPORT_STATUSES:
        raise ConflictError(f"Import log {target.id} is finalized and cannot be modified")
