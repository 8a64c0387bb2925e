"""
Bulk Reconciliation Processor.

WHY: Franchises reconcile catalogs, sales and stock moves from spreadsheets.
Rows arrive already parsed (one dict per row); each row is applied in its
own SAVEPOINT so one bad row never aborts the batch.

FLOW:
1. Normalize header keys, drop empty rows
2. Missing required columns -> whole batch FAILED, no row touched
3. Schema applies rows (see import_schemas), collecting {row, field, message, value}
4. Final status: COMPLETED (no failures), PARTIAL, or FAILED (no successes)

Every batch writes one ImportAuditLog, immutable once finalized.
"""
from __future__ import annotations

import logging
from typing import Any

from flask import current_app

from ..errors import AccessDeniedError, NotFoundError
from ..extensions import db
from ..models import ImportAuditLog, ImportKind, ImportStatus
from ..time_utils import utcnow
from ..validation import clean_text, parse_enum
from .import_schemas import (
    BATCH_ROW,
    FIRST_DATA_ROW,
    SCHEMAS,
    ImportContext,
    is_empty_row,
    normalize_keys,
)
from .scope_service import CallerIdentity, Role, apply_scope, require_franchise_access, require_role, resolve_scope

logger = logging.getLogger(__name__)


def _final_status(ctx: ImportContext) -> ImportStatus:
    if ctx.failed == 0:
        return ImportStatus.COMPLETED
    if ctx.succeeded == 0:
        return ImportStatus.FAILED
    return ImportStatus.PARTIAL


def _finalize(ctx: ImportContext, total: int, status: ImportStatus, failure_reason: str | None = None) -> None:
    log = ctx.log
    completed = utcnow()
    log.total_rows = total
    log.succeeded_rows = ctx.succeeded
    log.failed_rows = ctx.failed
    log.skipped_rows = ctx.skipped
    log.errors = list(ctx.errors)
    log.warnings = list(ctx.warnings)
    log.error_count = ctx.error_count
    log.warning_count = ctx.warning_count
    log.failure_reason = failure_reason
    log.completed_at = completed
    log.duration_ms = int((completed - log.started_at).total_seconds() * 1000)
    log.status = status
    db.session.flush()


def _result(ctx: ImportContext, total: int) -> dict[str, Any]:
    return {
        "import_log_id": ctx.log.id,
        "kind": ctx.kind.value,
        "status": ctx.log.status.value,
        "total_rows": total,
        "succeeded_rows": ctx.succeeded,
        "failed_rows": ctx.failed,
        "skipped_rows": ctx.skipped,
        "errors": ctx.errors,
        "warnings": ctx.warnings,
        "error_count": ctx.error_count,
        "warning_count": ctx.warning_count,
        "created_or_updated": ctx.created_or_updated,
        "import_log": ctx.log.to_dict(),
    }


def import_rows(
    *,
    identity: CallerIdentity,
    kind,
    rows: list[dict[str, Any]],
    franchise_id: int | None = None,
    file_name: str | None = None,
) -> dict[str, Any]:
    """
    Apply a batch of parsed rows and return the aggregate result.

    franchise_id is the default tenant for rows without a franchise column;
    tenant-scoped callers must have access to it. Per-row failures are
    collected, never raised.
    """
    if isinstance(kind, str):
        kind = kind.replace("-", "_")
    kind = parse_enum(ImportKind, kind, field="kind")
    require_role(identity, Role.ADMIN, Role.MANAGER)
    if franchise_id is not None:
        require_franchise_access(identity, franchise_id, write=True)
    elif not identity.is_global and len(identity.franchise_ids) == 1:
        franchise_id = next(iter(identity.franchise_ids))

    log = ImportAuditLog(
        kind=kind,
        status=ImportStatus.PROCESSING,
        file_name=clean_text(file_name, max_length=255, field="file_name"),
        franchise_id=franchise_id,
        imported_by=identity.user_id,
        started_at=utcnow(),
    )
    db.session.add(log)
    db.session.flush()

    ctx = ImportContext(
        identity=identity,
        kind=kind,
        log=log,
        default_franchise_id=franchise_id,
        max_errors=current_app.config.get("IMPORT_MAX_ERRORS", 50),
        max_warnings=current_app.config.get("IMPORT_MAX_WARNINGS", 20),
    )
    schema = SCHEMAS[kind]()

    normalized: list[tuple[int, dict[str, Any]]] = []
    headers: set[str] = set()
    for index, raw in enumerate(rows or []):
        row = normalize_keys(raw)
        headers.update(row)
        if is_empty_row(row):
            ctx.skipped += 1
            continue
        normalized.append((index + FIRST_DATA_ROW, row))
    total = len(rows or [])

    if total == 0:
        ctx.add_error(BATCH_ROW, None, "No rows to import")
        _finalize(ctx, 0, ImportStatus.FAILED, "No rows to import")
        logger.warning("Import %s (%s) failed: empty batch", log.id, kind.value)
        return _result(ctx, 0)

    missing = schema.missing_columns(headers)
    if missing:
        message = f"Missing required columns: {', '.join(missing)}"
        ctx.add_error(BATCH_ROW, ",".join(missing), message)
        ctx.failed = len(normalized)
        _finalize(ctx, total, ImportStatus.FAILED, message)
        logger.warning("Import %s (%s) failed: %s", log.id, kind.value, message)
        return _result(ctx, total)

    schema.process(ctx, normalized)
    status = _final_status(ctx)
    _finalize(ctx, total, status, "No rows were imported" if status == ImportStatus.FAILED else None)

    logger.info(
        "Import %s (%s) %s: %d ok, %d failed, %d skipped of %d",
        log.id, kind.value, status.value, ctx.succeeded, ctx.failed, ctx.skipped, total,
    )
    return _result(ctx, total)


def get_import_log(*, identity: CallerIdentity, log_id: int) -> ImportAuditLog:
    log = db.session.get(ImportAuditLog, log_id)
    if log is None:
        if identity.is_global:
            raise NotFoundError(f"Import log {log_id} not found")
        raise AccessDeniedError("You do not have access to this import", {"import_log_id": log_id})
    if not identity.is_global and log.franchise_id not in identity.franchise_ids:
        raise AccessDeniedError("You do not have access to this import", {"import_log_id": log_id})
    return log


def list_import_logs(
    *,
    identity: CallerIdentity,
    franchise_id: int | None = None,
    kind=None,
    limit: int = 50,
) -> list[ImportAuditLog]:
    scope = resolve_scope(identity, franchise_id)
    query = apply_scope(db.session.query(ImportAuditLog), scope, ImportAuditLog.franchise_id)
    if kind is not None:
        query = query.filter(ImportAuditLog.kind == parse_enum(ImportKind, kind, field="kind"))
    return query.order_by(ImportAuditLog.started_at.desc(), ImportAuditLog.id.desc()).limit(limit).all()
