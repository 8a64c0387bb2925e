from flask import Blueprint, g, jsonify, request

from ..decorators import require_identity
from ..services import import_service
from ..services.concurrency import commit_with_retry


imports_bp = Blueprint("imports", __name__, url_prefix="/api/imports")


@imports_bp.post("/<kind>")
@require_identity
def import_rows(kind: str):
    """
    Apply already-parsed spreadsheet rows.

    Request body:
    {
        "rows": [{"column": value, ...}, ...],
        "franchise_id": int (optional default tenant),
        "file_name": str (optional)
    }

    Row-level failures are returned in the body; the batch itself is
    always committed with its audit log.
    """
    data = request.get_json(silent=True) or {}
    rows = data.get("rows")
    if not isinstance(rows, list):
        return jsonify({"error": "validation", "message": "rows must be a list", "field": "rows"}), 400

    result = commit_with_retry(lambda: import_service.import_rows(
        identity=g.identity,
        kind=kind,
        rows=rows,
        franchise_id=data.get("franchise_id"),
        file_name=data.get("file_name"),
    ))
    return jsonify(result), 200


@imports_bp.get("")
@require_identity
def list_imports():
    logs = import_service.list_import_logs(
        identity=g.identity,
        franchise_id=request.args.get("franchise_id", type=int),
        kind=request.args.get("kind"),
        limit=min(request.args.get("limit", 50, type=int), 200),
    )
    return jsonify([log.to_dict() for log in logs]), 200


@imports_bp.get("/<int:log_id>")
@require_identity
def get_import(log_id: int):
    log = import_service.get_import_log(identity=g.identity, log_id=log_id)
    return jsonify(log.to_dict()), 200
