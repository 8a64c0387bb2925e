from flask import Blueprint, g, jsonify, request

from ..decorators import require_identity
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/profit-loss")
@require_identity
def profit_loss_report():
    report = reporting_service.compute_profit_loss(
        identity=g.identity,
        franchise_id=request.args.get("franchise_id", type=int),
        start=request.args.get("start"),
        end=request.args.get("end"),
        top_n=min(request.args.get("top", 10, type=int), 100),
    )
    return jsonify(report), 200


@reports_bp.get("/inventory")
@require_identity
def inventory_report():
    report = reporting_service.inventory_report(
        identity=g.identity,
        franchise_id=request.args.get("franchise_id", type=int),
        dead_stock_days=request.args.get("dead_stock_days", type=int),
    )
    return jsonify(report), 200
