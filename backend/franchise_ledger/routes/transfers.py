# backend/franchise_ledger/routes/transfers.py
"""
Inter-franchise transfer API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_identity
from ..services import transfer_service
from ..services.concurrency import commit_with_retry


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.post("")
@require_identity
def create_transfer():
    """
    Request a transfer (status: pending).

    Request body:
    {
        "product_id": int,
        "from_franchise_id": int,
        "to_franchise_id": int,
        "quantity": int,
        "unit_price": number (optional, defaults to buying price),
        "mode": "shared" | "exclusive" (optional),
        "notes": str (optional),
        "expected_delivery": ISO-8601 (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    transfer = commit_with_retry(lambda: transfer_service.initiate_transfer(
        identity=g.identity,
        product_id=data.get("product_id"),
        from_franchise_id=data.get("from_franchise_id"),
        to_franchise_id=data.get("to_franchise_id"),
        quantity=data.get("quantity"),
        unit_price=data.get("unit_price"),
        mode=data.get("mode") or "shared",
        notes=data.get("notes"),
        expected_delivery=data.get("expected_delivery"),
    ))
    return jsonify(transfer.to_dict(include_history=True)), 201


@transfers_bp.get("")
@require_identity
def list_transfers():
    transfers = transfer_service.list_transfers(
        identity=g.identity,
        franchise_id=request.args.get("franchise_id", type=int),
        status=request.args.get("status"),
        direction=request.args.get("direction"),
        product_id=request.args.get("product_id", type=int),
        limit=min(request.args.get("limit", 100, type=int), 500),
    )
    return jsonify([t.to_dict() for t in transfers]), 200


@transfers_bp.get("/summary")
@require_identity
def transfer_summary():
    summary = transfer_service.transfer_summary(
        identity=g.identity,
        franchise_id=request.args.get("franchise_id", type=int),
    )
    return jsonify(summary), 200


@transfers_bp.get("/<int:transfer_id>")
@require_identity
def get_transfer(transfer_id: int):
    transfer = transfer_service.get_transfer(identity=g.identity, transfer_id=transfer_id)
    return jsonify(transfer.to_dict(include_history=True)), 200


@transfers_bp.post("/<int:transfer_id>/approve")
@require_identity
def approve_transfer(transfer_id: int):
    data = request.get_json(silent=True) or {}
    transfer = commit_with_retry(
        lambda: transfer_service.approve_transfer(identity=g.identity, transfer_id=transfer_id, notes=data.get("notes"))
    )
    return jsonify(transfer.to_dict(include_history=True)), 200


@transfers_bp.post("/<int:transfer_id>/ship")
@require_identity
def ship_transfer(transfer_id: int):
    data = request.get_json(silent=True) or {}
    transfer = commit_with_retry(lambda: transfer_service.ship_transfer(
        identity=g.identity,
        transfer_id=transfer_id,
        carrier=data.get("carrier"),
        tracking_number=data.get("tracking_number"),
        expected_delivery=data.get("expected_delivery"),
    ))
    return jsonify(transfer.to_dict(include_history=True)), 200


@transfers_bp.post("/<int:transfer_id>/complete")
@require_identity
def complete_transfer(transfer_id: int):
    data = request.get_json(silent=True) or {}
    transfer = commit_with_retry(
        lambda: transfer_service.complete_transfer(identity=g.identity, transfer_id=transfer_id, notes=data.get("notes"))
    )
    return jsonify(transfer.to_dict(include_history=True)), 200


@transfers_bp.post("/<int:transfer_id>/reject")
@require_identity
def reject_transfer(transfer_id: int):
    data = request.get_json(silent=True) or {}
    transfer = commit_with_retry(
        lambda: transfer_service.reject_transfer(identity=g.identity, transfer_id=transfer_id, reason=data.get("reason"))
    )
    return jsonify(transfer.to_dict(include_history=True)), 200


@transfers_bp.post("/<int:transfer_id>/cancel")
@require_identity
def cancel_transfer(transfer_id: int):
    data = request.get_json(silent=True) or {}
    transfer = commit_with_retry(
        lambda: transfer_service.cancel_transfer(identity=g.identity, transfer_id=transfer_id, reason=data.get("reason"))
    )
    return jsonify(transfer.to_dict(include_history=True)), 200


def _direct_move(operation):
    data = request.get_json(silent=True) or {}
    transfer = commit_with_retry(lambda: operation(
        identity=g.identity,
        product_id=data.get("product_id"),
        quantity=data.get("quantity"),
        unit_cost=data.get("unit_cost"),
        from_franchise_id=data.get("from_franchise_id"),
        to_franchise_id=data.get("to_franchise_id"),
        notes=data.get("notes"),
    ))
    return jsonify(transfer.to_dict(include_history=True)), 201


@transfers_bp.post("/stock-in")
@require_identity
def stock_in():
    return _direct_move(transfer_service.stock_in)


@transfers_bp.post("/stock-out")
@require_identity
def stock_out():
    return _direct_move(transfer_service.stock_out)
