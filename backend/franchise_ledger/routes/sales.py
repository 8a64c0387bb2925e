from flask import Blueprint, g, jsonify, request

from ..decorators import require_identity
from ..services import sales_service
from ..services.concurrency import commit_with_retry
from ..validation import parse_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_identity
def create_sale():
    """
    Create a completed sale.

    Request body:
    {
        "franchise_id": int,
        "items": [{"product_id": int, "quantity": int, "unit_price"?, "discount"?, "tax"?}],
        "payment_method": "cash|card|upi|bank_transfer|credit",
        "sale_type": "online|offline",
        "invoice_number"?: str, "customer_name"?, "customer_email"?, "notes"?, "sold_at"?
    }

    Returns:
        201: Sale created
        400: Invalid request
        403: Franchise or product outside caller scope
        409: Duplicate invoice or insufficient stock
    """
    data = request.get_json(silent=True) or {}
    sale = commit_with_retry(lambda: sales_service.create_sale(
        identity=g.identity,
        franchise_id=data.get("franchise_id"),
        items=data.get("items") or [],
        payment_method=data.get("payment_method"),
        sale_type=data.get("sale_type"),
        invoice_number=data.get("invoice_number"),
        customer_name=data.get("customer_name"),
        customer_email=data.get("customer_email"),
        notes=data.get("notes"),
        sold_at=data.get("sold_at"),
    ))
    return jsonify(sale.to_dict()), 201


@sales_bp.get("")
@require_identity
def list_sales():
    sales = sales_service.list_sales(
        identity=g.identity,
        franchise_id=request.args.get("franchise_id", type=int),
        status=request.args.get("status"),
        start=parse_datetime(request.args.get("start"), field="start"),
        end=parse_datetime(request.args.get("end"), field="end"),
        limit=min(request.args.get("limit", 100, type=int), 500),
    )
    return jsonify([s.to_dict(include_items=False) for s in sales]), 200


@sales_bp.get("/<int:sale_id>")
@require_identity
def get_sale(sale_id: int):
    sale = sales_service.get_sale(identity=g.identity, sale_id=sale_id)
    return jsonify(sale.to_dict()), 200


@sales_bp.post("/<int:sale_id>/refund")
@require_identity
def refund_sale(sale_id: int):
    data = request.get_json(silent=True) or {}
    sale = commit_with_retry(lambda: sales_service.refund_sale(
        identity=g.identity,
        sale_id=sale_id,
        amount=data.get("amount"),
        reason=data.get("reason"),
    ))
    return jsonify(sale.to_dict()), 200


@sales_bp.post("/<int:sale_id>/cancel")
@require_identity
def cancel_sale(sale_id: int):
    data = request.get_json(silent=True) or {}
    sale = commit_with_retry(
        lambda: sales_service.cancel_sale(identity=g.identity, sale_id=sale_id, reason=data.get("reason"))
    )
    return jsonify(sale.to_dict()), 200
