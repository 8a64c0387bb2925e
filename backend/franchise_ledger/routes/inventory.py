"""
Catalog and stock API routes.

Quantities are never written directly: POST /products/<id>/adjust posts a
PURCHASE or ADJUSTMENT movement through the ledger.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_identity
from ..services import catalog_service, ledger_service, reporting_service
from ..services.concurrency import commit_with_retry
from ..services.scope_service import resolve_scope
from ..validation import parse_datetime


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products")
@require_identity
def list_products():
    franchise_id = request.args.get("franchise_id", type=int)
    products = catalog_service.list_products(
        identity=g.identity,
        franchise_id=franchise_id,
        category=request.args.get("category"),
        status=request.args.get("status"),
        search=request.args.get("q"),
    )
    scope = resolve_scope(g.identity, franchise_id)
    return jsonify([catalog_service.product_stock_view(p, scope) for p in products]), 200


@inventory_bp.post("/products")
@require_identity
def create_product():
    data = request.get_json(silent=True) or {}
    product = commit_with_retry(lambda: catalog_service.create_product(
        identity=g.identity,
        franchise_id=data.get("franchise_id"),
        sku=data.get("sku"),
        name=data.get("name"),
        category=data.get("category"),
        buying_price=data.get("buying_price"),
        selling_price=data.get("selling_price"),
        stock_quantity=data.get("stock_quantity", 0),
        minimum_stock=data.get("minimum_stock", 0),
        brand=data.get("brand"),
        description=data.get("description"),
        transferable=data.get("transferable", True),
    ))
    return jsonify(product.to_dict(include_allocations=True)), 201


@inventory_bp.get("/products/<int:product_id>")
@require_identity
def get_product(product_id: int):
    product = catalog_service.get_product(identity=g.identity, product_id=product_id)
    return jsonify(catalog_service.product_stock_view(product, resolve_scope(g.identity))), 200


@inventory_bp.patch("/products/<int:product_id>")
@require_identity
def update_product(product_id: int):
    data = request.get_json(silent=True) or {}
    product = commit_with_retry(
        lambda: catalog_service.update_product(identity=g.identity, product_id=product_id, changes=data)
    )
    return jsonify(product.to_dict()), 200


@inventory_bp.delete("/products/<int:product_id>")
@require_identity
def deactivate_product(product_id: int):
    product = commit_with_retry(
        lambda: catalog_service.deactivate_product(identity=g.identity, product_id=product_id)
    )
    return jsonify(product.to_dict()), 200


@inventory_bp.post("/products/<int:product_id>/adjust")
@require_identity
def adjust_stock(product_id: int):
    data = request.get_json(silent=True) or {}
    movement = commit_with_retry(lambda: catalog_service.adjust_stock(
        identity=g.identity,
        product_id=product_id,
        franchise_id=data.get("franchise_id"),
        quantity_delta=data.get("quantity_delta"),
        kind=data.get("kind", "adjustment"),
        unit_cost=data.get("unit_cost"),
        note=data.get("note"),
    ))
    return jsonify(movement.to_dict()), 201


@inventory_bp.get("/movements")
@require_identity
def list_movements():
    scope = resolve_scope(g.identity, request.args.get("franchise_id", type=int))
    movements = ledger_service.list_movements(
        scope=scope,
        product_id=request.args.get("product_id", type=int),
        start=parse_datetime(request.args.get("start"), field="start"),
        end=parse_datetime(request.args.get("end"), field="end"),
        limit=min(request.args.get("limit", 200, type=int), 1000),
    )
    return jsonify([m.to_dict() for m in movements]), 200


@inventory_bp.get("/low-stock")
@require_identity
def low_stock():
    rows = reporting_service.low_stock_products(
        identity=g.identity,
        franchise_id=request.args.get("franchise_id", type=int),
        limit=min(request.args.get("limit", 50, type=int), 200),
    )
    return jsonify(rows), 200
