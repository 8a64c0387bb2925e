from flask import Blueprint, g, jsonify, request

from ..decorators import require_identity
from ..services import franchise_service
from ..services.concurrency import commit_with_retry


franchises_bp = Blueprint("franchises", __name__, url_prefix="/api/franchises")


@franchises_bp.get("")
@require_identity
def list_franchises():
    franchises = franchise_service.list_franchises(identity=g.identity)
    return jsonify([f.to_dict() for f in franchises]), 200


@franchises_bp.post("")
@require_identity
def create_franchise():
    data = request.get_json(silent=True) or {}
    franchise = commit_with_retry(lambda: franchise_service.create_franchise(
        identity=g.identity,
        name=data.get("name"),
        code=data.get("code"),
        location=data.get("location"),
        manager_name=data.get("manager_name"),
        contact_email=data.get("contact_email"),
        currency=data.get("currency"),
    ))
    return jsonify(franchise.to_dict()), 201


@franchises_bp.patch("/<int:franchise_id>/status")
@require_identity
def set_franchise_status(franchise_id: int):
    data = request.get_json(silent=True) or {}
    franchise = commit_with_retry(lambda: franchise_service.set_franchise_status(
        identity=g.identity,
        franchise_id=franchise_id,
        status=data.get("status"),
    ))
    return jsonify(franchise.to_dict()), 200
