# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .errors import ValidationError
from .services.scope_service import CallerIdentity


def _parse_franchise_ids(raw: str | None) -> list[int]:
    if not raw:
        return []
    ids = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise ValidationError(f"Invalid franchise id in X-Franchise-Ids: {part!r}")
        ids.append(int(part))
    return ids


def require_identity(f):
    """
    Establish the caller identity from gateway headers.

    The upstream gateway authenticates the user and forwards:
    - X-User-Id: opaque user id
    - X-User-Role: admin | manager | sales
    - X-Franchise-Ids: comma-separated franchise ids (ignored for admin)

    Sets g.identity (CallerIdentity). Returns 401 when the headers are
    missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = request.headers.get("X-User-Id")
        role = request.headers.get("X-User-Role")
        if not user_id or not role:
            return jsonify({"error": "unauthenticated", "message": "Caller identity required"}), 401
        try:
            g.identity = CallerIdentity.build(
                user_id,
                role,
                _parse_franchise_ids(request.headers.get("X-Franchise-Ids")),
            )
        except ValidationError as exc:
            return jsonify({"error": "unauthenticated", "message": exc.message}), 401
        return f(*args, **kwargs)

    return decorated_function
