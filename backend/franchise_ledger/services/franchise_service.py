# Overview: Administrative franchise (tenant) management.

from __future__ import annotations

import logging

from ..errors import DuplicateKeyError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Franchise, FranchiseStatus
from ..validation import clean_text, parse_enum
from .scope_service import CallerIdentity, Role, apply_scope, require_role, resolve_scope

logger = logging.getLogger(__name__)


def create_franchise(
    *,
    identity: CallerIdentity,
    name: str,
    code: str,
    location: str | None = None,
    manager_name: str | None = None,
    contact_email: str | None = None,
    currency: str | None = None,
) -> Franchise:
    require_role(identity, Role.ADMIN)

    name = clean_text(name, max_length=255, field="name")
    code = clean_text(code, max_length=32, field="code")
    if not name:
        raise ValidationError("name is required", field="name")
    if not code:
        raise ValidationError("code is required", field="code")
    code = code.upper()

    if db.session.query(Franchise.id).filter_by(code=code).first():
        raise DuplicateKeyError(f"Franchise code {code} already exists", {"code": code}, field="code")

    franchise = Franchise(
        name=name,
        code=code,
        location=clean_text(location, max_length=255, field="location"),
        manager_name=clean_text(manager_name, max_length=120, field="manager_name"),
        contact_email=clean_text(contact_email, max_length=255, field="contact_email"),
        currency=(clean_text(currency, max_length=8, field="currency") or "INR").upper(),
        status=FranchiseStatus.ACTIVE,
    )
    db.session.add(franchise)
    db.session.flush()
    logger.info("Created franchise %s (%s)", franchise.id, franchise.code)
    return franchise


def set_franchise_status(*, identity: CallerIdentity, franchise_id: int, status) -> Franchise:
    require_role(identity, Role.ADMIN)
    franchise = db.session.get(Franchise, franchise_id)
    if franchise is None:
        raise NotFoundError(f"Franchise {franchise_id} not found")
    franchise.status = parse_enum(FranchiseStatus, status, field="status")
    db.session.flush()
    logger.info("Franchise %s status -> %s", franchise.code, franchise.status.value)
    return franchise


def list_franchises(*, identity: CallerIdentity) -> list[Franchise]:
    scope = resolve_scope(identity)
    query = apply_scope(db.session.query(Franchise), scope, Franchise.id)
    return query.order_by(Franchise.code).all()
