"""
Access Scope Resolver: who may read or mutate which franchise.

WHY: Every service call names its franchise explicitly and must be checked
against the caller before any read or write. Tenant-scoped callers asking
for a franchise outside their set get AccessDeniedError whether or not that
franchise exists, so ids cannot be enumerated.

ROLES:
- ADMIN: global scope
- MANAGER / SALES: limited to their assigned franchise ids
- SALES may sell and read but not run transfers, imports or admin actions

USAGE:
    scope = resolve_scope(identity, requested_franchise_id)
    query = apply_scope(db.session.query(Sale), scope, Sale.franchise_id)
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import or_

from ..errors import AccessDeniedError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Franchise

logger = logging.getLogger(__name__)


class Role(enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    SALES = "sales"


WRITE_ROLES = {Role.ADMIN, Role.MANAGER}


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    role: Role
    franchise_ids: frozenset[int] = field(default_factory=frozenset)

    @property
    def is_global(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def build(cls, user_id, role, franchise_ids: Iterable[int] | None = None) -> "CallerIdentity":
        if isinstance(role, Role):
            resolved = role
        else:
            try:
                resolved = Role(str(role or "").strip().lower())
            except ValueError:
                raise ValidationError(f"Unknown role: {role!r}", field="role")
        return cls(
            user_id=str(user_id) if user_id is not None else "",
            role=resolved,
            franchise_ids=frozenset(int(f) for f in (franchise_ids or [])),
        )


@dataclass(frozen=True)
class AccessScope:
    """Resolved franchise set. franchise_ids is None for unrestricted scope."""

    franchise_ids: frozenset[int] | None

    @property
    def is_unrestricted(self) -> bool:
        return self.franchise_ids is None

    def allows(self, franchise_id: int | None) -> bool:
        if franchise_id is None:
            return False
        return self.franchise_ids is None or franchise_id in self.franchise_ids

    def single(self) -> int | None:
        """The only franchise in scope, if exactly one."""
        if self.franchise_ids is not None and len(self.franchise_ids) == 1:
            return next(iter(self.franchise_ids))
        return None


def _deny(identity: CallerIdentity, franchise_id, action: str) -> AccessDeniedError:
    logger.warning(
        "Access denied: user=%s role=%s franchise=%s action=%s",
        identity.user_id,
        identity.role.value,
        franchise_id,
        action,
    )
    return AccessDeniedError(
        "You do not have access to this franchise",
        {"franchise_id": franchise_id},
    )


def resolve_scope(identity: CallerIdentity, requested_franchise_id: int | None = None) -> AccessScope:
    """
    Global callers get everything (or the requested franchise, which must
    exist). Tenant-scoped callers get their own set, or its intersection with
    the requested franchise; an empty result is AccessDeniedError.
    """
    if identity.is_global:
        if requested_franchise_id is None:
            return AccessScope(None)
        if db.session.get(Franchise, requested_franchise_id) is None:
            raise NotFoundError(f"Franchise {requested_franchise_id} not found")
        return AccessScope(frozenset({requested_franchise_id}))

    if not identity.franchise_ids:
        raise _deny(identity, requested_franchise_id, "resolve_scope")

    if requested_franchise_id is None:
        return AccessScope(identity.franchise_ids)

    if requested_franchise_id not in identity.franchise_ids:
        raise _deny(identity, requested_franchise_id, "resolve_scope")
    return AccessScope(frozenset({requested_franchise_id}))


def require_franchise_access(
    identity: CallerIdentity,
    franchise_id: int | None,
    *,
    write: bool = False,
    require_active: bool = False,
) -> Franchise:
    """
    Validate that the caller may act on one franchise and return it.

    SECURITY: tenant-scoped callers are denied before the franchise is even
    looked up. write=True additionally excludes the SALES role.
    """
    if franchise_id is None:
        raise ValidationError("franchise_id is required", field="franchise_id")
    if write and identity.role not in WRITE_ROLES:
        raise _deny(identity, franchise_id, "write")
    if not identity.is_global and franchise_id not in identity.franchise_ids:
        raise _deny(identity, franchise_id, "access")

    franchise = db.session.get(Franchise, franchise_id)
    if franchise is None:
        raise NotFoundError(f"Franchise {franchise_id} not found")
    if require_active and not franchise.is_active:
        raise ValidationError(
            f"Franchise {franchise.code} is {franchise.status.value}; mutations are not allowed",
            {"franchise_id": franchise_id},
            field="franchise_id",
        )
    return franchise


def require_role(identity: CallerIdentity, *roles: Role) -> None:
    if identity.role not in roles:
        raise _deny(identity, None, f"role:{'/'.join(r.value for r in roles)}")


def apply_scope(query, scope: AccessScope, *columns):
    """
    Filter a query to rows whose franchise column(s) fall inside scope.

    With several columns a row matches if any of them is in scope (e.g. a
    transfer visible to both its source and destination).
    """
    if scope.is_unrestricted:
        return query
    ids = sorted(scope.franchise_ids)
    if len(columns) == 1:
        return query.filter(columns[0].in_(ids))
    return query.filter(or_(*[col.in_(ids) for col in columns]))
