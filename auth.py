"""
Request principal and role policy.

Sessions are handled by the upstream auth layer, which forwards the signed-in
user as ``X-User-Id`` and ``X-User-Role`` headers. Every role check in the API
goes through ``POLICY`` via the ``require`` dependency.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from fastapi import Depends, Header
from pydantic import BaseModel

from errors import Unauthorized


class Role(str, Enum):
    USER = "USER"
    STAFF = "STAFF"
    ADMIN = "ADMIN"


class Principal(BaseModel):
    user_id: str
    role: Role = Role.USER

    @property
    def is_back_office(self) -> bool:
        return self.role in (Role.STAFF, Role.ADMIN)


ANY = "*"

# (role, resource) -> allowed actions
POLICY: Dict[Tuple[Role, str], FrozenSet[str]] = {
    (Role.USER, "account"): frozenset({ANY}),
    (Role.STAFF, "account"): frozenset({ANY}),
    (Role.ADMIN, "account"): frozenset({ANY}),
    (Role.STAFF, "orders"): frozenset({"read", "update"}),
    (Role.STAFF, "services"): frozenset({"read", "update"}),
    (Role.STAFF, "inventory"): frozenset({"restock"}),
    (Role.ADMIN, "orders"): frozenset({ANY}),
    (Role.ADMIN, "services"): frozenset({ANY}),
    (Role.ADMIN, "inventory"): frozenset({ANY}),
    (Role.ADMIN, "catalog"): frozenset({ANY}),
    (Role.ADMIN, "coupons"): frozenset({ANY}),
    (Role.ADMIN, "settings"): frozenset({ANY}),
    (Role.ADMIN, "stats"): frozenset({ANY}),
    (Role.ADMIN, "audit"): frozenset({ANY}),
    (Role.ADMIN, "listings"): frozenset({ANY}),
    (Role.ADMIN, "reviews"): frozenset({ANY}),
}


def is_allowed(role: Role, resource: str, action: str) -> bool:
    actions = POLICY.get((role, resource), frozenset())
    return ANY in actions or action in actions


def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Optional[Principal]:
    if not x_user_id:
        return None
    try:
        role = Role((x_user_role or Role.USER.value).upper())
    except ValueError:
        raise Unauthorized()
    return Principal(user_id=x_user_id, role=role)


def require(resource: str, action: str):
    """Dependency factory: the signed-in principal, if its role may do ``action`` on ``resource``."""

    def dependency(principal: Optional[Principal] = Depends(get_principal)) -> Principal:
        if principal is None:
            raise Unauthorized()
        if not is_allowed(principal.role, resource, action):
            raise Unauthorized()
        return principal

    return dependency


require_user = require("account", ANY)
