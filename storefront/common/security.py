"""Centralised access policy for storefront routes.

Authentication happens upstream: the identity provider (or the gateway in
front of the services) verifies the session and forwards the caller's identity
in ``X-User-Id``, ``X-User-Roles`` and ``X-User-Email``. Routes never inspect
roles themselves; they declare the action they perform via :func:`require`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from fastapi import HTTPException, Request, status

from .config import ServiceSettings

_LOGGER = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_ROLES_HEADER = "X-User-Roles"
USER_EMAIL_HEADER = "X-User-Email"


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    CUSTOMER = "customer"
    SERVICE = "service"


BACK_OFFICE = frozenset({Role.ADMIN, Role.MANAGER})
OPERATIONS = frozenset({Role.ADMIN, Role.MANAGER, Role.STAFF})
# Usage counters only move through checkout; admins may correct them by hand.
USAGE_COUNTERS = frozenset({Role.ADMIN, Role.SERVICE})


@dataclass(frozen=True, slots=True)
class Principal:
    user_id: str | None
    roles: frozenset[Role] = field(default_factory=frozenset)
    email: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def has_any(self, roles: frozenset[Role]) -> bool:
        return bool(self.roles & roles)


ANONYMOUS = Principal(user_id=None)


def service_principal(name: str) -> Principal:
    """The identity a service presents when it calls another service on its own behalf."""

    return Principal(user_id=name, roles=frozenset({Role.SERVICE}))


@dataclass(frozen=True, slots=True)
class Rule:
    """Who may perform an action.

    ``roles`` grants the action outright; ``owner`` additionally lets an
    authenticated caller act on resources they own.
    """

    roles: frozenset[Role] = field(default_factory=frozenset)
    owner: bool = False
    authenticated: bool = False


DEFAULT_RULES: Mapping[str, Rule] = {
    "rates:write": Rule(roles=BACK_OFFICE),
    "rates:delete": Rule(roles=frozenset({Role.ADMIN})),
    "promotions:read-all": Rule(roles=OPERATIONS),
    "promotions:write": Rule(roles=BACK_OFFICE),
    "promotions:redeem": Rule(roles=USAGE_COUNTERS),
    "catalog:write": Rule(roles=BACK_OFFICE),
    "carts:access": Rule(roles=OPERATIONS, owner=True),
    "orders:create": Rule(authenticated=True),
    "orders:read": Rule(roles=OPERATIONS, owner=True),
    "orders:read-all": Rule(roles=OPERATIONS),
    "orders:update": Rule(roles=OPERATIONS),
}


def parse_principal(request: Request) -> Principal:
    """Build the caller's principal from identity headers."""

    user_id = (request.headers.get(USER_ID_HEADER) or "").strip() or None
    raw_roles = request.headers.get(USER_ROLES_HEADER) or ""
    roles: set[Role] = set()
    for token in raw_roles.split(","):
        cleaned = token.strip().lower()
        if not cleaned:
            continue
        try:
            roles.add(Role(cleaned))
        except ValueError:
            _LOGGER.debug("Ignoring unknown role %r", cleaned)
    email = (request.headers.get(USER_EMAIL_HEADER) or "").strip() or None
    if user_id is None:
        return ANONYMOUS
    return Principal(user_id=user_id, roles=frozenset(roles), email=email)


class AccessPolicy:
    """Evaluates named actions against :class:`Rule` definitions."""

    def __init__(self, rules: Mapping[str, Rule] | None = None, *, enforce: bool = True) -> None:
        self._rules = dict(rules or DEFAULT_RULES)
        self._enforce = enforce

    def allows(self, principal: Principal, action: str, *, owner_id: str | None = None) -> bool:
        if not self._enforce:
            return True
        rule = self._rules.get(action)
        if rule is None:
            return False
        if not principal.is_authenticated:
            return False
        if principal.has_any(rule.roles):
            return True
        if rule.owner and owner_id is not None and owner_id == principal.user_id:
            return True
        return rule.authenticated

    def check(self, principal: Principal, action: str, *, owner_id: str | None = None) -> None:
        """Raise 401/403 unless ``principal`` may perform ``action``."""

        if self.allows(principal, action, owner_id=owner_id):
            return
        if not principal.is_authenticated:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        _LOGGER.info("Denied %s for user %s", action, principal.user_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")


def build_policy(settings: ServiceSettings) -> AccessPolicy:
    return AccessPolicy(enforce=settings.enforce_authorization)


def get_policy(request: Request) -> AccessPolicy:
    policy = getattr(request.app.state, "access_policy", None)
    if isinstance(policy, AccessPolicy):
        return policy
    return AccessPolicy()


def get_principal(request: Request) -> Principal:
    return parse_principal(request)


def identity_headers(principal: Principal) -> dict[str, str]:
    """Headers that forward ``principal`` on a service-to-service call."""

    if not principal.is_authenticated:
        return {}
    headers = {
        USER_ID_HEADER: principal.user_id or "",
        USER_ROLES_HEADER: ",".join(sorted(role.value for role in principal.roles)),
    }
    if principal.email:
        headers[USER_EMAIL_HEADER] = principal.email
    return headers


def require(action: str) -> Callable[[Request], Principal]:
    """FastAPI dependency enforcing an action that has no resource owner."""

    def dependency(request: Request) -> Principal:
        principal = parse_principal(request)
        get_policy(request).check(principal, action)
        return principal

    dependency.__name__ = f"require_{action.replace(':', '_').replace('-', '_')}"
    return dependency
