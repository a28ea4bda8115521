import logging
from dataclasses import dataclass
from typing import Iterable

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from realmgate.clients.models import Client
from realmgate.roles.models import Role
from realmgate.roles.schemas import AccessModule, load_access
from realmgate.users.models import User, user_roles

logger = logging.getLogger(__name__)

REASON_SUPER_USER = "super_user"
REASON_ROLE_MATCH = "role_match"
REASON_NO_CLIENT = "no_client"
REASON_HOST_NOT_ALLOWED = "host_not_allowed"
REASON_NO_ROLES = "no_roles"
REASON_NO_MATCHING_RULE = "no_matching_rule"


@dataclass
class AccessDecision:
    allowed: bool
    reason: str
    matched_role_id: str | None = None


def url_matches(pattern: str, path: str) -> bool:
    # single trailing wildcard only; anything else is an exact comparison
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    return pattern == path


def _role_modules(role: Role) -> list[AccessModule]:
    try:
        return load_access(role.access)
    except ValidationError:
        logger.warning("Skipping role %s: stored access policy is malformed", role.id)
        return []


def match_roles(roles: Iterable[Role], route: str, method: str) -> str | None:
    """Return the id of the first role with a rule granting ``method`` on ``route``."""
    wanted = (method or "").upper()
    for role in roles:
        for module in _role_modules(role):
            for rule in module.uri:
                if wanted in rule.methods and url_matches(rule.url, route):
                    return role.id
    return None


def load_active_roles(db: Session, user_id: str) -> list[Role]:
    return list(
        db.execute(
            select(Role)
            .join(user_roles, user_roles.c.role_id == Role.id)
            .where(user_roles.c.user_id == user_id, Role.is_active.is_(True))
            .order_by(Role.name)
        ).scalars()
    )


def authorize(db: Session, *, user: User, host: str, route: str, method: str) -> AccessDecision:
    if user.is_super_user:
        return AccessDecision(allowed=True, reason=REASON_SUPER_USER)

    client = db.get(Client, user.client_id) if user.client_id else None
    if client is None:
        return AccessDecision(allowed=False, reason=REASON_NO_CLIENT)

    allowed_hosts = client.allowed_hosts
    if allowed_hosts and host not in allowed_hosts:
        return AccessDecision(allowed=False, reason=REASON_HOST_NOT_ALLOWED)

    roles = load_active_roles(db, user.id)
    if not roles:
        return AccessDecision(allowed=False, reason=REASON_NO_ROLES)

    role_id = match_roles(roles, route, method)
    if role_id is None:
        decision = AccessDecision(allowed=False, reason=REASON_NO_MATCHING_RULE)
    else:
        decision = AccessDecision(allowed=True, reason=REASON_ROLE_MATCH, matched_role_id=role_id)

    logger.debug(
        "Access decision user=%s %s %s%s -> %s (%s)",
        user.id,
        method,
        host,
        route,
        decision.allowed,
        decision.reason,
    )
    return decision
