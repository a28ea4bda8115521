import logging
from collections import defaultdict

from sqlalchemy import delete, insert, select
from sqlalchemy.orm import Session

from realmgate.core.config import settings
from realmgate.roles.models import Role
from realmgate.users.models import User, user_roles

logger = logging.getLogger(__name__)


def is_protected_admin(user: User) -> bool:
    """The bootstrap super-user may never be deleted, deactivated or demoted."""
    return (user.email or "").lower() == settings.ADMIN_EMAIL


def roles_for_users(db: Session, user_ids: list[str]) -> dict[str, list[Role]]:
    if not user_ids:
        return {}
    rows = db.execute(
        select(user_roles.c.user_id, Role)
        .join(Role, Role.id == user_roles.c.role_id)
        .where(user_roles.c.user_id.in_(user_ids))
        .order_by(Role.name)
    ).all()
    grouped: dict[str, list[Role]] = defaultdict(list)
    for user_id, role in rows:
        grouped[user_id].append(role)
    return grouped


def user_detail(user: User, roles: list[Role]) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "is_super_user": user.is_super_user,
        "realm_id": user.realm_id,
        "client_id": user.client_id,
        "is_active": user.is_active,
        "roles": [
            {"id": r.id, "name": r.name, "realm_id": r.realm_id, "is_active": r.is_active}
            for r in roles
        ],
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def load_roles(db: Session, role_ids: list[str]) -> list[Role]:
    """Fetch roles by id; raises LookupError naming any id that does not exist."""
    wanted = list(dict.fromkeys(role_ids))
    if not wanted:
        return []
    roles = db.execute(select(Role).where(Role.id.in_(wanted))).scalars().all()
    missing = set(wanted) - {r.id for r in roles}
    if missing:
        raise LookupError(f"Role(s) not found: {', '.join(sorted(missing))}")
    return list(roles)


def replace_user_roles(db: Session, user_id: str, role_ids: list[str]) -> None:
    db.execute(delete(user_roles).where(user_roles.c.user_id == user_id))
    unique_ids = list(dict.fromkeys(role_ids))
    if unique_ids:
        db.execute(
            insert(user_roles),
            [{"user_id": user_id, "role_id": role_id} for role_id in unique_ids],
        )
    logger.info("User %s now holds %s role(s)", user_id, len(unique_ids))
