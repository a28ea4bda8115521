import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import case, delete, func, insert, select
from sqlalchemy.orm import Session

from realmgate.auth.deps import require_super_user
from realmgate.auth.security import new_id
from realmgate.db.session import get_db
from realmgate.realms.models import Realm
from realmgate.roles.models import Role
from realmgate.roles.schemas import (
    RoleAssignRequest,
    RoleCreate,
    RoleOut,
    RoleStatsOut,
    RoleUpdate,
    RoleUserOut,
    dump_access,
    load_access,
)
from realmgate.users.models import User, user_roles

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_super_user)])


def _to_out(role: Role) -> dict:
    return {
        "id": role.id,
        "realm_id": role.realm_id,
        "name": role.name,
        "description": role.description,
        "access": load_access(role.access),
        "is_active": role.is_active,
        "created_at": role.created_at,
        "updated_at": role.updated_at,
    }


def _get_or_404(db: Session, role_id: str) -> Role:
    role = db.get(Role, role_id)
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


def _ensure_name_free(db: Session, realm_id: str, name: str, exclude_id: str | None = None) -> None:
    stmt = select(Role.id).where(Role.realm_id == realm_id, Role.name == name)
    if exclude_id:
        stmt = stmt.where(Role.id != exclude_id)
    if db.execute(stmt).first():
        raise HTTPException(status_code=409, detail="Role name already exists in this realm")


@router.get("", response_model=list[RoleOut])
def list_roles(
    name: str | None = Query(default=None, min_length=1, max_length=100),
    realm_id: str | None = Query(default=None, max_length=64),
    is_active: bool | None = Query(default=None),
    db: Session = Depends(get_db),
):
    stmt = select(Role)
    if name:
        stmt = stmt.where(Role.name.ilike(f"%{name}%"))
    if realm_id:
        stmt = stmt.where(Role.realm_id == realm_id)
    if is_active is not None:
        stmt = stmt.where(Role.is_active.is_(is_active))
    roles = db.execute(stmt.order_by(Role.created_at.desc())).scalars().all()
    return [_to_out(r) for r in roles]


@router.get("/stats/overview", response_model=RoleStatsOut)
def role_stats(
    name: str | None = Query(default=None, min_length=1, max_length=100),
    realm_id: str | None = Query(default=None, max_length=64),
    db: Session = Depends(get_db),
):
    stmt = select(
        func.count(Role.id),
        func.count(case((Role.is_active.is_(True), 1))),
    )
    if name:
        stmt = stmt.where(Role.name.ilike(f"%{name}%"))
    if realm_id:
        stmt = stmt.where(Role.realm_id == realm_id)
    total, active = db.execute(stmt).one()
    return {"total_roles": total, "active_roles": active, "inactive_roles": total - active}


@router.get("/{role_id}", response_model=RoleOut)
def get_role(role_id: str, db: Session = Depends(get_db)):
    return _to_out(_get_or_404(db, role_id))


@router.post("", response_model=RoleOut, status_code=201)
def create_role(payload: RoleCreate, db: Session = Depends(get_db)):
    if not db.get(Realm, payload.realm_id):
        raise HTTPException(status_code=404, detail="Realm not found")
    _ensure_name_free(db, payload.realm_id, payload.name)

    now = datetime.utcnow()
    role = Role(
        id=new_id("role"),
        realm_id=payload.realm_id,
        name=payload.name,
        description=payload.description,
        access=dump_access(payload.access),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(role)
    db.commit()
    db.refresh(role)
    logger.info("Created role %s in realm %s with %s module(s)", role.id, role.realm_id, len(payload.access))
    return _to_out(role)


@router.put("/{role_id}", response_model=RoleOut)
def update_role(role_id: str, payload: RoleUpdate, db: Session = Depends(get_db)):
    role = _get_or_404(db, role_id)

    if payload.name and payload.name != role.name:
        _ensure_name_free(db, role.realm_id, payload.name, exclude_id=role.id)
        role.name = payload.name
    if "description" in payload.model_fields_set:
        role.description = payload.description
    if payload.access is not None:
        role.access = dump_access(payload.access)

    role.updated_at = datetime.utcnow()
    db.add(role)
    db.commit()
    db.refresh(role)
    return _to_out(role)


@router.patch("/{role_id}/toggle-status", response_model=RoleOut)
def toggle_role_status(role_id: str, db: Session = Depends(get_db)):
    role = _get_or_404(db, role_id)
    role.is_active = not role.is_active
    role.updated_at = datetime.utcnow()
    db.add(role)
    db.commit()
    db.refresh(role)
    logger.info("Role %s is_active=%s", role.id, role.is_active)
    return _to_out(role)


@router.delete("/{role_id}")
def delete_role(role_id: str, db: Session = Depends(get_db)):
    role = _get_or_404(db, role_id)
    db.execute(delete(user_roles).where(user_roles.c.role_id == role.id))
    db.delete(role)
    db.commit()
    logger.info("Deleted role %s", role_id)
    return {"deleted": True, "role_id": role_id}


@router.get("/{role_id}/users", response_model=list[RoleUserOut])
def list_role_users(role_id: str, db: Session = Depends(get_db)):
    role = _get_or_404(db, role_id)
    users = db.execute(
        select(User)
        .join(user_roles, user_roles.c.user_id == User.id)
        .where(user_roles.c.role_id == role.id)
        .order_by(User.email)
    ).scalars().all()
    return [
        {
            "id": u.id,
            "email": u.email,
            "first_name": u.first_name,
            "last_name": u.last_name,
            "is_active": u.is_active,
        }
        for u in users
    ]


@router.post("/{role_id}/users")
def assign_role_to_user(role_id: str, payload: RoleAssignRequest, db: Session = Depends(get_db)):
    role = _get_or_404(db, role_id)
    user = db.get(User, payload.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.is_super_user:
        raise HTTPException(status_code=400, detail="Super users cannot hold realm roles")
    if user.realm_id != role.realm_id:
        raise HTTPException(status_code=400, detail="User and role belong to different realms")

    existing = db.execute(
        select(user_roles.c.user_id).where(
            user_roles.c.user_id == user.id,
            user_roles.c.role_id == role.id,
        )
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="Role already assigned to user")

    db.execute(insert(user_roles).values(user_id=user.id, role_id=role.id))
    db.commit()
    logger.info("Assigned role %s to user %s", role.id, user.id)
    return {"assigned": True, "role_id": role.id, "user_id": user.id}


@router.delete("/{role_id}/users/{user_id}")
def remove_role_from_user(role_id: str, user_id: str, db: Session = Depends(get_db)):
    role = _get_or_404(db, role_id)
    result = db.execute(
        delete(user_roles).where(
            user_roles.c.user_id == user_id,
            user_roles.c.role_id == role.id,
        )
    )
    if result.rowcount == 0:
        db.rollback()
        raise HTTPException(status_code=404, detail="Role is not assigned to this user")
    db.commit()
    logger.info("Removed role %s from user %s", role.id, user_id)
    return {"removed": True, "role_id": role.id, "user_id": user_id}
