import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from realmgate.auth.deps import require_super_user
from realmgate.auth.security import new_id
from realmgate.clients.models import Client
from realmgate.db.session import get_db
from realmgate.realms.models import Realm
from realmgate.realms.schemas import (
    RealmCreate,
    RealmDeleteResponse,
    RealmOut,
    RealmsListResponse,
    RealmUpdate,
)
from realmgate.roles.models import Role
from realmgate.users.models import User

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_super_user)])


def _active_client_counts(db: Session, realm_ids: list[str]) -> dict[str, int]:
    if not realm_ids:
        return {}
    return dict(
        db.execute(
            select(Client.realm_id, func.count(Client.id))
            .where(Client.realm_id.in_(realm_ids), Client.is_active.is_(True))
            .group_by(Client.realm_id)
        ).all()
    )


def _to_out(realm: Realm, client_count: int = 0) -> dict:
    return {
        "id": realm.id,
        "name": realm.name,
        "description": realm.description,
        "is_active": realm.is_active,
        "created_at": realm.created_at,
        "updated_at": realm.updated_at,
        "client_count": int(client_count),
    }


def _get_or_404(db: Session, realm_id: str) -> Realm:
    realm = db.get(Realm, realm_id)
    if not realm:
        raise HTTPException(status_code=404, detail="Realm not found")
    return realm


def _ensure_name_free(db: Session, name: str, exclude_id: str | None = None) -> None:
    stmt = select(Realm.id).where(Realm.name == name)
    if exclude_id:
        stmt = stmt.where(Realm.id != exclude_id)
    if db.execute(stmt).first():
        raise HTTPException(status_code=409, detail="Realm name already exists")


@router.get("", response_model=RealmsListResponse)
def list_realms(
    active: bool | None = Query(default=None),
    db: Session = Depends(get_db),
):
    stmt = select(Realm)
    if active is not None:
        stmt = stmt.where(Realm.is_active.is_(active))
    realms = db.execute(stmt.order_by(Realm.created_at.desc())).scalars().all()
    counts = _active_client_counts(db, [r.id for r in realms])
    return {"realms": [_to_out(r, counts.get(r.id, 0)) for r in realms]}


@router.get("/{realm_id}", response_model=RealmOut)
def get_realm(realm_id: str, db: Session = Depends(get_db)):
    realm = _get_or_404(db, realm_id)
    return _to_out(realm, _active_client_counts(db, [realm.id]).get(realm.id, 0))


@router.post("", response_model=RealmOut, status_code=201)
def create_realm(payload: RealmCreate, db: Session = Depends(get_db)):
    _ensure_name_free(db, payload.name)

    now = datetime.utcnow()
    realm = Realm(
        id=new_id("rlm"),
        name=payload.name,
        description=payload.description,
        is_active=payload.is_active,
        created_at=now,
        updated_at=now,
    )
    db.add(realm)
    db.commit()
    db.refresh(realm)
    logger.info("Created realm %s (%s)", realm.id, realm.name)
    return _to_out(realm)


@router.put("/{realm_id}", response_model=RealmOut)
def update_realm(realm_id: str, payload: RealmUpdate, db: Session = Depends(get_db)):
    realm = _get_or_404(db, realm_id)

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name") and changes["name"] != realm.name:
        _ensure_name_free(db, changes["name"], exclude_id=realm.id)

    for field, value in changes.items():
        if field in ("name", "is_active") and value is None:
            continue
        setattr(realm, field, value)
    realm.updated_at = datetime.utcnow()
    db.add(realm)
    db.commit()
    db.refresh(realm)
    return _to_out(realm, _active_client_counts(db, [realm.id]).get(realm.id, 0))


@router.patch("/{realm_id}/toggle-status", response_model=RealmOut)
def toggle_realm_status(realm_id: str, db: Session = Depends(get_db)):
    realm = _get_or_404(db, realm_id)
    realm.is_active = not realm.is_active
    realm.updated_at = datetime.utcnow()
    db.add(realm)
    db.commit()
    db.refresh(realm)
    logger.info("Realm %s is_active=%s", realm.id, realm.is_active)
    return _to_out(realm, _active_client_counts(db, [realm.id]).get(realm.id, 0))


@router.delete("/{realm_id}", response_model=RealmDeleteResponse)
def delete_realm(realm_id: str, db: Session = Depends(get_db)):
    realm = _get_or_404(db, realm_id)

    dependents = {
        "clients": db.execute(select(func.count(Client.id)).where(Client.realm_id == realm.id)).scalar_one(),
        "users": db.execute(select(func.count(User.id)).where(User.realm_id == realm.id)).scalar_one(),
        "roles": db.execute(select(func.count(Role.id)).where(Role.realm_id == realm.id)).scalar_one(),
    }
    in_use = {k: v for k, v in dependents.items() if v}
    if in_use:
        raise HTTPException(
            status_code=409,
            detail={"error": "Realm still has dependent records", "dependents": in_use},
        )

    db.delete(realm)
    db.commit()
    logger.info("Deleted realm %s", realm_id)
    return {"deleted": True, "realm_id": realm_id}
