import logging
import secrets
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from realmgate.auth.deps import require_super_user
from realmgate.auth.security import new_id
from realmgate.auth.tokens import revoke_client_sessions
from realmgate.clients.models import Client
from realmgate.clients.schemas import (
    ClientCreate,
    ClientDeleteResponse,
    ClientOut,
    ClientsListResponse,
    ClientStatsOut,
    ClientUpdate,
    ClientWithSecretOut,
)
from realmgate.db.session import get_db
from realmgate.notifications.email import missing_smtp_fields
from realmgate.realms.models import Realm
from realmgate.users.models import User

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_super_user)])


def _generate_client_id() -> str:
    return f"client_{secrets.token_hex(16)}"


def _generate_client_secret() -> str:
    return secrets.token_hex(32)


def _public_smtp(config: dict | None) -> dict:
    return {k: v for k, v in (config or {}).items() if k not in ("password", "pass", "auth")}


def _to_out(client: Client, realm_name: str | None = None, *, with_secret: bool = False) -> dict:
    out = {
        "id": client.id,
        "realm_id": client.realm_id,
        "realm_name": realm_name,
        "name": client.name,
        "description": client.description,
        "client_id": client.client_id,
        "endpoints": client.endpoints or {},
        "redirect_urls": client.redirect_urls or [],
        "sso_enabled": client.sso_enabled,
        "twofa_enabled": client.twofa_enabled,
        "smtp_config": _public_smtp(client.smtp_config),
        "is_active": client.is_active,
        "created_at": client.created_at,
        "updated_at": client.updated_at,
    }
    if with_secret:
        out["client_secret"] = client.client_secret
    return out


def _realm_name(db: Session, realm_id: str) -> str | None:
    return db.execute(select(Realm.name).where(Realm.id == realm_id)).scalar_one_or_none()


def _get_or_404(db: Session, client_pk: str) -> Client:
    client = db.get(Client, client_pk)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


def _ensure_name_free(db: Session, realm_id: str, name: str, exclude_id: str | None = None) -> None:
    stmt = select(Client.id).where(Client.realm_id == realm_id, Client.name == name)
    if exclude_id:
        stmt = stmt.where(Client.id != exclude_id)
    if db.execute(stmt).first():
        raise HTTPException(status_code=409, detail="Client name already exists in this realm")


def _end_sessions(db: Session, client: Client) -> None:
    revoked = revoke_client_sessions(db, client.id, commit=False)
    logger.info("Client %s deactivated; revoked %s client session(s)", client.id, revoked)


def _check_smtp(twofa_enabled: bool, smtp_config: dict | None) -> None:
    if not twofa_enabled:
        return
    missing = missing_smtp_fields(smtp_config)
    if missing:
        raise HTTPException(
            status_code=422,
            detail={"error": "SMTP configuration is required when 2FA is enabled", "missing": missing},
        )


@router.get("", response_model=ClientsListResponse)
def list_clients(
    realm_id: str | None = Query(default=None, max_length=64),
    db: Session = Depends(get_db),
):
    stmt = select(Client, Realm.name).outerjoin(Realm, Realm.id == Client.realm_id)
    if realm_id:
        stmt = stmt.where(Client.realm_id == realm_id)
    rows = db.execute(stmt.order_by(Client.created_at.desc())).all()
    return {"clients": [_to_out(client, realm_name) for client, realm_name in rows]}


@router.get("/stats/overview", response_model=ClientStatsOut)
def client_stats(
    realm_id: str | None = Query(default=None, max_length=64),
    db: Session = Depends(get_db),
):
    stmt = select(
        func.count(Client.id),
        func.count(case((Client.is_active.is_(True), 1))),
        func.count(case((Client.sso_enabled.is_(True), 1))),
        func.count(case((Client.twofa_enabled.is_(True), 1))),
    )
    if realm_id:
        stmt = stmt.where(Client.realm_id == realm_id)
    total, active, sso, twofa = db.execute(stmt).one()
    return {
        "total_clients": total,
        "active_clients": active,
        "sso_enabled_clients": sso,
        "twofa_enabled_clients": twofa,
    }


@router.get("/{client_pk}", response_model=ClientOut)
def get_client(client_pk: str, db: Session = Depends(get_db)):
    client = _get_or_404(db, client_pk)
    return _to_out(client, _realm_name(db, client.realm_id))


@router.post("", response_model=ClientWithSecretOut, status_code=201)
def create_client(payload: ClientCreate, db: Session = Depends(get_db)):
    realm = db.get(Realm, payload.realm_id)
    if not realm:
        raise HTTPException(status_code=404, detail="Realm not found")

    _ensure_name_free(db, realm.id, payload.name)

    smtp_config = payload.smtp_config.model_dump(exclude_none=True) if payload.smtp_config else {}
    _check_smtp(payload.twofa_enabled, smtp_config)

    now = datetime.utcnow()
    client = Client(
        id=new_id("cl"),
        realm_id=realm.id,
        name=payload.name,
        description=payload.description,
        client_id=_generate_client_id(),
        client_secret=_generate_client_secret(),
        endpoints=payload.endpoints.model_dump(),
        redirect_urls=payload.redirect_urls,
        sso_enabled=payload.sso_enabled,
        twofa_enabled=payload.twofa_enabled,
        smtp_config=smtp_config,
        is_active=payload.is_active,
        created_at=now,
        updated_at=now,
    )
    db.add(client)
    db.commit()
    db.refresh(client)
    logger.info("Created client %s in realm %s", client.id, realm.id)
    return _to_out(client, realm.name, with_secret=True)


@router.put("/{client_pk}", response_model=ClientOut)
def update_client(client_pk: str, payload: ClientUpdate, db: Session = Depends(get_db)):
    client = _get_or_404(db, client_pk)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("name") and changes["name"] != client.name:
        _ensure_name_free(db, client.realm_id, changes["name"], exclude_id=client.id)

    smtp_config = dict(client.smtp_config or {})
    if payload.smtp_config is not None:
        incoming = payload.smtp_config.model_dump(exclude_none=True)
        # an omitted password keeps the stored one
        if "password" not in incoming and smtp_config.get("password"):
            incoming["password"] = smtp_config["password"]
        smtp_config = incoming

    twofa_enabled = client.twofa_enabled if payload.twofa_enabled is None else payload.twofa_enabled
    _check_smtp(twofa_enabled, smtp_config)

    if payload.name:
        client.name = payload.name
    if "description" in changes:
        client.description = payload.description
    if payload.endpoints is not None:
        client.endpoints = payload.endpoints.model_dump()
    if payload.redirect_urls is not None:
        client.redirect_urls = payload.redirect_urls
    if payload.sso_enabled is not None:
        client.sso_enabled = payload.sso_enabled
    if payload.is_active is not None:
        if client.is_active and not payload.is_active:
            _end_sessions(db, client)
        client.is_active = payload.is_active
    client.twofa_enabled = twofa_enabled
    client.smtp_config = smtp_config
    client.updated_at = datetime.utcnow()

    db.add(client)
    db.commit()
    db.refresh(client)
    return _to_out(client, _realm_name(db, client.realm_id))


@router.patch("/{client_pk}/toggle-status", response_model=ClientOut)
def toggle_client_status(client_pk: str, db: Session = Depends(get_db)):
    client = _get_or_404(db, client_pk)
    client.is_active = not client.is_active
    if not client.is_active:
        _end_sessions(db, client)
    client.updated_at = datetime.utcnow()
    db.add(client)
    db.commit()
    db.refresh(client)
    logger.info("Client %s is_active=%s", client.id, client.is_active)
    return _to_out(client, _realm_name(db, client.realm_id))


@router.post("/{client_pk}/regenerate-secret", response_model=ClientWithSecretOut)
def regenerate_client_secret(client_pk: str, db: Session = Depends(get_db)):
    client = _get_or_404(db, client_pk)
    client.client_secret = _generate_client_secret()
    client.updated_at = datetime.utcnow()
    db.add(client)
    db.commit()
    db.refresh(client)
    logger.info("Regenerated secret for client %s", client.id)
    return _to_out(client, _realm_name(db, client.realm_id), with_secret=True)


@router.delete("/{client_pk}", response_model=ClientDeleteResponse)
def delete_client(client_pk: str, db: Session = Depends(get_db)):
    client = _get_or_404(db, client_pk)

    attached = db.execute(select(func.count(User.id)).where(User.client_id == client.id)).scalar_one()
    if attached:
        raise HTTPException(
            status_code=409,
            detail={"error": "Client still has users attached", "users": attached},
        )

    revoked = revoke_client_sessions(db, client.id, commit=False)
    db.delete(client)
    db.commit()
    logger.info("Deleted client %s; revoked %s client session(s)", client_pk, revoked)
    return {"deleted": True, "client_id": client_pk, "revoked_sessions": revoked}
