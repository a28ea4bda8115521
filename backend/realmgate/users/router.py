import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.orm import Session

from realmgate.auth.deps import require_super_user
from realmgate.auth.models import Otp, Token
from realmgate.auth.security import generate_password, hash_password, new_id
from realmgate.auth.tokens import revoke_all_user_tokens
from realmgate.clients.models import Client
from realmgate.db.session import get_db
from realmgate.notifications.email import (
    EmailDispatcher,
    SmtpProfile,
    get_email_dispatcher,
    render_welcome_email,
)
from realmgate.realms.models import Realm
from realmgate.users.models import User, user_roles
from realmgate.users.schemas import (
    UserCreate,
    UserCreateResponse,
    UserDeleteResponse,
    UserDetailOut,
    UsersListResponse,
    UserStatsOut,
    UserUpdate,
)
from realmgate.users.service import (
    is_protected_admin,
    load_roles,
    replace_user_roles,
    roles_for_users,
    user_detail,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_super_user)])


def _get_or_404(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _detail(db: Session, user: User) -> dict:
    return user_detail(user, roles_for_users(db, [user.id]).get(user.id, []))


def _ensure_email_free(db: Session, email: str, exclude_id: str | None = None) -> None:
    stmt = select(User.id).where(User.email == email)
    if exclude_id:
        stmt = stmt.where(User.id != exclude_id)
    if db.execute(stmt).first():
        raise HTTPException(status_code=409, detail="User with this email already exists")


def _resolve_scope(db: Session, realm_id: str | None, client_id: str | None) -> Client | None:
    if not realm_id:
        raise HTTPException(status_code=400, detail="realm_id is required for non super users")
    if not db.get(Realm, realm_id):
        raise HTTPException(status_code=404, detail="Realm not found")
    if not client_id:
        return None
    client = db.get(Client, client_id)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    if client.realm_id != realm_id:
        raise HTTPException(status_code=400, detail="Client does not belong to the given realm")
    return client


def _check_roles(db: Session, role_ids: list[str], realm_id: str | None) -> None:
    try:
        roles = load_roles(db, role_ids)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    foreign = [r.id for r in roles if r.realm_id != realm_id]
    if foreign:
        raise HTTPException(status_code=400, detail=f"Role(s) belong to another realm: {', '.join(foreign)}")


@router.get("", response_model=UsersListResponse)
def list_users(
    realm_id: str | None = Query(default=None, max_length=64),
    client_id: str | None = Query(default=None, max_length=64),
    is_super_user: bool | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    search: str | None = Query(default=None, min_length=1, max_length=200),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0, le=100_000),
    db: Session = Depends(get_db),
):
    stmt = select(User)
    if realm_id:
        stmt = stmt.where(User.realm_id == realm_id)
    if client_id:
        stmt = stmt.where(User.client_id == client_id)
    if is_super_user is not None:
        stmt = stmt.where(User.is_super_user.is_(is_super_user))
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))
    if search:
        like = f"%{search}%"
        stmt = stmt.where(
            or_(User.email.ilike(like), User.first_name.ilike(like), User.last_name.ilike(like))
        )

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    users = db.execute(
        stmt.order_by(User.created_at.desc()).limit(limit).offset(offset)
    ).scalars().all()

    roles = roles_for_users(db, [u.id for u in users])
    return {"users": [user_detail(u, roles.get(u.id, [])) for u in users], "total": total}


@router.get("/stats/overview", response_model=UserStatsOut)
def user_stats(
    realm_id: str | None = Query(default=None, max_length=64),
    client_id: str | None = Query(default=None, max_length=64),
    db: Session = Depends(get_db),
):
    stmt = select(
        func.count(User.id),
        func.count(case((User.is_super_user.is_(True), 1))),
        func.count(case((User.is_active.is_(True), 1))),
    )
    if realm_id:
        stmt = stmt.where(User.realm_id == realm_id)
    if client_id:
        stmt = stmt.where(User.client_id == client_id)
    total, supers, active = db.execute(stmt).one()
    return {
        "total_users": total,
        "super_users": supers,
        "realm_users": total - supers,
        "active_users": active,
        "inactive_users": total - active,
    }


@router.get("/{user_id}", response_model=UserDetailOut)
def get_user(user_id: str, db: Session = Depends(get_db)):
    return _detail(db, _get_or_404(db, user_id))


@router.post("", response_model=UserCreateResponse, status_code=201)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    email = str(payload.email).lower()
    _ensure_email_free(db, email)

    client = None
    realm_id = client_id = None
    if not payload.is_super_user:
        client = _resolve_scope(db, payload.realm_id, payload.client_id)
        realm_id, client_id = payload.realm_id, payload.client_id
    elif payload.role_ids:
        raise HTTPException(status_code=400, detail="Super users cannot hold realm roles")

    _check_roles(db, payload.role_ids, realm_id)

    generated_password = None
    password = payload.password
    if not password:
        if payload.is_super_user:
            raise HTTPException(status_code=422, detail="Password is required for super users")
        generated_password = password = generate_password(12)

    try:
        pw_hash = hash_password(password)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    now = datetime.utcnow()
    user = User(
        id=new_id("u"),
        email=email,
        password_hash=pw_hash,
        first_name=payload.first_name,
        last_name=payload.last_name,
        is_super_user=payload.is_super_user,
        realm_id=realm_id,
        client_id=client_id,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.flush()
    replace_user_roles(db, user.id, payload.role_ids)
    db.commit()
    db.refresh(user)
    logger.info("Created user %s super_user=%s realm=%s", user.id, user.is_super_user, user.realm_id)

    email_sent = None
    if generated_password:
        subject, html = render_welcome_email(
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            password=generated_password,
        )
        client_profile = SmtpProfile.from_client_config(client.smtp_config) if client else None
        email_sent = dispatcher.send_with_fallback(user.email, subject, html, client_profile)

    return {
        "user": _detail(db, user),
        "generated_password": generated_password,
        "email_sent": email_sent,
    }


@router.put("/{user_id}", response_model=UserDetailOut)
def update_user(user_id: str, payload: UserUpdate, db: Session = Depends(get_db)):
    user = _get_or_404(db, user_id)
    changes = payload.model_dump(exclude_unset=True)

    if is_protected_admin(user):
        if changes.get("is_super_user") is False:
            raise HTTPException(status_code=400, detail="Cannot remove super user status from the protected admin")
        if "email" in changes and str(changes["email"]).lower() != user.email:
            raise HTTPException(status_code=400, detail="Cannot change the protected admin's email")

    if payload.email is not None:
        email = str(payload.email).lower()
        if email != user.email:
            _ensure_email_free(db, email, exclude_id=user.id)
            user.email = email

    if payload.is_super_user is not None:
        user.is_super_user = payload.is_super_user

    if user.is_super_user:
        user.realm_id = None
        user.client_id = None
    elif "realm_id" in changes or "client_id" in changes or payload.is_super_user is False:
        realm_id = changes.get("realm_id", user.realm_id)
        client_id = changes.get("client_id", user.client_id)
        _resolve_scope(db, realm_id, client_id)
        user.realm_id = realm_id
        user.client_id = client_id

    if "first_name" in changes:
        user.first_name = payload.first_name
    if "last_name" in changes:
        user.last_name = payload.last_name

    if payload.role_ids is not None:
        if user.is_super_user and payload.role_ids:
            raise HTTPException(status_code=400, detail="Super users cannot hold realm roles")
        _check_roles(db, payload.role_ids, user.realm_id)
        replace_user_roles(db, user.id, payload.role_ids)
    elif user.is_super_user:
        # super users hold no realm roles
        replace_user_roles(db, user.id, [])

    if payload.password:
        try:
            user.password_hash = hash_password(payload.password)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        revoked = revoke_all_user_tokens(db, user.id, commit=False)
        logger.info("Password reset by admin for user %s; revoked %s token(s)", user.id, revoked)

    user.updated_at = datetime.utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    return _detail(db, user)


@router.patch("/{user_id}/toggle-status", response_model=UserDetailOut)
def toggle_user_status(user_id: str, db: Session = Depends(get_db)):
    user = _get_or_404(db, user_id)
    if is_protected_admin(user) and user.is_active:
        raise HTTPException(status_code=400, detail="Cannot deactivate the protected admin")

    user.is_active = not user.is_active
    user.updated_at = datetime.utcnow()
    db.add(user)
    if not user.is_active:
        revoke_all_user_tokens(db, user.id, commit=False)
    db.commit()
    db.refresh(user)
    logger.info("User %s is_active=%s", user.id, user.is_active)
    return _detail(db, user)


@router.delete("/{user_id}", response_model=UserDeleteResponse)
def delete_user(user_id: str, db: Session = Depends(get_db)):
    user = _get_or_404(db, user_id)
    if is_protected_admin(user):
        raise HTTPException(status_code=400, detail="Cannot delete the protected admin")

    db.execute(delete(Token).where(Token.user_id == user.id))
    db.execute(delete(Otp).where(Otp.user_id == user.id))
    db.execute(delete(user_roles).where(user_roles.c.user_id == user.id))
    db.delete(user)
    db.commit()
    logger.info("Deleted user %s", user_id)
    return {"deleted": True, "user_id": user_id}
