import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from realmgate.auth.errors import InvalidAccessToken, InvalidRefreshToken, RefreshTokenExpired
from realmgate.auth.models import Token
from realmgate.auth.security import (
    generate_access_secret,
    generate_refresh_secret,
    hash_token,
    new_id,
)
from realmgate.core.config import settings
from realmgate.users.models import User

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXP_MINUTES = settings.ACCESS_TOKEN_EXP_MINUTES
REFRESH_TOKEN_EXP_DAYS = settings.REFRESH_TOKEN_EXP_DAYS


@dataclass
class IssuedToken:
    """A persisted token row plus the plaintext secrets, returned exactly once."""

    token: Token
    access_token: str
    refresh_token: str | None = None

    @property
    def expires_at(self) -> datetime:
        return self.token.expires_at


@dataclass
class ActiveToken:
    token: Token
    email: str | None
    is_super_user: bool


def _access_expiry(now: datetime) -> datetime:
    return now + timedelta(minutes=ACCESS_TOKEN_EXP_MINUTES)


def issue_token(
    db: Session,
    *,
    user_id: str | None = None,
    client_id: str | None = None,
    realm_id: str | None = None,
    is_super_user: bool = False,
    commit: bool = True,
) -> IssuedToken:
    if (user_id is None) == (client_id is None):
        raise ValueError("A token needs exactly one subject: user_id or client_id")

    now = datetime.utcnow()
    access_token = generate_access_secret()
    refresh_token = generate_refresh_secret()

    row = Token(
        id=new_id("tok", 12),
        user_id=user_id,
        client_id=client_id,
        realm_id=realm_id,
        is_client_session=client_id is not None,
        access_token_hash=hash_token(access_token),
        refresh_token_hash=hash_token(refresh_token),
        expires_at=_access_expiry(now),
        refresh_expires_at=now + timedelta(days=REFRESH_TOKEN_EXP_DAYS),
        is_super_user=bool(is_super_user) and client_id is None,
        is_active=True,
        created_at=now,
        last_used_at=None,
        revoked_at=None,
    )
    db.add(row)
    if commit:
        db.commit()
        db.refresh(row)
    else:
        db.flush()

    logger.info(
        "Issued token %s subject=%s client_session=%s",
        row.id,
        user_id or client_id,
        row.is_client_session,
    )
    return IssuedToken(token=row, access_token=access_token, refresh_token=refresh_token)


def issue_user_session(db: Session, user: User) -> IssuedToken:
    """Revoke every live session of ``user`` and mint a fresh pair in one transaction."""
    revoked = revoke_all_user_tokens(db, user.id, commit=False)
    if revoked:
        logger.info("Revoked %s prior token(s) for user %s before login", revoked, user.id)
    return issue_token(db, user_id=user.id, is_super_user=user.is_super_user)


def _find_active(db: Session, column, secret: str) -> ActiveToken | None:
    if not secret:
        return None
    row = db.execute(
        select(Token, User.email, User.is_super_user)
        .outerjoin(User, User.id == Token.user_id)
        .where(column == hash_token(secret), Token.is_active.is_(True))
    ).first()
    if not row:
        return None
    token, email, is_super_user = row
    return ActiveToken(token=token, email=email, is_super_user=bool(is_super_user))


def find_by_access_token(db: Session, access_token: str) -> ActiveToken | None:
    return _find_active(db, Token.access_token_hash, access_token)


def find_by_refresh_token(db: Session, refresh_token: str) -> ActiveToken | None:
    return _find_active(db, Token.refresh_token_hash, refresh_token)


def refresh_access_token(db: Session, refresh_token: str) -> IssuedToken:
    found = find_by_refresh_token(db, refresh_token)
    if not found:
        raise InvalidRefreshToken()

    now = datetime.utcnow()
    if now > found.token.refresh_expires_at:
        raise RefreshTokenExpired()

    new_access_token = generate_access_secret()
    result = db.execute(
        update(Token)
        .where(
            Token.id == found.token.id,
            Token.refresh_token_hash == hash_token(refresh_token),
            Token.is_active.is_(True),
        )
        .values(
            access_token_hash=hash_token(new_access_token),
            expires_at=_access_expiry(now),
            last_used_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # revoked between lookup and update
        db.rollback()
        raise InvalidRefreshToken()
    db.commit()

    token = db.get(Token, found.token.id, populate_existing=True)
    return IssuedToken(token=token, access_token=new_access_token)


def extend_expiry(db: Session, access_token: str) -> datetime:
    now = datetime.utcnow()
    expires_at = _access_expiry(now)
    result = db.execute(
        update(Token)
        .where(
            Token.access_token_hash == hash_token(access_token),
            Token.is_active.is_(True),
        )
        .values(expires_at=expires_at, last_used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise InvalidAccessToken()
    db.commit()
    return expires_at


def revoke_token(db: Session, access_token: str) -> bool:
    result = db.execute(
        update(Token)
        .where(
            Token.access_token_hash == hash_token(access_token),
            Token.is_active.is_(True),
        )
        .values(is_active=False, revoked_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0


def revoke_all_user_tokens(db: Session, user_id: str, *, commit: bool = True) -> int:
    result = db.execute(
        update(Token)
        .where(Token.user_id == user_id, Token.is_active.is_(True))
        .values(is_active=False, revoked_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if commit:
        db.commit()
    return result.rowcount


def revoke_client_sessions(db: Session, client_id: str, *, commit: bool = True) -> int:
    result = db.execute(
        update(Token)
        .where(Token.client_id == client_id, Token.is_active.is_(True))
        .values(is_active=False, revoked_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if commit:
        db.commit()
    return result.rowcount


def sweep_expired_tokens(db: Session, now: datetime | None = None) -> int:
    cutoff = now or datetime.utcnow()
    result = db.execute(
        update(Token)
        .where(Token.is_active.is_(True), Token.expires_at < cutoff)
        .values(is_active=False, revoked_at=cutoff)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


def list_active_tokens(db: Session, user_id: str) -> list[Token]:
    return list(
        db.execute(
            select(Token)
            .where(Token.user_id == user_id, Token.is_active.is_(True))
            .order_by(Token.created_at.desc())
        ).scalars()
    )
