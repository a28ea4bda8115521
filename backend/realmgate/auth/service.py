import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from realmgate.auth import otp as otp_manager
from realmgate.auth import tokens as token_manager
from realmgate.auth.access import AccessDecision, authorize
from realmgate.auth.errors import (
    ClientAssociationRequired,
    CurrentPasswordIncorrect,
    InvalidClient,
    InvalidCredentials,
    InvalidRefreshToken,
    NoActiveCode,
    UserInactive,
)
from realmgate.auth.security import hash_password, verify_password
from realmgate.auth.tokens import IssuedToken
from realmgate.clients.models import Client
from realmgate.core.config import settings
from realmgate.notifications.email import EmailDispatcher, SmtpProfile, render_otp_email
from realmgate.realms.models import Realm
from realmgate.users.models import User

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: User
    issued: IssuedToken | None = None
    requires_otp: bool = False
    email_sent: bool | None = None


@dataclass
class ClientLoginResult:
    client: Client
    realm: Realm | None
    issued: IssuedToken


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(
        select(User).where(User.email == (email or "").strip().lower())
    ).scalar_one_or_none()


def _client_for(db: Session, user: User) -> Client | None:
    if user.is_super_user or not user.client_id:
        return None
    return db.get(Client, user.client_id)


def send_code(db: Session, user: User, purpose: str, dispatcher: EmailDispatcher) -> bool:
    """Issue a fresh OTP for ``user`` and email it; True when delivery succeeded."""
    issued = otp_manager.issue_otp(db, user_id=user.id, purpose=purpose)
    client = _client_for(db, user)
    client_profile = SmtpProfile.from_client_config(client.smtp_config) if client else None
    subject, html = render_otp_email(issued.code, purpose, settings.OTP_TTL_MINUTES)
    return dispatcher.send_with_fallback(user.email, subject, html, client_profile)


def _password_ok(password: str, password_hash: str) -> bool:
    try:
        return verify_password(password, password_hash)
    except ValueError:
        return False


def login(db: Session, *, email: str, password: str, dispatcher: EmailDispatcher) -> LoginResult:
    user = get_user_by_email(db, email)
    if not user or not _password_ok(password, user.password_hash):
        raise InvalidCredentials()
    if not user.is_active:
        raise UserInactive()

    if not user.is_super_user and not user.client_id:
        raise ClientAssociationRequired()

    client = _client_for(db, user)
    if client is not None and client.twofa_enabled:
        email_sent = send_code(db, user, otp_manager.PURPOSE_2FA, dispatcher)
        return LoginResult(user=user, requires_otp=True, email_sent=email_sent)

    issued = token_manager.issue_user_session(db, user)
    return LoginResult(user=user, issued=issued)


def validate_otp(db: Session, *, email: str, code: str, purpose: str = otp_manager.PURPOSE_2FA) -> LoginResult:
    if purpose != otp_manager.PURPOSE_2FA:
        raise ValueError("Only 2fa codes can be exchanged for tokens")
    user = get_user_by_email(db, email)
    if not user:
        raise NoActiveCode()
    otp_manager.verify_and_consume(db, user_id=user.id, purpose=purpose, code=code)
    if not user.is_active:
        raise UserInactive()
    if not user.is_super_user and not user.client_id:
        raise ClientAssociationRequired()

    issued = token_manager.issue_user_session(db, user)
    return LoginResult(user=user, issued=issued)


def refresh(db: Session, *, refresh_token: str) -> IssuedToken:
    found = token_manager.find_by_refresh_token(db, refresh_token)
    if found and found.token.is_client_session:
        client = db.get(Client, found.token.client_id)
        if not client or not client.is_active:
            raise InvalidRefreshToken()
    return token_manager.refresh_access_token(db, refresh_token)


def logout(db: Session, *, access_token: str) -> bool:
    return token_manager.revoke_token(db, access_token)


def forgot_password(db: Session, *, email: str, dispatcher: EmailDispatcher) -> None:
    user = get_user_by_email(db, email)
    if not user:
        logger.info("Password reset requested for unknown account")
        return
    send_code(db, user, otp_manager.PURPOSE_RESET, dispatcher)


def resend_otp(db: Session, *, email: str, purpose: str, dispatcher: EmailDispatcher) -> None:
    user = get_user_by_email(db, email)
    if not user:
        return
    if purpose == otp_manager.PURPOSE_2FA:
        # 2fa codes only go to accounts whose active client enforces 2fa
        client = _client_for(db, user)
        if client is None or not client.is_active or not client.twofa_enabled or not user.is_active:
            logger.info("Ignored 2fa code resend for account without 2fa")
            return
    send_code(db, user, purpose, dispatcher)


def _set_password(db: Session, user: User, new_password: str) -> None:
    user.password_hash = hash_password(new_password)
    user.updated_at = datetime.utcnow()
    db.add(user)
    revoked = token_manager.revoke_all_user_tokens(db, user.id, commit=False)
    db.commit()
    logger.info("Password updated for user %s; revoked %s token(s)", user.id, revoked)


def reset_password(db: Session, *, email: str, code: str, new_password: str) -> None:
    user = get_user_by_email(db, email)
    if not user:
        raise NoActiveCode()
    otp_manager.verify_and_consume(db, user_id=user.id, purpose=otp_manager.PURPOSE_RESET, code=code)
    _set_password(db, user, new_password)


def change_password(db: Session, *, user: User, current_password: str, new_password: str) -> None:
    if not _password_ok(current_password, user.password_hash):
        raise CurrentPasswordIncorrect()
    _set_password(db, user, new_password)


def validate_request(db: Session, *, user: User, host: str, route: str, method: str) -> AccessDecision:
    return authorize(db, user=user, host=host, route=route, method=method)


def client_login(db: Session, *, client_id: str) -> ClientLoginResult:
    client = db.execute(
        select(Client).where(Client.client_id == client_id)
    ).scalar_one_or_none()
    if not client or not client.is_active:
        raise InvalidClient()

    issued = token_manager.issue_token(db, client_id=client.id, realm_id=client.realm_id)
    realm = db.get(Realm, client.realm_id)
    return ClientLoginResult(client=client, realm=realm, issued=issued)
