from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from realmgate.auth import otp, service, tokens
from realmgate.auth.errors import (
    ClientAssociationRequired,
    CodeMismatch,
    CurrentPasswordIncorrect,
    InvalidClient,
    InvalidCredentials,
    NoActiveCode,
    UserInactive,
)
from realmgate.auth.models import Otp
from realmgate.auth.security import verify_password
from realmgate.users.models import User


def _twofa_user(db, factory):
    realm = factory.realm(db)
    client = factory.client(db, realm, twofa=True, smtp=factory.smtp)
    return factory.user(db, "frank@acme.com", realm=realm, client=client)


def test_login_without_2fa_issues_a_fresh_pair_and_revokes_old_ones(db, factory, dispatcher):
    realm = factory.realm(db)
    client = factory.client(db, realm)
    user = factory.user(db, "gina@acme.com", realm=realm, client=client)
    earlier = tokens.issue_user_session(db, user)

    result = service.login(db, email="Gina@Acme.com", password=factory.password, dispatcher=dispatcher)

    assert result.requires_otp is False
    assert result.issued.access_token != result.issued.refresh_token
    assert tokens.find_by_access_token(db, earlier.access_token) is None
    assert tokens.find_by_access_token(db, result.issued.access_token) is not None
    assert dispatcher.sent == []


def test_login_with_bad_password_or_unknown_email_fails(db, factory, dispatcher):
    factory.user(db, "root@acme.com", super_user=True)

    with pytest.raises(InvalidCredentials):
        service.login(db, email="root@acme.com", password="wrong-pass", dispatcher=dispatcher)
    with pytest.raises(InvalidCredentials):
        service.login(db, email="ghost@acme.com", password="whatever", dispatcher=dispatcher)


def test_login_of_inactive_user_fails(db, factory, dispatcher):
    factory.user(db, "root@acme.com", super_user=True, is_active=False)

    with pytest.raises(UserInactive):
        service.login(db, email="root@acme.com", password=factory.password, dispatcher=dispatcher)


def test_realm_user_without_client_cannot_login(db, factory, dispatcher):
    realm = factory.realm(db)
    factory.user(db, "hank@acme.com", realm=realm)

    with pytest.raises(ClientAssociationRequired) as exc:
        service.login(db, email="hank@acme.com", password=factory.password, dispatcher=dispatcher)
    assert exc.value.code == "CLIENT_REQUIRED"


def test_super_user_logs_in_without_client(db, factory, dispatcher):
    factory.user(db, "root@acme.com", super_user=True)

    result = service.login(db, email="root@acme.com", password=factory.password, dispatcher=dispatcher)

    assert result.issued.token.is_super_user is True


def test_2fa_login_sends_code_then_validate_otp_issues_tokens(db, factory, dispatcher):
    user = _twofa_user(db, factory)

    result = service.login(db, email=user.email, password=factory.password, dispatcher=dispatcher)

    assert result.requires_otp is True
    assert result.issued is None
    assert result.email_sent is True
    assert tokens.list_active_tokens(db, user.id) == []
    pending = db.execute(select(Otp).where(Otp.user_id == user.id)).scalar_one()
    assert pending.purpose == "2fa"
    assert pending.consumed is False
    assert abs((pending.expires_at - (datetime.utcnow() + timedelta(minutes=10))).total_seconds()) < 5
    assert dispatcher.sent[-1].to == user.email
    assert dispatcher.sent[-1].client_profile.host == factory.smtp["host"]

    validated = service.validate_otp(db, email=user.email, code=dispatcher.last_code())

    assert validated.issued.access_token
    db.expire_all()
    assert db.get(Otp, pending.id).consumed is True
    assert [t.id for t in tokens.list_active_tokens(db, user.id)] == [validated.issued.token.id]


def test_2fa_login_still_succeeds_when_email_delivery_fails(db, factory, dispatcher):
    user = _twofa_user(db, factory)
    dispatcher.result = False

    result = service.login(db, email=user.email, password=factory.password, dispatcher=dispatcher)

    assert result.requires_otp is True
    assert result.email_sent is False


def test_validate_otp_for_unknown_email_reveals_nothing(db):
    with pytest.raises(NoActiveCode):
        service.validate_otp(db, email="nobody@acme.com", code="123456")


def test_forgot_password_is_silent_for_unknown_accounts(db, factory, dispatcher):
    service.forgot_password(db, email="nobody@acme.com", dispatcher=dispatcher)
    assert dispatcher.sent == []

    user = factory.user(db, "root@acme.com", super_user=True)
    service.forgot_password(db, email=user.email, dispatcher=dispatcher)
    assert dispatcher.sent[-1].subject == "Your password reset code"
    # super users have no client profile; the default profile is used
    assert dispatcher.sent[-1].client_profile is None


def test_reset_password_updates_hash_and_revokes_every_session(db, factory, dispatcher):
    user = factory.user(db, "root@acme.com", super_user=True)
    session = tokens.issue_user_session(db, user)
    service.forgot_password(db, email=user.email, dispatcher=dispatcher)

    service.reset_password(db, email=user.email, code=dispatcher.last_code(), new_password="brand-new-pass")

    db.expire_all()
    assert verify_password("brand-new-pass", db.get(User, user.id).password_hash)
    assert tokens.find_by_access_token(db, session.access_token) is None


def test_reset_password_with_wrong_code_changes_nothing(db, factory, dispatcher):
    user = factory.user(db, "root@acme.com", super_user=True)
    service.forgot_password(db, email=user.email, dispatcher=dispatcher)
    code = dispatcher.last_code()
    wrong = "000000" if code != "000000" else "111111"

    with pytest.raises(CodeMismatch):
        service.reset_password(db, email=user.email, code=wrong, new_password="brand-new-pass")

    db.expire_all()
    assert verify_password(factory.password, db.get(User, user.id).password_hash)


def test_change_password_with_wrong_current_password_keeps_everything(db, factory):
    user = factory.user(db, "root@acme.com", super_user=True)
    session = tokens.issue_user_session(db, user)
    old_hash = user.password_hash

    with pytest.raises(CurrentPasswordIncorrect):
        service.change_password(db, user=user, current_password="nope-nope", new_password="another-pass")

    db.expire_all()
    assert db.get(User, user.id).password_hash == old_hash
    assert tokens.find_by_access_token(db, session.access_token) is not None


def test_change_password_revokes_the_calling_session_too(db, factory):
    user = factory.user(db, "root@acme.com", super_user=True)
    session = tokens.issue_user_session(db, user)

    service.change_password(db, user=user, current_password=factory.password, new_password="another-pass")

    assert tokens.find_by_access_token(db, session.access_token) is None
    db.expire_all()
    assert verify_password("another-pass", db.get(User, user.id).password_hash)


def test_logout_revokes_only_the_presented_token(db, factory):
    user = factory.user(db, "root@acme.com", super_user=True)
    a = tokens.issue_token(db, user_id=user.id)
    b = tokens.issue_token(db, user_id=user.id)

    assert service.logout(db, access_token=a.access_token) is True

    assert tokens.find_by_access_token(db, a.access_token) is None
    assert tokens.find_by_access_token(db, b.access_token) is not None


def test_client_login_requires_an_active_client(db, factory):
    realm = factory.realm(db)
    client = factory.client(db, realm)
    disabled = factory.client(db, realm, name="legacy", is_active=False)

    result = service.client_login(db, client_id=client.client_id)

    assert result.issued.token.is_client_session is True
    assert result.issued.token.client_id == client.id
    assert result.realm.id == realm.id
    with pytest.raises(InvalidClient):
        service.client_login(db, client_id=disabled.client_id)
    with pytest.raises(InvalidClient):
        service.client_login(db, client_id="client_missing")


def test_resend_2fa_code_is_ignored_without_a_2fa_client(db, factory, dispatcher):
    realm = factory.realm(db)
    plain = factory.client(db, realm)
    factory.user(db, "hank@acme.com", realm=realm)
    factory.user(db, "ivan@acme.com", realm=realm, client=plain)
    factory.user(db, "root@acme.com", super_user=True)

    for email in ("hank@acme.com", "ivan@acme.com", "root@acme.com"):
        service.resend_otp(db, email=email, purpose="2fa", dispatcher=dispatcher)

    assert dispatcher.sent == []
    assert db.execute(select(Otp)).scalars().all() == []


def test_resend_2fa_code_reaches_a_2fa_user(db, factory, dispatcher):
    user = _twofa_user(db, factory)

    service.resend_otp(db, email=user.email, purpose="2fa", dispatcher=dispatcher)

    assert dispatcher.sent[-1].to == user.email
    assert service.validate_otp(db, email=user.email, code=dispatcher.last_code()).issued.access_token


def test_validate_otp_rejects_realm_user_without_client(db, factory, dispatcher):
    realm = factory.realm(db)
    user = factory.user(db, "hank@acme.com", realm=realm)
    issued = otp.issue_otp(db, user_id=user.id, purpose="2fa")

    with pytest.raises(ClientAssociationRequired):
        service.validate_otp(db, email=user.email, code=issued.code)
    assert tokens.list_active_tokens(db, user.id) == []
