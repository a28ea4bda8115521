import os
import re
import secrets
from datetime import datetime
from types import SimpleNamespace

# Settings are read at import time; configure before importing realmgate.
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ADMIN_EMAIL", "admin@admin.com")
os.environ.setdefault("BOOTSTRAP_ENABLED", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, insert  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from realmgate.auth.security import hash_password, new_id  # noqa: E402
from realmgate.auth.tokens import issue_token, issue_user_session  # noqa: E402
from realmgate.clients.models import Client  # noqa: E402
from realmgate.db.init_db import init_db  # noqa: E402
from realmgate.db.session import get_db  # noqa: E402
from realmgate.main import app  # noqa: E402
from realmgate.notifications.email import get_email_dispatcher  # noqa: E402
from realmgate.realms.models import Realm  # noqa: E402
from realmgate.roles.models import Role  # noqa: E402
from realmgate.users.models import User, user_roles  # noqa: E402

DEFAULT_PASSWORD = "s3cret-pass"
SMTP_CONFIG = {
    "host": "smtp.acme.com",
    "port": 587,
    "username": "mailer@acme.com",
    "password": "smtp-pass",
    "from_email": "no-reply@acme.com",
    "secure": False,
}


class FakeDispatcher:
    """Records outgoing mail instead of talking to an SMTP server."""

    def __init__(self, result: bool = True):
        self.result = result
        self.sent = []

    def send_with_fallback(self, to_email, subject, html_body, client_profile=None):
        self.sent.append(
            SimpleNamespace(to=to_email, subject=subject, html=html_body, client_profile=client_profile)
        )
        return self.result

    def last_code(self) -> str:
        match = re.search(r"(\d{6})</div>", self.sent[-1].html)
        assert match, "no one-time code in the last email"
        return match.group(1)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'realmgate.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def client(session_factory, dispatcher):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_email_dispatcher] = lambda: dispatcher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _make_realm(db, name="acme", **kwargs):
    now = datetime.utcnow()
    realm = Realm(id=new_id("rlm"), name=name, created_at=now, updated_at=now, **kwargs)
    db.add(realm)
    db.commit()
    return realm


def _make_client(db, realm, name="portal", *, twofa=False, allowed_hosts=None, smtp=None, **kwargs):
    now = datetime.utcnow()
    client = Client(
        id=new_id("cl"),
        realm_id=realm.id,
        name=name,
        client_id=f"client_{secrets.token_hex(16)}",
        client_secret="s" * 64,
        endpoints={"allowed_hosts": list(allowed_hosts or [])},
        redirect_urls=[],
        twofa_enabled=twofa,
        smtp_config=dict(smtp or {}),
        created_at=now,
        updated_at=now,
        **kwargs,
    )
    db.add(client)
    db.commit()
    return client


def _make_user(db, email, *, password=DEFAULT_PASSWORD, super_user=False, realm=None, client=None, **kwargs):
    now = datetime.utcnow()
    user = User(
        id=new_id("u"),
        email=email,
        password_hash=hash_password(password),
        is_super_user=super_user,
        realm_id=realm.id if realm else None,
        client_id=client.id if client else None,
        created_at=now,
        updated_at=now,
        **kwargs,
    )
    db.add(user)
    db.commit()
    return user


def _make_role(db, realm, access, name="viewer", **kwargs):
    now = datetime.utcnow()
    role = Role(
        id=new_id("role"),
        realm_id=realm.id,
        name=name,
        access=access,
        created_at=now,
        updated_at=now,
        **kwargs,
    )
    db.add(role)
    db.commit()
    return role


def _assign(db, user, role):
    db.execute(insert(user_roles).values(user_id=user.id, role_id=role.id))
    db.commit()


@pytest.fixture
def factory():
    return SimpleNamespace(
        realm=_make_realm,
        client=_make_client,
        user=_make_user,
        role=_make_role,
        assign=_assign,
        password=DEFAULT_PASSWORD,
        smtp=SMTP_CONFIG,
        session=issue_user_session,
        client_session=lambda db, client: issue_token(db, client_id=client.id, realm_id=client.realm_id),
    )


@pytest.fixture
def admin(db, factory):
    return factory.user(db, "admin@admin.com", super_user=True)


@pytest.fixture
def admin_headers(db, admin, factory):
    issued = factory.session(db, admin)
    return {"Authorization": f"Bearer {issued.access_token}"}
