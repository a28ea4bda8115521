import re

from realmgate.auth.models import Token
from realmgate.auth.tokens import find_by_access_token
from realmgate.clients.models import Client


def test_create_client_generates_identifiers(client, db, factory, admin_headers):
    realm = factory.realm(db)

    resp = client.post(
        "/api/v1/clients",
        json={
            "realm_id": realm.id,
            "name": "portal",
            "endpoints": {"allowed_hosts": ["api.acme.com", " "]},
            "redirect_urls": ["https://acme.com/cb"],
        },
        headers=admin_headers,
    )

    assert resp.status_code == 201
    body = resp.json()
    assert re.fullmatch(r"client_[0-9a-f]{32}", body["client_id"])
    assert re.fullmatch(r"[0-9a-f]{64}", body["client_secret"])
    assert body["endpoints"] == {"allowed_hosts": ["api.acme.com"]}
    assert body["realm_name"] == realm.name

    fetched = client.get(f"/api/v1/clients/{body['id']}", headers=admin_headers).json()
    assert "client_secret" not in fetched


def test_create_client_checks_realm_and_name(client, db, factory, admin_headers):
    realm = factory.realm(db)
    factory.client(db, realm, name="portal")

    missing = client.post("/api/v1/clients", json={"realm_id": "rlm_missing", "name": "x"}, headers=admin_headers)
    dup = client.post("/api/v1/clients", json={"realm_id": realm.id, "name": "portal"}, headers=admin_headers)

    assert missing.status_code == 404
    assert dup.status_code == 409


def test_2fa_requires_complete_smtp_profile(client, db, factory, admin_headers):
    realm = factory.realm(db)

    partial = client.post(
        "/api/v1/clients",
        json={"realm_id": realm.id, "name": "secure", "twofa_enabled": True, "smtp_config": {"host": "smtp.acme.com"}},
        headers=admin_headers,
    )
    complete = client.post(
        "/api/v1/clients",
        json={"realm_id": realm.id, "name": "secure", "twofa_enabled": True, "smtp_config": factory.smtp},
        headers=admin_headers,
    )

    assert partial.status_code == 422
    assert set(partial.json()["detail"]["missing"]) == {"port", "username", "password", "from_email"}
    assert complete.status_code == 201
    assert "password" not in complete.json()["smtp_config"]


def test_update_keeps_stored_smtp_password_when_omitted(client, db, factory, admin_headers):
    realm = factory.realm(db)
    portal = factory.client(db, realm, twofa=True, smtp=factory.smtp)
    smtp = {k: v for k, v in factory.smtp.items() if k != "password"}
    smtp["host"] = "mail.acme.com"

    resp = client.put(f"/api/v1/clients/{portal.id}", json={"smtp_config": smtp}, headers=admin_headers)

    assert resp.status_code == 200
    db.expire_all()
    stored = db.get(Client, portal.id).smtp_config
    assert stored["host"] == "mail.acme.com"
    assert stored["password"] == factory.smtp["password"]


def test_regenerate_secret(client, db, factory, admin_headers):
    realm = factory.realm(db)
    portal = factory.client(db, realm)
    old_secret = portal.client_secret

    resp = client.post(f"/api/v1/clients/{portal.id}/regenerate-secret", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json()["client_secret"] != old_secret


def test_delete_client_with_users_is_rejected(client, db, factory, admin_headers):
    realm = factory.realm(db)
    portal = factory.client(db, realm)
    factory.user(db, "vic@acme.com", realm=realm, client=portal)

    resp = client.delete(f"/api/v1/clients/{portal.id}", headers=admin_headers)

    assert resp.status_code == 409


def test_delete_client_revokes_its_sessions(client, db, factory, admin_headers):
    realm = factory.realm(db)
    portal = factory.client(db, realm)
    session = factory.client_session(db, portal)

    resp = client.delete(f"/api/v1/clients/{portal.id}", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json()["revoked_sessions"] == 1
    db.expire_all()
    assert db.get(Token, session.token.id).is_active is False
    assert find_by_access_token(db, session.access_token) is None


def test_deactivating_a_client_revokes_its_sessions(client, db, factory, admin_headers):
    realm = factory.realm(db)
    portal = factory.client(db, realm)
    session = factory.client_session(db, portal)

    resp = client.put(f"/api/v1/clients/{portal.id}", json={"is_active": False}, headers=admin_headers)

    assert resp.status_code == 200
    db.expire_all()
    assert db.get(Token, session.token.id).is_active is False


def test_client_stats(client, db, factory, admin_headers):
    realm = factory.realm(db)
    other = factory.realm(db, name="globex")
    factory.client(db, realm, twofa=True, smtp=factory.smtp)
    factory.client(db, realm, name="legacy", is_active=False, sso_enabled=True)
    factory.client(db, other)

    overall = client.get("/api/v1/clients/stats/overview", headers=admin_headers).json()
    scoped = client.get("/api/v1/clients/stats/overview", params={"realm_id": realm.id}, headers=admin_headers).json()

    assert overall == {
        "total_clients": 3,
        "active_clients": 2,
        "sso_enabled_clients": 1,
        "twofa_enabled_clients": 1,
    }
    assert scoped["total_clients"] == 2
