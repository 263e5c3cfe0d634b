"""Tests for sign-up, sign-in, verification and password flows."""
import re

from app.spipuniform.db import session_scope
from app.spipuniform.models import AuditEvent, User


def _token_from(mail):
    m = re.search(r"token=([A-Za-z0-9_\-]+)", mail["text"])
    assert m, mail["text"]
    return m.group(1)


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["storage"] == "local"

    r = client.get("/healthz")
    assert r.status_code == 200


def test_first_signup_becomes_admin(client):
    r = client.get("/api/auth/admin-exists")
    assert r.json["data"]["admin_exists"] is False

    r = client.post("/api/auth/sign-up", json={"name": "Founder", "email": "Founder@Example.com", "password": "supersecret"})
    assert r.status_code == 201
    assert r.json["data"]["status"] == "first_admin"
    assert r.json["data"]["user"]["role"] == "admin"
    assert r.json["data"]["user"]["email"] == "founder@example.com"

    r = client.get("/api/auth/admin-exists")
    assert r.json["data"]["admin_exists"] is True

    r = client.post("/api/auth/sign-in", json={"email": "founder@example.com", "password": "supersecret"})
    assert r.status_code == 200
    assert r.json["data"]["permissions"]["manageUsers"] is True
    assert r.json["data"]["csrf_token"]


def test_signup_requires_verification(app, client, make_user, outbox):
    make_user("admin@example.com", role="admin")

    r = client.post("/api/auth/sign-up", json={"name": "Mary", "email": "mary@example.com", "password": "supersecret"})
    assert r.status_code == 201
    assert r.json["data"]["status"] == "active"
    assert r.json["data"]["user"]["role"] == "user"
    assert len(outbox) == 1
    assert outbox[0]["to"] == ["mary@example.com"]

    r = client.post("/api/auth/sign-in", json={"email": "mary@example.com", "password": "supersecret"})
    assert r.status_code == 403
    assert r.json["code"] == "EMAIL_NOT_VERIFIED"

    token = _token_from(outbox[0])
    r = client.get(f"/api/auth/verify-email?token={token}")
    assert r.status_code == 200

    # Single use.
    r = client.get(f"/api/auth/verify-email?token={token}")
    assert r.status_code == 400

    r = client.post("/api/auth/sign-in", json={"email": "mary@example.com", "password": "supersecret"})
    assert r.status_code == 200
    assert r.json["data"]["user"]["email_verified"] is True


def test_signup_validation_and_duplicates(client, make_user):
    make_user("admin@example.com", role="admin")
    r = client.post("/api/auth/sign-up", json={"name": "", "email": "not-an-email", "password": "short"})
    assert r.status_code == 400
    assert set(r.json["details"]) >= {"name", "email", "password"}

    make_user("taken@example.com")
    r = client.post("/api/auth/sign-up", json={"name": "Dup", "email": "TAKEN@example.com", "password": "supersecret"})
    assert r.status_code == 400
    assert r.json["details"]["email"] == "Email already registered"


def test_invalid_credentials_are_audited(app, client, make_user):
    make_user("mary@example.com")
    r = client.post("/api/auth/sign-in", json={"email": "mary@example.com", "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json["success"] is False

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.entity_id == "mary@example.com"


def test_login_rate_limited(client, make_user):
    make_user("mary@example.com")
    for _ in range(5):
        r = client.post("/api/auth/sign-in", json={"email": "mary@example.com", "password": "wrong-password"})
        assert r.status_code == 401
    r = client.post("/api/auth/sign-in", json={"email": "mary@example.com", "password": "password123"})
    assert r.status_code == 429


def test_session_and_sign_out(client, make_user, login):
    make_user("mary@example.com")
    r = client.get("/api/auth/session")
    assert r.json["data"]["user"] is None

    login(client, "mary@example.com")
    r = client.get("/api/auth/session")
    assert r.json["data"]["user"]["email"] == "mary@example.com"
    assert r.json["data"]["permissions"]["viewDashboard"] is True
    assert r.json["data"]["permissions"]["manageUsers"] is False

    client.post("/api/auth/sign-out")
    r = client.get("/api/auth/session")
    assert r.json["data"]["user"] is None


def test_banned_user_cannot_sign_in(app, client, make_user):
    make_user("bad@example.com", banned=True, ban_reason="Spam")
    r = client.post("/api/auth/sign-in", json={"email": "bad@example.com", "password": "password123"})
    assert r.status_code == 403
    assert r.json["code"] == "BANNED"
    assert "Spam" in r.json["error"]


def test_expired_ban_is_lifted_on_sign_in(app, client, make_user):
    from datetime import datetime, timedelta

    uid = make_user("temp@example.com", banned=True, ban_reason="Cooling off", ban_expires=datetime.utcnow() - timedelta(minutes=1))
    r = client.post("/api/auth/sign-in", json={"email": "temp@example.com", "password": "password123"})
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.get(User, uid).banned is False


def test_password_reset_flow(client, make_user, outbox):
    make_user("mary@example.com")

    r = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert r.status_code == 200
    assert outbox == []

    r = client.post("/api/auth/forgot-password", json={"email": "mary@example.com"})
    assert r.status_code == 200
    assert len(outbox) == 1
    token = _token_from(outbox[0])

    r = client.post("/api/auth/reset-password", json={"token": token, "password": "brand-new-pass"})
    assert r.status_code == 200

    r = client.post("/api/auth/sign-in", json={"email": "mary@example.com", "password": "password123"})
    assert r.status_code == 401
    r = client.post("/api/auth/sign-in", json={"email": "mary@example.com", "password": "brand-new-pass"})
    assert r.status_code == 200


def test_change_password(client, make_user, login):
    make_user("mary@example.com")
    login(client, "mary@example.com")

    r = client.post(
        "/api/auth/change-password",
        json={"current_password": "password123", "new_password": "another-pass", "confirm_password": "different"},
    )
    assert r.status_code == 400

    r = client.post(
        "/api/auth/change-password",
        json={"current_password": "wrong", "new_password": "another-pass", "confirm_password": "another-pass"},
    )
    assert r.status_code == 400
    assert r.json["details"]["current_password"] == "Incorrect password"

    r = client.post(
        "/api/auth/change-password",
        json={"current_password": "password123", "new_password": "another-pass", "confirm_password": "another-pass"},
    )
    assert r.status_code == 200


def test_change_password_requires_login(client):
    r = client.post("/api/auth/change-password", json={})
    assert r.status_code == 401


def test_upgrade_first_admin(app, make_user, client_for):
    make_user("early@example.com")
    c = client_for("early@example.com")
    r = c.post("/api/auth/upgrade-first-admin")
    assert r.status_code == 200
    assert r.json["data"]["role"] == "admin"

    make_user("late@example.com")
    c2 = client_for("late@example.com")
    r = c2.post("/api/auth/upgrade-first-admin")
    assert r.status_code == 403


def test_csrf_enforced_when_enabled(app, make_user, login):
    app.config["CSRF_ENABLED"] = True
    make_user("mary@example.com")
    c = app.test_client()
    # Auth endpoints are exempt.
    r = login(c, "mary@example.com")
    token = r.json["data"]["csrf_token"]

    r = c.post("/api/shops", json={"name": "No Token Shop"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]

    r = c.post("/api/shops", json={"name": "Token Shop"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 201
