import pytest
from werkzeug.security import generate_password_hash

from app.spipuniform import auth, create_app, mailer
from app.spipuniform.db import session_scope
from app.spipuniform.models import Base, User
from app.spipuniform.modules.user_management.service import seed_default_roles

PASSWORD = "password123"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("PUBLIC_BASE_URL", "http://testserver")
    for k in (
        "SMTP_HOST",
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
        "ADMIN_SENTINEL_EMAIL",
        "REQUIRE_EMAIL_VERIFICATION",
    ):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        seed_default_roles(s)
    auth._login_attempts.clear()
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def outbox(monkeypatch):
    """Captures outgoing mail instead of talking to SMTP."""
    sent = []

    def _fake_send(cfg, to, subject, text, html=None):
        sent.append({"to": list(to), "subject": subject, "text": text, "html": html})
        return {"ok": True, "delivery": "smtp", "message_id": f"<test-{len(sent)}@example.com>", "to": to}

    monkeypatch.setattr(mailer, "send_mail", _fake_send)
    return sent


def _create_user(app, email, *, name=None, role="user", verified=True, password=PASSWORD, **extra):
    extra.setdefault("banned", False)
    with session_scope(app) as s:
        u = User(
            name=name or email.split("@")[0].title(),
            email=email,
            password_hash=generate_password_hash(password),
            role=role,
            email_verified=verified,
            **extra,
        )
        s.add(u)
        s.flush()
        return u.id


def _login(client, email, password=PASSWORD):
    r = client.post("/api/auth/sign-in", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return r


@pytest.fixture()
def make_user(app):
    def _make(email, **kwargs):
        return _create_user(app, email, **kwargs)

    return _make


@pytest.fixture()
def login():
    return _login


@pytest.fixture()
def client_for(app):
    """A fresh, signed-in test client for an existing user."""

    def _client(email, password=PASSWORD):
        c = app.test_client()
        _login(c, email, password)
        return c

    return _client


@pytest.fixture()
def admin_client(app, client_for):
    _create_user(app, "admin@example.com", name="Admin", role="admin")
    return client_for("admin@example.com")


@pytest.fixture()
def user_client(app, client_for):
    _create_user(app, "parent@example.com", name="Parent", role="family")
    return client_for("parent@example.com")


@pytest.fixture()
def marketplace(app):
    """Seeded catalog plus one county/town, with ids for building listings."""
    from app.spipuniform.modules.catalog.models import Condition, ProductType
    from app.spipuniform.modules.catalog.seed import seed_catalog
    from app.spipuniform.modules.geography.service import get_or_create_county, get_or_create_locality

    with session_scope(app) as s:
        seed_catalog(s)
        cork = get_or_create_county(s, "Cork")
        cobh = get_or_create_locality(s, cork, "Cobh")
        shirt = s.query(ProductType).filter(ProductType.slug == "school-shirt").one()
        good = s.query(Condition).filter(Condition.name == "Good").one()
        ids = {
            "county_id": cork.id,
            "locality_id": cobh.id,
            "category_id": shirt.category_id,
            "product_type_id": shirt.id,
            "condition_id": good.id,
        }

    def _payload(**overrides):
        body = {
            "title": "White school shirt",
            "category_id": ids["category_id"],
            "product_type_id": ids["product_type_id"],
            "condition_id": ids["condition_id"],
            "locality_id": ids["locality_id"],
            "price": "5.00",
            "attributes": {"size": "Age 7-8", "color": "White"},
        }
        body.update(overrides)
        return body

    ids["payload"] = _payload
    return ids
