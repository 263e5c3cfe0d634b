"""Tests for the seed and maintenance scripts."""
import sys

import pytest
from werkzeug.security import check_password_hash

from app.spipuniform.db import session_scope
from app.spipuniform.models import User
from app.spipuniform.modules.catalog.models import ProductCategory
from app.spipuniform.modules.geography.models import County
from app.spipuniform.modules.user_management.models import AuthSettings
from scripts import _db_utils, init_db, release, seed_catalog, set_admin_role, start


def test_resolve_db_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert _db_utils.resolve_db_url() == "sqlite:///spipuniform.db"
    monkeypatch.setenv("DATABASE_URL", " postgresql://db/app ")
    assert _db_utils.resolve_db_url() == "postgresql://db/app"
    assert _db_utils.resolve_db_url("sqlite:///other.db") == "sqlite:///other.db"


def test_seed_only_creates_admin_once(app, monkeypatch, capsys):
    db_url = app.config["DATABASE_URL"]
    monkeypatch.setenv("ADMIN_EMAIL", "Owner@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "changeme123")

    init_db.seed_only(database_url=db_url)
    out = capsys.readouterr().out
    assert "Admin user created: owner@example.com" in out
    assert "Counties: 26 created" in out

    monkeypatch.setenv("ADMIN_PASSWORD", "different-password")
    init_db.seed_only(database_url=db_url)
    assert "Admin user exists: owner@example.com" in capsys.readouterr().out

    with session_scope(app) as s:
        admin = s.query(User).filter(User.email == "owner@example.com").one()
        assert admin.role == "admin"
        assert admin.email_verified is True
        assert check_password_hash(admin.password_hash, "changeme123")
        assert s.query(County).count() == 26
        assert s.query(AuthSettings).count() == 1


def test_seed_only_without_admin_email(app, monkeypatch, capsys):
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)
    init_db.seed_only(database_url=app.config["DATABASE_URL"])
    assert "first signup becomes the admin" in capsys.readouterr().out
    with session_scope(app) as s:
        assert s.query(User).count() == 0


def test_set_admin_role(app, make_user, monkeypatch, capsys):
    make_user("mary@example.com", role="family")
    db_url = app.config["DATABASE_URL"]

    monkeypatch.setattr(sys, "argv", ["set_admin_role.py", "--email", "mary@example.com", "--database-url", db_url])
    set_admin_role.main()
    assert "was family" in capsys.readouterr().out

    set_admin_role.main()
    assert "already has admin role" in capsys.readouterr().out

    with session_scope(app) as s:
        assert s.query(User).filter(User.email == "mary@example.com").one().role == "admin"


def test_seed_catalog_script(app, monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["seed_catalog.py", "--database-url", app.config["DATABASE_URL"]])
    seed_catalog.main()
    assert "categories: 7 created" in capsys.readouterr().out
    with session_scope(app) as s:
        assert s.query(ProductCategory).count() == 7


def test_release_seed_content_flags(app, monkeypatch, capsys):
    monkeypatch.setenv("SEED_EMAIL_TEMPLATES", "0")
    monkeypatch.delenv("SEED_CATALOG", raising=False)
    release.seed_content(app.config["DATABASE_URL"])
    out = capsys.readouterr().out
    assert "Catalog: categories=7" in out
    assert "Email templates" not in out

    monkeypatch.setenv("SEED_CATALOG", "off")
    monkeypatch.setenv("SEED_EMAIL_TEMPLATES", "1")
    release.seed_content(app.config["DATABASE_URL"])
    out = capsys.readouterr().out
    assert "Catalog" not in out
    assert "Email templates: created=" in out


def test_release_refuses_sqlite_in_production(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///prod.db")
    with pytest.raises(RuntimeError):
        release.run_release()


def test_gunicorn_argv(monkeypatch):
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("WEB_CONCURRENCY", "3")
    monkeypatch.delenv("GUNICORN_TIMEOUT", raising=False)
    argv = start.gunicorn_argv()
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert "--bind=0.0.0.0:9000" in argv
    assert "--workers=3" in argv
    assert "--timeout=60" in argv

    monkeypatch.setenv("PORT", "70000")
    with pytest.raises(SystemExit):
        start.gunicorn_argv()
