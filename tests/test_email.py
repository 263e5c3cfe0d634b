"""Tests for email templates, fragments, settings, rendering and delivery logs."""
import pytest

from app.spipuniform import mailer
from app.spipuniform.db import session_scope
from app.spipuniform.errors import ValidationFailed
from app.spipuniform.modules.email.defaults import DEFAULT_TEMPLATES, seed_default_templates
from app.spipuniform.modules.email.models import EmailLog, EmailTemplate
from app.spipuniform.modules.email.renderer import html_to_text, render_email


def test_render_email_escapes_html_but_not_text():
    out = render_email(
        subject="Hello {{ name }}",
        html="<p>{{ name }}</p>",
        text="Plain {{ name }}",
        variables={"name": "<b>Mary</b>"},
    )
    assert out.subject == "Hello <b>Mary</b>"
    assert out.html == "<p>&lt;b&gt;Mary&lt;/b&gt;</p>"
    assert out.text == "Plain <b>Mary</b>"


def test_render_email_wraps_in_base_fragment():
    out = render_email(
        subject="s",
        html="<p>Body for {{ name }}</p>",
        text=None,
        variables={"name": "Mary"},
        base="<html>{{ header }}<main>{{ content }}</main>{{ footer }}</html>",
        header="<header>Top</header>",
        footer="<footer>Bottom</footer>",
    )
    assert out.html == "<html><header>Top</header><main><p>Body for Mary</p></main><footer>Bottom</footer></html>"
    # Text falls back to a stripped version of the html.
    assert out.text == "TopBody for Mary\nBottom"


def test_render_email_template_error():
    with pytest.raises(ValidationFailed):
        render_email(subject="{{ broken", html="<p>x</p>", text=None, variables={})


def test_html_to_text():
    assert html_to_text("<h1>Title</h1><p>One<br>Two</p>") == "Title\nOne\nTwo"


def test_email_endpoints_require_permission(user_client):
    assert user_client.get("/api/email/templates").status_code == 403


def test_template_crud_and_preview(admin_client):
    r = admin_client.post("/api/email/templates", json={"name": "Listing Sold"})
    assert r.status_code == 400
    assert set(r.json["details"]) == {"subject", "html_content"}

    r = admin_client.post(
        "/api/email/templates",
        json={
            "name": "Listing Sold",
            "type": "notification",
            "subject": "{{ item }} sold on {{ site_name }}",
            "html_content": "<p>Congrats {{ user_name }}!</p>",
        },
    )
    assert r.status_code == 201
    tid = r.json["data"]["id"]
    assert r.json["data"]["use_branding"] is True

    r = admin_client.post(
        "/api/email/templates",
        json={"name": "Listing Sold", "subject": "x", "html_content": "<p>x</p>"},
    )
    assert r.status_code == 400

    r = admin_client.post(f"/api/email/templates/{tid}/preview", json={"variables": {"item": "Blazer", "user_name": "Mary"}})
    assert r.status_code == 200
    assert r.json["data"]["subject"] == "Blazer sold on SpipUniform"
    assert "Congrats Mary!" in r.json["data"]["html"]

    r = admin_client.put(f"/api/email/templates/{tid}", json={"subject": "Sold: {{ item }}", "is_active": False})
    assert r.status_code == 200
    assert r.json["data"]["subject"] == "Sold: {{ item }}"
    assert r.json["data"]["is_active"] is False

    r = admin_client.get("/api/email/templates?type=notification")
    assert [t["name"] for t in r.json["data"]] == ["Listing Sold"]

    assert admin_client.delete(f"/api/email/templates/{tid}").status_code == 200
    assert admin_client.get(f"/api/email/templates/{tid}").status_code == 404


def test_template_fragment_type_checked(admin_client):
    r = admin_client.post("/api/email/fragments", json={"name": "Footer", "type": "footer", "html_content": "<p>bye</p>"})
    assert r.status_code == 201
    footer_id = r.json["data"]["id"]

    r = admin_client.post(
        "/api/email/templates",
        json={"name": "T", "subject": "s", "html_content": "<p>x</p>", "base_fragment_id": footer_id},
    )
    assert r.status_code == 400
    assert "base_fragment_id" in r.json["details"]

    r = admin_client.post("/api/email/fragments", json={"name": "Base", "type": "base", "html_content": "<div>no slot</div>"})
    assert r.status_code == 400


def test_deleting_fragment_detaches_templates(admin_client):
    base_id = admin_client.post(
        "/api/email/fragments", json={"name": "Base", "type": "base", "html_content": "<div>{{ content }}</div>"}
    ).json["data"]["id"]
    tid = admin_client.post(
        "/api/email/templates",
        json={"name": "T", "subject": "s", "html_content": "<p>x</p>", "base_fragment_id": base_id},
    ).json["data"]["id"]

    preview = admin_client.post(f"/api/email/templates/{tid}/preview", json={}).json["data"]
    assert preview["html"] == "<div><p>x</p></div>"

    assert admin_client.delete(f"/api/email/fragments/{base_id}").status_code == 200
    r = admin_client.get(f"/api/email/templates/{tid}")
    assert r.json["data"]["base_fragment_id"] is None


def test_settings_single_active_and_password_hidden(admin_client):
    r = admin_client.post(
        "/api/email/settings",
        json={"config_name": "Primary", "smtp_host": "smtp.example.com", "smtp_password": "s3cret", "from_email": "noreply@example.com", "is_active": True},
    )
    assert r.status_code == 201
    first = r.json["data"]
    assert first["smtp_password_set"] is True
    assert "smtp_password" not in first

    r = admin_client.post("/api/email/settings", json={"config_name": "Backup", "from_email": "backup@example.com"})
    second = r.json["data"]
    assert second["is_active"] is False

    r = admin_client.post(f"/api/email/settings/{second['id']}/activate")
    assert r.json["data"]["is_active"] is True
    rows = {x["id"]: x for x in admin_client.get("/api/email/settings").json["data"]}
    assert rows[first["id"]]["is_active"] is False

    # Blank password keeps the stored one.
    r = admin_client.put(f"/api/email/settings/{first['id']}", json={"smtp_password": ""})
    assert r.json["data"]["smtp_password_set"] is True

    r = admin_client.post("/api/email/settings", json={"config_name": "Broken"})
    assert r.status_code == 400


def test_send_test_email_logs(app, admin_client, outbox):
    r = admin_client.post("/api/email/test", json={"to": "someone@example.com"})
    assert r.status_code == 200
    assert r.json["data"]["status"] == "sent"
    assert outbox[-1]["subject"] == "Test email from SpipUniform"

    r = admin_client.get("/api/email/logs?status=sent")
    assert r.json["pagination"]["total"] == 1
    assert r.json["data"][0]["to_email"] == "someone@example.com"


def test_send_failure_recorded(app, admin_client, monkeypatch):
    def _boom(cfg, to, subject, text, html=None):
        raise mailer.MailerError("SMTP delivery failed: connection refused")

    monkeypatch.setattr(mailer, "send_mail", _boom)
    r = admin_client.post("/api/email/test", json={"to": "someone@example.com"})
    assert r.status_code == 502
    assert r.json["success"] is False
    assert "connection refused" in r.json["error"]

    with session_scope(app) as s:
        log = s.query(EmailLog).one()
        assert log.status == "failed"


def test_dry_run_without_smtp_host():
    cfg = mailer.SmtpConfig(host="", port=587, user="", password="", from_email="no-reply@example.com")
    result = mailer.send_mail(cfg, ["a@example.com"], "Hi", "text", "<p>html</p>")
    assert result["delivery"] == "dry-run"
    assert result["message_id"].endswith("@example.com>")


def test_seed_default_templates(app):
    with session_scope(app) as s:
        counts = seed_default_templates(s)
        assert counts == {"created": len(DEFAULT_TEMPLATES), "updated": 0, "skipped": 0}

    with session_scope(app) as s:
        t = s.query(EmailTemplate).filter(EmailTemplate.name == "Password Reset").one()
        t.subject = "Edited"
        counts = seed_default_templates(s)
        assert counts["skipped"] == len(DEFAULT_TEMPLATES)

    with session_scope(app) as s:
        counts = seed_default_templates(s, overwrite=True)
        assert counts["updated"] == len(DEFAULT_TEMPLATES)
        t = s.query(EmailTemplate).filter(EmailTemplate.name == "Password Reset").one()
        assert t.subject == "Reset your password"


def test_named_template_used_for_account_mail(app, client, make_user, outbox):
    with session_scope(app) as s:
        seed_default_templates(s)
    make_user("mary@example.com")

    r = client.post("/api/auth/forgot-password", json={"email": "mary@example.com"})
    assert r.status_code == 200
    mail = outbox[-1]
    assert mail["subject"] == "Reset your password"
    # Branding variables fill the footer.
    assert "SpipUniform" in mail["html"]
    assert "reset-password?token=" in mail["text"]
