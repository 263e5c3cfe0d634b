from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from flask import current_app, has_app_context
from pydantic import EmailStr, Field, model_validator

from app.spipuniform import mailer
from app.spipuniform.audit import record_event
from app.spipuniform.errors import Conflict, NotFound, ValidationFailed
from app.spipuniform.modules.branding.service import branding_variables
from app.spipuniform.modules.email.models import EmailFragment, EmailLog, EmailSetting, EmailTemplate
from app.spipuniform.modules.email.renderer import RenderedEmail, render_email
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.spipuniform.models import User

logger = logging.getLogger(__name__)


# ---------- Payloads ----------
class TemplatePayload(Payload):
    name: str | None = Field(None, min_length=1, max_length=100)
    type: Literal["welcome", "reset_password", "verification", "notification", "custom"] | None = None
    subject: str | None = Field(None, min_length=1, max_length=255)
    html_content: str | None = Field(None, min_length=1)
    text_content: str | None = None
    variables: dict[str, Any] | None = None
    use_branding: bool | None = None
    include_header: bool | None = None
    include_footer: bool | None = None
    base_fragment_id: int | None = None
    header_fragment_id: int | None = None
    footer_fragment_id: int | None = None
    is_active: bool | None = None
    is_default: bool | None = None


class FragmentPayload(Payload):
    name: str | None = Field(None, min_length=1, max_length=100)
    type: Literal["base", "header", "footer", "partial"] | None = None
    description: str | None = None
    html_content: str | None = Field(None, min_length=1)
    is_active: bool | None = None

    @model_validator(mode="after")
    def _base_has_content_slot(self):
        if self.type == "base" and self.html_content and "content" not in self.html_content:
            raise ValueError("Base fragments must include a {{ content }} slot.")
        return self


class EmailSettingPayload(Payload):
    config_name: str | None = Field(None, min_length=1, max_length=100)
    provider: Literal["smtp"] | None = None
    smtp_host: str | None = Field(None, max_length=255)
    smtp_port: int | None = Field(None, ge=1, le=65535)
    smtp_user: str | None = Field(None, max_length=255)
    smtp_password: str | None = Field(None, max_length=255)
    smtp_secure: bool | None = None
    from_name: str | None = Field(None, max_length=255)
    from_email: EmailStr | None = None
    reply_to: EmailStr | None = None
    is_active: bool | None = None


class SendTestPayload(Payload):
    to: EmailStr
    template_id: int | None = None
    variables: dict[str, Any] = Field(default_factory=dict)


# ---------- Serialization ----------
def template_to_dict(t: EmailTemplate) -> dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "type": t.type,
        "subject": t.subject,
        "html_content": t.html_content,
        "text_content": t.text_content,
        "variables": t.variables or {},
        "use_branding": t.use_branding,
        "include_header": t.include_header,
        "include_footer": t.include_footer,
        "base_fragment_id": t.base_fragment_id,
        "header_fragment_id": t.header_fragment_id,
        "footer_fragment_id": t.footer_fragment_id,
        "is_active": t.is_active,
        "is_default": t.is_default,
        "created_at": iso(t.created_at),
        "updated_at": iso(t.updated_at),
    }


def fragment_to_dict(f: EmailFragment) -> dict[str, Any]:
    return {
        "id": f.id,
        "name": f.name,
        "type": f.type,
        "description": f.description,
        "html_content": f.html_content,
        "is_active": f.is_active,
        "created_at": iso(f.created_at),
        "updated_at": iso(f.updated_at),
    }


def setting_to_dict(e: EmailSetting) -> dict[str, Any]:
    return {
        "id": e.id,
        "config_name": e.config_name,
        "provider": e.provider,
        "smtp_host": e.smtp_host,
        "smtp_port": e.smtp_port,
        "smtp_user": e.smtp_user,
        "smtp_password_set": bool(e.smtp_password),
        "smtp_secure": e.smtp_secure,
        "from_name": e.from_name,
        "from_email": e.from_email,
        "reply_to": e.reply_to,
        "is_active": e.is_active,
        "created_at": iso(e.created_at),
        "updated_at": iso(e.updated_at),
    }


def log_to_dict(log: EmailLog) -> dict[str, Any]:
    return {
        "id": log.id,
        "to_email": log.to_email,
        "from_email": log.from_email,
        "subject": log.subject,
        "template_id": log.template_id,
        "status": log.status,
        "provider": log.provider,
        "message_id": log.message_id,
        "error_message": log.error_message,
        "metadata": log.metadata_json or {},
        "sent_at": iso(log.sent_at),
        "created_at": iso(log.created_at),
    }


# ---------- Templates ----------
def get_template_by_name(s: "Session", name: str) -> EmailTemplate | None:
    return (
        s.query(EmailTemplate)
        .filter(EmailTemplate.name == name, EmailTemplate.is_active.is_(True))
        .one_or_none()
    )


def _check_fragment(s: "Session", fragment_id: int | None, expected_type: str) -> None:
    if fragment_id is None:
        return
    frag = s.get(EmailFragment, fragment_id)
    if not frag:
        raise ValidationFailed("Fragment not found", details={f"{expected_type}_fragment_id": "Fragment not found"})
    if frag.type != expected_type:
        raise ValidationFailed(
            "Fragment type mismatch",
            details={f"{expected_type}_fragment_id": f"Fragment must be of type '{expected_type}'"},
        )


def _apply_template_fields(s: "Session", t: EmailTemplate, data: dict[str, Any]) -> None:
    for kind in ("base", "header", "footer"):
        key = f"{kind}_fragment_id"
        if key in data:
            _check_fragment(s, data[key], kind)
    for key, value in data.items():
        if value is None and key in ("name", "type", "subject", "html_content", "use_branding", "include_header", "include_footer", "is_active", "is_default"):
            continue
        setattr(t, key, value)
    if data.get("is_default"):
        # One default per template type.
        for other in s.query(EmailTemplate).filter(EmailTemplate.type == t.type, EmailTemplate.is_default.is_(True)).all():
            if other is not t:
                other.is_default = False


def create_template(s: "Session", payload: TemplatePayload, user: "User | None") -> EmailTemplate:
    data = payload.model_dump(exclude_unset=True)
    missing = {k: "Field required" for k in ("name", "subject", "html_content") if not data.get(k)}
    if missing:
        raise ValidationFailed("Validation failed", details=missing)
    if s.query(EmailTemplate).filter(EmailTemplate.name == data["name"]).one_or_none():
        raise Conflict(f'Template "{data["name"]}" already exists')
    t = EmailTemplate(name=data["name"], subject=data["subject"], html_content=data["html_content"], type=data.get("type") or "custom")
    s.add(t)
    _apply_template_fields(s, t, data)
    s.flush()
    record_event(s, actor=user, action="email_template.create", entity_type="EmailTemplate", entity_id=t.id, metadata={"name": t.name})
    return t


def update_template(s: "Session", t: EmailTemplate, payload: TemplatePayload, user: "User") -> EmailTemplate:
    data = payload.model_dump(exclude_unset=True)
    new_name = data.get("name")
    if new_name and new_name != t.name:
        if s.query(EmailTemplate).filter(EmailTemplate.name == new_name).one_or_none():
            raise Conflict(f'Template "{new_name}" already exists')
    _apply_template_fields(s, t, data)
    t.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="email_template.edit", entity_type="EmailTemplate", entity_id=t.id, metadata={"fields": sorted(data)})
    return t


def delete_template(s: "Session", t: EmailTemplate, user: "User") -> None:
    record_event(s, actor=user, action="email_template.delete", entity_type="EmailTemplate", entity_id=t.id, metadata={"name": t.name})
    s.delete(t)


# ---------- Fragments ----------
def create_fragment(s: "Session", payload: FragmentPayload, user: "User") -> EmailFragment:
    data = payload.model_dump(exclude_unset=True)
    missing = {k: "Field required" for k in ("name", "html_content") if not data.get(k)}
    if missing:
        raise ValidationFailed("Validation failed", details=missing)
    if s.query(EmailFragment).filter(EmailFragment.name == data["name"]).one_or_none():
        raise Conflict(f'Fragment "{data["name"]}" already exists')
    f = EmailFragment(
        name=data["name"],
        type=data.get("type") or "partial",
        description=data.get("description"),
        html_content=data["html_content"],
        is_active=data.get("is_active", True) is not False,
    )
    s.add(f)
    s.flush()
    record_event(s, actor=user, action="email_fragment.create", entity_type="EmailFragment", entity_id=f.id, metadata={"name": f.name, "type": f.type})
    return f


def update_fragment(s: "Session", f: EmailFragment, payload: FragmentPayload, user: "User") -> EmailFragment:
    data = payload.model_dump(exclude_unset=True)
    new_name = data.get("name")
    if new_name and new_name != f.name:
        if s.query(EmailFragment).filter(EmailFragment.name == new_name).one_or_none():
            raise Conflict(f'Fragment "{new_name}" already exists')
    for key, value in data.items():
        if value is None and key in ("name", "type", "html_content", "is_active"):
            continue
        setattr(f, key, value)
    f.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="email_fragment.edit", entity_type="EmailFragment", entity_id=f.id, metadata={"fields": sorted(data)})
    return f


def delete_fragment(s: "Session", f: EmailFragment, user: "User") -> None:
    record_event(s, actor=user, action="email_fragment.delete", entity_type="EmailFragment", entity_id=f.id, metadata={"name": f.name})
    for t in s.query(EmailTemplate).filter(
        (EmailTemplate.base_fragment_id == f.id)
        | (EmailTemplate.header_fragment_id == f.id)
        | (EmailTemplate.footer_fragment_id == f.id)
    ).all():
        for key in ("base_fragment_id", "header_fragment_id", "footer_fragment_id"):
            if getattr(t, key) == f.id:
                setattr(t, key, None)
    s.delete(f)


# ---------- Settings ----------
def _deactivate_other_settings(s: "Session", keep_id: int | None) -> None:
    q = s.query(EmailSetting).filter(EmailSetting.is_active.is_(True))
    if keep_id is not None:
        q = q.filter(EmailSetting.id != keep_id)
    for other in q.all():
        other.is_active = False
        other.updated_at = datetime.utcnow()


def create_setting(s: "Session", payload: EmailSettingPayload, user: "User") -> EmailSetting:
    data = payload.model_dump(exclude_unset=True)
    missing = {k: "Field required" for k in ("config_name", "from_email") if not data.get(k)}
    if missing:
        raise ValidationFailed("Validation failed", details=missing)
    e = EmailSetting(
        config_name=data["config_name"],
        provider=data.get("provider") or "smtp",
        smtp_host=data.get("smtp_host"),
        smtp_port=data.get("smtp_port"),
        smtp_user=data.get("smtp_user"),
        smtp_password=data.get("smtp_password"),
        smtp_secure=bool(data.get("smtp_secure")),
        from_name=data.get("from_name"),
        from_email=data["from_email"],
        reply_to=data.get("reply_to"),
        is_active=bool(data.get("is_active")),
    )
    if e.is_active:
        _deactivate_other_settings(s, None)
    s.add(e)
    s.flush()
    record_event(s, actor=user, action="email_setting.create", entity_type="EmailSetting", entity_id=e.id, metadata={"config_name": e.config_name})
    return e


def update_setting(s: "Session", e: EmailSetting, payload: EmailSettingPayload, user: "User") -> EmailSetting:
    data = payload.model_dump(exclude_unset=True)
    for key, value in data.items():
        if key == "is_active":
            continue
        if value is None and key in ("config_name", "provider", "from_email", "smtp_secure"):
            continue
        # Blank password on edit keeps the stored one.
        if key == "smtp_password" and not value:
            continue
        setattr(e, key, value)
    if data.get("is_active") is True:
        _deactivate_other_settings(s, e.id)
        e.is_active = True
    elif data.get("is_active") is False:
        e.is_active = False
    e.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="email_setting.edit", entity_type="EmailSetting", entity_id=e.id, metadata={"fields": sorted(data)})
    return e


def activate_setting(s: "Session", e: EmailSetting, user: "User") -> EmailSetting:
    _deactivate_other_settings(s, e.id)
    e.is_active = True
    e.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="email_setting.activate", entity_type="EmailSetting", entity_id=e.id)
    return e


def delete_setting(s: "Session", e: EmailSetting, user: "User") -> None:
    record_event(s, actor=user, action="email_setting.delete", entity_type="EmailSetting", entity_id=e.id, metadata={"config_name": e.config_name})
    s.delete(e)


def resolve_smtp_config(s: "Session") -> mailer.SmtpConfig:
    """Active settings row wins; otherwise SMTP_* environment values."""
    active = s.query(EmailSetting).filter(EmailSetting.is_active.is_(True)).order_by(EmailSetting.updated_at.desc()).first()
    if active:
        return mailer.SmtpConfig(
            host=active.smtp_host or "",
            port=active.smtp_port or (465 if active.smtp_secure else 587),
            user=active.smtp_user or "",
            password=active.smtp_password or "",
            from_email=active.from_email,
            from_name=active.from_name or "",
            reply_to=active.reply_to or "",
            secure=active.smtp_secure,
        )
    config = current_app.config if has_app_context() else {}
    return mailer.smtp_config_from_app(config)


# ---------- Rendering & sending ----------
def render_template(s: "Session", t: EmailTemplate, variables: dict[str, Any] | None = None) -> RenderedEmail:
    merged: dict[str, Any] = {}
    if t.use_branding:
        merged.update(branding_variables(s))
    merged.update(variables or {})

    def _fragment(fragment_id: int | None) -> str | None:
        if fragment_id is None:
            return None
        frag = s.get(EmailFragment, fragment_id)
        return frag.html_content if frag and frag.is_active else None

    return render_email(
        subject=t.subject,
        html=t.html_content,
        text=t.text_content,
        variables=merged,
        base=_fragment(t.base_fragment_id),
        header=_fragment(t.header_fragment_id) if t.include_header else None,
        footer=_fragment(t.footer_fragment_id) if t.include_footer else None,
    )


def send_email(
    s: "Session",
    *,
    to: str | list[str],
    template: str | None = None,
    template_id: int | None = None,
    subject: str | None = None,
    html: str | None = None,
    text: str | None = None,
    variables: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> EmailLog:
    """
    Render (by template id/name, or raw subject+html) and deliver one message.
    Delivery failures end up on the returned log row; a missing template raises NotFound.
    """
    recipients = [to] if isinstance(to, str) else list(to)
    if not recipients:
        raise ValidationFailed("At least one recipient is required.")

    tpl: EmailTemplate | None = None
    if template_id is not None:
        tpl = s.get(EmailTemplate, template_id)
        if not tpl:
            raise NotFound(f"Email template {template_id} not found")
    elif template:
        tpl = get_template_by_name(s, template)
        if not tpl:
            raise NotFound(f'Email template "{template}" not found')

    if tpl is not None:
        rendered = render_template(s, tpl, variables)
        if subject and not rendered.subject.strip():
            # The template's own subject wins; `subject` only fills a blank one.
            rendered = RenderedEmail(
                subject=render_email(subject=subject, html="", text="", variables=variables or {}).subject,
                html=rendered.html,
                text=rendered.text,
            )
    else:
        if not subject or not html:
            raise ValidationFailed("subject and html are required when no template is given.")
        rendered = render_email(subject=subject, html=html, text=text, variables=variables or {})

    cfg = resolve_smtp_config(s)
    log = EmailLog(
        to_email=", ".join(recipients),
        from_email=cfg.from_email,
        subject=rendered.subject[:255],
        template_id=tpl.id if tpl else None,
        status="pending",
        provider="smtp",
        metadata_json={**(metadata or {}), "variables": sorted((variables or {}).keys())},
    )
    s.add(log)
    s.flush()

    try:
        result = mailer.send_mail(cfg, recipients, rendered.subject, rendered.text, rendered.html)
    except mailer.MailerError as e:
        logger.warning("Email send failed (log_id=%s): %s", log.id, e)
        log.status = "failed"
        log.error_message = str(e)[:2000]
        return log

    log.status = "sent"
    log.message_id = result.get("message_id")
    log.sent_at = datetime.utcnow()
    if result.get("delivery") == "dry-run":
        log.metadata_json = {**(log.metadata_json or {}), "delivery": "dry-run"}
    return log
