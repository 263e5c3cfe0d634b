from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any

logger = logging.getLogger(__name__)


class MailerError(RuntimeError):
    pass


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    user: str
    password: str
    from_email: str
    from_name: str = ""
    reply_to: str = ""
    secure: bool = False  # implicit TLS (465); otherwise STARTTLS when available

    @property
    def configured(self) -> bool:
        return bool(self.host)


def smtp_config_from_app(config: dict) -> SmtpConfig:
    return SmtpConfig(
        host=(config.get("SMTP_HOST") or "").strip(),
        port=int(config.get("SMTP_PORT") or 587),
        user=(config.get("SMTP_USER") or "").strip(),
        password=config.get("SMTP_PASSWORD") or "",
        from_email=(config.get("SMTP_FROM") or "no-reply@spipuniform.local").strip(),
    )


def send_mail(
    cfg: SmtpConfig,
    to: list[str],
    subject: str,
    text: str,
    html: str | None = None,
) -> dict[str, Any]:
    msg = EmailMessage()
    msg["From"] = formataddr((cfg.from_name, cfg.from_email)) if cfg.from_name else cfg.from_email
    msg["To"] = ", ".join(to)
    msg["Subject"] = subject
    if cfg.reply_to:
        msg["Reply-To"] = cfg.reply_to
    message_id = make_msgid(domain=(cfg.from_email.split("@")[-1] or None))
    msg["Message-ID"] = message_id
    msg.set_content(text or "")
    if html:
        msg.add_alternative(html, subtype="html")

    # No SMTP host: dry-run, report what would have been sent.
    if not cfg.configured:
        logger.info("Mail dry-run to=%s subject=%s", ",".join(to), subject)
        return {"ok": True, "delivery": "dry-run", "message_id": message_id, "to": to}

    context = ssl.create_default_context()
    try:
        if cfg.secure:
            with smtplib.SMTP_SSL(cfg.host, cfg.port, context=context, timeout=30) as s:
                if cfg.user:
                    s.login(cfg.user, cfg.password)
                s.send_message(msg)
        else:
            with smtplib.SMTP(cfg.host, cfg.port, timeout=30) as s:
                s.ehlo()
                if s.has_extn("starttls"):
                    s.starttls(context=context)
                    s.ehlo()
                if cfg.user:
                    s.login(cfg.user, cfg.password)
                s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise MailerError(f"SMTP delivery failed: {e}") from e
    return {"ok": True, "delivery": "smtp", "message_id": message_id, "to": to}
