"""
Template rendering for outbound email.

Templates use `{{ variable }}` placeholders. HTML is autoescaped; a base
fragment wraps the body through the `{{ header }}`, `{{ content }}` and
`{{ footer }}` slots. Without a base fragment, header + body + footer are
concatenated.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment
from markupsafe import Markup

from app.spipuniform.errors import ValidationFailed

_html_env = SandboxedEnvironment(autoescape=True)
_text_env = SandboxedEnvironment(autoescape=False)

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"[ \t]+")


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def _render(env: SandboxedEnvironment, source: str | None, variables: dict[str, Any]) -> str:
    if not source:
        return ""
    try:
        return env.from_string(source).render(**variables)
    except TemplateError as e:
        raise ValidationFailed(f"Template error: {e}") from e


def html_to_text(html: str) -> str:
    text = re.sub(r"(?i)<br\s*/?>|</p>|</h[1-6]>|</div>|</li>", "\n", html)
    text = _TAG_RE.sub("", text)
    text = _WS_RE.sub(" ", text)
    lines = [ln.strip() for ln in text.splitlines()]
    return "\n".join(ln for ln in lines if ln).strip()


def compose_html(body: str, variables: dict[str, Any], *, base: str | None = None, header: str | None = None, footer: str | None = None) -> str:
    rendered_body = _render(_html_env, body, variables)
    rendered_header = _render(_html_env, header, variables)
    rendered_footer = _render(_html_env, footer, variables)
    if base:
        slots = dict(variables)
        slots.update(
            header=Markup(rendered_header),
            content=Markup(rendered_body),
            footer=Markup(rendered_footer),
        )
        return _render(_html_env, base, slots)
    return rendered_header + rendered_body + rendered_footer


def render_email(
    *,
    subject: str,
    html: str,
    text: str | None,
    variables: dict[str, Any],
    base: str | None = None,
    header: str | None = None,
    footer: str | None = None,
) -> RenderedEmail:
    rendered_subject = _render(_text_env, subject, variables).strip()
    rendered_html = compose_html(html, variables, base=base, header=header, footer=footer)
    rendered_text = _render(_text_env, text, variables) if text else html_to_text(rendered_html)
    return RenderedEmail(subject=rendered_subject, html=rendered_html, text=rendered_text)
