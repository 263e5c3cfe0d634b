"""Built-in account-lifecycle templates, looked up by name by the user services."""

from __future__ import annotations

from typing import Any

from app.spipuniform.modules.email.models import EmailTemplate

_BUTTON = (
    '<p style="text-align:center;"><a href="{href}" style="background-color:{{{{ primary_color }}}};'
    'color:#ffffff;border-radius:6px;padding:12px 24px;text-decoration:none;display:inline-block;">{label}</a></p>'
)
_FOOTER = '<p style="color:#6B7280;font-size:12px;text-align:center;">{{ site_name }} &middot; {{ site_url }}</p>'


def _var(description: str, example: str, required: bool = True) -> dict[str, Any]:
    return {"description": description, "example": example, "required": required}


DEFAULT_TEMPLATES: list[dict[str, Any]] = [
    {
        "name": "Approval Pending",
        "type": "notification",
        "subject": "New user awaiting approval on {{ site_name }}",
        "html_content": (
            "<h2>New user pending approval</h2>"
            "<p>Name: {{ user_name }}<br>Email: {{ user_email }}</p>"
            "<p>Please visit the admin dashboard to approve or reject this account.</p>" + _FOOTER
        ),
        "text_content": (
            "New user pending approval\nName: {{ user_name }}\nEmail: {{ user_email }}\n"
            "Please visit the admin dashboard to approve or reject this account."
        ),
        "variables": {
            "user_name": _var("Name of the new user", "Mary Murphy"),
            "user_email": _var("Email of the new user", "mary@example.com"),
        },
    },
    {
        "name": "Approval Rejected",
        "type": "notification",
        "subject": "Your {{ site_name }} account was not approved",
        "html_content": (
            "<p>Hi {{ user_name }},</p>"
            "<p>We're sorry, your account could not be approved at this time.</p>"
            "<p>If you believe this is a mistake, please contact our support team: "
            '<a href="mailto:{{ support_email }}">{{ support_email }}</a></p>' + _FOOTER
        ),
        "text_content": (
            "Hi {{ user_name }},\nWe're sorry, your account could not be approved at this time.\n"
            "Contact support: {{ support_email }}"
        ),
        "variables": {
            "user_name": _var("Recipient's name", "Mary Murphy"),
            "support_email": _var("Support address from branding", "support@example.com"),
        },
    },
    {
        "name": "Welcome & Registration Email",
        "type": "welcome",
        "subject": "Welcome to {{ site_name }}!",
        "html_content": (
            "<h1>Welcome, {{ user_name }}!</h1>"
            "<p>Your account has been approved. You can now buy, sell and swap school uniforms "
            "with families near you.</p>" + _BUTTON.format(href="{{ site_url }}", label="Sign in") + _FOOTER
        ),
        "text_content": "Welcome, {{ user_name }}!\nYour account has been approved. You can now sign in: {{ site_url }}",
        "variables": {"user_name": _var("Recipient's name", "Mary Murphy")},
    },
    {
        "name": "Email Verification",
        "type": "verification",
        "subject": "Verify your email address",
        "html_content": (
            "<p>Hi {{ user_name }},</p><p>Please confirm your email address to finish setting up your account.</p>"
            + _BUTTON.format(href="{{ verification_url }}", label="Verify email")
            + '<p style="font-size:12px;">Or paste this link into your browser: {{ verification_url }}</p>' + _FOOTER
        ),
        "text_content": "Hi {{ user_name }},\nPlease verify your email address: {{ verification_url }}",
        "variables": {
            "user_name": _var("Recipient's name", "Mary Murphy"),
            "verification_url": _var("One-time verification link", "https://example.com/api/auth/verify-email?token=abc"),
        },
    },
    {
        "name": "Password Reset",
        "type": "reset_password",
        "subject": "Reset your password",
        "html_content": (
            "<p>Hi {{ user_name }},</p><p>We received a request to reset your password. The link expires in one hour.</p>"
            + _BUTTON.format(href="{{ reset_url }}", label="Reset password")
            + "<p>If you didn't ask for this, you can ignore this email.</p>" + _FOOTER
        ),
        "text_content": (
            "Hi {{ user_name }},\nReset your password here: {{ reset_url }}\n"
            "The link expires in one hour. If you didn't ask for this, ignore this email."
        ),
        "variables": {
            "user_name": _var("Recipient's name", "Mary Murphy"),
            "reset_url": _var("One-time reset link", "https://example.com/reset-password?token=abc"),
        },
    },
]


def seed_default_templates(s, *, overwrite: bool = False) -> dict[str, int]:
    """Insert missing templates by name; with overwrite, reset existing ones to the defaults."""
    counts = {"created": 0, "updated": 0, "skipped": 0}
    for tpl in DEFAULT_TEMPLATES:
        t = s.query(EmailTemplate).filter(EmailTemplate.name == tpl["name"]).one_or_none()
        if t is None:
            s.add(EmailTemplate(**tpl, use_branding=True, is_active=True, is_default=True))
            counts["created"] += 1
        elif overwrite:
            for k, v in tpl.items():
                setattr(t, k, v)
            counts["updated"] += 1
        else:
            counts["skipped"] += 1
    s.flush()
    return counts
