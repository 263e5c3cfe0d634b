from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.spipuniform.db import db_session
from app.spipuniform.errors import NotFound
from app.spipuniform.modules.email.models import EmailFragment, EmailLog, EmailSetting, EmailTemplate
from app.spipuniform.modules.email.service import (
    EmailSettingPayload,
    FragmentPayload,
    SendTestPayload,
    TemplatePayload,
    activate_setting,
    create_fragment,
    create_setting,
    create_template,
    delete_fragment,
    delete_setting,
    delete_template,
    fragment_to_dict,
    log_to_dict,
    render_template,
    send_email,
    setting_to_dict,
    template_to_dict,
    update_fragment,
    update_setting,
    update_template,
)
from app.spipuniform.rbac import require_permission
from app.spipuniform.utils import page_params, paginate
from app.spipuniform.validation import json_body, parse_json

bp = Blueprint("email", __name__)


def _get_or_404(model, obj_id: int, label: str):
    obj = db_session().get(model, obj_id)
    if not obj:
        raise NotFound(f"{label} not found")
    return obj


# ---------- Templates ----------
@bp.get("/templates")
@require_permission("viewEmail")
def templates_list():
    s = db_session()
    q = s.query(EmailTemplate)
    type_filter = (request.args.get("type") or "").strip()
    if type_filter:
        q = q.filter(EmailTemplate.type == type_filter)
    rows = q.order_by(EmailTemplate.name.asc()).all()
    return jsonify({"success": True, "data": [template_to_dict(t) for t in rows]})


@bp.post("/templates")
@require_permission("viewEmail")
def templates_create():
    s = db_session()
    t = create_template(s, parse_json(TemplatePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": template_to_dict(t)}), 201


@bp.get("/templates/<int:template_id>")
@require_permission("viewEmail")
def templates_detail(template_id: int):
    t = _get_or_404(EmailTemplate, template_id, "Template")
    return jsonify({"success": True, "data": template_to_dict(t)})


@bp.put("/templates/<int:template_id>")
@require_permission("viewEmail")
def templates_update(template_id: int):
    s = db_session()
    t = _get_or_404(EmailTemplate, template_id, "Template")
    update_template(s, t, parse_json(TemplatePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": template_to_dict(t)})


@bp.delete("/templates/<int:template_id>")
@require_permission("viewEmail")
def templates_delete(template_id: int):
    s = db_session()
    t = _get_or_404(EmailTemplate, template_id, "Template")
    delete_template(s, t, g.current_user)
    s.commit()
    return jsonify({"success": True})


@bp.post("/templates/<int:template_id>/preview")
@require_permission("viewEmail")
def templates_preview(template_id: int):
    s = db_session()
    t = _get_or_404(EmailTemplate, template_id, "Template")
    variables = json_body().get("variables") or {}
    if not isinstance(variables, dict):
        variables = {}
    rendered = render_template(s, t, variables)
    return jsonify({"success": True, "data": {"subject": rendered.subject, "html": rendered.html, "text": rendered.text}})


# ---------- Fragments ----------
@bp.get("/fragments")
@require_permission("viewEmail")
def fragments_list():
    s = db_session()
    rows = s.query(EmailFragment).order_by(EmailFragment.type.asc(), EmailFragment.name.asc()).all()
    return jsonify({"success": True, "data": [fragment_to_dict(f) for f in rows]})


@bp.post("/fragments")
@require_permission("viewEmail")
def fragments_create():
    s = db_session()
    f = create_fragment(s, parse_json(FragmentPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": fragment_to_dict(f)}), 201


@bp.put("/fragments/<int:fragment_id>")
@require_permission("viewEmail")
def fragments_update(fragment_id: int):
    s = db_session()
    f = _get_or_404(EmailFragment, fragment_id, "Fragment")
    update_fragment(s, f, parse_json(FragmentPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": fragment_to_dict(f)})


@bp.delete("/fragments/<int:fragment_id>")
@require_permission("viewEmail")
def fragments_delete(fragment_id: int):
    s = db_session()
    f = _get_or_404(EmailFragment, fragment_id, "Fragment")
    delete_fragment(s, f, g.current_user)
    s.commit()
    return jsonify({"success": True})


# ---------- Settings ----------
@bp.get("/settings")
@require_permission("viewEmail")
def settings_list():
    s = db_session()
    rows = s.query(EmailSetting).order_by(EmailSetting.created_at.desc()).all()
    return jsonify({"success": True, "data": [setting_to_dict(e) for e in rows]})


@bp.post("/settings")
@require_permission("viewEmail")
def settings_create():
    s = db_session()
    e = create_setting(s, parse_json(EmailSettingPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": setting_to_dict(e)}), 201


@bp.put("/settings/<int:setting_id>")
@require_permission("viewEmail")
def settings_update(setting_id: int):
    s = db_session()
    e = _get_or_404(EmailSetting, setting_id, "Email settings")
    update_setting(s, e, parse_json(EmailSettingPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": setting_to_dict(e)})


@bp.post("/settings/<int:setting_id>/activate")
@require_permission("viewEmail")
def settings_activate(setting_id: int):
    s = db_session()
    e = _get_or_404(EmailSetting, setting_id, "Email settings")
    activate_setting(s, e, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": setting_to_dict(e)})


@bp.delete("/settings/<int:setting_id>")
@require_permission("viewEmail")
def settings_delete(setting_id: int):
    s = db_session()
    e = _get_or_404(EmailSetting, setting_id, "Email settings")
    delete_setting(s, e, g.current_user)
    s.commit()
    return jsonify({"success": True})


# ---------- Logs & test send ----------
@bp.get("/logs")
@require_permission("viewEmail")
def logs_list():
    s = db_session()
    q = s.query(EmailLog)
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(EmailLog.status == status)
    params = page_params(default_sort="created_at", allowed_sorts=("created_at",), default_limit=50)
    q = q.order_by(EmailLog.created_at.desc() if params.sort_order == "desc" else EmailLog.created_at.asc(), EmailLog.id.desc())
    rows, pagination = paginate(q, params)
    return jsonify({"success": True, "data": [log_to_dict(x) for x in rows], "pagination": pagination})


@bp.post("/test")
@require_permission("viewEmail")
def send_test():
    s = db_session()
    payload = parse_json(SendTestPayload)
    if payload.template_id is not None:
        log = send_email(s, to=payload.to, template_id=payload.template_id, variables=payload.variables, metadata={"test": True})
    else:
        log = send_email(
            s,
            to=payload.to,
            subject="Test email from {{ site_name }}",
            html="<p>This is a test email. If you can read this, delivery works.</p>",
            variables=payload.variables or {"site_name": "SpipUniform"},
            metadata={"test": True},
        )
    s.commit()
    status = 200 if log.status == "sent" else 502
    return jsonify({"success": log.status == "sent", "data": log_to_dict(log), **({"error": log.error_message} if log.error_message else {})}), status
