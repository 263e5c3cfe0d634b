from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request, send_file

from app.spipuniform.db import db_session
from app.spipuniform.errors import ApiError, NotFound, ValidationFailed
from app.spipuniform.modules.files.models import StorageSetting
from app.spipuniform.modules.files.service import (
    FolderPayload,
    StorageSettingPayload,
    activate_storage_setting,
    create_folder,
    create_storage_setting,
    delete_storage_setting,
    file_to_dict,
    get_file_for_user,
    list_files,
    open_file,
    soft_delete_file,
    storage_setting_to_dict,
    test_storage_setting,
    update_storage_setting,
    upload_file,
)
from app.spipuniform.rbac import require_login, require_permission
from app.spipuniform.storage import StorageError
from app.spipuniform.utils import arg_bool, arg_int
from app.spipuniform.validation import parse_json

bp = Blueprint("files", __name__)


def _storage_setting_or_404(s, setting_id: int) -> StorageSetting:
    row = s.get(StorageSetting, setting_id)
    if not row:
        raise NotFound("Storage settings not found")
    return row


def _form_int(name: str) -> int | None:
    raw = (request.form.get(name) or "").strip()
    if not raw:
        return None
    if not raw.isdigit():
        raise ValidationFailed(f"Form field '{name}' must be an integer.")
    return int(raw)


def _form_bool(name: str) -> bool | None:
    raw = (request.form.get(name) or "").strip().lower()
    if not raw:
        return None
    return raw in ("1", "true", "yes", "on")


# ---------- Storage settings ----------
@bp.get("/storage-settings")
@require_permission("viewStorageSettings")
def storage_settings_list():
    s = db_session()
    rows = s.query(StorageSetting).order_by(StorageSetting.is_active.desc(), StorageSetting.created_at.desc()).all()
    return jsonify({"success": True, "data": [storage_setting_to_dict(r) for r in rows]})


@bp.post("/storage-settings")
@require_permission("viewStorageSettings")
def storage_settings_create():
    s = db_session()
    row = create_storage_setting(s, parse_json(StorageSettingPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": storage_setting_to_dict(row)}), 201


@bp.get("/storage-settings/<int:setting_id>")
@require_permission("viewStorageSettings")
def storage_settings_detail(setting_id: int):
    return jsonify({"success": True, "data": storage_setting_to_dict(_storage_setting_or_404(db_session(), setting_id))})


@bp.put("/storage-settings/<int:setting_id>")
@require_permission("viewStorageSettings")
def storage_settings_update(setting_id: int):
    s = db_session()
    row = _storage_setting_or_404(s, setting_id)
    update_storage_setting(s, row, parse_json(StorageSettingPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": storage_setting_to_dict(row)})


@bp.post("/storage-settings/<int:setting_id>/activate")
@require_permission("viewStorageSettings")
def storage_settings_activate(setting_id: int):
    s = db_session()
    row = _storage_setting_or_404(s, setting_id)
    activate_storage_setting(s, row, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": storage_setting_to_dict(row)})


@bp.delete("/storage-settings/<int:setting_id>")
@require_permission("viewStorageSettings")
def storage_settings_delete(setting_id: int):
    s = db_session()
    delete_storage_setting(s, _storage_setting_or_404(s, setting_id), g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Storage settings deleted"})


@bp.post("/storage-settings/<int:setting_id>/test")
@require_permission("viewStorageSettings")
def storage_settings_test(setting_id: int):
    row = _storage_setting_or_404(db_session(), setting_id)
    ok, message = test_storage_setting(row, current_app.config)
    return jsonify({"success": ok, "data": {"ok": ok, "message": message}})


# ---------- Files ----------
@bp.post("/upload")
@require_login
def upload():
    s = db_session()
    fs = request.files.get("file")
    if not fs or not fs.filename:
        raise ValidationFailed("No file provided")
    try:
        f = upload_file(
            s,
            data=fs.read(),
            filename=fs.filename,
            declared_mime=fs.mimetype,
            user=g.current_user,
            app_config=current_app.config,
            category=(request.form.get("category") or "listing").strip().lower(),
            alt_text=(request.form.get("alt_text") or "").strip() or None,
            parent_id=_form_int("parent_id"),
            is_public=_form_bool("is_public"),
        )
    except StorageError as e:
        s.rollback()
        current_app.logger.error("Upload failed (request_id=%s): %s", getattr(g, "request_id", None), e)
        raise ApiError("Storage backend unavailable", status_code=502) from e
    s.commit()
    return jsonify({"success": True, "data": file_to_dict(f)}), 201


@bp.get("/files")
@require_login
def files_list():
    s = db_session()
    rows = list_files(s, g.current_user, arg_int("parent_id")).all()
    return jsonify({"success": True, "data": [file_to_dict(f) for f in rows]})


@bp.post("/files/folders")
@require_login
def files_create_folder():
    s = db_session()
    f = create_folder(s, parse_json(FolderPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": file_to_dict(f)}), 201


@bp.get("/files/<int:file_id>")
def files_detail(file_id: int):
    f = get_file_for_user(db_session(), file_id, getattr(g, "current_user", None))
    return jsonify({"success": True, "data": file_to_dict(f)})


@bp.get("/files/<int:file_id>/download")
def files_download(file_id: int):
    s = db_session()
    f = get_file_for_user(s, file_id, getattr(g, "current_user", None))
    try:
        fobj = open_file(s, f, current_app.config)
    except StorageError as e:
        current_app.logger.warning("File %s missing from storage: %s", f.id, e)
        raise NotFound("File content not found") from e
    as_attachment = bool(arg_bool("download"))
    return send_file(
        fobj,
        mimetype=f.mime_type or "application/octet-stream",
        as_attachment=as_attachment,
        download_name=f.name,
        max_age=0 if not f.is_public else 3600,
    )


@bp.delete("/files/<int:file_id>")
@require_login
def files_delete(file_id: int):
    s = db_session()
    f = get_file_for_user(s, file_id, g.current_user)
    count = soft_delete_file(s, f, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "File deleted", "data": {"deleted": count}})
