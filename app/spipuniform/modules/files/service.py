from __future__ import annotations

import hashlib
import logging
import mimetypes
import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import Field
from werkzeug.utils import secure_filename

from app.spipuniform.audit import record_event
from app.spipuniform.errors import Conflict, NotFound, ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.files.models import StorageSetting, StoredFile
from app.spipuniform.rbac import user_has_permission
from app.spipuniform.storage import Storage, build_storage, storage_from_config
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload

logger = logging.getLogger(__name__)

UPLOAD_CATEGORIES = ("listing", "profile", "shop", "document")
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
DEFAULT_ALLOWED_MIME_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "application/json",
)
# Images are the only thing a listing or profile can show.
IMAGE_MIME_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")

_SECRET_KEYS = ("secret_access_key", "password")


class StorageSettingPayload(Payload):
    provider: Literal["local", "s3"] | None = None
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    config: dict[str, Any] | None = None
    is_active: bool | None = None


class FolderPayload(Payload):
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: int | None = None
    is_public: bool = False


def storage_setting_to_dict(row: StorageSetting) -> dict[str, Any]:
    config = dict(row.config or {})
    for k in _SECRET_KEYS:
        if config.get(k):
            config[k] = "********"
    return {
        "id": row.id,
        "provider": row.provider,
        "name": row.name,
        "description": row.description,
        "config": config,
        "is_active": row.is_active,
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def file_to_dict(f: StoredFile) -> dict[str, Any]:
    d = {
        "id": f.id,
        "name": f.name,
        "path": f.path,
        "type": f.type,
        "provider": f.provider,
        "size": f.size,
        "mime_type": f.mime_type,
        "sha256": f.sha256,
        "parent_id": f.parent_id,
        "owner_id": f.owner_id,
        "owner_name": f.owner.name if f.owner else None,
        "metadata": f.metadata_json or {},
        "is_public": f.is_public,
        "created_at": iso(f.created_at),
        "updated_at": iso(f.updated_at),
    }
    if f.type == "file":
        d["url"] = f"/api/files/{f.id}/download"
    return d


# ---------- Storage settings ----------
def active_storage_setting(s) -> StorageSetting | None:
    return (
        s.query(StorageSetting)
        .filter(StorageSetting.is_active.is_(True))
        .order_by(StorageSetting.updated_at.desc())
        .first()
    )


def resolve_storage(s, app_config) -> tuple[Storage, dict[str, Any]]:
    """Backend plus its upload limits: the active settings row, else the environment."""
    row = active_storage_setting(s)
    if row is not None:
        return build_storage(row.provider, row.config, app_config), dict(row.config or {})
    return storage_from_config(app_config), {}


def upload_limits(settings_config: dict[str, Any], app_config) -> tuple[int, tuple[str, ...]]:
    max_size = settings_config.get("max_file_size") or DEFAULT_MAX_FILE_SIZE
    hard_cap = app_config.get("MAX_CONTENT_LENGTH")
    if hard_cap:
        max_size = min(int(max_size), int(hard_cap))
    allowed = settings_config.get("allowed_mime_types") or DEFAULT_ALLOWED_MIME_TYPES
    return int(max_size), tuple(allowed)


def _deactivate_other_storage(s, keep_id: int | None) -> None:
    q = s.query(StorageSetting).filter(StorageSetting.is_active.is_(True))
    if keep_id is not None:
        q = q.filter(StorageSetting.id != keep_id)
    for other in q.all():
        other.is_active = False
        other.updated_at = datetime.utcnow()


def _merge_config(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    merged = dict(existing or {})
    for k, v in (incoming or {}).items():
        # The masked value comes back unchanged from the settings form.
        if k in _SECRET_KEYS and v == "********":
            continue
        merged[k] = v
    return merged


def create_storage_setting(s, payload: StorageSettingPayload, user: User) -> StorageSetting:
    missing = {k: "Field required" for k in ("provider", "name") if not getattr(payload, k)}
    if missing:
        raise ValidationFailed("Validation failed", details=missing)
    now = datetime.utcnow()
    row = StorageSetting(
        provider=payload.provider,
        name=payload.name,
        description=payload.description,
        config=payload.config or {},
        is_active=bool(payload.is_active),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(row)
    s.flush()
    if row.is_active:
        _deactivate_other_storage(s, row.id)
    record_event(s, actor=user, action="storage_settings.create", entity_type="StorageSetting", entity_id=row.id, metadata={"provider": row.provider, "is_active": row.is_active})
    return row


def update_storage_setting(s, row: StorageSetting, payload: StorageSettingPayload, user: User) -> StorageSetting:
    data = payload.model_dump(exclude_unset=True)
    for k in ("provider", "name"):
        if k in data and not data[k]:
            raise ValidationFailed("Validation failed", details={k: "Field required"})
    changed: list[str] = []
    for k in ("provider", "name", "description"):
        if k in data and getattr(row, k) != data[k]:
            setattr(row, k, data[k])
            changed.append(k)
    if data.get("config") is not None:
        row.config = _merge_config(row.config, data["config"])
        changed.append("config")
    if data.get("is_active") is True and not row.is_active:
        _deactivate_other_storage(s, row.id)
        row.is_active = True
        changed.append("is_active")
    elif data.get("is_active") is False and row.is_active:
        row.is_active = False
        changed.append("is_active")
    if changed:
        row.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="storage_settings.update", entity_type="StorageSetting", entity_id=row.id, metadata={"fields": changed})
    return row


def activate_storage_setting(s, row: StorageSetting, user: User) -> StorageSetting:
    _deactivate_other_storage(s, row.id)
    row.is_active = True
    row.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="storage_settings.activate", entity_type="StorageSetting", entity_id=row.id)
    return row


def delete_storage_setting(s, row: StorageSetting, user: User) -> None:
    if row.is_active:
        raise Conflict("Cannot delete the active storage settings. Activate another configuration first.")
    record_event(s, actor=user, action="storage_settings.delete", entity_type="StorageSetting", entity_id=row.id, metadata={"name": row.name})
    s.delete(row)


def test_storage_setting(row: StorageSetting, app_config) -> tuple[bool, str]:
    try:
        storage = build_storage(row.provider, row.config, app_config)
        storage.test_connection()
    except Exception as e:
        logger.warning("Storage test failed for settings %s: %s", row.id, e)
        return False, str(e)
    return True, f"{row.provider} storage connection successful"


# ---------- Files ----------
def can_read_file(f: StoredFile, user: User | None) -> bool:
    if f.is_public:
        return True
    if user is None:
        return False
    return f.owner_id == user.id or user_has_permission(user, "viewFileManager")


def get_file_for_user(s, file_id: int, user: User | None) -> StoredFile:
    f = s.get(StoredFile, file_id)
    if not f or f.is_deleted or not can_read_file(f, user):
        raise NotFound("File not found")
    return f


def _folder(s, parent_id: int | None, user: User) -> StoredFile | None:
    if parent_id is None:
        return None
    parent = s.get(StoredFile, parent_id)
    if not parent or parent.is_deleted or parent.type != "folder":
        raise ValidationFailed("Parent folder not found", details={"parent_id": "Unknown folder"})
    if parent.owner_id != user.id and not user_has_permission(user, "viewFileManager"):
        raise ValidationFailed("Parent folder not found", details={"parent_id": "Unknown folder"})
    return parent


def _child_path(parent: StoredFile | None, name: str) -> str:
    base = parent.path.rstrip("/") if parent else ""
    return f"{base}/{name}"


def list_files(s, user: User, parent_id: int | None):
    q = s.query(StoredFile).filter(StoredFile.is_deleted.is_(False))
    q = q.filter(StoredFile.parent_id == parent_id) if parent_id is not None else q.filter(StoredFile.parent_id.is_(None))
    if not user_has_permission(user, "viewFileManager"):
        q = q.filter(StoredFile.owner_id == user.id)
    # Folders first.
    return q.order_by(StoredFile.type.desc(), StoredFile.name.asc())


def create_folder(s, payload: FolderPayload, user: User) -> StoredFile:
    parent = _folder(s, payload.parent_id, user)
    name = payload.name.replace("/", "-")
    dup = s.query(StoredFile.id).filter(
        StoredFile.name == name,
        StoredFile.type == "folder",
        StoredFile.owner_id == user.id,
        StoredFile.is_deleted.is_(False),
    )
    dup = dup.filter(StoredFile.parent_id == parent.id) if parent else dup.filter(StoredFile.parent_id.is_(None))
    if dup.first():
        raise Conflict(f"A folder named '{name}' already exists here")
    now = datetime.utcnow()
    f = StoredFile(
        name=name,
        path=_child_path(parent, name),
        type="folder",
        provider="local",
        parent_id=parent.id if parent else None,
        owner_id=user.id,
        is_public=payload.is_public,
        created_at=now,
        updated_at=now,
    )
    s.add(f)
    s.flush()
    record_event(s, actor=user, action="file.folder_create", entity_type="StoredFile", entity_id=f.id, metadata={"path": f.path})
    return f


def _detect_mime(filename: str, declared: str | None) -> str:
    guessed, _ = mimetypes.guess_type(filename)
    if guessed:
        return guessed
    return (declared or "application/octet-stream").split(";")[0].strip().lower()


def upload_file(
    s,
    *,
    data: bytes,
    filename: str,
    declared_mime: str | None,
    user: User,
    app_config,
    category: str = "listing",
    alt_text: str | None = None,
    parent_id: int | None = None,
    is_public: bool | None = None,
) -> StoredFile:
    if category not in UPLOAD_CATEGORIES:
        raise ValidationFailed(f"Invalid category. Must be one of: {', '.join(UPLOAD_CATEGORIES)}")
    if not data:
        raise ValidationFailed("No file provided")
    storage, settings_config = resolve_storage(s, app_config)
    max_size, allowed = upload_limits(settings_config, app_config)
    if len(data) > max_size:
        raise ValidationFailed(f"File size too large. Maximum size is {max_size // (1024 * 1024)}MB.")
    mime = _detect_mime(filename, declared_mime)
    if category in ("listing", "profile") and mime not in IMAGE_MIME_TYPES:
        raise ValidationFailed("Invalid file type. Only JPG, PNG, WebP and GIF files are allowed.")
    if mime not in allowed:
        raise ValidationFailed(f"File type {mime} is not allowed")
    parent = _folder(s, parent_id, user)

    safe_name = secure_filename(filename) or "upload"
    ext = ("." + safe_name.rsplit(".", 1)[1].lower()) if "." in safe_name else ""
    storage_key = f"uploads/{category}/{uuid.uuid4().hex}{ext}"
    storage.put_bytes(storage_key, data, content_type=mime)

    now = datetime.utcnow()
    f = StoredFile(
        name=safe_name,
        path=_child_path(parent, safe_name),
        type="file",
        provider=storage.provider,
        storage_key=storage_key,
        size=len(data),
        mime_type=mime,
        sha256=hashlib.sha256(data).hexdigest(),
        parent_id=parent.id if parent else None,
        owner_id=user.id,
        metadata_json={"original_name": filename, "category": category, "alt_text": alt_text},
        is_public=(category != "document") if is_public is None else is_public,
        created_at=now,
        updated_at=now,
    )
    s.add(f)
    s.flush()
    logger.info("Stored upload file_id=%s key=%s size=%s provider=%s", f.id, storage_key, f.size, f.provider)
    record_event(s, actor=user, action="file.upload", entity_type="StoredFile", entity_id=f.id, metadata={"storage_key": storage_key, "sha256": f.sha256, "size": f.size})
    return f


def open_file(s, f: StoredFile, app_config):
    if f.type != "file" or not f.storage_key:
        raise ValidationFailed("Folders cannot be downloaded")
    row = active_storage_setting(s)
    if row is not None and row.provider == f.provider:
        storage = build_storage(row.provider, row.config, app_config)
    else:
        storage = build_storage(f.provider, None, app_config)
    return storage.open(f.storage_key)


def soft_delete_file(s, f: StoredFile, user: User) -> int:
    """Mark the file (and a folder's whole subtree) deleted; returns rows touched."""
    if f.owner_id != user.id and not user_has_permission(user, "viewFileManager"):
        raise NotFound("File not found")
    now = datetime.utcnow()
    touched = 0
    pending = [f]
    while pending:
        node = pending.pop()
        if not node.is_deleted:
            node.is_deleted = True
            node.deleted_at = now
            node.updated_at = now
            touched += 1
        if node.type == "folder":
            pending.extend(
                s.query(StoredFile).filter(StoredFile.parent_id == node.id, StoredFile.is_deleted.is_(False)).all()
            )
    record_event(s, actor=user, action="file.delete", entity_type="StoredFile", entity_id=f.id, metadata={"path": f.path, "count": touched})
    return touched
