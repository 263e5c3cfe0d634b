from flask import Blueprint, current_app
from sqlalchemy import text

from app.spipuniform.db import db_session

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Readiness: database ping plus which storage backend uploads go to."""
    from app.spipuniform.modules.files.service import active_storage_setting

    s = db_session()
    try:
        s.execute(text("SELECT 1"))
        row = active_storage_setting(s)
    except Exception as e:
        current_app.logger.error("Health check DB ping failed: %s", e)
        return {"ok": False, "database": "unavailable", "storage": None}, 503
    storage = row.provider if row else current_app.config.get("STORAGE_BACKEND", "local")
    return {"ok": True, "database": "ok", "storage": storage}, 200


@bp.get("/healthz")
def healthz():
    return "ok", 200
