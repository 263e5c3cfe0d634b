import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, jsonify, request

from app.spipuniform.config import load_config
from app.spipuniform.db import init_db, teardown_db_session
from app.spipuniform.errors import register_error_handlers
from app.spipuniform.routes import bp as routes_bp
from app.spipuniform.auth import bp as auth_bp, load_current_user
from app.spipuniform.modules.user_management.api import bp as user_management_bp
from app.spipuniform.modules.email.api import bp as email_bp
from app.spipuniform.modules.branding.api import bp as branding_bp
from app.spipuniform.modules.geography.api import bp as geography_bp
from app.spipuniform.modules.schools.api import bp as schools_bp
from app.spipuniform.modules.shops.api import bp as shops_bp
from app.spipuniform.modules.catalog.api import bp as catalog_bp
from app.spipuniform.modules.listings.api import bp as listings_bp
from app.spipuniform.modules.transactions.api import bp as transactions_bp
from app.spipuniform.modules.files.api import bp as files_bp
from app.spipuniform.modules.dashboard.api import bp as dashboard_bp
from app.spipuniform.modules.favorites.api import bp as favorites_bp
from app.spipuniform.modules.item_requests.api import bp as item_requests_bp
from app.spipuniform.modules.family.api import bp as family_bp
from app.spipuniform.modules.reports.api import bp as reports_bp

_CSRF_EXEMPT_PREFIXES = ("/api/auth/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=7)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    logging.basicConfig(level=app.config.get("LOG_LEVEL", "INFO"))
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    register_error_handlers(app)

    from app.spipuniform.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Sign-in/sign-up happen before the client holds a token.
            if request.path.startswith(_CSRF_EXEMPT_PREFIXES):
                return None
            if not validate_csrf(request):
                return jsonify({"success": False, "error": "CSRF token missing or invalid."}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(user_management_bp, url_prefix="/api")
    app.register_blueprint(email_bp, url_prefix="/api/email")
    app.register_blueprint(branding_bp, url_prefix="/api")
    app.register_blueprint(geography_bp, url_prefix="/api")
    app.register_blueprint(schools_bp, url_prefix="/api")
    app.register_blueprint(shops_bp, url_prefix="/api")
    app.register_blueprint(catalog_bp, url_prefix="/api")
    app.register_blueprint(listings_bp, url_prefix="/api")
    app.register_blueprint(transactions_bp, url_prefix="/api")
    app.register_blueprint(files_bp, url_prefix="/api")
    app.register_blueprint(favorites_bp, url_prefix="/api")
    app.register_blueprint(item_requests_bp, url_prefix="/api")
    app.register_blueprint(family_bp, url_prefix="/api")
    app.register_blueprint(reports_bp, url_prefix="/api")
    app.register_blueprint(dashboard_bp, url_prefix="/api/admin")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _request_id_header(resp):
        from flask import g

        rid = getattr(g, "request_id", None)
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
