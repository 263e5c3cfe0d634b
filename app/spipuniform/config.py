import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str
    csrf_enabled: bool

    storage_backend: str
    local_storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_from: str

    admin_sentinel_email: str
    public_base_url: str
    overpass_endpoint: str
    overpass_timeout: int
    max_upload_mb: int
    require_email_verification: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///spipuniform.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        csrf_enabled=_getbool("CSRF_ENABLED", True),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        local_storage_root=_getenv("LOCAL_STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "eu-west-1"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        smtp_host=_getenv("SMTP_HOST", ""),
        smtp_port=_getint("SMTP_PORT", 587),
        smtp_user=_getenv("SMTP_USER", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_from=_getenv("SMTP_FROM", "no-reply@spipuniform.local"),
        admin_sentinel_email=_getenv("ADMIN_SENTINEL_EMAIL", "admin@admin.com").lower(),
        public_base_url=_getenv("PUBLIC_BASE_URL", "http://localhost:5000"),
        overpass_endpoint=_getenv("OVERPASS_ENDPOINT", "https://overpass-api.de/api/interpreter"),
        overpass_timeout=_getint("OVERPASS_TIMEOUT", 25),
        max_upload_mb=_getint("MAX_UPLOAD_MB", 25),
        require_email_verification=_getbool("REQUIRE_EMAIL_VERIFICATION", True),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "CSRF_ENABLED": s.csrf_enabled,
        "STORAGE_BACKEND": s.storage_backend,
        "LOCAL_STORAGE_ROOT": s.local_storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USER": s.smtp_user,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_FROM": s.smtp_from,
        "ADMIN_SENTINEL_EMAIL": s.admin_sentinel_email,
        "PUBLIC_BASE_URL": s.public_base_url,
        "OVERPASS_ENDPOINT": s.overpass_endpoint,
        "OVERPASS_TIMEOUT": s.overpass_timeout,
        "REQUIRE_EMAIL_VERIFICATION": s.require_email_verification,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        "MAX_CONTENT_LENGTH": s.max_upload_mb * 1024 * 1024,
    }
