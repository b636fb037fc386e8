import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    root_domain: str
    app_base_url: str

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    smtp_server: str
    smtp_port: str
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    email_from: str
    super_admin_alert_email: str

    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_price_id_basic: str
    stripe_price_id_premium: str

    encryption_key: str
    enable_create_super_admin: bool

    db_pool_size: int
    db_max_overflow: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def normalize_database_url(url: str) -> str:
    """Route postgres URLs through the psycopg (v3) driver."""
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=normalize_database_url(_getenv("DATABASE_URL", "sqlite:///steward.db")),
        root_domain=_getenv("ROOT_DOMAIN", "localhost"),
        app_base_url=_getenv("APP_BASE_URL", "http://localhost:5000"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        smtp_server=_getenv("SMTP_SERVER", ""),
        smtp_port=_getenv("SMTP_PORT", "587"),
        smtp_use_tls=_getenv("SMTP_USE_TLS", "1") == "1",
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        email_from=_getenv("EMAIL_FROM", "") or _getenv("SMTP_USERNAME", ""),
        super_admin_alert_email=_getenv("SUPER_ADMIN_ALERT_EMAIL", ""),
        stripe_secret_key=_getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=_getenv("STRIPE_WEBHOOK_SECRET", ""),
        stripe_price_id_basic=_getenv("STRIPE_PRICE_ID_BASIC", ""),
        stripe_price_id_premium=_getenv("STRIPE_PRICE_ID_PREMIUM", ""),
        encryption_key=_getenv("ENCRYPTION_KEY", ""),
        enable_create_super_admin=_getenv("ENABLE_CREATE_SUPER_ADMIN", "").lower() in ("1", "true"),
        db_pool_size=int(_getenv("DB_POOL_SIZE", "5")),
        db_max_overflow=int(_getenv("DB_MAX_OVERFLOW", "10")),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "ROOT_DOMAIN": s.root_domain,
        "APP_BASE_URL": s.app_base_url.rstrip("/"),
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # outbound email
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "EMAIL_FROM": s.email_from,
        "SUPER_ADMIN_ALERT_EMAIL": s.super_admin_alert_email,
        # billing
        "STRIPE_SECRET_KEY": s.stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": s.stripe_webhook_secret,
        "STRIPE_PRICE_ID_BASIC": s.stripe_price_id_basic,
        "STRIPE_PRICE_ID_PREMIUM": s.stripe_price_id_premium,
        # base64 AES-256 key for tax id and date of birth columns
        "ENCRYPTION_KEY": s.encryption_key,
        # one-time bootstrap endpoint; the init_db script is the normal path
        "ENABLE_CREATE_SUPER_ADMIN": s.enable_create_super_admin,
        "DB_POOL_SIZE": s.db_pool_size,
        "DB_MAX_OVERFLOW": s.db_max_overflow,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # CSV uploads (10MB)
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
    }
