import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    public_base_url: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    meta_graph_api_version: str
    meta_phone_number_id: str
    meta_access_token: str
    meta_business_account_id: str
    meta_app_id: str
    meta_app_secret: str
    meta_webhook_verify_token: str
    meta_catalog_id: str

    campaign_max_batch: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///tourdesk.db"),
        public_base_url=_getenv("PUBLIC_BASE_URL", "http://localhost:8080"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "blr1"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        meta_graph_api_version=_getenv("META_GRAPH_API_VERSION", "v22.0"),
        meta_phone_number_id=_getenv("META_WHATSAPP_PHONE_NUMBER_ID", ""),
        meta_access_token=_getenv("META_WHATSAPP_ACCESS_TOKEN", ""),
        meta_business_account_id=_getenv("META_WHATSAPP_BUSINESS_ACCOUNT_ID", ""),
        meta_app_id=_getenv("META_APP_ID", ""),
        meta_app_secret=_getenv("META_APP_SECRET", ""),
        meta_webhook_verify_token=_getenv("META_WEBHOOK_VERIFY_TOKEN", ""),
        meta_catalog_id=_getenv("META_WHATSAPP_CATALOG_ID", ""),
        campaign_max_batch=_getenv_int("WHATSAPP_CAMPAIGN_MAX_BATCH", 500),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "PUBLIC_BASE_URL": s.public_base_url,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # Meta WhatsApp Cloud API
        "META_GRAPH_API_VERSION": s.meta_graph_api_version,
        "META_WHATSAPP_PHONE_NUMBER_ID": s.meta_phone_number_id,
        "META_WHATSAPP_ACCESS_TOKEN": s.meta_access_token,
        "META_WHATSAPP_BUSINESS_ACCOUNT_ID": s.meta_business_account_id,
        "META_APP_ID": s.meta_app_id,
        "META_APP_SECRET": s.meta_app_secret,
        "META_WEBHOOK_VERIFY_TOKEN": s.meta_webhook_verify_token,
        "META_WHATSAPP_CATALOG_ID": s.meta_catalog_id,
        "WHATSAPP_CAMPAIGN_MAX_BATCH": s.campaign_max_batch,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # file upload limits (25MB)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
