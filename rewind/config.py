"""Application configuration for Rewind."""

from __future__ import annotations

import os
from typing import Dict, Type

from dotenv import load_dotenv
from sqlalchemy.engine.url import make_url

load_dotenv()


def _engine_options_from_uri(uri: str) -> dict:
    url = make_url(uri)
    # Always keep pool_pre_ping, vary connect_args by dialect.
    if url.get_backend_name() == "sqlite":
        return {"pool_pre_ping": True, "connect_args": {"timeout": 30}}
    if url.get_backend_name() in {"postgresql", "postgres"}:
        timeout = int(os.environ.get("DB_CONNECT_TIMEOUT_SECONDS", "10"))
        return {"pool_pre_ping": True, "connect_args": {"connect_timeout": timeout}}
    return {"pool_pre_ping": True}


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class BaseConfig:
    """Base configuration loaded for all environments."""

    SECRET_KEY = os.environ.get("COOKIE_SECRET") or os.environ.get("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///instance/rewind.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options_from_uri(SQLALCHEMY_DATABASE_URI)

    # Session cookie carrying the encrypted session record
    AUTH_COOKIE_NAME = os.environ.get("AUTH_COOKIE_NAME", "sid")
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE", "false")
    SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", str(14 * 86400)))

    # Public origin of this deployment; client metadata and redirect URIs hang off it.
    PUBLIC_URL = os.environ.get("PUBLIC_URL", "")
    PORT = int(os.environ.get("PORT", "8080"))
    CLIENT_NAME = os.environ.get("CLIENT_NAME", "ATRewind")
    # Service used by the signup flow
    PDS_URL = os.environ.get("PDS_URL", "https://bsky.social")
    PLC_DIRECTORY_URL = os.environ.get("PLC_DIRECTORY_URL", "https://plc.directory")
    HANDLE_RESOLVER_URL = os.environ.get("HANDLE_RESOLVER_URL", "https://bsky.social")
    APPVIEW_PROXY = os.environ.get("APPVIEW_PROXY", "did:web:api.bsky.app#bsky_appview")

    OAUTH_SCOPE = os.environ.get("OAUTH_SCOPE", "atproto transition:generic")
    OAUTH_HTTP_TIMEOUT = float(os.environ.get("OAUTH_HTTP_TIMEOUT", "10"))
    OAUTH_STATE_TTL_SECONDS = int(os.environ.get("OAUTH_STATE_TTL_SECONDS", "600"))
    # PEM of the ES256 key for private_key_jwt; without one the client stays public
    OAUTH_PRIVATE_KEY = os.environ.get("OAUTH_PRIVATE_KEY", "")
    OAUTH_KEY_ID = os.environ.get("OAUTH_KEY_ID", "rewind-1")
    PDS_HTTP_TIMEOUT = float(os.environ.get("PDS_HTTP_TIMEOUT", "10"))

    # Memory retrieval
    MEMORY_TIMEZONE = os.environ.get("MEMORY_TIMEZONE", "UTC")
    MEMORY_COLLECTION = "app.bsky.feed.post"
    MEMORY_PAGE_SIZE = int(os.environ.get("MEMORY_PAGE_SIZE", "10"))
    MEMORY_MAX_PAGES = int(os.environ.get("MEMORY_MAX_PAGES", "1"))

    # Max age, in seconds, for public routes and assets
    STATIC_MAX_AGE = 0

    RATELIMIT_DEFAULT = "200 per hour"
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "memory://")
    RATELIMIT_ENABLED = _env_flag("RATELIMIT_ENABLED", "true")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ENV = "development"


class TestingConfig(BaseConfig):
    TESTING = True
    SECRET_KEY = "testing-cookie-secret"
    # Use file-backed SQLite so Alembic migrations and app share the same DB.
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///instance/test.db")
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options_from_uri(SQLALCHEMY_DATABASE_URI)
    PUBLIC_URL = "https://rewind.test"
    OAUTH_PRIVATE_KEY = ""
    RATELIMIT_ENABLED = False


class ProductionConfig(BaseConfig):
    ENV = "production"
    SESSION_COOKIE_SECURE = True
    STATIC_MAX_AGE = 60


config_by_name: Dict[str, Type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    # CI pipelines set APP_ENV=ci; map to testing defaults.
    "ci": TestingConfig,
}
