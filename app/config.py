"""
Dossier Workflow Platform
Configuration classes, selected by APP_ENV in create_app().

Environment variables:
    DATABASE_URL        PostgreSQL URL (development falls back to SQLite)
    SECRET_KEY          Flask secret; required in production
    JWT_SECRET_KEY      HS256 key for bearer tokens; required in production
    JWT_ACCESS_EXPIRES  token lifetime in seconds (default 900)
    API_AUTH_ENABLED    "false" trusts X-User-* headers (development only)
    CORS_ORIGINS        comma-separated origins
    REDIS_URL           rate limiter storage, checked by /health/ready
    OUTBOX_BATCH_SIZE   default page of GET /events/outbox
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'dossier_workflow_dev.db')}"


def database_url(default=None):
    """DATABASE_URL with the legacy postgres:// scheme rewritten for SQLAlchemy 2.0."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Shared settings."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY") or SECRET_KEY
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    OUTBOX_BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", "50"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = database_url(_SQLITE_DEV)
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    """In-memory SQLite, header auth, no rate limits, no Redis."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "test-jwt-secret"
    REDIS_URL = ""
    API_AUTH_ENABLED = "false"
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    API_AUTH_ENABLED = "true"
    # completion and provisioning transactions are short; 30s bounds a stuck lock wait
    SQLALCHEMY_ENGINE_OPTIONS = {
        **Config.SQLALCHEMY_ENGINE_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [
            name for name in ("DATABASE_URL", "SECRET_KEY", "JWT_SECRET_KEY")
            if not os.getenv(name)
        ]
        if missing:
            raise RuntimeError(f"Missing required environment variables in production: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
