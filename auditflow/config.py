"""
Audit Engagement Workflow
Environment configuration for the application factory.

Selected by ``APP_ENV`` (development | testing | production):

    app.config.from_object(config[os.getenv("APP_ENV", "development")]())

Production is the only environment that refuses to start on missing
settings; development and testing fall back to local SQLite.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_LOCAL_SQLITE = f"sqlite:///{os.path.join(basedir, 'instance', 'auditflow_dev.db')}"
_MEMORY_SQLITE = "sqlite:///:memory:"

_FALSEY = ("false", "0", "no", "off")


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() not in _FALSEY


def _database_url(env_var: str, fallback: str | None) -> str | None:
    """Read a database URL, normalising the legacy ``postgres://`` scheme."""
    raw = os.getenv(env_var, "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Flask-Limiter storage; Redis in shared deployments
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    API_RATE_LIMIT = os.getenv("API_RATE_LIMIT", "120/minute")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Workpaper content is JSON; keep request bodies bounded
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    WORKFLOW_NOTIFICATIONS_ENABLED = _env_flag("WORKFLOW_NOTIFICATIONS_ENABLED")
    SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "1000"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL", _LOCAL_SQLITE)
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL", _MEMORY_SQLITE)
    # In-memory SQLite runs on a static pool
    SQLALCHEMY_ENGINE_OPTIONS = {}
    API_AUTH_ENABLED = "false"
    RATELIMIT_ENABLED = False
    WORKFLOW_NOTIFICATIONS_ENABLED = True


class ProductionConfig(Config):
    """PostgreSQL-backed deployment. DATABASE_URL and SECRET_KEY are mandatory."""

    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL", None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "true")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        # Sign-off and transition writes are single-row; anything slower is stuck
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [
            name for name, value in (
                ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                ("SECRET_KEY", os.getenv("SECRET_KEY")),
            ) if not value
        ]
        if missing:
            raise RuntimeError(f"Production requires environment variable(s): {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
