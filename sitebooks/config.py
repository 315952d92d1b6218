"""
SiteBooks — construction finance back office.
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'sitebooks_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Redis (Flask-Limiter storage); memory:// when unset
    REDIS_URL = os.getenv("REDIS_URL", "")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # OCR payloads carry base64 documents
    SLOW_REQUEST_THRESHOLD_MS = int(os.getenv("SLOW_REQUEST_THRESHOLD_MS", "1000"))
    # Optional JSON-lines file that receives a copy of every audit entry
    AUDIT_LOG_FILE = os.getenv("AUDIT_LOG_FILE", "")

    # ── OCR ingestion ────────────────────────────────────────────────────
    OCR_REVIEW_CONFIDENCE_THRESHOLD = float(os.getenv("OCR_REVIEW_CONFIDENCE_THRESHOLD", "0.8"))
    OCR_MIN_CONFIDENCE = float(os.getenv("OCR_MIN_CONFIDENCE", "0.3"))
    OCR_RATE_LIMIT_MAX_REQUESTS = int(os.getenv("OCR_RATE_LIMIT_MAX_REQUESTS", "100"))
    OCR_RATE_LIMIT_WINDOW_MS = int(os.getenv("OCR_RATE_LIMIT_WINDOW_MS", "60000"))
    # When set, POST /api/expenses/auto-create requires X-Webhook-Signature
    OCR_WEBHOOK_SECRET = os.getenv("OCR_WEBHOOK_SECRET", "")

    # ── Expense defaults ─────────────────────────────────────────────────
    DEFAULT_PROJECT_ID = os.getenv("DEFAULT_PROJECT_ID", "default-project")
    UNKNOWN_SUPPLIER_ID = os.getenv("UNKNOWN_SUPPLIER_ID", "unknown-supplier")
    LARGE_EXPENSE_AMOUNT = float(os.getenv("LARGE_EXPENSE_AMOUNT", "10000"))
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    REDIS_URL = ""
    OCR_WEBHOOK_SECRET = ""


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
