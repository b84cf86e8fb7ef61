# backend/bakery/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key (also signs remember-me tokens)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///bakery.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_JSON = os.environ.get("LOG_JSON", "").lower() in {"1", "true", "yes"}

    # Login lockout
    MAX_LOGIN_ATTEMPTS = _env_int("MAX_LOGIN_ATTEMPTS", 5)
    LOCKOUT_SECONDS = _env_int("LOCKOUT_SECONDS", 15 * 60)

    # Sessions
    SESSION_LIFETIME_SECONDS = _env_int("SESSION_LIFETIME_SECONDS", 2 * 60 * 60)
    REMEMBER_ME_DAYS = _env_int("REMEMBER_ME_DAYS", 30)
    REMEMBER_ME_COOKIE = "bakery_remember"
    SESSION_STORE = os.environ.get("SESSION_STORE", "sql")  # "sql" | "memory"

    # Passwords
    PASSWORD_MIN_LENGTH = _env_int("PASSWORD_MIN_LENGTH", 8)
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    # Transaction retry on lock waits / optimistic conflicts
    DB_RETRY_ATTEMPTS = _env_int("DB_RETRY_ATTEMPTS", 3)
    DB_RETRY_BACKOFF = 0.1

    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100

    CORS_ORIGINS = {
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8080",
        "http://127.0.0.1:8080",
    }

    COMPANY_INFO = {
        "name": os.environ.get("COMPANY_NAME", "Panadería La Espiga"),
        "address": os.environ.get("COMPANY_ADDRESS", "Av. Principal 123"),
        "phone": os.environ.get("COMPANY_PHONE", "+52 555 000 0000"),
        "email": os.environ.get("COMPANY_EMAIL", "contacto@panaderia.local"),
        "tax_id": os.environ.get("COMPANY_TAX_ID", "XAXX010101000"),
    }


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    BCRYPT_ROUNDS = 4
    SESSION_STORE = "memory"
    DB_RETRY_BACKOFF = 0.0
    LOG_LEVEL = "WARNING"
