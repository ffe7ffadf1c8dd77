# backend/stockroom/config.py
from __future__ import annotations
import os


def _split_origins(raw: str) -> set[str]:
    return {origin.strip() for origin in raw.split(",") if origin.strip()}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockroom.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockroom.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Caller identity is established upstream; the gateway forwards the user id
    AUTH_USER_HEADER = os.environ.get("AUTH_USER_HEADER", "X-User-Id")

    CORS_ALLOWED_ORIGINS = _split_origins(
        os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
        )
    )

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Atomic unit retry policy for lock/serialization conflicts
    ATOMIC_RETRY_ATTEMPTS = int(os.environ.get("ATOMIC_RETRY_ATTEMPTS", "3"))
    ATOMIC_RETRY_BACKOFF = float(os.environ.get("ATOMIC_RETRY_BACKOFF", "0.05"))

    # bcrypt cost factor for stored password hashes
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    ATOMIC_RETRY_BACKOFF = 0.01
    LOG_LEVEL = "WARNING"
    # Minimum cost bcrypt accepts; keeps fixtures fast
    BCRYPT_ROUNDS = 4
