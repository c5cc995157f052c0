# backend/marketplace/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///marketplace.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # bcrypt cost factor for password hashes
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Frontend origins allowed for CORS and the Socket.IO handshake
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
        ).split(",")
        if origin.strip()
    ]

    # Object storage; CLOUDINARY_URL in the environment also works
    CLOUDINARY_CLOUD_NAME = os.environ.get("CLOUDINARY_CLOUD_NAME", "")
    CLOUDINARY_API_KEY = os.environ.get("CLOUDINARY_API_KEY", "")
    CLOUDINARY_API_SECRET = os.environ.get("CLOUDINARY_API_SECRET", "")

    # Conversation creation race handling
    CONVERSATION_RETRY_DELAY_SECONDS = float(os.environ.get("CONVERSATION_RETRY_DELAY_SECONDS", "0.1"))

    # Accept an admin+seller pair as proof of participation when identifiers fail to match.
    CHAT_ROLE_FALLBACK_ENABLED = _env_flag("CHAT_ROLE_FALLBACK_ENABLED")

    # Singleton admin account created by `flask system init`
    ADMIN_NAME = os.environ.get("ADMIN_NAME", "Admin")
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@marketplace.local")
    ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "Password123!")


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CONVERSATION_RETRY_DELAY_SECONDS = 0.0
    BCRYPT_ROUNDS = 4
    CLOUDINARY_CLOUD_NAME = "test-cloud"
    CLOUDINARY_API_KEY = "test-key"
    CLOUDINARY_API_SECRET = "test-secret"
