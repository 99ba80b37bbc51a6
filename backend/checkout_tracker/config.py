# backend/checkout_tracker/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/checkout_tracker.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///checkout_tracker.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Email delivery: "log" writes to the app logger, "memory" keeps messages
    # in-process (tests), "brevo" posts to the Brevo transactional API.
    EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "log")
    EMAIL_FROM_ADDRESS = os.environ.get("EMAIL_FROM_ADDRESS", "no-reply@checkout-tracker.local")
    EMAIL_FROM_NAME = os.environ.get("EMAIL_FROM_NAME", "Inventory Tracker")
    BREVO_API_KEY = os.environ.get("BREVO_API_KEY")
    EMAIL_TIMEOUT_SECONDS = float(os.environ.get("EMAIL_TIMEOUT_SECONDS", "10"))

    # Drain the notification outbox at the end of each request that wrote to it.
    NOTIFICATIONS_DISPATCH_INLINE = _env_bool("NOTIFICATIONS_DISPATCH_INLINE", True)
    NOTIFICATION_TTL_DAYS = int(os.environ.get("NOTIFICATION_TTL_DAYS", "30"))
    EMAIL_MAX_ATTEMPTS = int(os.environ.get("EMAIL_MAX_ATTEMPTS", "3"))

    CHECKOUT_RETRY_ATTEMPTS = int(os.environ.get("CHECKOUT_RETRY_ATTEMPTS", "3"))
    LOW_STOCK_RATIO = float(os.environ.get("LOW_STOCK_RATIO", "0.1"))

    CORS_ALLOWED_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ).split(",")
        if origin.strip()
    }
