# backend/stationery/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Durable client storage (cart, user profile, preferences)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///portal.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # External stationery backend (REST)
    BACKEND_API_URL = os.environ.get("BACKEND_API_URL", "http://localhost:8082/api")
    BACKEND_TIMEOUT = float(os.environ.get("BACKEND_TIMEOUT", "15"))
    BACKEND_RETRY_ATTEMPTS = int(os.environ.get("BACKEND_RETRY_ATTEMPTS", "3"))

    # External stationery backend (STOMP over WebSocket)
    REALTIME_URL = os.environ.get("REALTIME_URL", "ws://localhost:8082/ws")
    REALTIME_ENABLED = _env_bool("REALTIME_ENABLED", True)
    REALTIME_RECONNECT_DELAY = float(os.environ.get("REALTIME_RECONNECT_DELAY", "5"))
    # Sent as the Authorization header of the STOMP CONNECT frame when set
    REALTIME_AUTH_TOKEN = os.environ.get("REALTIME_AUTH_TOKEN")

    # Polling fallback while the realtime connection is down
    ORDER_POLL_INTERVAL = float(os.environ.get("ORDER_POLL_INTERVAL", "30"))

    # Personal notifications are never pushed to the shared connection
    NOTIFICATION_POLL_INTERVAL = float(os.environ.get("NOTIFICATION_POLL_INTERVAL", "60"))

    # Viewer sessions not looked up for this long are closed
    SESSION_IDLE_TTL = float(os.environ.get("SESSION_IDLE_TTL", "1800"))

    CART_MIN_QTY = int(os.environ.get("CART_MIN_QTY", "1"))

    # Checked by `flask system verify-env`
    REQUIRED_ENV_VARS = (
        "CLOUDINARY_CLOUD_NAME",
        "CLOUDINARY_API_KEY",
        "CLOUDINARY_API_SECRET",
    )
