import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'markdrop.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    RETRY_INTERVAL_SECONDS = int(os.environ.get("RETRY_INTERVAL_SECONDS", "20"))
    RETRY_BATCH_LIMIT = int(os.environ.get("RETRY_BATCH_LIMIT", "0"))
    PINBOARD_API_BASE = os.environ.get(
        "PINBOARD_API_BASE", "https://api.pinboard.in/v1"
    )
    PINBOARD_AUTH_TOKEN = os.environ.get("PINBOARD_AUTH_TOKEN", "")
    PINBOARD_TIMEOUT = float(os.environ.get("PINBOARD_TIMEOUT", "10"))
    PINBOARD_MIN_INTERVAL = float(os.environ.get("PINBOARD_MIN_INTERVAL", "3"))
    CONTENT_FETCH_TIMEOUT = float(os.environ.get("CONTENT_FETCH_TIMEOUT", "10"))
    CONTENT_MAX_BYTES = int(os.environ.get("CONTENT_MAX_BYTES", "2500000"))
    INSPECT_WORKERS = int(os.environ.get("INSPECT_WORKERS", "3"))
    EVENT_KEEPALIVE_SECONDS = float(os.environ.get("EVENT_KEEPALIVE_SECONDS", "15"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    PINBOARD_AUTH_TOKEN = "tester:0123456789ABCDEF"
    PINBOARD_MIN_INTERVAL = 0.0
