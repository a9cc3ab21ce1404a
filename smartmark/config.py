import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'smartmark.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    OAUTH_GOOGLE_CLIENT_ID = os.environ.get("OAUTH_GOOGLE_CLIENT_ID", "")
    OAUTH_GOOGLE_CLIENT_SECRET = os.environ.get("OAUTH_GOOGLE_CLIENT_SECRET", "")
    OAUTH_REDIRECT_URL = os.environ.get("OAUTH_REDIRECT_URL", "")
    OAUTH_HTTP_TIMEOUT = float(os.environ.get("OAUTH_HTTP_TIMEOUT", "10"))
    OAUTH_STATE_MAX_AGE = int(os.environ.get("OAUTH_STATE_MAX_AGE", "600"))

    ACCESS_TOKEN_TTL_SECONDS = int(os.environ.get("ACCESS_TOKEN_TTL_SECONDS", "3600"))
    REFRESH_TOKEN_TTL_SECONDS = int(
        os.environ.get("REFRESH_TOKEN_TTL_SECONDS", str(30 * 24 * 3600))
    )

    REALTIME_POLL_SECONDS = float(os.environ.get("REALTIME_POLL_SECONDS", "3"))
    CHANGE_EVENT_RETENTION_DAYS = int(
        os.environ.get("CHANGE_EVENT_RETENTION_DAYS", "7")
    )
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    MAINTENANCE_INTERVAL_MINUTES = int(
        os.environ.get("MAINTENANCE_INTERVAL_MINUTES", "60")
    )


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    OAUTH_GOOGLE_CLIENT_ID = "test-client-id"
    OAUTH_GOOGLE_CLIENT_SECRET = "test-client-secret"
    OAUTH_REDIRECT_URL = "http://localhost/auth/callback"
