from __future__ import annotations

import os
from zoneinfo import ZoneInfo


def _env(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or "").strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name) or default)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env(name).lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_csv(name: str, default: str) -> list[str]:
    return [x.strip() for x in _env(name, default).split(",") if x.strip()]


class Config:
    def __init__(self):
        self.ENV = _env("APP_ENV", "development").lower()
        self.IS_PRODUCTION = self.ENV in {"prod", "production"}
        self.APP_VERSION = _env("APP_VERSION", "0.1.0")
        self.HOST = _env("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 5002)
        self.LOG_LEVEL = _env("LOG_LEVEL", "INFO").upper()

        self.DATABASE_URL = _env("DATABASE_URL", "sqlite:///./compliance.db")
        self.CORS_ORIGINS = _env_csv("CORS_ORIGINS", "http://localhost:5173")
        self.CORS_ALLOW_CREDENTIALS = _env_bool("CORS_ALLOW_CREDENTIALS", False)

        self.GOOGLE_CLIENT_ID = _env("GOOGLE_CLIENT_ID")
        self.AUTH_ALLOW_TEST_TOKENS = _env_bool("AUTH_ALLOW_TEST_TOKENS", False)
        self.SESSION_TTL_MINUTES = _env_int("SESSION_TTL_MINUTES", 720)

        # Calendar "today" for expiry and deadline checks when a caller sends no asOf.
        self.APP_TIMEZONE = _env("APP_TIMEZONE", "Asia/Manila")

        # Bucket names stripped from stored file references before comparing them.
        self.STORAGE_BUCKETS = _env_csv("STORAGE_BUCKETS", "application-files")
        self.HR_REQUEST_SOON_DAYS = _env_int("HR_REQUEST_SOON_DAYS", 7)

    def validate(self) -> None:
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required")
        if self.IS_PRODUCTION and self.AUTH_ALLOW_TEST_TOKENS:
            raise RuntimeError("AUTH_ALLOW_TEST_TOKENS must be off in production")
        if not self.AUTH_ALLOW_TEST_TOKENS and not self.GOOGLE_CLIENT_ID:
            raise RuntimeError("GOOGLE_CLIENT_ID is required")
        try:
            ZoneInfo(self.APP_TIMEZONE)
        except Exception:
            raise RuntimeError(f"Unknown APP_TIMEZONE: {self.APP_TIMEZONE}")
        if self.HR_REQUEST_SOON_DAYS < 0:
            raise RuntimeError("HR_REQUEST_SOON_DAYS must be >= 0")
