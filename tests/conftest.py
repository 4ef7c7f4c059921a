from __future__ import annotations

import pytest

from cache_layer import cache_clear


@pytest.fixture()
def app_client(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("AUTH_ALLOW_TEST_TOKENS", "1")
    monkeypatch.setenv("APP_TIMEZONE", "Asia/Manila")
    monkeypatch.delenv("GOOGLE_CLIENT_ID", raising=False)
    monkeypatch.delenv("STORAGE_BUCKETS", raising=False)

    # Permission and role lookups are cached per process.
    cache_clear()

    from app import create_app

    app = create_app()
    app.config["TESTING"] = True
    yield app, app.test_client()
    cache_clear()
