"""Unit tests for core/config.py and core/database.py.

Covers:
- Settings refuses to load without DATABASE_URL
- Settings rejects a non-positive purge interval
- Defaults for production, hosts and purge interval
- get_settings() returns a cached singleton
- Database rejects an empty URL and commits/rolls back transaction blocks
"""

import pytest
from sqlalchemy import text

from core.config import Settings, get_settings
from core.database import Database


class TestSettings:
    def test_database_url_required(self) -> None:
        with pytest.raises(ValueError, match="DATABASE_URL"):
            Settings(database_url="")

    def test_purge_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="SESSION_PURGE_INTERVAL_SECONDS"):
            Settings(database_url="sqlite:///x.db", session_purge_interval_seconds=0)

    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("ALLOWED_HOSTS", raising=False)
        monkeypatch.delenv("PRODUCTION", raising=False)
        settings = Settings(database_url="sqlite:///x.db")
        assert settings.production is False
        assert settings.session_purge_interval_seconds == 3600
        assert "localhost" in settings.allowed_hosts

    def test_production_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("PRODUCTION", "true")
        assert Settings(database_url="sqlite:///x.db").production is True

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()


class TestDatabase:
    def test_empty_url_rejected(self) -> None:
        with pytest.raises(ValueError):
            Database("")

    def test_transaction_rolls_back_on_error(self, db) -> None:
        with db.transaction() as conn:
            conn.execute(text("CREATE TABLE scratch (n INTEGER)"))
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute(text("INSERT INTO scratch (n) VALUES (1)"))
                raise RuntimeError("boom")
        with db.transaction() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM scratch")).scalar() == 0
