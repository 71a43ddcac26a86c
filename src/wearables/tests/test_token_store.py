"""Tests for token persistence — JSON cache, .env updates and rotation handling."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from src.errors import StorageError
from src.services.oauth import OAuthSession
from src.wearables.sync.orchestrator import TokenRefreshHandler, initial_session
from src.wearables.sync.outputs import ConsoleOutputSink
from src.wearables.token_store import TokenRecord, TokenStore, update_env_file

NOW = datetime(2026, 2, 23, 8, 0, 0, tzinfo=timezone.utc)


class TestTokenRecord:
    def test_expiry_uses_five_minute_buffer(self) -> None:
        record = TokenRecord(
            access_token="at", refresh_token="rt", expires_in=3600,
            updated_at=NOW - timedelta(seconds=3400),
        )
        assert record.is_expired(now=NOW)

        record = record.model_copy(update={"updated_at": NOW - timedelta(seconds=1000)})
        assert not record.is_expired(now=NOW)

    def test_incomplete_record_is_expired(self) -> None:
        assert TokenRecord(refresh_token="rt").is_expired(now=NOW)
        assert TokenRecord(access_token="at", expires_in=3600).is_expired(now=NOW)

    def test_naive_timestamp_treated_as_utc(self) -> None:
        record = TokenRecord(
            access_token="at", expires_in=3600, updated_at=datetime(2026, 2, 23, 7, 30)
        )
        assert not record.is_expired(now=NOW)

    def test_session_conversion(self) -> None:
        session = OAuthSession("at", "rt", expires_in=1800, scope="offline", issued_at=NOW)
        record = TokenRecord.from_session(session)
        assert record.updated_at == NOW
        assert record.to_session() == session


class TestTokenStore:
    def test_missing_file_loads_none(self, tmp_path: Path) -> None:
        assert TokenStore(tmp_path / "tokens.json").load() is None

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "cache" / "tokens.json")
        store.save(TokenRecord(access_token="at", refresh_token="rt", expires_in=3600))

        raw = json.loads(store.path.read_text())
        assert raw["refresh_token"] == "rt"
        assert raw["updated_at"] is not None

        loaded = store.load()
        assert loaded is not None
        assert loaded.access_token == "at"

    def test_corrupt_cache_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text("{not json")
        assert TokenStore(path).load() is None

    def test_unwritable_cache_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = TokenStore(blocker / "tokens.json")
        with pytest.raises(StorageError):
            store.save(TokenRecord(access_token="at"))


class TestEnvFile:
    def test_replaces_existing_key(self, tmp_path: Path) -> None:
        env = tmp_path / ".env"
        env.write_text("WHOOP_CLIENT_ID=abc\nWHOOP_REFRESH_TOKEN=old\n")

        update_env_file(env, {"WHOOP_REFRESH_TOKEN": "new"})

        text = env.read_text()
        assert "WHOOP_REFRESH_TOKEN=new" in text
        assert "old" not in text
        assert "WHOOP_CLIENT_ID=abc" in text

    def test_creates_file(self, tmp_path: Path) -> None:
        env = tmp_path / ".env"
        update_env_file(env, {"WHOOP_REFRESH_TOKEN": "fresh"})
        assert "WHOOP_REFRESH_TOKEN=fresh" in env.read_text()


class TestInitialSession:
    def test_no_cache(self, tmp_path: Path) -> None:
        session = initial_session("configured", TokenStore(tmp_path / "t.json"))
        assert session.access_token == ""
        assert session.refresh_token == "configured"

    def test_unexpired_cache_reused(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "t.json")
        store.save(TokenRecord.from_session(OAuthSession("cached-at", "configured")))

        session = initial_session("configured", store)
        assert session.access_token == "cached-at"
        assert not session.is_expired()

    def test_cached_rotated_refresh_token_wins(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "t.json")
        store.save(
            TokenRecord(
                access_token="old-at", refresh_token="rotated", expires_in=3600,
                updated_at=NOW - timedelta(days=1),
            )
        )
        session = initial_session("configured", store)
        assert session.access_token == ""
        assert session.refresh_token == "rotated"


class TestTokenRefreshHandler:
    def make_handler(self, tmp_path: Path, sink, **kwargs) -> TokenRefreshHandler:
        return TokenRefreshHandler(
            "whoop",
            TokenStore(tmp_path / "t.json"),
            sink,
            "rt-1",
            refresh_output="new_refresh_token",
            **kwargs,
        )

    def test_rotation_persisted_immediately(self, tmp_path: Path) -> None:
        env = tmp_path / ".env"
        env.write_text("WHOOP_REFRESH_TOKEN=rt-1\n")
        sink = ConsoleOutputSink()
        handler = self.make_handler(tmp_path, sink, env_file=env, env_key="WHOOP_REFRESH_TOKEN")

        handler(OAuthSession("at-2", "rt-2", rotated=True))

        assert TokenStore(tmp_path / "t.json").load().refresh_token == "rt-2"
        assert "WHOOP_REFRESH_TOKEN=rt-2" in env.read_text()
        # outputs wait for flush()
        assert sink.outputs == {}

        handler.flush()
        assert sink.outputs == {"new_refresh_token": "rt-2"}

    def test_unchanged_refresh_token_not_reported(self, tmp_path: Path) -> None:
        sink = ConsoleOutputSink()
        handler = self.make_handler(tmp_path, sink, access_output="new_access_token")

        handler(OAuthSession("at-2", "rt-1"))
        handler.flush()

        assert handler.new_refresh_token is None
        assert sink.outputs == {"new_access_token": "at-2"}

    def test_flush_without_refresh_is_silent(self, tmp_path: Path) -> None:
        sink = ConsoleOutputSink()
        self.make_handler(tmp_path, sink).flush()
        assert sink.outputs == {}
