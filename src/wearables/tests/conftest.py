"""Shared fixtures and mock API responses for Whoop sync tests."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.services.storage import NoteStorage
from src.wearables.base import WhoopDataset
from src.wearables.config_loader import NoteConfig, load_note_config
from src.wearables.note_formatter import NoteFormatter

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

TEST_DATE = date(2026, 2, 23)
SYNC_TIME = datetime(2026, 2, 23, 20, 0, 0, tzinfo=timezone.utc)


def load_records(name: str) -> list[dict]:
    return json.loads((FIXTURES_DIR / name).read_text())["records"]


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def note_config() -> NoteConfig:
    """Load the real note config for tests."""
    return load_note_config()


@pytest.fixture
def formatter(note_config: NoteConfig) -> NoteFormatter:
    """Formatter pinned to UTC so date matching does not depend on the host."""
    return NoteFormatter(tz=timezone.utc, config=note_config)


# ---------------------------------------------------------------------------
# JSON fixture loaders
# ---------------------------------------------------------------------------


@pytest.fixture
def whoop_sleep_raw() -> list[dict]:
    return load_records("whoop_sleep.json")


@pytest.fixture
def whoop_recovery_raw() -> list[dict]:
    return load_records("whoop_recovery.json")


@pytest.fixture
def whoop_cycle_raw() -> list[dict]:
    return load_records("whoop_cycle.json")


@pytest.fixture
def whoop_workout_raw() -> list[dict]:
    return load_records("whoop_workout.json")


@pytest.fixture
def whoop_body_raw() -> dict:
    return json.loads((FIXTURES_DIR / "whoop_body.json").read_text())


@pytest.fixture
def whoop_dataset(
    whoop_sleep_raw: list[dict],
    whoop_recovery_raw: list[dict],
    whoop_cycle_raw: list[dict],
    whoop_workout_raw: list[dict],
    whoop_body_raw: dict,
) -> WhoopDataset:
    """Two days of realistic Whoop data (2026-02-22 and 2026-02-23, UTC)."""
    return WhoopDataset(
        profile={"user_id": 10129, "first_name": "Sam", "last_name": "Rivera"},
        sleep=whoop_sleep_raw,
        recovery=whoop_recovery_raw,
        cycles=whoop_cycle_raw,
        workouts=whoop_workout_raw,
        body_measurements=[whoop_body_raw],
    )


# ---------------------------------------------------------------------------
# Mock HTTP clients
# ---------------------------------------------------------------------------


def token_response(
    access_token: str = "new-access",
    refresh_token: str | None = "new-refresh",
    expires_in: int = 3600,
) -> httpx.Response:
    body = {"access_token": access_token, "expires_in": expires_in, "token_type": "bearer"}
    if refresh_token is not None:
        body["refresh_token"] = refresh_token
    return httpx.Response(200, json=body)


@pytest.fixture
def make_http_client() -> Callable[..., MagicMock]:
    """Build a mock httpx.AsyncClient.

    ``handler(method, url, **kwargs)`` answers ``request``; ``post`` answers
    token requests.
    """

    def _make(handler=None, token=None) -> MagicMock:
        client = MagicMock()
        client.request = AsyncMock(side_effect=handler or (lambda *a, **kw: httpx.Response(200, json={})))
        client.post = AsyncMock(return_value=token or token_response())
        return client

    return _make


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class MemoryStorage(NoteStorage):
    """Keeps written files in a dict."""

    NAME = "memory"

    def __init__(self) -> None:
        self.directories: set[str] = set()
        self.files: dict[str, str] = {}
        self.writes = 0
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def ensure_directory(self, path: str) -> None:
        self.directories.add(path)

    async def write_file(self, path: str, content: str) -> None:
        self.files[path] = content
        self.writes += 1


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()
