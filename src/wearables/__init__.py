"""Whoop data → Markdown daily notes.

Subpackages:
    adapters/  — Whoop API client (OAuth2, parallel fetch, pagination)
    sync/      — Sync orchestrator, file placement, step outputs

Core modules:
    base            — Fetch results and per-day data models
    config_loader   — Load/validate note_config.yaml
    note_formatter  — Render a day's records as a Markdown note
    token_store     — JSON token cache and .env updates
"""

from src.wearables.base import (
    CATEGORIES,
    DailyRecordSet,
    FetchResult,
    FormattedNote,
    WhoopDataset,
)
from src.wearables.config_loader import NoteConfig, get_note_config

__all__ = [
    "CATEGORIES",
    "FetchResult",
    "WhoopDataset",
    "DailyRecordSet",
    "FormattedNote",
    "NoteConfig",
    "get_note_config",
]
