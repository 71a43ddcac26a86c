"""Data models shared by the Whoop fetcher, note formatter and sync orchestrator.

Whoop records are kept as the raw JSON dicts the API returns; the formatter
reads them defensively.  These types only group them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Generic, TypeVar

from src.errors import TransientFetchError

logger = logging.getLogger("whoop_sync.wearables")

T = TypeVar("T")

# Data categories fetched on every run, in fetch order.
CATEGORIES = ("profile", "sleep", "recovery", "cycles", "workouts", "body_measurements")


# ---------------------------------------------------------------------------
# Per-category fetch result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of fetching one data category: either a value or an error.

    Attributes:
        category: One of ``CATEGORIES``.
        value:    Fetched data when the fetch succeeded.
        error:    Failure when it did not.
    """

    category: str
    value: T | None = None
    error: TransientFetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        if self.error is not None or self.value is None:
            return default
        return self.value


# ---------------------------------------------------------------------------
# Composite dataset
# ---------------------------------------------------------------------------


@dataclass
class WhoopDataset:
    """Everything fetched for one trailing window.

    Every list defaults to empty; ``profile`` is None when unavailable.
    """

    profile: dict | None = None
    sleep: list[dict] = field(default_factory=list)
    recovery: list[dict] = field(default_factory=list)
    cycles: list[dict] = field(default_factory=list)
    workouts: list[dict] = field(default_factory=list)
    body_measurements: list[dict] = field(default_factory=list)
    errors: list[TransientFetchError] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: dict[str, FetchResult]) -> "WhoopDataset":
        """Assemble a dataset, substituting empty data for failed categories."""
        errors = [r.error for r in results.values() if r.error is not None]
        for err in errors:
            logger.warning("Using empty data for %s", err)

        def _records(category: str) -> list[dict]:
            result = results.get(category)
            return result.unwrap_or([]) if result else []

        profile = results.get("profile")
        return cls(
            profile=profile.unwrap_or(None) if profile else None,
            sleep=_records("sleep"),
            recovery=_records("recovery"),
            cycles=_records("cycles"),
            workouts=_records("workouts"),
            body_measurements=_records("body_measurements"),
            errors=errors,
        )


# ---------------------------------------------------------------------------
# Per-day view and output
# ---------------------------------------------------------------------------


@dataclass
class DailyRecordSet:
    """The records belonging to one calendar date.

    Attributes:
        date:       Local calendar date.
        main_sleep: Non-nap sleep that ended on this date.
        naps:       Naps that ended on this date.
        recovery:   Recovery created on this date.
        cycle:      Physiological cycle that started on this date.
        workouts:   Workouts that started on this date.
    """

    date: date
    main_sleep: dict | None = None
    naps: list[dict] = field(default_factory=list)
    recovery: dict | None = None
    cycle: dict | None = None
    workouts: list[dict] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.main_sleep or self.recovery or self.cycle or self.workouts)


@dataclass(frozen=True)
class FormattedNote:
    """A rendered daily note and where it goes."""

    date: date
    path: str
    content: str
