"""One sync run: fetch the trailing window from Whoop and write daily notes.

Workflow:
1. Check the storage backend is reachable
2. Fetch all Whoop categories for the window (refreshing the token if needed)
3. For each date in the window, oldest first: format, skip if empty, save
4. Optionally rewrite the folder README
5. Report counts and any rotated tokens to the output sink

Token rotation is propagated as soon as it happens: ``TokenRefreshHandler``
is passed to the OAuth clients and persists every refreshed session to the
JSON cache (and ``.env`` when enabled).  Step outputs are written once, at the
end of the run, even when the run fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path

from src.services.oauth import OAuthSession, session_with_refresh_token, token_tail, utc_now
from src.wearables.adapters.whoop import WhoopClient
from src.wearables.base import WhoopDataset
from src.wearables.note_formatter import NoteFormatter
from src.wearables.sync.file_manager import FileManager
from src.wearables.sync.outputs import OutputSink
from src.wearables.token_store import TokenRecord, TokenStore, update_env_file

logger = logging.getLogger("whoop_sync.wearables.sync")


# ---------------------------------------------------------------------------
# Token propagation
# ---------------------------------------------------------------------------


class TokenRefreshHandler:
    """Propagates refreshed tokens for one provider to every holder.

    Usage::

        handler = TokenRefreshHandler("whoop", store, sink, configured_refresh_token,
                                      refresh_output="new_refresh_token")
        client = WhoopClient(..., on_refresh=handler)
        ...
        handler.flush()   # write step outputs
    """

    def __init__(
        self,
        provider: str,
        store: TokenStore,
        sink: OutputSink,
        configured_refresh_token: str,
        *,
        refresh_output: str,
        access_output: str | None = None,
        env_file: str | Path | None = None,
        env_key: str | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            provider:                 Name for log lines.
            store:                    JSON token cache for this provider.
            sink:                     Output sink for step outputs.
            configured_refresh_token: Refresh token this run was configured with.
            refresh_output:           Output name for a new refresh token.
            access_output:            Output name for a new access token, if wanted.
            env_file:                 ``.env`` file to update on rotation (None = don't).
            env_key:                  Variable name in ``env_file``.
        """
        self.provider = provider
        self._store = store
        self._sink = sink
        self._configured = configured_refresh_token
        self._refresh_output = refresh_output
        self._access_output = access_output
        self._env_file = env_file
        self._env_key = env_key
        self.latest: OAuthSession | None = None

    @property
    def new_refresh_token(self) -> str | None:
        """The refresh token to store upstream, if it differs from the configured one."""
        if self.latest and self.latest.refresh_token != self._configured:
            return self.latest.refresh_token
        return None

    def __call__(self, session: OAuthSession) -> None:
        previous = self.latest.refresh_token if self.latest else self._configured
        self.latest = session
        self._store.save(TokenRecord.from_session(session))

        if session.refresh_token != previous and self._env_file and self._env_key:
            update_env_file(self._env_file, {self._env_key: session.refresh_token})

    def flush(self) -> None:
        """Write step outputs for whatever changed during the run."""
        if self.latest is None:
            return
        if self._access_output:
            self._sink.set_output(self._access_output, self.latest.access_token)
        new_refresh = self.new_refresh_token
        if new_refresh:
            logger.warning(
                "%s refresh token changed (%s). Update the stored secret with the new value.",
                self.provider,
                token_tail(new_refresh),
            )
            self._sink.set_output(self._refresh_output, new_refresh)


def initial_session(configured_refresh_token: str, store: TokenStore) -> OAuthSession:
    """Build the starting session from configuration and the token cache.

    An unexpired cached access token is reused.  A cached refresh token that
    differs from the configured one is newer (it was rotated by an earlier
    run) and takes precedence.
    """
    session = OAuthSession(access_token="", refresh_token=configured_refresh_token)
    cached = store.load()
    if cached is None:
        return session

    refresh_token = configured_refresh_token
    if cached.refresh_token and cached.refresh_token != configured_refresh_token:
        logger.info("Using cached refresh token (newer than configuration)")
        refresh_token = cached.refresh_token

    if not cached.is_expired():
        logger.info("Using cached access token")
        return session_with_refresh_token(cached.to_session(), refresh_token)
    return OAuthSession(access_token="", refresh_token=refresh_token)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class SyncResult:
    """Result of one sync run.

    Attributes:
        notes_created:     Number of notes written.
        processed_dates:   Dates that got a note, oldest first.
        sleep_records:     Sleep records fetched.
        recovery_records:  Recovery records fetched.
        workout_records:   Workout records fetched.
        fetch_errors:      Categories that failed and were treated as empty.
        new_refresh_token: Rotated Whoop refresh token, if any.
        synced_at:         UTC timestamp of the run.
    """

    notes_created: int = 0
    processed_dates: list[date] = field(default_factory=list)
    sleep_records: int = 0
    recovery_records: int = 0
    workout_records: int = 0
    fetch_errors: list[str] = field(default_factory=list)
    new_refresh_token: str | None = None
    synced_at: datetime = field(default_factory=utc_now)

    @property
    def summary(self) -> str:
        return (
            f"Synced {self.notes_created} notes ({self.sleep_records} sleep, "
            f"{self.recovery_records} recovery, {self.workout_records} workouts)"
        )


def date_range(today: date, days_back: int) -> list[date]:
    """Dates from ``today - days_back`` to ``today`` inclusive, oldest first."""
    return [today - timedelta(days=offset) for offset in range(days_back, -1, -1)]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SyncOrchestrator:
    """Runs one Whoop → notes sync.

    Usage::

        orchestrator = SyncOrchestrator(whoop, file_manager, formatter, sink, ...)
        result = await orchestrator.run(session, days_back=7)
    """

    def __init__(
        self,
        whoop: WhoopClient,
        file_manager: FileManager,
        formatter: NoteFormatter,
        sink: OutputSink,
        *,
        token_handlers: list[TokenRefreshHandler] | None = None,
        tz: tzinfo | None = None,
        create_readme: bool = True,
    ) -> None:
        self._whoop = whoop
        self._files = file_manager
        self._formatter = formatter
        self._sink = sink
        self._token_handlers = token_handlers or []
        self._tz = tz
        self._create_readme = create_readme

    async def run(
        self,
        session: OAuthSession,
        days_back: int = 7,
        now: datetime | None = None,
    ) -> SyncResult:
        """Execute the sync.

        Args:
            session:   Starting Whoop session (see ``initial_session``).
            days_back: Trailing window size in days.
            now:       Run time (defaults to the current time).

        Returns:
            SyncResult.

        Raises:
            AuthError:    Whoop or Dropbox authorization failed.
            StorageError: A note, folder or token cache could not be written.
        """
        now = now or utc_now()
        result = SyncResult(synced_at=now)
        try:
            await self._files.storage.connect()

            logger.info("Fetching Whoop data for the last %d days", days_back)
            results, session = await self._whoop.fetch_all(session, days_back, now=now)
            dataset = WhoopDataset.from_results(results)
            self._log_dataset(dataset)

            result.sleep_records = len(dataset.sleep)
            result.recovery_records = len(dataset.recovery)
            result.workout_records = len(dataset.workouts)
            result.fetch_errors = [str(e) for e in dataset.errors]

            today = now.astimezone(self._tz).date()
            for day in date_range(today, days_back):
                content = self._formatter.create_daily_note(day, dataset, synced_at=now)
                if content is None:
                    logger.debug("No data for %s, skipping", day.isoformat())
                    continue
                await self._files.save_note(self._files.build_note(day, content))
                result.notes_created += 1
                result.processed_dates.append(day)

            if self._create_readme:
                await self._files.save_readme(
                    self._formatter.create_readme(
                        now,
                        sleep_records=result.sleep_records,
                        recovery_records=result.recovery_records,
                        workout_records=result.workout_records,
                        notes_created=result.notes_created,
                        folder_name=self._files.base_path.rstrip("/").rsplit("/", 1)[-1] or "WHOOP",
                    )
                )
        finally:
            for handler in self._token_handlers:
                handler.flush()
                if handler.provider == self._whoop.SOURCE_ID:
                    result.new_refresh_token = handler.new_refresh_token

        self._sink.set_output("notes_created", result.notes_created)
        self._sink.set_output("sleep_records", result.sleep_records)
        self._sink.set_output("recovery_records", result.recovery_records)
        self._sink.set_output("workout_records", result.workout_records)
        self._sink.set_output("sync_summary", result.summary)

        logger.info("Sync complete: %s", result.summary)
        if result.processed_dates:
            shown = ", ".join(d.isoformat() for d in result.processed_dates[:5])
            extra = len(result.processed_dates) - 5
            logger.info("Processed dates: %s%s", shown, f" and {extra} more" if extra > 0 else "")
        return result

    @staticmethod
    def _log_dataset(dataset: WhoopDataset) -> None:
        logger.info(
            "Fetched %d sleep, %d recovery, %d cycle, %d workout records, %d body measurements",
            len(dataset.sleep),
            len(dataset.recovery),
            len(dataset.cycles),
            len(dataset.workouts),
            len(dataset.body_measurements),
        )
        if dataset.profile:
            logger.info(
                "User: %s %s",
                dataset.profile.get("first_name", ""),
                dataset.profile.get("last_name", ""),
            )
