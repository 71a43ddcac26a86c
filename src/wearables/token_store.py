"""Persisted OAuth token state.

The JSON cache holds the last-known token set for one provider so a run that
starts within the access token's lifetime can skip the refresh call, and so a
rotated refresh token survives until the next run.

File format (``.whoop-tokens.json``)::

    {
      "access_token": "...",
      "refresh_token": "...",
      "expires_in": 3600,
      "token_type": "bearer",
      "scope": "offline read:recovery ...",
      "updated_at": "2026-02-23T06:00:00+00:00"
    }
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from dotenv import set_key
from pydantic import BaseModel, ValidationError

from src.errors import StorageError
from src.services.oauth import EXPIRY_BUFFER_SECONDS, OAuthSession, utc_now

logger = logging.getLogger("whoop_sync.tokens")


class TokenRecord(BaseModel):
    """One provider's token set as written to the cache file."""

    access_token: str = ""
    refresh_token: str = ""
    expires_in: int | None = None
    token_type: str = "bearer"
    scope: str = ""
    updated_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """True when ``now > updated_at + expires_in - 5 min`` or the record is incomplete."""
        if not self.access_token or self.updated_at is None or not self.expires_in:
            return True
        updated_at = self.updated_at
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        expires_at = updated_at + timedelta(seconds=self.expires_in)
        now = now or utc_now()
        return now > expires_at - timedelta(seconds=EXPIRY_BUFFER_SECONDS)

    @classmethod
    def from_session(cls, session: OAuthSession) -> "TokenRecord":
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_in=session.expires_in,
            token_type=session.token_type,
            scope=session.scope,
            updated_at=session.issued_at,
        )

    def to_session(self) -> OAuthSession:
        return OAuthSession(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_in=self.expires_in or 3600,
            token_type=self.token_type,
            scope=self.scope,
            issued_at=self.updated_at or utc_now(),
        )


class TokenStore:
    """JSON-file token cache for one provider."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> TokenRecord | None:
        """Return the cached record, or None when absent or unreadable.

        An unreadable cache only costs one extra refresh, so it is logged and
        ignored.
        """
        if not self.path.exists():
            logger.debug("Token cache %s does not exist", self.path)
            return None
        try:
            record = TokenRecord.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.error("Ignoring unreadable token cache %s: %s", self.path, exc)
            return None
        logger.debug("Tokens loaded from %s", self.path)
        return record

    def save(self, record: TokenRecord) -> None:
        """Write the record, stamping ``updated_at`` if it is missing.

        Raises:
            StorageError: If the file cannot be written.
        """
        if record.updated_at is None:
            record = record.model_copy(update={"updated_at": utc_now()})
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to save tokens to {self.path}: {exc}") from exc
        logger.debug("Tokens saved to %s", self.path)


def update_env_file(path: str | Path, values: dict[str, str]) -> None:
    """Set ``KEY=value`` lines in a dotenv file, creating it if needed.

    Args:
        path:   Path to the ``.env`` file.
        values: Keys to set.  Existing keys are replaced in place.

    Raises:
        StorageError: If the file cannot be written.
    """
    env_path = Path(path)
    try:
        env_path.touch(exist_ok=True)
        for key, value in values.items():
            set_key(str(env_path), key, value, quote_mode="never")
    except OSError as exc:
        raise StorageError(f"Failed to update {env_path}: {exc}") from exc
    logger.info("Updated %s (%s)", env_path, ", ".join(values))
