"""Whoop API v1 client.

Uses OAuth2 for authentication (refresh-token grant with rotating refresh
tokens).

Environment variables:
    WHOOP_CLIENT_ID     — OAuth2 client ID
    WHOOP_CLIENT_SECRET — OAuth2 client secret

API base: https://api.prod.whoop.com/developer

Endpoints used:
    /v1/user/profile/basic    — Name and email
    /v1/activity/sleep        — Sleep sessions (including naps)
    /v1/recovery              — Recovery scores
    /v1/cycle                 — Physiological cycles (day strain)
    /v1/activity/workout      — Workout sessions
    /v1/user/measurement/body — Body measurements
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx

from src.errors import ApiError, AuthError, TransientFetchError
from src.services.oauth import OAuth2Client, OAuthSession, utc_now
from src.wearables.base import FetchResult

logger = logging.getLogger("whoop_sync.wearables.whoop")

_WHOOP_API_BASE = "https://api.prod.whoop.com"

# category -> (path under /developer/v1, windowed)
_ENDPOINTS: dict[str, tuple[str, bool]] = {
    "profile": ("/user/profile/basic", False),
    "sleep": ("/activity/sleep", True),
    "recovery": ("/recovery", True),
    "cycles": ("/cycle", True),
    "workouts": ("/activity/workout", True),
    "body_measurements": ("/user/measurement/body", True),
}

# Whoop sport ID → display name, used when a workout carries no sport_name
_WHOOP_SPORT_NAMES: dict[int, str] = {
    -1: "Activity",
    0: "Running",
    1: "Cycling",
    16: "Baseball",
    17: "Basketball",
    18: "Rowing",
    33: "Swimming",
    44: "Yoga",
    45: "Weightlifting",
    52: "Hiking/Rucking",
    63: "Walking",
}


def sport_name(workout: dict) -> str:
    """Return a display name for a workout record."""
    score = workout.get("score") or {}
    name = workout.get("sport_name") or score.get("sport_name")
    if name:
        return str(name)
    return _WHOOP_SPORT_NAMES.get(workout.get("sport_id"), "Workout")


def _iso_z(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WhoopClient:
    """Whoop API v1 client.

    Holds credentials only.  Token state travels as ``OAuthSession`` values:
    every fetch takes the current session and returns the one it ended with.
    """

    SOURCE_ID = "whoop"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        api_base: str = _WHOOP_API_BASE,
        http_client: httpx.AsyncClient | None = None,
        limit: int = 25,
        max_pages: int = 10,
        on_refresh: Callable[[OAuthSession], None] | None = None,
    ) -> None:
        """Initialize the Whoop client.

        Args:
            client_id:     OAuth2 client ID (WHOOP_CLIENT_ID env var).
            client_secret: OAuth2 client secret (WHOOP_CLIENT_SECRET env var).
            api_base:      API host, without the /developer suffix.
            http_client:   Optional pre-configured httpx client (for testing).
            limit:         Page size for collection endpoints (Whoop max is 25).
            max_pages:     Upper bound on pages followed per collection.
            on_refresh:    Called with every newly issued session.
        """
        client_id = client_id or os.environ.get("WHOOP_CLIENT_ID", "")
        client_secret = client_secret or os.environ.get("WHOOP_CLIENT_SECRET", "")
        self._api_base = api_base.rstrip("/")
        self._limit = limit
        self._max_pages = max_pages
        self.oauth = OAuth2Client(
            self.SOURCE_ID,
            f"{self._api_base}/oauth/oauth2/token",
            client_id,
            client_secret,
            http_client=http_client,
            on_refresh=on_refresh,
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def ensure_session(self, session: OAuthSession) -> OAuthSession:
        """Return ``session`` if its access token is still usable, else refresh it."""
        if session.is_expired():
            return await self.oauth.refresh(session)
        logger.info("Whoop: using cached access token")
        return session

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_all(
        self,
        session: OAuthSession,
        days_back: int = 7,
        now: datetime | None = None,
    ) -> tuple[dict[str, FetchResult], OAuthSession]:
        """Fetch every data category for the trailing window, concurrently.

        A failing category yields a ``FetchResult`` carrying a
        ``TransientFetchError``; it never blocks the others.

        Args:
            session:   Current session (refreshed first if expired).
            days_back: Window size in days, ending now.
            now:       Window end (defaults to the current time).

        Returns:
            ({category: FetchResult}, latest session).

        Raises:
            AuthError: Token refresh failed, or a request stayed unauthorized.
        """
        session = await self.ensure_session(session)

        end = now or utc_now()
        start = end - timedelta(days=days_back)
        window = {"start": _iso_z(start), "end": _iso_z(end), "limit": self._limit}

        logger.info(
            "Fetching Whoop data from %s to %s", start.date().isoformat(), end.date().isoformat()
        )

        tasks = [
            self._fetch_category(category, path, window if windowed else None, session)
            for category, (path, windowed) in _ENDPOINTS.items()
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results: dict[str, FetchResult] = {}
        sessions = [session]
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
            result, used = outcome
            results[result.category] = result
            sessions.append(used)

        latest = max(sessions, key=lambda s: s.issued_at)
        return results, latest

    async def get_profile(self, session: OAuthSession) -> tuple[dict, OAuthSession]:
        """Fetch the basic user profile (used as a token smoke test)."""
        data, session = await self._get(f"{self._base_v1}/user/profile/basic", None, session)
        return data, session

    async def _fetch_category(
        self,
        category: str,
        path: str,
        window: dict | None,
        session: OAuthSession,
    ) -> tuple[FetchResult, OAuthSession]:
        url = f"{self._base_v1}{path}"
        try:
            if category == "profile":
                data, session = await self._get(url, None, session)
            else:
                data, session = await self._get_records(url, window or {}, session)
        except AuthError:
            raise
        except (ApiError, httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to fetch %s: %s", category, exc)
            return FetchResult(category, error=TransientFetchError(category, str(exc))), session
        return FetchResult(category, value=data), session

    async def _get_records(
        self, url: str, params: dict, session: OAuthSession
    ) -> tuple[list[dict], OAuthSession]:
        """Collect ``records`` across pages, following ``next_token``.

        A body without ``records`` (e.g. body measurements) is returned as a
        single-item list.
        """
        records: list[dict] = []
        params = dict(params)

        for _ in range(self._max_pages):
            data, session = await self._get(url, params, session)
            if not isinstance(data, dict):
                raise ValueError(f"Unexpected response shape from {url}")
            if "records" not in data:
                return ([data] if data else []), session

            records.extend(data.get("records") or [])
            next_token = data.get("next_token")
            if not next_token:
                break
            params["nextToken"] = next_token
        else:
            logger.warning("Stopped paging %s after %d pages", url, self._max_pages)

        logger.debug("Fetched %d records from %s", len(records), url)
        return records, session

    async def _get(
        self, url: str, params: dict | None, session: OAuthSession
    ) -> tuple[dict, OAuthSession]:
        """Make an authenticated GET request to the Whoop API.

        Args:
            url:     Full endpoint URL.
            params:  Query parameters.
            session: Current session.

        Returns:
            (JSON response, session used).
        """
        response, session = await self.oauth.request("GET", url, session, params=params)
        return response.json(), session

    @property
    def _base_v1(self) -> str:
        return f"{self._api_base}/developer/v1"
