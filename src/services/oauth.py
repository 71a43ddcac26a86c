"""OAuth2 token lifecycle shared by the Whoop and Dropbox clients.

Sessions are immutable values: every refresh returns a new ``OAuthSession``
and every authorized request returns the session it finally used, so callers
always know which access/refresh token pair is current.

Refresh tokens rotate.  A successful refresh may hand back a new refresh
token that invalidates the old one; the returned session carries it and is
flagged ``rotated`` so the caller can persist it everywhere the old one lived.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from src.errors import ApiError, AuthError

logger = logging.getLogger("whoop_sync.oauth")

# Treat tokens as expired this long before the provider does.
EXPIRY_BUFFER_SECONDS = 300


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def token_tail(token: str | None) -> str:
    """Return a log-safe rendering of a token (last 8 characters)."""
    if not token:
        return "<none>"
    return f"...{token[-8:]}"


@dataclass(frozen=True)
class OAuthSession:
    """An access/refresh token pair as held by one process.

    Attributes:
        access_token:  Bearer token for API calls ('' until the first refresh).
        refresh_token: Token used to obtain the next access token.
        expires_in:    Access token lifetime in seconds.
        token_type:    Usually "bearer".
        scope:         Space-separated granted scopes.
        issued_at:     UTC time the access token was issued.
        rotated:       True once any refresh in this process returned a new
                       refresh token.
    """

    access_token: str
    refresh_token: str
    expires_in: int = 3600
    token_type: str = "bearer"
    scope: str = ""
    issued_at: datetime = field(default_factory=utc_now)
    rotated: bool = False

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.access_token:
            return True
        now = now or utc_now()
        return now > self.expires_at - timedelta(seconds=EXPIRY_BUFFER_SECONDS)


class OAuth2Client:
    """Refresh-token grant plus Bearer-authenticated requests for one provider.

    Usage::

        oauth = OAuth2Client("whoop", token_url, client_id, client_secret)
        session = await oauth.refresh(OAuthSession("", refresh_token))
        response, session = await oauth.request("GET", url, session)
    """

    def __init__(
        self,
        provider: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        http_client: httpx.AsyncClient | None = None,
        on_refresh: Callable[[OAuthSession], None] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            provider:      Name used in log lines ('whoop', 'dropbox').
            token_url:     OAuth2 token endpoint.
            client_id:     OAuth2 client ID / app key.
            client_secret: OAuth2 client secret / app secret.
            http_client:   Optional pre-configured httpx client (for testing).
            on_refresh:    Called with every newly issued session, before it
                           is used, so rotated tokens can be persisted.
        """
        self.provider = provider
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._http_client = http_client
        self._on_refresh = on_refresh
        self._refresh_lock = asyncio.Lock()
        # stale access token -> session that replaced it
        self._replacements: dict[str, OAuthSession] = {}

    # ------------------------------------------------------------------
    # Token grants
    # ------------------------------------------------------------------

    async def refresh(self, session: OAuthSession) -> OAuthSession:
        """Exchange the session's refresh token for a new access token.

        Args:
            session: Current session; only its refresh token is sent.

        Returns:
            A new session.  ``rotated`` is set when the provider returned a
            refresh token different from the one sent.

        Raises:
            AuthError: Non-200 response, unreadable body or no access_token.
        """
        logger.info("%s: refreshing access token", self.provider)
        data = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": session.refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            }
        )

        new_refresh = data.get("refresh_token") or session.refresh_token
        rotated = new_refresh != session.refresh_token
        if rotated:
            logger.warning(
                "%s: refresh token was rotated (%s -> %s)",
                self.provider,
                token_tail(session.refresh_token),
                token_tail(new_refresh),
            )

        refreshed = self._session_from_token_response(
            data, new_refresh, rotated=session.rotated or rotated
        )
        logger.info("%s: access token refreshed", self.provider)
        self._notify(refreshed)
        return refreshed

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthSession:
        """Exchange an authorization code for the first token pair.

        Args:
            code:         Authorization code from the OAuth2 callback.
            redirect_uri: Redirect URI registered with the provider.

        Returns:
            New session (``rotated`` is False).
        """
        logger.info("%s: exchanging authorization code", self.provider)
        data = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": redirect_uri,
            }
        )
        session = self._session_from_token_response(data, data.get("refresh_token") or "")
        self._notify(session)
        return session

    def _notify(self, session: OAuthSession) -> None:
        if self._on_refresh is not None:
            self._on_refresh(session)

    # ------------------------------------------------------------------
    # Authorized requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        session: OAuthSession,
        **kwargs: Any,
    ) -> tuple[httpx.Response, OAuthSession]:
        """Send a Bearer-authenticated request, refreshing once on 401.

        Args:
            method:  HTTP method.
            url:     Full URL.
            session: Session whose access token is sent.
            **kwargs: Passed through to ``httpx.AsyncClient.request``.

        Returns:
            (response, session actually used).  The session differs from the
            argument when a refresh happened.

        Raises:
            AuthError: Still 401 after one refresh, or the refresh failed.
            ApiError:  Any other status outside [200, 300).
        """
        response = await self._send(method, url, session, **kwargs)

        if response.status_code == 401 and session.refresh_token:
            logger.info("%s: 401 from %s, refreshing and retrying once", self.provider, url)
            session = await self._refresh_stale(session)
            response = await self._send(method, url, session, **kwargs)
            if response.status_code == 401:
                raise AuthError(
                    f"{self.provider}: still unauthorized after token refresh: {response.text}"
                )

        if not 200 <= response.status_code < 300:
            raise ApiError(response.status_code, response.text, url)
        return response, session

    async def _refresh_stale(self, session: OAuthSession) -> OAuthSession:
        """Refresh at most once per stale access token.

        Parallel requests that all got a 401 with the same token share one
        refresh, so a rotating refresh token is never spent twice.
        """
        async with self._refresh_lock:
            replacement = self._replacements.get(session.access_token)
            if replacement is None:
                replacement = await self.refresh(session)
                self._replacements[session.access_token] = replacement
            return replacement

    # ------------------------------------------------------------------
    # Private HTTP helpers
    # ------------------------------------------------------------------

    async def _send(
        self, method: str, url: str, session: OAuthSession, **kwargs: Any
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if session.access_token:
            headers["Authorization"] = f"Bearer {session.access_token}"
        logger.debug("%s: %s %s", self.provider, method, url)

        if self._http_client:
            return await self._http_client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def _token_request(self, form: dict[str, str]) -> dict:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        try:
            if self._http_client:
                response = await self._http_client.post(self._token_url, data=form, headers=headers)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self._token_url, data=form, headers=headers)
        except httpx.HTTPError as exc:
            raise AuthError(f"{self.provider}: token request failed: {exc}") from exc

        if response.status_code != 200:
            raise AuthError(
                f"{self.provider}: token endpoint returned {response.status_code}: {response.text}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise AuthError(f"{self.provider}: token response is not JSON: {response.text}") from exc

        if not isinstance(data, dict) or not data.get("access_token"):
            raise AuthError(f"{self.provider}: no access_token in token response")
        return data

    @staticmethod
    def _session_from_token_response(
        data: dict, refresh_token: str, rotated: bool = False
    ) -> OAuthSession:
        return OAuthSession(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_in=int(data.get("expires_in") or 3600),
            token_type=data.get("token_type", "bearer"),
            scope=data.get("scope", "") or "",
            rotated=rotated,
        )


def session_with_refresh_token(session: OAuthSession, refresh_token: str) -> OAuthSession:
    """Return a copy of ``session`` carrying a different refresh token."""
    return replace(session, refresh_token=refresh_token)
