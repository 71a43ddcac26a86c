"""Dropbox API v2 client and note storage backend.

Environment variables:
    DROPBOX_APP_KEY       — OAuth2 app key
    DROPBOX_APP_SECRET    — OAuth2 app secret
    DROPBOX_ACCESS_TOKEN  — Short-lived access token (optional)
    DROPBOX_REFRESH_TOKEN — Long-lived refresh token

Endpoints used:
    api.dropbox.com/oauth2/token                  — Token refresh
    api.dropboxapi.com/2/users/get_current_account — Connectivity probe
    api.dropboxapi.com/2/files/create_folder_v2    — Folder creation (409 = exists)
    content.dropboxapi.com/2/files/upload          — File upload (overwrite)
"""

from __future__ import annotations

import json
import logging
from typing import Callable

import httpx

from src.errors import ApiError, StorageError
from src.services.oauth import OAuth2Client, OAuthSession
from src.services.storage import NoteStorage

logger = logging.getLogger("whoop_sync.dropbox")

_DROPBOX_API = "https://api.dropboxapi.com"
_DROPBOX_CONTENT = "https://content.dropboxapi.com"
_DROPBOX_TOKEN_URL = "https://api.dropbox.com/oauth2/token"


class DropboxClient:
    """Minimal Dropbox API v2 client.

    Keeps the current ``OAuthSession``; every call replaces it with the
    session the request actually used, so a refresh during one upload is
    reused by the next.
    """

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        access_token: str,
        refresh_token: str,
        http_client: httpx.AsyncClient | None = None,
        on_refresh: Callable[[OAuthSession], None] | None = None,
    ) -> None:
        self.oauth = OAuth2Client(
            "dropbox",
            _DROPBOX_TOKEN_URL,
            app_key,
            app_secret,
            http_client=http_client,
            on_refresh=on_refresh,
        )
        self.session = OAuthSession(access_token=access_token, refresh_token=refresh_token)

    async def _call(self, url: str, **kwargs) -> httpx.Response:
        if not self.session.access_token:
            self.session = await self.oauth.refresh(self.session)
        response, self.session = await self.oauth.request("POST", url, self.session, **kwargs)
        return response

    async def get_current_account(self) -> dict:
        response = await self._call(f"{_DROPBOX_API}/2/users/get_current_account")
        return response.json()

    async def create_folder(self, path: str) -> bool:
        """Create a folder.

        Returns:
            True if created, False if it already existed.

        Raises:
            ApiError: Any failure other than a path conflict.
        """
        try:
            await self._call(
                f"{_DROPBOX_API}/2/files/create_folder_v2",
                json={"path": path, "autorename": False},
            )
        except ApiError as exc:
            if exc.status_code == 409 and "conflict" in exc.body:
                logger.debug("Folder already exists: %s", path)
                return False
            raise
        logger.info("Created Dropbox folder %s", path)
        return True

    async def upload_file(self, path: str, content: str) -> dict:
        """Upload ``content`` to ``path``, overwriting any existing file."""
        args = {"path": path, "mode": "overwrite", "autorename": False, "mute": False}
        response = await self._call(
            f"{_DROPBOX_CONTENT}/2/files/upload",
            headers={
                "Dropbox-API-Arg": json.dumps(args),
                "Content-Type": "application/octet-stream",
            },
            content=content.encode("utf-8"),
        )
        return response.json()


class DropboxStorage(NoteStorage):
    """Stores notes in a Dropbox folder."""

    NAME = "dropbox"

    def __init__(self, client: DropboxClient) -> None:
        self._client = client

    async def connect(self) -> None:
        try:
            account = await self._client.get_current_account()
        except (ApiError, httpx.HTTPError, ValueError) as exc:
            raise StorageError(f"Failed to connect to Dropbox: {exc}") from exc
        name = (account.get("name") or {}).get("display_name", "unknown")
        logger.info("Connected to Dropbox as: %s", name)

    async def ensure_directory(self, path: str) -> None:
        """Create every level of ``path`` (``/a``, ``/a/b``, ...)."""
        current = ""
        for part in (p for p in path.split("/") if p):
            current += "/" + part
            try:
                await self._client.create_folder(current)
            except (ApiError, httpx.HTTPError) as exc:
                raise StorageError(f"Failed to create Dropbox folder {current}: {exc}") from exc

    async def write_file(self, path: str, content: str) -> None:
        try:
            await self._client.upload_file(path, content)
        except (ApiError, httpx.HTTPError, ValueError) as exc:
            raise StorageError(f"Failed to upload {path} to Dropbox: {exc}") from exc
        logger.debug("Uploaded %s (%d chars)", path, len(content))
