"""whoop-notes-sync — command-line entry point.

Run locally:
    python -m src.main                 # sync (default)
    python -m src.main refresh-token   # refresh the Whoop token and persist it
    python -m src.main exchange-code CODE
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

import httpx
from pydantic import ValidationError

from src.config import Settings, get_settings
from src.errors import ConfigError, SyncError
from src.services.dropbox import DropboxClient, DropboxStorage
from src.services.r2 import R2Storage
from src.services.storage import LocalDiskStorage, NoteStorage
from src.wearables.adapters.whoop import WhoopClient
from src.wearables.note_formatter import NoteFormatter
from src.wearables.sync.file_manager import FileManager
from src.wearables.sync.orchestrator import (
    SyncOrchestrator,
    SyncResult,
    TokenRefreshHandler,
    initial_session,
)
from src.wearables.sync.outputs import (
    ConsoleOutputSink,
    GitHubOutputSink,
    OutputSink,
    create_output_sink,
)
from src.wearables.token_store import TokenStore

logger = logging.getLogger("whoop_sync")


# ---------- Logging ----------

def configure_logging(settings: Settings) -> None:
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    # httpx logs every request at INFO, including query strings
    logging.getLogger("httpx").setLevel(logging.DEBUG if settings.debug else logging.WARNING)


# ---------- Wiring ----------

def _env_file(settings: Settings) -> str | None:
    return settings.env_file_path if settings.update_env_file else None


def whoop_token_handler(settings: Settings, sink: OutputSink) -> TokenRefreshHandler:
    return TokenRefreshHandler(
        "whoop",
        TokenStore(settings.token_cache_file),
        sink,
        settings.whoop_refresh_token,
        refresh_output="new_refresh_token",
        env_file=_env_file(settings),
        env_key="WHOOP_REFRESH_TOKEN",
    )


def build_storage(
    settings: Settings, http_client: httpx.AsyncClient, sink: OutputSink
) -> tuple[NoteStorage, str, list[TokenRefreshHandler]]:
    """Return (storage backend, base path, token handlers it needs)."""
    if settings.storage_backend == "local":
        return LocalDiskStorage(), settings.output_dir, []
    if settings.storage_backend == "r2":
        return R2Storage(settings), settings.r2_prefix, []

    store = TokenStore(settings.dropbox_token_cache_file)
    handler = TokenRefreshHandler(
        "dropbox",
        store,
        sink,
        settings.dropbox_refresh_token,
        refresh_output="new_dropbox_refresh_token",
        access_output="new_dropbox_access_token",
        env_file=_env_file(settings),
        env_key="DROPBOX_REFRESH_TOKEN",
    )
    seed = initial_session(settings.dropbox_refresh_token, store)
    client = DropboxClient(
        settings.dropbox_app_key,
        settings.dropbox_app_secret,
        access_token=seed.access_token or settings.dropbox_access_token,
        refresh_token=seed.refresh_token,
        http_client=http_client,
        on_refresh=handler,
    )
    return DropboxStorage(client), settings.dropbox_path, [handler]


def build_whoop_client(
    settings: Settings, http_client: httpx.AsyncClient, handler: TokenRefreshHandler
) -> WhoopClient:
    return WhoopClient(
        settings.whoop_client_id,
        settings.whoop_client_secret,
        api_base=settings.whoop_api_base,
        http_client=http_client,
        limit=settings.fetch_limit,
        max_pages=settings.fetch_max_pages,
        on_refresh=handler,
    )


# ---------- Commands ----------

async def run_sync(settings: Settings, sink: OutputSink) -> SyncResult:
    settings.require_credentials()
    tz = settings.local_timezone()

    logger.info("Starting %s v%s [%s storage]", settings.app_name, settings.app_version, settings.storage_backend)
    logger.debug("Days back: %d, redirect URI: %s", settings.days_back, settings.whoop_redirect_uri)

    whoop_handler = whoop_token_handler(settings, sink)
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http_client:
        whoop = build_whoop_client(settings, http_client, whoop_handler)
        storage, base_path, storage_handlers = build_storage(settings, http_client, sink)

        orchestrator = SyncOrchestrator(
            whoop,
            FileManager(storage, base_path),
            NoteFormatter(tz=tz),
            sink,
            token_handlers=[whoop_handler, *storage_handlers],
            tz=tz,
            create_readme=settings.create_readme,
        )
        session = initial_session(settings.whoop_refresh_token, TokenStore(settings.token_cache_file))
        return await orchestrator.run(session, days_back=settings.days_back)


async def run_refresh(settings: Settings, sink: OutputSink) -> None:
    """Force a Whoop token refresh, persist it and smoke-test it."""
    if not (settings.whoop_client_id and settings.whoop_client_secret and settings.whoop_refresh_token):
        raise ConfigError("Missing required inputs: whoop_client_id, whoop_client_secret, whoop_refresh_token")

    handler = whoop_token_handler(settings, sink)
    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http_client:
            whoop = build_whoop_client(settings, http_client, handler)
            start = initial_session(settings.whoop_refresh_token, TokenStore(settings.token_cache_file))
            session = await whoop.oauth.refresh(start)
            profile, _ = await whoop.get_profile(session)
            logger.info("Token works for %s %s", profile.get("first_name", ""), profile.get("last_name", ""))
    finally:
        handler.flush()


async def run_exchange(settings: Settings, sink: OutputSink, code: str) -> None:
    """Exchange an authorization code for the first Whoop token pair."""
    if not (settings.whoop_client_id and settings.whoop_client_secret):
        raise ConfigError("Missing required inputs: whoop_client_id, whoop_client_secret")

    handler = whoop_token_handler(settings, sink)
    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http_client:
            whoop = build_whoop_client(settings, http_client, handler)
            await whoop.oauth.exchange_code(code, settings.whoop_redirect_uri)
    finally:
        handler.flush()


# ---------- CLI ----------

def fallback_sink(github_output: str | None) -> OutputSink:
    """Sink for failures that happen before settings could be loaded."""
    if github_output:
        return GitHubOutputSink(github_output)
    return ConsoleOutputSink()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="whoop-sync", description="Sync Whoop data into Markdown daily notes."
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("sync", help="Fetch the trailing window and write notes (default)")
    sub.add_parser("refresh-token", help="Refresh and persist the Whoop token")
    exchange = sub.add_parser("exchange-code", help="Exchange an OAuth authorization code")
    exchange.add_argument("code")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as exc:
        logging.basicConfig(level=logging.INFO, stream=sys.stdout)
        logger.error("Invalid configuration: %s", exc)
        fallback_sink(os.environ.get("GITHUB_OUTPUT")).set_failed(f"Invalid configuration: {exc}")
        return 1

    configure_logging(settings)
    sink = create_output_sink(settings)

    try:
        if args.command == "refresh-token":
            asyncio.run(run_refresh(settings, sink))
        elif args.command == "exchange-code":
            asyncio.run(run_exchange(settings, sink, args.code))
        else:
            result = asyncio.run(run_sync(settings, sink))
            logger.info("✅ %s", result.summary)
    except SyncError as exc:
        logger.error("❌ Sync failed: %s", exc, exc_info=settings.debug)
        sink.set_failed(str(exc))
        return 1
    except Exception as exc:
        logger.exception("❌ Unexpected error")
        sink.set_failed(f"Unexpected error: {exc}")
        return 1
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
