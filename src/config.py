"""Application configuration loaded from environment variables.

Every setting can be given either as a GitHub Action input (``INPUT_<NAME>``)
or as a plain environment variable / ``.env`` entry (``<NAME>``).  The action
input wins when both are present.
"""

from datetime import tzinfo
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

from src.errors import ConfigError

STORAGE_BACKENDS = ("dropbox", "local", "r2")


def _input(name: str, default: Any = "") -> Any:
    return Field(default=default, validation_alias=AliasChoices(f"INPUT_{name}", name))


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "whoop-notes-sync"
    app_version: str = "0.1.0"
    debug: bool = _input("DEBUG", False)
    log_level: str = _input("LOG_LEVEL", "INFO")

    # --- Whoop ---
    whoop_client_id: str = _input("WHOOP_CLIENT_ID")
    whoop_client_secret: str = _input("WHOOP_CLIENT_SECRET")
    whoop_refresh_token: str = _input("WHOOP_REFRESH_TOKEN")
    whoop_redirect_uri: str = _input(
        "WHOOP_REDIRECT_URI", "http://localhost:3000/api/auth/callback"
    )
    whoop_api_base: str = _input("WHOOP_API_BASE", "https://api.prod.whoop.com")

    # --- Storage ---
    storage_backend: str = _input("STORAGE_BACKEND", "dropbox")  # dropbox | local | r2

    # --- Dropbox ---
    dropbox_app_key: str = _input("DROPBOX_APP_KEY")
    dropbox_app_secret: str = _input("DROPBOX_APP_SECRET")
    dropbox_access_token: str = _input("DROPBOX_ACCESS_TOKEN")
    dropbox_refresh_token: str = _input("DROPBOX_REFRESH_TOKEN")
    dropbox_path: str = _input("DROPBOX_PATH", "/WHOOP")

    # --- Local disk ---
    output_dir: str = _input("OUTPUT_DIR", "./WHOOP")

    # --- Cloudflare R2 ---
    r2_account_id: str = _input("R2_ACCOUNT_ID")
    r2_access_key_id: str = _input("R2_ACCESS_KEY_ID")
    r2_secret_access_key: str = _input("R2_SECRET_ACCESS_KEY")
    r2_bucket_name: str = _input("R2_BUCKET_NAME", "whoop-notes")
    r2_prefix: str = _input("R2_PREFIX", "WHOOP")

    # --- Sync ---
    days_back: int = Field(
        default=7, ge=0, le=365, validation_alias=AliasChoices("INPUT_DAYS_BACK", "DAYS_BACK")
    )
    fetch_limit: int = Field(
        default=25, ge=1, le=25, validation_alias=AliasChoices("INPUT_FETCH_LIMIT", "FETCH_LIMIT")
    )
    fetch_max_pages: int = _input("FETCH_MAX_PAGES", 10)
    create_readme: bool = _input("CREATE_README", True)
    timezone: str = _input("TIMEZONE")  # IANA name, empty = system local time
    http_timeout_seconds: float = _input("HTTP_TIMEOUT_SECONDS", 30.0)

    # --- Token persistence ---
    token_cache_file: str = _input("TOKEN_CACHE_FILE", ".whoop-tokens.json")
    dropbox_token_cache_file: str = _input("DROPBOX_TOKEN_CACHE_FILE", ".dropbox-tokens.json")
    update_env_file: bool = _input("UPDATE_ENV_FILE", False)
    env_file_path: str = _input("ENV_FILE_PATH", ".env")

    # --- GitHub Actions ---
    github_output: str = Field(default="", validation_alias="GITHUB_OUTPUT")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
        "env_ignore_empty": True,
    }

    def require_credentials(self) -> None:
        """Fail fast when a credential needed by this run is missing.

        Raises:
            ConfigError: Listing every missing setting.
        """
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigError(
                f"Unknown storage_backend '{self.storage_backend}'. "
                f"Expected one of: {', '.join(STORAGE_BACKENDS)}"
            )

        required = ["whoop_client_id", "whoop_client_secret", "whoop_refresh_token"]
        if self.storage_backend == "dropbox":
            required += ["dropbox_app_key", "dropbox_app_secret", "dropbox_refresh_token"]
        elif self.storage_backend == "r2":
            required += ["r2_account_id", "r2_access_key_id", "r2_secret_access_key"]

        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ConfigError(f"Missing required inputs: {', '.join(missing)}")

        self.local_timezone()

    def local_timezone(self) -> tzinfo | None:
        """Return the timezone used for calendar-date matching (None = system local)."""
        if not self.timezone:
            return None
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown timezone '{self.timezone}'") from exc


@lru_cache
def get_settings() -> Settings:
    return Settings()
