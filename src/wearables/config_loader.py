"""Load and validate the daily note rendering configuration.

The config lives in ``note_config.yaml`` alongside this module.  It is loaded
once and cached; call ``reload_note_config()`` to re-read it from disk.

Usage::

    from src.wearables.config_loader import get_note_config

    config = get_note_config()
    config.recovery_band(72)   # "green"
    config.strain_band(15.2)   # "orange"
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("whoop_sync.wearables.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "note_config.yaml"


# ---------------------------------------------------------------------------
# Typed config
# ---------------------------------------------------------------------------


@dataclass
class NoteConfig:
    """Complete, validated note configuration.

    Attributes:
        version:           Config schema version string.
        tags:              Frontmatter tags on every note.
        recovery_bands:    Lower bounds for 'green' and 'yellow' recovery.
        strain_bands:      Lower bounds for 'red', 'orange' and 'yellow' strain.
        body_max_age_days: Body measurements older than this are not shown.
        notes_placeholder: Text under the Notes heading.
        footer:            Footer label, followed by the sync timestamp.
    """

    version: str
    tags: list[str]
    recovery_bands: dict[str, float]
    strain_bands: dict[str, float]
    body_max_age_days: int
    notes_placeholder: str
    footer: str

    def recovery_band(self, score: float) -> str:
        """Return 'green', 'yellow' or 'red' for a recovery percentage."""
        if score >= self.recovery_bands["green"]:
            return "green"
        if score >= self.recovery_bands["yellow"]:
            return "yellow"
        return "red"

    def strain_band(self, strain: float) -> str:
        """Return 'red', 'orange', 'yellow' or 'green' for a strain value."""
        for band in ("red", "orange", "yellow"):
            if strain >= self.strain_bands[band]:
                return band
        return "green"


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when note_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Note config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> NoteConfig:
    """Validate the raw YAML dict and construct a NoteConfig.

    Missing sections fall back to defaults; present values must be well-formed.

    Raises:
        ConfigValidationError: If any value is invalid.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, default: float, section_name: str) -> float:
        value: Any = section.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"'{section_name}.{key}' must be a number, got {value!r}")
            return default
        return float(value)

    fm_raw = raw.get("frontmatter", {}) or {}
    tags = fm_raw.get("tags", ["whoop", "fitness", "health"])
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        errors.append("'frontmatter.tags' must be a list of strings")
        tags = []

    rb_raw = raw.get("recovery_bands", {}) or {}
    recovery_bands = {
        "green": _number(rb_raw, "green", 67, "recovery_bands"),
        "yellow": _number(rb_raw, "yellow", 34, "recovery_bands"),
    }
    if recovery_bands["yellow"] > recovery_bands["green"]:
        errors.append("'recovery_bands.yellow' must not exceed 'recovery_bands.green'")

    sb_raw = raw.get("strain_bands", {}) or {}
    strain_bands = {
        "red": _number(sb_raw, "red", 18, "strain_bands"),
        "orange": _number(sb_raw, "orange", 14, "strain_bands"),
        "yellow": _number(sb_raw, "yellow", 10, "strain_bands"),
    }
    if not strain_bands["red"] >= strain_bands["orange"] >= strain_bands["yellow"]:
        errors.append("'strain_bands' must satisfy red >= orange >= yellow")

    bm_raw = raw.get("body_measurements", {}) or {}
    max_age = bm_raw.get("max_age_days", 7)
    if isinstance(max_age, bool) or not isinstance(max_age, int) or max_age < 0:
        errors.append(f"'body_measurements.max_age_days' must be a non-negative int, got {max_age!r}")
        max_age = 7

    sections_raw = raw.get("sections", {}) or {}

    if errors:
        raise ConfigValidationError(
            f"note_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return NoteConfig(
        version=str(raw.get("version", "1.0")),
        tags=tags,
        recovery_bands=recovery_bands,
        strain_bands=strain_bands,
        body_max_age_days=max_age,
        notes_placeholder=sections_raw.get("notes_placeholder", "*Add your daily notes here*"),
        footer=sections_raw.get("footer", "Synced via whoop-notes-sync"),
    )


def load_note_config(path: Path | None = None) -> NoteConfig:
    """Load and validate the note config from disk.

    Args:
        path: Override path to YAML. Uses the bundled note_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.debug("Loaded note config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton
# ---------------------------------------------------------------------------

_config: NoteConfig | None = None
_config_lock = threading.Lock()


def get_note_config() -> NoteConfig:
    """Return the global NoteConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_note_config()
    return _config


def reload_note_config(path: Path | None = None) -> NoteConfig:
    """Reload the note config and replace the singleton.

    If validation fails the old config is kept and the error re-raised.
    """
    global _config
    new_config = load_note_config(path)
    with _config_lock:
        _config = new_config
    logger.info("Reloaded note config v%s", new_config.version)
    return new_config
