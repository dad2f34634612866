"""Helpers for persisting the launcher's lightweight selections."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from services.frida.commands import sanitize_flags
from services.frida.models import Architecture

_ENV_PREFERENCES_PATH = "FRIDA_LAUNCHER_PREFERENCES_PATH"

_LOGGER = logging.getLogger(__name__)


@dataclass
class Preferences:
    """Serializable selections persisted between launcher runs."""

    selected_version: str | None = None
    selected_architecture: str | None = None
    last_custom_flags: str | None = None
    log_verbosity: str | None = None


def default_preferences_path() -> Path:
    """Return the configured preferences path, falling back to the user home."""

    override = os.environ.get(_ENV_PREFERENCES_PATH)
    if override:
        return Path(override)
    return Path.home() / ".frida_launcher" / "preferences.json"


def load_preferences(path: Path | None = None) -> Preferences:
    """Load persisted preferences, returning defaults when missing or invalid."""

    location = path or default_preferences_path()
    try:
        raw = location.read_text(encoding="utf-8")
    except OSError:
        return Preferences()

    try:
        data: Dict[str, Any] = json.loads(raw)
    except json.JSONDecodeError:
        _LOGGER.warning("Ignoring unreadable preferences file %s", location)
        return Preferences()
    if not isinstance(data, dict):
        return Preferences()

    selected_version = data.get("selected_version")
    if not isinstance(selected_version, str) or not selected_version.strip():
        selected_version = None
    else:
        selected_version = selected_version.strip()

    raw_architecture = data.get("selected_architecture")
    architecture = Architecture.parse(raw_architecture)
    selected_architecture = (
        architecture.value if architecture is not Architecture.UNKNOWN else None
    )

    raw_flags = data.get("last_custom_flags")
    last_custom_flags = sanitize_flags(raw_flags) if isinstance(raw_flags, str) else None

    log_verbosity = data.get("log_verbosity")
    if not isinstance(log_verbosity, str):
        log_verbosity = None

    return Preferences(
        selected_version=selected_version,
        selected_architecture=selected_architecture,
        last_custom_flags=last_custom_flags or None,
        log_verbosity=log_verbosity,
    )


def save_preferences(preferences: Preferences, path: Path | None = None) -> None:
    """Persist preferences to disk; filesystem errors are logged and ignored."""

    location = path or default_preferences_path()
    data: Dict[str, Any] = {}
    if preferences.selected_version:
        data["selected_version"] = preferences.selected_version
    if preferences.selected_architecture:
        architecture = Architecture.parse(preferences.selected_architecture)
        if architecture is not Architecture.UNKNOWN:
            data["selected_architecture"] = architecture.value
    if preferences.last_custom_flags:
        data["last_custom_flags"] = sanitize_flags(preferences.last_custom_flags)
    if preferences.log_verbosity:
        data["log_verbosity"] = preferences.log_verbosity

    try:
        location.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(data, indent=2, sort_keys=True) + "\n"
        location.write_text(payload, encoding="utf-8")
    except OSError:
        _LOGGER.warning("Unable to save preferences to %s", location, exc_info=True)


__all__ = [
    "Preferences",
    "default_preferences_path",
    "load_preferences",
    "save_preferences",
]
