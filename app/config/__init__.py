"""Application-wide configuration loaded from JSON resources."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from importlib import resources
from math import isfinite
from pathlib import Path
from typing import Any, Mapping

_CONFIG_RESOURCE = "app.json"
_CONFIG_ENV = "FRIDA_LAUNCHER_CONFIG"
_APP_CONFIG_CACHE: AppConfig | None = None

_MIN_TIMEOUT_SECONDS = 1.0
_MAX_TIMEOUT_SECONDS = 120.0
_DEFAULT_WORK_DIR = "~/.frida_launcher/downloads"
_DEFAULT_API_URL = "https://api.github.com/repos/frida/frida/releases"
_DEFAULT_ELEVATION_COMMAND = ("su",)
_DEFAULT_BINARY_PATH = "/data/local/tmp/frida-server"
_DEFAULT_VERSION_FILE = "/data/local/tmp/frida-version.txt"
_MAX_SETTLE_SECONDS = 2.0


@dataclass(frozen=True)
class CatalogConfig:
    """Where release metadata comes from."""

    api_url: str
    timeout_seconds: float


@dataclass(frozen=True)
class DownloadConfig:
    """Artifact download settings."""

    timeout_seconds: float
    chunk_size: int
    work_dir: Path


@dataclass(frozen=True)
class SessionConfig:
    """Elevated shell settings."""

    elevation_command: tuple[str, ...]
    settle_seconds: float
    command_timeout_seconds: float
    probe_timeout_seconds: float


@dataclass(frozen=True)
class ServerConfig:
    """Device-side locations and lifecycle delays."""

    binary_path: str
    version_file: str
    start_settle_seconds: float
    stop_settle_seconds: float


@dataclass(frozen=True)
class AppConfig:
    """Structured configuration values for the launcher."""

    catalog: CatalogConfig
    download: DownloadConfig
    session: SessionConfig
    server: ServerConfig


def get_app_config() -> AppConfig:
    """Return the cached application configuration."""

    global _APP_CONFIG_CACHE
    if _APP_CONFIG_CACHE is None:
        _APP_CONFIG_CACHE = load_app_config()
    return _APP_CONFIG_CACHE


def reset_app_config_cache() -> None:
    """Reset the cached configuration for subsequent reloads."""

    global _APP_CONFIG_CACHE
    _APP_CONFIG_CACHE = None


def load_app_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from ``path``, ``FRIDA_LAUNCHER_CONFIG`` or the bundled JSON."""

    data = _read_config_data(path)
    return AppConfig(
        catalog=_parse_catalog_section(_section(data, "catalog")),
        download=_parse_download_section(_section(data, "download")),
        session=_parse_session_section(_section(data, "session")),
        server=_parse_server_section(_section(data, "server")),
    )


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name) if isinstance(data, Mapping) else None
    return section if isinstance(section, Mapping) else {}


def _read_config_data(path: str | Path | None) -> Mapping[str, Any]:
    if path is None:
        override = os.environ.get(_CONFIG_ENV, "").strip()
        if override:
            path = override
    if path is not None:
        return _load_json_from_path(Path(path).expanduser())
    return _load_default_config_data()


def _load_json_from_path(path: Path) -> Mapping[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    return _parse_json(raw)


def _load_default_config_data() -> Mapping[str, Any]:
    try:
        resource = resources.files(__package__).joinpath(_CONFIG_RESOURCE)
        raw = resource.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        return {}
    return _parse_json(raw)


def _parse_json(raw: str) -> Mapping[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, Mapping):
        return parsed
    return {}


def _parse_catalog_section(section: Mapping[str, Any]) -> CatalogConfig:
    return CatalogConfig(
        api_url=_coerce_text(section.get("api_url"), default=_DEFAULT_API_URL),
        timeout_seconds=_coerce_timeout(section.get("timeout_seconds"), default=30.0),
    )


def _parse_download_section(section: Mapping[str, Any]) -> DownloadConfig:
    work_dir = _coerce_text(section.get("work_dir"), default=_DEFAULT_WORK_DIR)
    return DownloadConfig(
        timeout_seconds=_coerce_timeout(section.get("timeout_seconds"), default=60.0),
        chunk_size=_coerce_positive_int(section.get("chunk_size"), default=8192),
        work_dir=Path(work_dir).expanduser(),
    )


def _parse_session_section(section: Mapping[str, Any]) -> SessionConfig:
    return SessionConfig(
        elevation_command=_coerce_command(
            section.get("elevation_command"), default=_DEFAULT_ELEVATION_COMMAND
        ),
        settle_seconds=_coerce_settle(section.get("settle_seconds"), default=0.5),
        command_timeout_seconds=_coerce_timeout(section.get("command_timeout_seconds"), default=10.0),
        probe_timeout_seconds=_coerce_timeout(section.get("probe_timeout_seconds"), default=10.0),
    )


def _parse_server_section(section: Mapping[str, Any]) -> ServerConfig:
    return ServerConfig(
        binary_path=_coerce_text(section.get("binary_path"), default=_DEFAULT_BINARY_PATH),
        version_file=_coerce_text(
            section.get("version_file"), default=_DEFAULT_VERSION_FILE
        ),
        start_settle_seconds=_coerce_settle(section.get("start_settle_seconds"), default=1.5),
        stop_settle_seconds=_coerce_settle(section.get("stop_settle_seconds"), default=0.5),
    )


def _coerce_text(value: Any, *, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _coerce_command(value: Any, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, str):
        parts = tuple(value.split())
    elif isinstance(value, (list, tuple)) and all(isinstance(part, str) for part in value):
        parts = tuple(part.strip() for part in value if part.strip())
    else:
        return default
    return parts or default


def _coerce_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        candidate = float(value)
    elif isinstance(value, str):
        try:
            candidate = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not isfinite(candidate):
        return None
    return candidate


def _coerce_timeout(value: Any, *, default: float) -> float:
    candidate = _coerce_float(value)
    if candidate is None or candidate <= 0:
        return default
    return min(_MAX_TIMEOUT_SECONDS, max(_MIN_TIMEOUT_SECONDS, candidate))


def _coerce_settle(value: Any, *, default: float) -> float:
    candidate = _coerce_float(value)
    if candidate is None or candidate < 0:
        return default
    return min(_MAX_SETTLE_SECONDS, candidate)


def _coerce_positive_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = int(value)
    elif isinstance(value, str):
        try:
            candidate = int(float(value))
        except ValueError:
            return default
    else:
        return default
    if candidate <= 0:
        return default
    return candidate


__all__ = [
    "AppConfig",
    "CatalogConfig",
    "DownloadConfig",
    "ServerConfig",
    "SessionConfig",
    "get_app_config",
    "load_app_config",
    "reset_app_config_cache",
]
