"""Public API for the frida-server provisioning package."""

from __future__ import annotations

from services.frida.builder import Launcher, build_launcher
from services.frida.catalog import GitHubReleaseCatalog, LocalFolderReleaseCatalog, ReleaseCatalog
from services.frida.commands import sanitize_flags
from services.frida.constants import (
    API_RELEASES_URL,
    DEFAULT_BINARY_PATH,
    DEFAULT_VERSION_FILE,
    LOCAL_RELEASES_ENV,
    SERVER_BINARY_NAME,
)
from services.frida.device import can_use_non_root_mode, detect_device_architecture
from services.frida.fetcher import ArtifactFetcher
from services.frida.lifecycle import ServerLifecycleManager
from services.frida.models import (
    Architecture,
    ArtifactError,
    Asset,
    DecompressionError,
    DownloadError,
    InstalledState,
    IntegrityError,
    LifecycleOutcome,
    Release,
    ServerState,
)
from services.frida.probes import DEFAULT_PROBES, ProcessProbe
from services.frida.session import PrivilegedSession

__all__ = [
    "API_RELEASES_URL",
    "DEFAULT_BINARY_PATH",
    "DEFAULT_PROBES",
    "DEFAULT_VERSION_FILE",
    "LOCAL_RELEASES_ENV",
    "SERVER_BINARY_NAME",
    "Architecture",
    "ArtifactError",
    "ArtifactFetcher",
    "Asset",
    "DecompressionError",
    "DownloadError",
    "GitHubReleaseCatalog",
    "InstalledState",
    "IntegrityError",
    "Launcher",
    "LifecycleOutcome",
    "LocalFolderReleaseCatalog",
    "PrivilegedSession",
    "ProcessProbe",
    "Release",
    "ReleaseCatalog",
    "ServerLifecycleManager",
    "ServerState",
    "build_launcher",
    "can_use_non_root_mode",
    "detect_device_architecture",
    "sanitize_flags",
]
