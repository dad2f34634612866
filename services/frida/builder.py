"""Helpers for constructing the provisioning pipeline from configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from app.config import AppConfig, get_app_config
from services.frida.catalog import GitHubReleaseCatalog, LocalFolderReleaseCatalog, ReleaseCatalog
from services.frida.constants import LOCAL_RELEASES_ENV
from services.frida.device import detect_device_architecture
from services.frida.fetcher import ArtifactFetcher
from services.frida.lifecycle import ServerLifecycleManager
from services.frida.models import Architecture
from services.frida.session import PrivilegedSession


_LOGGER = logging.getLogger(__name__)


@dataclass
class Launcher:
    """The wired pipeline; owns the privileged session until :meth:`close`."""

    session: PrivilegedSession
    catalog: ReleaseCatalog
    fetcher: ArtifactFetcher
    manager: ServerLifecycleManager
    device_command_prefix: tuple[str, ...] = ()

    def detect_architecture(self) -> Architecture:
        return detect_device_architecture(command_prefix=self.device_command_prefix)

    def close(self) -> None:
        self.session.release()


def _build_catalog_from_env(config: AppConfig) -> ReleaseCatalog:
    local_dir = os.environ.get(LOCAL_RELEASES_ENV)
    if local_dir:
        folder = Path(local_dir).expanduser()
        if folder.is_dir():
            _LOGGER.info("Using local release source at %s", folder)
            return LocalFolderReleaseCatalog(folder)
        _LOGGER.warning("Configured local release directory does not exist: %s", folder)
    return GitHubReleaseCatalog(
        config.catalog.api_url, timeout=config.catalog.timeout_seconds
    )


def _device_command_prefix(elevation_command: tuple[str, ...]) -> tuple[str, ...]:
    # ``adb shell su`` reaches the device through ``adb shell``.
    return tuple(elevation_command[:-1])


def build_launcher(config: AppConfig | None = None) -> Launcher:
    """Construct the session, catalog, fetcher and lifecycle manager."""

    config = config or get_app_config()
    session = PrivilegedSession(
        config.session.elevation_command,
        settle_seconds=config.session.settle_seconds,
        command_timeout=config.session.command_timeout_seconds,
        probe_timeout=config.session.probe_timeout_seconds,
    )
    fetcher = ArtifactFetcher(
        config.download.work_dir,
        timeout=config.download.timeout_seconds,
        chunk_size=config.download.chunk_size,
    )
    manager = ServerLifecycleManager(
        session,
        binary_path=config.server.binary_path,
        version_file=config.server.version_file,
        start_settle=config.server.start_settle_seconds,
        stop_settle=config.server.stop_settle_seconds,
    )
    _LOGGER.debug(
        "Built launcher for %s using %s",
        config.server.binary_path,
        " ".join(config.session.elevation_command),
    )
    return Launcher(
        session=session,
        catalog=_build_catalog_from_env(config),
        fetcher=fetcher,
        manager=manager,
        device_command_prefix=_device_command_prefix(config.session.elevation_command),
    )


__all__ = ["Launcher", "build_launcher"]
