"""Install, start, stop and inspect the server through the elevated session."""

from __future__ import annotations

import logging
import posixpath
import time
from pathlib import Path
from typing import Callable, Protocol, Sequence

from services.frida import commands
from services.frida.constants import (
    DEFAULT_BINARY_PATH,
    DEFAULT_VERSION_FILE,
    MISSING_FILE_MARKER,
    START_SETTLE_SECONDS,
    STOP_SETTLE_SECONDS,
)
from services.frida.models import (
    NOT_INSTALLED,
    UNKNOWN_VERSION,
    InstalledState,
    LifecycleOutcome,
)
from services.frida.probes import DEFAULT_PROBES, ProcessProbe, evaluate_probes


_LOGGER = logging.getLogger(__name__)

_ROOT_UNAVAILABLE_MESSAGE = "Root access is not available"
_DIAGNOSTIC_LIMIT = 400


class CommandSession(Protocol):
    """The part of :class:`PrivilegedSession` the lifecycle manager relies on."""

    def acquire(self) -> bool:
        ...

    def run(self, command: str) -> str:
        ...


class ServerLifecycleManager:
    """Drive the server binary through install/start/stop/uninstall.

    Nothing is cached between calls: every operation re-derives the
    installed state from the device because the session gives no reliable
    success signal for individual commands.
    """

    def __init__(
        self,
        session: CommandSession,
        *,
        binary_path: str = DEFAULT_BINARY_PATH,
        version_file: str = DEFAULT_VERSION_FILE,
        probes: Sequence[ProcessProbe] = DEFAULT_PROBES,
        start_settle: float = START_SETTLE_SECONDS,
        stop_settle: float = STOP_SETTLE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session
        self._binary_path = binary_path
        self._version_file = version_file
        self._process_name = posixpath.basename(binary_path) or binary_path
        self._probes = tuple(probes)
        self._start_settle = max(0.0, start_settle)
        self._stop_settle = max(0.0, stop_settle)
        self._sleep = sleep

    @property
    def binary_path(self) -> str:
        return self._binary_path

    @property
    def version_file(self) -> str:
        return self._version_file

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def status(self) -> InstalledState:
        installed = self._is_present(self._binary_path)
        version = None
        if installed:
            version = self._read_installed_version() or UNKNOWN_VERSION
        running = self.is_running()
        state = InstalledState(
            is_installed=installed, installed_version=version, is_running=running
        )
        _LOGGER.info("Server status: %s", state.state.value)
        return state

    def is_running(self) -> bool:
        return evaluate_probes(self._session.run, self._probes)

    def _is_present(self, path: str) -> bool:
        listing = self._session.run(commands.list_path(path))
        return bool(listing) and path in listing and MISSING_FILE_MARKER not in listing

    def _read_installed_version(self) -> str | None:
        if not self._is_present(self._version_file):
            return None
        content = self._session.run(commands.read_file(self._version_file)).strip()
        return content or None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def install(self, local_binary: Path | str, version: str) -> LifecycleOutcome:
        if not self._session.acquire():
            _LOGGER.info("Install skipped; elevation unavailable")
            return LifecycleOutcome(
                False, f"{_ROOT_UNAVAILABLE_MESSAGE}; cannot install frida-server", NOT_INSTALLED
            )

        label = version.strip() or UNKNOWN_VERSION
        _LOGGER.info("Installing frida-server %s to %s", label, self._binary_path)
        self._session.run(commands.copy_file(str(local_binary), self._binary_path))
        self._session.run(commands.make_executable(self._binary_path))
        self._session.run(commands.write_text(self._version_file, label))

        state = self.status()
        if state.is_installed:
            _LOGGER.info("frida-server %s installed to %s", label, self._binary_path)
            return LifecycleOutcome(True, f"Frida server {label} installed successfully", state)
        _LOGGER.error("Binary missing at %s after install", self._binary_path)
        return LifecycleOutcome(False, "Failed to install frida-server", state)

    def start(self, flags: str | None = "") -> LifecycleOutcome:
        if not self._session.acquire():
            return LifecycleOutcome(
                False, f"{_ROOT_UNAVAILABLE_MESSAGE}; cannot start frida-server", NOT_INSTALLED
            )

        state = self.status()
        if state.is_running:
            _LOGGER.info("frida-server already running; nothing to start")
            return LifecycleOutcome(True, "Frida server is already running", state)
        if not state.is_installed:
            return LifecycleOutcome(False, "Frida server is not installed", state)

        arguments = commands.split_flags(flags)
        if arguments:
            _LOGGER.info("Starting frida-server with flags: %s", " ".join(arguments))
        else:
            _LOGGER.info("Starting frida-server")
        self._session.run(commands.launch_detached(self._binary_path, arguments))
        if self._start_settle:
            self._sleep(self._start_settle)

        state = self.status()
        if state.is_running:
            message = "Frida server started successfully"
            if arguments:
                message += f" with flags: {' '.join(arguments)}"
            return LifecycleOutcome(True, message, state)

        diagnostic = self._diagnose(arguments)
        message = "Failed to start frida-server"
        if diagnostic:
            message += f": {diagnostic}"
        return LifecycleOutcome(False, message, state)

    def stop(self) -> LifecycleOutcome:
        state = self.status()
        if not state.is_running:
            return LifecycleOutcome(True, "Frida server is not running", state)

        _LOGGER.info("Stopping frida-server")
        self._session.run(commands.kill_by_name(self._process_name))
        if self._stop_settle:
            self._sleep(self._stop_settle)

        state = self.status()
        if state.is_running:
            _LOGGER.warning("frida-server still running after pkill")
            return LifecycleOutcome(False, "Failed to stop frida-server", state)
        return LifecycleOutcome(True, "Frida server stopped successfully", state)

    def uninstall(self) -> LifecycleOutcome:
        if not self._session.acquire():
            return LifecycleOutcome(
                False, f"{_ROOT_UNAVAILABLE_MESSAGE}; cannot uninstall frida-server", NOT_INSTALLED
            )

        state = self.status()
        if state.is_running:
            stopped = self.stop()
            if not stopped.success:
                return LifecycleOutcome(False, "Failed to stop frida-server before uninstalling", stopped.state)
        elif not state.is_installed:
            return LifecycleOutcome(True, "Frida server is not installed", state)

        _LOGGER.info("Removing %s", self._binary_path)
        self._session.run(commands.remove_file(self._binary_path))
        self._session.run(commands.remove_file(self._version_file))

        state = self.status()
        if state.is_installed:
            _LOGGER.error("Binary still present at %s after removal", self._binary_path)
            return LifecycleOutcome(False, "Failed to uninstall frida-server", state)
        return LifecycleOutcome(True, "Frida server uninstalled successfully", state)

    def _diagnose(self, arguments: Sequence[str]) -> str:
        listing = self._session.run(commands.list_path(self._binary_path)).strip()
        output = self._session.run(
            commands.run_with_captured_output(self._binary_path, arguments)
        ).strip()
        _LOGGER.warning("frida-server failed to start. Binary: %s Output: %s", listing, output)
        detail = output or listing
        if len(detail) > _DIAGNOSTIC_LIMIT:
            detail = detail[:_DIAGNOSTIC_LIMIT] + "..."
        return detail


__all__ = ["CommandSession", "ServerLifecycleManager"]
