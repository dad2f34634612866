"""View-model exposing launcher state and background commands."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from threading import RLock
from collections.abc import Callable
from typing import Any, Sequence, TypeVar

from app.preferences import Preferences, load_preferences, save_preferences
from services.frida.builder import Launcher
from services.frida.commands import sanitize_flags
from services.frida.device import can_use_non_root_mode
from services.frida.models import (
    Architecture,
    ArtifactError,
    InstalledState,
    LifecycleOutcome,
    Release,
)
from services.frida.versioning import is_version_newer, versions_match
from shared.result import Result

from .launcher_viewmodel_state import (
    INSTALLED_VERSION_UNKNOWN,
    LauncherViewModelState,
    RootStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

StateObserver = Callable[[LauncherViewModelState], None]

_MAX_WORKERS = 2


class LauncherViewModel:
    """Expose observable launcher state and run every command off the caller's thread.

    Commands return ``Future[Result[...]]``; exceptions are converted to
    ``Result.err`` so nothing escapes to the presentation layer.
    """

    def __init__(
        self,
        launcher: Launcher,
        *,
        architecture: Architecture | str | None = None,
        preferences_path: Path | None = None,
        non_root_probe: Callable[[], bool] | None = None,
    ) -> None:
        self._launcher = launcher
        self._preferences_path = preferences_path
        self._preferences = (
            load_preferences(preferences_path) if preferences_path is not None else Preferences()
        )
        self._non_root_probe = non_root_probe or (
            lambda: can_use_non_root_mode(launcher.fetcher.work_dir)
        )
        self._executor = ThreadPoolExecutor(
            max_workers=_MAX_WORKERS, thread_name_prefix="frida-launcher"
        )
        self._state_lock = RLock()
        self._observers: list[StateObserver] = []
        self._active_operations = 0
        self._validated_versions: set[str] = set()
        self._closed = False
        self.state = LauncherViewModelState()
        self._restore_selection(architecture)
        logger.info("LauncherViewModel initialised")

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    def snapshot(self) -> LauncherViewModelState:
        with self._state_lock:
            return replace(self.state)

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register ``observer`` for state snapshots; returns an unsubscribe callable."""

        with self._state_lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._state_lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _update(self, **changes: Any) -> LauncherViewModelState:
        with self._state_lock:
            for name, value in changes.items():
                setattr(self.state, name, value)
            snapshot = replace(self.state)
            observers = list(self._observers)
        if "status_message" in changes:
            logger.info("Status: %s", snapshot.status_message)
        for observer in observers:
            try:
                observer(snapshot)
            except Exception:
                logger.exception("State observer raised")
        return snapshot

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def set_selected_version(self, version: str) -> Result[str, str]:
        cleaned = version.strip()
        if not cleaned:
            return Result.err("Version must not be empty")
        self._update(selected_version=cleaned)
        self._persist_preferences()
        return Result.ok(cleaned)

    def set_selected_architecture(self, architecture: Architecture | str) -> Result[str, str]:
        parsed = Architecture.parse(architecture)
        if parsed is Architecture.UNKNOWN:
            message = f"Unsupported architecture: {architecture}"
            logger.warning(message)
            return Result.err(message)
        self._update(selected_architecture=parsed.value)
        self._persist_preferences()
        return Result.ok(parsed.value)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def check_status(self) -> Future[Result[InstalledState, str]]:
        return self._submit("Status check", self._check_status)

    def load_releases(self) -> Future[Result[list[Release], str]]:
        return self._submit("Loading releases", self._load_releases)

    def validate_custom_version(self, version: str) -> Future[Result[str, str]]:
        return self._submit("Version validation", lambda: self._validate_custom_version(version))

    def download_and_install(self) -> Future[Result[InstalledState, str]]:
        return self._submit("Install", self._download_and_install)

    def start(self, flags: str | None = None) -> Future[Result[LifecycleOutcome, str]]:
        return self._submit("Start", lambda: self._start(flags))

    def stop(self) -> Future[Result[LifecycleOutcome, str]]:
        return self._submit(
            "Stop",
            lambda: self._transition("Stopping Frida server...", self._launcher.manager.stop),
        )

    def uninstall(self) -> Future[Result[LifecycleOutcome, str]]:
        return self._submit(
            "Uninstall",
            lambda: self._transition(
                "Uninstalling Frida server...", self._launcher.manager.uninstall
            ),
        )

    def refresh_root_status(self) -> Future[Result[RootStatus, str]]:
        return self._submit("Root check", self._refresh_root_status)

    def shutdown(self, wait: bool = True) -> None:
        """Finish pending work and release the privileged session."""

        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait)
        self._launcher.close()
        logger.info("LauncherViewModel shut down")

    # ------------------------------------------------------------------
    # Worker plumbing
    # ------------------------------------------------------------------
    def _submit(self, description: str, operation: Callable[[], Result[T, str]]) -> Future[Result[T, str]]:
        with self._state_lock:
            closed = self._closed
        if closed:
            future: Future[Result[T, str]] = Future()
            future.set_result(Result.err("Launcher has been shut down"))
            return future

        self._begin_operation()

        def task() -> Result[T, str]:
            try:
                return operation()
            except Exception as exc:
                logger.exception("%s failed unexpectedly", description)
                message = f"{description} failed: {str(exc) or exc.__class__.__name__}"
                self._update(status_message=message)
                return Result.err(message)
            finally:
                self._end_operation()

        future = self._executor.submit(task)

        def _on_done(done: Future) -> None:
            if done.cancelled():
                self._end_operation()

        future.add_done_callback(_on_done)
        return future

    def _begin_operation(self) -> None:
        with self._state_lock:
            self._active_operations += 1
            loading = self._active_operations > 0
        self._update(is_loading=loading)

    def _end_operation(self) -> None:
        with self._state_lock:
            self._active_operations = max(0, self._active_operations - 1)
            loading = self._active_operations > 0
        self._update(is_loading=loading)

    # ------------------------------------------------------------------
    # Operations (worker threads)
    # ------------------------------------------------------------------
    def _check_status(self) -> Result[InstalledState, str]:
        self._update(status_message="Checking Frida server status...")
        installed = self._launcher.manager.status()
        root_status = self._probe_root_status()
        self._apply_installed_state(installed, installed.describe(), root_status=root_status)
        return Result.ok(installed)

    def _load_releases(self) -> Result[list[Release], str]:
        self._update(status_message="Loading available Frida releases...")
        releases = self._launcher.catalog.list_releases()
        if not releases:
            message = "No Frida releases found"
            self._update(available_releases=(), update_available=False, status_message=message)
            return Result.err(message)

        with self._state_lock:
            current = self.state.selected_version
            validated = current in self._validated_versions
            installed = self._installed_version_locked()
        listed = any(versions_match(release.version, current) for release in releases)
        selected = current if current and (listed or validated) else releases[0].version

        self._update(
            available_releases=tuple(releases),
            selected_version=selected,
            update_available=_is_update_available(installed, releases),
            status_message=f"Loaded {len(releases)} Frida releases",
        )
        self._persist_preferences()
        return Result.ok(list(releases))

    def _validate_custom_version(self, version: str) -> Result[str, str]:
        cleaned = version.strip()
        if not cleaned:
            message = "Enter a version to validate"
            self._update(status_message=message)
            return Result.err(message)

        self._update(status_message=f"Validating custom version: {cleaned}")
        if not self._launcher.catalog.validate_version(cleaned):
            message = f"Version {cleaned} not found on GitHub"
            self._update(status_message=message)
            return Result.err(message)

        with self._state_lock:
            self._validated_versions.add(cleaned)
        self._update(
            selected_version=cleaned,
            status_message=f"Version {cleaned} validated successfully",
        )
        self._persist_preferences()
        return Result.ok(cleaned)

    def _download_and_install(self) -> Result[InstalledState, str]:
        with self._state_lock:
            version = self.state.selected_version
            architecture = Architecture.parse(self.state.selected_architecture)
        if not version or architecture is Architecture.UNKNOWN:
            return self._fail("No version or architecture selected")

        self._update(
            status_message=f"Fetching Frida server {version} for {architecture.value}..."
        )
        asset = self._launcher.catalog.resolve_asset(version, architecture)
        if asset is None:
            return self._fail(
                f"Failed to get Frida server URL for {version} ({architecture.value})"
            )

        self._update(status_message=f"Downloading Frida server {version}...")
        fetcher = self._launcher.fetcher
        try:
            local_binary = fetcher.fetch(asset.download_url, expected_sha256=asset.sha256)
        except ArtifactError as exc:
            logger.warning("Download of %s failed: %s", asset.name, exc)
            return self._fail(f"Error: {exc}")

        try:
            self._update(status_message=f"Installing Frida server {version}...")
            outcome = self._launcher.manager.install(local_binary, version)
        finally:
            fetcher.discard(local_binary)

        self._apply_installed_state(outcome.state, outcome.message)
        if outcome.success:
            return Result.ok(outcome.state)
        return Result.err(outcome.message)

    def _start(self, flags: str | None) -> Result[LifecycleOutcome, str]:
        if flags is None:
            return self._transition("Starting Frida server...", self._launcher.manager.start)

        sanitized = sanitize_flags(flags)
        self._update(last_custom_flags=sanitized)
        self._persist_preferences()
        return self._transition(
            f"Starting Frida server with custom flags: {sanitized}",
            lambda: self._launcher.manager.start(sanitized),
        )

    def _transition(
        self, progress: str, action: Callable[[], LifecycleOutcome]
    ) -> Result[LifecycleOutcome, str]:
        self._update(status_message=progress)
        outcome = action()
        self._apply_installed_state(outcome.state, outcome.message)
        if outcome.success:
            return Result.ok(outcome)
        return Result.err(outcome.message)

    def _refresh_root_status(self) -> Result[RootStatus, str]:
        self._update(status_message="Checking root access...")
        self._launcher.session.reset_elevation_cache()
        root_status = self._probe_root_status()
        messages = {
            RootStatus.AVAILABLE: "Root access is available",
            RootStatus.NON_ROOT_MODE: "Root access is not available; non-root mode only",
            RootStatus.NOT_AVAILABLE: "Root access is not available",
        }
        self._update(root_status=root_status, status_message=messages[root_status])
        return Result.ok(root_status)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _probe_root_status(self) -> RootStatus:
        if self._launcher.session.is_elevation_available():
            return RootStatus.AVAILABLE
        if self._non_root_probe():
            return RootStatus.NON_ROOT_MODE
        return RootStatus.NOT_AVAILABLE

    def _apply_installed_state(
        self,
        installed: InstalledState,
        message: str,
        *,
        root_status: RootStatus | None = None,
    ) -> None:
        version = installed.installed_version if installed.is_installed else None
        with self._state_lock:
            releases = self.state.available_releases
        changes: dict[str, Any] = {
            "is_installed": installed.is_installed,
            "is_running": installed.is_running,
            "installed_version": version or INSTALLED_VERSION_UNKNOWN,
            "update_available": _is_update_available(version, releases),
            "status_message": message,
        }
        if root_status is not None:
            changes["root_status"] = root_status
        self._update(**changes)

    def _installed_version_locked(self) -> str | None:
        if not self.state.is_installed:
            return None
        version = self.state.installed_version
        return None if version == INSTALLED_VERSION_UNKNOWN else version

    def _fail(self, message: str) -> Result[Any, str]:
        self._update(status_message=message)
        return Result.err(message)

    def _restore_selection(self, architecture: Architecture | str | None) -> None:
        preferences = self._preferences
        selected_architecture = Architecture.parse(architecture)
        if selected_architecture is Architecture.UNKNOWN:
            selected_architecture = Architecture.parse(preferences.selected_architecture)
        if selected_architecture is Architecture.UNKNOWN:
            selected_architecture = self._launcher.detect_architecture()
        self.state.selected_architecture = selected_architecture.value
        self.state.selected_version = preferences.selected_version or ""
        self.state.last_custom_flags = preferences.last_custom_flags or ""

    def _persist_preferences(self) -> None:
        if self._preferences_path is None:
            return
        with self._state_lock:
            self._preferences.selected_version = self.state.selected_version or None
            self._preferences.selected_architecture = self.state.selected_architecture or None
            self._preferences.last_custom_flags = self.state.last_custom_flags or None
            preferences = replace(self._preferences)
        save_preferences(preferences, self._preferences_path)


def _is_update_available(installed_version: str | None, releases: Sequence[Release]) -> bool:
    if not installed_version or not releases:
        return False
    if installed_version.strip().lower() == INSTALLED_VERSION_UNKNOWN.lower():
        return False
    return is_version_newer(installed_version, releases[0].version)


__all__ = ["LauncherViewModel", "StateObserver"]
