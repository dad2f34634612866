"""Persistent elevated shell used as a command/response channel."""

from __future__ import annotations

import errno
import logging
import queue
import subprocess
import threading
import time
import uuid
from typing import IO, Any, Callable, Sequence

from services.frida.constants import (
    DEFAULT_ELEVATION_COMMAND,
    ELEVATED_IDENTITY_MARKER,
    ELEVATION_PROBE_TIMEOUT_SECONDS,
    SESSION_COMMAND_TIMEOUT_SECONDS,
    SESSION_SETTLE_SECONDS,
)


_LOGGER = logging.getLogger(__name__)

_EXIT_WAIT_SECONDS = 2.0
_MARKER_PREFIX = "__frida_launcher_done_"

__all__ = ["PrivilegedSession", "probe_elevation"]


def probe_elevation(
    elevation_command: Sequence[str],
    *,
    timeout: float = ELEVATION_PROBE_TIMEOUT_SECONDS,
    runner: Callable[..., Any] = subprocess.run,
) -> bool:
    """Run a throwaway ``<elevation> -c id`` and look for an elevated identity.

    Any failure to spawn or a non-zero exit counts as "not available"; this is
    the normal outcome on devices without root.
    """

    command = [*elevation_command, "-c", "id"]
    try:
        completed = runner(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        _LOGGER.info("Elevation check timed out after %.1fs", timeout)
        return False
    except OSError as exc:
        _LOGGER.info("Elevation is not available: %s", exc)
        if not _is_permission_error(exc):
            _LOGGER.debug("Unexpected failure while probing elevation", exc_info=True)
        return False

    output = completed.stdout or b""
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    available = completed.returncode == 0 and ELEVATED_IDENTITY_MARKER in output
    _LOGGER.info("Elevation check: %s", available)
    return available


def _is_permission_error(exc: OSError) -> bool:
    if isinstance(exc, PermissionError) or exc.errno in {errno.EACCES, errno.EPERM}:
        return True
    return "Permission denied" in str(exc)


def _pump_output(stream: IO[bytes], lines: "queue.Queue[str | None]") -> None:
    try:
        for raw in iter(stream.readline, b""):
            lines.put(raw.decode("utf-8", errors="replace"))
    except (OSError, ValueError):
        _LOGGER.debug("Elevated session output stream closed", exc_info=True)
    finally:
        lines.put(None)


class PrivilegedSession:
    """Own a single elevated shell process and serialise commands through it.

    The shell is spawned lazily by :meth:`acquire` (or the first :meth:`run`)
    and lives until :meth:`release`.  Each command is framed by echoing a
    unique marker afterwards; output is read until the marker shows up or the
    command timeout expires.  With ``framing=False`` the session falls back to
    waiting ``settle_seconds`` and draining whatever output has arrived.
    """

    def __init__(
        self,
        elevation_command: Sequence[str] = DEFAULT_ELEVATION_COMMAND,
        *,
        settle_seconds: float = SESSION_SETTLE_SECONDS,
        command_timeout: float = SESSION_COMMAND_TIMEOUT_SECONDS,
        probe_timeout: float = ELEVATION_PROBE_TIMEOUT_SECONDS,
        framing: bool = True,
        verify_elevation: bool = True,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        runner: Callable[..., Any] = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not elevation_command:
            raise ValueError("elevation_command must not be empty")
        self._elevation_command = tuple(elevation_command)
        self._settle_seconds = max(0.0, settle_seconds)
        self._command_timeout = command_timeout
        self._probe_timeout = probe_timeout
        self._framing = framing
        self._verify_elevation = verify_elevation
        self._popen = popen
        self._runner = runner
        self._sleep = sleep
        self._lock = threading.Lock()
        self._probe_lock = threading.Lock()
        self._process: subprocess.Popen | None = None
        self._reader: threading.Thread | None = None
        self._lines: "queue.Queue[str | None]" = queue.Queue()
        self._elevation_available: bool | None = None
        self._pending_marker: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def elevation_command(self) -> tuple[str, ...]:
        return self._elevation_command

    @property
    def is_active(self) -> bool:
        process = self._process
        return process is not None and process.poll() is None

    def acquire(self) -> bool:
        """Return ``True`` when an elevated shell is (now) available."""

        with self._lock:
            return self._acquire_locked()

    def release(self) -> None:
        """Ask the shell to exit, terminate it and forget the handle."""

        with self._lock:
            self._teardown_locked()

    def __enter__(self) -> "PrivilegedSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    # ------------------------------------------------------------------
    # Elevation probe
    # ------------------------------------------------------------------
    def is_elevation_available(self) -> bool:
        with self._probe_lock:
            if self._elevation_available is None:
                self._elevation_available = probe_elevation(
                    self._elevation_command,
                    timeout=self._probe_timeout,
                    runner=self._runner,
                )
            return self._elevation_available

    def reset_elevation_cache(self) -> None:
        with self._probe_lock:
            self._elevation_available = None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def run(self, command: str) -> str:
        """Execute ``command`` in the elevated shell and return its output.

        An empty string means the command did not execute (no session, write
        failure or a shell that went away); callers re-derive state instead of
        trusting it.
        """

        with self._lock:
            if not self._acquire_locked():
                _LOGGER.info("Skipping privileged command; elevation unavailable: %s", command)
                return ""

            if not self._discard_stale_output_locked() and not self._acquire_locked():
                return ""
            marker = f"{_MARKER_PREFIX}{uuid.uuid4().hex}__" if self._framing else None
            _LOGGER.debug("Running privileged command: %s", command)
            try:
                self._write_locked(command, marker)
            except (OSError, ValueError) as exc:
                _LOGGER.warning("Elevated session rejected command %s: %s", command, exc)
                self._teardown_locked()
                return ""

            if marker is None:
                if self._settle_seconds:
                    self._sleep(self._settle_seconds)
                output = self._drain_locked()
            else:
                output = self._read_until_marker_locked(marker, command)
            _LOGGER.debug("Privileged command output (%d chars)", len(output))
            return output

    # ------------------------------------------------------------------
    # Internals; callers hold ``self._lock``
    # ------------------------------------------------------------------
    def _acquire_locked(self) -> bool:
        process = self._process
        if process is not None:
            if process.poll() is None:
                return True
            _LOGGER.info("Elevated session exited with status %s; respawning", process.returncode)
            self._teardown_locked()

        if self._verify_elevation and not self.is_elevation_available():
            return False

        try:
            process = self._popen(
                list(self._elevation_command),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                bufsize=0,
            )
        except OSError as exc:
            if _is_permission_error(exc):
                _LOGGER.info("Failed to start elevated session: Permission denied")
            else:
                _LOGGER.exception("Failed to start elevated session")
            return False

        if process.poll() is not None:
            _LOGGER.info("Elevated session was refused (exit status %s)", process.returncode)
            return False

        lines: "queue.Queue[str | None]" = queue.Queue()
        reader = threading.Thread(
            target=_pump_output,
            args=(process.stdout, lines),
            name="frida-elevated-reader",
            daemon=True,
        )
        reader.start()
        self._process = process
        self._reader = reader
        self._lines = lines
        _LOGGER.info("Started elevated session via %s", " ".join(self._elevation_command))
        return True

    def _write_locked(self, command: str, marker: str | None) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise OSError("elevated session has no input stream")
        payload = f"{command}\n"
        if marker is not None:
            payload += f"echo {marker}\n"
        process.stdin.write(payload.encode("utf-8"))
        process.stdin.flush()

    def _read_until_marker_locked(self, marker: str, command: str) -> str:
        collected: list[str] = []
        deadline = time.monotonic() + self._command_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _LOGGER.warning(
                    "Timed out after %.1fs waiting for output of: %s",
                    self._command_timeout,
                    command,
                )
                self._pending_marker = marker
                break
            try:
                line = self._lines.get(timeout=remaining)
            except queue.Empty:
                continue
            if line is None:
                _LOGGER.warning("Elevated session ended while running: %s", command)
                self._teardown_locked()
                break
            if marker in line:
                prefix = line.split(marker, 1)[0]
                if prefix:
                    collected.append(prefix)
                break
            collected.append(line)
        return "".join(collected)

    def _drain_locked(self) -> str:
        collected: list[str] = []
        while True:
            try:
                line = self._lines.get_nowait()
            except queue.Empty:
                break
            if line is None:
                self._teardown_locked()
                break
            collected.append(line)
        return "".join(collected)

    def _discard_stale_output_locked(self) -> bool:
        """Drop output left over from earlier commands.

        After a timed-out command the shell may still be producing its output,
        so everything up to that command's marker is skipped.  Returns
        ``False`` when the session had to be torn down because the marker
        never arrived.
        """

        if not self._framing:
            return True
        pending = self._pending_marker
        deadline = time.monotonic() + self._command_timeout
        stale = 0
        while True:
            try:
                if pending is None:
                    line = self._lines.get_nowait()
                else:
                    line = self._lines.get(timeout=max(0.0, deadline - time.monotonic()))
            except queue.Empty:
                if pending is None:
                    break
                _LOGGER.warning("Elevated session is still busy with a timed-out command; restarting it")
                self._teardown_locked()
                return False
            if line is None:
                # Keep the end-of-stream signal for the next read.
                self._lines.put(None)
                break
            stale += 1
            if pending is not None and pending in line:
                pending = None
                self._pending_marker = None
        if stale:
            _LOGGER.debug("Discarded %d stale output line(s) from elevated session", stale)
        return True

    def _teardown_locked(self) -> None:
        process = self._process
        reader = self._reader
        self._process = None
        self._reader = None
        self._lines = queue.Queue()
        self._pending_marker = None
        if process is None:
            return

        stdin = process.stdin
        if stdin is not None:
            try:
                stdin.write(b"exit\n")
                stdin.flush()
            except (OSError, ValueError):
                _LOGGER.debug("Elevated session input already closed", exc_info=True)
            try:
                stdin.close()
            except OSError:
                _LOGGER.debug("Failed to close elevated session input", exc_info=True)

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=_EXIT_WAIT_SECONDS)
            except subprocess.TimeoutExpired:
                _LOGGER.warning("Elevated session ignored terminate; killing it")
                process.kill()
                try:
                    process.wait(timeout=_EXIT_WAIT_SECONDS)
                except subprocess.TimeoutExpired:
                    _LOGGER.error("Elevated session pid %s did not exit", process.pid)

        if process.stdout is not None:
            try:
                process.stdout.close()
            except OSError:
                _LOGGER.debug("Failed to close elevated session output", exc_info=True)
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=_EXIT_WAIT_SECONDS)
        _LOGGER.info("Closed elevated session")
