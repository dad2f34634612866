"""Device inspection helpers: CPU architecture and unprivileged execution."""

from __future__ import annotations

import logging
import platform
import stat
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Callable, Sequence

from services.frida.models import Architecture


_LOGGER = logging.getLogger(__name__)

_ABI_PROPERTY = "ro.product.cpu.abi"
_PROBE_TIMEOUT_SECONDS = 5.0
_PROBE_SCRIPT = "#!/bin/sh\necho 'test'\n"

__all__ = ["can_use_non_root_mode", "detect_device_architecture"]


def detect_device_architecture(
    *,
    command_prefix: Sequence[str] = (),
    runner: Callable[..., Any] = subprocess.run,
    machine: Callable[[], str] = platform.machine,
) -> Architecture:
    """Return the device's primary architecture, defaulting to ``arm``.

    The Android ABI property is preferred; ``command_prefix`` (``adb shell``
    for example) lets it be queried on a remote device.  When the property
    cannot be read the local machine type is used instead.
    """

    abi = _read_abi_property(command_prefix, runner)
    if abi:
        architecture = Architecture.parse(abi)
        if architecture is not Architecture.UNKNOWN:
            _LOGGER.info("Device ABI %s maps to %s", abi, architecture.value)
            return architecture
        _LOGGER.info("Unrecognised device ABI %s", abi)

    if not command_prefix:
        architecture = Architecture.parse(machine())
        if architecture is not Architecture.UNKNOWN:
            _LOGGER.info("Using local machine architecture %s", architecture.value)
            return architecture

    _LOGGER.info("Could not determine device architecture; defaulting to arm")
    return Architecture.ARM


def _read_abi_property(command_prefix: Sequence[str], runner: Callable[..., Any]) -> str:
    command = [*command_prefix, "getprop", _ABI_PROPERTY]
    try:
        completed = runner(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            timeout=_PROBE_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        _LOGGER.debug("getprop unavailable: %s", exc)
        return ""
    if completed.returncode != 0:
        return ""
    output = completed.stdout or b""
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    return output.strip().splitlines()[0].strip() if output.strip() else ""


def can_use_non_root_mode(
    work_dir: Path | None = None,
    *,
    runner: Callable[..., Any] = subprocess.run,
) -> bool:
    """Check whether an executable written by this user can actually be run."""

    directory = Path(work_dir) if work_dir is not None else Path(tempfile.gettempdir())
    script = directory / "frida-launcher-probe.sh"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        script.write_text(_PROBE_SCRIPT, encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR)
        completed = runner(
            [str(script)],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            timeout=_PROBE_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        _LOGGER.info("Non-root execution check failed: %s", exc)
        return False
    finally:
        try:
            script.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            _LOGGER.debug("Unable to remove %s", script, exc_info=True)

    output = completed.stdout or b""
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    available = completed.returncode == 0 and "test" in output
    _LOGGER.info("Non-root execution check: %s", available)
    return available
