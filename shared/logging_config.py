"""Central logging configuration for the launcher.

Diagnostics from the elevated session, catalog and fetcher are written to a
single log file so a failed install can be investigated afterwards.  Repeated
calls never register duplicate handlers.

``FRIDA_LAUNCHER_LOG_FILE``
    Absolute path of the log file to create.

``FRIDA_LAUNCHER_LOG_DIR``
    Directory that receives the default log file name.  Ignored when
    ``FRIDA_LAUNCHER_LOG_FILE`` is set.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from enum import Enum
from pathlib import Path
from typing import Iterable

_LOG_FILE_ENV = "FRIDA_LAUNCHER_LOG_FILE"
_LOG_DIR_ENV = "FRIDA_LAUNCHER_LOG_DIR"
_DEFAULT_DIRNAME = ".frida_launcher"
_DEFAULT_LOGNAME = "launcher.log"
_HANDLER_TAG = "_frida_launcher_logging_handler"
_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_CONFIGURED = False
_LOG_PATH: Path | None = None
_FILE_HANDLER: logging.FileHandler | None = None
_CONSOLE_HANDLER: logging.Handler | None = None

_GENERIC_ACCOUNTS = frozenset({"root", "shell", "system"})

USER_PLACEHOLDER = "<user>"
USER_HOME_PLACEHOLDER = "<user_home>"


class LogVerbosity(str, Enum):
    """Verbosity levels supported by the launcher log file."""

    DISABLED = "disabled"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    VERBOSE = "verbose"


_VERBOSITY_LEVELS: dict[LogVerbosity, int] = {
    LogVerbosity.DISABLED: logging.CRITICAL + 1,
    LogVerbosity.ERROR: logging.ERROR,
    LogVerbosity.WARNING: logging.WARNING,
    LogVerbosity.INFO: logging.INFO,
    LogVerbosity.VERBOSE: logging.DEBUG,
}

_DEFAULT_VERBOSITY = LogVerbosity.INFO
_CURRENT_VERBOSITY = _DEFAULT_VERBOSITY


def _home_candidates() -> set[str]:
    candidates = {str(Path.home())}
    home_env = os.environ.get("HOME")
    if home_env:
        candidates.add(os.path.expanduser(home_env))
    return {
        os.path.normpath(candidate)
        for candidate in candidates
        if candidate and os.path.normpath(candidate) not in {os.sep, "."}
    }


def _user_candidates() -> set[str]:
    candidates = {Path.home().name}
    for env_var in ("USER", "LOGNAME", "USERNAME"):
        value = os.environ.get(env_var)
        if value:
            candidates.add(value)
    # Account names such as ``root`` also appear in ordinary log text.
    return {
        candidate.strip()
        for candidate in candidates
        if len(candidate.strip()) > 2 and candidate.strip() not in _GENERIC_ACCOUNTS
    }


def _build_redaction_patterns() -> tuple[tuple[re.Pattern[str], str], ...]:
    patterns: list[tuple[re.Pattern[str], str]] = []
    for home in sorted(_home_candidates(), key=len, reverse=True):
        patterns.append((re.compile(re.escape(home)), USER_HOME_PLACEHOLDER))
    for user in sorted(_user_candidates(), key=len, reverse=True):
        patterns.append((re.compile(rf"(?<!\w){re.escape(user)}(?!\w)"), USER_PLACEHOLDER))
    return tuple(patterns)


_REDACTION_PATTERNS = _build_redaction_patterns()


def redact(message: str) -> str:
    """Replace the local home directory and user name in ``message``."""

    if not message:
        return message
    for pattern, replacement in _REDACTION_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class _RedactingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


def ensure_app_logging() -> Path:
    """Configure the root logger for the launcher and return the log file path.

    The first call installs a file handler (level driven by
    :func:`set_file_log_verbosity`) and, when stderr is a terminal, an INFO
    console handler.  Later calls are no-ops.
    """

    global _CONFIGURED, _LOG_PATH, _FILE_HANDLER, _CONSOLE_HANDLER

    if _CONFIGURED and _LOG_PATH is not None:
        return _LOG_PATH

    log_path = _resolve_log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    formatter = _RedactingFormatter(_FORMAT, datefmt=_DATE_FORMAT)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(_VERBOSITY_LEVELS[_CURRENT_VERBOSITY])
    file_handler.setFormatter(formatter)
    setattr(file_handler, _HANDLER_TAG, True)
    root.addHandler(file_handler)
    _FILE_HANDLER = file_handler

    if _should_log_to_stderr(root.handlers):
        console = logging.StreamHandler()
        console.setLevel(logging.INFO)
        console.setFormatter(formatter)
        setattr(console, _HANDLER_TAG, True)
        root.addHandler(console)
        _CONSOLE_HANDLER = console

    _CONFIGURED = True
    _LOG_PATH = log_path
    logging.getLogger(__name__).info(
        "Writing launcher logs to %s (verbosity=%s)", log_path, _CURRENT_VERBOSITY.value
    )
    return log_path


def set_file_log_verbosity(verbosity: LogVerbosity | str) -> None:
    """Adjust the minimum severity recorded in the log file."""

    global _CURRENT_VERBOSITY

    if isinstance(verbosity, str):
        try:
            verbosity = LogVerbosity(verbosity.strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unsupported log verbosity: {verbosity}") from exc

    ensure_app_logging()
    _CURRENT_VERBOSITY = verbosity
    if _FILE_HANDLER is not None:
        _FILE_HANDLER.setLevel(_VERBOSITY_LEVELS[verbosity])
    logging.getLogger(__name__).info("File log verbosity set to %s", verbosity.value)


def get_file_log_verbosity() -> LogVerbosity:
    return _CURRENT_VERBOSITY


def set_console_level(level: int) -> None:
    """Set the console handler level, creating the handler if needed."""

    global _CONSOLE_HANDLER

    ensure_app_logging()
    if _CONSOLE_HANDLER is None:
        console = logging.StreamHandler()
        console.setFormatter(_RedactingFormatter(_FORMAT, datefmt=_DATE_FORMAT))
        setattr(console, _HANDLER_TAG, True)
        logging.getLogger().addHandler(console)
        _CONSOLE_HANDLER = console
    _CONSOLE_HANDLER.setLevel(level)


def _resolve_log_path() -> Path:
    env_file = os.environ.get(_LOG_FILE_ENV)
    if env_file:
        return Path(env_file).expanduser()

    env_dir = os.environ.get(_LOG_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser() / _DEFAULT_LOGNAME

    return Path.home() / _DEFAULT_DIRNAME / "logs" / _DEFAULT_LOGNAME


def _should_log_to_stderr(handlers: Iterable[logging.Handler]) -> bool:
    stderr = getattr(sys, "stderr", None)
    is_tty = getattr(stderr, "isatty", None)
    if not callable(is_tty):
        return False
    try:
        if not is_tty():
            return False
    except (OSError, ValueError):
        return False
    return not any(
        isinstance(handler, logging.StreamHandler) and handler.stream is stderr
        for handler in handlers
    )


def _reset_for_tests() -> None:
    """Remove handlers installed by :func:`ensure_app_logging`."""

    global _CONFIGURED, _LOG_PATH, _FILE_HANDLER, _CONSOLE_HANDLER, _CURRENT_VERBOSITY

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

    _CONFIGURED = False
    _LOG_PATH = None
    _FILE_HANDLER = None
    _CONSOLE_HANDLER = None
    _CURRENT_VERBOSITY = _DEFAULT_VERBOSITY


__all__ = [
    "LogVerbosity",
    "ensure_app_logging",
    "get_file_log_verbosity",
    "redact",
    "set_console_level",
    "set_file_log_verbosity",
]
