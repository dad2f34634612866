"""Resolve the launcher's own version for ``--version`` and HTTP headers."""

from __future__ import annotations

from functools import lru_cache
from importlib import metadata
import os
from pathlib import Path
import subprocess

DISTRIBUTION_NAME = "frida-launcher"
VERSION_FILE = Path(__file__).with_name("VERSION")

_FALLBACK_VERSION = "0.0.0-dev"
_VERSION_ENV = "FRIDA_LAUNCHER_VERSION"


def _strip_tag_prefix(raw_version: str) -> str:
    version = raw_version.strip()
    if version[:1] in {"v", "V"}:
        version = version[1:]
    return version


def _from_env() -> str | None:
    return _strip_tag_prefix(os.environ.get(_VERSION_ENV, "")) or None


def _from_version_file(path: Path | None = None) -> str | None:
    # ``app`` is a namespace package, so the file is located next to this
    # module instead of through ``importlib.resources``.
    try:
        text = (path or VERSION_FILE).read_text(encoding="utf-8")
    except OSError:
        return None
    return _strip_tag_prefix(text) or None


def _from_distribution() -> str | None:
    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return None


def _from_git() -> str | None:
    try:
        output = subprocess.check_output(
            ["git", "describe", "--tags", "--dirty"],
            cwd=Path(__file__).parent,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
        return None
    return _strip_tag_prefix(output) or None


_RESOLVERS = (_from_env, _from_version_file, _from_distribution, _from_git)


@lru_cache(maxsize=1)
def get_app_version() -> str:
    """Return the launcher version.

    The first source that yields a value wins: ``FRIDA_LAUNCHER_VERSION``,
    the bundled ``VERSION`` file, installed distribution metadata, then
    ``git describe`` for source checkouts.
    """

    for resolver in _RESOLVERS:
        version = resolver()
        if version:
            return version
    return _FALLBACK_VERSION


def user_agent() -> str:
    return f"{DISTRIBUTION_NAME}/{get_app_version()}"


__all__ = ["DISTRIBUTION_NAME", "VERSION_FILE", "get_app_version", "user_agent"]
