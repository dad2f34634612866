"""Shell command construction for the elevated session.

The elevated shell only accepts command lines, so every argument is quoted
with :func:`shlex.quote` before it is joined.  Caller-supplied start flags are
additionally stripped of shell metacharacters.
"""

from __future__ import annotations

import logging
import shlex
from typing import Sequence

from services.frida.constants import FLAG_DENYLIST


_LOGGER = logging.getLogger(__name__)


def sanitize_flags(flags: str | None) -> str:
    """Remove denylisted shell metacharacters from ``flags`` and trim the result."""

    if not flags:
        return ""
    cleaned = "".join(character for character in flags if character not in FLAG_DENYLIST)
    cleaned = cleaned.strip()
    if cleaned != flags.strip():
        _LOGGER.warning("Removed shell metacharacters from start flags")
    return cleaned


def split_flags(flags: str | None) -> list[str]:
    """Sanitise ``flags`` and split them into an argument vector."""

    cleaned = sanitize_flags(flags)
    if not cleaned:
        return []
    try:
        return shlex.split(cleaned)
    except ValueError:
        _LOGGER.warning("Start flags have unbalanced quotes; splitting on whitespace")
        return cleaned.replace("'", "").replace('"', "").split()


def join_command(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(argument)) for argument in argv)


def list_path(path: str) -> str:
    return join_command(("ls", "-la", path))


def read_file(path: str) -> str:
    return join_command(("cat", path))


def copy_file(source: str, destination: str) -> str:
    return join_command(("cp", source, destination))


def make_executable(path: str, mode: str = "755") -> str:
    return join_command(("chmod", mode, path))


def write_text(path: str, text: str) -> str:
    return f"{join_command(('echo', text))} > {shlex.quote(path)}"


def remove_file(path: str) -> str:
    return join_command(("rm", "-f", path))


def launch_detached(binary: str, arguments: Sequence[str] = ()) -> str:
    """Start ``binary`` so it survives the invoking shell exiting."""

    return f"{join_command(('nohup', binary, *arguments))} > /dev/null 2>&1 &"


def run_with_captured_output(binary: str, arguments: Sequence[str] = (), *, seconds: int = 2) -> str:
    """Run ``binary`` briefly in the foreground for diagnostic output."""

    argv = ("timeout", str(seconds), binary, *arguments)
    return f"{join_command(argv)} 2>&1 | head -n 20"


def kill_by_name(process_name: str) -> str:
    return join_command(("pkill", "-f", process_name))


__all__ = [
    "copy_file",
    "join_command",
    "kill_by_name",
    "launch_detached",
    "list_path",
    "make_executable",
    "read_file",
    "remove_file",
    "run_with_captured_output",
    "sanitize_flags",
    "split_flags",
    "write_text",
]
