"""Command line entry point driving :class:`LauncherViewModel`."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Sequence, TextIO

from app.config import AppConfig, get_app_config, load_app_config
from app.preferences import default_preferences_path
from app.version import get_app_version
from services.frida.builder import Launcher, build_launcher
from services.frida.versioning import versions_match
from shared.logging_config import ensure_app_logging, set_console_level
from shared.result import Result
from viewmodels.launcher_viewmodel import LauncherViewModel
from viewmodels.launcher_viewmodel_state import LauncherViewModelState

logger = logging.getLogger(__name__)

LauncherFactory = Callable[[AppConfig], Launcher]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="frida-launcher",
        description="Install and manage frida-server on a rooted device.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_app_version()}")
    parser.add_argument("--config", type=Path, help="Path to a JSON configuration file")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug output on the console"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show whether frida-server is installed and running")
    subparsers.add_parser("releases", help="List available frida-server releases")

    install = subparsers.add_parser("install", help="Download and install frida-server")
    install.add_argument(
        "--server-version",
        dest="server_version",
        help="Release to install (defaults to the newest)",
    )
    install.add_argument("--arch", help="Target architecture (arm, arm64, x86, x86_64)")

    start = subparsers.add_parser("start", help="Start the installed frida-server")
    start.add_argument("--flags", help="Extra command line flags for frida-server")

    subparsers.add_parser("stop", help="Stop a running frida-server")
    subparsers.add_parser("uninstall", help="Remove frida-server from the device")
    subparsers.add_parser("root-check", help="Check whether root access is available")
    return parser


def main(
    argv: Sequence[str] | None = None,
    *,
    launcher_factory: LauncherFactory = build_launcher,
    stdout: TextIO | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    out = stdout or sys.stdout

    ensure_app_logging()
    if args.verbose:
        set_console_level(logging.DEBUG)

    config = load_app_config(args.config) if args.config else get_app_config()
    viewmodel = LauncherViewModel(
        launcher_factory(config),
        preferences_path=default_preferences_path(),
    )
    unsubscribe = viewmodel.subscribe(_StatusPrinter(out))
    try:
        result = _dispatch(args, viewmodel, out)
    finally:
        unsubscribe()
        viewmodel.shutdown()

    if result.is_err():
        logger.info("Command %s failed: %s", args.command, result.error)
        return 1
    return 0


class _StatusPrinter:
    """Echo each new status message once."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._last = ""

    def __call__(self, state: LauncherViewModelState) -> None:
        if state.status_message and state.status_message != self._last:
            self._last = state.status_message
            print(state.status_message, file=self._stream)


def _dispatch(args: argparse.Namespace, viewmodel: LauncherViewModel, out: TextIO) -> Result:
    command = args.command
    if command == "status":
        return viewmodel.check_status().result()
    if command == "releases":
        return _list_releases(viewmodel, out)
    if command == "install":
        return _install(viewmodel, args.server_version, args.arch)
    if command == "start":
        return viewmodel.start(args.flags).result()
    if command == "stop":
        return viewmodel.stop().result()
    if command == "uninstall":
        return viewmodel.uninstall().result()
    if command == "root-check":
        return viewmodel.refresh_root_status().result()
    raise ValueError(f"Unknown command: {command}")


def _list_releases(viewmodel: LauncherViewModel, out: TextIO) -> Result:
    result = viewmodel.load_releases().result()
    if result.is_err():
        return result
    for release in result.unwrap():
        published = release.published_date.isoformat() if release.published_date else "-"
        architectures = ", ".join(arch.value for arch in release.architectures)
        print(f"{release.version}\t{published}\t{architectures}", file=out)
    return result


def _install(viewmodel: LauncherViewModel, version: str | None, architecture: str | None) -> Result:
    if architecture:
        selected = viewmodel.set_selected_architecture(architecture)
        if selected.is_err():
            return selected

    releases = viewmodel.load_releases().result()
    if version:
        listed = releases.is_ok() and any(
            versions_match(release.version, version) for release in releases.unwrap()
        )
        if listed:
            viewmodel.set_selected_version(version)
        else:
            validated = viewmodel.validate_custom_version(version).result()
            if validated.is_err():
                return validated
    elif releases.is_err():
        return releases

    return viewmodel.download_and_install().result()


__all__ = ["build_parser", "main"]


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
