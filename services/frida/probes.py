"""Process-table probes used to decide whether the server is running.

Devices disagree on which process-listing command exists, so the probes are
tried in order and the first positive answer wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from services.frida.constants import SERVER_BINARY_NAME


_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessProbe:
    """A shell command and a pure predicate over its output."""

    name: str
    command: str
    matches: Callable[[str], bool]


def listing_contains(process_name: str) -> Callable[[str], bool]:
    """Match ``ps``-style output containing ``process_name`` outside the grep itself."""

    def _matches(output: str) -> bool:
        for line in output.splitlines():
            if process_name not in line:
                continue
            if f"grep {process_name}" in line:
                continue
            return True
        return False

    return _matches


def pid_list_present(output: str) -> bool:
    """Match ``pidof`` output: one or more numeric process ids."""

    tokens = output.split()
    return bool(tokens) and all(token.isdigit() for token in tokens)


def default_probes(process_name: str = SERVER_BINARY_NAME) -> tuple[ProcessProbe, ...]:
    contains = listing_contains(process_name)
    return (
        ProcessProbe("ps -A", f"ps -A | grep {process_name}", contains),
        ProcessProbe("ps", f"ps | grep {process_name}", contains),
        ProcessProbe("pidof", f"pidof {process_name}", pid_list_present),
    )


DEFAULT_PROBES = default_probes()


def evaluate_probes(run: Callable[[str], str], probes: Iterable[ProcessProbe]) -> bool:
    """Run ``probes`` in order through ``run`` and stop at the first match."""

    for probe in probes:
        output = run(probe.command)
        if probe.matches(output):
            _LOGGER.debug("Process probe %s reported a match", probe.name)
            return True
        _LOGGER.debug("Process probe %s found nothing", probe.name)
    return False


__all__ = [
    "DEFAULT_PROBES",
    "ProcessProbe",
    "default_probes",
    "evaluate_probes",
    "listing_contains",
    "pid_list_present",
]
