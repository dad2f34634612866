"""State container and constants for the launcher view-model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

from services.frida.models import Architecture, Release


INSTALLED_VERSION_UNKNOWN = "Unknown"
READY_MESSAGE = "Ready."


class RootStatus(str, Enum):
    """How privileged commands can be executed on the device."""

    UNKNOWN = "unknown"
    AVAILABLE = "available"
    NOT_AVAILABLE = "not_available"
    NON_ROOT_MODE = "non_root_mode"


@dataclass(slots=True)
class LauncherViewModelState:
    status_message: str = READY_MESSAGE
    is_loading: bool = False
    is_installed: bool = False
    is_running: bool = False
    installed_version: str = INSTALLED_VERSION_UNKNOWN
    available_releases: Tuple[Release, ...] = field(default_factory=tuple)
    selected_version: str = ""
    selected_architecture: str = Architecture.ARM.value
    last_custom_flags: str = ""
    root_status: RootStatus = RootStatus.UNKNOWN
    update_available: bool = False


__all__ = [
    "INSTALLED_VERSION_UNKNOWN",
    "READY_MESSAGE",
    "LauncherViewModelState",
    "RootStatus",
]
