"""Data models used by the frida-server provisioning pipeline."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple


class Architecture(str, Enum):
    """CPU architectures published in the release feed."""

    ARM = "arm"
    ARM64 = "arm64"
    X86 = "x86"
    X86_64 = "x86_64"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> "Architecture":
        """Map an architecture token or ABI name onto a member, never raising."""

        if isinstance(value, Architecture):
            return value
        if not isinstance(value, str):
            return cls.UNKNOWN
        lowered = value.strip().lower()
        alias = _ARCHITECTURE_ALIASES.get(lowered)
        if alias is not None:
            return alias
        for member in cls:
            if member.value == lowered:
                return member
        return cls.UNKNOWN


_ARCHITECTURE_ALIASES: dict[str, Architecture] = {
    "armeabi-v7a": Architecture.ARM,
    "armeabi": Architecture.ARM,
    "armv7l": Architecture.ARM,
    "armv8l": Architecture.ARM,
    "arm64-v8a": Architecture.ARM64,
    "aarch64": Architecture.ARM64,
    "i386": Architecture.X86,
    "i686": Architecture.X86,
    "x86-64": Architecture.X86_64,
    "amd64": Architecture.X86_64,
}


@dataclass(frozen=True)
class Asset:
    """A downloadable frida-server artifact for one architecture."""

    name: str
    download_url: str
    architecture: Architecture = Architecture.UNKNOWN
    size_bytes: int = 0
    sha256: str | None = None


@dataclass(frozen=True)
class Release:
    """A published release and its qualifying server assets."""

    version: str
    published_date: datetime.date | None = None
    assets: Tuple[Asset, ...] = field(default_factory=tuple)

    @property
    def architectures(self) -> tuple[Architecture, ...]:
        seen: list[Architecture] = []
        for asset in self.assets:
            if asset.architecture not in seen:
                seen.append(asset.architecture)
        return tuple(seen)


class ServerState(str, Enum):
    """Lifecycle states derived from the privileged filesystem and process table."""

    NOT_INSTALLED = "not_installed"
    STOPPED = "stopped"
    RUNNING = "running"


UNKNOWN_VERSION = "unknown"


@dataclass(frozen=True)
class InstalledState:
    """Snapshot of the installed server; recomputed on every status query."""

    is_installed: bool = False
    installed_version: str | None = None
    is_running: bool = False

    def __post_init__(self) -> None:
        if not self.is_installed and self.installed_version is not None:
            object.__setattr__(self, "installed_version", None)

    @property
    def state(self) -> ServerState:
        if not self.is_installed:
            return ServerState.NOT_INSTALLED
        if self.is_running:
            return ServerState.RUNNING
        return ServerState.STOPPED

    def describe(self) -> str:
        if not self.is_installed:
            if self.is_running:
                return "Frida server is running but its binary is not installed"
            return "Frida server is not installed"
        version = self.installed_version or UNKNOWN_VERSION
        if self.is_running:
            return f"Frida server {version} is installed and running"
        return f"Frida server {version} is installed but not running"


NOT_INSTALLED = InstalledState()


@dataclass(frozen=True)
class LifecycleOutcome:
    """Result of a lifecycle transition together with the re-derived state."""

    success: bool
    message: str
    state: InstalledState = NOT_INSTALLED


class ArtifactError(RuntimeError):
    """Raised when an artifact cannot be turned into a runnable binary."""


class DownloadError(ArtifactError):
    """Raised when the artifact download fails; the caller may retry."""


class DecompressionError(ArtifactError):
    """Raised when a compressed artifact is corrupt; partial output is removed."""


class IntegrityError(ArtifactError):
    """Raised when the downloaded artifact does not match its published digest."""
