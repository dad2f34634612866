"""Release catalog implementations."""

from __future__ import annotations

import codecs
import datetime
import json
import logging
import re
from pathlib import Path
from typing import IO, Any, Callable, Iterable, Iterator, Mapping, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from app.version import user_agent
from services.frida.constants import (
    API_RELEASES_URL,
    ARCHITECTURE_TOKEN_PREFIX,
    CATALOG_TIMEOUT_SECONDS,
    GITHUB_ACCEPT_HEADER,
    LOCAL_RELEASES_FILENAME,
    SERVER_ARCHIVE_EXTENSIONS,
    SERVER_ASSET_PREFIX,
)
from services.frida.hashing import parse_asset_digest
from services.frida.models import Architecture, Asset, Release
from services.frida.versioning import versions_match


_LOGGER = logging.getLogger(__name__)

# Longest alternatives first so ``arm64`` and ``x86_64`` are never read as ``arm``/``x86``.
_ARCHITECTURE_PATTERN = re.compile(r"android-(arm64|arm|x86_64|x86)(?![a-z0-9])")

_JSON_CHUNK_SIZE = 64 * 1024


class ReleaseCatalog(Protocol):
    """Protocol describing release catalogs."""

    def list_releases(self) -> list[Release]:
        """Return published releases newest first; empty when unavailable."""

    def fetch_release(self, version: str) -> Release | None:
        """Return the release tagged ``version`` or ``None``."""

    def resolve_url(self, version: str, architecture: Architecture | str) -> str | None:
        """Return the download URL for ``version`` on ``architecture``."""

    def resolve_asset(self, version: str, architecture: Architecture | str) -> Asset | None:
        """Return the asset for ``version`` on ``architecture``."""

    def validate_version(self, version: str) -> bool:
        """Return ``True`` when ``version`` exists and ships server assets."""


def derive_architecture(asset_name: str) -> Architecture:
    match = _ARCHITECTURE_PATTERN.search(asset_name.lower())
    if match is None:
        return Architecture.UNKNOWN
    return Architecture.parse(match.group(1))


def is_server_asset_name(name: str) -> bool:
    return name.startswith(SERVER_ASSET_PREFIX) and name.endswith(SERVER_ARCHIVE_EXTENSIONS)


def parse_asset(raw: object, *, url_resolver: Callable[[str], str] | None = None) -> Asset | None:
    """Build an :class:`Asset` from a feed entry, or ``None`` when it does not qualify."""

    if not isinstance(raw, Mapping):
        return None
    name = str(raw.get("name") or "").strip()
    if not is_server_asset_name(name):
        return None
    url = raw.get("browser_download_url")
    if not isinstance(url, str) or not url.strip():
        _LOGGER.debug("Skipping asset %s without a download URL", name)
        return None
    url = url.strip()
    if url_resolver is not None:
        url = url_resolver(url)
    return Asset(
        name=name,
        download_url=url,
        architecture=derive_architecture(name),
        size_bytes=_coerce_size(raw.get("size")),
        sha256=parse_asset_digest(raw.get("digest"), asset_name=name),
    )


def parse_release(
    entry: object, *, url_resolver: Callable[[str], str] | None = None
) -> Release | None:
    """Build a :class:`Release` keeping only qualifying server assets."""

    if not isinstance(entry, Mapping):
        return None
    version = str(entry.get("tag_name") or entry.get("name") or "").strip()
    if not version:
        return None
    raw_assets = entry.get("assets") or []
    if not isinstance(raw_assets, list):
        raw_assets = []
    assets = tuple(
        asset
        for asset in (parse_asset(raw, url_resolver=url_resolver) for raw in raw_assets)
        if asset is not None
    )
    if not assets:
        _LOGGER.debug("Release %s has no frida-server assets", version)
        return None
    return Release(
        version=version,
        published_date=_parse_published_date(entry.get("published_at")),
        assets=assets,
    )


def iter_json_array(stream: IO[bytes], *, chunk_size: int = _JSON_CHUNK_SIZE) -> Iterator[Any]:
    """Yield the elements of a top-level JSON array read incrementally from ``stream``.

    Only the element being decoded is held in memory, so long release
    histories never have to be materialised as a single document.
    """

    decoder = json.JSONDecoder()
    text_decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""
    eof = False

    def fill() -> bool:
        nonlocal buffer, eof
        if eof:
            return False
        chunk = stream.read(chunk_size)
        if not chunk:
            eof = True
            buffer += text_decoder.decode(b"", final=True)
            return False
        buffer += text_decoder.decode(chunk)
        return True

    def peek() -> str:
        nonlocal buffer
        while True:
            buffer = buffer.lstrip("\ufeff \t\r\n")
            if buffer:
                return buffer[0]
            if not fill():
                return ""

    if peek() != "[":
        raise ValueError("Release feed is not a JSON array")
    buffer = buffer[1:]
    if peek() == "]":
        return

    while True:
        peek()
        while True:
            try:
                value, end = decoder.raw_decode(buffer)
            except json.JSONDecodeError:
                if not fill():
                    raise
                continue
            if end == len(buffer) and fill():
                continue
            break
        buffer = buffer[end:]
        yield value

        delimiter = peek()
        if delimiter == ",":
            buffer = buffer[1:]
            continue
        if delimiter == "]":
            return
        raise ValueError(f"Unexpected {delimiter or 'end of data'!r} in release feed")


class _ResolvingCatalog:
    """Version/architecture resolution shared by the catalog implementations."""

    def list_releases(self) -> list[Release]:  # pragma: no cover - overridden
        raise NotImplementedError

    def fetch_release(self, version: str) -> Release | None:  # pragma: no cover - overridden
        raise NotImplementedError

    def resolve_url(self, version: str, architecture: Architecture | str) -> str | None:
        asset = self.resolve_asset(version, architecture)
        return asset.download_url if asset is not None else None

    def resolve_asset(self, version: str, architecture: Architecture | str) -> Asset | None:
        requested = Architecture.parse(architecture)
        token = requested.value
        if requested is Architecture.UNKNOWN:
            token = "" if isinstance(architecture, Architecture) else str(architecture).strip().lower()
            if not token or token == Architecture.UNKNOWN.value:
                _LOGGER.warning("Cannot resolve an asset for an unknown architecture")
                return None

        release = self._find_release(version)
        if release is None:
            _LOGGER.error("No release found for version %s", version)
            return None

        if requested is not Architecture.UNKNOWN:
            for asset in release.assets:
                if asset.architecture is requested:
                    _LOGGER.info("Found matching frida-server asset %s", asset.name)
                    return asset

        _LOGGER.info(
            "Available architectures for version %s: %s",
            version,
            ", ".join(arch.value for arch in release.architectures),
        )
        needle = f"{ARCHITECTURE_TOKEN_PREFIX}{token}"
        for asset in release.assets:
            if needle in asset.name.lower():
                _LOGGER.info("Found fallback frida-server asset %s", asset.name)
                return asset

        _LOGGER.error(
            "No frida-server asset for version %s and architecture %s", version, token
        )
        return None

    def validate_version(self, version: str) -> bool:
        if not version.strip():
            return False
        release = self.fetch_release(version.strip())
        return release is not None and bool(release.assets)

    def _find_release(self, version: str) -> Release | None:
        for release in self.list_releases():
            if versions_match(release.version, version):
                return release
        _LOGGER.info("Version %s not in the release list; querying it directly", version)
        return self.fetch_release(version)


class GitHubReleaseCatalog(_ResolvingCatalog):
    """Fetch release metadata from the GitHub Releases API."""

    def __init__(
        self,
        api_url: str = API_RELEASES_URL,
        *,
        timeout: float = CATALOG_TIMEOUT_SECONDS,
        opener: Callable[..., Any] | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._opener = opener

    @property
    def api_url(self) -> str:
        return self._api_url

    def list_releases(self) -> list[Release]:
        _LOGGER.info("Fetching frida releases from %s", self._api_url)
        releases: list[Release] = []
        try:
            with self._open(self._api_url) as response:
                for entry in iter_json_array(response):
                    release = parse_release(entry)
                    if release is not None:
                        releases.append(release)
        except HTTPError as exc:
            _LOGGER.error("Failed to fetch frida releases: HTTP %s", exc.code)
            return []
        except (URLError, OSError) as exc:
            _LOGGER.error("Failed to reach the release feed %s: %s", self._api_url, exc)
            return []
        except ValueError as exc:
            _LOGGER.error("Release feed returned malformed JSON: %s", exc)
            return []
        _LOGGER.info("Loaded %d frida releases", len(releases))
        return releases

    def fetch_release(self, version: str) -> Release | None:
        url = f"{self._api_url}/tags/{quote(version.strip(), safe='')}"
        try:
            with self._open(url) as response:
                payload = json.load(response)
        except HTTPError as exc:
            _LOGGER.error("Version %s not found on GitHub (HTTP %s)", version, exc.code)
            return None
        except (URLError, OSError) as exc:
            _LOGGER.error("Failed to fetch release %s: %s", version, exc)
            return None
        except ValueError as exc:
            _LOGGER.error("Release %s returned malformed JSON: %s", version, exc)
            return None
        return parse_release(payload)

    def _open(self, url: str):
        request = Request(
            url,
            headers={
                "Accept": GITHUB_ACCEPT_HEADER,
                "User-Agent": user_agent(),
            },
        )
        opener = self._opener or urlopen
        return opener(request, timeout=self._timeout)  # nosec - GitHub API over HTTPS


class LocalFolderReleaseCatalog(_ResolvingCatalog):
    """Serve release metadata from a local ``releases.json`` for offline use."""

    def __init__(self, folder: Path) -> None:
        self._folder = Path(folder)

    @property
    def folder(self) -> Path:
        return self._folder

    def list_releases(self) -> list[Release]:
        metadata_path = self._folder / LOCAL_RELEASES_FILENAME
        try:
            with metadata_path.open("rb") as source:
                entries = list(iter_json_array(source))
        except FileNotFoundError:
            _LOGGER.debug("Local release metadata missing: %s", metadata_path)
            return []
        except (OSError, ValueError) as exc:
            _LOGGER.debug("Failed to read local release metadata: %s", exc)
            return []
        return _parse_entries(entries, url_resolver=self._resolve_url)

    def fetch_release(self, version: str) -> Release | None:
        for release in self.list_releases():
            if versions_match(release.version, version):
                return release
        _LOGGER.debug("Local release metadata has no version %s", version)
        return None

    def _resolve_url(self, url: str) -> str:
        if "://" in url:
            return url
        return (self._folder / url).resolve().as_uri()


def _parse_entries(
    entries: Iterable[object], *, url_resolver: Callable[[str], str] | None = None
) -> list[Release]:
    releases: list[Release] = []
    for entry in entries:
        release = parse_release(entry, url_resolver=url_resolver)
        if release is not None:
            releases.append(release)
    return releases


def _parse_published_date(raw: object) -> datetime.date | None:
    if not isinstance(raw, str) or len(raw) < 10:
        return None
    try:
        return datetime.date.fromisoformat(raw[:10])
    except ValueError:
        return None


def _coerce_size(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


__all__ = [
    "GitHubReleaseCatalog",
    "LocalFolderReleaseCatalog",
    "ReleaseCatalog",
    "derive_architecture",
    "is_server_asset_name",
    "iter_json_array",
    "parse_asset",
    "parse_release",
]
