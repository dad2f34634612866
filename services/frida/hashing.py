"""Digest helpers for verifying downloaded artifacts."""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from services.frida.constants import DOWNLOAD_CHUNK_SIZE


_LOGGER = logging.getLogger(__name__)

_SHA256_PATTERN = re.compile(r"[0-9a-f]{64}")


def calculate_sha256(path: Path, *, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as source:
        for chunk in iter(lambda: source.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def parse_asset_digest(raw: object, *, asset_name: object = None) -> str | None:
    """Return the lower-case SHA-256 hex digest from a feed ``digest`` field.

    The feed publishes digests as ``"sha256:<hex>"``.  Other algorithms and
    malformed values yield ``None`` so the artifact is fetched unverified.
    """

    if not isinstance(raw, str):
        return None
    digest = raw.strip()
    if not digest:
        return None
    algorithm: str | None = None
    value = digest
    if ":" in digest:
        algorithm, value = digest.split(":", 1)
    elif "=" in digest:
        algorithm, value = digest.split("=", 1)
    if algorithm is not None and algorithm.strip().lower() != "sha256":
        _LOGGER.debug(
            "Ignoring unsupported digest algorithm '%s' for asset %s",
            algorithm.strip(),
            asset_name,
        )
        return None
    value = value.strip().lower()
    if not _SHA256_PATTERN.fullmatch(value):
        _LOGGER.debug("Digest for asset %s is not a SHA-256 hex string", asset_name)
        return None
    return value
