"""Download release artifacts and turn them into runnable server binaries."""

from __future__ import annotations

import logging
import lzma
import shutil
import stat
import zipfile
import zlib
from pathlib import Path
from typing import IO, Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from app.version import user_agent
from services.frida import constants
from services.frida.hashing import calculate_sha256
from services.frida.models import (
    ArtifactError,
    DecompressionError,
    DownloadError,
    IntegrityError,
)


_LOGGER = logging.getLogger(__name__)

_EXECUTABLE_MODE = (
    stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH
)


class ArtifactFetcher:
    """Stream an artifact to ``work_dir`` and produce an executable binary.

    ``.xz`` payloads are decompressed with a single-stream XZ decoder, ``.zip``
    archives are scanned for the first entry naming the binary, and anything
    else is treated as the binary itself.  All transfers use bounded chunks.
    """

    def __init__(
        self,
        work_dir: Path,
        *,
        binary_name: str = constants.SERVER_BINARY_NAME,
        timeout: float = constants.DOWNLOAD_TIMEOUT_SECONDS,
        chunk_size: int = constants.DOWNLOAD_CHUNK_SIZE,
        opener: Callable[..., Any] | None = None,
    ) -> None:
        self._work_dir = Path(work_dir)
        self._binary_name = binary_name
        self._timeout = timeout
        self._chunk_size = max(1024, int(chunk_size))
        self._opener = opener

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    @property
    def output_path(self) -> Path:
        return self._work_dir / self._binary_name

    def fetch(self, url: str, *, expected_sha256: str | None = None) -> Path:
        """Download ``url`` and return the path of the executable binary.

        Raises :class:`DownloadError` for network failures, and
        :class:`DecompressionError` or :class:`IntegrityError` when the payload
        is unusable.  No partial binary is left behind on failure.
        """

        self._work_dir.mkdir(parents=True, exist_ok=True)
        output = self.output_path
        suffix = _url_suffix(url)
        _LOGGER.info("Downloading frida-server from %s", url)
        try:
            self._download(url, suffix, output, expected_sha256)
        except ArtifactError:
            _remove_quietly(output)
            raise

        output.chmod(_EXECUTABLE_MODE)
        _LOGGER.info("frida-server downloaded to %s", output)
        return output

    def discard(self, path: Path | None = None) -> None:
        """Delete a previously fetched binary once it has been installed."""

        target = Path(path) if path is not None else self.output_path
        if _remove_quietly(target):
            _LOGGER.info("Cleaned up downloaded file %s", target)

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------
    def _download(
        self, url: str, suffix: str, output: Path, expected_sha256: str | None
    ) -> None:
        try:
            with self._open(url) as response:
                status = getattr(response, "status", None)
                if isinstance(status, int) and not 200 <= status < 300:
                    raise DownloadError(f"Failed to download frida-server: HTTP {status}")
                if suffix == ".xz":
                    self._fetch_xz(response, output, expected_sha256)
                elif suffix == ".zip":
                    self._fetch_zip(response, output, expected_sha256)
                else:
                    _LOGGER.info("Saving frida-server binary directly")
                    self._stream_to_file(response, output)
                    self._verify(output, expected_sha256)
        except HTTPError as exc:
            _LOGGER.error("Failed to download frida-server: HTTP %s", exc.code)
            raise DownloadError(f"Failed to download frida-server: HTTP {exc.code}") from exc
        except (URLError, OSError) as exc:
            _LOGGER.error("Failed to download frida-server from %s: %s", url, exc)
            raise DownloadError(f"Failed to download frida-server: {exc}") from exc

    def _open(self, url: str):
        request = Request(url, headers={"User-Agent": user_agent()})
        opener = self._opener or urlopen
        return opener(request, timeout=self._timeout)  # nosec - release assets over HTTPS

    def _stream_to_file(self, source: IO[bytes], destination: Path) -> None:
        with destination.open("wb") as target:
            shutil.copyfileobj(source, target, self._chunk_size)
        _LOGGER.debug("Stored %s bytes at %s", destination.stat().st_size, destination)

    def _verify(self, path: Path, expected_sha256: str | None) -> None:
        if not expected_sha256:
            return
        actual = calculate_sha256(path, chunk_size=self._chunk_size)
        if actual.lower() != expected_sha256.strip().lower():
            _remove_quietly(path)
            raise IntegrityError(
                f"Artifact hash mismatch: expected {expected_sha256} but received {actual}"
            )
        _LOGGER.info("Verified SHA-256 digest of %s", path.name)

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------
    def _fetch_xz(self, response: IO[bytes], output: Path, expected_sha256: str | None) -> None:
        _LOGGER.info("Extracting XZ compressed frida-server")
        compressed = self._work_dir / f"{self._binary_name}.xz"
        try:
            self._stream_to_file(response, compressed)
            self._verify(compressed, expected_sha256)
            self._decompress_xz(compressed, output)
        finally:
            _remove_quietly(compressed)

    def _decompress_xz(self, compressed: Path, output: Path) -> None:
        decompressor = lzma.LZMADecompressor(format=lzma.FORMAT_XZ)
        try:
            with compressed.open("rb") as source, output.open("wb") as target:
                for chunk in iter(lambda: source.read(self._chunk_size), b""):
                    target.write(decompressor.decompress(chunk, max_length=self._chunk_size))
                    while not decompressor.eof and not decompressor.needs_input:
                        target.write(decompressor.decompress(b"", max_length=self._chunk_size))
                    if decompressor.eof:
                        break
                if not decompressor.eof:
                    _LOGGER.error("XZ stream in %s ended before its end marker", compressed.name)
                    raise DecompressionError(
                        "Failed to decompress frida-server XZ file: truncated stream"
                    )
                # Only zero padding may follow the stream, up to the end of the file.
                trailing = decompressor.unused_data.strip(b"\x00")
                for chunk in iter(lambda: source.read(self._chunk_size), b""):
                    if trailing:
                        break
                    trailing = chunk.strip(b"\x00")
        except (lzma.LZMAError, EOFError, OSError) as exc:
            _LOGGER.error("Failed to decompress %s: %s", compressed.name, exc)
            raise DecompressionError(f"Failed to decompress frida-server XZ file: {exc}") from exc

        if trailing:
            _LOGGER.error("XZ file %s has trailing data after its stream", compressed.name)
            raise DecompressionError("Failed to decompress frida-server XZ file: trailing data")
        _LOGGER.info("XZ decompression completed successfully")

    def _fetch_zip(self, response: IO[bytes], output: Path, expected_sha256: str | None) -> None:
        _LOGGER.info("Extracting ZIP compressed frida-server")
        archive_path = self._work_dir / f"{self._binary_name}.zip"
        try:
            self._stream_to_file(response, archive_path)
            self._verify(archive_path, expected_sha256)
            self._extract_from_zip(archive_path, output)
        finally:
            _remove_quietly(archive_path)

    def _extract_from_zip(self, archive_path: Path, output: Path) -> None:
        try:
            with zipfile.ZipFile(archive_path) as archive:
                for member in archive.infolist():
                    if member.is_dir() or self._binary_name not in member.filename:
                        continue
                    _check_member_limits(member)
                    with archive.open(member) as source, output.open("wb") as target:
                        shutil.copyfileobj(source, target, self._chunk_size)
                    _LOGGER.info("Extracted archive member %s to %s", member.filename, output)
                    return
        except (OSError, EOFError, zipfile.BadZipFile, zlib.error) as exc:
            _LOGGER.error("Failed to extract %s: %s", archive_path.name, exc)
            raise DecompressionError(f"Failed to extract frida-server archive: {exc}") from exc
        raise ArtifactError(f"Archive did not contain a {self._binary_name} binary")


def _check_member_limits(member: zipfile.ZipInfo) -> None:
    if member.file_size > constants.MAX_ARCHIVE_FILE_SIZE:
        _LOGGER.error(
            "Archive member %s exceeded file size limit (%s > %s)",
            member.filename,
            member.file_size,
            constants.MAX_ARCHIVE_FILE_SIZE,
        )
        raise DecompressionError("Archive contained an oversized file")
    if member.compress_size == 0 and member.file_size > 0:
        _LOGGER.error("Archive member %s reported zero compression size", member.filename)
        raise DecompressionError("Archive contained a suspiciously compressed file")
    if (
        member.compress_size > 0
        and member.file_size > member.compress_size * constants.MAX_COMPRESSION_RATIO
    ):
        _LOGGER.error(
            "Archive member %s exceeded compression ratio limit (%s > %s)",
            member.filename,
            member.file_size,
            member.compress_size * constants.MAX_COMPRESSION_RATIO,
        )
        raise DecompressionError("Archive exceeded safe compression ratio")


def _url_suffix(url: str) -> str:
    path = urlparse(url).path or url
    return Path(path).suffix.lower()


def _remove_quietly(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError:
        _LOGGER.warning("Unable to remove %s", path, exc_info=True)
        return False
    return True


__all__ = ["ArtifactFetcher"]
