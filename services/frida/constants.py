"""Constants shared across the frida-server provisioning modules."""

from __future__ import annotations

GITHUB_REPO = "frida/frida"
API_RELEASES_URL = f"https://api.github.com/repos/{GITHUB_REPO}/releases"
GITHUB_ACCEPT_HEADER = "application/vnd.github.v3+json"

SERVER_BINARY_NAME = "frida-server"
SERVER_ASSET_PREFIX = f"{SERVER_BINARY_NAME}-"
SERVER_ARCHIVE_EXTENSIONS = (".xz", ".zip")
ARCHITECTURE_TOKEN_PREFIX = "-android-"

DEFAULT_BINARY_PATH = "/data/local/tmp/frida-server"
DEFAULT_VERSION_FILE = "/data/local/tmp/frida-version.txt"

DEFAULT_ELEVATION_COMMAND = ("su",)
ELEVATED_IDENTITY_MARKER = "uid=0"
MISSING_FILE_MARKER = "No such file"

CATALOG_TIMEOUT_SECONDS = 30.0
DOWNLOAD_TIMEOUT_SECONDS = 60.0
DOWNLOAD_CHUNK_SIZE = 8192

SESSION_SETTLE_SECONDS = 0.5
SESSION_COMMAND_TIMEOUT_SECONDS = 10.0
ELEVATION_PROBE_TIMEOUT_SECONDS = 10.0
START_SETTLE_SECONDS = 1.5
STOP_SETTLE_SECONDS = 0.5
MAX_SETTLE_SECONDS = 2.0

MAX_ARCHIVE_FILE_SIZE = 250 * 1024 * 1024  # 250 MiB
MAX_COMPRESSION_RATIO = 100  # Uncompressed vs compressed bytes

# Characters stripped from caller-supplied start flags.
FLAG_DENYLIST = frozenset(";&|<>$`\\")

LOCAL_RELEASES_ENV = "FRIDA_LAUNCHER_LOCAL_RELEASES"
LOCAL_RELEASES_FILENAME = "releases.json"
