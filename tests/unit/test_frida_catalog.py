from __future__ import annotations

import datetime
import io
import json
from pathlib import Path
from urllib.error import URLError

import pytest

from services.frida.catalog import (
    GitHubReleaseCatalog,
    LocalFolderReleaseCatalog,
    derive_architecture,
    iter_json_array,
    parse_release,
)
from services.frida.constants import API_RELEASES_URL
from services.frida.models import Architecture
from tests.unit.frida_test_utils import (
    FakeResponse,
    asset_entry,
    make_fake_urlopen,
    release_entry,
    releases_payload,
)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("frida-server-16.5.9-android-arm.xz", Architecture.ARM),
        ("frida-server-16.5.9-android-arm64.xz", Architecture.ARM64),
        ("frida-server-16.5.9-android-x86.xz", Architecture.X86),
        ("frida-server-16.5.9-android-x86_64.xz", Architecture.X86_64),
        ("frida-server-16.5.9-linux-x86_64.xz", Architecture.UNKNOWN),
    ],
)
def test_derive_architecture_prefers_longest_token(name: str, expected: Architecture) -> None:
    assert derive_architecture(name) is expected


def test_parse_release_keeps_only_server_assets() -> None:
    entry = release_entry("16.5.9")
    entry["assets"].append(
        {"name": "frida-server-16.5.9-android-arm64.tar.gz", "browser_download_url": "https://x"}
    )

    release = parse_release(entry)

    assert release is not None
    assert release.version == "16.5.9"
    assert release.published_date == datetime.date(2024, 11, 22)
    assert [asset.architecture for asset in release.assets] == [
        Architecture.ARM,
        Architecture.ARM64,
        Architecture.X86,
        Architecture.X86_64,
    ]
    assert all(asset.name.startswith("frida-server-") for asset in release.assets)


def test_parse_release_drops_releases_without_server_assets() -> None:
    entry = {"tag_name": "1.0.0", "assets": [{"name": "frida-gadget.so", "browser_download_url": "x"}]}

    assert parse_release(entry) is None


def test_parse_release_tolerates_bad_published_date() -> None:
    release = parse_release(release_entry("16.5.9", published_at="yesterday"))

    assert release is not None
    assert release.published_date is None


def test_parse_release_reads_asset_digest() -> None:
    digest = "a" * 64
    entry = {"tag_name": "16.5.9", "assets": [asset_entry("16.5.9", "arm64", digest=f"sha256:{digest}")]}

    release = parse_release(entry)

    assert release is not None
    assert release.assets[0].sha256 == digest


def test_iter_json_array_streams_small_chunks() -> None:
    payload = json.dumps([{"a": "x" * 50}, {"b": [1, 2, 3]}, "tail"]).encode("utf-8")

    values = list(iter_json_array(io.BytesIO(payload), chunk_size=7))

    assert values == [{"a": "x" * 50}, {"b": [1, 2, 3]}, "tail"]


def test_iter_json_array_handles_empty_array() -> None:
    assert list(iter_json_array(io.BytesIO(b"  [ ]  "))) == []


def test_iter_json_array_rejects_objects() -> None:
    with pytest.raises(ValueError):
        list(iter_json_array(io.BytesIO(b'{"message": "rate limited"}')))


def test_iter_json_array_rejects_truncated_payload() -> None:
    with pytest.raises(ValueError):
        list(iter_json_array(io.BytesIO(b'[{"tag_name": "1.0"}, {"tag')))


def test_github_catalog_lists_releases(monkeypatch: pytest.MonkeyPatch) -> None:
    requested: list = []
    responses = {
        API_RELEASES_URL: releases_payload(
            release_entry("16.5.9"),
            {"tag_name": "16.5.8", "assets": []},
            release_entry("16.5.7", architectures=("arm64",)),
        )
    }
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen(responses, requested))

    releases = GitHubReleaseCatalog().list_releases()

    assert [release.version for release in releases] == ["16.5.9", "16.5.7"]
    request = requested[0]
    assert request.get_header("Accept") == "application/vnd.github.v3+json"
    assert request.get_header("User-agent").startswith("frida-launcher/")


def test_github_catalog_returns_empty_list_on_http_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen({}))

    assert GitHubReleaseCatalog().list_releases() == []


def test_github_catalog_returns_empty_list_on_network_error(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = {API_RELEASES_URL: URLError("offline")}
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen(responses))

    assert GitHubReleaseCatalog().list_releases() == []


def test_github_catalog_returns_empty_list_on_malformed_json(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = {API_RELEASES_URL: b"<html>not json</html>"}
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen(responses))

    assert GitHubReleaseCatalog().list_releases() == []


def test_resolve_url_selects_exact_architecture(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = {API_RELEASES_URL: releases_payload(release_entry("16.5.9"))}
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen(responses))
    catalog = GitHubReleaseCatalog()

    arm64 = catalog.resolve_url("16.5.9", Architecture.ARM64)
    x86 = catalog.resolve_url("16.5.9", "x86")

    assert arm64 is not None and arm64.endswith("frida-server-16.5.9-android-arm64.xz")
    assert x86 is not None and x86.endswith("frida-server-16.5.9-android-x86.xz")


def test_resolve_url_returns_none_for_missing_architecture(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = {API_RELEASES_URL: releases_payload(release_entry("16.5.9", architectures=("arm",)))}
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen(responses))

    assert GitHubReleaseCatalog().resolve_url("16.5.9", Architecture.X86_64) is None


def test_resolve_url_rejects_unknown_architecture(monkeypatch: pytest.MonkeyPatch) -> None:
    requested: list = []
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen({}, requested))

    assert GitHubReleaseCatalog().resolve_url("16.5.9", Architecture.UNKNOWN) is None
    assert requested == []


def test_resolve_url_falls_back_to_tag_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    requested: list = []
    responses = {
        API_RELEASES_URL: releases_payload(release_entry("16.5.9")),
        f"{API_RELEASES_URL}/tags/15.2.2": json.dumps(release_entry("15.2.2")).encode("utf-8"),
    }
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen(responses, requested))

    url = GitHubReleaseCatalog().resolve_url("15.2.2", Architecture.ARM)

    assert url is not None and url.endswith("frida-server-15.2.2-android-arm.xz")
    assert [request.full_url for request in requested] == [
        API_RELEASES_URL,
        f"{API_RELEASES_URL}/tags/15.2.2",
    ]


def test_resolve_url_matches_prefixed_version(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = {API_RELEASES_URL: releases_payload(release_entry("16.5.9"))}
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen(responses))

    assert GitHubReleaseCatalog().resolve_url("v16.5.9", Architecture.ARM) is not None


def test_validate_version(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = {
        f"{API_RELEASES_URL}/tags/16.5.9": json.dumps(release_entry("16.5.9")).encode("utf-8"),
        f"{API_RELEASES_URL}/tags/0.0.1": json.dumps({"tag_name": "0.0.1", "assets": []}).encode(
            "utf-8"
        ),
    }
    monkeypatch.setattr("services.frida.catalog.urlopen", make_fake_urlopen(responses))
    catalog = GitHubReleaseCatalog()

    assert catalog.validate_version("16.5.9") is True
    assert catalog.validate_version("0.0.1") is False
    assert catalog.validate_version("99.0.0") is False
    assert catalog.validate_version("  ") is False


def test_catalog_uses_injected_opener() -> None:
    def opener(request, timeout=None):
        assert timeout == 5.0
        return FakeResponse(releases_payload(release_entry("16.5.9")))

    catalog = GitHubReleaseCatalog("https://mirror.invalid/releases/", timeout=5.0, opener=opener)

    assert catalog.api_url == "https://mirror.invalid/releases"
    assert [release.version for release in catalog.list_releases()] == ["16.5.9"]


def test_local_catalog_resolves_relative_urls(tmp_path: Path) -> None:
    entry = release_entry("16.5.9", architectures=("arm64",))
    entry["assets"][0]["browser_download_url"] = "frida-server-16.5.9-android-arm64.xz"
    (tmp_path / "releases.json").write_text(json.dumps([entry]), encoding="utf-8")

    catalog = LocalFolderReleaseCatalog(tmp_path)
    url = catalog.resolve_url("16.5.9", Architecture.ARM64)

    assert url == (tmp_path / "frida-server-16.5.9-android-arm64.xz").resolve().as_uri()
    assert catalog.validate_version("16.5.9") is True
    assert catalog.validate_version("1.0.0") is False


def test_local_catalog_without_metadata_is_empty(tmp_path: Path) -> None:
    catalog = LocalFolderReleaseCatalog(tmp_path)

    assert catalog.list_releases() == []
    assert catalog.resolve_url("16.5.9", Architecture.ARM) is None
