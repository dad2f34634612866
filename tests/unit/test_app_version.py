from __future__ import annotations

import subprocess
import sys
from importlib import metadata
from pathlib import Path

import pytest

from app import version as version_module
from app.version import VERSION_FILE, get_app_version, user_agent


@pytest.fixture(autouse=True)
def _fresh_version_cache(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("FRIDA_LAUNCHER_VERSION", raising=False)
    get_app_version.cache_clear()  # type: ignore[attr-defined]
    yield
    get_app_version.cache_clear()  # type: ignore[attr-defined]


def _no_git(*args, **kwargs):
    raise subprocess.CalledProcessError(128, "git")


def test_get_app_version_prefers_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FRIDA_LAUNCHER_VERSION", "v1.2.3")

    assert get_app_version() == "1.2.3"


def test_get_app_version_falls_back_to_version_file() -> None:
    expected = VERSION_FILE.read_text(encoding="utf-8").strip()

    assert expected
    assert get_app_version() == expected


def test_version_file_found_when_app_spans_several_paths(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    extra = tmp_path / "app"
    extra.mkdir()
    app_package = sys.modules["app"]
    monkeypatch.setattr(app_package, "__path__", [str(extra), *list(app_package.__path__)])
    monkeypatch.setattr(version_module.subprocess, "check_output", _no_git)

    assert get_app_version() == VERSION_FILE.read_text(encoding="utf-8").strip()
    assert user_agent() == f"frida-launcher/{get_app_version()}"


def test_unreadable_version_file_is_skipped(tmp_path: Path) -> None:
    assert version_module._from_version_file(tmp_path / "missing") is None
    assert version_module._from_version_file(tmp_path) is None

    blank = tmp_path / "VERSION"
    blank.write_text("  \n", encoding="utf-8")
    assert version_module._from_version_file(blank) is None


def test_distribution_metadata_used_when_file_absent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        version_module, "_RESOLVERS",
        (version_module._from_env, lambda: None,
         version_module._from_distribution, version_module._from_git),
    )
    monkeypatch.setattr(version_module.metadata, "version", lambda name: "2.0.1")

    assert get_app_version() == "2.0.1"


def test_get_app_version_uses_fallback_without_sources(monkeypatch: pytest.MonkeyPatch) -> None:
    def _not_installed(name: str) -> str:
        raise metadata.PackageNotFoundError(name)

    monkeypatch.setattr(
        version_module, "_RESOLVERS",
        (version_module._from_env, lambda: None,
         version_module._from_distribution, version_module._from_git),
    )
    monkeypatch.setattr(version_module.metadata, "version", _not_installed)
    monkeypatch.setattr(version_module.subprocess, "check_output", _no_git)

    assert get_app_version() == "0.0.0-dev"
    assert user_agent() == "frida-launcher/0.0.0-dev"
