from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path() -> None:
    """Guarantee the repository root is discoverable for absolute imports."""

    root = Path(__file__).resolve().parent.parent
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)

    tests_dir = root / "tests"
    tests_str = str(tests_dir)
    if tests_str not in sys.path:
        sys.path.insert(1, tests_str)


_ensure_project_root_on_path()


@pytest.fixture(autouse=True)
def _preferences_path_env(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Isolate preference writes so tests never touch real user data."""

    pref_dir = tmp_path_factory.mktemp("prefs")
    pref_path = pref_dir / "preferences.json"
    monkeypatch.setenv("FRIDA_LAUNCHER_PREFERENCES_PATH", str(pref_path))

    yield

    if pref_path.exists():
        try:
            pref_path.unlink()
        except OSError:
            pass


@pytest.fixture(autouse=True)
def _launcher_env(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Route logs away from the home directory and drop inherited overrides."""

    from app.config import reset_app_config_cache

    monkeypatch.setenv("FRIDA_LAUNCHER_LOG_DIR", str(tmp_path_factory.mktemp("logs")))
    for name in (
        "FRIDA_LAUNCHER_LOG_FILE",
        "FRIDA_LAUNCHER_CONFIG",
        "FRIDA_LAUNCHER_LOCAL_RELEASES",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_app_config_cache()

    yield

    reset_app_config_cache()
