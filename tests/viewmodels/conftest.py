"""Fixtures for viewmodel tests."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from tests.unit.frida_test_utils import FakeShell
from viewmodels.launcher_viewmodel import LauncherViewModel

from tests.viewmodels._fakes import FakeCatalog, FakeFetcher, make_launcher, make_release


@pytest.fixture
def shell() -> FakeShell:
    return FakeShell()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog([make_release("16.5.9"), make_release("16.5.8", ("arm", "arm64"))])


@pytest.fixture
def fetcher(tmp_path: Path) -> FakeFetcher:
    return FakeFetcher(tmp_path / "downloads")


@pytest.fixture
def preferences_path(tmp_path: Path) -> Path:
    return tmp_path / "preferences.json"


@pytest.fixture
def viewmodel(
    shell: FakeShell, catalog: FakeCatalog, fetcher: FakeFetcher, preferences_path: Path
) -> Iterator[LauncherViewModel]:
    viewmodel = LauncherViewModel(
        make_launcher(shell, catalog, fetcher),
        architecture="arm64",
        preferences_path=preferences_path,
        non_root_probe=lambda: False,
    )
    try:
        yield viewmodel
    finally:
        viewmodel.shutdown()
