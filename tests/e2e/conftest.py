from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from tests.e2e.harness import ProvisioningHarness
from tests.unit.frida_test_utils import make_fake_urlopen


@pytest.fixture
def provisioning(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[ProvisioningHarness]:
    harness = ProvisioningHarness(
        work_dir=tmp_path / "downloads",
        preferences_path=tmp_path / "preferences.json",
    )
    fake_urlopen = make_fake_urlopen(harness.responses, harness.requested)
    monkeypatch.setattr("services.frida.catalog.urlopen", fake_urlopen)
    monkeypatch.setattr("services.frida.fetcher.urlopen", fake_urlopen)
    try:
        yield harness
    finally:
        harness.close()
