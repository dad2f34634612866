from __future__ import annotations

import subprocess
import sys
import threading
from pathlib import Path

import pytest

from services.frida.session import PrivilegedSession, probe_elevation
from tests.unit.frida_test_utils import DENYING_SU_SCRIPT, FAKE_SU_SCRIPT, write_script


@pytest.fixture
def fake_su(tmp_path: Path) -> tuple[str, ...]:
    script = write_script(tmp_path, "fake_su.py", FAKE_SU_SCRIPT)
    return (sys.executable, str(script))


@pytest.fixture
def session(fake_su: tuple[str, ...]):
    session = PrivilegedSession(fake_su, command_timeout=5.0)
    try:
        yield session
    finally:
        session.release()


def test_probe_elevation_accepts_root_identity(fake_su: tuple[str, ...]) -> None:
    assert probe_elevation(fake_su) is True


def test_probe_elevation_rejects_denied_elevation(tmp_path: Path) -> None:
    script = write_script(tmp_path, "deny_su.py", DENYING_SU_SCRIPT)

    assert probe_elevation((sys.executable, str(script))) is False


def test_probe_elevation_treats_missing_binary_as_unavailable(tmp_path: Path) -> None:
    assert probe_elevation((str(tmp_path / "missing-su"),)) is False


def test_probe_elevation_handles_timeout() -> None:
    def runner(*args, **kwargs):
        raise subprocess.TimeoutExpired(cmd="su", timeout=kwargs["timeout"])

    assert probe_elevation(("su",), timeout=1.0, runner=runner) is False


def test_run_returns_output_framed_by_marker(session: PrivilegedSession) -> None:
    assert session.run("id") == "uid=0(root) gid=0(root)\n"
    assert session.run("two-lines") == "first\nsecond\n"


def test_session_is_spawned_once_and_reused(session: PrivilegedSession) -> None:
    assert session.acquire() is True
    assert session.acquire() is True
    first = session._process  # type: ignore[attr-defined]

    session.run("id")

    assert session._process is first  # type: ignore[attr-defined]
    assert session.is_active


def test_release_is_idempotent(session: PrivilegedSession) -> None:
    session.run("id")

    session.release()
    session.release()

    assert not session.is_active


def test_run_respawns_after_shell_exit(session: PrivilegedSession) -> None:
    assert session.run("die") == ""
    assert not session.is_active

    assert session.run("id") == "uid=0(root) gid=0(root)\n"


def test_run_restarts_shell_when_timed_out_marker_never_arrives(fake_su: tuple[str, ...]) -> None:
    with PrivilegedSession(fake_su, command_timeout=0.3) as session:
        assert session.run("swallow") == ""
        first = session._process  # type: ignore[attr-defined]

        assert session.run("id") == "uid=0(root) gid=0(root)\n"
        assert session._process is not first  # type: ignore[attr-defined]


def test_late_output_of_timed_out_command_is_not_returned_later(fake_su: tuple[str, ...]) -> None:
    with PrivilegedSession(fake_su, command_timeout=0.5) as session:
        assert session.run("slow 0.8 late-output") == ""

        assert session.run("echo hi") == "hi\n"
        assert session.run("id") == "uid=0(root) gid=0(root)\n"


def test_late_output_is_skipped_without_restarting_shell(fake_su: tuple[str, ...]) -> None:
    with PrivilegedSession(fake_su, command_timeout=0.4) as session:
        assert session.run("slow 0.6 late-output") == ""
        first = session._process  # type: ignore[attr-defined]
        # Give the shell time to finish the slow command and echo its marker.
        threading.Event().wait(0.6)

        assert session.run("echo hi") == "hi\n"
        assert session._process is first  # type: ignore[attr-defined]


def test_run_without_elevation_issues_nothing(tmp_path: Path) -> None:
    script = write_script(tmp_path, "deny_su.py", DENYING_SU_SCRIPT)
    spawned: list[object] = []

    def popen(*args, **kwargs):
        spawned.append(args)
        raise AssertionError("no shell should be spawned without elevation")

    session = PrivilegedSession((sys.executable, str(script)), popen=popen)

    assert session.acquire() is False
    assert session.run("id") == ""
    assert spawned == []


def test_acquire_reports_permission_denied_as_unavailable(caplog: pytest.LogCaptureFixture) -> None:
    def popen(*args, **kwargs):
        raise PermissionError(13, "Permission denied")

    session = PrivilegedSession(("su",), verify_elevation=False, popen=popen)

    with caplog.at_level("INFO"):
        assert session.acquire() is False

    assert "Permission denied" in caplog.text
    assert all(record.levelname != "ERROR" for record in caplog.records)


def test_elevation_probe_result_is_cached(fake_su: tuple[str, ...]) -> None:
    calls: list[list[str]] = []

    def runner(command, **kwargs):
        calls.append(command)
        return subprocess.run(command, **kwargs)

    session = PrivilegedSession(fake_su, runner=runner)

    assert session.is_elevation_available() is True
    assert session.is_elevation_available() is True
    assert len(calls) == 1

    session.reset_elevation_cache()
    assert session.is_elevation_available() is True
    assert len(calls) == 2


def test_concurrent_commands_are_serialised(session: PrivilegedSession) -> None:
    results: dict[int, str] = {}

    def worker(index: int) -> None:
        results[index] = session.run(f"echo value-{index}")

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert results == {index: f"value-{index}\n" for index in range(8)}


def test_unframed_mode_waits_and_drains(fake_su: tuple[str, ...]) -> None:
    delays: list[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)
        threading.Event().wait(1.5)

    with PrivilegedSession(fake_su, framing=False, settle_seconds=0.5, sleep=sleep) as session:
        assert session.run("id") == "uid=0(root) gid=0(root)\n"

    assert delays == [0.5]


def test_empty_elevation_command_is_rejected() -> None:
    with pytest.raises(ValueError):
        PrivilegedSession(())
