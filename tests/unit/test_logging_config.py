from __future__ import annotations

import logging
from pathlib import Path

import pytest

from shared import logging_config


def _flush_managed_handlers() -> None:
    for handler in logging.getLogger().handlers:
        if getattr(handler, logging_config._HANDLER_TAG, False):  # type: ignore[attr-defined]
            handler.flush()


@pytest.fixture(autouse=True)
def reset_logging():
    logging_config._reset_for_tests()
    try:
        yield
    finally:
        logging_config._reset_for_tests()


def test_logging_creates_file_and_records_info(tmp_path, monkeypatch):
    monkeypatch.setenv("FRIDA_LAUNCHER_LOG_DIR", str(tmp_path))

    log_path = logging_config.ensure_app_logging()
    assert log_path == tmp_path / "launcher.log"
    assert logging_config.get_file_log_verbosity() == logging_config.LogVerbosity.INFO
    logging.getLogger("services.frida.session").debug("debug message")
    logging.getLogger("services.frida.session").info("info message")
    _flush_managed_handlers()

    contents = log_path.read_text(encoding="utf-8")
    assert "debug message" not in contents
    assert "info message" in contents


def test_log_file_environment_takes_precedence(tmp_path, monkeypatch):
    monkeypatch.setenv("FRIDA_LAUNCHER_LOG_DIR", str(tmp_path / "dir"))
    monkeypatch.setenv("FRIDA_LAUNCHER_LOG_FILE", str(tmp_path / "custom.log"))

    assert logging_config.ensure_app_logging() == tmp_path / "custom.log"


def test_logging_configuration_is_idempotent(tmp_path, monkeypatch):
    monkeypatch.setenv("FRIDA_LAUNCHER_LOG_DIR", str(tmp_path))

    first_path = logging_config.ensure_app_logging()
    second_path = logging_config.ensure_app_logging()

    assert first_path == second_path
    managed_handlers = [
        handler
        for handler in logging.getLogger().handlers
        if getattr(handler, logging_config._HANDLER_TAG, False)  # type: ignore[attr-defined]
    ]

    # Only the file handler should be installed during tests (stderr is not a tty).
    assert len(managed_handlers) == 1
    assert isinstance(managed_handlers[0], logging.FileHandler)
    assert Path(managed_handlers[0].baseFilename) == first_path


def test_can_adjust_file_log_verbosity(tmp_path, monkeypatch):
    monkeypatch.setenv("FRIDA_LAUNCHER_LOG_DIR", str(tmp_path))

    log_path = logging_config.ensure_app_logging()
    logging_config.set_file_log_verbosity("verbose")
    logging.getLogger("tests.logging").debug("debug message")
    logging.getLogger("tests.logging").error("error message")
    _flush_managed_handlers()

    contents = log_path.read_text(encoding="utf-8")
    assert "debug message" in contents
    assert "error message" in contents
    assert logging_config.get_file_log_verbosity() == logging_config.LogVerbosity.VERBOSE


def test_disabling_file_logging_suppresses_output(tmp_path, monkeypatch):
    monkeypatch.setenv("FRIDA_LAUNCHER_LOG_DIR", str(tmp_path))

    log_path = logging_config.ensure_app_logging()
    logging_config.set_file_log_verbosity(logging_config.LogVerbosity.DISABLED)
    logging.getLogger("tests.logging").critical("critical message")
    _flush_managed_handlers()

    assert "critical message" not in log_path.read_text(encoding="utf-8")


def test_unknown_verbosity_is_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("FRIDA_LAUNCHER_LOG_DIR", str(tmp_path))

    with pytest.raises(ValueError):
        logging_config.set_file_log_verbosity("chatty")


def test_console_level_installs_handler(tmp_path, monkeypatch):
    monkeypatch.setenv("FRIDA_LAUNCHER_LOG_DIR", str(tmp_path))

    logging_config.set_console_level(logging.DEBUG)

    consoles = [
        handler
        for handler in logging.getLogger().handlers
        if getattr(handler, logging_config._HANDLER_TAG, False)
        and not isinstance(handler, logging.FileHandler)
    ]
    assert len(consoles) == 1
    assert consoles[0].level == logging.DEBUG


def test_redact_hides_home_directory():
    home = str(Path.home())
    if len(home) <= 1:
        pytest.skip("home directory is the filesystem root")

    assert home not in logging_config.redact(f"Downloaded to {home}/work/frida-server")
    assert logging_config.redact("uid=0(root) gid=0(root)") == "uid=0(root) gid=0(root)"
