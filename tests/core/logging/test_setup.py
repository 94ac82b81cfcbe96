"""Tests for logging setup and configuration."""

import logging
from pathlib import Path

import pytest

from core.logging.context import get_log_context, set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import (
    NOISY_LOGGERS,
    ArchivingTimedRotatingFileHandler,
    get_log_file_path,
    setup_logging,
)
from core.logging.utilities import detect_log_output_mode


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)
    set_log_context(stage="", service="", target_url="")


class TestGetLogFilePath:

    def test_includes_date_subfolder_and_name(self):
        path = get_log_file_path(Path("logs"), name="collector")

        assert path.parent.parent == Path("logs")
        assert len(path.parent.name) == len("2026-01-05")
        assert path.name.startswith("collector_")
        assert path.suffix == ".log"


class TestSetupLogging:

    def test_stdout_mode_has_single_console_handler(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True)

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, ConsoleFormatter)
        assert detect_log_output_mode() == "stdout"
        assert not any(tmp_path.iterdir())

    def test_file_mode_adds_json_file_handler(self, tmp_path):
        setup_logging(log_dir=tmp_path, json_format=True)

        handlers = logging.getLogger().handlers
        file_handlers = [h for h in handlers if isinstance(h, ArchivingTimedRotatingFileHandler)]
        assert len(file_handlers) == 1
        assert isinstance(file_handlers[0].formatter, JSONFormatter)
        assert detect_log_output_mode() == "file+stdout"
        assert (tmp_path / "archive").is_dir()

    def test_sets_stage_context(self, tmp_path):
        setup_logging(stage="fleet", log_dir=tmp_path, log_to_stdout=True)

        assert get_log_context()["stage"] == "fleet"

    def test_suppresses_noisy_loggers(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True)

        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_noisy_loggers_untouched_when_disabled(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True, suppress_noisy=False)

        assert logging.getLogger("aiohttp.access").level == logging.NOTSET

    def test_clears_existing_handlers(self, tmp_path):
        stale = logging.NullHandler()
        logging.getLogger().addHandler(stale)

        setup_logging(log_dir=tmp_path, log_to_stdout=True)

        assert stale not in logging.getLogger().handlers

    def test_root_level_is_debug(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True)

        assert logging.getLogger().level == logging.DEBUG
