"""
Tests for logging setup.

What we test
------------
1. JsonLineFormatter emits the core fields plus extra= values.
2. configure_logging() installs stdout and file handlers on the root logger.
"""

from __future__ import annotations

import json
import logging

import pytest

from visibility_recs.config import LoggingConfig
from visibility_recs.utils.logging import JsonLineFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


class TestJsonLineFormatter:
    def test_core_fields_and_extras(self):
        record = logging.makeLogRecord({
            "name": "visibility_recs.lifecycle.mode",
            "levelname": "INFO",
            "levelno": logging.INFO,
            "msg": "Mode %s",
            "args": ("elite_maintenance",),
            "created": 1773144000.0,
            "account_id": 42,
        })
        line = json.loads(JsonLineFormatter().format(record))
        assert line["msg"] == "Mode elite_maintenance"
        assert line["logger"] == "visibility_recs.lifecycle.mode"
        assert line["level"] == "INFO"
        assert line["ts"].endswith("Z")
        assert line["account_id"] == 42
        assert "args" not in line


class TestConfigureLogging:
    def test_file_and_console(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "recs.log"
        configure_logging(LoggingConfig(level="DEBUG", log_file=str(log_file), json_format=True))

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 2
        logging.getLogger("visibility_recs.test").info("hello", extra={"scan_id": 7})
        for handler in restore_root_logger.handlers:
            handler.flush()
        line = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
        assert line["scan_id"] == 7

    def test_console_only(self, restore_root_logger):
        configure_logging(LoggingConfig(level="WARNING", log_file=""))
        assert len(restore_root_logger.handlers) == 1
        assert restore_root_logger.level == logging.WARNING
