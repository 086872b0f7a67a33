# tests/unit/core/test_logging.py
"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging

import pytest

from edmc.core.logging import configure_logging, get_logger


class TestConfigureLogging:
    def test_sets_root_level(self) -> None:
        configure_logging(level="WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_replaces_root_handlers(self) -> None:
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="DEBUG")
        get_logger("edmc.test").info("compiled", services=2)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "compiled"
        assert record["services"] == 2
        assert record["level"] == "info"
        assert "_record" not in record

    def test_stdlib_records_use_same_format(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="INFO")
        logging.getLogger("plain").warning("from stdlib")

        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["event"] == "from stdlib"

    def test_level_filters_debug(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="WARNING")
        get_logger("edmc.test").debug("hidden")
        assert "hidden" not in capsys.readouterr().err
