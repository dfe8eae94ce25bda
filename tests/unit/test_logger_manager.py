"""
Unit tests for bot_logging/logger_manager.py.

Tests verify:
- JSON formatter output and extra fields (Decimal/Enum encoded)
- Rotating file handler attached once per logger name
- Trade-event records written as one JSON object
"""

from __future__ import annotations

import io
import json
import logging
from decimal import Decimal
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest

from bot_logging.logger_manager import JSONFormatter, log_trade_event, setup_module_logger
from shared.types import TradeDirection


@pytest.fixture
def capture_logger():
    logger = logging.getLogger("test_capture")
    logger.handlers.clear()
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    yield logger, stream
    logger.handlers.clear()


class TestJSONFormatter:
    def test_basic_fields(self, capture_logger):
        logger, stream = capture_logger
        logger.info("Opened %s", "BTCUSDT")

        entry = json.loads(stream.getvalue())
        assert entry["message"] == "Opened BTCUSDT"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "test_capture"
        assert "ticker" not in entry

    def test_extra_fields_encoded(self, capture_logger):
        logger, stream = capture_logger
        logger.info("hijack", extra={"ticker": "BTCUSDT", "force": Decimal("7.4314"), "data": TradeDirection.LONG})

        entry = json.loads(stream.getvalue())
        assert entry["ticker"] == "BTCUSDT"
        assert entry["force"] == "7.4314"
        assert entry["data"] == TradeDirection.LONG.value

    def test_exception_included(self, capture_logger):
        logger, stream = capture_logger
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logger.error("failed", exc_info=True)

        entry = json.loads(stream.getvalue())
        assert "RuntimeError: boom" in entry["exception"]


class TestSetupModuleLogger:
    def test_rotating_file_handler(self, tmp_path):
        with patch("bot_logging.logger_manager._LOG_DIR", str(tmp_path)):
            logger = setup_module_logger("test_rotating", "rotating.log", module_folder="Test_Logs")
            again = setup_module_logger("test_rotating", "rotating.log", module_folder="Test_Logs")
        try:
            assert again is logger
            assert len(logger.handlers) == 1
            assert isinstance(logger.handlers[0], RotatingFileHandler)
            assert logger.propagate is False

            logger.info("hello")
            logger.handlers[0].flush()
            text = (tmp_path / "Test_Logs" / "rotating.log").read_text(encoding="utf-8")
            assert "| INFO     |" in text
            assert "hello" in text
        finally:
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()

    def test_explicit_level(self, tmp_path):
        with patch("bot_logging.logger_manager._LOG_DIR", str(tmp_path)):
            logger = setup_module_logger("test_level", "level.log", level=logging.DEBUG)
        try:
            assert logger.level == logging.DEBUG
            assert (tmp_path / "level.log").exists()
        finally:
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()


class TestTradeEvents:
    def test_record_shape(self, capture_logger):
        logger, stream = capture_logger
        with patch("bot_logging.logger_manager.get_trade_event_logger", return_value=logger):
            log_trade_event(
                "ENTRY",
                "BTCUSDT",
                "paper_trader",
                {"position_id": 1, "price": Decimal("116"), "force": Decimal("7.43")},
            )

        entry = json.loads(stream.getvalue())
        assert entry["message"] == "ENTRY BTCUSDT"
        assert entry["event_type"] == "ENTRY"
        assert entry["source_module"] == "paper_trader"
        assert entry["data"] == {"position_id": 1, "price": "116", "force": "7.43"}
