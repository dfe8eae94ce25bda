"""
Shared pytest configuration and fixtures for Hijack Force Bot tests.

Provides common helpers used across the unit test suite.
"""

from __future__ import annotations

import os
import tempfile
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

# ---------------------------------------------------------------------------
# Decimal helper
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    """Shorthand Decimal factory."""
    return Decimal(str(v))


# ---------------------------------------------------------------------------
# Standard mock configs (can be overridden per test via fixture params)
# ---------------------------------------------------------------------------

STANDARD_TRADING_CONFIG = {
    "runtime_defaults": {
        "kill_switch": False,
        "paper_trading_enabled": True,
        "live_trading_enabled": False,
        "entry_threshold": "0.08",
        "exit_threshold": "0.01",
        "stop_loss_percent": "-2.0",
        "take_profit_percent": "3.0",
        "trailing_stop_enabled": True,
        "trailing_stop_percent": "1.5",
        "trailing_activation_percent": "1.0",
        "require_narrative": True,
        "max_open_positions": 5,
        "trade_size_usd": "1000",
        "cooldown_minutes": 30,
    },
    "autotrader": {
        "enabled": False,
        "mode": "BALANCED",
        "max_open_positions": 3,
        "position_size_usd": "100",
        "min_confidence": 55,
        "require_sentiment_alignment": True,
        "min_alignment_score": 60,
        "cooldown_minutes": 30,
    },
}

STANDARD_SIGNALS_CONFIG = {
    "force": {"hijack_threshold": "0.05", "window_seconds": 180, "max_points_per_ticker": 50},
    "predictor": {"min_points": 10, "lookback_points": 60, "lookback_seconds": 7200},
    "fusion": {
        "min_sources": 3,
        "primary_weights": {
            "prediction": "30",
            "fear_greed": "20",
            "social": "20",
            "options": "15",
            "onchain": "15",
        },
        "fallback_weights": {"force": "35", "fear_greed": "20", "social": "25", "onchain": "20"},
        "options_tickers": ["BTC", "ETH"],
    },
}


@pytest.fixture
def mock_config_loader():
    """
    Provide a mock ConfigLoader that returns standard configs.

    Usage in tests:
        def test_something(mock_config_loader):
            mock_config_loader.get_trading_config.return_value = {...}
    """
    loader = MagicMock()
    loader.get_app_config.return_value = {
        "storage": {"db_path": "data/hijack.db", "observation_retention_hours": 24},
        "logging": {"log_dir": "logs"},
    }
    loader.get_trading_config.return_value = {
        "runtime_defaults": dict(STANDARD_TRADING_CONFIG["runtime_defaults"]),
        "autotrader": dict(STANDARD_TRADING_CONFIG["autotrader"]),
    }
    loader.get_signals_config.return_value = STANDARD_SIGNALS_CONFIG
    loader.get_timing_config.return_value = {}
    loader.get_feeds_config.return_value = {}
    return loader


# ---------------------------------------------------------------------------
# Temporary SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_db_path():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    if os.path.exists(path):
        os.unlink(path)
