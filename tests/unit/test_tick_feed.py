"""
Unit tests for data/tick_feed.py.

Tests verify:
- Trade message parsing (quote filter, ticker mapping, price validation)
- Millisecond timestamps converted to seconds, fallback to receive time
- Parsed ticks recorded in the trade store
"""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from data.tick_feed import parse_trade


def _d(v) -> Decimal:
    return Decimal(str(v))


def _trade(**overrides) -> str:
    trade = {
        "exchange": "binance",
        "base": "bitcoin",
        "quote": "tether",
        "direction": "buy",
        "price": 90000.5,
        "volume": 0.25,
        "timestamp": 1_700_000_000_000,
    }
    trade.update(overrides)
    return json.dumps(trade)


def _make_feed(store, feeds_config=None):
    with (
        patch("data.tick_feed.get_config") as mock_cfg,
        patch("data.tick_feed.setup_module_logger") as mock_logger,
    ):
        mock_loader = MagicMock()
        mock_loader.get_feeds_config.return_value = feeds_config or {}
        mock_loader.get_timing_config.return_value = {"tick_feed": {"reconnect_delay_seconds": 0}}
        mock_cfg.return_value = mock_loader
        mock_logger.return_value = MagicMock()

        from data.tick_feed import TickFeed

        return TickFeed(store)


# ---------------------------------------------------------------------------
# parse_trade
# ---------------------------------------------------------------------------


class TestParseTrade:
    def test_mapped_trade(self):
        observation = parse_trade(_trade())
        assert observation.ticker == "BTCUSDT"
        assert observation.value == _d("90000.5")
        assert observation.volume == _d("0.25")
        assert observation.time == 1_700_000_000.0

    def test_bytes_message(self):
        assert parse_trade(_trade(base="ethereum").encode()).ticker == "ETHUSDT"

    def test_missing_timestamp_uses_now(self):
        observation = parse_trade(_trade(timestamp=None), now=123.0)
        assert observation.time == 123.0

    def test_missing_volume_is_zero(self):
        message = json.dumps({"base": "solana", "quote": "tether", "price": 150})
        assert parse_trade(message, now=1.0).volume == _d(0)

    @pytest.mark.parametrize(
        "message",
        [
            "not json",
            "[1, 2, 3]",
            _trade(quote="bitcoin"),
            _trade(base="cardano"),
            _trade(price="abc"),
            _trade(price=0),
            _trade(price=-1),
            json.dumps({"base": "bitcoin", "quote": "tether"}),
        ],
    )
    def test_rejected(self, message):
        assert parse_trade(message) is None

    def test_custom_map_and_quote(self):
        message = _trade(base="litecoin", quote="usd-coin")
        observation = parse_trade(message, {"litecoin": "LTCUSDC"}, quote="usd-coin")
        assert observation.ticker == "LTCUSDC"


# ---------------------------------------------------------------------------
# TickFeed
# ---------------------------------------------------------------------------


class TestTickFeed:
    async def test_records_observation(self):
        store = MagicMock()
        store.record_observation = AsyncMock()
        feed = _make_feed(store)

        observation = await feed.handle_message(_trade())

        store.record_observation.assert_awaited_once_with(observation)
        assert feed.received == 1

    async def test_skips_unmapped(self):
        store = MagicMock()
        store.record_observation = AsyncMock()
        feed = _make_feed(store)

        assert await feed.handle_message(_trade(base="cardano")) is None
        store.record_observation.assert_not_awaited()
        assert feed.received == 0

    async def test_configured_ticker_map(self):
        store = MagicMock()
        store.record_observation = AsyncMock()
        feed = _make_feed(store, {"tick_feed": {"ticker_map": {"cardano": "ADAUSDT"}}})

        observation = await feed.handle_message(_trade(base="cardano", price=0.35))
        assert observation.ticker == "ADAUSDT"
        assert await feed.handle_message(_trade()) is None
