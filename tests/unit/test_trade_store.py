"""
Unit tests for core/trade_store.py.

Tests verify:
- Observation windows: trailing age, per-ticker cap, oldest-first order
- Position lifecycle: insert, close-once semantics, profit calculation
- Archive writes for hijack events and fused signals
- Aggregate statistics and daily P&L buckets
- Closed-store errors

Uses a real temporary SQLite database.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from shared.types import (
    FusionMode,
    HijackEvent,
    HijackEventType,
    Observation,
    PositionStatus,
    SignalPolarity,
    SignalVote,
    TradeDirection,
    TradeSignal,
)

NOW = 1_700_000_000.0


def _d(v) -> Decimal:
    return Decimal(str(v))


@pytest.fixture
def store(tmp_db_path):
    with patch("core.trade_store.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()

        from core.trade_store import TradeStore

        trade_store = TradeStore(tmp_db_path)
    yield trade_store
    trade_store.close()


async def _record(store, ticker, value, time, volume=10):
    await store.record_observation(
        Observation(ticker=ticker, value=_d(value), volume=_d(volume), time=time)
    )


# ---------------------------------------------------------------------------
# Observations
# ---------------------------------------------------------------------------


class TestObservations:
    async def test_windows_trailing_and_ordered(self, store):
        await _record(store, "BTCUSDT", 99, NOW - 500)  # outside 180s window
        for i, value in enumerate([100, 101, 103]):
            await _record(store, "BTCUSDT", value, NOW - 30 + i)
        await _record(store, "ETHUSDT", 2000, NOW - 10)

        windows = await store.get_windows(180, 50, now=NOW)

        assert set(windows) == {"BTCUSDT", "ETHUSDT"}
        assert [o.value for o in windows["BTCUSDT"]] == [_d(100), _d(101), _d(103)]
        assert isinstance(windows["ETHUSDT"][0].value, Decimal)

    async def test_observations_between_range_and_tickers(self, store):
        await _record(store, "BTCUSDT", 99, NOW - 500)
        await _record(store, "ETHUSDT", 2000, NOW - 20)
        await _record(store, "BTCUSDT", 100, NOW - 30)
        await _record(store, "SOLUSDT", 50, NOW)
        await _record(store, "BTCUSDT", 101, NOW + 500)

        history = await store.get_observations_between(NOW - 60, NOW)
        assert [(o.ticker, o.value) for o in history] == [
            ("BTCUSDT", _d(100)),
            ("ETHUSDT", _d(2000)),
            ("SOLUSDT", _d(50)),
        ]

        filtered = await store.get_observations_between(NOW - 60, NOW, ["ETHUSDT", "SOLUSDT"])
        assert [o.ticker for o in filtered] == ["ETHUSDT", "SOLUSDT"]

    async def test_windows_keep_most_recent_points(self, store):
        for i in range(10):
            await _record(store, "BTCUSDT", 100 + i, NOW - 10 + i)

        windows = await store.get_windows(180, 3, now=NOW)
        assert [o.value for o in windows["BTCUSDT"]] == [_d(107), _d(108), _d(109)]

    async def test_get_recent_filters(self, store):
        for i in range(5):
            await _record(store, "SOLUSDT", 10 + i, NOW - 100 + i * 20)

        assert len(await store.get_recent("SOLUSDT", now=NOW)) == 5
        recent = await store.get_recent("SOLUSDT", limit=2, now=NOW)
        assert [o.value for o in recent] == [_d(13), _d(14)]
        aged = await store.get_recent("SOLUSDT", max_age_seconds=50, now=NOW)
        assert [o.value for o in aged] == [_d(13), _d(14)]

    async def test_latest_price_and_prune(self, store):
        assert await store.get_latest_price("BTCUSDT") is None
        await _record(store, "BTCUSDT", 100, NOW - 7200)
        await _record(store, "BTCUSDT", 116, NOW)

        assert await store.get_latest_price("BTCUSDT") == _d(116)
        assert await store.prune_observations(3600, now=NOW) == 1
        assert len(await store.get_recent("BTCUSDT", now=NOW)) == 1


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


class TestPositions:
    async def test_insert_and_close(self, store):
        position = await store.insert_position(
            "BTCUSDT", _d(116), _d(1000) / _d(116), _d("7.43"), opened_at=NOW
        )
        assert position.status == PositionStatus.OPEN
        assert await store.count_open_positions() == 1
        assert (await store.get_open_position("BTCUSDT")).id == position.id

        closed = await store.close_position(position.id, _d("119.48"), "TAKE_PROFIT", closed_at=NOW + 60)

        assert closed is not None
        assert closed.status == PositionStatus.CLOSED
        assert closed.exit_reason == "TAKE_PROFIT"
        assert closed.profit.quantize(_d("0.01")) == _d("30.00")
        assert await store.get_open_position("BTCUSDT") is None
        assert await store.count_open_positions() == 0

    async def test_close_twice_returns_none(self, store):
        position = await store.insert_position("ETHUSDT", _d(2000), _d("0.5"), _d(1))
        assert await store.close_position(position.id, _d(1900), "STOP_LOSS") is not None
        assert await store.close_position(position.id, _d(1800), "STOP_LOSS") is None

        history = await store.get_position_history()
        assert len(history) == 1
        assert history[0].exit_price == _d(1900)
        assert history[0].profit == _d(-50)

    async def test_close_unknown_position(self, store):
        assert await store.close_position(999, _d(1), "STOP_LOSS") is None

    async def test_decimal_precision_preserved(self, store):
        quantity = _d(1000) / _d(3)
        position = await store.insert_position("PEPEUSDT", _d("0.00000123"), quantity, _d(0))
        [reloaded] = await store.get_open_positions()
        assert reloaded.id == position.id
        assert reloaded.entry_price == _d("0.00000123")
        assert reloaded.quantity == quantity

    async def test_closed_store_raises(self, store):
        from core.trade_store import TradeStoreError

        store.close()
        with pytest.raises(TradeStoreError):
            await store.insert_position("BTCUSDT", _d(1), _d(1), _d(1))


# ---------------------------------------------------------------------------
# Archives
# ---------------------------------------------------------------------------


class TestArchives:
    async def test_archive_event(self, store):
        event = HijackEvent(
            ticker="BTCUSDT",
            price=_d(116),
            force=_d("7.43"),
            narrative_score=2,
            event_type=HijackEventType.ENTRY,
            recorded_at=NOW,
        )
        assert await store.archive_event(event) is True
        assert await store.get_recent_events() == [event]

    async def test_archive_signal_serializes_votes(self, store):
        signal = TradeSignal(
            ticker="BTCUSDT",
            direction=TradeDirection.LONG,
            confidence=57,
            alignment_score=85,
            signals=[
                SignalVote(
                    source="Momentum Predictor",
                    signal=SignalPolarity.BULLISH,
                    value="57% conf, UP",
                    weight=_d(30),
                )
            ],
            price=_d(116),
            timestamp=NOW,
            mode=FusionMode.PRIMARY,
        )
        assert await store.archive_signal(signal, executed=True) is True

        [row] = await store.get_recent_signals()
        assert row["ticker"] == "BTCUSDT"
        assert row["executed"] is True
        assert row["mode"] == "PRIMARY"
        assert row["signals"][0]["source"] == "Momentum Predictor"

    async def test_archive_after_close_returns_false(self, store):
        store.close()
        event = HijackEvent("BTCUSDT", _d(1), _d(1), 0, HijackEventType.ENTRY, NOW)
        assert await store.archive_event(event) is False


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class TestStats:
    async def _closed(self, store, ticker, entry, exit_price, closed_at):
        position = await store.insert_position(ticker, _d(entry), _d(1), _d(1), opened_at=closed_at - 60)
        await store.close_position(position.id, _d(exit_price), "TEST", closed_at=closed_at)

    async def test_empty_stats(self, store):
        stats = await store.get_stats()
        assert stats.total_trades == 0
        assert stats.win_rate == _d(0)

    async def test_stats(self, store):
        await self._closed(store, "BTCUSDT", 100, 110, NOW)
        await self._closed(store, "ETHUSDT", 100, 95, NOW)
        await self._closed(store, "SOLUSDT", 100, 101, NOW)
        await store.insert_position("DOGEUSDT", _d(1), _d(1), _d(1))

        stats = await store.get_stats()

        assert stats.total_trades == 3
        assert stats.wins == 2
        assert stats.losses == 1
        assert stats.win_rate == _d("66.7")
        assert stats.total_pnl_usd == _d("6.00")
        assert stats.avg_pnl_usd == _d("2.00")
        assert stats.open_positions == 1

    async def test_pnl_history_buckets_by_utc_day(self, store):
        day_one = datetime(2026, 1, 10, 12, tzinfo=timezone.utc).timestamp()
        day_two = datetime(2026, 1, 11, 1, tzinfo=timezone.utc).timestamp()
        await self._closed(store, "BTCUSDT", 100, 110, day_one)
        await self._closed(store, "ETHUSDT", 100, 97, day_one + 60)
        await self._closed(store, "SOLUSDT", 100, 104, day_two)
        await store.insert_position("DOGEUSDT", _d(1), _d(1), _d(1), opened_at=day_one)

        history = await store.get_pnl_history()

        assert [(b.day, b.daily_pnl, b.trades) for b in history] == [
            ("2026-01-10", _d(7), 2),
            ("2026-01-11", _d(4), 1),
        ]

    async def test_pnl_history_keeps_last_30_active_days(self, store):
        """Sparse trading: quiet gaps are skipped, the oldest active days drop off."""
        start = datetime(2025, 1, 1, 12, tzinfo=timezone.utc).timestamp()
        # one close every third day: 35 active days spread over ~105 calendar days
        for i in range(35):
            await self._closed(store, "BTCUSDT", 100, 101, start + i * 3 * 86400)

        history = await store.get_pnl_history()

        assert len(history) == 30
        first = datetime.fromtimestamp(start + 5 * 3 * 86400, tz=timezone.utc)
        last = datetime.fromtimestamp(start + 34 * 3 * 86400, tz=timezone.utc)
        assert history[0].day == first.strftime("%Y-%m-%d")
        assert history[-1].day == last.strftime("%Y-%m-%d")
        assert all(b.trades == 1 and b.daily_pnl == _d(1) for b in history)

    async def test_pnl_history_includes_old_active_days(self, store):
        old = datetime(2024, 6, 1, 12, tzinfo=timezone.utc).timestamp()
        await self._closed(store, "BTCUSDT", 100, 150, old)

        [bucket] = await store.get_pnl_history()
        assert (bucket.day, bucket.daily_pnl) == ("2024-06-01", _d(50))
