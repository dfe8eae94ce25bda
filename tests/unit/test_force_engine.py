"""
Unit tests for core/force_engine.py.

Tests verify:
- Central-difference acceleration with unit step
- log10 volume scaling and the volume <= 1 cutoff
- Leaderboard ordering and short-window exclusion
- Multi-timeframe trend classification and confluence
- Store failures degrading to an empty leaderboard
"""

from __future__ import annotations

import math
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.force_engine import (
    acceleration_series,
    build_leaderboard,
    classify_trend,
    compute_force,
    compute_reading,
    compute_timeframe_force,
    has_confluence,
)
from shared.types import Observation, TimeframeForce, Trend


def _d(v) -> Decimal:
    return Decimal(str(v))


def make_observations(ticker, points, start=1_700_000_000.0, step=1.0):
    return [
        Observation(ticker=ticker, value=_d(v), volume=_d(vol), time=start + i * step)
        for i, (v, vol) in enumerate(points)
    ]


# accelerations [1, 3, 3], force = 3 * log10(300)
BTC_HIJACK_POINTS = [(100, 50), (101, 60), (103, 80), (108, 150), (116, 300)]

# ---------------------------------------------------------------------------
# Pure computation
# ---------------------------------------------------------------------------


class TestAccelerationSeries:
    def test_btc_window(self):
        values = [_d(v) for v, _ in BTC_HIJACK_POINTS]
        assert acceleration_series(values) == [_d(1), _d(3), _d(3)]

    def test_fewer_than_three_points(self):
        assert acceleration_series([_d(1), _d(2)]) == []

    def test_linear_series_has_zero_acceleration(self):
        assert acceleration_series([_d(1), _d(2), _d(3), _d(4)]) == [_d(0), _d(0)]


class TestComputeForce:
    def test_log10_volume_scaling(self):
        force = compute_force(_d(3), _d(300))
        assert float(force) == pytest.approx(3 * math.log10(300))

    def test_negative_acceleration_uses_magnitude(self):
        assert compute_force(_d(-2), _d(100)) == _d(4)

    def test_volume_at_or_below_one_is_zero(self):
        assert compute_force(_d(5), _d(1)) == Decimal("0")
        assert compute_force(_d(5), _d("0.5")) == Decimal("0")


class TestComputeReading:
    def test_btc_hijack_reading(self):
        obs = make_observations("BTCUSDT", BTC_HIJACK_POINTS)
        reading = compute_reading("BTCUSDT", obs)

        assert reading is not None
        assert reading.acceleration == _d(3)
        assert reading.latest_value == _d(116)
        assert reading.latest_volume == _d(300)
        assert float(reading.hijack_force) == pytest.approx(7.4314, abs=1e-3)
        assert reading.is_hijacking is True

    def test_short_window_returns_none(self):
        obs = make_observations("ETHUSDT", [(1, 10), (2, 10)])
        assert compute_reading("ETHUSDT", obs) is None

    def test_flat_price_not_hijacking(self):
        obs = make_observations("SOLUSDT", [(10, 50), (10, 50), (10, 50)])
        reading = compute_reading("SOLUSDT", obs)
        assert reading is not None
        assert reading.hijack_force == Decimal("0")
        assert reading.is_hijacking is False


class TestBuildLeaderboard:
    def test_sorted_by_force_descending(self):
        windows = {
            "ETHUSDT": make_observations("ETHUSDT", [(10, 100), (11, 100), (13, 100)]),
            "BTCUSDT": make_observations("BTCUSDT", BTC_HIJACK_POINTS),
            "DOGEUSDT": make_observations("DOGEUSDT", [(1, 5)]),
        }
        board = build_leaderboard(windows)
        assert [r.ticker for r in board] == ["BTCUSDT", "ETHUSDT"]
        assert board[0].hijack_force > board[1].hijack_force

    def test_empty_windows(self):
        assert build_leaderboard({}) == []


class TestTimeframes:
    def test_classify_trend(self):
        assert classify_trend(_d("0.01")) == Trend.UP
        assert classify_trend(_d("-0.01")) == Trend.DOWN
        assert classify_trend(_d("0.0005")) == Trend.FLAT

    def test_timeframe_uses_average_volume(self):
        obs = make_observations("BTCUSDT", [(100, 10), (101, 100), (103, 1000)])
        frame = compute_timeframe_force("1m", obs)
        assert frame.acceleration == _d(1)
        assert frame.force == _d(370).log10()
        assert frame.trend == Trend.UP

    def test_empty_timeframe_is_flat(self):
        frame = compute_timeframe_force("15m", [])
        assert frame.force == Decimal("0")
        assert frame.trend == Trend.FLAT

    def test_confluence(self):
        up = TimeframeForce("1m", _d(1), _d(1), Trend.UP)
        down = TimeframeForce("5m", _d(1), _d(-1), Trend.DOWN)
        flat = TimeframeForce("1m", _d(0), _d(0), Trend.FLAT)
        assert has_confluence([up, up, up]) is True
        assert has_confluence([up, down, up]) is False
        assert has_confluence([flat, flat, flat]) is False
        assert has_confluence([]) is False


# ---------------------------------------------------------------------------
# ForceEngine
# ---------------------------------------------------------------------------


def _make_engine(store, signals_config=None):
    with (
        patch("core.force_engine.get_config") as mock_cfg,
        patch("core.force_engine.setup_module_logger") as mock_logger,
    ):
        mock_loader = MagicMock()
        mock_loader.get_signals_config.return_value = signals_config or {
            "force": {"hijack_threshold": "0.05", "window_seconds": 180, "max_points_per_ticker": 50}
        }
        mock_cfg.return_value = mock_loader
        mock_logger.return_value = MagicMock()

        from core.force_engine import ForceEngine

        return ForceEngine(store)


class TestForceEngine:
    async def test_scan_builds_leaderboard(self):
        store = MagicMock()
        store.get_windows = AsyncMock(
            return_value={"BTCUSDT": make_observations("BTCUSDT", BTC_HIJACK_POINTS)}
        )
        engine = _make_engine(store)

        board = await engine.scan()

        store.get_windows.assert_awaited_once_with(180, 50)
        assert len(board) == 1
        assert engine.reading_for("BTCUSDT") is board[0]
        assert engine.reading_for("ETHUSDT") is None

    async def test_scan_failure_returns_empty(self):
        store = MagicMock()
        store.get_windows = AsyncMock(side_effect=RuntimeError("db locked"))
        engine = _make_engine(store)

        assert await engine.scan() == []
        assert engine.last_leaderboard == []

    async def test_configured_threshold(self):
        store = MagicMock()
        store.get_windows = AsyncMock(
            return_value={"BTCUSDT": make_observations("BTCUSDT", BTC_HIJACK_POINTS)}
        )
        engine = _make_engine(
            store, {"force": {"hijack_threshold": "10", "window_seconds": 60}}
        )
        board = await engine.scan()
        assert engine.hijack_threshold == _d(10)
        assert board[0].is_hijacking is False

    async def test_multi_timeframe_windows(self):
        store = MagicMock()
        rising = make_observations("BTCUSDT", [(100, 50), (101, 50), (103, 50), (106, 50)])
        store.get_recent = AsyncMock(return_value=rising)
        engine = _make_engine(store)

        result = await engine.multi_timeframe("BTCUSDT", now=1_700_000_000.0)

        assert [f.timeframe for f in result.frames] == ["1m", "5m", "15m"]
        assert result.confluence is True
        ages = [c.kwargs["max_age_seconds"] for c in store.get_recent.await_args_list]
        assert ages == [180, 900, 2700]

    async def test_multi_timeframe_query_failure_is_flat(self):
        store = MagicMock()
        store.get_recent = AsyncMock(side_effect=RuntimeError("boom"))
        engine = _make_engine(store)

        result = await engine.multi_timeframe("BTCUSDT")
        assert all(f.trend == Trend.FLAT for f in result.frames)
        assert result.confluence is False
