"""
Unit tests for core/backtest.py.

Tests verify:
- Replay opens on force above the entry threshold and applies the live
  exit rules (take profit, stop loss, momentum died)
- Per-ticker histories stay separate when ticks interleave
- Positions left open at the end are reported, not counted
- Summary metrics (win rate, P&L, profit factor, drawdown) and equity curve
- Store-backed runs: time range, ticker filter, runtime config default
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from core.backtest import equity_curve, replay, summarize
from shared.types import BacktestSummary, Observation, RuntimeConfig

NOW = 1_700_000_000.0  # 2023-11-14 UTC


def _d(v) -> Decimal:
    return Decimal(str(v))


def _ticks(ticker, points, start=NOW, step=1.0):
    return [
        Observation(ticker, _d(value), _d(volume), start + i * step)
        for i, (value, volume) in enumerate(points)
    ]


# Quiet build-up (volume 1 carries no force), a hijack tick at 116, then a
# quiet tick at 120 that clears the 3% take profit.
BTC_POINTS = [(100, 1), (101, 1), (103, 1), (108, 1), (116, 300), (120, 1)]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_db_path):
    with patch("core.trade_store.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()

        from core.trade_store import TradeStore

        trade_store = TradeStore(tmp_db_path)
    yield trade_store
    trade_store.close()


def _make_backtester(store, risk=None):
    with patch("core.backtest.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()

        from core.backtest import Backtester

        return Backtester(store, risk)


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------


class TestReplay:
    def test_hijack_entry_then_take_profit(self):
        trades, open_at_end = replay(_ticks("BTCUSDT", BTC_POINTS), RuntimeConfig())

        assert open_at_end == []
        [trade] = trades
        assert trade.exit_reason == "TAKE_PROFIT"
        assert (trade.entry_price, trade.exit_price) == (_d(116), _d(120))
        assert (trade.entry_time, trade.exit_time) == (NOW + 4, NOW + 5)
        assert trade.force_at_entry == _d(3) * _d(300).log10()
        assert trade.pnl_usd.quantize(_d("0.01")) == _d("34.48")
        assert trade.pnl_percent > _d(3)

    def test_quiet_ticks_never_enter(self):
        points = [(100, 1), (101, 1), (103, 1), (108, 1)]
        assert replay(_ticks("BTCUSDT", points), RuntimeConfig()) == ([], [])

    def test_fewer_than_three_points_no_reading(self):
        points = [(100, 1000), (150, 1000)]
        assert replay(_ticks("BTCUSDT", points), RuntimeConfig()) == ([], [])

    def test_interleaved_tickers_stop_loss_and_momentum_died(self):
        eth = _ticks("ETHUSDT", [(100, 1), (100, 1), (102, 100), (99.5, 1)], start=NOW, step=2)
        sol = _ticks(
            "SOLUSDT", [(100, 1), (100, 1), (102, 100), (102.5, 100), (103, 1)], start=NOW + 1, step=2
        )
        observations = sorted(eth + sol, key=lambda o: o.time)

        trades, open_at_end = replay(observations, RuntimeConfig())

        assert open_at_end == []
        assert [(t.ticker, t.exit_reason) for t in trades] == [
            ("ETHUSDT", "STOP_LOSS"),
            ("SOLUSDT", "MOMENTUM_DIED"),
        ]
        assert trades[0].pnl_usd.quantize(_d("0.01")) == _d("-24.51")
        assert trades[1].pnl_usd.quantize(_d("0.01")) == _d("9.80")

    def test_open_position_reported_at_end(self):
        trades, open_at_end = replay(
            _ticks("BTCUSDT", [(100, 1), (100, 1), (102, 100)]), RuntimeConfig()
        )
        assert trades == []
        assert open_at_end == ["BTCUSDT"]

    def test_entry_threshold_from_config(self):
        config = RuntimeConfig(entry_threshold=_d(10))
        assert replay(_ticks("BTCUSDT", BTC_POINTS), config) == ([], [])

    def test_trade_size_scales_pnl(self):
        trades, _ = replay(_ticks("BTCUSDT", BTC_POINTS), RuntimeConfig(trade_size_usd=_d(116)))
        assert trades[0].pnl_usd == _d(4)


# ---------------------------------------------------------------------------
# Summary and equity curve
# ---------------------------------------------------------------------------


class TestSummary:
    def _trades(self):
        eth = _ticks("ETHUSDT", [(100, 1), (100, 1), (102, 100), (99.5, 1)], start=NOW, step=2)
        sol = _ticks(
            "SOLUSDT", [(100, 1), (100, 1), (102, 100), (102.5, 100), (103, 1)], start=NOW + 1, step=2
        )
        trades, _ = replay(sorted(eth + sol, key=lambda o: o.time), RuntimeConfig())
        return trades

    def test_empty(self):
        assert summarize([], _d(1000)) == BacktestSummary()
        assert equity_curve([], _d(1000)) == []

    def test_single_win(self):
        trades, _ = replay(_ticks("BTCUSDT", BTC_POINTS), RuntimeConfig())
        summary = summarize(trades, _d(1000))

        assert (summary.total_trades, summary.wins, summary.losses) == (1, 1, 0)
        assert summary.win_rate == _d("100.0")
        assert summary.total_pnl_usd == _d("34.48")
        assert summary.profit_factor == Decimal("Infinity")
        assert summary.sharpe_ratio == _d(0)
        assert summary.max_drawdown_percent == _d(0)

    def test_mixed_results(self):
        summary = summarize(self._trades(), _d(1000))

        assert (summary.total_trades, summary.wins, summary.losses) == (2, 1, 1)
        assert summary.win_rate == _d("50.0")
        assert summary.total_pnl_usd == _d("-14.71")
        assert summary.avg_pnl_usd == _d("-7.35")
        assert summary.max_win_usd == _d("9.80")
        assert summary.max_loss_usd == _d("-24.51")
        assert summary.profit_factor == _d("0.40")
        assert summary.sharpe_ratio < 0
        assert summary.max_drawdown_percent == _d("2.45")

    def test_equity_curve(self):
        points = equity_curve(self._trades(), _d(1000))
        assert [(p.day, p.value) for p in points] == [
            ("2023-11-14", _d("975.49")),
            ("2023-11-14", _d("985.29")),
        ]


# ---------------------------------------------------------------------------
# Store-backed runs
# ---------------------------------------------------------------------------


class TestBacktester:
    async def _seed(self, store):
        for obs in _ticks("BTCUSDT", BTC_POINTS):
            await store.record_observation(obs)
        for obs in _ticks("ETHUSDT", [(100, 1), (100, 1), (102, 100)], start=NOW + 0.5):
            await store.record_observation(obs)
        await store.record_observation(Observation("BTCUSDT", _d(50), _d(1), NOW - 7200))

    async def test_run_over_range(self, store):
        await self._seed(store)
        backtester = _make_backtester(store)

        result = await backtester.run(NOW - 60, NOW + 60)

        assert [t.ticker for t in result.trades] == ["BTCUSDT"]
        assert result.open_at_end == ["ETHUSDT"]
        assert result.summary.total_trades == 1
        assert result.config == RuntimeConfig()
        assert result.equity[0].value == _d("1034.48")

    async def test_ticker_filter(self, store):
        await self._seed(store)
        result = await _make_backtester(store).run(NOW - 60, NOW + 60, tickers=["ETHUSDT"])
        assert result.trades == []
        assert result.open_at_end == ["ETHUSDT"]

    async def test_uses_runtime_config_by_default(self, store):
        await self._seed(store)
        risk = MagicMock()
        risk.config = RuntimeConfig(take_profit_percent=_d(10))

        result = await _make_backtester(store, risk).run(NOW - 60, NOW + 60, tickers=["BTCUSDT"])

        [trade] = result.trades
        assert trade.exit_reason == "MOMENTUM_DIED"
        assert result.config.take_profit_percent == _d(10)

    async def test_explicit_config_overrides_runtime(self, store):
        await self._seed(store)
        risk = MagicMock()
        risk.config = RuntimeConfig(take_profit_percent=_d(10))

        result = await _make_backtester(store, risk).run(
            NOW - 60, NOW + 60, tickers=["BTCUSDT"], config=RuntimeConfig()
        )
        assert result.trades[0].exit_reason == "TAKE_PROFIT"

    async def test_quick_uses_trailing_window(self, store):
        await self._seed(store)
        result = await _make_backtester(store).quick(hours=1, now=NOW + 60)

        assert result.start == NOW + 60 - 3600
        assert result.end == NOW + 60
        assert result.summary.total_trades == 1

    async def test_end_before_start_rejected(self, store):
        with pytest.raises(ValueError, match="before start"):
            await _make_backtester(store).run(NOW, NOW - 1)

    async def test_empty_store(self, store):
        result = await _make_backtester(store).run(NOW - 60, NOW + 60)
        assert result.trades == []
        assert result.summary == BacktestSummary()
