"""
Historical replay of the hijack force strategy for Hijack Force Bot.

Feeds stored observations back through the live force computation and
exit rules, one tick at a time in time order, and reports the simulated
trades with a performance summary and equity curve. Nothing is written
to the paper_trades table.

Per tick, for each ticker:
    1. append to the ticker's history (last 50 points)
    2. compute the force reading (needs 3 points)
    3. an open position is checked against the exit rules first
    4. with no position open, force > entry_threshold opens one

A position still open when the data runs out is not counted as a trade;
its ticker is listed in open_at_end.

Usage:
    from core.backtest import Backtester

    backtester = Backtester(trade_store, risk_controller)
    result = await backtester.quick(hours=24)
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from core.force_engine import compute_reading
from core.paper_trader import evaluate_exit
from shared.constants import (
    BACKTEST_DEFAULT_HOURS,
    BACKTEST_HISTORY_POINTS,
    PERCENT,
    SECONDS_PER_HOUR,
    SHARPE_PERIODS_PER_YEAR,
)
from shared.types import (
    BacktestResult,
    BacktestSummary,
    BacktestTrade,
    EquityPoint,
    Observation,
    Position,
    PositionStatus,
    RuntimeConfig,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from core.risk_controller import RiskController
    from core.trade_store import TradeStore

_ZERO = Decimal("0")
_CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass
class _OpenTrade:
    position: Position
    high_water_mark: Decimal


# ---------------------------------------------------------------------------
# Pure replay and metrics
# ---------------------------------------------------------------------------


def replay(
    observations: Iterable[Observation], config: RuntimeConfig
) -> tuple[list[BacktestTrade], list[str]]:
    """
    Simulate entries and exits over time-ordered observations.

    Returns the closed trades in exit order and the tickers whose position
    was still open after the last observation.
    """
    histories: dict[str, deque[Observation]] = defaultdict(
        lambda: deque(maxlen=BACKTEST_HISTORY_POINTS)
    )
    open_trades: dict[str, _OpenTrade] = {}
    trades: list[BacktestTrade] = []

    for obs in observations:
        history = histories[obs.ticker]
        history.append(obs)
        reading = compute_reading(obs.ticker, list(history))
        if reading is None:
            continue

        price = obs.value
        force = reading.hijack_force

        held = open_trades.get(obs.ticker)
        if held is not None:
            held.high_water_mark = max(held.high_water_mark, price)
            decision = evaluate_exit(held.position, price, force, held.high_water_mark, config)
            if decision is not None:
                position = held.position
                trades.append(
                    BacktestTrade(
                        ticker=obs.ticker,
                        entry_price=position.entry_price,
                        exit_price=price,
                        entry_time=position.opened_at,
                        exit_time=obs.time,
                        force_at_entry=position.force_at_entry,
                        pnl_percent=decision.pnl_percent,
                        pnl_usd=(price - position.entry_price) * position.quantity,
                        exit_reason=decision.reason,
                    )
                )
                del open_trades[obs.ticker]

        if obs.ticker not in open_trades and price > 0 and force > config.entry_threshold:
            open_trades[obs.ticker] = _OpenTrade(
                position=Position(
                    id=0,
                    ticker=obs.ticker,
                    entry_price=price,
                    quantity=config.trade_size_usd / price,
                    status=PositionStatus.OPEN,
                    force_at_entry=force,
                    opened_at=obs.time,
                ),
                high_water_mark=price,
            )

    return trades, sorted(open_trades)


def summarize(trades: Sequence[BacktestTrade], starting_capital: Decimal) -> BacktestSummary:
    """Win/loss counts, P&L aggregates, profit factor, Sharpe and max drawdown."""
    if not trades:
        return BacktestSummary()

    count = Decimal(len(trades))
    pnls = [t.pnl_usd for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]

    total_pnl = sum(pnls, _ZERO)
    gross_profit = sum(wins, _ZERO)
    gross_loss = abs(sum(losses, _ZERO))
    if gross_loss > 0:
        profit_factor = _money(gross_profit / gross_loss)
    elif gross_profit > 0:
        profit_factor = Decimal("Infinity")
    else:
        profit_factor = _ZERO

    # Sharpe on per-trade returns, annualised as if one trade per day
    returns = [t.pnl_percent for t in trades]
    mean = sum(returns, _ZERO) / count
    std_dev = (sum(((r - mean) ** 2 for r in returns), _ZERO) / count).sqrt()
    sharpe = mean / std_dev * Decimal(SHARPE_PERIODS_PER_YEAR).sqrt() if std_dev > 0 else _ZERO

    peak = cumulative = starting_capital
    max_drawdown = _ZERO
    for pnl in pnls:
        cumulative += pnl
        peak = max(peak, cumulative)
        if peak > 0:
            max_drawdown = max(max_drawdown, (peak - cumulative) / peak * PERCENT)

    return BacktestSummary(
        total_trades=len(trades),
        wins=len(wins),
        losses=len(losses),
        win_rate=(Decimal(len(wins)) / count * PERCENT).quantize(
            Decimal("0.1"), rounding=ROUND_HALF_UP
        ),
        total_pnl_usd=_money(total_pnl),
        avg_pnl_usd=_money(total_pnl / count),
        max_win_usd=_money(max(pnls)),
        max_loss_usd=_money(min(pnls)),
        profit_factor=profit_factor,
        sharpe_ratio=_money(sharpe),
        max_drawdown_percent=_money(max_drawdown),
    )


def equity_curve(trades: Sequence[BacktestTrade], starting_capital: Decimal) -> list[EquityPoint]:
    """Running account value after each closed trade, labelled by exit day."""
    points = []
    cumulative = starting_capital
    for trade in trades:
        cumulative += trade.pnl_usd
        day = datetime.fromtimestamp(trade.exit_time, tz=timezone.utc).strftime("%Y-%m-%d")
        points.append(EquityPoint(day=day, value=_money(cumulative)))
    return points


# ---------------------------------------------------------------------------
# Store-backed runner
# ---------------------------------------------------------------------------


class Backtester:
    """Replays stored observations; thresholds default to the live runtime config."""

    def __init__(
        self,
        trade_store: TradeStore,
        risk_controller: RiskController | None = None,
    ) -> None:
        self._store = trade_store
        self._risk = risk_controller
        self._logger = setup_module_logger(
            "backtest", "backtest.log", module_folder="Backtest_Logs"
        )

    def _default_config(self) -> RuntimeConfig:
        return self._risk.config if self._risk is not None else RuntimeConfig()

    async def run(
        self,
        start: float,
        end: float,
        tickers: list[str] | None = None,
        config: RuntimeConfig | None = None,
    ) -> BacktestResult:
        """Replay observations in [start, end], optionally limited to some tickers."""
        if end < start:
            raise ValueError(f"Backtest end {end} is before start {start}")
        config = self._default_config() if config is None else config

        observations = await self._store.get_observations_between(start, end, tickers)
        trades, open_at_end = replay(observations, config)
        summary = summarize(trades, config.trade_size_usd)

        self._logger.info(
            "Backtest %d observations: %d trades, win rate %s%%, P&L $%s, max DD %s%%",
            len(observations),
            summary.total_trades,
            summary.win_rate,
            summary.total_pnl_usd,
            summary.max_drawdown_percent,
        )
        return BacktestResult(
            start=start,
            end=end,
            config=config,
            trades=trades,
            summary=summary,
            equity=equity_curve(trades, config.trade_size_usd),
            open_at_end=open_at_end,
        )

    async def quick(self, hours: int = BACKTEST_DEFAULT_HOURS, now: float | None = None) -> BacktestResult:
        """Backtest the trailing window of stored data with the current config."""
        now = time.time() if now is None else now
        return await self.run(now - hours * SECONDS_PER_HOUR, now)
