"""
Hijack force computation for Hijack Force Bot.

Turns per-ticker windows of trade observations into a scalar momentum
anomaly score ("hijack force") and a ranked leaderboard.

    accel[i] = v[i+1] - 2*v[i] + v[i-1]        (central difference, h = 1)
    force    = |accel[-1]| * log10(volume)      if volume > 1, else 0

The step is one sample, not wall-clock time: readings are sensitive to the
tick rate and the trading thresholds are tuned against that.

Multi-timeframe readings (1m / 5m / 15m) reuse the same difference but
weight by the window's average volume and classify the trend.

Usage:
    from core.force_engine import ForceEngine, compute_reading

    engine = ForceEngine(trade_store)
    leaderboard = await engine.scan()
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import (
    DEFAULT_HIJACK_THRESHOLD,
    DEFAULT_MAX_POINTS_PER_TICKER,
    DEFAULT_SCAN_WINDOW_SECONDS,
    MIN_FORCE_POINTS,
    SECONDS_PER_MINUTE,
    TIMEFRAME_MINUTES,
    TIMEFRAME_WINDOW_MULTIPLIER,
    TREND_EPSILON,
)
from shared.types import (
    ForceReading,
    MultiTimeframeForce,
    Observation,
    TimeframeForce,
    Trend,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from core.trade_store import TradeStore

_ZERO = Decimal("0")
_ONE = Decimal("1")


# ---------------------------------------------------------------------------
# Pure computation
# ---------------------------------------------------------------------------


def acceleration_series(values: Sequence[Decimal]) -> list[Decimal]:
    """
    Central finite-difference second derivative with unit step.

    Returns n-2 values for n inputs, or an empty list for fewer than 3.
    """
    if len(values) < MIN_FORCE_POINTS:
        return []
    return [values[i + 1] - 2 * values[i] + values[i - 1] for i in range(1, len(values) - 1)]


def compute_force(acceleration: Decimal, volume: Decimal) -> Decimal:
    """Scale |acceleration| by log10(volume); volume <= 1 yields zero force."""
    if volume <= _ONE:
        return _ZERO
    return abs(acceleration) * volume.log10()


def compute_reading(
    ticker: str,
    observations: Sequence[Observation],
    hijack_threshold: Decimal = DEFAULT_HIJACK_THRESHOLD,
) -> ForceReading | None:
    """Force reading for one ticker's time-ordered window, or None if too short."""
    accelerations = acceleration_series([o.value for o in observations])
    if not accelerations:
        return None

    latest = observations[-1]
    current = accelerations[-1]
    force = compute_force(current, latest.volume)
    return ForceReading(
        ticker=ticker,
        hijack_force=force,
        latest_value=latest.value,
        latest_volume=latest.volume,
        acceleration=current,
        is_hijacking=force > hijack_threshold,
    )


def build_leaderboard(
    windows: Mapping[str, Sequence[Observation]],
    hijack_threshold: Decimal = DEFAULT_HIJACK_THRESHOLD,
) -> list[ForceReading]:
    """One reading per ticker with enough data, strongest force first."""
    readings = []
    for ticker, observations in windows.items():
        reading = compute_reading(ticker, observations, hijack_threshold)
        if reading is not None:
            readings.append(reading)
    readings.sort(key=lambda r: r.hijack_force, reverse=True)
    return readings


def classify_trend(acceleration: Decimal) -> Trend:
    if acceleration > TREND_EPSILON:
        return Trend.UP
    if acceleration < -TREND_EPSILON:
        return Trend.DOWN
    return Trend.FLAT


def compute_timeframe_force(
    timeframe: str, observations: Sequence[Observation]
) -> TimeframeForce:
    """Force over one timeframe window using the window's average volume."""
    accelerations = acceleration_series([o.value for o in observations])
    if not accelerations:
        return TimeframeForce(timeframe=timeframe, force=_ZERO, acceleration=_ZERO, trend=Trend.FLAT)

    current = accelerations[-1]
    avg_volume = sum((o.volume for o in observations), _ZERO) / Decimal(len(observations))
    return TimeframeForce(
        timeframe=timeframe,
        force=compute_force(current, avg_volume),
        acceleration=current,
        trend=classify_trend(current),
    )


def has_confluence(frames: Sequence[TimeframeForce]) -> bool:
    """True when every timeframe agrees on a non-flat trend."""
    if not frames:
        return False
    first = frames[0].trend
    return first != Trend.FLAT and all(f.trend == first for f in frames)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ForceEngine:
    """
    Computes the force leaderboard from the trade store's trailing window.

    The last leaderboard is kept so other components can look a ticker up
    without rescanning.
    """

    def __init__(self, trade_store: TradeStore) -> None:
        self._store = trade_store

        force_cfg = get_config().get_signals_config().get("force", {})
        self._hijack_threshold = Decimal(
            str(force_cfg.get("hijack_threshold", DEFAULT_HIJACK_THRESHOLD))
        )
        self._window_seconds: int = force_cfg.get("window_seconds", DEFAULT_SCAN_WINDOW_SECONDS)
        self._max_points: int = force_cfg.get(
            "max_points_per_ticker", DEFAULT_MAX_POINTS_PER_TICKER
        )

        self._last_leaderboard: list[ForceReading] = []

        self._logger = setup_module_logger(
            "force_engine", "force_engine.log", module_folder="Force_Engine_Logs"
        )

    @property
    def hijack_threshold(self) -> Decimal:
        return self._hijack_threshold

    @property
    def last_leaderboard(self) -> list[ForceReading]:
        return list(self._last_leaderboard)

    async def scan(self) -> list[ForceReading]:
        """Recompute the leaderboard; store failures degrade to an empty board."""
        try:
            windows = await self._store.get_windows(self._window_seconds, self._max_points)
        except Exception as exc:
            self._logger.error("Observation window query failed: %s", exc)
            self._last_leaderboard = []
            return []

        leaderboard = build_leaderboard(windows, self._hijack_threshold)
        self._last_leaderboard = leaderboard

        hijacking = [r.ticker for r in leaderboard if r.is_hijacking]
        self._logger.debug(
            "Scan complete: tickers=%d readings=%d hijacking=%s",
            len(windows),
            len(leaderboard),
            hijacking,
        )
        return leaderboard

    def reading_for(self, ticker: str) -> ForceReading | None:
        for reading in self._last_leaderboard:
            if reading.ticker == ticker:
                return reading
        return None

    async def multi_timeframe(self, ticker: str, now: float | None = None) -> MultiTimeframeForce:
        """Force and trend over 1m/5m/15m windows (window = minutes x 3)."""
        now = time.time() if now is None else now
        frames = []
        for timeframe, minutes in TIMEFRAME_MINUTES.items():
            window_seconds = minutes * TIMEFRAME_WINDOW_MULTIPLIER * SECONDS_PER_MINUTE
            try:
                observations = await self._store.get_recent(
                    ticker, max_age_seconds=window_seconds, now=now
                )
            except Exception as exc:
                self._logger.warning("Timeframe %s query failed for %s: %s", timeframe, ticker, exc)
                observations = []
            frames.append(compute_timeframe_force(timeframe, observations))

        return MultiTimeframeForce(ticker=ticker, frames=frames, confluence=has_confluence(frames))
