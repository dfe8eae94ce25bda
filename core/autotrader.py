"""
Scan loop and automated trading bot for Hijack Force Bot.

Every scan interval (30s) the loop:
    1. checks the PAUSE sentinel and rebuilds the force leaderboard
    2. sends hijack alerts for readings over the hijack threshold
    3. evaluates exits for the positions that were OPEN at cycle start
    4. opens force entries (force > entry threshold, narrative gate)
    5. when the bot is started: fuses high-confidence predictions (PRIMARY)
       or, if none qualify, strong force readings (FALLBACK) with sentiment
       sources and opens aligned LONG signals

Paper positions are long-only: SHORT signals are archived but never opened.
CONSERVATIVE mode additionally rejects SHORT signals outright.

Usage:
    autotrader = AutoTrader(store, engine, predictor, fusion, trader, risk)
    autotrader.start(TradingMode.BALANCED)
    asyncio.create_task(autotrader.run())
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import log_trade_event, setup_module_logger
from config.loader import get_config
from core.trade_store import TradeStoreError
from shared.constants import DEFAULT_SCAN_INTERVAL_SECONDS, PERCENT, SECONDS_PER_HOUR
from shared.types import (
    BotStats,
    FusionMode,
    SignalPolarity,
    TradeDirection,
    TradeSignal,
    TradingMode,
)

if TYPE_CHECKING:
    from core.force_engine import ForceEngine
    from core.paper_trader import PaperTrader
    from core.predictor import MomentumPredictor
    from core.risk_controller import RiskController
    from core.signal_fusion import SignalFusion
    from core.trade_store import TradeStore
    from execution.notifier import TelegramNotifier
    from shared.types import ForceReading, Prediction

_RECENT_SIGNALS_KEPT = 20
_DEFAULT_RETENTION_HOURS = 24


def sentiment_agrees(signal: TradeSignal) -> bool:
    """True when at least one auxiliary (non-primary) vote agrees with the direction."""
    wanted = SignalPolarity.BULLISH if signal.direction == TradeDirection.LONG else SignalPolarity.BEARISH
    return any(v.signal == wanted for v in signal.signals[1:])


class AutoTrader:
    """
    Periodic scan driving paper exits, force entries and fused entries.

    Force entries and exits run whenever the loop runs; fused entries only
    while the bot is started (autotrader settings enabled).
    """

    def __init__(
        self,
        trade_store: TradeStore,
        force_engine: ForceEngine,
        predictor: MomentumPredictor,
        fusion: SignalFusion,
        paper_trader: PaperTrader,
        risk_controller: RiskController,
        notifier: TelegramNotifier | None = None,
    ) -> None:
        self._store = trade_store
        self._engine = force_engine
        self._predictor = predictor
        self._fusion = fusion
        self._trader = paper_trader
        self._risk = risk_controller
        self._notifier = notifier

        cfg = get_config()
        self._scan_interval: float = (
            cfg.get_timing_config().get("autotrader", {}).get("scan_interval_seconds", DEFAULT_SCAN_INTERVAL_SECONDS)
        )
        retention_hours = (
            cfg.get_app_config().get("storage", {}).get("observation_retention_hours", _DEFAULT_RETENTION_HOURS)
        )
        self._retention_seconds = retention_hours * SECONDS_PER_HOUR

        self._stats = BotStats(mode=self._risk.autotrader.mode)
        self._started_at: float | None = None
        self._running = False

        self._logger = setup_module_logger(
            "autotrader", "autotrader.log", module_folder="AutoTrader_Logs"
        )

    # ------------------------------------------------------------------
    # Bot control
    # ------------------------------------------------------------------

    def start(self, mode: TradingMode = TradingMode.BALANCED) -> bool:
        """Enable fused entries in the given mode; False if already running."""
        if self._stats.is_running:
            self._logger.info("Bot already running")
            return False

        settings = self._risk.apply_mode(mode)
        self._stats.is_running = True
        self._stats.mode = mode
        self._started_at = time.monotonic()
        self._logger.info(
            "Bot started in %s mode: confidence>=%d alignment>=%d",
            mode.value,
            settings.min_confidence,
            settings.min_alignment_score,
        )
        if self._notifier is not None:
            self._notifier.notify(f"🤖 AutoTrader started in {mode.value} mode")
        return True

    def stop(self) -> bool:
        """Disable fused entries; False if the bot was not running."""
        if not self._stats.is_running:
            return False

        self._risk.disable_autotrader()
        self._stats.is_running = False
        self._logger.info("Bot stopped after %d trades", self._stats.trades_executed)
        if self._notifier is not None:
            self._notifier.notify(f"🛑 AutoTrader stopped. Trades: {self._stats.trades_executed}")
        return True

    def stats(self) -> BotStats:
        if self._stats.is_running and self._started_at is not None:
            self._stats.uptime_seconds = int(time.monotonic() - self._started_at)
        return self._stats

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Scan every interval until shutdown() or cancellation."""
        self._running = True
        if self._risk.autotrader.enabled and not self._stats.is_running:
            self.start(self._risk.autotrader.mode)
        self._logger.info("Scan loop started: interval=%ss", self._scan_interval)

        try:
            while self._running:
                try:
                    await self.scan_once()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._logger.error("Scan error: %s", exc, exc_info=True)
                await asyncio.sleep(self._scan_interval)
        except asyncio.CancelledError:
            self._logger.info("Scan loop cancelled")
        finally:
            self._running = False

    def shutdown(self) -> None:
        self._running = False

    async def scan_once(self) -> None:
        self._risk.check_pause_sentinel()
        leaderboard = await self._engine.scan()

        self._send_hijack_alerts(leaderboard)
        await self._manage_exits()
        await self._force_entries(leaderboard)
        if self._risk.autotrader.enabled:
            await self._fused_entries(leaderboard)

        await self._store.prune_observations(self._retention_seconds)
        self.stats()

    # ------------------------------------------------------------------
    # Scan steps
    # ------------------------------------------------------------------

    def _send_hijack_alerts(self, leaderboard: list[ForceReading]) -> None:
        if self._notifier is None:
            return
        for reading in leaderboard:
            if reading.is_hijacking:
                self._notifier.alert_hijack(reading.ticker, reading.latest_value, reading.hijack_force)

    async def _manage_exits(self) -> None:
        # Snapshot first: positions opened later in this cycle are not exited
        open_positions = await self._store.get_open_positions()
        for position in open_positions:
            try:
                reading = self._engine.reading_for(position.ticker)
                if reading is not None:
                    price, force = reading.latest_value, reading.hijack_force
                else:
                    latest = await self._store.get_latest_price(position.ticker)
                    if latest is None:
                        continue
                    price, force = latest, Decimal("0")
                await self._trader.manage_position(position, price, force)
            except Exception as exc:
                self._logger.error("Exit check failed for %s: %s", position.ticker, exc, exc_info=True)

    async def _force_entries(self, leaderboard: list[ForceReading]) -> None:
        if not self._risk.is_paper_trading_allowed():
            return
        threshold = self._risk.config.entry_threshold
        for reading in leaderboard:
            if reading.hijack_force <= threshold:
                continue
            try:
                await self._trader.try_enter(
                    reading.ticker, reading.latest_value, reading.hijack_force
                )
            except TradeStoreError as exc:
                self._logger.error("Force entry failed for %s: %s", reading.ticker, exc)
            except Exception as exc:
                self._logger.error("Force entry error for %s: %s", reading.ticker, exc, exc_info=True)

    async def _fused_entries(self, leaderboard: list[ForceReading]) -> None:
        if not self._risk.is_paper_trading_allowed():
            return

        settings = self._risk.autotrader
        windows = await self._store.get_windows(
            self._predictor.lookback_seconds, self._predictor.lookback_points
        )
        predictions = self._predictor.high_confidence(windows, settings.min_confidence)

        candidates: list[tuple[str, Prediction | ForceReading, Decimal]]
        if predictions:
            mode = FusionMode.PRIMARY
            candidates = [(p.ticker, p, p.price) for p in predictions]
        else:
            mode = FusionMode.FALLBACK
            threshold = self._risk.config.entry_threshold
            candidates = [
                (r.ticker, r, r.latest_value) for r in leaderboard if r.hijack_force >= threshold
            ]

        for ticker, primary, price in candidates:
            if self._risk.is_on_cooldown(ticker):
                continue
            try:
                signal = await self._fusion.fuse(
                    ticker, primary, price, mode, self._risk.config.entry_threshold
                )
                if signal is not None:
                    await self._handle_signal(signal)
            except Exception as exc:
                self._logger.error("Fused entry error for %s: %s", ticker, exc, exc_info=True)

    async def _handle_signal(self, signal: TradeSignal) -> None:
        settings = self._risk.autotrader
        if signal.alignment_score < settings.min_alignment_score:
            return
        if signal.confidence < settings.min_confidence:
            return
        if settings.require_sentiment_alignment and not sentiment_agrees(signal):
            self._logger.debug("Signal %s rejected: no sentiment agreement", signal.ticker)
            return

        self._stats.signals_generated += 1
        self._stats.last_signal = signal
        self._stats.recent_signals.append(signal)
        del self._stats.recent_signals[:-_RECENT_SIGNALS_KEPT]

        executed = False
        if signal.direction == TradeDirection.SHORT:
            if settings.mode == TradingMode.CONSERVATIVE:
                self._logger.info("SHORT %s rejected in CONSERVATIVE mode", signal.ticker)
            else:
                self._logger.info("SHORT %s archived only: paper positions are long-only", signal.ticker)
        else:
            force_at_entry = (
                signal.force
                if signal.mode == FusionMode.FALLBACK
                else Decimal(signal.confidence) / PERCENT
            )
            try:
                check = await self._trader.try_enter(
                    signal.ticker,
                    signal.price,
                    force_at_entry,
                    require_force=False,
                    trade_size_usd=settings.position_size_usd,
                    max_open_positions=settings.max_open_positions,
                    cooldown_minutes=settings.cooldown_minutes,
                    source=f"autotrader:{signal.mode.value}",
                )
            except TradeStoreError as exc:
                self._logger.error("Auto-trade insert failed for %s: %s", signal.ticker, exc)
            else:
                executed = check.can_proceed
                if executed:
                    self._stats.trades_executed += 1
                    self._stats.last_trade_at = time.time()
                    self._logger.info(
                        "AUTO-%s %s @ $%s conf=%d align=%d signals=%s",
                        signal.direction.value,
                        signal.ticker,
                        signal.price,
                        signal.confidence,
                        signal.alignment_score,
                        ", ".join(f"{v.source}: {v.signal.value}" for v in signal.signals),
                    )
                else:
                    self._logger.debug("Auto-trade skipped for %s: %s", signal.ticker, check.reason)

        await self._store.archive_signal(signal, executed=executed)
        log_trade_event(
            "FUSED_SIGNAL",
            signal.ticker,
            "autotrader",
            {
                "direction": signal.direction.value,
                "mode": signal.mode.value,
                "confidence": signal.confidence,
                "alignment_score": signal.alignment_score,
                "executed": executed,
            },
        )

    async def analyze(self, ticker: str) -> TradeSignal | None:
        """Fuse a signal for one ticker on demand (no execution, no archive)."""
        observations = await self._store.get_recent(
            ticker,
            limit=self._predictor.lookback_points,
            max_age_seconds=self._predictor.lookback_seconds,
        )
        prediction = self._predictor.predict(ticker, observations)
        if prediction is None:
            return None
        return await self._fusion.fuse(
            ticker, prediction, prediction.price, FusionMode.PRIMARY, self._risk.config.entry_threshold
        )
