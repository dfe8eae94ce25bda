"""
Paper position lifecycle for Hijack Force Bot.

Opens simulated long positions when an entry clears every gate and closes
them on the first exit rule that fires.

Entry gates (in order, first failure wins):
    1. kill switch off and paper trading enabled
    2. ticker not on cooldown
    3. no OPEN position for the ticker
    4. open-position count below the max
    5. force above the entry threshold (force entries only)
    6. narrative score >= 0 when require_narrative is set

Exit rules (priority order):
    1. TAKE_PROFIT    pnl% >= take_profit_percent
    2. TRAILING_STOP  enabled, pnl% >= activation, drop from high >= trail%
    3. STOP_LOSS      pnl% <= stop_loss_percent
    4. MOMENTUM_DIED  force < exit_threshold

Usage:
    trader = PaperTrader(trade_store, risk_controller, narrative, notifier)
    check = await trader.try_enter("BTCUSDT", price, force)
    closed = await trader.manage_position(position, price, force)
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import log_trade_event, setup_module_logger
from shared.constants import PERCENT
from shared.types import (
    EntryCheck,
    ExitDecision,
    HijackEvent,
    HijackEventType,
    Position,
    RuntimeConfig,
)

if TYPE_CHECKING:
    from core.narrative import NarrativeTracker
    from core.risk_controller import RiskController
    from core.trade_store import TradeStore
    from execution.notifier import TelegramNotifier


def pnl_percent(entry_price: Decimal, price: Decimal) -> Decimal:
    return (price - entry_price) / entry_price * PERCENT


def evaluate_exit(
    position: Position,
    price: Decimal,
    force: Decimal,
    high_water_mark: Decimal,
    config: RuntimeConfig,
) -> ExitDecision | None:
    """First exit rule that holds for the position, or None to keep it open."""
    pnl = pnl_percent(position.entry_price, price)

    if pnl >= config.take_profit_percent:
        return ExitDecision(
            event_type=HijackEventType.TAKE_PROFIT,
            pnl_percent=pnl,
            reason="TAKE_PROFIT",
        )

    if config.trailing_stop_enabled and pnl >= config.trailing_activation_percent:
        drop_from_high = (high_water_mark - price) / high_water_mark * PERCENT
        if drop_from_high >= config.trailing_stop_percent:
            return ExitDecision(
                event_type=HijackEventType.TRAILING_STOP,
                pnl_percent=pnl,
                reason=f"TRAILING_STOP (High: ${high_water_mark:.2f})",
            )

    if pnl <= config.stop_loss_percent:
        return ExitDecision(
            event_type=HijackEventType.STOP_LOSS,
            pnl_percent=pnl,
            reason="STOP_LOSS",
        )

    if force < config.exit_threshold:
        return ExitDecision(
            event_type=HijackEventType.MOMENTUM_DIED,
            pnl_percent=pnl,
            reason="MOMENTUM_DIED",
        )

    return None


class PaperTrader:
    """
    Entry gating and exit management for paper positions.

    Entries are serialised by one asyncio.Lock so two concurrent attempts
    cannot both pass the "no open position" check.
    """

    def __init__(
        self,
        trade_store: TradeStore,
        risk_controller: RiskController,
        narrative: NarrativeTracker,
        notifier: TelegramNotifier | None = None,
    ) -> None:
        self._store = trade_store
        self._risk = risk_controller
        self._narrative = narrative
        self._notifier = notifier
        self._entry_lock = asyncio.Lock()

        self._logger = setup_module_logger(
            "paper_trader", "paper_trader.log", module_folder="Paper_Trader_Logs"
        )

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    async def try_enter(
        self,
        ticker: str,
        price: Decimal,
        force: Decimal,
        *,
        require_force: bool = True,
        trade_size_usd: Decimal | None = None,
        max_open_positions: int | None = None,
        cooldown_minutes: int | None = None,
        source: str = "force",
    ) -> EntryCheck:
        """
        Open a position if every entry gate passes.

        Fused (autotrader) entries pass require_force=False and their own
        size, position cap and cooldown. Raises TradeStoreError when the
        position insert fails.
        """
        async with self._entry_lock:
            check, narrative_score = await self._check_entry(
                ticker, price, force, require_force, max_open_positions
            )
            if not check.can_proceed:
                self._logger.debug("Entry blocked for %s: %s", ticker, check.reason)
                return check

            config = self._risk.config
            size = config.trade_size_usd if trade_size_usd is None else trade_size_usd
            quantity = size / price

            position = await self._store.insert_position(ticker, price, quantity, force)
            self._risk.start_cooldown(ticker, cooldown_minutes)

        self._logger.info(
            "BANG! Opened %s at $%s (force=%s, news=%d, source=%s)",
            ticker,
            price,
            force,
            narrative_score,
            source,
        )
        await self._store.archive_event(
            HijackEvent(
                ticker=ticker,
                price=price,
                force=force,
                narrative_score=narrative_score,
                event_type=HijackEventType.ENTRY,
                recorded_at=position.opened_at,
            )
        )
        log_trade_event(
            "ENTRY",
            ticker,
            "paper_trader",
            {
                "position_id": position.id,
                "price": price,
                "quantity": quantity,
                "force": force,
                "narrative_score": narrative_score,
                "source": source,
            },
        )
        if self._notifier is not None:
            self._notifier.notify_position_opened(position, narrative_score, source)

        return EntryCheck(can_proceed=True, reason=f"Opened position {position.id}")

    async def _check_entry(
        self,
        ticker: str,
        price: Decimal,
        force: Decimal,
        require_force: bool,
        max_open_positions: int | None,
    ) -> tuple[EntryCheck, int]:
        config = self._risk.config

        if not self._risk.is_paper_trading_allowed():
            reason = "Kill switch active" if config.kill_switch else "Paper trading disabled"
            return EntryCheck(can_proceed=False, reason=reason), 0

        if price <= 0:
            return EntryCheck(can_proceed=False, reason=f"Invalid price {price}"), 0

        if self._risk.is_on_cooldown(ticker):
            remaining = self._risk.cooldown_remaining(ticker)
            return EntryCheck(can_proceed=False, reason=f"Cooldown active: {remaining:.0f}s remaining"), 0

        if await self._store.get_open_position(ticker) is not None:
            return EntryCheck(can_proceed=False, reason=f"Position already open for {ticker}"), 0

        limit = config.max_open_positions if max_open_positions is None else max_open_positions
        open_count = await self._store.count_open_positions()
        if open_count >= limit:
            return EntryCheck(can_proceed=False, reason=f"Max open positions reached: {open_count}/{limit}"), 0

        if require_force and force <= config.entry_threshold:
            return EntryCheck(
                can_proceed=False,
                reason=f"Force {force} below entry threshold {config.entry_threshold}",
            ), 0

        narrative_score = self._narrative.get_narrative(ticker).score
        if config.require_narrative and narrative_score < 0:
            return EntryCheck(
                can_proceed=False, reason=f"Narrative bearish (score {narrative_score})"
            ), narrative_score

        return EntryCheck(can_proceed=True, reason="All checks passed"), narrative_score

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    async def manage_position(
        self, position: Position, price: Decimal, force: Decimal
    ) -> Position | None:
        """Ratchet the high-water mark and close the position if an exit rule fires."""
        hwm = self._risk.update_high_water_mark(position.ticker, price, position.entry_price)
        decision = evaluate_exit(position, price, force, hwm, self._risk.config)
        if decision is None:
            return None
        return await self.close_position(position, price, force, decision)

    async def close_position(
        self,
        position: Position,
        price: Decimal,
        force: Decimal,
        decision: ExitDecision,
    ) -> Position | None:
        """Close an OPEN position; returns None if it was already closed."""
        closed = await self._store.close_position(position.id, price, decision.reason)
        if closed is None:
            self._logger.debug("Position %d already closed", position.id)
            return None

        self._risk.clear_high_water_mark(position.ticker)
        profit = closed.profit if closed.profit is not None else Decimal("0")
        self._logger.info(
            "%s CLOSED %s. P&L: $%.2f (%s)",
            "PROFIT" if profit >= 0 else "LOSS",
            closed.ticker,
            profit,
            decision.reason,
        )

        await self._store.archive_event(
            HijackEvent(
                ticker=closed.ticker,
                price=price,
                force=force,
                narrative_score=0,
                event_type=decision.event_type,
                recorded_at=closed.closed_at or time.time(),
            )
        )
        log_trade_event(
            decision.event_type.value,
            closed.ticker,
            "paper_trader",
            {
                "position_id": closed.id,
                "exit_price": price,
                "profit": profit,
                "pnl_percent": decision.pnl_percent.quantize(Decimal("0.01")),
                "reason": decision.reason,
            },
        )
        if self._notifier is not None:
            self._notifier.notify_position_closed(closed)
        return closed
