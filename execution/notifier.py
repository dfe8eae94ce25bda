"""
Telegram notifications for Hijack Force Bot.

Callers enqueue messages without waiting; a background task drains the
queue and posts HTML messages to the Telegram Bot API. Send failures are
logged and dropped so notifications never stall trading.

Hijack alerts are rate limited per ticker (5 minutes by default); trade
open/close notifications are always sent.

Credentials come from the environment (TELEGRAM_BOT_TOKEN,
TELEGRAM_CHAT_ID). Without them the notifier logs and drops messages.

Usage:
    notifier = TelegramNotifier()
    asyncio.create_task(notifier.run())
    notifier.alert_hijack("BTCUSDT", Decimal("90000"), Decimal("3.2"))
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

import aiohttp

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config, get_env_var
from shared.constants import DEFAULT_ALERT_COOLDOWN_SECONDS, TELEGRAM_API_BASE

if TYPE_CHECKING:
    from shared.types import Position

_MAX_QUEUE = 100


class TelegramNotifier:
    """Fire-and-forget Telegram sender with a per-ticker hijack alert cooldown."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        token: str | None = None,
        chat_id: str | None = None,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._token: str = token if token is not None else get_env_var("TELEGRAM_BOT_TOKEN", "", str)
        self._chat_id: str = chat_id if chat_id is not None else get_env_var("TELEGRAM_CHAT_ID", "", str)

        timing = get_config().get_timing_config().get("notifier", {})
        self._alert_cooldown: float = timing.get("alert_cooldown_seconds", DEFAULT_ALERT_COOLDOWN_SECONDS)
        self._timeout: float = timing.get("request_timeout_seconds", 10)

        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=_MAX_QUEUE)
        self._last_alert: dict[str, float] = {}
        self._running = False

        self._logger = setup_module_logger(
            "notifier", "notifier.log", module_folder="Notifier_Logs"
        )
        if not self.is_configured:
            self._logger.warning("TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID not set: alerts disabled")

    @property
    def is_configured(self) -> bool:
        return bool(self._token) and bool(self._chat_id)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Enqueue (non-blocking)
    # ------------------------------------------------------------------

    def notify(self, message: str) -> bool:
        """Queue a message; returns False when it was dropped."""
        if not self.is_configured:
            self._logger.debug("Notification dropped (not configured): %s", message)
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self._logger.warning("Notification queue full, dropping message")
            return False
        return True

    def alert_hijack(
        self, ticker: str, price: Decimal, force: Decimal, now: float | None = None
    ) -> bool:
        """Queue a hijack alert unless one was sent for the ticker recently."""
        now = time.monotonic() if now is None else now
        last = self._last_alert.get(ticker)
        if last is not None and now - last < self._alert_cooldown:
            return False

        message = (
            f"🚨 <b>HIJACK DETECTED: {ticker}</b>\n\n"
            f"<b>Force:</b> {force:.2f} ⚡\n"
            f"<b>Price:</b> ${price:.4f}\n"
            f"<b>Time:</b> {datetime.now(timezone.utc).isoformat()}\n\n"
            "<i>The crowd is moving.</i>"
        )
        queued = self.notify(message)
        if queued:
            self._last_alert[ticker] = now
        return queued

    def notify_position_opened(self, position: Position, narrative_score: int, source: str) -> bool:
        return self.notify(
            f"🔫 <b>OPENED {position.ticker}</b>\n"
            f"<b>Entry:</b> ${position.entry_price:.4f}\n"
            f"<b>Qty:</b> {position.quantity:.6f}\n"
            f"<b>Force:</b> {position.force_at_entry:.4f}\n"
            f"<b>News:</b> {narrative_score}\n"
            f"<b>Source:</b> {source}"
        )

    def notify_position_closed(self, position: Position) -> bool:
        profit = position.profit if position.profit is not None else Decimal("0")
        emoji = "💰" if profit >= 0 else "💸"
        return self.notify(
            f"{emoji} <b>CLOSED {position.ticker}</b>\n"
            f"<b>Exit:</b> ${position.exit_price or Decimal('0'):.4f}\n"
            f"<b>P&amp;L:</b> ${profit:.2f}\n"
            f"<b>Reason:</b> {position.exit_reason}"
        )

    # ------------------------------------------------------------------
    # Sender
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def send(self, message: str) -> bool:
        """POST one message to the Bot API; failures are logged, not raised."""
        url = f"{TELEGRAM_API_BASE}/bot{self._token}/sendMessage"
        payload = {"chat_id": self._chat_id, "text": message, "parse_mode": "HTML"}
        session = await self._get_session()
        try:
            async with session.post(
                url, json=payload, timeout=aiohttp.ClientTimeout(total=self._timeout)
            ) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    self._logger.error("Telegram HTTP %d: %s", resp.status, body[:200])
                    return False
        except (aiohttp.ClientError, TimeoutError) as exc:
            self._logger.error("Telegram send failed: %s", exc)
            return False
        return True

    async def run(self) -> None:
        self._running = True
        self._logger.info("Notifier started (configured=%s)", self.is_configured)
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                await self.send(message)
                self._queue.task_done()
        except asyncio.CancelledError:
            self._logger.info("Notifier cancelled")
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
