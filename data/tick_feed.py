"""
CoinCap trade stream ingestion for Hijack Force Bot.

Subscribes to the CoinCap trades websocket, keeps USDT-quoted trades for the
mapped base assets and records each as an Observation in the trade store.

Message format (one JSON object per trade):
    {"exchange": "binance", "base": "bitcoin", "quote": "tether",
     "direction": "buy", "price": 90000.5, "volume": 0.01,
     "timestamp": 1700000000000, "priceUsd": 90000.5}

Malformed or unmapped messages are skipped. On disconnect or error the
feed reconnects after a fixed delay until stop() is called.

Usage:
    feed = TickFeed(trade_store)
    asyncio.create_task(feed.run())
"""

from __future__ import annotations

import asyncio
import json
import time
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

import websockets

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config, get_env_var
from shared.constants import (
    COINCAP_TICKER_MAP,
    COINCAP_TRADES_WS,
    DEFAULT_RECONNECT_DELAY_SECONDS,
)
from shared.types import Observation

if TYPE_CHECKING:
    from collections.abc import Mapping

    from core.trade_store import TradeStore

_PULSE_EVERY = 100


def parse_trade(
    message: str | bytes,
    ticker_map: Mapping[str, str] = COINCAP_TICKER_MAP,
    quote: str = "tether",
    now: float | None = None,
) -> Observation | None:
    """Observation for a mapped USDT trade message, None for anything else."""
    try:
        trade: Any = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(trade, dict) or trade.get("quote") != quote:
        return None

    ticker = ticker_map.get(str(trade.get("base", "")))
    if ticker is None:
        return None

    try:
        price = Decimal(str(trade["price"]))
        volume = Decimal(str(trade.get("volume", 0)))
    except (KeyError, InvalidOperation):
        return None
    if not price.is_finite() or not volume.is_finite() or price <= 0:
        return None

    timestamp = trade.get("timestamp")
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        observed_at = timestamp / 1000
    else:
        observed_at = time.time() if now is None else now

    return Observation(ticker=ticker, value=price, volume=volume, time=observed_at)


class TickFeed:
    """Websocket consumer writing trade ticks to the trade store."""

    def __init__(self, trade_store: TradeStore) -> None:
        self._store = trade_store

        cfg = get_config()
        feed_cfg = cfg.get_feeds_config().get("tick_feed", {})
        self._url: str = get_env_var("TICK_FEED_URL", feed_cfg.get("url", COINCAP_TRADES_WS), str)
        self._quote: str = feed_cfg.get("quote", "tether")
        self._ticker_map: dict[str, str] = feed_cfg.get("ticker_map", dict(COINCAP_TICKER_MAP))

        timing = cfg.get_timing_config().get("tick_feed", {})
        self._reconnect_delay: float = timing.get("reconnect_delay_seconds", DEFAULT_RECONNECT_DELAY_SECONDS)
        self._ping_interval: float = timing.get("ping_interval_seconds", 20)
        self._ping_timeout: float = timing.get("ping_timeout_seconds", 20)

        self._running = False
        self._received = 0

        self._logger = setup_module_logger(
            "tick_feed", "tick_feed.log", module_folder="Tick_Feed_Logs"
        )

    @property
    def received(self) -> int:
        return self._received

    async def handle_message(self, message: str | bytes) -> Observation | None:
        observation = parse_trade(message, self._ticker_map, self._quote)
        if observation is None:
            return None

        await self._store.record_observation(observation)
        self._received += 1
        if self._received % _PULSE_EVERY == 0:
            self._logger.info(
                "Pulse: %d ticks (%s @ $%s)", self._received, observation.ticker, observation.value
            )
        return observation

    async def run(self) -> None:
        self._running = True
        try:
            while self._running:
                try:
                    self._logger.info("Connecting to %s", self._url)
                    async with websockets.connect(
                        self._url,
                        ping_interval=self._ping_interval,
                        ping_timeout=self._ping_timeout,
                    ) as ws:
                        self._logger.info("Connected: streaming trades")
                        async for message in ws:
                            await self.handle_message(message)
                            if not self._running:
                                break
                except asyncio.CancelledError:
                    raise
                except websockets.exceptions.ConnectionClosed as exc:
                    self._logger.warning("Connection closed: %s", exc)
                except (OSError, websockets.exceptions.WebSocketException) as exc:
                    self._logger.warning("Connection error: %s", exc)
                except Exception as exc:
                    self._logger.error("Tick feed error: %s", exc, exc_info=True)

                if self._running:
                    self._logger.info("Disconnected. Reconnecting in %ss", self._reconnect_delay)
                    await asyncio.sleep(self._reconnect_delay)
        except asyncio.CancelledError:
            self._logger.info("Tick feed cancelled")
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False
