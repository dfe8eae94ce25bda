"""
Hijack Force Bot: Main Entrypoint.

Single-process asyncio runner that orchestrates five concurrent tasks:
    1. TickFeed          : CoinCap trade stream -> observations table
    2. NarrativeTracker  : news RSS headlines scored per asset
    3. SocialTracker     : social RSS posts scored per asset
    4. TelegramNotifier  : drains the outbound alert queue
    5. AutoTrader        : 30s scan loop over the force leaderboard

All components are constructed once here and injected explicitly; the
risk controller is the single owner of runtime trading controls.

Usage:
    python main.py                 # paper trading only; live trading is never wired
    python main.py --backtest 24   # replay the last 24h of stored ticks
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from dotenv import load_dotenv

from bot_logging.logger_manager import create_module_log_directories, setup_module_logger
from config.loader import get_config, get_env_var
from config.validate import ConfigValidationError, validate_all_configs

# ---------------------------------------------------------------------------
# Module logger
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(
    db_path: str,
    tick_url: str,
    entry_threshold: str,
    trade_size: str,
    autotrader_enabled: bool,
    autotrader_mode: str,
    telegram: bool,
) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("Hijack Force Bot starting")
    _logger.info("=" * 60)
    _logger.info("  database        : %s", db_path)
    _logger.info("  tick feed       : %s", tick_url)
    _logger.info("  entry_threshold : %s", entry_threshold)
    _logger.info("  trade_size      : $%s", trade_size)
    _logger.info("  autotrader      : %s (%s)", "on" if autotrader_enabled else "off", autotrader_mode)
    _logger.info("  telegram        : %s", "configured" if telegram else "(not set)")
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Task done callback: detect unhandled exceptions
# ---------------------------------------------------------------------------


def _task_done_callback(
    task: asyncio.Task[None],
    shutdown_event: asyncio.Event,
) -> None:
    """Called when any core task finishes (normally or with error)."""
    try:
        exc = task.exception()
    except asyncio.CancelledError:
        _logger.info("Task %s cancelled", task.get_name())
        return

    if exc is not None:
        _logger.critical(
            "Task %s failed with unhandled exception: %s",
            task.get_name(),
            exc,
            exc_info=exc,
        )
        shutdown_event.set()


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> None:
    """Wire all components and launch the concurrent tasks."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        sys.exit(1)

    create_module_log_directories()
    cfg = get_config()
    db_path = str(cfg.get_db_path())

    # ------------------------------------------------------------------
    # 2. Initialize shared instances (dependency order)
    # ------------------------------------------------------------------
    import aiohttp

    from core.autotrader import AutoTrader
    from core.data_service import SentimentDataService
    from core.force_engine import ForceEngine
    from core.narrative import NarrativeTracker, SocialTracker
    from core.paper_trader import PaperTrader
    from core.predictor import MomentumPredictor
    from core.risk_controller import RiskController
    from core.signal_fusion import SignalFusion
    from core.trade_store import TradeStore
    from data.tick_feed import TickFeed
    from execution.notifier import TelegramNotifier

    http_session = aiohttp.ClientSession()

    risk = RiskController()
    if get_env_var("AUTOTRADER_ENABLED", False, bool):
        risk.update_autotrader(enabled=True)

    trade_store = TradeStore(db_path)
    data_service = SentimentDataService(session=http_session)
    notifier = TelegramNotifier(session=http_session)
    narrative = NarrativeTracker(data_service)
    social = SocialTracker(data_service)
    force_engine = ForceEngine(trade_store)
    predictor = MomentumPredictor()
    fusion = SignalFusion(data_service, social)
    paper_trader = PaperTrader(trade_store, risk, narrative, notifier)
    autotrader = AutoTrader(
        trade_store, force_engine, predictor, fusion, paper_trader, risk, notifier
    )
    tick_feed = TickFeed(trade_store)

    _log_banner(
        db_path,
        get_env_var("TICK_FEED_URL", cfg.get_feeds_config().get("tick_feed", {}).get("url", ""), str),
        str(risk.config.entry_threshold),
        str(risk.config.trade_size_usd),
        risk.autotrader.enabled,
        risk.autotrader.mode.value,
        notifier.is_configured,
    )

    # ------------------------------------------------------------------
    # 3. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 4. Launch concurrent tasks
    # ------------------------------------------------------------------
    tasks = [
        asyncio.create_task(tick_feed.run(), name="tick_feed"),
        asyncio.create_task(narrative.run(), name="narrative"),
        asyncio.create_task(social.run(), name="social"),
        asyncio.create_task(notifier.run(), name="notifier"),
        asyncio.create_task(autotrader.run(), name="autotrader"),
    ]

    for t in tasks:
        t.add_done_callback(lambda done_task: _task_done_callback(done_task, shutdown_event))

    _logger.info("All tasks launched: %s", ", ".join(t.get_name() for t in tasks))

    # ------------------------------------------------------------------
    # 5. Wait for shutdown signal, then cancel tasks
    # ------------------------------------------------------------------
    try:
        await shutdown_event.wait()
    finally:
        _logger.info("Shutting down, cancelling tasks")

        tick_feed.stop()
        narrative.stop()
        social.stop()
        notifier.stop()
        autotrader.shutdown()

        for t in tasks:
            if not t.done():
                t.cancel()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for t, result in zip(tasks, results, strict=False):
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _logger.error("Task %s exited with error: %s", t.get_name(), result)

        await http_session.close()
        trade_store.close()
        _logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Backtest mode
# ---------------------------------------------------------------------------


async def _run_backtest(hours: int) -> None:
    """Replay the stored tick window once with the current runtime config."""
    load_dotenv()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        sys.exit(1)

    from core.backtest import Backtester
    from core.risk_controller import RiskController
    from core.trade_store import TradeStore

    trade_store = TradeStore(str(get_config().get_db_path()))
    try:
        result = await Backtester(trade_store, RiskController()).quick(hours)
    finally:
        trade_store.close()

    summary = result.summary
    _logger.info("Backtest over the last %dh", hours)
    _logger.info("  trades        : %d (%d wins / %d losses)", summary.total_trades, summary.wins, summary.losses)
    _logger.info("  win rate      : %s%%", summary.win_rate)
    _logger.info("  total P&L     : $%s (avg $%s)", summary.total_pnl_usd, summary.avg_pnl_usd)
    _logger.info("  profit factor : %s", summary.profit_factor)
    _logger.info("  sharpe        : %s", summary.sharpe_ratio)
    _logger.info("  max drawdown  : %s%%", summary.max_drawdown_percent)
    if result.open_at_end:
        _logger.info("  still open    : %s", ", ".join(result.open_at_end))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    parser = argparse.ArgumentParser(description="Hijack Force Bot")
    parser.add_argument(
        "--backtest",
        type=int,
        metavar="HOURS",
        help="replay the last HOURS of stored ticks and exit",
    )
    args = parser.parse_args()

    try:
        if args.backtest is not None:
            asyncio.run(_run_backtest(args.backtest))
        else:
            asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
