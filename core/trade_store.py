"""
SQLite persistence for Hijack Force Bot.

Stores the rolling tick window, paper positions and the two append-only
archives (hijack events and fused autotrader signals).

Tables:
    observations        ticker ticks (value, volume, time)
    paper_trades        paper positions, OPEN -> CLOSED
    hijack_archive      entry/exit events for later analysis
    autotrader_signals  fused trade signals with their votes (JSON)

Decimals are stored as TEXT to keep exact values. Position writes are
authoritative and raise TradeStoreError; archive writes are best effort
and only log on failure.

Usage:
    from core.trade_store import TradeStore

    store = TradeStore()
    await store.record_observation(observation)
    windows = await store.get_windows(180, 50)
"""

from __future__ import annotations

import json
import sqlite3
import time
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import PERCENT
from shared.serialization_utils import dumps
from shared.types import (
    HijackEvent,
    HijackEventType,
    Observation,
    PnLBucket,
    Position,
    PositionStatus,
    TradeSignal,
    TradingStats,
)


_PNL_HISTORY_DAYS = 30


class TradeStoreError(Exception):
    """Raised when an authoritative position write fails."""


class TradeStore:
    """SQLite-backed store for ticks, paper positions and archives."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            db_path = str(get_config().get_db_path())

        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db_path = db_path
        self._db: sqlite3.Connection | None = sqlite3.connect(db_path)
        self._db.row_factory = sqlite3.Row
        self._create_tables()

        self._logger = setup_module_logger(
            "trade_store", "trade_store.log", module_folder="Trade_Store_Logs"
        )

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_tables(self) -> None:
        """Create SQLite tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS observations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ticker TEXT NOT NULL,
                value TEXT NOT NULL,
                volume TEXT NOT NULL,
                time REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_observations_ticker_time
                ON observations (ticker, time);

            CREATE TABLE IF NOT EXISTS paper_trades (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ticker TEXT NOT NULL,
                entry_price TEXT NOT NULL,
                quantity TEXT NOT NULL,
                hijack_force_at_entry TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'OPEN',
                opened_at REAL NOT NULL,
                exit_price TEXT,
                profit TEXT,
                closed_at REAL,
                exit_reason TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_paper_trades_ticker_status
                ON paper_trades (ticker, status);

            CREATE TABLE IF NOT EXISTS hijack_archive (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ticker TEXT NOT NULL,
                price TEXT NOT NULL,
                hijack_force TEXT NOT NULL,
                narrative_score INTEGER NOT NULL DEFAULT 0,
                event_type TEXT NOT NULL,
                recorded_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS autotrader_signals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ticker TEXT NOT NULL,
                direction TEXT NOT NULL,
                confidence INTEGER NOT NULL,
                alignment_score INTEGER NOT NULL,
                signals TEXT NOT NULL,
                price TEXT NOT NULL,
                mode TEXT NOT NULL,
                executed INTEGER NOT NULL DEFAULT 0,
                recorded_at REAL NOT NULL
            );
        """)
        self._conn.commit()

    @property
    def _conn(self) -> sqlite3.Connection:
        if self._db is None:
            raise TradeStoreError("TradeStore is closed")
        return self._db

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    async def record_observation(self, observation: Observation) -> None:
        self._conn.execute(
            "INSERT INTO observations (ticker, value, volume, time) VALUES (?, ?, ?, ?)",
            (
                observation.ticker,
                str(observation.value),
                str(observation.volume),
                observation.time,
            ),
        )
        self._conn.commit()

    @staticmethod
    def _row_to_observation(row: sqlite3.Row) -> Observation:
        return Observation(
            ticker=row["ticker"],
            value=Decimal(row["value"]),
            volume=Decimal(row["volume"]),
            time=row["time"],
        )

    async def get_windows(
        self,
        window_seconds: float,
        per_ticker_limit: int,
        now: float | None = None,
    ) -> dict[str, list[Observation]]:
        """
        Most recent observations per ticker inside the trailing window.

        Each list holds at most per_ticker_limit points, oldest first.
        """
        now = time.time() if now is None else now
        rows = self._conn.execute(
            """SELECT ticker, value, volume, time FROM observations
               WHERE time >= ?
               ORDER BY ticker, time DESC, id DESC""",
            (now - window_seconds,),
        ).fetchall()

        windows: dict[str, list[Observation]] = defaultdict(list)
        for row in rows:
            window = windows[row["ticker"]]
            if len(window) < per_ticker_limit:
                window.append(self._row_to_observation(row))
        return {ticker: list(reversed(obs)) for ticker, obs in windows.items()}

    async def get_recent(
        self,
        ticker: str,
        limit: int | None = None,
        max_age_seconds: float | None = None,
        now: float | None = None,
    ) -> list[Observation]:
        """Recent observations for one ticker, oldest first."""
        now = time.time() if now is None else now
        sql = "SELECT ticker, value, volume, time FROM observations WHERE ticker = ?"
        params: list[object] = [ticker]
        if max_age_seconds is not None:
            sql += " AND time >= ?"
            params.append(now - max_age_seconds)
        sql += " ORDER BY time DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_observation(r) for r in reversed(rows)]

    async def get_observations_between(
        self,
        start: float,
        end: float,
        tickers: list[str] | None = None,
    ) -> list[Observation]:
        """All observations with start <= time <= end across tickers, oldest first."""
        sql = "SELECT ticker, value, volume, time FROM observations WHERE time >= ? AND time <= ?"
        params: list[object] = [start, end]
        if tickers:
            sql += f" AND ticker IN ({', '.join('?' for _ in tickers)})"
            params.extend(tickers)
        sql += " ORDER BY time ASC, id ASC"

        rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_observation(r) for r in rows]

    async def get_latest_price(self, ticker: str) -> Decimal | None:
        row = self._conn.execute(
            "SELECT value FROM observations WHERE ticker = ? ORDER BY time DESC, id DESC LIMIT 1",
            (ticker,),
        ).fetchone()
        return Decimal(row["value"]) if row else None

    async def prune_observations(self, older_than_seconds: float, now: float | None = None) -> int:
        now = time.time() if now is None else now
        cursor = self._conn.execute(
            "DELETE FROM observations WHERE time < ?", (now - older_than_seconds,)
        )
        self._conn.commit()
        if cursor.rowcount:
            self._logger.debug("Pruned %d observations", cursor.rowcount)
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_position(row: sqlite3.Row) -> Position:
        return Position(
            id=row["id"],
            ticker=row["ticker"],
            entry_price=Decimal(row["entry_price"]),
            quantity=Decimal(row["quantity"]),
            status=PositionStatus(row["status"]),
            force_at_entry=Decimal(row["hijack_force_at_entry"]),
            opened_at=row["opened_at"],
            exit_price=Decimal(row["exit_price"]) if row["exit_price"] is not None else None,
            profit=Decimal(row["profit"]) if row["profit"] is not None else None,
            closed_at=row["closed_at"],
            exit_reason=row["exit_reason"],
        )

    async def insert_position(
        self,
        ticker: str,
        entry_price: Decimal,
        quantity: Decimal,
        force_at_entry: Decimal,
        opened_at: float | None = None,
    ) -> Position:
        """Insert an OPEN paper position. Raises TradeStoreError on failure."""
        opened_at = time.time() if opened_at is None else opened_at
        try:
            cursor = self._conn.execute(
                """INSERT INTO paper_trades
                   (ticker, entry_price, quantity, hijack_force_at_entry, status, opened_at)
                   VALUES (?, ?, ?, ?, 'OPEN', ?)""",
                (ticker, str(entry_price), str(quantity), str(force_at_entry), opened_at),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._logger.error("Position insert failed for %s: %s", ticker, exc)
            raise TradeStoreError(f"Failed to insert position for {ticker}: {exc}") from exc

        position_id = cursor.lastrowid
        if position_id is None:
            raise TradeStoreError("Failed to obtain position ID after INSERT")

        self._logger.info(
            "Position opened: id=%d ticker=%s entry=%s qty=%s force=%s",
            position_id,
            ticker,
            entry_price,
            quantity,
            force_at_entry,
        )
        return Position(
            id=position_id,
            ticker=ticker,
            entry_price=entry_price,
            quantity=quantity,
            status=PositionStatus.OPEN,
            force_at_entry=force_at_entry,
            opened_at=opened_at,
        )

    async def close_position(
        self,
        position_id: int,
        exit_price: Decimal,
        exit_reason: str,
        closed_at: float | None = None,
    ) -> Position | None:
        """
        Close an OPEN position: profit = (exit - entry) * quantity.

        Only updates rows still OPEN; returns None when the position was
        already closed (or does not exist). Raises TradeStoreError on failure.
        """
        closed_at = time.time() if closed_at is None else closed_at
        try:
            row = self._conn.execute(
                "SELECT * FROM paper_trades WHERE id = ?", (position_id,)
            ).fetchone()
            if row is None or row["status"] != PositionStatus.OPEN.value:
                return None

            profit = (exit_price - Decimal(row["entry_price"])) * Decimal(row["quantity"])
            cursor = self._conn.execute(
                """UPDATE paper_trades
                   SET status = 'CLOSED', exit_price = ?, profit = ?, closed_at = ?, exit_reason = ?
                   WHERE id = ? AND status = 'OPEN'""",
                (str(exit_price), str(profit), closed_at, exit_reason, position_id),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._logger.error("Position close failed for id=%d: %s", position_id, exc)
            raise TradeStoreError(f"Failed to close position {position_id}: {exc}") from exc

        if cursor.rowcount == 0:
            return None

        closed = self._row_to_position(row)
        closed = Position(
            id=closed.id,
            ticker=closed.ticker,
            entry_price=closed.entry_price,
            quantity=closed.quantity,
            status=PositionStatus.CLOSED,
            force_at_entry=closed.force_at_entry,
            opened_at=closed.opened_at,
            exit_price=exit_price,
            profit=profit,
            closed_at=closed_at,
            exit_reason=exit_reason,
        )
        self._logger.info(
            "Position closed: id=%d ticker=%s exit=%s pnl=$%s reason=%s",
            position_id,
            closed.ticker,
            exit_price,
            profit.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            exit_reason,
        )
        return closed

    async def get_open_positions(self) -> list[Position]:
        rows = self._conn.execute(
            "SELECT * FROM paper_trades WHERE status = 'OPEN' ORDER BY opened_at, id"
        ).fetchall()
        return [self._row_to_position(r) for r in rows]

    async def get_open_position(self, ticker: str) -> Position | None:
        row = self._conn.execute(
            "SELECT * FROM paper_trades WHERE ticker = ? AND status = 'OPEN' LIMIT 1",
            (ticker,),
        ).fetchone()
        return self._row_to_position(row) if row else None

    async def count_open_positions(self) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS cnt FROM paper_trades WHERE status = 'OPEN'"
        ).fetchone()
        return int(row["cnt"])

    async def get_position_history(self, limit: int = 50) -> list[Position]:
        """Closed positions, most recent first."""
        rows = self._conn.execute(
            """SELECT * FROM paper_trades WHERE status = 'CLOSED'
               ORDER BY closed_at DESC, id DESC LIMIT ?""",
            (limit,),
        ).fetchall()
        return [self._row_to_position(r) for r in rows]

    # ------------------------------------------------------------------
    # Archives (best effort)
    # ------------------------------------------------------------------

    async def archive_event(self, event: HijackEvent) -> bool:
        try:
            self._conn.execute(
                """INSERT INTO hijack_archive
                   (ticker, price, hijack_force, narrative_score, event_type, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    event.ticker,
                    str(event.price),
                    str(event.force),
                    event.narrative_score,
                    event.event_type.value,
                    event.recorded_at,
                ),
            )
            self._conn.commit()
        except (sqlite3.Error, TradeStoreError) as exc:
            self._logger.error("Failed to archive %s event for %s: %s", event.event_type.value, event.ticker, exc)
            return False
        return True

    async def get_recent_events(self, limit: int = 50) -> list[HijackEvent]:
        rows = self._conn.execute(
            "SELECT * FROM hijack_archive ORDER BY recorded_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            HijackEvent(
                ticker=r["ticker"],
                price=Decimal(r["price"]),
                force=Decimal(r["hijack_force"]),
                narrative_score=r["narrative_score"],
                event_type=HijackEventType(r["event_type"]),
                recorded_at=r["recorded_at"],
            )
            for r in rows
        ]

    async def archive_signal(self, signal: TradeSignal, executed: bool = False) -> bool:
        try:
            self._conn.execute(
                """INSERT INTO autotrader_signals
                   (ticker, direction, confidence, alignment_score, signals, price,
                    mode, executed, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    signal.ticker,
                    signal.direction.value,
                    signal.confidence,
                    signal.alignment_score,
                    dumps(signal.signals),
                    str(signal.price),
                    signal.mode.value,
                    int(executed),
                    signal.timestamp,
                ),
            )
            self._conn.commit()
        except (sqlite3.Error, TradeStoreError) as exc:
            self._logger.error("Failed to archive signal for %s: %s", signal.ticker, exc)
            return False
        return True

    async def get_recent_signals(self, limit: int = 50) -> list[dict[str, object]]:
        rows = self._conn.execute(
            "SELECT * FROM autotrader_signals ORDER BY recorded_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        result = []
        for r in rows:
            entry = dict(r)
            entry["signals"] = json.loads(entry["signals"])
            entry["executed"] = bool(entry["executed"])
            result.append(entry)
        return result

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_stats(self) -> TradingStats:
        """Aggregate closed-trade performance; failures degrade to zeros."""
        try:
            rows = self._conn.execute(
                "SELECT profit FROM paper_trades WHERE status = 'CLOSED'"
            ).fetchall()
            open_positions = await self.count_open_positions()
        except (sqlite3.Error, TradeStoreError) as exc:
            self._logger.error("Stats query failed: %s", exc)
            return TradingStats(
                total_trades=0,
                wins=0,
                losses=0,
                win_rate=Decimal("0"),
                total_pnl_usd=Decimal("0"),
                avg_pnl_usd=Decimal("0"),
                open_positions=0,
            )

        profits = [Decimal(r["profit"] or "0") for r in rows]
        total = len(profits)
        wins = sum(1 for p in profits if p > 0)
        total_pnl = sum(profits, Decimal("0"))
        win_rate = (Decimal(wins) / Decimal(total) * PERCENT) if total else Decimal("0")
        avg_pnl = total_pnl / Decimal(total) if total else Decimal("0")

        return TradingStats(
            total_trades=total,
            wins=wins,
            losses=total - wins,
            win_rate=win_rate.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP),
            total_pnl_usd=total_pnl.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            avg_pnl_usd=avg_pnl.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            open_positions=open_positions,
        )

    async def get_pnl_history(self) -> list[PnLBucket]:
        """
        Daily (UTC) P&L of closed trades, oldest first.

        Covers the 30 most recent days that had at least one close; days
        with no closed trades are skipped rather than reported as zero.
        """
        try:
            rows = self._conn.execute(
                """SELECT date(closed_at, 'unixepoch') AS day, profit FROM paper_trades
                   WHERE status = 'CLOSED' AND closed_at IS NOT NULL
                     AND date(closed_at, 'unixepoch') IN (
                         SELECT DISTINCT date(closed_at, 'unixepoch') FROM paper_trades
                         WHERE status = 'CLOSED' AND closed_at IS NOT NULL
                         ORDER BY 1 DESC LIMIT ?
                     )""",
                (_PNL_HISTORY_DAYS,),
            ).fetchall()
        except (sqlite3.Error, TradeStoreError) as exc:
            self._logger.error("P&L history query failed: %s", exc)
            return []

        buckets: dict[str, tuple[Decimal, int]] = {}
        for r in rows:
            pnl, trades = buckets.get(r["day"], (Decimal("0"), 0))
            buckets[r["day"]] = (pnl + Decimal(r["profit"] or "0"), trades + 1)

        return [
            PnLBucket(day=day, daily_pnl=pnl, trades=trades)
            for day, (pnl, trades) in sorted(buckets.items())
        ]

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the SQLite database connection."""
        if self._db is not None:
            self._db.close()
            self._db = None
            self._logger.debug("TradeStore database closed")
