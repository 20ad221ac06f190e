"""SQLite-backed persistence for trade outcomes and open positions."""
from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from analysis.models import Position, TradeIntent, TradeOutcome
from storage.models import PositionRecord, TradeRecord

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

POSITION_OPEN = 'OPEN'
POSITION_CLOSED = 'CLOSED'


def _format_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)


class SQLiteRepository:
    """Provides async-friendly helpers for persisting trading activity."""

    def __init__(self, db_path: Path | str = Path("data/trade_history.db")) -> None:
        self.db_path = Path(db_path)
        if self.db_path != Path(":memory:"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(
            str(self.db_path),
            detect_types=sqlite3.PARSE_DECLTYPES,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._configure()
        self._create_schema()

    def _configure(self) -> None:
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.DatabaseError:
                pass
            cursor.close()

    def _create_schema(self) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS position (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                mint TEXT NOT NULL,
                wallet_address TEXT NOT NULL,
                entry_price REAL NOT NULL,
                token_amount INTEGER NOT NULL,
                token_decimals INTEGER NOT NULL,
                cost_usdc REAL NOT NULL,
                buy_signature TEXT NOT NULL,
                opened_at TEXT NOT NULL,
                status TEXT NOT NULL,
                closed_at TEXT,
                exit_reason TEXT,
                sell_signature TEXT,
                realized_profit REAL
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS trade (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                direction TEXT NOT NULL,
                notional REAL NOT NULL,
                success INTEGER NOT NULL,
                simulated INTEGER NOT NULL,
                signature TEXT,
                realized_profit REAL NOT NULL,
                expected_profit REAL NOT NULL,
                error TEXT,
                wallet_name TEXT,
                exit_reason TEXT,
                recorded_at TEXT NOT NULL
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_position_status
                ON position(status);
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_trade_recorded_at
                ON trade(recorded_at);
            """,
        ]

        with self._lock:
            cursor = self._connection.cursor()
            for statement in statements:
                cursor.execute(statement)
            self._connection.commit()
            cursor.close()

    async def record_position_open(self, position: Position) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._record_position_open_sync, position)

    def _record_position_open_sync(self, position: Position) -> int:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO position (
                    symbol, mint, wallet_address, entry_price, token_amount,
                    token_decimals, cost_usdc, buy_signature, opened_at, status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    position.symbol,
                    position.mint,
                    position.wallet_address,
                    position.entry_price,
                    position.token_amount,
                    position.token_decimals,
                    position.cost_usdc,
                    position.buy_signature,
                    _format_time(position.opened_at),
                    POSITION_OPEN,
                ),
            )
            self._connection.commit()
            position_id = cursor.lastrowid
            cursor.close()
        return position_id

    async def record_position_closed(
        self,
        position_id: int,
        *,
        exit_reason: str,
        sell_signature: Optional[str],
        realized_profit: Optional[float],
    ) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            self._record_position_closed_sync,
            position_id,
            exit_reason,
            sell_signature,
            realized_profit,
        )

    def _record_position_closed_sync(
        self,
        position_id: int,
        exit_reason: str,
        sell_signature: Optional[str],
        realized_profit: Optional[float],
    ) -> None:
        closed_at = _format_time(datetime.now(timezone.utc))
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                UPDATE position
                SET status = ?, closed_at = ?, exit_reason = ?, sell_signature = ?, realized_profit = ?
                WHERE id = ?
                """,
                (POSITION_CLOSED, closed_at, exit_reason, sell_signature, realized_profit, position_id),
            )
            self._connection.commit()
            cursor.close()

    async def fetch_open_positions(self) -> list[PositionRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_open_positions_sync)

    def _fetch_open_positions_sync(self) -> list[PositionRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM position
                WHERE status = ?
                ORDER BY opened_at ASC
                """,
                (POSITION_OPEN,),
            )
            rows = cursor.fetchall()
            cursor.close()
        return [
            PositionRecord(
                id=row["id"],
                symbol=row["symbol"],
                mint=row["mint"],
                wallet_address=row["wallet_address"],
                entry_price=row["entry_price"],
                token_amount=row["token_amount"],
                token_decimals=row["token_decimals"],
                cost_usdc=row["cost_usdc"],
                buy_signature=row["buy_signature"],
                opened_at=_parse_time(row["opened_at"]),
                status=row["status"],
                closed_at=_parse_time(row["closed_at"]),
                exit_reason=row["exit_reason"],
                sell_signature=row["sell_signature"],
                realized_profit=row["realized_profit"],
            )
            for row in rows
        ]

    async def record_trade(self, intent: TradeIntent, outcome: TradeOutcome) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._record_trade_sync, intent, outcome)

    def _record_trade_sync(self, intent: TradeIntent, outcome: TradeOutcome) -> int:
        recorded_at = _format_time(datetime.now(timezone.utc))
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO trade (
                    symbol, direction, notional, success, simulated, signature,
                    realized_profit, expected_profit, error, wallet_name, exit_reason, recorded_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    intent.asset.symbol,
                    intent.direction,
                    intent.notional,
                    1 if outcome.success else 0,
                    1 if outcome.simulated else 0,
                    outcome.signature,
                    outcome.realized_profit,
                    intent.expected_profit,
                    outcome.error,
                    outcome.wallet_name,
                    outcome.exit_reason,
                    recorded_at,
                ),
            )
            self._connection.commit()
            trade_id = cursor.lastrowid
            cursor.close()
        return trade_id

    async def fetch_recent_trades(self, limit: int = 20) -> list[TradeRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_recent_trades_sync, limit)

    def _fetch_recent_trades_sync(self, limit: int) -> list[TradeRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM trade
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,)
            )
            rows = cursor.fetchall()
            cursor.close()
        return [
            TradeRecord(
                id=row["id"],
                symbol=row["symbol"],
                direction=row["direction"],
                notional=row["notional"],
                success=bool(row["success"]),
                simulated=bool(row["simulated"]),
                signature=row["signature"],
                realized_profit=row["realized_profit"],
                expected_profit=row["expected_profit"],
                error=row["error"],
                wallet_name=row["wallet_name"],
                exit_reason=row["exit_reason"],
                recorded_at=_parse_time(row["recorded_at"]),
            )
            for row in rows
        ]

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._connection.commit()
            self._connection.close()


__all__ = ["SQLiteRepository", "PositionRecord", "TradeRecord", "POSITION_OPEN", "POSITION_CLOSED"]
