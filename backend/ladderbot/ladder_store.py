# Ladder progress persistence (SQLite)
"""
Remembers how many ladder tiers were already taken for an open position so a
restart does not re-close them.

Records are keyed by (symbol, side, entry price). A held position adopted on
start-up only resumes its ladder when all three match; anything else starts
from the full ladder. Storage errors are logged and never fail a tick.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

from ladderbot.exceptions import ConfigurationError
from ladderbot.models import PositionSide

logger = logging.getLogger(__name__)


def _entry_key(entry_price: float) -> str:
    # Exchange entry prices are averaged floats; compare on a fixed precision
    return f"{float(entry_price):.8f}"


class LadderStore:
    def __init__(self, path: str):
        self.path = str(path)

    async def init(self) -> None:
        """Create the table. An unusable LADDER_STATE_PATH is a ConfigurationError."""
        try:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.path) as db:
                await db.execute('''
                    CREATE TABLE IF NOT EXISTS ladder_progress (
                        symbol TEXT NOT NULL,
                        side TEXT NOT NULL,
                        entry_price TEXT NOT NULL,
                        consumed_tiers INTEGER NOT NULL,
                        updated_at TEXT,
                        PRIMARY KEY (symbol, side, entry_price)
                    )
                ''')
                await db.commit()
        except (OSError, aiosqlite.Error) as e:
            raise ConfigurationError(f"LADDER_STATE_PATH {self.path!r} is not usable: {e}") from e
        logger.info(f"[DB] Ladder store ready | Path={self.path}")

    async def load(self, symbol: str, side: PositionSide, entry_price: float) -> Optional[int]:
        """Consumed tier count for this exact position, or None when unknown."""
        try:
            async with aiosqlite.connect(self.path) as db:
                async with db.execute(
                    'SELECT consumed_tiers FROM ladder_progress WHERE symbol = ? AND side = ? AND entry_price = ?',
                    (symbol, side.value, _entry_key(entry_price)),
                ) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error(f"[DB] Error loading ladder progress: {e}")
            return None
        return int(row[0]) if row else None

    async def save(self, symbol: str, side: PositionSide, entry_price: float, consumed_tiers: int) -> None:
        """Replace the symbol's record with the current progress."""
        try:
            async with aiosqlite.connect(self.path) as db:
                await db.execute('DELETE FROM ladder_progress WHERE symbol = ?', (symbol,))
                await db.execute(
                    'INSERT INTO ladder_progress (symbol, side, entry_price, consumed_tiers, updated_at) '
                    'VALUES (?, ?, ?, ?, ?)',
                    (
                        symbol,
                        side.value,
                        _entry_key(entry_price),
                        int(consumed_tiers),
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"[DB] Error saving ladder progress: {e}")

    async def clear(self, symbol: str) -> None:
        try:
            async with aiosqlite.connect(self.path) as db:
                await db.execute('DELETE FROM ladder_progress WHERE symbol = ?', (symbol,))
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"[DB] Error clearing ladder progress: {e}")
