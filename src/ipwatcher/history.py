"""Append-only history of observed public addresses.

This module provides:
- Observation: One recorded (address, timestamp) pair
- HistoryStore: SQLite-backed ledger of observations

Rows are only ever inserted. The most recent row (highest id) is the last
persisted address.
"""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from ipwatcher.errors import StoreReadError, StoreWriteError
from ipwatcher.resolver import Address, parse_address

__all__ = [
    "HistoryStore",
    "Observation",
]

logger = logging.getLogger(__name__)

_SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS ip_history (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    ip          TEXT NOT NULL,
    changed_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_ip_history_changed_at ON ip_history(changed_at);
"""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Observation:
    """An address recorded at a point in time.

    Attributes:
        address: The observed public address.
        observed_at: When it was recorded (UTC).
    """

    address: Address
    observed_at: datetime

    @property
    def timestamp(self) -> str:
        """RFC 3339 UTC timestamp, as stored."""
        return self.observed_at.isoformat().replace("+00:00", "Z")


class HistoryStore:
    """SQLite-backed, append-only address history.

    Blocking sqlite calls run in a worker thread. All calls are serialized
    through one lock so appends keep their insertion order.

    Usage:
        async with HistoryStore(Path("ip_history.db")) as store:
            last = await store.last_address()
            if last != current:
                await store.append(current)
    """

    def __init__(
        self,
        path: Path | str,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """Initialize store.

        Args:
            path: SQLite database file. Created on open() if missing.
            clock: Returns the current UTC time (injectable for testing).
        """
        self.path = Path(path).expanduser()
        self._clock = clock
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "HistoryStore":
        await self.open()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        """Open the database, creating file and schema if needed.

        Safe to call on an existing database; prior rows are kept.

        Raises:
            StoreWriteError: If the database cannot be created.
        """
        if self._conn is not None:
            return
        async with self._lock:
            self._conn = await asyncio.to_thread(self._open_sync)
        logger.info(f"History store ready at {self.path}")

    def _open_sync(self) -> sqlite3.Connection:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.executescript(_SCHEMA)
            return conn
        except (OSError, sqlite3.Error) as e:
            raise StoreWriteError(f"Cannot open/create database {self.path}: {e}") from e

    async def close(self) -> None:
        """Close the database connection."""
        async with self._lock:
            if self._conn is not None:
                conn, self._conn = self._conn, None
                await asyncio.to_thread(conn.close)

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("History store not opened - call open() first")
        return self._conn

    async def last_address(self) -> Optional[Address]:
        """Address of the most recent observation.

        Returns:
            The address, or None if nothing was ever recorded.

        Raises:
            StoreReadError: On database errors or a corrupt row.
        """
        conn = self._require_conn()
        async with self._lock:
            return await asyncio.to_thread(self._last_address_sync, conn)

    def _last_address_sync(self, conn: sqlite3.Connection) -> Optional[Address]:
        try:
            row = conn.execute(
                "SELECT ip FROM ip_history ORDER BY id DESC LIMIT 1"
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreReadError(f"Failed to read last IP: {e}") from e

        if row is None:
            return None
        address = parse_address(row[0])
        if address is None:
            raise StoreReadError(f"Failed to parse IP from database: {row[0]!r}")
        return address

    async def append(self, address: Address) -> Observation:
        """Durably record a new observation stamped with the current time.

        The row is committed before this returns.

        Raises:
            StoreWriteError: If the insert or commit fails.
        """
        conn = self._require_conn()
        observation = Observation(address=address, observed_at=self._clock())
        async with self._lock:
            await asyncio.to_thread(self._append_sync, conn, observation)
        logger.debug(f"Recorded {observation.address} at {observation.timestamp}")
        return observation

    def _append_sync(self, conn: sqlite3.Connection, observation: Observation) -> None:
        try:
            with conn:
                conn.execute(
                    "INSERT INTO ip_history (ip, changed_at) VALUES (?, ?)",
                    (str(observation.address), observation.timestamp),
                )
        except sqlite3.Error as e:
            raise StoreWriteError(f"Failed to save IP {observation.address}: {e}") from e

    async def observations(self, limit: Optional[int] = None) -> list[Observation]:
        """Recorded observations, newest first.

        Args:
            limit: Maximum number of rows, or None for all.

        Raises:
            StoreReadError: On database errors.
        """
        conn = self._require_conn()
        async with self._lock:
            return await asyncio.to_thread(self._observations_sync, conn, limit)

    def _observations_sync(
        self, conn: sqlite3.Connection, limit: Optional[int]
    ) -> list[Observation]:
        try:
            rows = conn.execute(
                "SELECT ip, changed_at FROM ip_history ORDER BY id DESC LIMIT ?",
                (-1 if limit is None else limit,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreReadError(f"Failed to read history: {e}") from e

        result = []
        for ip, changed_at in rows:
            address = parse_address(ip)
            if address is None:
                logger.warning(f"Skipping malformed history row: {ip!r}")
                continue
            try:
                observed_at = datetime.fromisoformat(changed_at.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Skipping history row with bad timestamp: {changed_at!r}")
                continue
            result.append(Observation(address=address, observed_at=observed_at))
        return result
