"""Durable price cache: Protocol definition, SQLite and in-memory backends, factory.

The cache maps a caller symbol to its last good record and the epoch-millis
moment it was written. Only the resolver writes to it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import ClassVar, Protocol, runtime_checkable

import aiosqlite
from pydantic import ValidationError

from portfolio_pricer.core.config import CacheConfig
from portfolio_pricer.core.exceptions import CacheError
from portfolio_pricer.core.models import CacheBackend, CacheEntry, PriceRecord, Symbol

logger = logging.getLogger(__name__)


@runtime_checkable
class PriceCache(Protocol):
    """Symbol-keyed store of CacheEntry values."""

    async def get(self, symbol: Symbol) -> CacheEntry | None: ...
    async def set(self, symbol: Symbol, record: PriceRecord, timestamp: int) -> None: ...
    async def items(self) -> list[tuple[Symbol, CacheEntry]]: ...
    async def invalidate(self) -> int: ...
    async def clear(self) -> int: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...


class MemoryPriceCache:
    """Process-local cache, for tests and one-shot CLI runs."""

    def __init__(self) -> None:
        self._entries: dict[Symbol, CacheEntry] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def get(self, symbol: Symbol) -> CacheEntry | None:
        return self._entries.get(symbol)

    async def set(self, symbol: Symbol, record: PriceRecord, timestamp: int) -> None:
        self._entries[symbol] = CacheEntry(data=record, timestamp=timestamp)

    async def items(self) -> list[tuple[Symbol, CacheEntry]]:
        return sorted(self._entries.items())

    async def invalidate(self) -> int:
        """Zero every timestamp, keeping the records for inspection."""
        for symbol, entry in self._entries.items():
            self._entries[symbol] = entry.model_copy(update={"timestamp": 0})
        return len(self._entries)

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count


class SqlitePriceCache:
    """SQLite implementation of the price cache.

    Records are stored as JSON. A row that no longer validates against
    PriceRecord is logged and treated as a miss.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS price_cache (
                    symbol TEXT PRIMARY KEY,
                    data_json TEXT NOT NULL,
                    timestamp INTEGER NOT NULL
                )""",
            ],
        ),
    }

    def __init__(self, config: CacheConfig) -> None:
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection, enable WAL, run migrations."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path)
            await self._db.execute("PRAGMA journal_mode=WAL")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise CacheError(
                f"Failed to initialize price cache: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute("SELECT MAX(version) FROM schema_version") as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))

    def _conn(self, operation: str) -> aiosqlite.Connection:
        if self._db is None:
            raise CacheError(
                "Price cache is not initialized",
                context={"operation": operation, "path": self._path},
            )
        return self._db

    # --- Entry Operations ---

    async def get(self, symbol: Symbol) -> CacheEntry | None:
        db = self._conn("get")
        try:
            async with db.execute(
                "SELECT data_json, timestamp FROM price_cache WHERE symbol = ?", (symbol,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise CacheError(
                f"Failed to read cache entry: {e}",
                context={"operation": "get", "symbol": symbol},
            ) from e
        if row is None:
            return None
        return self._row_to_entry(symbol, row[0], row[1])

    async def set(self, symbol: Symbol, record: PriceRecord, timestamp: int) -> None:
        db = self._conn("set")
        try:
            await db.execute(
                """INSERT OR REPLACE INTO price_cache (symbol, data_json, timestamp)
                   VALUES (?, ?, ?)""",
                (symbol, record.model_dump_json(), timestamp),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise CacheError(
                f"Failed to write cache entry: {e}",
                context={"operation": "set", "symbol": symbol},
            ) from e

    async def items(self) -> list[tuple[Symbol, CacheEntry]]:
        db = self._conn("items")
        try:
            async with db.execute(
                "SELECT symbol, data_json, timestamp FROM price_cache ORDER BY symbol"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise CacheError(
                f"Failed to list cache entries: {e}", context={"operation": "items"}
            ) from e

        entries = []
        for symbol, data_json, timestamp in rows:
            entry = self._row_to_entry(symbol, data_json, timestamp)
            if entry is not None:
                entries.append((symbol, entry))
        return entries

    async def invalidate(self) -> int:
        """Zero every timestamp; rows stay for inspection."""
        db = self._conn("invalidate")
        try:
            cursor = await db.execute("UPDATE price_cache SET timestamp = 0")
            await db.commit()
        except aiosqlite.Error as e:
            raise CacheError(
                f"Failed to invalidate cache: {e}", context={"operation": "invalidate"}
            ) from e
        return cursor.rowcount

    async def clear(self) -> int:
        db = self._conn("clear")
        try:
            cursor = await db.execute("DELETE FROM price_cache")
            await db.commit()
        except aiosqlite.Error as e:
            raise CacheError(
                f"Failed to clear cache: {e}", context={"operation": "clear"}
            ) from e
        return cursor.rowcount

    @staticmethod
    def _row_to_entry(symbol: str, data_json: str, timestamp: int) -> CacheEntry | None:
        try:
            record = PriceRecord.model_validate_json(data_json)
        except ValidationError as e:
            logger.warning("Discarding unreadable cache row for %s: %s", symbol, e)
            return None
        return CacheEntry(data=record, timestamp=timestamp)


async def create_cache(config: CacheConfig) -> PriceCache:
    """Create and initialize a cache backend based on configuration."""
    if config.backend == CacheBackend.SQLITE:
        cache = SqlitePriceCache(config)
    elif config.backend == CacheBackend.MEMORY:
        cache = MemoryPriceCache()
    else:
        raise CacheError(
            f"Unsupported cache backend: {config.backend}",
            context={"operation": "create_cache", "backend": str(config.backend)},
        )
    await cache.initialize()
    return cache
