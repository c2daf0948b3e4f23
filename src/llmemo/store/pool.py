"""
Connection sharing for ConversationStore.

Every store opened on the same database file through one ``StorePool`` (the
router, the CLI, each browsing context) gets the same ``aiosqlite``
connection and the same write lock. Captures arriving from several tabs at
once then queue in-process instead of contending for SQLite's writer lock.

Usage::

    pool = StorePool()
    store_a = ConversationStore(config, pool=pool)
    store_b = ConversationStore(config, pool=pool)   # same file, same connection

    await store_a.initialize()
    await store_b.initialize()
    ...
    await pool.close_all()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import aiosqlite
import structlog

_logger = structlog.get_logger("llmemo.store.pool")


async def open_connection(
    db_path: str, *, wal_mode: bool = True, connection_timeout: float = 30.0
) -> aiosqlite.Connection:
    """
    Open a configured connection to *db_path*, creating parent directories.

    Rows come back as ``aiosqlite.Row`` and foreign keys are enforced.

    Raises:
        aiosqlite.Error: If the file cannot be opened or the pragmas fail.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path, timeout=connection_timeout)
    try:
        conn.row_factory = aiosqlite.Row
        if wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute("PRAGMA synchronous=NORMAL")
    except Exception:
        await conn.close()
        raise
    return conn


@dataclass
class _SharedFile:
    conn: aiosqlite.Connection
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class StorePool:
    """
    One shared connection and write lock per database file.

    Bound to the event loop it is first used on.
    """

    def __init__(self) -> None:
        self._files: dict[str, _SharedFile] = {}
        self._opening = asyncio.Lock()

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> aiosqlite.Connection:
        """
        Return the connection for *db_path*, opening it on first use.

        ``wal_mode`` and ``connection_timeout`` only apply to the first open.
        """
        resolved = self._resolve(db_path)
        shared = self._files.get(resolved)
        if shared is None:
            async with self._opening:
                shared = self._files.get(resolved)
                if shared is None:
                    conn = await open_connection(
                        resolved, wal_mode=wal_mode, connection_timeout=connection_timeout
                    )
                    shared = self._files[resolved] = _SharedFile(conn)
                    _logger.debug("pool_connection_opened", db_path=resolved)
        return shared.conn

    def write_lock(self, db_path: str) -> asyncio.Lock:
        """
        Return the lock every writer on *db_path* holds.

        Raises:
            KeyError: If ``acquire()`` has not been called for this path.
        """
        return self._files[self._resolve(db_path)].write_lock

    @property
    def open_paths(self) -> frozenset[str]:
        return frozenset(self._files)

    async def close_all(self) -> None:
        """Close every connection; stores that borrowed them must not be used afterwards."""
        while self._files:
            path, shared = self._files.popitem()
            await shared.conn.close()
            _logger.debug("pool_connection_closed", db_path=path)

    @staticmethod
    def _resolve(db_path: str) -> str:
        return str(Path(db_path).expanduser().resolve())
