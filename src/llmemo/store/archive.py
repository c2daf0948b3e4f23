"""Append-only SQLite-backed conversation archive."""

from __future__ import annotations

import asyncio
import json
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

from llmemo.models.config import StoreConfig
from llmemo.models.records import (
    ExportSnapshot,
    Message,
    Role,
    Session,
    StoreStats,
    from_ms,
    make_id,
    to_ms,
    utc_now,
)
from llmemo.store.pool import open_connection

if TYPE_CHECKING:
    from llmemo.store.pool import StorePool

# ── Exceptions ─────────────────────────────────────────────────────────────────


class LlmemoStoreError(Exception):
    """Base class for store errors."""


class SessionNotFoundError(LlmemoStoreError):
    """Raised when a session_id does not exist in the store."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id!r}")
        self.session_id = session_id


class MessageNotFoundError(LlmemoStoreError):
    """Raised when a message_id does not exist in the store."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message not found: {message_id!r}")
        self.message_id = message_id


class DuplicateIDError(LlmemoStoreError):
    """Raised when inserting a record whose id (or session key) already exists."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Duplicate ID: {record_id!r}")
        self.record_id = record_id


class WipeError(LlmemoStoreError):
    """Raised when a full wipe fails; the store may be left partially cleared."""

    def __init__(self, step: str, cause: Exception) -> None:
        super().__init__(f"Wipe failed while clearing {step}: {cause}")
        self.step = step


# ── ConversationStore ──────────────────────────────────────────────────────────


class ConversationStore:
    """
    Durable storage for sessions and messages.

    Messages are never edited. The only mutable session fields are the
    aggregates (``message_count``, ``last_message_at``), updated in the same
    transaction as the message insert, and the externally-set
    ``title``/``summary``.

    Every write runs under a write lock: the pool's per-path lock when a
    ``StorePool`` is supplied (so all stores on one file share it), a private
    lock otherwise.

    Usage::

        store = ConversationStore(StoreConfig(db_path="/tmp/llmemo.db"))
        await store.initialize()
        try:
            await store.create_session(session)
            await store.append_message(session.id, "user", "Hello")
        finally:
            await store.close()
    """

    def __init__(self, config: StoreConfig, pool: StorePool | None = None) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._conn: aiosqlite.Connection | None = None
        self._lock: asyncio.Lock | None = None
        self._logger = structlog.get_logger("llmemo.store")

    @property
    def db_path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """
        Open (or borrow) a database connection and apply the schema.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._pool is not None:
            conn = await self._pool.acquire(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
            self._lock = self._pool.write_lock(self._db_path)
        else:
            conn = await open_connection(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
            self._lock = asyncio.Lock()

        schema = (Path(__file__).parent / "schema.sql").read_text()
        await conn.executescript(schema)
        await conn.commit()

        self._conn = conn
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """
        Release the database connection.

        Pool-owned connections stay open; the pool closes them.
        """
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise LlmemoStoreError("Store is not initialized. Call initialize() first.")
        return self._conn

    def _write_lock(self) -> asyncio.Lock:
        if self._lock is None:
            raise LlmemoStoreError("Store is not initialized. Call initialize() first.")
        return self._lock

    # ── Session Methods ────────────────────────────────────────────────────────

    async def create_session(self, session: Session) -> Session:
        """
        Insert a new session row.

        Args:
            session: The session to persist, with a pre-generated id.

        Returns:
            The stored session (unmodified).

        Raises:
            DuplicateIDError: If the id or the session key already exists.
        """
        conn = self._conn_or_raise()
        async with self._write_lock():
            try:
                await conn.execute(
                    """
                    INSERT INTO sessions
                        (id, session_key, provider, url, conversation_id, started_at,
                         last_message_at, message_count, title, summary)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        session.id,
                        session.session_key,
                        session.provider,
                        session.url,
                        session.conversation_id,
                        to_ms(session.started_at),
                        to_ms(session.last_message_at) if session.last_message_at else None,
                        session.message_count,
                        session.title,
                        session.summary,
                    ),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                if "session_key" in str(exc):
                    raise DuplicateIDError(session.session_key) from exc
                raise DuplicateIDError(session.id) from exc

        self._logger.debug(
            "session_row_inserted", session_id=session.id, session_key=session.session_key
        )
        return session

    async def get_session(self, session_id: str) -> Session:
        """
        Fetch a session by ID.

        Raises:
            SessionNotFoundError: If no session with this ID exists.
        """
        conn = self._conn_or_raise()
        async with conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise SessionNotFoundError(session_id)
        return self._row_to_session(row)

    async def find_session_by_key(self, key: str) -> Session | None:
        """Return the session owning *key*, or None."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM sessions WHERE session_key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_session(row) if row is not None else None

    async def list_sessions(self) -> list[Session]:
        """All sessions, most recently started first."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM sessions ORDER BY started_at DESC, rowid DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_session(r) for r in rows]

    async def update_session_details(
        self,
        session_id: str,
        *,
        title: str | None = None,
        summary: str | None = None,
    ) -> Session:
        """
        Set the externally-owned ``title`` and/or ``summary`` of a session.

        Fields passed as None are left unchanged.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        conn = self._conn_or_raise()
        set_clauses: list[str] = []
        params: list[Any] = []
        if title is not None:
            set_clauses.append("title = ?")
            params.append(title)
        if summary is not None:
            set_clauses.append("summary = ?")
            params.append(summary)

        if set_clauses:
            params.append(session_id)
            async with self._write_lock():
                try:
                    result = await conn.execute(
                        f"UPDATE sessions SET {', '.join(set_clauses)} WHERE id = ?", params
                    )
                    await conn.commit()
                except BaseException:
                    await conn.rollback()
                    raise
            if result.rowcount == 0:
                raise SessionNotFoundError(session_id)
        return await self.get_session(session_id)

    # ── Message Methods ────────────────────────────────────────────────────────

    async def append_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """
        Append a message and bump the owning session's aggregates.

        The insert and the ``message_count``/``last_message_at`` update are
        one transaction, and the increment happens inside SQL, so concurrent
        appends to one session never lose an update.

        Args:
            session_id: The owning session.
            role: ``"user"`` or ``"assistant"``.
            content: Normalized message text.
            metadata: Open JSON-serializable mapping stored alongside.

        Returns:
            The stored Message with its generated id and timestamp.

        Raises:
            SessionNotFoundError: If session_id does not exist.
        """
        conn = self._conn_or_raise()
        async with self._write_lock():
            message = Message(
                id=make_id("msg"),
                session_id=session_id,
                role=role,
                content=content,
                timestamp=utc_now(),
                metadata=metadata or {},
            )
            ts = to_ms(message.timestamp)
            try:
                await conn.execute(
                    """
                    INSERT INTO messages (id, session_id, role, content, timestamp, metadata)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.id,
                        session_id,
                        role,
                        content,
                        ts,
                        json.dumps(message.metadata),
                    ),
                )
                result = await conn.execute(
                    """
                    UPDATE sessions
                    SET message_count = message_count + 1, last_message_at = ?
                    WHERE id = ?
                    """,
                    (ts, session_id),
                )
                if result.rowcount == 0:
                    raise SessionNotFoundError(session_id)
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                if "FOREIGN KEY" in str(exc):
                    raise SessionNotFoundError(session_id) from exc
                raise DuplicateIDError(message.id) from exc
            except BaseException:
                await conn.rollback()
                raise

        return message

    async def get_message(self, message_id: str) -> Message:
        """
        Fetch a single message by ID.

        Raises:
            MessageNotFoundError: If no message with this ID exists.
        """
        conn = self._conn_or_raise()
        async with conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise MessageNotFoundError(message_id)
        return self._row_to_message(row)

    async def list_messages(self, session_id: str) -> list[Message]:
        """
        All messages of a session.

        Rows come back in capture order, but callers that display them should
        still sort by ``timestamp`` rather than depend on store order.
        """
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY timestamp ASC, rowid ASC",
            (session_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_message(r) for r in rows]

    async def search_messages(self, query: str) -> list[Message]:
        """
        Case-insensitive substring search over every message's content.

        SQLite's ``LIKE`` folds ASCII only, so matching is done in Python with
        ``casefold()``. This is a linear scan; the archive holds a single
        user's history, not a shared corpus.

        Returns:
            Every matching message, oldest first. No pagination.
        """
        conn = self._conn_or_raise()
        needle = query.casefold()
        matches: list[Message] = []
        async with conn.execute("SELECT * FROM messages ORDER BY timestamp ASC, rowid ASC") as cursor:
            async for row in cursor:
                if needle in row["content"].casefold():
                    matches.append(self._row_to_message(row))
        self._logger.debug("search_completed", query_length=len(query), matches=len(matches))
        return matches

    # ── Aggregates & Export ────────────────────────────────────────────────────

    @asynccontextmanager
    async def _snapshot(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock and one read transaction so several SELECTs agree."""
        conn = self._conn_or_raise()
        async with self._write_lock():
            await conn.execute("BEGIN")
            try:
                yield conn
            finally:
                await conn.rollback()

    async def compute_stats(self) -> StoreStats:
        """Session/message totals, sessions per provider and the session time range."""
        async with self._snapshot() as conn:
            async with conn.execute("SELECT COUNT(*) FROM messages") as cursor:
                row = await cursor.fetchone()
            async with conn.execute("SELECT provider, started_at FROM sessions") as cursor:
                rows = await cursor.fetchall()
        total_messages = row[0] if row else 0
        by_provider = Counter(r["provider"] for r in rows)
        started = [r["started_at"] for r in rows]

        return StoreStats(
            total_sessions=len(rows),
            total_messages=total_messages,
            by_provider=dict(by_provider),
            oldest_session=from_ms(min(started)) if started else None,
            newest_session=from_ms(max(started)) if started else None,
        )

    async def export_all(self) -> ExportSnapshot:
        """
        Snapshot of every session and message, stamped with the export time.

        Both tables are read in one transaction under the write lock, so each
        session's ``message_count`` matches the messages in the snapshot even
        while captures keep arriving.
        """
        async with self._snapshot():
            sessions = await self.list_sessions()
            async with self._conn_or_raise().execute(
                "SELECT * FROM messages ORDER BY timestamp ASC, rowid ASC"
            ) as cursor:
                rows = await cursor.fetchall()
        messages = [self._row_to_message(r) for r in rows]
        self._logger.info("store_exported", sessions=len(sessions), messages=len(messages))
        return ExportSnapshot(exported_at=utc_now(), sessions=sessions, messages=messages)

    async def wipe_all(self) -> None:
        """
        Irreversibly delete every message, session and setting. Idempotent.

        Each table is cleared and committed in turn; if a step fails the
        earlier steps stay applied.

        Raises:
            WipeError: Naming the table that could not be cleared.
        """
        conn = self._conn_or_raise()
        async with self._write_lock():
            # messages first: they reference sessions
            for table in ("messages", "sessions", "settings"):
                try:
                    await conn.execute(f"DELETE FROM {table}")
                    await conn.commit()
                except aiosqlite.Error as exc:
                    await conn.rollback()
                    self._logger.error("store_wipe_failed", step=table, error=str(exc))
                    raise WipeError(table, exc) from exc
        self._logger.warning("store_wiped", db_path=self._db_path)

    # ── Settings Methods ───────────────────────────────────────────────────────

    async def get_settings(self) -> dict[str, Any]:
        """
        Return every stored setting as ``{key: decoded JSON value}``.

        Rows whose value is not valid JSON are logged and left out.
        """
        conn = self._conn_or_raise()
        async with conn.execute("SELECT key, value FROM settings") as cursor:
            rows = await cursor.fetchall()
        settings: dict[str, Any] = {}
        for r in rows:
            try:
                settings[r["key"]] = json.loads(r["value"])
            except (TypeError, ValueError):
                self._logger.warning("settings_row_undecodable", key=r["key"])
        return settings

    async def set_settings(self, values: dict[str, Any]) -> None:
        """Upsert several settings in one transaction."""
        if not values:
            return
        conn = self._conn_or_raise()
        now = to_ms(utc_now())
        async with self._write_lock():
            try:
                await conn.executemany(
                    """
                    INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                   updated_at = excluded.updated_at
                    """,
                    [(key, json.dumps(value), now) for key, value in values.items()],
                )
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    # ── Private Helpers ────────────────────────────────────────────────────────

    def _row_to_session(self, row: aiosqlite.Row) -> Session:
        return Session(
            id=row["id"],
            provider=row["provider"],
            url=row["url"],
            conversation_id=row["conversation_id"],
            session_key=row["session_key"],
            started_at=from_ms(row["started_at"]),
            last_message_at=from_ms(row["last_message_at"]) if row["last_message_at"] is not None else None,
            message_count=row["message_count"],
            title=row["title"],
            summary=row["summary"],
        )

    def _row_to_message(self, row: aiosqlite.Row) -> Message:
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            timestamp=from_ms(row["timestamp"]),
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )
