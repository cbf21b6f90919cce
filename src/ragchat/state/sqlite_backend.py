"""SQLite checkpoint saver."""

import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Sequence

from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import CheckpointTuple
from langgraph.checkpoint.serde.base import SerializerProtocol

from .checkpoint import CheckpointRecord, PersistentSaver


class SQLiteSaver(PersistentSaver):
    """SQLite-based checkpoint storage.

    Provides persistent storage for graph checkpoints using SQLite.
    Suitable for single-machine deployments.
    """

    def __init__(self, db_path: str | Path = "checkpoints.db", *, serde: Optional[SerializerProtocol] = None):
        """Initialize SQLite saver.

        Args:
            db_path: Path to SQLite database file
            serde: Serializer for checkpoints and writes
        """
        super().__init__(serde=serde)
        self.db_path = str(db_path)

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self, conn: sqlite3.Connection) -> None:
        """Ensure the checkpoint and write tables exist."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS checkpoints (
                thread_id TEXT NOT NULL,
                checkpoint_ns TEXT NOT NULL DEFAULT '',
                checkpoint_id TEXT NOT NULL,
                parent_checkpoint_id TEXT,
                type TEXT NOT NULL,
                checkpoint BLOB NOT NULL,
                metadata_type TEXT NOT NULL,
                metadata BLOB NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (thread_id, checkpoint_ns, checkpoint_id)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS writes (
                thread_id TEXT NOT NULL,
                checkpoint_ns TEXT NOT NULL DEFAULT '',
                checkpoint_id TEXT NOT NULL,
                task_id TEXT NOT NULL,
                idx INTEGER NOT NULL,
                channel TEXT NOT NULL,
                type TEXT NOT NULL,
                value BLOB NOT NULL,
                task_path TEXT NOT NULL DEFAULT '',
                PRIMARY KEY (thread_id, checkpoint_ns, checkpoint_id, task_id, idx)
            )
        """)
        conn.commit()

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    def _load_writes(self, conn: sqlite3.Connection, row: sqlite3.Row) -> list[tuple[str, str, str, bytes]]:
        rows = conn.execute(
            """
            SELECT task_id, channel, type, value FROM writes
            WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id = ?
            ORDER BY task_id, idx
            """,
            (row["thread_id"], row["checkpoint_ns"], row["checkpoint_id"]),
        ).fetchall()
        return [(w["task_id"], w["channel"], w["type"], w["value"]) for w in rows]

    def _row_to_tuple(self, conn: sqlite3.Connection, row: sqlite3.Row) -> CheckpointTuple:
        record = CheckpointRecord(
            thread_id=row["thread_id"],
            checkpoint_ns=row["checkpoint_ns"],
            checkpoint_id=row["checkpoint_id"],
            parent_checkpoint_id=row["parent_checkpoint_id"],
            type=row["type"],
            checkpoint=row["checkpoint"],
            metadata_type=row["metadata_type"],
            metadata=row["metadata"],
        )
        return self._to_tuple(record, self._load_writes(conn, row))

    async def aget_tuple(self, config: RunnableConfig) -> Optional[CheckpointTuple]:
        return await self._run(self._get_tuple_sync, config)

    def _get_tuple_sync(self, config: RunnableConfig) -> Optional[CheckpointTuple]:
        thread_id, checkpoint_ns, checkpoint_id = self._keys(config)
        conn = self._get_connection()
        try:
            self._ensure_tables(conn)
            if checkpoint_id:
                row = conn.execute(
                    """
                    SELECT * FROM checkpoints
                    WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id = ?
                    """,
                    (thread_id, checkpoint_ns, checkpoint_id),
                ).fetchone()
            else:
                row = conn.execute(
                    """
                    SELECT * FROM checkpoints
                    WHERE thread_id = ? AND checkpoint_ns = ?
                    ORDER BY checkpoint_id DESC LIMIT 1
                    """,
                    (thread_id, checkpoint_ns),
                ).fetchone()
            return self._row_to_tuple(conn, row) if row is not None else None
        finally:
            conn.close()

    async def alist(
        self,
        config: Optional[RunnableConfig],
        *,
        filter: Optional[dict[str, Any]] = None,
        before: Optional[RunnableConfig] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[CheckpointTuple]:
        for item in await self._run(self._list_sync, config, filter, before, limit):
            yield item

    def _list_sync(
        self,
        config: Optional[RunnableConfig],
        filter: Optional[dict[str, Any]],
        before: Optional[RunnableConfig],
        limit: Optional[int],
    ) -> list[CheckpointTuple]:
        clauses, params = [], []
        if config is not None:
            configurable = config["configurable"]
            clauses.append("thread_id = ?")
            params.append(configurable["thread_id"])
            if "checkpoint_ns" in configurable:
                clauses.append("checkpoint_ns = ?")
                params.append(configurable["checkpoint_ns"])
            if configurable.get("checkpoint_id"):
                clauses.append("checkpoint_id = ?")
                params.append(configurable["checkpoint_id"])
        if before is not None and before["configurable"].get("checkpoint_id"):
            clauses.append("checkpoint_id < ?")
            params.append(before["configurable"]["checkpoint_id"])

        query = "SELECT * FROM checkpoints"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY checkpoint_id DESC"

        conn = self._get_connection()
        try:
            self._ensure_tables(conn)
            items = []
            for row in conn.execute(query, params).fetchall():
                item = self._row_to_tuple(conn, row)
                if not self._matches(item, filter):
                    continue
                items.append(item)
                if limit is not None and len(items) >= limit:
                    break
            return items
        finally:
            conn.close()

    async def _store_checkpoint(self, record: CheckpointRecord) -> None:
        await self._run(self._store_checkpoint_sync, record)

    def _store_checkpoint_sync(self, record: CheckpointRecord) -> None:
        conn = self._get_connection()
        try:
            self._ensure_tables(conn)
            conn.execute(
                """
                INSERT OR REPLACE INTO checkpoints (
                    thread_id, checkpoint_ns, checkpoint_id, parent_checkpoint_id,
                    type, checkpoint, metadata_type, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record["thread_id"],
                    record["checkpoint_ns"],
                    record["checkpoint_id"],
                    record["parent_checkpoint_id"],
                    record["type"],
                    record["checkpoint"],
                    record["metadata_type"],
                    record["metadata"],
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    async def aput_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        if writes:
            await self._run(self._put_writes_sync, config, list(writes), task_id, task_path)

    def _put_writes_sync(
        self,
        config: RunnableConfig,
        writes: list[tuple[str, Any]],
        task_id: str,
        task_path: str,
    ) -> None:
        thread_id, checkpoint_ns, checkpoint_id = self._keys(config)
        rows, replace = self._dump_writes(writes)
        verb = "INSERT OR REPLACE" if replace else "INSERT OR IGNORE"

        conn = self._get_connection()
        try:
            self._ensure_tables(conn)
            conn.executemany(
                f"""
                {verb} INTO writes (
                    thread_id, checkpoint_ns, checkpoint_id, task_id, idx, channel, type, value, task_path
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (thread_id, checkpoint_ns, checkpoint_id, task_id, idx, channel, type_, value, task_path)
                    for idx, channel, type_, value in rows
                ],
            )
            conn.commit()
        finally:
            conn.close()

    async def adelete_thread(self, thread_id: str) -> None:
        await self._run(self._delete_thread_sync, thread_id)

    def _delete_thread_sync(self, thread_id: str) -> None:
        conn = self._get_connection()
        try:
            self._ensure_tables(conn)
            conn.execute("DELETE FROM checkpoints WHERE thread_id = ?", (thread_id,))
            conn.execute("DELETE FROM writes WHERE thread_id = ?", (thread_id,))
            conn.commit()
        finally:
            conn.close()
