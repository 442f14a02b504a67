"""SQLite implementation of the durable store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable, Iterator, Mapping, Optional, TypeVar

from ..constants import FINISHED_RECOVERY_POINT
from .models import Entry, Execution, utcnow
from .store import DurableStore, ExecutionVerifier

T = TypeVar("T")

_EXECUTION_COLUMNS = (
    "id, idempotency_key, serialized_job, definition, recover_to, "
    "last_run_at, created_at, updated_at"
)

# store whose connection the current task holds inside transaction()
_transaction_owner: ContextVar[Optional["SQLiteStore"]] = ContextVar(
    "durastep_sqlite_transaction", default=None
)


class SQLiteStore(DurableStore):
    """Persist workflow state using SQLite.

    The connection runs in autocommit mode; multi-statement units open their
    own ``BEGIN IMMEDIATE`` transaction, which takes the database write lock
    up front and serializes concurrent bootstraps. Inside :meth:`transaction`
    the owning task keeps the connection and those units become savepoints.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._depth = 0
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                idempotency_key TEXT NOT NULL UNIQUE,
                serialized_job TEXT NOT NULL,
                definition TEXT NOT NULL,
                recover_to TEXT NOT NULL,
                last_run_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                execution_id INTEGER NOT NULL REFERENCES executions (id) ON DELETE CASCADE,
                step TEXT NOT NULL,
                action TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                data TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_entries_execution_step_action
            ON entries (execution_id, step, action)
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS context_values (
                execution_id INTEGER NOT NULL REFERENCES executions (id) ON DELETE CASCADE,
                key TEXT NOT NULL,
                value TEXT,
                PRIMARY KEY (execution_id, key)
            )
            """
        )

    # ------------------------------------------------------------------
    # Helper methods
    def _owns_connection(self) -> bool:
        return _transaction_owner.get() is self

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if self._owns_connection():
            yield
            return
        with self._lock:
            yield

    def _execute(self, query: str, *params: Any) -> None:
        with self._locked():
            self._conn.execute(query, params)

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._locked():
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._locked():
            return self._conn.execute(query, params).fetchall()

    def _transaction(self, work: Callable[[sqlite3.Cursor], T]) -> T:
        if self._owns_connection():
            return self._savepoint(work)
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                result = work(cur)
            except BaseException:
                cur.execute("ROLLBACK")
                raise
            cur.execute("COMMIT")
            return result

    def _savepoint(self, work: Callable[[sqlite3.Cursor], T]) -> T:
        cur = self._conn.cursor()
        cur.execute("SAVEPOINT durastep_unit")
        try:
            result = work(cur)
        except BaseException:
            cur.execute("ROLLBACK TO durastep_unit")
            cur.execute("RELEASE durastep_unit")
            raise
        cur.execute("RELEASE durastep_unit")
        return result

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._owns_connection():
            # nested block
            async with self._nested_transaction():
                yield
            return

        await asyncio.to_thread(self._lock.acquire)
        token = _transaction_owner.set(self)
        try:
            await asyncio.to_thread(self._conn.execute, "BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                await asyncio.to_thread(self._conn.execute, "ROLLBACK")
                raise
            await asyncio.to_thread(self._conn.execute, "COMMIT")
        finally:
            _transaction_owner.reset(token)
            self._lock.release()

    @asynccontextmanager
    async def _nested_transaction(self) -> AsyncIterator[None]:
        name = f"durastep_block_{self._depth}"
        self._depth += 1
        try:
            await asyncio.to_thread(self._conn.execute, f"SAVEPOINT {name}")
            try:
                yield
            except BaseException:
                await asyncio.to_thread(self._conn.execute, f"ROLLBACK TO {name}")
                await asyncio.to_thread(self._conn.execute, f"RELEASE {name}")
                raise
            await asyncio.to_thread(self._conn.execute, f"RELEASE {name}")
        finally:
            self._depth -= 1

    @staticmethod
    def _to_execution(row: sqlite3.Row) -> Execution:
        return Execution(
            id=row["id"],
            idempotency_key=row["idempotency_key"],
            serialized_job=json.loads(row["serialized_job"]),
            definition=json.loads(row["definition"]),
            recover_to=row["recover_to"],
            last_run_at=datetime.fromisoformat(row["last_run_at"]) if row["last_run_at"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _to_entry(row: sqlite3.Row) -> Entry:
        return Entry(
            id=row["id"],
            execution_id=row["execution_id"],
            step=row["step"],
            action=row["action"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            data=json.loads(row["data"]) if row["data"] else {},
        )

    # ------------------------------------------------------------------
    # Store API
    async def bootstrap_execution(
        self,
        idempotency_key: str,
        serialized_job: dict,
        definition: dict,
        recover_to: str,
        verify: ExecutionVerifier,
    ) -> tuple[Execution, bool]:
        def work(cur: sqlite3.Cursor) -> tuple[Execution, bool]:
            now = utcnow().isoformat(timespec="microseconds")
            row = cur.execute(
                f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE idempotency_key = ?",
                (idempotency_key,),
            ).fetchone()
            if row is None:
                cur.execute(
                    """
                    INSERT INTO executions
                        (idempotency_key, serialized_job, definition, recover_to,
                         last_run_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        idempotency_key,
                        json.dumps(serialized_job),
                        json.dumps(definition),
                        recover_to,
                        now,
                        now,
                        now,
                    ),
                )
                execution_id = cur.lastrowid
                created = True
            else:
                verify(self._to_execution(row))
                cur.execute(
                    """
                    UPDATE executions
                    SET serialized_job = ?, last_run_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (json.dumps(serialized_job), now, now, row["id"]),
                )
                execution_id = row["id"]
                created = False
            fresh = cur.execute(
                f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE id = ?",
                (execution_id,),
            ).fetchone()
            return self._to_execution(fresh), created

        return await asyncio.to_thread(self._transaction, work)

    async def get_execution(self, execution_id: int) -> Execution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE id = ?",
            execution_id,
        )
        return self._to_execution(row) if row else None

    async def find_execution(self, idempotency_key: str) -> Execution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE idempotency_key = ?",
            idempotency_key,
        )
        return self._to_execution(row) if row else None

    async def list_executions(self, finished: Optional[bool] = None) -> list[Execution]:
        query = f"SELECT {_EXECUTION_COLUMNS} FROM executions"
        params: tuple[Any, ...] = ()
        if finished is True:
            query += " WHERE recover_to = ?"
            params = (FINISHED_RECOVERY_POINT,)
        elif finished is False:
            query += " WHERE recover_to != ?"
            params = (FINISHED_RECOVERY_POINT,)
        rows = await asyncio.to_thread(self._fetchall, query + " ORDER BY id", *params)
        return [self._to_execution(row) for row in rows]

    async def update_recover_to(self, execution_id: int, recover_to: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE executions SET recover_to = ?, updated_at = ? WHERE id = ?",
            recover_to,
            utcnow().isoformat(timespec="microseconds"),
            execution_id,
        )

    async def record_entry(
        self,
        execution_id: int,
        step: str,
        action: str,
        timestamp: datetime,
        data: dict | None = None,
    ) -> Entry:
        def insert() -> int:
            with self._locked():
                cur = self._conn.execute(
                    "INSERT INTO entries (execution_id, step, action, timestamp, data) VALUES (?, ?, ?, ?, ?)",
                    (
                        execution_id,
                        step,
                        action,
                        timestamp.isoformat(timespec="microseconds"),
                        json.dumps(data or {}),
                    ),
                )
                return cur.lastrowid

        entry_id = await asyncio.to_thread(insert)
        return Entry(
            id=entry_id,
            execution_id=execution_id,
            step=step,
            action=action,
            timestamp=timestamp,
            data=data or {},
        )

    async def list_entries(
        self,
        execution_id: int,
        step: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[Entry]:
        query = "SELECT id, execution_id, step, action, timestamp, data FROM entries WHERE execution_id = ?"
        params: list[Any] = [execution_id]
        if step is not None:
            query += " AND step = ?"
            params.append(step)
        if action is not None:
            query += " AND action = ?"
            params.append(action)
        rows = await asyncio.to_thread(
            self._fetchall, query + " ORDER BY timestamp, id", *params
        )
        return [self._to_entry(row) for row in rows]

    async def has_entry(self, execution_id: int, step: str, action: str) -> bool:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT 1 FROM entries WHERE execution_id = ? AND step = ? AND action = ? LIMIT 1",
            execution_id,
            step,
            action,
        )
        return row is not None

    async def set_values(self, execution_id: int, values: Mapping[str, Any]) -> None:
        rows = [(execution_id, key, json.dumps(value)) for key, value in values.items()]

        def work(cur: sqlite3.Cursor) -> None:
            cur.executemany(
                """
                INSERT INTO context_values (execution_id, key, value) VALUES (?, ?, ?)
                ON CONFLICT (execution_id, key) DO UPDATE SET value = excluded.value
                """,
                rows,
            )

        await asyncio.to_thread(self._transaction, work)

    async def get_values(self, execution_id: int, keys: Iterable[str]) -> dict[str, Any]:
        keys = list(keys)
        if not keys:
            return {}
        placeholders = ", ".join("?" for _ in keys)
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT key, value FROM context_values WHERE execution_id = ? AND key IN ({placeholders})",
            execution_id,
            *keys,
        )
        return {row["key"]: json.loads(row["value"]) for row in rows}

    async def insert_value_if_absent(self, execution_id: int, key: str, value: Any) -> Any:
        def work(cur: sqlite3.Cursor) -> Any:
            cur.execute(
                """
                INSERT INTO context_values (execution_id, key, value) VALUES (?, ?, ?)
                ON CONFLICT (execution_id, key) DO NOTHING
                """,
                (execution_id, key, json.dumps(value)),
            )
            row = cur.execute(
                "SELECT value FROM context_values WHERE execution_id = ? AND key = ?",
                (execution_id, key),
            ).fetchone()
            return json.loads(row["value"])

        return await asyncio.to_thread(self._transaction, work)

    async def list_values(self, execution_id: int) -> dict[str, Any]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT key, value FROM context_values WHERE execution_id = ?",
            execution_id,
        )
        return {row["key"]: json.loads(row["value"]) for row in rows}

    async def clear_finished_executions(
        self, finished_before: datetime, batch_size: int = 500
    ) -> int:
        def work(cur: sqlite3.Cursor) -> int:
            ids = [
                row["id"]
                for row in cur.execute(
                    "SELECT id FROM executions WHERE recover_to = ? AND last_run_at < ? LIMIT ?",
                    (FINISHED_RECOVERY_POINT, finished_before.isoformat(timespec="microseconds"), batch_size),
                ).fetchall()
            ]
            if not ids:
                return 0
            placeholders = ", ".join("?" for _ in ids)
            cur.execute(f"DELETE FROM entries WHERE execution_id IN ({placeholders})", ids)
            cur.execute(f"DELETE FROM context_values WHERE execution_id IN ({placeholders})", ids)
            cur.execute(f"DELETE FROM executions WHERE id IN ({placeholders})", ids)
            return len(ids)

        total = 0
        while True:
            deleted = await asyncio.to_thread(self._transaction, work)
            total += deleted
            if deleted == 0:
                return total
