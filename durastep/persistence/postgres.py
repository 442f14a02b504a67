"""PostgreSQL implementation of the durable store."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Mapping, Optional

import asyncpg

from ..constants import FINISHED_RECOVERY_POINT
from .models import Entry, Execution, utcnow
from .store import DurableStore, ExecutionVerifier

_EXECUTION_COLUMNS = (
    "id, idempotency_key, serialized_job, definition, recover_to, "
    "last_run_at, created_at, updated_at"
)

# store and connection the current task holds inside transaction()
_active_transaction: ContextVar[Optional[tuple["PostgresStore", asyncpg.Connection]]] = ContextVar(
    "durastep_postgres_transaction", default=None
)


class PostgresStore(DurableStore):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        # JSON rather than JSONB keeps the step order of definitions
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS durastep_executions (
                id BIGSERIAL PRIMARY KEY,
                idempotency_key TEXT NOT NULL UNIQUE,
                serialized_job JSON NOT NULL,
                definition JSON NOT NULL,
                recover_to TEXT NOT NULL,
                last_run_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS durastep_entries (
                id BIGSERIAL PRIMARY KEY,
                execution_id BIGINT NOT NULL REFERENCES durastep_executions (id) ON DELETE CASCADE,
                step TEXT NOT NULL,
                action TEXT NOT NULL,
                timestamp TIMESTAMPTZ NOT NULL,
                data JSONB
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_durastep_entries_execution_step_action
            ON durastep_entries (execution_id, step, action)
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS durastep_values (
                execution_id BIGINT NOT NULL REFERENCES durastep_executions (id) ON DELETE CASCADE,
                key TEXT NOT NULL,
                value JSONB,
                PRIMARY KEY (execution_id, key)
            )
            """
        )

    @staticmethod
    def _to_execution(row: asyncpg.Record) -> Execution:
        return Execution(
            id=row["id"],
            idempotency_key=row["idempotency_key"],
            serialized_job=json.loads(row["serialized_job"]),
            definition=json.loads(row["definition"]),
            recover_to=row["recover_to"],
            last_run_at=row["last_run_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _to_entry(row: asyncpg.Record) -> Entry:
        return Entry(
            id=row["id"],
            execution_id=row["execution_id"],
            step=row["step"],
            action=row["action"],
            timestamp=row["timestamp"],
            data=json.loads(row["data"]) if row["data"] else {},
        )

    # ------------------------------------------------------------------
    def _transaction_connection(self) -> asyncpg.Connection | None:
        active = _active_transaction.get()
        if active is not None and active[0] is self:
            return active[1]
        return None

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        conn = self._transaction_connection()
        if conn is not None:
            yield conn
            return
        conn = await self._connect()
        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        conn = self._transaction_connection()
        if conn is not None:
            # asyncpg turns a nested transaction into a savepoint
            async with conn.transaction():
                yield
            return

        conn = await self._connect()
        token = _active_transaction.set((self, conn))
        try:
            async with conn.transaction():
                yield
        finally:
            _active_transaction.reset(token)
            await conn.close()

    # ------------------------------------------------------------------
    async def bootstrap_execution(
        self,
        idempotency_key: str,
        serialized_job: dict,
        definition: dict,
        recover_to: str,
        verify: ExecutionVerifier,
    ) -> tuple[Execution, bool]:
        # a savepoint cannot change the isolation of an enclosing transaction
        isolation = None if self._transaction_connection() else "serializable"
        async with self._connection() as conn:
            async with conn.transaction(isolation=isolation):
                now = utcnow()
                row = await conn.fetchrow(
                    f"SELECT {_EXECUTION_COLUMNS} FROM durastep_executions WHERE idempotency_key = $1",
                    idempotency_key,
                )
                if row is None:
                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO durastep_executions
                            (idempotency_key, serialized_job, definition, recover_to,
                             last_run_at, created_at, updated_at)
                        VALUES ($1, $2, $3, $4, $5, $5, $5)
                        RETURNING {_EXECUTION_COLUMNS}
                        """,
                        idempotency_key,
                        json.dumps(serialized_job),
                        json.dumps(definition),
                        recover_to,
                        now,
                    )
                    return self._to_execution(row), True

                verify(self._to_execution(row))
                row = await conn.fetchrow(
                    f"""
                    UPDATE durastep_executions
                    SET serialized_job = $1, last_run_at = $2, updated_at = $2
                    WHERE id = $3
                    RETURNING {_EXECUTION_COLUMNS}
                    """,
                    json.dumps(serialized_job),
                    now,
                    row["id"],
                )
                return self._to_execution(row), False

    async def get_execution(self, execution_id: int) -> Execution | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_EXECUTION_COLUMNS} FROM durastep_executions WHERE id = $1",
                execution_id,
            )
        return self._to_execution(row) if row else None

    async def find_execution(self, idempotency_key: str) -> Execution | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_EXECUTION_COLUMNS} FROM durastep_executions WHERE idempotency_key = $1",
                idempotency_key,
            )
        return self._to_execution(row) if row else None

    async def list_executions(self, finished: Optional[bool] = None) -> list[Execution]:
        query = f"SELECT {_EXECUTION_COLUMNS} FROM durastep_executions"
        params: list[Any] = []
        if finished is True:
            query += " WHERE recover_to = $1"
            params.append(FINISHED_RECOVERY_POINT)
        elif finished is False:
            query += " WHERE recover_to != $1"
            params.append(FINISHED_RECOVERY_POINT)
        async with self._connection() as conn:
            rows = await conn.fetch(query + " ORDER BY id", *params)
        return [self._to_execution(row) for row in rows]

    async def update_recover_to(self, execution_id: int, recover_to: str) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "UPDATE durastep_executions SET recover_to = $1, updated_at = $2 WHERE id = $3",
                recover_to,
                utcnow(),
                execution_id,
            )

    # ------------------------------------------------------------------
    async def record_entry(
        self,
        execution_id: int,
        step: str,
        action: str,
        timestamp: datetime,
        data: dict | None = None,
    ) -> Entry:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO durastep_entries (execution_id, step, action, timestamp, data)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id, execution_id, step, action, timestamp, data
                """,
                execution_id,
                step,
                action,
                timestamp,
                json.dumps(data or {}),
            )
        return self._to_entry(row)

    async def list_entries(
        self,
        execution_id: int,
        step: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[Entry]:
        query = "SELECT id, execution_id, step, action, timestamp, data FROM durastep_entries WHERE execution_id = $1"
        params: list[Any] = [execution_id]
        if step is not None:
            params.append(step)
            query += f" AND step = ${len(params)}"
        if action is not None:
            params.append(action)
            query += f" AND action = ${len(params)}"
        async with self._connection() as conn:
            rows = await conn.fetch(query + " ORDER BY timestamp, id", *params)
        return [self._to_entry(row) for row in rows]

    async def has_entry(self, execution_id: int, step: str, action: str) -> bool:
        async with self._connection() as conn:
            found = await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM durastep_entries
                    WHERE execution_id = $1 AND step = $2 AND action = $3
                )
                """,
                execution_id,
                step,
                action,
            )
        return bool(found)

    # ------------------------------------------------------------------
    async def set_values(self, execution_id: int, values: Mapping[str, Any]) -> None:
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.executemany(
                    """
                    INSERT INTO durastep_values (execution_id, key, value) VALUES ($1, $2, $3)
                    ON CONFLICT (execution_id, key) DO UPDATE SET value = EXCLUDED.value
                    """,
                    [(execution_id, key, json.dumps(value)) for key, value in values.items()],
                )

    async def get_values(self, execution_id: int, keys: Iterable[str]) -> dict[str, Any]:
        keys = list(keys)
        if not keys:
            return {}
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT key, value FROM durastep_values WHERE execution_id = $1 AND key = ANY($2::text[])",
                execution_id,
                keys,
            )
        return {row["key"]: json.loads(row["value"]) for row in rows}

    async def insert_value_if_absent(self, execution_id: int, key: str, value: Any) -> Any:
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO durastep_values (execution_id, key, value) VALUES ($1, $2, $3)
                    ON CONFLICT (execution_id, key) DO NOTHING
                    """,
                    execution_id,
                    key,
                    json.dumps(value),
                )
                stored = await conn.fetchval(
                    "SELECT value FROM durastep_values WHERE execution_id = $1 AND key = $2",
                    execution_id,
                    key,
                )
        return json.loads(stored)

    async def list_values(self, execution_id: int) -> dict[str, Any]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT key, value FROM durastep_values WHERE execution_id = $1",
                execution_id,
            )
        return {row["key"]: json.loads(row["value"]) for row in rows}

    async def clear_finished_executions(
        self, finished_before: datetime, batch_size: int = 500
    ) -> int:
        total = 0
        async with self._connection() as conn:
            while True:
                status = await conn.execute(
                    """
                    DELETE FROM durastep_executions
                    WHERE id IN (
                        SELECT id FROM durastep_executions
                        WHERE recover_to = $1 AND last_run_at < $2
                        LIMIT $3
                    )
                    """,
                    FINISHED_RECOVERY_POINT,
                    finished_before,
                    batch_size,
                )
                deleted = int(status.split()[-1])
                total += deleted
                if deleted == 0:
                    return total
