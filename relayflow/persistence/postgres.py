"""PostgreSQL implementation of the run repository."""

from __future__ import annotations

import json
from typing import Any, Iterable

import asyncpg

from ..contracts import TERMINAL_RUN_STATUSES, RunStatus
from .models import RunInstance, StepRecord
from .repository import RunRepository


def _load(value: Any, default: Any = None) -> Any:
    if value is None:
        return default
    return json.loads(value) if isinstance(value, str) else value


class PostgresRunRepository(RunRepository):
    """Persist run state using PostgreSQL."""

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
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                payload JSONB,
                status TEXT NOT NULL,
                message TEXT,
                result_delivered BOOLEAN NOT NULL DEFAULT FALSE
            )
            """
        )
        await conn.execute(
            "ALTER TABLE runs ADD COLUMN IF NOT EXISTS result_delivered BOOLEAN NOT NULL DEFAULT FALSE"
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_history (
                id SERIAL PRIMARY KEY,
                run_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                execution_id TEXT NOT NULL,
                step_type TEXT,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                log_entry JSONB,
                continuations JSONB,
                UNIQUE (run_id, step_id)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS branches (
                run_id TEXT NOT NULL,
                execution_id TEXT NOT NULL,
                is_open BOOLEAN NOT NULL,
                PRIMARY KEY (run_id, execution_id)
            )
            """
        )

    @staticmethod
    def _step_from_row(r: asyncpg.Record) -> StepRecord:
        return StepRecord(
            id=r["id"],
            run_id=r["run_id"],
            step_id=r["step_id"],
            execution_id=r["execution_id"],
            step_type=r["step_type"],
            status=r["status"],
            started_at=r["started_at"],
            completed_at=r["completed_at"],
            log_entry=_load(r["log_entry"]),
            continuations=_load(r["continuations"], []),
        )

    @staticmethod
    async def _open_count(conn: asyncpg.Connection, run_id: str) -> int:
        return await conn.fetchval(
            "SELECT COUNT(*) FROM branches WHERE run_id = $1 AND is_open", run_id
        )

    # ------------------------------------------------------------------
    async def create_run(
        self, run_id: str, workflow_id: str, payload: dict | None = None
    ) -> bool:
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                INSERT INTO runs (run_id, workflow_id, payload, status)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (run_id) DO NOTHING
                """,
                run_id,
                workflow_id,
                json.dumps(payload or {}),
                RunStatus.PENDING.value,
            )
        finally:
            await conn.close()
        return status.endswith(" 1")

    async def get_run(self, run_id: str) -> RunInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM runs WHERE run_id = $1",
                run_id,
            )
            if not row:
                return None
            step_rows = await conn.fetch(
                "SELECT * FROM step_history WHERE run_id = $1 ORDER BY id", run_id
            )
            open_branches = await self._open_count(conn, run_id)
        finally:
            await conn.close()
        return RunInstance(
            run_id=row["run_id"],
            workflow_id=row["workflow_id"],
            payload=_load(row["payload"], {}),
            status=row["status"],
            message=row["message"],
            result_delivered=row["result_delivered"],
            open_branches=open_branches,
            steps=[self._step_from_row(r) for r in step_rows],
        )

    async def list_runs(self) -> list[RunInstance]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT r.run_id, r.workflow_id, r.payload, r.status, r.message, r.result_delivered,
                       (SELECT COUNT(*) FROM branches b
                        WHERE b.run_id = r.run_id AND b.is_open) AS open_branches
                FROM runs r
                """
            )
        finally:
            await conn.close()
        return [
            RunInstance(
                run_id=row["run_id"],
                workflow_id=row["workflow_id"],
                payload=_load(row["payload"], {}),
                status=row["status"],
                message=row["message"],
                result_delivered=row["result_delivered"],
                open_branches=row["open_branches"],
            )
            for row in rows
        ]

    async def mark_step_started(
        self,
        run_id: str,
        step_id: str,
        execution_id: str,
        step_type: str | None = None,
        lease: float | None = None,
    ) -> bool:
        conn = await self._connect()
        try:
            async with conn.transaction():
                claimed = await conn.fetchval(
                    """
                    INSERT INTO step_history
                        (run_id, step_id, execution_id, step_type, status, started_at)
                    VALUES ($1, $2, $3, $4, 'running', NOW())
                    ON CONFLICT (run_id, step_id) DO UPDATE SET started_at = NOW()
                    WHERE step_history.execution_id = EXCLUDED.execution_id
                        AND step_history.completed_at IS NULL
                        AND step_history.started_at < NOW() - make_interval(secs => $5::float8)
                    RETURNING id
                    """,
                    run_id,
                    step_id,
                    execution_id,
                    step_type,
                    float(lease) if lease is not None else None,
                )
                if claimed is None:
                    return False
                await conn.execute(
                    "UPDATE runs SET status = $1 WHERE run_id = $2 AND status = $3",
                    RunStatus.RUNNING.value,
                    run_id,
                    RunStatus.PENDING.value,
                )
                return True
        finally:
            await conn.close()

    async def release_step(self, run_id: str, step_id: str, execution_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                DELETE FROM step_history
                WHERE run_id = $1 AND step_id = $2 AND execution_id = $3
                    AND completed_at IS NULL
                """,
                run_id,
                step_id,
                execution_id,
            )
        finally:
            await conn.close()

    async def mark_step_completed(
        self,
        run_id: str,
        step_id: str,
        status: str,
        log_entry: dict[str, Any] | None = None,
        continuations: list[dict[str, Any]] | None = None,
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE step_history
                SET completed_at = NOW(), status = $1, log_entry = $2, continuations = $3
                WHERE run_id = $4 AND step_id = $5 AND completed_at IS NULL
                """,
                status,
                json.dumps(log_entry) if log_entry is not None else None,
                json.dumps(continuations or []),
                run_id,
                step_id,
            )
        finally:
            await conn.close()

    async def get_step(self, run_id: str, step_id: str) -> StepRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM step_history WHERE run_id = $1 AND step_id = $2",
                run_id,
                step_id,
            )
        finally:
            await conn.close()
        return self._step_from_row(row) if row else None

    async def get_execution_log(self, run_id: str) -> list[dict[str, Any]]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT log_entry FROM step_history
                WHERE run_id = $1 AND log_entry IS NOT NULL ORDER BY id
                """,
                run_id,
            )
        finally:
            await conn.close()
        return [_load(r["log_entry"]) for r in rows]

    async def update_payload(self, run_id: str, payload: dict) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "UPDATE runs SET payload = COALESCE(payload, '{}'::jsonb) || $1::jsonb WHERE run_id = $2",
                json.dumps(payload),
                run_id,
            )
        finally:
            await conn.close()

    async def open_branches(self, run_id: str, execution_ids: Iterable[str]) -> None:
        conn = await self._connect()
        try:
            await conn.executemany(
                """
                INSERT INTO branches (run_id, execution_id, is_open) VALUES ($1, $2, TRUE)
                ON CONFLICT (run_id, execution_id) DO NOTHING
                """,
                [(run_id, execution_id) for execution_id in execution_ids],
            )
        finally:
            await conn.close()

    async def close_branch(self, run_id: str, execution_id: str) -> int:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO branches (run_id, execution_id, is_open) VALUES ($1, $2, FALSE)
                    ON CONFLICT (run_id, execution_id) DO UPDATE SET is_open = FALSE
                    """,
                    run_id,
                    execution_id,
                )
                return await self._open_count(conn, run_id)
        finally:
            await conn.close()

    async def mark_run_completed(
        self, run_id: str, status: str, message: str | None = None
    ) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE runs SET status = $1, message = $2
                WHERE run_id = $3 AND NOT (status = ANY($4::text[]))
                """,
                status,
                message,
                run_id,
                list(TERMINAL_RUN_STATUSES),
            )
        finally:
            await conn.close()
        return result.endswith(" 1")

    async def mark_result_delivered(self, run_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "UPDATE runs SET result_delivered = TRUE WHERE run_id = $1", run_id
            )
        finally:
            await conn.close()
