"""SQLite implementation of the run repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

from ..contracts import TERMINAL_RUN_STATUSES, RunStatus
from .models import RunInstance, StepRecord
from .repository import RunRepository


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _load(text: str | None, default: Any = None) -> Any:
    return json.loads(text) if text else default


class SQLiteRunRepository(RunRepository):
    """Persist run state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    run_id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    payload TEXT,
                    status TEXT NOT NULL,
                    message TEXT,
                    result_delivered INTEGER NOT NULL DEFAULT 0
                );
                CREATE TABLE IF NOT EXISTS step_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    step_id TEXT NOT NULL,
                    execution_id TEXT NOT NULL,
                    step_type TEXT,
                    status TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    log_entry TEXT,
                    continuations TEXT,
                    UNIQUE (run_id, step_id)
                );
                CREATE TABLE IF NOT EXISTS branches (
                    run_id TEXT NOT NULL,
                    execution_id TEXT NOT NULL,
                    is_open INTEGER NOT NULL,
                    PRIMARY KEY (run_id, execution_id)
                );
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _step_from_row(r: sqlite3.Row) -> StepRecord:
        return StepRecord(
            id=r["id"],
            run_id=r["run_id"],
            step_id=r["step_id"],
            execution_id=r["execution_id"],
            step_type=r["step_type"],
            status=r["status"],
            started_at=datetime.fromisoformat(r["started_at"]) if r["started_at"] else None,
            completed_at=datetime.fromisoformat(r["completed_at"]) if r["completed_at"] else None,
            log_entry=_load(r["log_entry"]),
            continuations=_load(r["continuations"], []),
        )

    def _run_from_row(self, row: sqlite3.Row, steps: list[StepRecord]) -> RunInstance:
        open_row = self._fetchone(
            "SELECT COUNT(*) AS n FROM branches WHERE run_id = ? AND is_open = 1",
            row["run_id"],
        )
        return RunInstance(
            run_id=row["run_id"],
            workflow_id=row["workflow_id"],
            payload=_load(row["payload"], {}),
            status=row["status"],
            message=row["message"],
            result_delivered=bool(row["result_delivered"]),
            open_branches=open_row["n"] if open_row else 0,
            steps=steps,
        )

    def _merge_payload(self, run_id: str, payload: dict) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("SELECT payload FROM runs WHERE run_id = ?", (run_id,))
            row = cur.fetchone()
            if row is None:
                return
            merged = {**_load(row["payload"], {}), **payload}
            cur.execute(
                "UPDATE runs SET payload = ? WHERE run_id = ?", (json.dumps(merged), run_id)
            )
            self._conn.commit()

    def _close_branch(self, run_id: str, execution_id: str) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(
                """
                INSERT INTO branches (run_id, execution_id, is_open) VALUES (?, ?, 0)
                ON CONFLICT (run_id, execution_id) DO UPDATE SET is_open = 0
                """,
                (run_id, execution_id),
            )
            cur.execute(
                "SELECT COUNT(*) AS n FROM branches WHERE run_id = ? AND is_open = 1", (run_id,)
            )
            remaining = cur.fetchone()["n"]
            self._conn.commit()
            return remaining

    def _claim_step(
        self,
        run_id: str,
        step_id: str,
        execution_id: str,
        step_type: str | None,
        lease: float | None,
    ) -> bool:
        now = datetime.now(timezone.utc)
        cutoff = (
            (now - timedelta(seconds=lease)).isoformat(timespec="microseconds")
            if lease is not None
            else None
        )
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(
                """
                INSERT INTO step_history
                    (run_id, step_id, execution_id, step_type, status, started_at)
                VALUES (?, ?, ?, ?, 'running', ?)
                ON CONFLICT (run_id, step_id) DO UPDATE SET started_at = excluded.started_at
                WHERE step_history.execution_id = excluded.execution_id
                    AND step_history.completed_at IS NULL
                    AND step_history.started_at < ?
                """,
                (
                    run_id,
                    step_id,
                    execution_id,
                    step_type,
                    now.isoformat(timespec="microseconds"),
                    cutoff,
                ),
            )
            claimed = cur.rowcount > 0
            if claimed:
                cur.execute(
                    "UPDATE runs SET status = ? WHERE run_id = ? AND status = ?",
                    (RunStatus.RUNNING.value, run_id, RunStatus.PENDING.value),
                )
            self._conn.commit()
            return claimed

    # ------------------------------------------------------------------
    # Repository API
    async def create_run(
        self, run_id: str, workflow_id: str, payload: dict | None = None
    ) -> bool:
        inserted = await asyncio.to_thread(
            self._execute,
            "INSERT OR IGNORE INTO runs (run_id, workflow_id, payload, status) VALUES (?, ?, ?, ?)",
            run_id,
            workflow_id,
            json.dumps(payload or {}),
            RunStatus.PENDING.value,
        )
        return inserted > 0

    async def get_run(self, run_id: str) -> RunInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM runs WHERE run_id = ?",
            run_id,
        )
        if not row:
            return None
        steps_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM step_history WHERE run_id = ? ORDER BY id",
            run_id,
        )
        steps = [self._step_from_row(r) for r in steps_rows]
        return await asyncio.to_thread(self._run_from_row, row, steps)

    async def list_runs(self) -> list[RunInstance]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM runs",
        )
        runs: list[RunInstance] = []
        for row in rows:
            runs.append(await asyncio.to_thread(self._run_from_row, row, []))
        return runs

    async def mark_step_started(
        self,
        run_id: str,
        step_id: str,
        execution_id: str,
        step_type: str | None = None,
        lease: float | None = None,
    ) -> bool:
        return await asyncio.to_thread(
            self._claim_step, run_id, step_id, execution_id, step_type, lease
        )

    async def release_step(self, run_id: str, step_id: str, execution_id: str) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            DELETE FROM step_history
            WHERE run_id = ? AND step_id = ? AND execution_id = ? AND completed_at IS NULL
            """,
            run_id,
            step_id,
            execution_id,
        )

    async def mark_step_completed(
        self,
        run_id: str,
        step_id: str,
        status: str,
        log_entry: dict[str, Any] | None = None,
        continuations: list[dict[str, Any]] | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE step_history
            SET completed_at = ?, status = ?, log_entry = ?, continuations = ?
            WHERE run_id = ? AND step_id = ? AND completed_at IS NULL
            """,
            _now(),
            status,
            json.dumps(log_entry) if log_entry is not None else None,
            json.dumps(continuations or []),
            run_id,
            step_id,
        )

    async def get_step(self, run_id: str, step_id: str) -> StepRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM step_history WHERE run_id = ? AND step_id = ?",
            run_id,
            step_id,
        )
        return self._step_from_row(row) if row else None

    async def get_execution_log(self, run_id: str) -> list[dict[str, Any]]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT log_entry FROM step_history WHERE run_id = ? AND log_entry IS NOT NULL ORDER BY id",
            run_id,
        )
        return [json.loads(r["log_entry"]) for r in rows]

    async def update_payload(self, run_id: str, payload: dict) -> None:
        await asyncio.to_thread(self._merge_payload, run_id, payload)

    async def open_branches(self, run_id: str, execution_ids: Iterable[str]) -> None:
        for execution_id in execution_ids:
            await asyncio.to_thread(
                self._execute,
                "INSERT OR IGNORE INTO branches (run_id, execution_id, is_open) VALUES (?, ?, 1)",
                run_id,
                execution_id,
            )

    async def close_branch(self, run_id: str, execution_id: str) -> int:
        return await asyncio.to_thread(self._close_branch, run_id, execution_id)

    async def mark_run_completed(
        self, run_id: str, status: str, message: str | None = None
    ) -> bool:
        placeholders = ", ".join("?" for _ in TERMINAL_RUN_STATUSES)
        changed = await asyncio.to_thread(
            self._execute,
            f"UPDATE runs SET status = ?, message = ? WHERE run_id = ? AND status NOT IN ({placeholders})",
            status,
            message,
            run_id,
            *TERMINAL_RUN_STATUSES,
        )
        return changed > 0

    async def mark_result_delivered(self, run_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "UPDATE runs SET result_delivered = 1 WHERE run_id = ?", run_id
        )
