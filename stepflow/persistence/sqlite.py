"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from ..contracts import RunStatus, StepRun, Trigger, Workflow, WorkflowRun, WorkflowStep
from ..errors import PersistenceError
from .repository import WorkflowRepository

Statement = tuple[str, Sequence[Any]]


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _json(value: Any) -> str | None:
    return json.dumps(value) if value is not None else None


def _load(value: str | None) -> Any:
    return json.loads(value) if value else None


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflows and runs using SQLite.

    One connection is shared by the worker threads used through
    ``asyncio.to_thread``; a lock serializes access to it.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS workflows (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    description TEXT,
                    trigger_type TEXT NOT NULL,
                    trigger_value TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_workflows_trigger
                    ON workflows (trigger_type, trigger_value);
                CREATE TABLE IF NOT EXISTS workflow_steps (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL REFERENCES workflows (id),
                    step_type TEXT NOT NULL,
                    step_config TEXT NOT NULL,
                    step_order INTEGER NOT NULL,
                    input_mapping TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (workflow_id, step_order)
                );
                CREATE TABLE IF NOT EXISTS workflow_runs (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    workflow_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    trigger_type TEXT NOT NULL,
                    trigger_value TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    error_message TEXT,
                    retry_of TEXT
                );
                CREATE TABLE IF NOT EXISTS workflow_step_runs (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    workflow_run_id TEXT NOT NULL REFERENCES workflow_runs (id),
                    workflow_step_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    output TEXT,
                    error_message TEXT
                );
                """
            )

    # ------------------------------------------------------------------
    # Helper methods
    def _execute_atomic(self, statements: Iterable[Statement]) -> None:
        try:
            with self._lock, self._conn:
                for query, params in statements:
                    self._conn.execute(query, params)
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def _update_one(self, query: str, *params: Any) -> int:
        try:
            with self._lock, self._conn:
                return self._conn.execute(query, params).rowcount
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Row mapping
    async def _load_workflow(self, row: sqlite3.Row) -> Workflow:
        step_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflow_steps WHERE workflow_id = ? ORDER BY step_order",
            row["id"],
        )
        return Workflow(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            trigger=Trigger(type=row["trigger_type"], value=row["trigger_value"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            steps=[
                WorkflowStep(
                    id=s["id"],
                    workflow_id=s["workflow_id"],
                    step_type=s["step_type"],
                    step_config=_load(s["step_config"]) or {},
                    step_order=s["step_order"],
                    input_mapping=_load(s["input_mapping"]),
                    created_at=_dt(s["created_at"]),
                )
                for s in step_rows
            ],
        )

    @staticmethod
    def _run_from_row(row: sqlite3.Row, steps: list[StepRun]) -> WorkflowRun:
        return WorkflowRun(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=RunStatus(row["status"]),
            trigger=Trigger(type=row["trigger_type"], value=row["trigger_value"]),
            started_at=_dt(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
            error_message=row["error_message"],
            retry_of=row["retry_of"],
            steps=steps,
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, workflow: Workflow) -> None:
        statements: list[Statement] = [
            (
                """
                INSERT INTO workflows
                    (id, name, description, trigger_type, trigger_value, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    workflow.id,
                    workflow.name,
                    workflow.description,
                    workflow.trigger.type,
                    workflow.trigger.value,
                    _ts(workflow.created_at),
                    _ts(workflow.updated_at),
                ),
            )
        ]
        for step in workflow.steps:
            statements.append(
                (
                    """
                    INSERT INTO workflow_steps
                        (id, workflow_id, step_type, step_config, step_order, input_mapping, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        step.id,
                        workflow.id,
                        step.step_type,
                        json.dumps(step.step_config),
                        step.step_order,
                        _json(step.input_mapping),
                        _ts(step.created_at),
                    ),
                )
            )
        await asyncio.to_thread(self._execute_atomic, statements)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflows WHERE id = ?", workflow_id
        )
        if not row:
            return None
        return await self._load_workflow(row)

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM workflows ORDER BY seq DESC"
        )
        return [await self._load_workflow(row) for row in rows]

    async def find_workflow_by_trigger(
        self, trigger_type: str, trigger_value: str
    ) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT * FROM workflows
            WHERE trigger_type = ? AND trigger_value = ?
            ORDER BY seq LIMIT 1
            """,
            trigger_type,
            trigger_value,
        )
        if not row:
            return None
        return await self._load_workflow(row)

    async def create_run(self, run: WorkflowRun) -> None:
        statements: list[Statement] = [
            (
                """
                INSERT INTO workflow_runs
                    (id, workflow_id, status, trigger_type, trigger_value,
                     started_at, completed_at, error_message, retry_of)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.id,
                    run.workflow_id,
                    run.status.value,
                    run.trigger.type,
                    run.trigger.value,
                    _ts(run.started_at),
                    _ts(run.completed_at),
                    run.error_message,
                    run.retry_of,
                ),
            )
        ]
        for step_run in run.steps:
            statements.append(
                (
                    """
                    INSERT INTO workflow_step_runs
                        (id, workflow_run_id, workflow_step_id, status,
                         started_at, completed_at, output, error_message)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        step_run.id,
                        run.id,
                        step_run.workflow_step_id,
                        step_run.status.value,
                        _ts(step_run.started_at),
                        _ts(step_run.completed_at),
                        _json(step_run.output),
                        step_run.error_message,
                    ),
                )
            )
        await asyncio.to_thread(self._execute_atomic, statements)

    async def update_run(
        self, run: WorkflowRun, expected: Optional[RunStatus] = None
    ) -> None:
        query = """
            UPDATE workflow_runs
            SET status = ?, completed_at = ?, error_message = ?
            WHERE id = ?
        """
        params: list[Any] = [
            run.status.value,
            _ts(run.completed_at),
            run.error_message,
            run.id,
        ]
        if expected is not None:
            query += " AND status = ?"
            params.append(expected.value)
        updated = await asyncio.to_thread(self._update_one, query, *params)
        if updated == 0:
            raise PersistenceError(f"Run {run.id} was not updated to {run.status.value}")

    async def update_step_run(
        self, step_run: StepRun, expected: Optional[RunStatus] = None
    ) -> None:
        query = """
            UPDATE workflow_step_runs
            SET status = ?, started_at = ?, completed_at = ?, output = ?, error_message = ?
            WHERE id = ? AND workflow_run_id = ?
        """
        params: list[Any] = [
            step_run.status.value,
            _ts(step_run.started_at),
            _ts(step_run.completed_at),
            _json(step_run.output),
            step_run.error_message,
            step_run.id,
            step_run.workflow_run_id,
        ]
        if expected is not None:
            query += " AND status = ?"
            params.append(expected.value)
        updated = await asyncio.to_thread(self._update_one, query, *params)
        if updated == 0:
            raise PersistenceError(
                f"Step run {step_run.id} was not updated to {step_run.status.value}"
            )

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflow_runs WHERE id = ?", run_id
        )
        if not row:
            return None
        step_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflow_step_runs WHERE workflow_run_id = ? ORDER BY seq",
            run_id,
        )
        steps = [
            StepRun(
                id=r["id"],
                workflow_run_id=r["workflow_run_id"],
                workflow_step_id=r["workflow_step_id"],
                status=RunStatus(r["status"]),
                started_at=_dt(r["started_at"]),
                completed_at=_dt(r["completed_at"]),
                output=_load(r["output"]),
                error_message=r["error_message"],
            )
            for r in step_rows
        ]
        return self._run_from_row(row, steps)

    async def list_runs(self, workflow_id: str) -> list[WorkflowRun]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT * FROM workflow_runs WHERE workflow_id = ?
            ORDER BY started_at DESC, seq DESC
            """,
            workflow_id,
        )
        return [self._run_from_row(row, []) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
