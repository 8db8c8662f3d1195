"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import asyncpg

from ..contracts import RunStatus, StepRun, Trigger, Workflow, WorkflowRun, WorkflowStep
from ..errors import PersistenceError
from .repository import WorkflowRepository


def _json(value: Any) -> str | None:
    return json.dumps(value) if value is not None else None


def _load(value: Any) -> Any:
    # asyncpg returns JSONB as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value


def _rowcount(status: str) -> int:
    """Parse the affected row count from a command tag such as ``UPDATE 1``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflows and runs using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False
        self._schema_lock = asyncio.Lock()

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            # the schema is created once per repository, by the first caller
            async with self._schema_lock:
                if not self._initialized:
                    try:
                        await self._ensure_schema(conn)
                    except BaseException:
                        await conn.close()
                        raise
                    self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                description TEXT,
                trigger_type TEXT NOT NULL,
                trigger_value TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL REFERENCES workflows (id),
                step_type TEXT NOT NULL,
                step_config JSONB NOT NULL,
                step_order INTEGER NOT NULL,
                input_mapping JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                UNIQUE (workflow_id, step_order)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                trigger_value TEXT NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                error_message TEXT,
                retry_of TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_step_runs (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                workflow_run_id TEXT NOT NULL REFERENCES workflow_runs (id),
                workflow_step_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                output JSONB,
                error_message TEXT
            )
            """
        )

    # ------------------------------------------------------------------
    async def _load_workflow(self, conn: asyncpg.Connection, row: Any) -> Workflow:
        step_rows = await conn.fetch(
            "SELECT * FROM workflow_steps WHERE workflow_id = $1 ORDER BY step_order",
            row["id"],
        )
        return Workflow(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            trigger=Trigger(type=row["trigger_type"], value=row["trigger_value"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            steps=[
                WorkflowStep(
                    id=s["id"],
                    workflow_id=s["workflow_id"],
                    step_type=s["step_type"],
                    step_config=_load(s["step_config"]) or {},
                    step_order=s["step_order"],
                    input_mapping=_load(s["input_mapping"]),
                    created_at=s["created_at"],
                )
                for s in step_rows
            ],
        )

    @staticmethod
    def _run_from_row(row: Any, steps: list[StepRun]) -> WorkflowRun:
        return WorkflowRun(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=RunStatus(row["status"]),
            trigger=Trigger(type=row["trigger_type"], value=row["trigger_value"]),
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error_message=row["error_message"],
            retry_of=row["retry_of"],
            steps=steps,
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO workflows
                        (id, name, description, trigger_type, trigger_value, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    workflow.id,
                    workflow.name,
                    workflow.description,
                    workflow.trigger.type,
                    workflow.trigger.value,
                    workflow.created_at,
                    workflow.updated_at,
                )
                for step in workflow.steps:
                    await conn.execute(
                        """
                        INSERT INTO workflow_steps
                            (id, workflow_id, step_type, step_config, step_order, input_mapping, created_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7)
                        """,
                        step.id,
                        workflow.id,
                        step.step_type,
                        json.dumps(step.step_config),
                        step.step_order,
                        _json(step.input_mapping),
                        step.created_at,
                    )
        except asyncpg.PostgresError as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await conn.close()

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT * FROM workflows WHERE id = $1", workflow_id)
            if not row:
                return None
            return await self._load_workflow(conn, row)
        finally:
            await conn.close()

    async def list_workflows(self) -> list[Workflow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT * FROM workflows ORDER BY seq DESC")
            return [await self._load_workflow(conn, row) for row in rows]
        finally:
            await conn.close()

    async def find_workflow_by_trigger(
        self, trigger_type: str, trigger_value: str
    ) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                """
                SELECT * FROM workflows
                WHERE trigger_type = $1 AND trigger_value = $2
                ORDER BY seq LIMIT 1
                """,
                trigger_type,
                trigger_value,
            )
            if not row:
                return None
            return await self._load_workflow(conn, row)
        finally:
            await conn.close()

    async def create_run(self, run: WorkflowRun) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO workflow_runs
                        (id, workflow_id, status, trigger_type, trigger_value,
                         started_at, completed_at, error_message, retry_of)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    """,
                    run.id,
                    run.workflow_id,
                    run.status.value,
                    run.trigger.type,
                    run.trigger.value,
                    run.started_at,
                    run.completed_at,
                    run.error_message,
                    run.retry_of,
                )
                for step_run in run.steps:
                    await conn.execute(
                        """
                        INSERT INTO workflow_step_runs
                            (id, workflow_run_id, workflow_step_id, status,
                             started_at, completed_at, output, error_message)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                        """,
                        step_run.id,
                        run.id,
                        step_run.workflow_step_id,
                        step_run.status.value,
                        step_run.started_at,
                        step_run.completed_at,
                        _json(step_run.output),
                        step_run.error_message,
                    )
        except asyncpg.PostgresError as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await conn.close()

    async def update_run(
        self, run: WorkflowRun, expected: Optional[RunStatus] = None
    ) -> None:
        query = """
            UPDATE workflow_runs
            SET status = $1, completed_at = $2, error_message = $3
            WHERE id = $4
        """
        params: list[Any] = [run.status.value, run.completed_at, run.error_message, run.id]
        if expected is not None:
            query += " AND status = $5"
            params.append(expected.value)
        conn = await self._connect()
        try:
            status = await conn.execute(query, *params)
        except asyncpg.PostgresError as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await conn.close()
        if _rowcount(status) == 0:
            raise PersistenceError(f"Run {run.id} was not updated to {run.status.value}")

    async def update_step_run(
        self, step_run: StepRun, expected: Optional[RunStatus] = None
    ) -> None:
        query = """
            UPDATE workflow_step_runs
            SET status = $1, started_at = $2, completed_at = $3, output = $4, error_message = $5
            WHERE id = $6 AND workflow_run_id = $7
        """
        params: list[Any] = [
            step_run.status.value,
            step_run.started_at,
            step_run.completed_at,
            _json(step_run.output),
            step_run.error_message,
            step_run.id,
            step_run.workflow_run_id,
        ]
        if expected is not None:
            query += " AND status = $8"
            params.append(expected.value)
        conn = await self._connect()
        try:
            status = await conn.execute(query, *params)
        except asyncpg.PostgresError as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await conn.close()
        if _rowcount(status) == 0:
            raise PersistenceError(
                f"Step run {step_run.id} was not updated to {step_run.status.value}"
            )

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT * FROM workflow_runs WHERE id = $1", run_id)
            if not row:
                return None
            step_rows = await conn.fetch(
                "SELECT * FROM workflow_step_runs WHERE workflow_run_id = $1 ORDER BY seq",
                run_id,
            )
        finally:
            await conn.close()
        steps = [
            StepRun(
                id=r["id"],
                workflow_run_id=r["workflow_run_id"],
                workflow_step_id=r["workflow_step_id"],
                status=RunStatus(r["status"]),
                started_at=r["started_at"],
                completed_at=r["completed_at"],
                output=_load(r["output"]),
                error_message=r["error_message"],
            )
            for r in step_rows
        ]
        return self._run_from_row(row, steps)

    async def list_runs(self, workflow_id: str) -> list[WorkflowRun]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT * FROM workflow_runs WHERE workflow_id = $1
                ORDER BY started_at DESC, seq DESC
                """,
                workflow_id,
            )
        finally:
            await conn.close()
        return [self._run_from_row(row, []) for row in rows]
