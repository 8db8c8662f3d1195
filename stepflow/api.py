"""FastAPI app factory.

Endpoints are thin wrappers over the workflow service and run dispatcher.
Runs started here execute in the server's event loop; clients poll
``GET /api/runs/{run_id}`` for progress.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from . import __version__
from .contracts import Workflow, WorkflowCreate, WorkflowRun
from .engine import Engine, build_engine
from .errors import (
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    WorkflowMissingError,
)
from .workflows import WorkflowCreated

logger = logging.getLogger(__name__)


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    engine = engine or build_engine()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        # let in-flight runs reach a terminal state before the loop closes
        await engine.runs.wait_for_runs()

    app = FastAPI(
        title="stepflow",
        version=__version__,
        description="Trigger-driven multi-step workflow automation.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidStateError)
    async def _invalid_state(_: Request, exc: InvalidStateError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _invalid(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422, content={"detail": exc.errors(include_url=False)}
        )

    @app.exception_handler(WorkflowMissingError)
    @app.exception_handler(PersistenceError)
    async def _server_error(_: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Request failed: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.post("/api/workflows", status_code=201)
    async def create_workflow(payload: WorkflowCreate) -> WorkflowCreated:
        return await engine.workflows.create_workflow(payload)

    @app.get("/api/workflows")
    async def list_workflows() -> list[Workflow]:
        return await engine.workflows.list_workflows()

    @app.get("/api/workflows/{workflow_id}")
    async def get_workflow(workflow_id: str) -> Workflow:
        return await engine.workflows.get_workflow(workflow_id)

    @app.get("/api/workflows/{workflow_id}/runs")
    async def list_runs(workflow_id: str) -> list[WorkflowRun]:
        return await engine.runs.list_runs(workflow_id)

    @app.get("/api/runs/{run_id}")
    async def get_run(run_id: str) -> WorkflowRun:
        return await engine.runs.get_run(run_id)

    @app.post("/api/runs/{run_id}/retry", status_code=202)
    async def retry_run(run_id: str) -> WorkflowRun:
        return await engine.runs.retry(run_id)

    @app.post("/api/trigger/{trigger_type}/{trigger_value:path}", status_code=202)
    async def trigger(trigger_type: str, trigger_value: str) -> WorkflowRun:
        run = await engine.runs.trigger(trigger_type, trigger_value)
        if run is None:
            raise NotFoundError(
                f"No workflow found for trigger {trigger_type}:{trigger_value}"
            )
        return run

    return app
