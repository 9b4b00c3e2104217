"""FastAPI app factory.

Endpoints are thin wrappers over :class:`stepflow.state.store.StateStore`.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware

from stepflow import __version__
from stepflow.core.config import StateConfig
from stepflow.server.config import ServerSettings
from stepflow.state.store import RunSummary, StateStore
from stepflow.workflow.builtin import builtin_definitions, get_definition
from stepflow.workflow.dryrun import format_workflow_plan
from stepflow.workflow.errors import CorruptCheckpointError, RunNotFoundError

logger = logging.getLogger(__name__)


def create_app(store: StateStore | None = None) -> FastAPI:
    settings = ServerSettings()
    store = store or StateStore.from_config(StateConfig())

    app = FastAPI(
        title="stepflow",
        version=__version__,
        description="REST API over stored stepflow workflow runs.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "DELETE"],
        allow_headers=["*"],
    )

    def _load(run_id: str) -> dict[str, Any]:
        try:
            state = store.load(run_id)
        except RunNotFoundError:
            raise HTTPException(status_code=404, detail="Run not found") from None
        except CorruptCheckpointError as e:
            logger.warning("Corrupt checkpoint requested", extra={"run_id": run_id})
            raise HTTPException(status_code=422, detail=str(e)) from e
        return {"status": store.status(state), **state.model_dump(mode="json")}

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "version": __version__, "stateDir": str(store.directory)}

    @app.get("/api/runs", response_model=list[RunSummary])
    def list_runs() -> list[RunSummary]:
        return store.list()

    @app.get("/api/runs/latest")
    def latest_run() -> dict[str, Any]:
        state = store.latest_run()
        if state is None:
            raise HTTPException(status_code=404, detail="No runs stored")
        return {"status": store.status(state), **state.model_dump(mode="json")}

    @app.get("/api/runs/{run_id}")
    def get_run(run_id: str) -> dict[str, Any]:
        return _load(run_id)

    @app.delete("/api/runs/{run_id}", status_code=204)
    def delete_run(run_id: str) -> Response:
        try:
            store.delete(run_id)
        except RunNotFoundError:
            raise HTTPException(status_code=404, detail="Run not found") from None
        return Response(status_code=204)

    @app.get("/api/workflows")
    def list_workflows() -> list[dict[str, Any]]:
        return [
            definition.model_dump(mode="json")
            for _, definition in sorted(builtin_definitions().items())
        ]

    @app.get("/api/workflows/{name}/plan")
    def workflow_plan(name: str) -> dict[str, str]:
        definition = get_definition(name)
        if definition is None:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return {"name": name, "plan": format_workflow_plan(definition)}

    return app
