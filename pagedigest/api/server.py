from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request

from pagedigest import __version__
from pagedigest.config import AppSettings, get_settings
from pagedigest.logging_config import setup_logging
from pagedigest.workflows import WorkflowRuntime, build_runtime

from .chat import router as chat_router
from .workflows import router as workflows_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    runtime: Optional[WorkflowRuntime] = None,
) -> FastAPI:
    """Build the API application.

    A prebuilt ``runtime`` is used as-is; otherwise one is built from
    ``settings`` at startup.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan_context(app: FastAPI):
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = build_runtime(settings)
            logger.info(
                "Workflow runtime initialized",
                extra={"pipeline_id": app.state.runtime.pipeline.pipeline_id},
            )
        yield

    app = FastAPI(title="pagedigest", version=__version__, lifespan=lifespan_context)
    app.state.settings = settings
    app.state.runtime = runtime
    app.include_router(workflows_router)
    app.include_router(chat_router)

    @app.get("/health")
    async def health(request: Request):
        current: Optional[WorkflowRuntime] = request.app.state.runtime
        return {
            "status": "ok" if current is not None else "starting",
            "pipeline_id": current.pipeline.pipeline_id if current else None,
            "run_records": bool(current and current.repository is not None),
        }

    @app.get("/health/providers")
    async def provider_health(request: Request):
        current: Optional[WorkflowRuntime] = request.app.state.runtime
        if current is None:
            return {"providers": {}}
        providers = {}
        for name, target in current.health_checks.items():
            health = await target.check_health()
            providers[name] = health.to_dict()
        return {"providers": providers}

    return app
