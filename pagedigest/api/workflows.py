from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from pagedigest.models import PageRequest
from pagedigest.pipeline import RunEvent
from pagedigest.workflows import WorkflowRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


class SummarizeRequest(PageRequest):
    run_id: Optional[str] = None


class ResumeRequest(BaseModel):
    payload: Optional[Any] = None


def _runtime(request: Request) -> WorkflowRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Workflow runtime not initialized")
    return runtime


def _repository(runtime: WorkflowRuntime):
    if runtime.repository is None:
        raise HTTPException(status_code=503, detail="Run records are disabled")
    return runtime.repository


async def _ensure_new_run_id(runtime: WorkflowRuntime, run_id: Optional[str]) -> None:
    """409 when ``run_id`` already names a stored run; resuming is a separate route."""
    if run_id is None or runtime.repository is None:
        return
    if await asyncio.to_thread(runtime.repository.exists, run_id):
        raise HTTPException(status_code=409, detail=f"Run {run_id} already exists")


async def _ndjson(events: AsyncIterator[RunEvent]) -> AsyncIterator[bytes]:
    try:
        async for event in events:
            yield (json.dumps(event.to_dict(), ensure_ascii=False) + "\n").encode("utf-8")
    finally:
        # A client that disconnects mid-run still leaves a settled run behind
        await events.aclose()


@router.post("/summarize")
async def summarize(body: SummarizeRequest, request: Request):
    runtime = _runtime(request)
    await _ensure_new_run_id(runtime, body.run_id)
    result = await runtime.orchestrator.run(
        runtime.pipeline, {"url": body.url}, run_id=body.run_id
    )
    return result.to_dict()


@router.post("/summarize/stream")
async def summarize_stream(body: SummarizeRequest, request: Request):
    runtime = _runtime(request)
    await _ensure_new_run_id(runtime, body.run_id)
    events = runtime.orchestrator.stream(
        runtime.pipeline, {"url": body.url}, run_id=body.run_id
    )
    return StreamingResponse(_ndjson(events), media_type="application/x-ndjson")


# Plain ``def``: FastAPI runs these in its threadpool, off the event loop
@router.get("/runs")
def list_runs(
    request: Request,
    limit: int = Query(default=20, ge=1, le=200),
    status: Optional[str] = None,
):
    repository = _repository(_runtime(request))
    return {"runs": repository.list_recent(limit, status=status)}


@router.get("/runs/{run_id}")
def get_run(run_id: str, request: Request):
    repository = _repository(_runtime(request))
    record = repository.get_record(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return record


@router.post("/runs/{run_id}/resume")
async def resume_run(run_id: str, request: Request, body: Optional[ResumeRequest] = None):
    runtime = _runtime(request)
    repository = _repository(runtime)
    try:
        run = await asyncio.to_thread(repository.get, run_id)
    except LookupError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    if run.pipeline_id != runtime.pipeline.pipeline_id:
        raise HTTPException(status_code=409, detail=f"Run {run_id} belongs to {run.pipeline_id}")

    try:
        result = await runtime.orchestrator.resume(
            runtime.pipeline, run, resume_payload=body.payload if body else None
        )
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    logger.info(f"Resumed run {run_id}: {result.status.value}", extra={"run_id": run_id})
    return result.to_dict()
