"""Conversational summarize endpoint: the summarizer's reply, streamed as NDJSON."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, List, Literal

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, model_validator

from pagedigest.errors import PageDigestError
from pagedigest.workflows import WorkflowRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/summarize", tags=["summarize"])


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1)

    @model_validator(mode="after")
    def _ends_with_user(self) -> "ChatRequest":
        if self.messages[-1].role != "user":
            raise ValueError("the last message must come from the user")
        return self


def _line(payload: dict[str, Any]) -> bytes:
    return (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")


async def _reply_events(summarizer, messages: list[dict[str, str]]) -> AsyncIterator[bytes]:
    try:
        async for chunk in summarizer.stream_chat(messages):
            yield _line({"type": "delta", "text": chunk})
    except PageDigestError as exc:
        # Headers are already sent, so the failure travels in the body
        logger.warning(f"Chat reply failed: {exc}")
        yield _line({"type": "error", "message": str(exc)})
        return
    yield _line({"type": "done"})


@router.post("/chat")
async def summarize_chat(body: ChatRequest, request: Request):
    runtime: WorkflowRuntime | None = getattr(request.app.state, "runtime", None)
    if runtime is None or runtime.summarizer is None:
        raise HTTPException(status_code=503, detail="Summarizer not available")
    messages = [message.model_dump() for message in body.messages]
    return StreamingResponse(
        _reply_events(runtime.summarizer, messages), media_type="application/x-ndjson"
    )
