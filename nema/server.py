"""FastAPI facade exposing the current state and the prompt turn."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from .errors import NemaError
from .manager import ConversationManager

logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.5


class PromptRequest(BaseModel):
    prompt: str = Field(..., description="Message sent to Nema")


class PromptResponse(BaseModel):
    human_message: str


def _discard_chunk(chunk: str) -> None:
    return None


async def _watch_disconnect(request: Request, cancel_event: threading.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling turn")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def create_app(manager: ConversationManager, *, turn_timeout: Optional[float] = None) -> FastAPI:
    app = FastAPI(title="Nema", version="0.1.0")

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError) -> PlainTextResponse:
        return PlainTextResponse(f"Invalid request body: {exc.errors()}", status_code=400)

    @app.exception_handler(NemaError)
    async def _internal_error(request: Request, exc: NemaError) -> PlainTextResponse:
        logger.error("Request failed: %s", exc)
        return PlainTextResponse(str(exc), status_code=500)

    @app.get("/state")
    def get_state() -> Dict[str, Any]:
        return dict(manager.state.to_payload())

    @app.post("/prompt", response_model=PromptResponse)
    async def post_prompt(req: PromptRequest, request: Request) -> PromptResponse:
        cancel_event = threading.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
        try:
            reply = await run_in_threadpool(
                manager.ask,
                req.prompt,
                on_chunk=_discard_chunk,
                cancel_event=cancel_event,
                timeout=turn_timeout,
            )
        finally:
            cancel_event.set()
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
        return PromptResponse(human_message=reply)

    return app


__all__ = ["PromptRequest", "PromptResponse", "create_app"]
