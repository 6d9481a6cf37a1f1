from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError
from starlette.websockets import WebSocketState

from whisperly.core.bootstrap import OverlayRuntime
from whisperly.core.errors import error_response
from whisperly.core.logger import get_logger
from whisperly.core.models import INTENT_NAMES, intent_from_name
from whisperly.core.ports import closing_stream
from whisperly.core.store import OverlayStore
from whisperly.core.trace import get_trace_id

from .ws import send_error, send_event

router = APIRouter(prefix="/overlay", tags=["overlay"])
logger = get_logger("whisperly.bridge")

SOURCE = "overlay"


class IntentRequest(BaseModel):
    intent: str = Field(..., min_length=1)
    command: Optional[str] = None


class ContextUpdate(BaseModel):
    text: str = ""


def _runtime(app: Any) -> OverlayRuntime:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=503,
            detail=error_response("WHISPERLY_5030", "overlay runtime not started"),
        )
    return runtime


@router.get("/state")
async def get_state(request: Request) -> dict[str, Any]:
    return _runtime(request.app).store.current_state.to_payload()


@router.get("/intents")
async def list_intents() -> dict[str, list[str]]:
    return {"intents": sorted(INTENT_NAMES)}


@router.post("/intents", status_code=202)
async def post_intent(payload: IntentRequest, request: Request) -> dict[str, Any]:
    """Dispatch one user intent; the resulting state follows on the event stream."""
    store = _runtime(request.app).store
    try:
        intent = intent_from_name(payload.intent, payload.command)
    except KeyError:
        raise HTTPException(
            status_code=422,
            detail=error_response(
                "WHISPERLY_4220",
                f"unknown intent: {payload.intent}",
                details={"allowed": sorted(INTENT_NAMES)},
                trace_id=get_trace_id(),
            ),
        )
    store.dispatch(intent)
    return {"accepted": payload.intent, "state": store.current_state.to_payload()}


@router.put("/context")
async def put_context(payload: ContextUpdate, request: Request) -> dict[str, Any]:
    """Push the text currently visible on screen."""
    provider = _runtime(request.app).context_provider
    update = getattr(provider, "update", None)
    if update is None:
        raise HTTPException(
            status_code=409,
            detail=error_response("WHISPERLY_4090", "context provider does not accept pushed text"),
        )
    update(payload.text)
    return {"length": len(payload.text)}


async def _forward_states(websocket: WebSocket, store: OverlayStore) -> None:
    async with closing_stream(store.state_updates()) as states:
        async for state in states:
            await send_event(websocket, SOURCE, "state", state.to_payload())


async def _forward_effects(websocket: WebSocket, store: OverlayStore) -> None:
    async with closing_stream(store.side_effects()) as effects:
        async for effect in effects:
            await send_event(websocket, SOURCE, "effect", effect.to_payload())


async def _receive_intents(websocket: WebSocket, store: OverlayStore) -> None:
    while True:
        raw_message = await websocket.receive_text()
        try:
            request = IntentRequest.model_validate(json.loads(raw_message))
            intent = intent_from_name(request.intent, request.command)
        except (ValidationError, ValueError, KeyError):
            await send_error(websocket, SOURCE, "invalid intent message", code="WHISPERLY_4220")
            continue
        store.dispatch(intent)


@router.websocket("/events")
async def overlay_events(websocket: WebSocket) -> None:
    """Stream states and side effects; intents may be sent back as JSON."""
    await websocket.accept()
    runtime = getattr(websocket.app.state, "runtime", None)
    if runtime is None:
        await send_error(websocket, SOURCE, "overlay runtime not started", code="WHISPERLY_5030")
        await websocket.close(code=1011)
        return
    store = runtime.store
    logger.info("Overlay events opened from %s", websocket.client)
    tasks = [
        asyncio.create_task(_forward_states(websocket, store)),
        asyncio.create_task(_forward_effects(websocket, store)),
        asyncio.create_task(_receive_intents(websocket, store)),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Overlay events stream failed: %s", exc)
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        if websocket.application_state == WebSocketState.CONNECTED:
            with contextlib.suppress(Exception):
                await websocket.close()
        logger.info("Overlay events closed for %s", websocket.client)
