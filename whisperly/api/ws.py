from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from whisperly.core.trace import get_trace_id


def serialize_event(source: str, event: str, payload: Any) -> dict[str, Any]:
    """Serialize a WebSocket event in the common envelope."""
    return {
        "type": "event",
        "source": source,
        "event": event,
        "payload": payload,
        "ts": datetime.now(timezone.utc).isoformat(),
    }


async def send_event(websocket: WebSocket, source: str, event: str, payload: Any) -> None:
    await websocket.send_json(serialize_event(source, event, payload))


async def send_error(
    websocket: WebSocket,
    source: str,
    error: str,
    code: str | None = None,
    details: object | None = None,
) -> None:
    """Send an error message (same envelope as the HTTP errors, plus trace_id)."""
    await websocket.send_json(
        {
            "type": "error",
            "source": source,
            "code": code or "WHISPERLY_4000",
            "message": error,
            "trace_id": get_trace_id(),
            "ts": datetime.now(timezone.utc).isoformat(),
            **({"details": details} if details is not None else {}),
        }
    )
