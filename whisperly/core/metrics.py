from __future__ import annotations

from prometheus_client import Counter


ACTIONS = Counter("whisperly_actions_total", "Orchestrated actions", ["kind", "outcome"])
STREAM_INCREMENTS = Counter("whisperly_stream_increments_total", "Text increments streamed")
CAPTURES = Counter("whisperly_captures_total", "Voice capture sessions", ["outcome"])


def inc_action(kind: str, outcome: str) -> None:
    try:
        ACTIONS.labels(kind=kind, outcome=outcome).inc()
    except Exception:  # pragma: no cover - metrics are best effort
        pass


def inc_stream_increments(n: int = 1) -> None:
    try:
        STREAM_INCREMENTS.inc(n)
    except Exception:  # pragma: no cover
        pass


def inc_capture(outcome: str) -> None:
    try:
        CAPTURES.labels(outcome=outcome).inc()
    except Exception:  # pragma: no cover
        pass
