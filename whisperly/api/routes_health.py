from __future__ import annotations

from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version

from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def get_health(request: Request) -> dict[str, object]:
    """Report liveness plus a summary of the overlay runtime."""
    try:
        pkg_version = version("whisperly")
    except PackageNotFoundError:  # pragma: no cover - depends on the install
        pkg_version = "unknown"

    runtime = getattr(request.app.state, "runtime", None)
    store_ok = runtime is not None
    return {
        "status": "ok" if store_ok else "starting",
        "version": pkg_version,
        "time": datetime.now(timezone.utc).isoformat(),
        "provider": runtime.settings.llm_provider if store_ok else None,
        "action_in_flight": runtime.store.orchestrator.in_flight if store_ok else False,
        "listening": runtime.store.current_state.listening if store_ok else False,
    }
