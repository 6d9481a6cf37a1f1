from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from whisperly.api import health_router, metrics_router, overlay_router
from whisperly.core.bootstrap import OverlayRuntime, build_runtime
from whisperly.core.config import Settings, get_settings
from whisperly.core.logger import get_logger
from whisperly.core.trace import new_trace_id, set_trace_id

RuntimeFactory = Callable[[Settings], OverlayRuntime]

logger = get_logger("server")


def create_app(
    settings: Optional[Settings] = None,
    runtime_factory: RuntimeFactory = build_runtime,
) -> FastAPI:
    """Build the bridge exposing the overlay store over HTTP and WebSocket."""
    config = settings or get_settings()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        runtime = runtime_factory(config)
        app.state.runtime = runtime
        logger.info("Overlay bridge started on %s:%s", config.host, config.port)
        try:
            yield
        finally:
            await runtime.aclose()
            app.state.runtime = None
            logger.info("Overlay bridge stopped")

    app = FastAPI(title="whisperly", lifespan=_lifespan)
    app.state.runtime = None

    @app.middleware("http")
    async def _trace_middleware(request, call_next):
        tid = request.headers.get("X-Trace-Id") or new_trace_id()
        set_trace_id(tid)
        response = await call_next(request)
        response.headers["X-Trace-Id"] = tid
        return response

    # Credentials cannot be combined with a wildcard origin.
    allow_credentials = config.cors_origins != ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(overlay_router)
    app.include_router(metrics_router)
    return app


app = create_app()
