"""
Session Tracer monitoring API

Read-only FastAPI service over stored traces.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from config import Config, get_config
from session_tracer import __version__
from session_tracer.api.errors import (
    APIException,
    LoggingMiddleware,
    api_exception_handler,
    global_exception_handler,
    http_exception_handler,
    trace_not_found_handler,
)
from session_tracer.api.routes import health, monitoring
from session_tracer.api.state import get_app_state, set_app_state
from session_tracer.monitoring.errors import TraceNotFoundError
from session_tracer.monitoring.trace_store import TraceStore

logger = logging.getLogger(__name__)


def create_app(config: Optional[Config] = None) -> FastAPI:
    """
    Build the API application

    Args:
        config: Configuration to use (defaults to ``get_config()``)
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Session tracer API starting...")
        if "trace_store" not in get_app_state():
            set_app_state(
                "trace_store",
                TraceStore(Path(config.storage.trace_dir), ttl_days=config.storage.ttl_days)
            )
        removed = get_app_state()["trace_store"].cleanup_old_traces()
        logger.info(f"Session tracer API started, {removed} expired trace(s) removed")

        yield

        logger.info("Session tracer API stopped")

    set_app_state("config", config)

    app = FastAPI(
        title="Session Tracer API",
        description="Read-only monitoring API for agent session traces",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    @app.exception_handler(APIException)
    async def api_exception_handler_wrapper(request: Request, exc: APIException):
        return await api_exception_handler(request, exc)

    @app.exception_handler(TraceNotFoundError)
    async def trace_not_found_handler_wrapper(request: Request, exc: TraceNotFoundError):
        return await trace_not_found_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler_wrapper(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def global_exception_handler_wrapper(request: Request, exc: Exception):
        return await global_exception_handler(request, exc)

    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(monitoring.router, prefix="/api/v1", tags=["monitoring"])

    @app.get("/api")
    async def api_info():
        return {
            "name": "Session Tracer API",
            "version": __version__,
            "docs": "/docs",
            "endpoints": {
                "health": "/api/v1/health",
                "traces": "/api/v1/monitoring/traces",
            },
        }

    return app


def run() -> None:
    """Serve the API with uvicorn using the configured host and port"""
    import uvicorn

    from session_tracer.logging_config import setup_logging_from_config

    config = get_config()
    setup_logging_from_config(config.logging)
    uvicorn.run(create_app(config), host=config.api.host, port=config.api.port)


if __name__ == "__main__":
    run()
