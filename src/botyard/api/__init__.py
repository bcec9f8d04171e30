"""FastAPI application for the Botyard admin API.

Provides endpoints for managing bot records, starting and stopping bots,
and streaming their live notifications.
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from botyard import __version__
from botyard.api.bots import router as bots_router
from botyard.api.health import router as health_router
from botyard.api.notifications import router as notifications_router
from botyard.errors import (
    AlreadyRunning,
    MissingCredential,
    NotFound,
    NotRunning,
    RevisionConflict,
    SchedulerCheckError,
    StartFailed,
)

if TYPE_CHECKING:
    from botyard.config import Config

log = structlog.get_logger()

# Error type -> HTTP status, resolved along the exception's MRO
ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (NotFound, 404),
    (AlreadyRunning, 409),
    (NotRunning, 409),
    (RevisionConflict, 409),
    (StartFailed, 502),
    (MissingCredential, 400),
    (SchedulerCheckError, 400),
    (ValueError, 400),  # includes pydantic ValidationError
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    log.info("api_starting")
    yield
    log.info("api_stopping")


def create_app(config: "Config") -> FastAPI:
    """Create and configure the FastAPI application.

    The caller attaches shared services to ``app.state``: ``config``,
    ``db``, ``store``, ``supervisor`` and ``hub``.

    Args:
        config: Application configuration.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="Botyard Admin API",
        description="""
## About

Botyard runs many config-driven Discord bots from one process.

- **Bots**: create, edit, start, stop and restart bots
- **Commands / Events / Integrations**: edit a bot's behavior; running
  bots pick up changes without reconnecting
- **Notifications**: websocket stream of a bot's log, status, command
  and event activity

## Authentication

None. Bind to a trusted interface.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        log.info(
            "request_complete",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
        )
        return response

    for error_type, status_code in ERROR_STATUS:
        app.add_exception_handler(error_type, _error_handler(status_code))

    app.include_router(health_router)
    app.include_router(bots_router)
    app.include_router(notifications_router)

    return app


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            log.error("request_failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    return handler
