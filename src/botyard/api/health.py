"""Health check endpoint for the Botyard API."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text

from botyard import __version__
from botyard.api.deps import get_db, get_supervisor

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from botyard.supervisor import BotSupervisor

router = APIRouter(prefix="/api", tags=["health"])


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    timestamp: datetime
    database: str
    running_bots: int


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: "Engine" = Depends(get_db),
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> HealthResponse:
    """Check system health.

    Overall status is 'ok' when the database answers, 'degraded' otherwise.
    """
    try:
        with db.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception:
        db_status = "error"

    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        running_bots=len(supervisor.running_bots()),
    )
