"""Health check endpoint for the XnScore API."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from xnscore import __version__

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str
    time: str
    version: str


@router.get("/health", response_model=HealthResponse)
def get_health() -> HealthResponse:
    """Liveness probe. Requires no authentication."""
    return HealthResponse(
        status="ok",
        time=datetime.now(UTC).isoformat(),
        version=__version__,
    )
