"""Health endpoint."""

from typing import Literal

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from secondfactor.common.request_id import get_request_id
from secondfactor.core.config import settings
from secondfactor.core.redis_client import is_redis_available
from secondfactor.db.session import get_db

router = APIRouter(tags=["Health"])


class HealthCheck(BaseModel):
    """Individual dependency check result."""

    status: Literal["ok", "degraded", "down"]
    message: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok", "degraded", "down"]
    checks: dict[str, HealthCheck]
    request_id: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Reports database and Redis reachability.",
)
async def health_check(
    request: Request,
    db: Session = Depends(get_db),
) -> HealthResponse:
    """Health check endpoint - checks dependencies."""
    checks: dict[str, HealthCheck] = {}
    overall_status: Literal["ok", "degraded", "down"] = "ok"

    # Check database
    try:
        db.execute(text("SELECT 1"))
        checks["db"] = HealthCheck(status="ok")
    except SQLAlchemyError as e:
        checks["db"] = HealthCheck(status="down", message=str(e))
        overall_status = "down"

    # Check Redis (optional; rate limiting falls back to the database)
    if settings.REDIS_ENABLED:
        if is_redis_available():
            checks["redis"] = HealthCheck(status="ok")
        else:
            checks["redis"] = HealthCheck(status="degraded", message="Redis unavailable")
            if settings.REDIS_REQUIRED:
                overall_status = "down"
            elif overall_status == "ok":
                overall_status = "degraded"
    else:
        checks["redis"] = HealthCheck(status="ok", message="Not enabled")

    return HealthResponse(
        status=overall_status,
        checks=checks,
        request_id=get_request_id(request),
    )
