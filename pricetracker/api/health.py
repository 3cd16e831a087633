"""
Health check endpoints for monitoring service status.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pricetracker import __version__
from pricetracker.core.config import settings
from pricetracker.core.database import get_db
from pricetracker.core.identity import utcnow
from pricetracker.core.inngest import check_inngest_health
from pricetracker.core.logging import get_logger
from pricetracker.models.base import DetailedHealthStatus, HealthStatus

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthStatus,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check() -> HealthStatus:
    """
    Basic health check endpoint.

    Example:
        ```bash
        curl http://localhost:8000/health
        ```
    """
    return HealthStatus(status="healthy", timestamp=utcnow())


@router.get(
    "/health/detailed",
    response_model=DetailedHealthStatus,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
)
async def detailed_health_check(
    db: AsyncSession = Depends(get_db),
) -> DetailedHealthStatus:
    """
    Detailed health check with component status.

    Checks:
    - Database connectivity
    - Inngest configuration
    - Application configuration
    """
    components: Dict[str, Any] = {}
    overall_status = "healthy"

    db_status = await check_database_health(db)
    components["database"] = db_status
    if db_status["status"] != "healthy":
        overall_status = "unhealthy"
        logger.warning("Database health check failed", extra=db_status)

    inngest_status = check_inngest_health()
    components["inngest"] = inngest_status
    if inngest_status["status"] == "unhealthy":
        overall_status = "degraded" if overall_status == "healthy" else overall_status
        logger.warning("Inngest health check failed", extra=inngest_status)

    components["application"] = {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "debug": settings.DEBUG,
    }

    if overall_status == "unhealthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is unhealthy",
        )

    return DetailedHealthStatus(
        status=overall_status,
        timestamp=utcnow(),
        components=components,
        version=__version__,
        environment=settings.ENVIRONMENT,
    )


async def check_database_health(db: AsyncSession) -> Dict[str, Any]:
    """
    Check database connectivity.

    Args:
        db: Database session

    Returns:
        Health status dictionary
    """
    service = db.bind.dialect.name if db.bind is not None else "database"
    try:
        result = await db.execute(text("SELECT 1 AS health_check"))
        row = result.fetchone()
    except SQLAlchemyError as e:
        logger.error(
            "Database health check failed",
            extra={"error": str(e)},
            exc_info=True,
        )
        return {"status": "unhealthy", "service": service, "error": str(e)}

    if row and row[0] == 1:
        return {"status": "healthy", "service": service}
    return {
        "status": "unhealthy",
        "service": service,
        "error": "Invalid response from database",
    }


@router.get(
    "/health/ready",
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
)
async def readiness_check(db: AsyncSession = Depends(get_db)) -> Dict[str, str]:
    """
    Readiness probe: the database must answer.

    Raises:
        HTTPException: If the database is unavailable
    """
    db_status = await check_database_health(db)

    if db_status["status"] != "healthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready - database unavailable",
        )

    return {"status": "ready"}


@router.get(
    "/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
)
async def liveness_check() -> Dict[str, str]:
    """Liveness probe."""
    return {"status": "alive"}


# Export router
__all__ = ["router"]
