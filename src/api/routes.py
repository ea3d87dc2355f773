"""Service-level routes (health)."""

from datetime import datetime, timezone

from fastapi import APIRouter

from src.database import health_check as db_health_check

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Status, database health and timestamp in ISO8601 format
    """
    db_healthy = await db_health_check()
    return {
        "status": "healthy" if db_healthy else "degraded",
        "database": "healthy" if db_healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
