from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Response, status
from sqlalchemy import text

from clipbot.api.dependencies import DatabaseSession, Queue

logger = structlog.get_logger()
router = APIRouter(tags=["Health"])


@router.get("/health/live")
def liveness_check() -> dict:
    return {"status": "alive", "service": "clipbot"}


@router.get("/health")
def health_check(response: Response, db: DatabaseSession, queue: Queue) -> dict:
    """Database reachability plus queue metrics. 503 only when the database is down."""
    checks = {"database": "healthy", "queue": "healthy"}
    queue_metrics = None

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health_database_failed", error=str(e))
        checks["database"] = "unhealthy"

    try:
        queue_metrics = queue.metrics().as_dict()
    except Exception as e:
        logger.error("health_queue_failed", error=str(e))
        checks["queue"] = "unhealthy"

    healthy = checks["database"] == "healthy"
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "healthy" if healthy else "unhealthy",
        "service": "clipbot",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
        "metrics": {"queue": queue_metrics},
    }
