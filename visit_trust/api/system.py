"""
System Router - Health checks
"""
import logging
from datetime import datetime, timezone

import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from visit_trust.config import settings
from visit_trust.dependencies import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint.
    Status is "degraded" when the broker or the database is unreachable.
    """
    broker_status = "unhealthy"
    alert_queue_depth = 0
    try:
        r = redis.from_url(settings.CELERY_BROKER_URL, socket_connect_timeout=2)
        r.ping()
        broker_status = "healthy"
        alert_queue_depth = r.llen("alerts") or 0
    except Exception as e:
        logger.warning(f"Broker health check failed: {e}")

    database_status = "unhealthy"
    try:
        db.execute(text("SELECT 1"))
        database_status = "healthy"
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")

    return {
        "status": "ok" if broker_status == "healthy" and database_status == "healthy" else "degraded",
        "broker": broker_status,
        "database": database_status,
        "security_store": settings.SECURITY_STORE,
        "alert_queue_depth": alert_queue_depth,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
