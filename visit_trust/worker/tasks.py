"""
Celery Tasks for async processing
"""
import logging
from typing import Dict, Any

import httpx
from celery import shared_task

from visit_trust.config import settings
from visit_trust.worker.celery_app import celery_app  # noqa: F401  (current app for shared tasks)

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=5, default_retry_delay=30)
def deliver_security_alert(self, alert: Dict[str, Any]):
    """
    Deliver a security alert to the operator webhook.

    - No-op when ALERT_WEBHOOK_URL is empty
    - Retries on transport errors and non-2xx responses
    """
    url = settings.ALERT_WEBHOOK_URL
    if not url:
        logger.info(f"No alert webhook configured, skipping delivery of {alert.get('id')}")
        return {"delivered": False, "alert_id": alert.get("id")}

    try:
        with httpx.Client(timeout=settings.ALERT_WEBHOOK_TIMEOUT_SEC) as client:
            response = client.post(url, json=alert)
            response.raise_for_status()

        logger.info(f"Security alert {alert.get('id')} delivered ({response.status_code})")
        return {"delivered": True, "alert_id": alert.get("id"), "status_code": response.status_code}

    except httpx.HTTPError as e:
        logger.error(f"Security alert delivery failed for {alert.get('id')}: {e}")
        raise self.retry(exc=e)


def queue_alert_delivery(alert) -> None:
    """Alert handler for SecurityMonitoringService: enqueue webhook delivery."""
    if not settings.ALERT_WEBHOOK_URL:
        return
    deliver_security_alert.delay(alert.model_dump(mode="json"))
