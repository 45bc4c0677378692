"""
Celery Application Configuration
"""
from celery import Celery
from visit_trust.config import settings

# Create Celery app
celery_app = Celery(
    "visit_trust_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "visit_trust.worker.tasks"
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=120,
    task_soft_time_limit=90,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,  # Results expire after 1 hour
)

# Task routing
celery_app.conf.task_routes = {
    "visit_trust.worker.tasks.deliver_security_alert": {"queue": "alerts"},
    "visit_trust.worker.tasks.*": {"queue": "default"},
}
