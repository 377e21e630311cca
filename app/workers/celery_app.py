"""
Celery Application Configuration
"""
from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "notification_relay",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "process-delivery-queue": {
        "task": "app.workers.tasks.process_delivery_queue",
        "schedule": settings.QUEUE_PROCESS_INTERVAL_SECONDS,
    },
    "cleanup-completed-deliveries-daily": {
        "task": "app.workers.tasks.cleanup_completed_deliveries",
        "schedule": 86400.0,  # 24 hours
    },
}
