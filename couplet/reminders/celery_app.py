from celery import Celery
from celery.schedules import crontab
from kombu import Exchange, Queue

from couplet.core.config import settings


broker_url = settings.CELERY_BROKER_URL or "memory://"
result_backend = settings.CELERY_RESULT_BACKEND or None

celery_app = Celery(
    "reminders",
    broker=broker_url,
    backend=result_backend,
)

exchange = Exchange(settings.CELERY_QUEUE, type="direct", durable=True)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_default_queue=settings.CELERY_QUEUE,
    task_default_exchange=settings.CELERY_QUEUE,
    task_default_routing_key=settings.CELERY_QUEUE,
    include=["couplet.reminders.tasks"],
    task_queues=(
        Queue(settings.CELERY_QUEUE, exchange=exchange, routing_key=settings.CELERY_QUEUE, durable=True),
    ),
    timezone="UTC",
)

# Celery Beat schedule for periodic scanning
celery_app.conf.beat_schedule = {
    "scan-and-dispatch": {
        "task": "reminders.scan_and_dispatch",
        "schedule": settings.SCHEDULER_SCAN_INTERVAL_SECONDS,
    },
    "cleanup-old-completed": {
        "task": "reminders.cleanup_old_completed",
        "schedule": crontab(hour=2, minute=0),  # daily at 02:00 UTC
    },
}
