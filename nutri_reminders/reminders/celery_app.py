from celery import Celery
from kombu import Exchange, Queue

from .config import settings
from .notifier import SCAN_TASK_NAME


celery_app = Celery(
    "reminders",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND or None,
)

exchange = Exchange(settings.CELERY_QUEUE, type="direct", durable=True)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    worker_prefetch_multiplier=1,
    # Limit concurrency to prevent too many workers
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_default_queue=settings.CELERY_QUEUE,
    task_default_exchange=settings.CELERY_QUEUE,
    task_default_routing_key=settings.CELERY_QUEUE,
    include=["nutri_reminders.reminders.tasks"],
    task_queues=(
        Queue(settings.CELERY_QUEUE, exchange=exchange, routing_key=settings.CELERY_QUEUE, durable=True),
    ),
)

# Celery Beat schedule: the periodic timer behind the delivery agent
celery_app.conf.beat_schedule = {
    "scan-and-dispatch": {
        "task": SCAN_TASK_NAME,
        "schedule": settings.SCAN_INTERVAL_SECONDS,
    },
}
