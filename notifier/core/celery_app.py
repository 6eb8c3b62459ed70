"""Celery application configuration"""

from celery import Celery
from kombu import Exchange, Queue
from notifier.core.config import settings

# Create Celery app
celery_app = Celery(
    "notifier",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "notifier.tasks.notification_tasks",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    task_routes={
        "notifier.tasks.notification_tasks.*": {"queue": "maintenance"},
    },

    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,

    result_expires=3600,  # 1 hour
)

# Define queues
celery_app.conf.task_queues = (
    Queue("default", Exchange("default"), routing_key="default"),
    Queue("maintenance", Exchange("maintenance"), routing_key="maintenance"),
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "report-dead-letters": {
        "task": "notifier.tasks.notification_tasks.report_dead_letters",
        "schedule": 5 * 60,  # Every 5 minutes
    },
    "recover-stalled-jobs": {
        "task": "notifier.tasks.notification_tasks.recover_stalled_jobs",
        "schedule": 60,  # Every minute
    },
}
