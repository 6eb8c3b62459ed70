"""Services package"""

from .job_queue import Job, JobQueue, QueueWorker
from .delivery_status import DeliveryStatusStore
from .notification_dispatcher import ChannelRouter, ChannelOutcome
from .webhook_reconciler import WebhookReconciler
from .notification_service import NotificationService

__all__ = [
    "Job",
    "JobQueue",
    "QueueWorker",
    "DeliveryStatusStore",
    "ChannelRouter",
    "ChannelOutcome",
    "WebhookReconciler",
    "NotificationService",
]
