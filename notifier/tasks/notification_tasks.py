"""Job queue maintenance Celery tasks"""

from celery import Task
from celery.utils.log import get_task_logger
from sqlalchemy import update
from typing import Dict, List, Optional
import asyncio
import redis
import redis.asyncio as aioredis

from notifier.core.celery_app import celery_app
from notifier.core.config import settings
from notifier.core.database import get_db_context
from notifier.models.notification import Notification, NotificationStatus
from notifier.services.job_queue import JobQueue

logger = get_task_logger(__name__)

def get_redis() -> redis.Redis:
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

def get_async_redis() -> aioredis.Redis:
    return aioredis.from_url(settings.REDIS_URL, decode_responses=True)

class MaintenanceTask(Task):
    """Base task for queue maintenance"""

    autoretry_for = (redis.ConnectionError,)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True

@celery_app.task(base=MaintenanceTask, name="notifier.tasks.notification_tasks.report_dead_letters")
def report_dead_letters(queue_names: Optional[List[str]] = None) -> Dict[str, int]:
    """Log dead-letter depth per queue; error level once it crosses the alert threshold"""
    client = get_redis()
    depths = {}
    try:
        for name in queue_names or [settings.JOB_QUEUE_NAME]:
            depth = client.llen(JobQueue.dead_letter_key(name))
            depths[name] = depth
            if depth >= settings.DEAD_LETTER_ALERT_THRESHOLD:
                logger.error(f"Queue {name} has {depth} dead-lettered job(s)")
            else:
                logger.info(f"Queue {name} has {depth} dead-lettered job(s)")
    finally:
        client.close()
    return depths

async def _requeue(queue_name: str, job_id: str) -> bool:
    client = get_async_redis()
    try:
        job = await JobQueue(client, backoff_base_ms=settings.JOB_BACKOFF_BASE_MS).requeue_dead_letter(queue_name, job_id)
    finally:
        await client.aclose()

    if job is None:
        return False

    # The dead-letter hook marked the notification FAILED; make it processable again
    notification_id = job.payload.get("notification_id")
    if notification_id:
        async with get_db_context() as session:
            await session.execute(
                update(Notification)
                .where(
                    Notification.id == notification_id,
                    Notification.status == NotificationStatus.FAILED,
                )
                .values(status=NotificationStatus.SCHEDULED)
            )
    return True

@celery_app.task(base=MaintenanceTask, name="notifier.tasks.notification_tasks.requeue_dead_letter")
def requeue_dead_letter(queue_name: str, job_id: str) -> Dict[str, object]:
    """Move one dead-lettered job back onto its queue"""
    requeued = asyncio.run(_requeue(queue_name, job_id))
    if requeued:
        logger.info(f"Requeued job {job_id} on {queue_name}")
    else:
        logger.warning(f"Job {job_id} not found in dead letters of {queue_name}")
    return {"job_id": job_id, "requeued": requeued}

async def _recover(queue_names: List[str]) -> Dict[str, List[str]]:
    client = get_async_redis()
    queue = JobQueue(client, backoff_base_ms=settings.JOB_BACKOFF_BASE_MS)
    try:
        return {
            name: await queue.recover_stalled(name, settings.JOB_VISIBILITY_TIMEOUT_MS)
            for name in queue_names
        }
    finally:
        await client.aclose()

@celery_app.task(base=MaintenanceTask, name="notifier.tasks.notification_tasks.recover_stalled_jobs")
def recover_stalled_jobs(queue_names: Optional[List[str]] = None) -> Dict[str, int]:
    """Reschedule jobs left claimed by a worker that died mid-job"""
    recovered = asyncio.run(_recover(queue_names or [settings.JOB_QUEUE_NAME]))
    for name, job_ids in recovered.items():
        if job_ids:
            logger.warning(f"Recovered {len(job_ids)} stalled job(s) on {name}: {job_ids}")
    return {name: len(job_ids) for name, job_ids in recovered.items()}
