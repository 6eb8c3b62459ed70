"""
Redis-backed job queue with delay, priority, retry and dead-letter handling

Layout per queue name:
    queue:<name>           sorted set of job ids ranked by eligible time (ms)
    queue:<name>:jobs      hash of job id -> job body
    queue:<name>:failed    list of dead-lettered job bodies (newest first)

A job is claimed by removing its id from the sorted set; only the worker whose
ZREM actually removed the member runs the job, so concurrent ticks never
execute the same job twice. A claimed job stays in the hash, stamped with
claimed_at, until it completes or fails. If the worker dies in between, the
body is orphaned: recover_stalled() puts such jobs back on the sorted set once
they have been claimed for longer than the visibility timeout.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional
from pydantic import BaseModel, Field
import redis.asyncio as redis
import asyncio
import logging
import time
import uuid

logger = logging.getLogger(__name__)

Processor = Callable[["Job"], Awaitable[Any]]
DeadLetterHook = Callable[["Job"], Awaitable[None]]

def now_ms() -> int:
    return int(time.time() * 1000)

class Job(BaseModel):
    id: str
    queue: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    priority: int = 0
    delay: int = 0
    eligible_at: int = 0
    created_at: int = 0
    last_error: Optional[str] = None
    failed_at: Optional[int] = None
    claimed_at: Optional[int] = None

class JobQueue:
    """Priority and delay aware job queue"""

    # Number of eligible ids inspected per claim attempt
    CLAIM_BATCH = 5

    def __init__(
        self,
        redis_client: redis.Redis,
        backoff_base_ms: int = 1000,
        clock: Callable[[], int] = now_ms,
        on_dead_letter: Optional[DeadLetterHook] = None,
    ):
        self.redis = redis_client
        self.backoff_base_ms = backoff_base_ms
        self.clock = clock
        self.on_dead_letter = on_dead_letter

    @staticmethod
    def queue_key(queue_name: str) -> str:
        return f"queue:{queue_name}"

    @staticmethod
    def jobs_key(queue_name: str) -> str:
        return f"queue:{queue_name}:jobs"

    @staticmethod
    def dead_letter_key(queue_name: str) -> str:
        return f"queue:{queue_name}:failed"

    def retry_delay(self, attempts: int) -> int:
        """Backoff before the next attempt, given attempts already made"""
        return self.backoff_base_ms * (2 ** attempts)

    async def enqueue(
        self,
        queue_name: str,
        payload: Dict[str, Any],
        delay: int = 0,
        priority: int = 0,
        max_attempts: int = 3,
    ) -> str:
        """
        Add a job to the queue

        Args:
            queue_name: Queue namespace
            payload: JSON serializable job data
            delay: Milliseconds before the job becomes eligible
            priority: Milliseconds subtracted from the eligible time
            max_attempts: Failed attempts allowed before dead-lettering

        Returns:
            Job id
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        now = self.clock()
        job = Job(
            id=f"job:{queue_name}:{now}:{uuid.uuid4().hex[:9]}",
            queue=queue_name,
            payload=payload,
            max_attempts=max_attempts,
            priority=priority,
            delay=delay,
            eligible_at=now + delay - priority,
            created_at=now,
        )
        await self._store(job)

        logger.info(f"Enqueued {job.id} on {queue_name} (eligible at {job.eligible_at})")
        return job.id

    async def _store(self, job: Job) -> None:
        job.claimed_at = None
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.jobs_key(job.queue), job.id, job.model_dump_json())
            pipe.zadd(self.queue_key(job.queue), {job.id: job.eligible_at})
            await pipe.execute()

    async def claim(self, queue_name: str) -> Optional[Job]:
        """Atomically take the earliest eligible job, or None"""
        now = self.clock()
        candidates = await self.redis.zrangebyscore(
            self.queue_key(queue_name), "-inf", now, start=0, num=self.CLAIM_BATCH
        )

        for job_id in candidates:
            # Another worker may have claimed it between the range read and now
            if not await self.redis.zrem(self.queue_key(queue_name), job_id):
                continue

            body = await self.redis.hget(self.jobs_key(queue_name), job_id)
            if body is None:
                logger.warning(f"Job {job_id} on {queue_name} has no body, dropping")
                continue

            job = Job.model_validate_json(body)
            job.claimed_at = now
            await self.redis.hset(self.jobs_key(queue_name), job_id, job.model_dump_json())
            return job

        return None

    async def process_next(self, queue_name: str, processor: Processor) -> Optional[Job]:
        """
        Claim and run one eligible job

        Returns the job that was run (with updated attempts on failure),
        or None when nothing was eligible.
        """
        job = await self.claim(queue_name)
        if job is None:
            return None

        try:
            await processor(job)
        except asyncio.CancelledError:
            # Worker shutdown mid-job: put it back untouched
            await self._store(job)
            raise
        except Exception as e:
            await self._handle_failure(job, e)
            return job

        await self.redis.hdel(self.jobs_key(queue_name), job.id)
        logger.info(f"Job {job.id} completed")
        return job

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        job.attempts += 1
        job.last_error = str(error)

        if job.attempts < job.max_attempts:
            delay = self.retry_delay(job.attempts)
            job.eligible_at = self.clock() + delay
            await self._store(job)
            logger.warning(
                f"Job {job.id} failed (attempt {job.attempts}/{job.max_attempts}), "
                f"retrying in {delay}ms: {error}"
            )
            return

        job.failed_at = self.clock()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hdel(self.jobs_key(job.queue), job.id)
            pipe.lpush(self.dead_letter_key(job.queue), job.model_dump_json())
            await pipe.execute()

        logger.error(
            f"Job {job.id} moved to dead-letter list {self.dead_letter_key(job.queue)} "
            f"after {job.attempts} attempts: {error}"
        )

        if self.on_dead_letter:
            try:
                await self.on_dead_letter(job)
            except Exception as hook_error:
                logger.error(f"Dead-letter hook failed for {job.id}: {hook_error}")

    async def dead_letters(self, queue_name: str, limit: int = 100) -> List[Job]:
        """Dead-lettered jobs, newest first"""
        raw = await self.redis.lrange(self.dead_letter_key(queue_name), 0, limit - 1)
        return [Job.model_validate_json(item) for item in raw]

    async def dead_letter_count(self, queue_name: str) -> int:
        return await self.redis.llen(self.dead_letter_key(queue_name))

    async def pending_count(self, queue_name: str) -> int:
        return await self.redis.zcard(self.queue_key(queue_name))

    async def requeue_dead_letter(self, queue_name: str, job_id: str) -> Optional[Job]:
        """Explicitly move a dead-lettered job back onto the active queue"""
        key = self.dead_letter_key(queue_name)
        for raw in await self.redis.lrange(key, 0, -1):
            job = Job.model_validate_json(raw)
            if job.id != job_id:
                continue

            if not await self.redis.lrem(key, 1, raw):
                return None

            job.attempts = 0
            job.last_error = None
            job.failed_at = None
            job.eligible_at = self.clock()
            await self._store(job)
            logger.info(f"Requeued dead-lettered job {job_id} on {queue_name}")
            return job

        return None

    async def recover_stalled(self, queue_name: str, visibility_timeout_ms: int) -> List[str]:
        """
        Put back jobs whose worker died after claiming them

        A job body with no sorted set entry is in flight. Once it has been
        claimed for at least `visibility_timeout_ms` it is rescheduled for
        immediate processing with its attempt count unchanged. The timeout must
        exceed the longest expected processing time, otherwise a slow job runs
        twice.

        Returns:
            Ids of the recovered jobs
        """
        now = self.clock()
        recovered = []
        for job_id, body in (await self.redis.hgetall(self.jobs_key(queue_name))).items():
            if await self.redis.zscore(self.queue_key(queue_name), job_id) is not None:
                continue

            job = Job.model_validate_json(body)
            claimed_at = job.claimed_at if job.claimed_at is not None else job.eligible_at
            if now - claimed_at < visibility_timeout_ms:
                continue

            job.eligible_at = now
            await self._store(job)
            recovered.append(job_id)
            logger.warning(f"Recovered stalled job {job_id} on {queue_name} (claimed at {claimed_at})")

        return recovered

    async def stats(self, queue_name: str) -> Dict[str, int]:
        return {
            "pending": await self.pending_count(queue_name),
            "dead": await self.dead_letter_count(queue_name),
        }

    def process(
        self,
        queue_name: str,
        processor: Processor,
        concurrency: int = 1,
        interval: float = 1.0,
    ) -> "QueueWorker":
        """Start a background worker loop for a queue"""
        worker = QueueWorker(self, queue_name, processor, concurrency, interval)
        worker.start()
        return worker

class QueueWorker:
    """Tick-driven processing loop: every tick issues up to `concurrency` claims"""

    def __init__(
        self,
        queue: JobQueue,
        queue_name: str,
        processor: Processor,
        concurrency: int = 1,
        interval: float = 1.0,
    ):
        self.queue = queue
        self.queue_name = queue_name
        self.processor = processor
        self.concurrency = max(1, concurrency)
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Queue worker started for {self.queue_name} (concurrency={self.concurrency})")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Queue worker stopped for {self.queue_name}")

    async def tick(self) -> List[Job]:
        """Run one round of claims; returns the jobs that were processed"""
        results = await asyncio.gather(
            *[
                self.queue.process_next(self.queue_name, self.processor)
                for _ in range(self.concurrency)
            ],
            return_exceptions=True,
        )

        processed = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Queue {self.queue_name} tick error: {result}")
            elif result is not None:
                processed.append(result)
        return processed

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)
