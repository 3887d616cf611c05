"""
Durable FIFO queue and per-job state for letter generation.

Producers (the generate endpoint) enqueue; a single worker owns a job from
the moment it pops the id until it completes or fails it, so the
read-modify-write mutators below need no optimistic locking.

Every write re-applies the absolute expiry fixed at creation: a job never
lives longer than LETTER_JOB_TTL_SECONDS, retries included. Store failures
are not absorbed here; they surface as StoreUnavailableError.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.letter_job_domain import JobStatus, LetterJob
from app.services.infrastructure.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

QUEUE_KEY = "queue:letters"
JOB_KEY_PREFIX = "job:letter:"


class LetterQueueError(Exception):
    """Invalid job state or unreadable job record."""

    def __init__(self, message: str, job_id: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.job_id = job_id
        self.recoverable = recoverable


class JobNotFoundError(LetterQueueError):
    """Unknown or expired job id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found", job_id=job_id)


class MaxRetriesExceededError(LetterQueueError):
    def __init__(self, job_id: str, max_retries: int):
        super().__init__(f"Job {job_id} exhausted its {max_retries} retries", job_id=job_id)
        self.max_retries = max_retries


def _job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LetterQueueService:
    def __init__(
        self,
        redis_client: FastRedisClient | None = None,
        job_ttl_seconds: int | None = None,
        max_retries: int | None = None,
        pop_timeout: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.redis = redis_client or fast_redis
        self.job_ttl_seconds = job_ttl_seconds or settings.LETTER_JOB_TTL_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.LETTER_JOB_MAX_RETRIES
        self.pop_timeout = pop_timeout if pop_timeout is not None else settings.LETTER_QUEUE_POP_TIMEOUT
        self.clock = clock

    async def enqueue(
        self,
        session_id: str,
        company_name: str,
        job_title: str | None = None,
        theme: str | None = None,
    ) -> str:
        """Create a queued job and append it to the queue. Returns the job id."""
        now = self.clock()
        job = LetterJob(
            job_id=str(uuid.uuid4()),
            session_id=session_id,
            company_name=company_name,
            job_title=job_title or None,
            theme=theme or None,
            status=JobStatus.QUEUED,
            progress=0,
            retry_count=0,
            max_retries=self.max_retries,
            created_at=now,
            updated_at=now,
            expires_at=int((now + timedelta(seconds=self.job_ttl_seconds)).timestamp()),
        )

        await self._save(job)
        await self.redis.push_to_list(QUEUE_KEY, job.job_id)

        logger.info(
            "Letter job enqueued",
            job_id=job.job_id,
            session_id=session_id[:8],
            company=company_name,
        )
        return job.job_id

    async def get_job(self, job_id: str) -> LetterJob:
        raw = await self.redis.get(_job_key(job_id))
        if raw is None:
            raise JobNotFoundError(job_id)

        try:
            return LetterJob.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Corrupt letter job record", job_id=job_id, error=str(e))
            raise LetterQueueError(f"Job {job_id} record is unreadable", job_id=job_id) from e

    async def dequeue(self) -> str | None:
        """Blocking pop with a short timeout; None means the queue stayed empty."""
        return await self.redis.pop_from_list(QUEUE_KEY, timeout=self.pop_timeout)

    async def update_progress(self, job_id: str, status: JobStatus, progress: int) -> LetterJob:
        if status == JobStatus.COMPLETED:
            raise LetterQueueError("Use complete() to finish a job", job_id=job_id)
        if status == JobStatus.FAILED:
            raise LetterQueueError("Use fail() to record a failure", job_id=job_id)

        job = await self.get_job(job_id)
        job.status = status
        # 100 is reserved for completed jobs
        job.progress = max(0, min(99, progress))
        return await self._touch_and_save(job)

    async def complete(self, job_id: str, motivation_letter_id: str, anti_motivation_letter_id: str) -> LetterJob:
        job = await self.get_job(job_id)
        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.motivation_letter_id = motivation_letter_id
        job.anti_motivation_letter_id = anti_motivation_letter_id
        job.error = None
        job = await self._touch_and_save(job)

        logger.info("Letter job completed", job_id=job_id, retry_count=job.retry_count)
        return job

    async def fail(self, job_id: str, message: str) -> LetterJob:
        job = await self.get_job(job_id)
        job.status = JobStatus.FAILED
        job.error = message or "Letter generation failed"
        if job.progress >= 100:
            job.progress = 99
        job = await self._touch_and_save(job)

        logger.warning("Letter job failed", job_id=job_id, error=job.error, retry_count=job.retry_count)
        return job

    async def retry(self, job_id: str) -> LetterJob:
        """
        Requeue a failed job.

        Raises:
            MaxRetriesExceededError: retry budget used up; the job stays failed
            LetterQueueError: the job is not in the failed state
        """
        job = await self.get_job(job_id)

        if job.status != JobStatus.FAILED:
            raise LetterQueueError(f"Job {job_id} is {job.status.value}, only failed jobs can be retried", job_id=job_id)

        if not job.can_retry:
            raise MaxRetriesExceededError(job_id, job.max_retries)

        job.retry_count += 1
        job.status = JobStatus.QUEUED
        job.progress = 0
        job.error = None
        job = await self._touch_and_save(job)
        await self.redis.push_to_list(QUEUE_KEY, job_id)

        logger.info("Letter job requeued", job_id=job_id, retry_count=job.retry_count, max_retries=job.max_retries)
        return job

    async def queue_length(self) -> int:
        return await self.redis.list_length(QUEUE_KEY)

    def estimate_remaining(self, progress: int) -> int:
        """Advisory linear estimate against LETTER_ESTIMATED_SECONDS."""
        if progress >= 100:
            return 0
        total = settings.LETTER_ESTIMATED_SECONDS
        return max(0, round(total * (100 - max(0, progress)) / 100))

    async def _touch_and_save(self, job: LetterJob) -> LetterJob:
        job.updated_at = self.clock()
        await self._save(job)
        return job

    async def _save(self, job: LetterJob) -> None:
        if job.expires_at <= int(self.clock().timestamp()):
            # Past its absolute lifetime; writing it back would resurrect it
            raise JobNotFoundError(job.job_id)
        await self.redis.set_with_expire_at(_job_key(job.job_id), job.model_dump_json(), job.expires_at)


letter_queue = LetterQueueService()
