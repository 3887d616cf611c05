"""
Letter generation worker.

Drains queue:letters and drives each job through
queued -> processing -> completed | failed. Failed jobs are requeued while
their retry budget lasts; an exhausted job stays failed until someone
resubmits or an operator retries it.
"""

import asyncio

from app.infrastructure.observability.logging import get_logger
from app.models.domain.letter_job_domain import JobStatus
from app.services.infrastructure.redis_client import StoreUnavailableError, fast_redis
from app.services.letter_generator import LetterGenerationError, LetterGenerator, OpenAILetterGenerator
from app.services.letter_queue import JobNotFoundError, LetterQueueService, letter_queue

logger = get_logger(__name__)

# Pause after a store failure before polling again
ERROR_BACKOFF_SECONDS = 5


class LetterWorker:
    def __init__(
        self,
        queue: LetterQueueService | None = None,
        generator: LetterGenerator | None = None,
    ):
        self.queue = queue or letter_queue
        self._generator = generator
        self._stopping = False

    @property
    def generator(self) -> LetterGenerator:
        if self._generator is None:
            self._generator = OpenAILetterGenerator()
        return self._generator

    async def run_once(self) -> dict:
        """
        Claim and process at most one job.

        Returns:
            {"processed": False} when the queue stayed empty, otherwise the
            job id and its final status for this attempt.
        """
        job_id = await self.queue.dequeue()
        if not job_id:
            return {"processed": False}

        try:
            job = await self.queue.get_job(job_id)
        except JobNotFoundError:
            # Expired while waiting in the queue
            logger.warning("Dequeued job no longer exists", job_id=job_id)
            return {"processed": False, "job_id": job_id, "status": "expired"}

        if job.status != JobStatus.QUEUED:
            logger.warning("Skipping job that is not queued", job_id=job_id, status=job.status.value)
            return {"processed": False, "job_id": job_id, "status": job.status.value}

        logger.info("Processing letter job", job_id=job_id, retry_count=job.retry_count)
        await self.queue.update_progress(job_id, JobStatus.PROCESSING, 10)

        async def on_progress(progress: int) -> None:
            await self.queue.update_progress(job_id, JobStatus.PROCESSING, progress)

        try:
            motivation_id, anti_motivation_id = await self.generator.generate_pair(job, on_progress)
        except StoreUnavailableError as e:
            # The job already left the queue; hand it back before surfacing the outage
            try:
                await self._handle_failure(job_id, e)
            except StoreUnavailableError as release_error:
                logger.error(
                    "Could not release letter job after store failure",
                    job_id=job_id,
                    error=str(release_error),
                )
            raise
        except Exception as e:
            return await self._handle_failure(job_id, e)

        await self.queue.complete(job_id, motivation_id, anti_motivation_id)
        return {"processed": True, "job_id": job_id, "status": JobStatus.COMPLETED.value}

    async def _handle_failure(self, job_id: str, error: Exception) -> dict:
        failed = await self.queue.fail(job_id, str(error) or type(error).__name__)

        recoverable = getattr(error, "recoverable", True)
        if isinstance(error, LetterGenerationError) and not recoverable:
            logger.error("Letter job failed permanently", job_id=job_id, error=str(error))
            return {"processed": True, "job_id": job_id, "status": JobStatus.FAILED.value}

        if failed.can_retry:
            requeued = await self.queue.retry(job_id)
            logger.info(
                "Letter job requeued after failure",
                job_id=job_id,
                attempt=requeued.retry_count,
                max_retries=requeued.max_retries,
            )
            return {"processed": True, "job_id": job_id, "status": JobStatus.QUEUED.value}

        logger.error("Max retries reached for letter job", job_id=job_id, max_retries=failed.max_retries)
        return {"processed": True, "job_id": job_id, "status": JobStatus.FAILED.value}

    async def run(self) -> None:
        logger.info("Starting letter worker")
        self._stopping = False

        while not self._stopping:
            try:
                await self.run_once()
            except StoreUnavailableError as e:
                logger.error("Letter worker lost the store, backing off", error=str(e))
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
            except Exception as e:
                logger.error("Error in letter worker loop", error=str(e), error_type=type(e).__name__)
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

        logger.info("Letter worker stopped")

    def stop(self) -> None:
        self._stopping = True


async def start_letter_worker() -> None:
    """Entry point registered with the generic worker runner."""
    await fast_redis.initialize()
    worker = LetterWorker()
    try:
        await worker.run()
    finally:
        await fast_redis.close()
