# app/services/letter_generator.py
"""
Letter text generation backend used by the letter worker.

The worker only knows the LetterGenerator protocol: given a job, produce
the motivation and anti-motivation letters and return their ids. The
default implementation calls OpenAI and keeps each letter in Redis next to
its job, expiring with it.
"""

import asyncio
import json
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.letter_job_domain import LetterJob
from app.services.infrastructure.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

LETTER_KEY_PREFIX = "letter:"

ProgressCallback = Callable[[int], Awaitable[None]]


class LetterGenerationError(Exception):
    """Raised when a letter could not be produced."""

    def __init__(self, message: str, api_error: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.api_error = api_error
        self.recoverable = recoverable


class LetterGenerator(Protocol):
    async def generate_pair(self, job: LetterJob, on_progress: ProgressCallback) -> tuple[str, str]:
        """Return (motivation_letter_id, anti_motivation_letter_id)."""
        ...


class OpenAILetterGenerator:
    """Generates both letters through the chat completions API."""

    LETTER_TYPES = ("motivation", "anti_motivation")

    def __init__(self, client: AsyncOpenAI | None = None, redis_client: FastRedisClient | None = None):
        self.redis = redis_client or fast_redis
        self.client = client or self._initialize_client()

    def _initialize_client(self) -> AsyncOpenAI:
        if not settings.OPENAI_API_KEY:
            raise LetterGenerationError("OPENAI_API_KEY not configured in settings", recoverable=False)

        logger.info(
            "OpenAI client initialized",
            model=settings.OPENAI_MODEL,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
        )
        return AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_SECONDS)

    def _build_messages(self, job: LetterJob, letter_type: str) -> list[dict[str, str]]:
        if letter_type == "motivation":
            intent = "a sincere, enthusiastic cover letter explaining why the candidate wants this position"
        else:
            intent = (
                "a humorous 'anti-motivation' letter listing, tongue in cheek, why the candidate "
                "would be a terrible fit, while staying professional"
            )

        details = [f"Company: {job.company_name}"]
        if job.job_title:
            details.append(f"Position: {job.job_title}")
        if job.theme:
            details.append(f"Focus area: {job.theme}")

        return [
            {"role": "system", "content": f"You write {intent}. Answer with the letter body only."},
            {"role": "user", "content": "\n".join(details)},
        ]

    async def generate_pair(self, job: LetterJob, on_progress: ProgressCallback) -> tuple[str, str]:
        await on_progress(20)
        motivation_id = await self._generate_and_store(job, "motivation")

        await on_progress(80)
        anti_motivation_id = await self._generate_and_store(job, "anti_motivation")

        await on_progress(90)
        return motivation_id, anti_motivation_id

    async def _generate_and_store(self, job: LetterJob, letter_type: str) -> str:
        content = await self._call_openai_with_retry(self._build_messages(job, letter_type))

        letter_id = str(uuid.uuid4())
        record = {
            "letter_id": letter_id,
            "job_id": job.job_id,
            "letter_type": letter_type,
            "company_name": job.company_name,
            "content": content,
            "model": settings.OPENAI_MODEL,
            "created_at": datetime.now(UTC).isoformat(),
        }
        await self.redis.set_with_expire_at(f"{LETTER_KEY_PREFIX}{letter_id}", json.dumps(record), job.expires_at)

        logger.info("Letter generated", job_id=job.job_id, letter_type=letter_type, length=len(content))
        return letter_id

    async def _call_openai_with_retry(self, messages: list[dict[str, str]], max_attempts: int = 3) -> str:
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            try:
                response = await self.client.chat.completions.create(
                    model=settings.OPENAI_MODEL,
                    messages=messages,
                    temperature=0.7,
                )

                if not response.choices or not response.choices[0].message.content:
                    raise LetterGenerationError("Empty response from OpenAI API")

                return response.choices[0].message.content.strip()

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning("OpenAI rate limited, backing off", attempt=attempt + 1, wait_time=wait_time)
                if attempt < max_attempts - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning("OpenAI request timed out", attempt=attempt + 1, error=str(e))

            except openai.APIStatusError as e:
                last_error = e
                # Client errors will not improve on retry
                if 400 <= e.status_code < 500:
                    logger.error("OpenAI client error (not retrying)", error=str(e))
                    break
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

            except openai.APIError as e:
                last_error = e
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

        raise LetterGenerationError(
            f"Letter generation failed after {max_attempts} attempts",
            api_error=str(last_error) if last_error else None,
        )
