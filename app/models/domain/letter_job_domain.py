"""
Letter generation job record stored in Redis while the worker fulfils it.

State machine:
    queued --(worker claims)--> processing --(success)--> completed
    processing --(failure)--> failed
    failed --(retry, retry_count < max_retries)--> queued
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class JobStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class LetterJob(BaseModel):
    job_id: str
    session_id: str
    company_name: str
    job_title: str | None = None
    theme: str | None = None

    status: JobStatus = JobStatus.QUEUED
    progress: int = 0

    # Set on completion
    motivation_letter_id: str | None = None
    anti_motivation_letter_id: str | None = None

    # Set on failure
    error: str | None = None

    retry_count: int = 0
    max_retries: int = 3

    created_at: datetime
    updated_at: datetime
    expires_at: int  # unix seconds, fixed at creation

    @property
    def result_ids(self) -> list[str] | None:
        if self.motivation_letter_id and self.anti_motivation_letter_id:
            return [self.motivation_letter_id, self.anti_motivation_letter_id]
        return None

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries
