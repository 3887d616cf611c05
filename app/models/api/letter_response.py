# app/models/api/letter_response.py
"""
Letter generation API response models.
Used by routes for output formatting.
"""

from pydantic import BaseModel, Field


class GenerateLetterResponse(BaseModel):
    job_id: str = Field(..., description="Id to poll at /jobs/{job_id}")
    status: str = Field(..., description="Initial job status (queued)")
    message: str
    rate_limit_remaining: int = Field(..., description="Generations left today")


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    progress: int = Field(..., ge=0, le=100)
    result_ids: list[str] | None = Field(None, description="Motivation and anti-motivation letter ids")
    error: str | None = None
    retry_count: int = 0
    estimated_seconds_remaining: int | None = None


class AccessStatusResponse(BaseModel):
    granted: bool
    reason: str
    visits_remaining: int
    current_visits: int
    required_visits: int
    profile_detected: str | None = None
    session_id: str | None = None


class RateLimitStatusResponse(BaseModel):
    daily_limit: int
    daily_used: int
    daily_remaining: int
    reset_at: int
    reset_in: str
    cooldown_active: bool
    cooldown_remaining_seconds: int


class RateLimitResetResponse(BaseModel):
    identifier: str
    tiers: list[str]
    keys_deleted: int


class RateLimitInfoResponse(BaseModel):
    tier: str
    identifier: str
    limit: int
    window_seconds: int
    used: int
    remaining: int
    violations: int
    banned: bool
    ban_remaining_seconds: int
