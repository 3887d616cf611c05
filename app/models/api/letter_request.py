# app/models/api/letter_request.py
"""
Letter generation API request models.
Used by routes for input validation.
"""

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class LetterTheme(StrEnum):
    BACKEND = "backend"
    FRONTEND = "frontend"
    FULLSTACK = "fullstack"
    DEVOPS = "devops"
    DATA = "data"
    AI = "ai"


class GenerateLetterRequest(BaseModel):
    """Request for generating a motivation / anti-motivation letter pair."""

    company_name: str = Field(..., min_length=2, max_length=200, description="Target company")
    job_title: str | None = Field(None, min_length=2, max_length=200, description="Position applied for")
    theme: LetterTheme | None = Field(None, description="Technical focus of the letters")

    @field_validator("company_name", "job_title", mode="before")
    @classmethod
    def strip_text(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class RateLimitResetRequest(BaseModel):
    """Admin request for clearing limiter state of one identifier."""

    identifier: str = Field(..., min_length=1, max_length=128, description="IP address or session id")
    tier: str | None = Field(None, description="Tier to reset (default: every tier)")
    include_daily: bool = Field(
        default=False, description="Also clear the daily cap and cooldown (identifier is a session id)"
    )
