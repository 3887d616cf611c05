"""
Letter generation API routes.
Admission (session, access gate, limits), job submission and status polling.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limit_dependencies import (
    ai_generation_limit,
    rate_limit_ai_attempts,
    rate_limit_api,
    rate_limit_global,
    require_ai_access,
    require_session,
)
from app.models.api.letter_request import GenerateLetterRequest
from app.models.api.letter_response import (
    AccessStatusResponse,
    GenerateLetterResponse,
    JobStatusResponse,
    RateLimitStatusResponse,
)
from app.models.domain.access_domain import AccessDecision
from app.models.domain.letter_job_domain import JobStatus, LetterJob
from app.models.domain.rate_limit_domain import RateLimitResult
from app.services.access_gate import access_gate
from app.services.ai_rate_limiter import ai_rate_limiter
from app.services.infrastructure.redis_client import StoreUnavailableError
from app.services.letter_queue import JobNotFoundError, LetterQueueError, letter_queue

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/letters",
    tags=["letters"],
    dependencies=[Depends(rate_limit_global)],
)


def queue_unavailable(error: Exception) -> HTTPException:
    logger.error("Letter queue unavailable", error=str(error))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "error": "QUEUE_UNAVAILABLE",
            "message": "Letter generation is temporarily unavailable. Please retry shortly.",
        },
    )


def job_not_found(job_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": "JOB_NOT_FOUND", "message": f"Job {job_id} not found or expired"},
    )


def job_status_response(job: LetterJob) -> JobStatusResponse:
    in_flight = job.status in (JobStatus.QUEUED, JobStatus.PROCESSING)
    return JobStatusResponse(
        job_id=job.job_id,
        status=job.status.value,
        progress=job.progress,
        result_ids=job.result_ids,
        error=job.error,
        retry_count=job.retry_count,
        estimated_seconds_remaining=letter_queue.estimate_remaining(job.progress) if in_flight else None,
    )


@router.post("/generate", status_code=status.HTTP_202_ACCEPTED, response_model=GenerateLetterResponse)
async def generate_letters(
    payload: GenerateLetterRequest,
    session_id: str = Depends(require_session),
    _access: AccessDecision = Depends(require_ai_access),
    _attempts: None = Depends(rate_limit_ai_attempts),
    limit: RateLimitResult = Depends(ai_generation_limit),
):
    """
    Queue a motivation / anti-motivation letter pair.

    Usage is committed against the daily cap only after the job is
    actually enqueued.
    """
    try:
        job_id = await letter_queue.enqueue(
            session_id=session_id,
            company_name=payload.company_name,
            job_title=payload.job_title,
            theme=payload.theme.value if payload.theme else None,
        )
    except StoreUnavailableError as e:
        raise queue_unavailable(e) from e

    await ai_rate_limiter.commit(session_id)

    return GenerateLetterResponse(
        job_id=job_id,
        status=JobStatus.QUEUED.value,
        message="Letter generation queued. Poll the job status for progress.",
        rate_limit_remaining=max(0, limit.remaining),
    )


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    session_id: str = Depends(require_session),
    _rate: None = Depends(rate_limit_api),
):
    """Poll a job. Jobs are only visible to the session that created them."""
    try:
        job = await letter_queue.get_job(job_id)
    except JobNotFoundError:
        raise job_not_found(job_id)
    except LetterQueueError as e:
        logger.error("Unreadable letter job", job_id=job_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "JOB_UNREADABLE", "message": "Job record could not be read"},
        )
    except StoreUnavailableError as e:
        raise queue_unavailable(e) from e

    if job.session_id != session_id:
        raise job_not_found(job_id)

    return job_status_response(job)


@router.get("/access-status", response_model=AccessStatusResponse)
async def get_access_status(
    request: Request,
    session_id: str = Depends(require_session),
    _rate: None = Depends(rate_limit_api),
):
    """Whether this visitor may generate letters, and how far they are from it."""
    try:
        decision = await access_gate.evaluate(session_id)
    except StoreUnavailableError as e:
        logger.error("Access status unavailable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "ACCESS_CHECK_UNAVAILABLE", "message": "Access status is temporarily unavailable"},
        )

    detected = getattr(request.state, "detected_profile", None)
    profile_detected = decision.profile_type or (detected.profile_type.value if detected else None)

    return AccessStatusResponse(
        granted=decision.granted,
        reason=decision.reason.value,
        visits_remaining=decision.visits_remaining,
        current_visits=decision.visit_count or getattr(request.state, "visit_count", 0),
        required_visits=decision.required_visits,
        profile_detected=profile_detected,
        session_id=session_id,
    )


@router.get("/rate-limit-status", response_model=RateLimitStatusResponse)
async def get_rate_limit_status(
    session_id: str = Depends(require_session),
    _rate: None = Depends(rate_limit_api),
):
    """Daily usage and cooldown state for this session."""
    try:
        usage = await ai_rate_limiter.status(session_id)
    except StoreUnavailableError as e:
        logger.error("Rate limit status unavailable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "RATE_LIMIT_STATUS_UNAVAILABLE", "message": "Usage is temporarily unavailable"},
        )

    return RateLimitStatusResponse(**usage)
