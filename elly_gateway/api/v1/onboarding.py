"""Onboarding endpoints - start a run, poll its status, stream its progress"""

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from elly_gateway.api.dependencies import (
    get_heartbeat_interval,
    get_pipeline,
    get_publisher,
    get_request_id,
)
from elly_gateway.api.v1.schemas import (
    OnboardingJobResponse,
    StartOnboardingRequest,
    StartOnboardingResponse,
)
from elly_gateway.domain.exceptions import UserNotFoundError, ValidationError
from elly_gateway.infrastructure.events import ProgressPublisher
from elly_gateway.services.onboarding import OnboardingPipeline

router = APIRouter()


@router.post(
    "/onboarding/start",
    response_model=StartOnboardingResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_onboarding(
    request_body: StartOnboardingRequest,
    request: Request,
    pipeline: OnboardingPipeline = Depends(get_pipeline),
):
    """
    Start aggregation for a user.

    Flow:
    1. Validate the user and derive the bank client id
    2. Create the job (CONSENTS_IN_PROGRESS, 5%)
    3. Run consents, collection and detection in the background
    4. Return the job id immediately
    """
    request_id = get_request_id(request)

    try:
        job = await pipeline.start_onboarding(request_body.user_id, request_body.banks)

    except UserNotFoundError as e:
        logging.warning(f"Unknown user: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=404, detail=str(e))

    except ValidationError as e:
        logging.warning(f"Invalid onboarding request: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=422, detail=str(e))

    return StartOnboardingResponse(job_id=job.job_id, status=job.phase.value)


@router.get("/onboarding/{job_id}", response_model=OnboardingJobResponse)
async def get_onboarding_status(job_id: str, pipeline: OnboardingPipeline = Depends(get_pipeline)):
    """Latest persisted snapshot of a job"""
    job = await pipeline.get_job_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"job {job_id} not found")

    return OnboardingJobResponse(
        job_id=job.job_id,
        user_id=job.user_id,
        phase=job.phase.value,
        progress=job.progress,
        per_bank_consent=job.per_bank_consent,
        obligations_detected=job.obligations_detected,
        error=job.error,
    )


@router.get("/onboarding/{job_id}/events")
async def stream_onboarding_events(
    job_id: str,
    publisher: ProgressPublisher = Depends(get_publisher),
    heartbeat_interval: float = Depends(get_heartbeat_interval),
):
    """
    Stream job progress via Server-Sent Events (SSE).

    Events: progress, done, failed, heartbeat. The stream ends after done or
    failed; a finished or unknown job yields an empty stream.
    """

    async def event_generator() -> AsyncIterator[str]:
        async for event in publisher.subscribe(job_id, heartbeat_interval=heartbeat_interval):
            yield event.to_sse()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
