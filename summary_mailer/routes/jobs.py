"""
jobs.py
-------
Purpose:
    HTTP entry points for scheduled send jobs.

Usage:
    1. POST /schedule-email - Validate and store a pending job
    2. POST /send-email-now - Deliver immediately, nothing stored
    3. GET /list-scheduled-emails?userId= - Pending jobs of one owner
    4. POST /cancel-scheduled-email - Delete an owner's job
    5. POST /dispatch/run - Launch one dispatch pass (returns before jobs finish)
"""

from fastapi import APIRouter, HTTPException, Query, status

from summary_mailer.db.helpers import DatabaseError
from summary_mailer.infrastructure.observability.logging import get_logger
from summary_mailer.jobs.dispatch_job import get_dispatcher
from summary_mailer.models.api.job_request import CancelJobRequest, ScheduleJobRequest, SendNowRequest
from summary_mailer.models.api.job_response import (
    CancelJobResponse,
    DispatchRunResponse,
    PendingJobItem,
    PendingJobsResponse,
    ScheduleJobResponse,
    SendNowResponse,
)
from summary_mailer.services.delivery_service import DeliveryError
from summary_mailer.services.job_service import JobForbiddenError, JobValidationError, job_service

router = APIRouter(tags=["jobs"])
logger = get_logger(__name__)


def _store_unavailable(e: DatabaseError, operation: str) -> HTTPException:
    logger.error("Job store error", operation=operation, error=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Job store unavailable")


@router.post("/schedule-email", response_model=ScheduleJobResponse)
async def schedule_email(body: ScheduleJobRequest):
    """
    Store a new pending job.

    Raises:
        400: Missing recipients, subject, body or userId, or invalid sendAt
        500: Job store failure
    """
    try:
        job = await job_service.schedule(body)
    except JobValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except DatabaseError as e:
        raise _store_unavailable(e, "schedule") from e

    return ScheduleJobResponse(id=job.id)


@router.post("/send-email-now", response_model=SendNowResponse)
async def send_email_now(body: SendNowRequest):
    try:
        await job_service.send_now(body)
    except JobValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except DeliveryError as e:
        logger.error("Immediate delivery failed", error=str(e), status_code=e.status_code)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    return SendNowResponse()


@router.get("/list-scheduled-emails", response_model=PendingJobsResponse)
async def list_scheduled_emails(user_id: str = Query(default="", alias="userId")):
    try:
        jobs = await job_service.list_pending(user_id)
    except JobValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except DatabaseError as e:
        raise _store_unavailable(e, "list_pending") from e

    return PendingJobsResponse(
        jobs=[
            PendingJobItem(
                id=job.id,
                subject=job.subject,
                send_at=job.send_at,
                mode=job.mode,
                recipients=job.recipients,
                recurring=job.recurring,
            )
            for job in jobs
        ]
    )


@router.post("/cancel-scheduled-email", response_model=CancelJobResponse)
async def cancel_scheduled_email(body: CancelJobRequest):
    """
    Cancel an owner's job. A missing job is reported as ``cancelled=false``.

    Raises:
        400: Missing userId or id
        403: Job belongs to another owner
    """
    try:
        cancelled = await job_service.cancel(body.user_id, body.id)
    except JobValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except JobForbiddenError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e
    except DatabaseError as e:
        raise _store_unavailable(e, "cancel") from e

    return CancelJobResponse(cancelled=cancelled)


@router.post("/dispatch/run", response_model=DispatchRunResponse)
async def run_dispatch():
    """Launch one pass; its jobs keep running after the response and are drained at shutdown."""
    launched = await get_dispatcher().launch_pass()
    return DispatchRunResponse(launched=launched.jobs_due)
