"""
Job intake operations: schedule, send now, list pending and cancel.

These are the synchronous entry points callers wait on, so validation
failures are raised as JobValidationError instead of being logged away.
"""

import uuid
from collections.abc import Callable

from summary_mailer.infrastructure.observability.logging import get_logger
from summary_mailer.models.api.job_request import ScheduleJobRequest, SendNowRequest
from summary_mailer.models.domain.job_domain import PendingJobSummary, ScheduledJob
from summary_mailer.repositories.job_repository import JobRepository, job_repository
from summary_mailer.services.delivery_service import DeliveryService, OutgoingMessage
from summary_mailer.services.metrics_source_service import MetricsSourceError, MetricsSourceService
from summary_mailer.services.recurrence_service import next_fire_from_settings
from summary_mailer.utils.local_time import now_ms, parse_instant

logger = get_logger(__name__)


class JobValidationError(Exception):
    """Raised when a job request is malformed."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field
        self.recoverable = False


class JobForbiddenError(Exception):
    """Raised when an owner tries to act on another owner's job."""

    def __init__(self, message: str, job_id: str | None = None):
        super().__init__(message)
        self.job_id = job_id
        self.recoverable = False


def _clean_recipients(recipients: list[str] | None) -> list[str]:
    return [address.strip() for address in recipients or [] if address and address.strip()]


class JobService:
    def __init__(
        self,
        store: JobRepository | None = None,
        metrics_source: MetricsSourceService | None = None,
        delivery: DeliveryService | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store or job_repository
        self.metrics_source = metrics_source or MetricsSourceService()
        self.delivery = delivery or DeliveryService()
        self.clock = clock

    async def _scheduled_send_at(self, owner_id: str) -> int | None:
        """Next occurrence from the owner's configured schedule, if any."""
        try:
            owner_data = await self.metrics_source.load_owner_data(owner_id)
        except MetricsSourceError as e:
            logger.warning("Could not derive initial send time from schedule", owner_id=owner_id, error=str(e))
            return None
        return next_fire_from_settings(owner_data.email_schedule, self.clock())

    async def schedule(self, request: ScheduleJobRequest) -> ScheduledJob:
        """
        Validate and store a new pending job.

        For autoSummary jobs the owner's configured schedule, when present
        and not exhausted, decides the first send time.

        Raises:
            JobValidationError: Missing recipients, subject, body or owner, or bad sendAt
        """
        recipients = _clean_recipients(request.recipients)
        if not recipients:
            raise JobValidationError("At least one recipient is required", field="recipients")
        if not request.subject or not request.subject.strip():
            raise JobValidationError("Subject is required", field="subject")

        mode = "autoSummary" if request.mode == "autoSummary" else "manual"
        owner_id = (request.user_id or "").strip() or None

        if mode == "autoSummary" and not owner_id:
            raise JobValidationError("userId is required for auto summary emails", field="userId")
        if mode == "manual" and not request.body:
            raise JobValidationError("Body is required for manual emails", field="body")

        send_at = parse_instant(request.send_at)
        if mode == "autoSummary":
            scheduled = await self._scheduled_send_at(owner_id)
            if scheduled is not None:
                send_at = scheduled

        if send_at is None:
            raise JobValidationError("sendAt must be a valid date/time", field="sendAt")

        job = ScheduledJob(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            recipients=recipients,
            subject=request.subject,
            body=request.body or "",
            body_html=request.body_html,
            send_at=send_at,
            mode=mode,
            recurring=request.recurring,
            ai_model=request.ai_model,
            from_name=request.from_name,
        )
        await self.store.upsert(job)
        return job

    async def send_now(self, request: SendNowRequest) -> None:
        """
        Deliver immediately without touching the store.

        Raises:
            JobValidationError: Missing recipients, subject or body
            DeliveryError: If the delivery service rejects the message
        """
        recipients = _clean_recipients(request.recipients)
        if not recipients:
            raise JobValidationError("At least one recipient is required", field="recipients")
        if not request.subject or not request.body:
            raise JobValidationError("Subject and body are required")

        await self.delivery.send(
            OutgoingMessage(
                recipients=recipients,
                subject=request.subject,
                plain_text_body=request.body,
                html_body=request.body_html,
                from_display_name=request.from_name,
                tags={"trigger": "send_now"},
            )
        )

    async def list_pending(self, owner_id: str) -> list[PendingJobSummary]:
        """Pending jobs of one owner, ordered by send time then id."""
        owner_id = (owner_id or "").strip()
        if not owner_id:
            raise JobValidationError("userId is required", field="userId")
        jobs = await self.store.list_pending_by_owner(owner_id)
        return sorted(jobs, key=lambda job: (job.send_at, job.id))

    async def cancel(self, owner_id: str, job_id: str) -> bool:
        """
        Delete a job on behalf of its owner.

        Returns:
            False when the job does not exist, True once deleted

        Raises:
            JobValidationError: Missing owner or job id
            JobForbiddenError: The job belongs to someone else
        """
        owner_id = (owner_id or "").strip()
        job_id = (job_id or "").strip()
        if not owner_id or not job_id:
            raise JobValidationError("userId and id are required")

        job = await self.store.get_by_id(job_id)
        if job is None:
            return False

        if (job.owner_id or "").strip() != owner_id:
            logger.warning("Cancel refused for non-owner", job_id=job_id, owner_id=owner_id)
            raise JobForbiddenError("Forbidden to cancel this scheduled email", job_id=job_id)

        deleted = await self.store.delete_by_id(job_id, owner_id)
        logger.info("Job cancelled", job_id=job_id, owner_id=owner_id, deleted=deleted)
        return deleted


job_service = JobService()
