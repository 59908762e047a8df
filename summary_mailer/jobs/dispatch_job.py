"""
Dispatch job: finds due send jobs and delivers each one exactly once per occurrence.

Each pass lists due jobs and processes them as independent asyncio tasks.
A pass returns as soon as its tasks are launched; the tasks are tracked on
the dispatcher and drained at shutdown so none is dropped. Overlapping
passes are safe because every transition out of Pending is a conditional
update on the stored row.
"""

import asyncio
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from summary_mailer.config import settings
from summary_mailer.db.helpers import DatabaseError
from summary_mailer.infrastructure.observability.logging import get_logger, log_dispatch_summary
from summary_mailer.models.domain.job_domain import MarkOutcome, ScheduledJob
from summary_mailer.models.domain.performance_domain import OwnerData
from summary_mailer.repositories.job_repository import JobRepository
from summary_mailer.services.content_service import ContentGenerator
from summary_mailer.services.delivery_service import DeliveryError, DeliveryService, OutgoingMessage
from summary_mailer.services.metrics_source_service import (
    MetricsSourceError,
    MetricsSourceService,
    consolidation_tags,
)
from summary_mailer.services.openai_service import resolve_model
from summary_mailer.services.recurrence_service import next_fire_from_settings
from summary_mailer.utils.local_time import now_ms

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    What happens to a job whose delivery failed.

    The default (no attempt limit, no backoff) writes nothing: the job stays
    due with its ``send_at`` untouched and the next pass retries it. Any
    other policy records ``failed_attempts`` and, once ``max_attempts`` is
    reached, moves the job to the terminal Failed state.
    """

    max_attempts: int | None = None
    backoff_base_seconds: float = 0.0
    backoff_max_seconds: float = 3600.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.DELIVERY_MAX_ATTEMPTS,
            backoff_base_seconds=settings.DELIVERY_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=settings.DELIVERY_BACKOFF_MAX_SECONDS,
        )

    @property
    def records_failures(self) -> bool:
        return self.max_attempts is not None or self.backoff_base_seconds > 0

    def is_exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts

    def backoff_ms(self, attempts: int) -> int:
        """Exponential delay before attempt ``attempts + 1``; 0 means next pass."""
        if self.backoff_base_seconds <= 0:
            return 0
        delay = min(self.backoff_base_seconds * 2 ** max(attempts - 1, 0), self.backoff_max_seconds)
        return round(delay * 1000)


class DispatchMetrics:
    """Counters for one dispatch pass."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.jobs_due = 0
        self.delivered = 0
        self.delivery_failures = 0
        self.conflicts = 0
        self.rescheduled = 0
        self.completed = 0
        self.failed_terminal = 0
        self.store_errors = 0
        self.processing_errors = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_delivered(self, job_id: str, rescheduled: bool, duration_ms: float):
        self.delivered += 1
        if rescheduled:
            self.rescheduled += 1
        else:
            self.completed += 1
        logger.debug("Job dispatched", job_id=job_id, rescheduled=rescheduled, duration_ms=duration_ms)

    def record_delivery_failure(self, job_id: str, error: str):
        self.delivery_failures += 1
        self._record_error(job_id, error, "delivery")
        logger.warning("Job delivery failed, left pending", job_id=job_id, error=error)

    def record_conflict(self, job_id: str):
        self.conflicts += 1
        logger.info("Job already claimed by another pass", job_id=job_id)

    def record_store_error(self, job_id: str | None, error: str):
        self.store_errors += 1
        self._record_error(job_id, error, "store")
        logger.error("Job store error during dispatch", job_id=job_id, error=error)

    def record_processing_error(self, job_id: str, error: str):
        self.processing_errors += 1
        self._record_error(job_id, error, "processing")
        logger.error("Job processing error", job_id=job_id, error=error)

    def _record_error(self, job_id: str | None, error: str, error_type: str):
        self.errors.append(
            {
                "job_id": job_id,
                "error": error,
                "error_type": error_type,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "dispatch",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "jobs_due": self.jobs_due,
            "delivered": self.delivered,
            "delivery_failures": self.delivery_failures,
            "conflicts": self.conflicts,
            "rescheduled": self.rescheduled,
            "completed": self.completed,
            "failed_terminal": self.failed_terminal,
            "store_errors": self.store_errors,
            "processing_errors": self.processing_errors,
            "errors_count": len(self.errors),
        }


@dataclass(slots=True)
class LaunchedPass:
    """Handle on a pass whose job tasks are running."""

    jobs_due: int
    completion: asyncio.Task


class Dispatcher:
    """Runs dispatch passes over the job store."""

    def __init__(
        self,
        store: JobRepository,
        metrics_source: MetricsSourceService,
        content_generator: ContentGenerator,
        delivery: DeliveryService,
        clock: Callable[[], int] = now_ms,
        retry_policy: RetryPolicy | None = None,
    ):
        self.store = store
        self.metrics_source = metrics_source
        self.content_generator = content_generator
        self.delivery = delivery
        self.clock = clock
        self.retry_policy = retry_policy or RetryPolicy()
        self.last_run_time: datetime | None = None
        self.last_metrics: dict | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def launch_pass(self) -> LaunchedPass:
        """
        List due jobs and start one task per job.

        Returns once the tasks are created. The returned handle's
        ``completion`` task resolves to the pass metrics.
        """
        metrics = DispatchMetrics()
        self.last_run_time = metrics.start_time

        try:
            due_jobs = await self.store.list_due(self.clock())
        except DatabaseError as e:
            metrics.record_store_error(None, str(e))
            due_jobs = []

        metrics.jobs_due = len(due_jobs)
        if due_jobs:
            logger.info("Dispatching due jobs", job_count=len(due_jobs))

        job_tasks = [
            self._track(asyncio.create_task(self._process_job(job, metrics), name=f"dispatch:{job.id}"))
            for job in due_jobs
        ]
        completion = self._track(asyncio.create_task(self._complete_pass(job_tasks, metrics)))
        return LaunchedPass(jobs_due=len(due_jobs), completion=completion)

    async def _complete_pass(self, job_tasks: list[asyncio.Task], metrics: DispatchMetrics) -> dict:
        await asyncio.gather(*job_tasks, return_exceptions=True)
        metrics.finalize()
        summary = metrics.to_dict()
        self.last_metrics = summary
        log_dispatch_summary(summary)
        return summary

    async def run_once(self) -> dict:
        """Run one pass and wait for all of its jobs."""
        launched = await self.launch_pass()
        return await launched.completion

    async def drain(self) -> None:
        """Wait for every launched task, including tasks launched while draining."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _process_job(self, job: ScheduledJob, metrics: DispatchMetrics) -> None:
        start_time = time.time()
        # each job task runs in its own context copy, so the binding stays per job
        with structlog.contextvars.bound_contextvars(dispatch_job_id=job.id, mode=job.mode):
            try:
                await self._dispatch(job, metrics, start_time)
            except DatabaseError as e:
                metrics.record_store_error(job.id, str(e))
            except Exception as e:
                metrics.record_processing_error(job.id, f"Unexpected error: {type(e).__name__}: {e}")

    async def _dispatch(self, job: ScheduledJob, metrics: DispatchMetrics, start_time: float) -> None:
        if job.is_auto_summary:
            job = await self._with_generated_content(job)

        try:
            await self.delivery.send(self._build_message(job))
        except DeliveryError as e:
            metrics.record_delivery_failure(job.id, str(e))
            await self._handle_delivery_failure(job, metrics)
            return

        sent, next_send_at = await self._next_state(job)
        outcome = await self.store.mark_outcome(job.id, sent, next_send_at, job.send_at)
        if outcome is MarkOutcome.CONFLICT:
            metrics.record_conflict(job.id)
            return

        metrics.record_delivered(job.id, rescheduled=not sent, duration_ms=(time.time() - start_time) * 1000)

    def _build_message(self, job: ScheduledJob) -> OutgoingMessage:
        return OutgoingMessage(
            recipients=job.recipients,
            subject=job.subject,
            plain_text_body=job.body,
            html_body=job.body_html,
            from_display_name=job.from_name,
            tags={"job_id": job.id, "mode": job.mode},
        )

    async def _load_owner_data(self, owner_id: str) -> OwnerData:
        """Owner data for content generation; an unreachable source yields an empty dataset."""
        try:
            owner_data = await self.metrics_source.load_owner_data(owner_id)
        except MetricsSourceError as e:
            logger.warning("Owner data unavailable, summarizing empty dataset", owner_id=owner_id, error=str(e))
            return OwnerData()

        tags = consolidation_tags(owner_data.dashboard_settings)
        if not tags:
            return owner_data

        try:
            merged = await self.metrics_source.consolidate(tags)
        except MetricsSourceError as e:
            logger.warning("Consolidation failed, using owner data only", owner_id=owner_id, error=str(e))
            return owner_data

        if merged is None or not (merged.entities or merged.cases):
            return owner_data
        # the merged portfolio replaces both lists together
        owner_data.entities = merged.entities
        owner_data.cases = merged.cases
        return owner_data

    async def _with_generated_content(self, job: ScheduledJob) -> ScheduledJob:
        owner_data = await self._load_owner_data(job.owner_id or "")
        dashboard_model = (owner_data.dashboard_settings or {}).get("aiModel")
        model = resolve_model(dashboard_model, job.ai_model)

        content = await self.content_generator.generate(owner_data, model)
        return job.model_copy(update={"body": content.plain_text, "body_html": content.html})

    async def _next_state(self, job: ScheduledJob) -> tuple[bool, int | None]:
        """(sent, next send_at) after a successful delivery."""
        if not job.is_auto_summary and not job.recurring:
            return True, None

        if not job.owner_id:
            return True, None

        try:
            owner_data = await self.metrics_source.load_owner_data(job.owner_id)
        except MetricsSourceError as e:
            logger.warning("Schedule lookup failed, completing job", job_id=job.id, error=str(e))
            return True, None

        next_send_at = next_fire_from_settings(owner_data.email_schedule, self.clock())
        if next_send_at is None:
            return True, None
        return False, next_send_at

    async def _handle_delivery_failure(self, job: ScheduledJob, metrics: DispatchMetrics) -> None:
        policy = self.retry_policy
        if not policy.records_failures:
            return

        attempts = job.failed_attempts + 1
        if policy.is_exhausted(attempts):
            outcome = await self.store.record_failure(job.id, job.send_at, attempts, failed=True)
            if outcome is MarkOutcome.APPLIED:
                metrics.failed_terminal += 1
                logger.error("Job failed permanently", job_id=job.id, attempts=attempts)
            return

        delay_ms = policy.backoff_ms(attempts)
        next_send_at = self.clock() + delay_ms if delay_ms else None
        await self.store.record_failure(job.id, job.send_at, attempts, next_send_at=next_send_at)

    def health_check(self) -> dict:
        now = datetime.now(UTC)
        overdue_threshold = timedelta(minutes=settings.DISPATCH_INTERVAL_MINUTES * 3)
        is_overdue = self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold
        return {
            "healthy": not is_overdue,
            "service": "dispatch_job",
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
            "inflight_tasks": self.inflight_count,
        }


_dispatcher: Dispatcher | None = None


def build_dispatcher() -> Dispatcher:
    """Dispatcher wired to the configured store and external services."""
    from summary_mailer.repositories.job_repository import job_repository
    from summary_mailer.services.openai_service import TextGenerationService
    from summary_mailer.services.redis_client import fast_redis
    from summary_mailer.services.response_cache import ResponseCache

    cache = (
        ResponseCache(fast_redis, settings.TEXT_GEN_CACHE_TTL_SECONDS) if settings.cache_enabled() else None
    )
    return Dispatcher(
        store=job_repository,
        metrics_source=MetricsSourceService(),
        content_generator=ContentGenerator(TextGenerationService(cache=cache)),
        delivery=DeliveryService(),
        retry_policy=RetryPolicy.from_settings(),
    )


def get_dispatcher() -> Dispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher()
    return _dispatcher


async def run_dispatch_pass() -> dict:
    """Run a single dispatch pass and wait for it."""
    return await get_dispatcher().run_once()


@asynccontextmanager
async def _worker_resources():
    """Store pool, optional schema and optional cache for a standalone worker process."""
    from summary_mailer.db.pool import db_pool
    from summary_mailer.repositories.job_repository import job_repository
    from summary_mailer.services.redis_client import fast_redis

    await db_pool.initialize()
    try:
        if settings.AUTO_CREATE_SCHEMA:
            await job_repository.ensure_schema()
        if settings.cache_enabled():
            await fast_redis.initialize()
        yield
    finally:
        if settings.cache_enabled():
            await fast_redis.close()
        await db_pool.close()


async def run_dispatch_once_standalone():
    """One pass with its own resources, for cron-style invocation."""
    async with _worker_resources():
        metrics = await run_dispatch_pass()
        logger.info("Standalone dispatch pass finished", jobs_due=metrics["jobs_due"])


async def start_dispatch_scheduler():
    """
    Periodic trigger: launch one pass per DISPATCH_INTERVAL_MINUTES.

    Passes are not awaited before the next one starts; the conditional
    claim keeps overlapping passes safe. In-flight tasks are drained on exit.
    """
    interval_seconds = settings.DISPATCH_INTERVAL_MINUTES * 60
    logger.info("Starting dispatch scheduler", interval_minutes=settings.DISPATCH_INTERVAL_MINUTES)

    async with _worker_resources():
        dispatcher = get_dispatcher()
        try:
            while True:
                try:
                    await dispatcher.launch_pass()
                except Exception as e:
                    logger.error("Error launching dispatch pass", error=str(e), error_type=type(e).__name__)
                await asyncio.sleep(interval_seconds)
        finally:
            logger.info("Dispatch scheduler stopping, draining in-flight jobs", inflight=dispatcher.inflight_count)
            await dispatcher.drain()
