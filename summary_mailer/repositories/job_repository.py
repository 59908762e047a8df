"""
Persistence for scheduled send jobs.

Every state transition out of Pending goes through a conditional update
(``sent = false`` and the expected ``send_at``) so overlapping dispatch
passes can both see a job as due while only one of them claims it.
"""

import re

from summary_mailer.config import settings
from summary_mailer.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from summary_mailer.infrastructure.observability.logging import get_logger
from summary_mailer.models.domain.job_domain import MarkOutcome, PendingJobSummary, ScheduledJob

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class JobRepository:
    """Job store adapter over the PostgreSQL jobs table."""

    JOB_COLUMNS = """
        id, user_id, recipients, subject, body, body_html, send_at, sent,
        mode, ai_model, from_name, recurring, failed_attempts, failed
    """

    def __init__(self, table: str | None = None):
        table = table or settings.JOBS_TABLE
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid jobs table name: {table!r}")
        self.table = table

    def schema_statements(self) -> list[str]:
        return [
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                recipients TEXT[] NOT NULL,
                subject TEXT NOT NULL,
                body TEXT NOT NULL DEFAULT '',
                body_html TEXT,
                send_at BIGINT NOT NULL,
                sent BOOLEAN NOT NULL DEFAULT FALSE,
                mode TEXT NOT NULL DEFAULT 'manual',
                ai_model TEXT,
                from_name TEXT,
                recurring BOOLEAN NOT NULL DEFAULT FALSE,
                failed_attempts INTEGER NOT NULL DEFAULT 0,
                failed BOOLEAN NOT NULL DEFAULT FALSE
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {self.table}_due_idx ON {self.table} (send_at) WHERE sent = FALSE",
            f"CREATE INDEX IF NOT EXISTS {self.table}_owner_idx ON {self.table} (user_id) WHERE sent = FALSE",
        ]

    async def ensure_schema(self) -> None:
        for statement in self.schema_statements():
            await execute_query(statement)
        logger.info("Jobs table ensured", table=self.table)

    async def list_due(self, now_ms: int) -> list[ScheduledJob]:
        """All pending jobs with ``send_at <= now_ms``."""
        query = f"""
            SELECT {self.JOB_COLUMNS}
            FROM {self.table}
            WHERE sent = FALSE AND send_at <= %s
            ORDER BY send_at, id
        """
        rows = await fetch_all(query, (now_ms,))
        return [ScheduledJob.from_row(row) for row in rows]

    async def get_by_id(self, job_id: str) -> ScheduledJob | None:
        query = f"SELECT {self.JOB_COLUMNS} FROM {self.table} WHERE id = %s"
        row = await fetch_one(query, (job_id,))
        return ScheduledJob.from_row(row) if row else None

    async def upsert(self, job: ScheduledJob) -> None:
        row = job.to_row()
        columns = list(row)
        updates = ", ".join(f"{column} = EXCLUDED.{column}" for column in columns if column != "id")
        query = f"""
            INSERT INTO {self.table} ({", ".join(columns)})
            VALUES ({", ".join(["%s"] * len(columns))})
            ON CONFLICT (id) DO UPDATE SET {updates}
            WHERE {self.table}.sent = FALSE
        """
        await execute_query(query, tuple(row.values()))
        logger.info("Job stored", job_id=job.id, mode=job.mode, send_at=job.send_at)

    async def mark_outcome(
        self, job_id: str, sent: bool, next_send_at: int | None, expected_send_at: int
    ) -> MarkOutcome:
        """
        Conditionally move a pending job to Sent or to its next occurrence.

        Applies only while the stored row is still pending at
        ``expected_send_at``. Zero affected rows is a CONFLICT, not an error.
        """
        query = f"""
            UPDATE {self.table}
            SET sent = %s,
                send_at = COALESCE(%s, send_at),
                failed_attempts = 0
            WHERE id = %s AND sent = FALSE AND send_at = %s
        """
        affected = await execute_query(query, (sent, next_send_at, job_id, expected_send_at))
        return MarkOutcome.APPLIED if affected > 0 else MarkOutcome.CONFLICT

    async def record_failure(
        self,
        job_id: str,
        expected_send_at: int,
        failed_attempts: int,
        next_send_at: int | None = None,
        failed: bool = False,
    ) -> MarkOutcome:
        """
        Conditionally record a failed delivery attempt.

        ``failed=True`` makes the job terminal (``sent`` is set as well).
        """
        query = f"""
            UPDATE {self.table}
            SET failed_attempts = %s,
                send_at = COALESCE(%s, send_at),
                failed = %s,
                sent = %s
            WHERE id = %s AND sent = FALSE AND send_at = %s
        """
        affected = await execute_query(
            query, (failed_attempts, next_send_at, failed, failed, job_id, expected_send_at)
        )
        return MarkOutcome.APPLIED if affected > 0 else MarkOutcome.CONFLICT

    async def delete_by_id(self, job_id: str, owner_id: str) -> bool:
        query = f"DELETE FROM {self.table} WHERE id = %s AND user_id = %s"
        affected = await execute_query(query, (job_id, owner_id))
        return affected > 0

    async def list_pending_by_owner(self, owner_id: str) -> list[PendingJobSummary]:
        query = f"""
            SELECT id, subject, send_at, mode, recipients, recurring
            FROM {self.table}
            WHERE user_id = %s AND sent = FALSE
            ORDER BY send_at, id
        """
        rows = await fetch_all(query, (owner_id,))
        return [
            PendingJobSummary(
                id=str(row["id"]),
                subject=row.get("subject") or "",
                send_at=int(row["send_at"]),
                mode="autoSummary" if row.get("mode") == "autoSummary" else "manual",
                recipients=list(row.get("recipients") or []),
                recurring=row.get("recurring") is True,
            )
            for row in rows
        ]


job_repository = JobRepository()

__all__ = ["DatabaseError", "JobRepository", "job_repository"]
