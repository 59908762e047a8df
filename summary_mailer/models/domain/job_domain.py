"""
Domain model for scheduled send jobs.

A job is a unit of future delivery. ``send_at`` is an absolute instant in
epoch milliseconds; ``sent=True`` is terminal.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

JobMode = Literal["manual", "autoSummary"]


class MarkOutcome(str, Enum):
    """Result of a conditional job update."""

    APPLIED = "applied"
    CONFLICT = "conflict"


class ScheduledJob(BaseModel):
    """A stored send job (one row of the jobs table)."""

    id: str
    owner_id: str | None = None
    recipients: list[str]
    subject: str
    body: str = ""
    body_html: str | None = None
    send_at: int
    sent: bool = False
    mode: JobMode = "manual"
    recurring: bool = False
    ai_model: str | None = None
    from_name: str | None = None

    # Delivery retry bookkeeping (only written under a bounded retry policy)
    failed_attempts: int = 0
    failed: bool = False

    @property
    def is_auto_summary(self) -> bool:
        return self.mode == "autoSummary"

    def is_due(self, now_ms: int) -> bool:
        return not self.sent and self.send_at <= now_ms

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ScheduledJob":
        """Build a job from a jobs-table row, tolerating loosely typed columns."""
        raw_send_at = row.get("send_at")
        if isinstance(raw_send_at, datetime):
            send_at = round(raw_send_at.timestamp() * 1000)
        else:
            send_at = int(raw_send_at or 0)

        recipients = row.get("recipients")
        return cls(
            id=str(row["id"]),
            owner_id=row.get("user_id"),
            recipients=list(recipients) if isinstance(recipients, list | tuple) else [],
            subject=row.get("subject") or "",
            body=row.get("body") or "",
            body_html=row.get("body_html"),
            send_at=send_at,
            sent=bool(row.get("sent")),
            mode="autoSummary" if row.get("mode") == "autoSummary" else "manual",
            recurring=row.get("recurring") is True,
            ai_model=row.get("ai_model"),
            from_name=row.get("from_name"),
            failed_attempts=int(row.get("failed_attempts") or 0),
            failed=bool(row.get("failed")),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "recipients": self.recipients,
            "subject": self.subject,
            "body": self.body,
            "body_html": self.body_html,
            "send_at": self.send_at,
            "sent": self.sent,
            "mode": self.mode,
            "ai_model": self.ai_model,
            "from_name": self.from_name,
            "recurring": self.recurring,
            "failed_attempts": self.failed_attempts,
            "failed": self.failed,
        }


class PendingJobSummary(BaseModel):
    """Lightweight view of a pending job for owner listings."""

    id: str
    subject: str
    send_at: int
    mode: JobMode = "manual"
    recipients: list[str] = Field(default_factory=list)
    recurring: bool = False
