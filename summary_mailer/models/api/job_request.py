# summary_mailer/models/api/job_request.py
from pydantic import BaseModel, ConfigDict, Field


class ScheduleJobRequest(BaseModel):
    """Request body for POST /schedule-email."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    recipients: list[str] = Field(default_factory=list)
    subject: str = ""
    body: str | None = None
    body_html: str | None = Field(default=None, alias="bodyHtml")
    send_at: str | int | None = Field(default=None, alias="sendAt", description="ISO-8601 or epoch ms")
    mode: str | None = None
    ai_model: str | None = Field(default=None, alias="aiModel")
    from_name: str | None = Field(default=None, alias="fromName")
    recurring: bool = False


class SendNowRequest(BaseModel):
    """Request body for POST /send-email-now."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    recipients: list[str] = Field(default_factory=list)
    subject: str = ""
    body: str = ""
    body_html: str | None = Field(default=None, alias="bodyHtml")
    from_name: str | None = Field(default=None, alias="fromName")


class CancelJobRequest(BaseModel):
    """Request body for POST /cancel-scheduled-email."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(default="", alias="userId")
    id: str = ""
