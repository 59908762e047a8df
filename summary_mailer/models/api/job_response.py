# summary_mailer/models/api/job_response.py
from pydantic import BaseModel, ConfigDict, Field

from summary_mailer.models.domain.job_domain import JobMode


class ScheduleJobResponse(BaseModel):
    """Response for POST /schedule-email"""

    success: bool = True
    id: str


class SendNowResponse(BaseModel):
    """Response for POST /send-email-now"""

    success: bool = True


class PendingJobItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    subject: str
    send_at: int = Field(alias="sendAt")
    mode: JobMode
    recipients: list[str]
    recurring: bool


class PendingJobsResponse(BaseModel):
    """Response for GET /list-scheduled-emails"""

    success: bool = True
    jobs: list[PendingJobItem]


class CancelJobResponse(BaseModel):
    """Response for POST /cancel-scheduled-email"""

    success: bool = True
    cancelled: bool


class DispatchRunResponse(BaseModel):
    """Response for POST /dispatch/run"""

    success: bool = True
    launched: int
