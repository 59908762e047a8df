"""
Tests for the job HTTP endpoints (service layer mocked).
"""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from summary_mailer.db.helpers import DatabaseError
from summary_mailer.jobs.dispatch_job import LaunchedPass
from summary_mailer.main import app
from summary_mailer.models.domain.job_domain import PendingJobSummary, ScheduledJob
from summary_mailer.services.delivery_service import DeliveryError
from summary_mailer.services.job_service import JobForbiddenError, JobValidationError

client = TestClient(app)

SERVICE = "summary_mailer.routes.jobs.job_service"


def test_schedule_email_returns_id():
    job = ScheduledJob(id="job-1", recipients=["a@example.com"], subject="S", body="B", send_at=1000)
    with patch(SERVICE) as service:
        service.schedule = AsyncMock(return_value=job)
        response = client.post(
            "/schedule-email",
            json={"recipients": ["a@example.com"], "subject": "S", "body": "B", "sendAt": 1000},
        )

    assert response.status_code == 200
    assert response.json() == {"success": True, "id": "job-1"}
    request = service.schedule.await_args.args[0]
    assert request.send_at == 1000


def test_schedule_email_validation_error_is_400():
    with patch(SERVICE) as service:
        service.schedule = AsyncMock(side_effect=JobValidationError("Subject is required", field="subject"))
        response = client.post("/schedule-email", json={"recipients": ["a@example.com"]})

    assert response.status_code == 400
    assert response.json()["detail"] == "Subject is required"


def test_schedule_email_store_error_is_500():
    with patch(SERVICE) as service:
        service.schedule = AsyncMock(side_effect=DatabaseError("pool exhausted"))
        response = client.post("/schedule-email", json={"recipients": ["a@example.com"], "subject": "S"})

    assert response.status_code == 500


def test_send_now_delivery_error_is_502():
    with patch(SERVICE) as service:
        service.send_now = AsyncMock(side_effect=DeliveryError("Resend error: 500", status_code=500))
        response = client.post(
            "/send-email-now", json={"recipients": ["a@example.com"], "subject": "S", "body": "B"}
        )

    assert response.status_code == 502


def test_list_scheduled_emails_uses_camel_case():
    pending = [
        PendingJobSummary(
            id="job-1", subject="S", send_at=1000, mode="autoSummary", recipients=["a@example.com"], recurring=False
        )
    ]
    with patch(SERVICE) as service:
        service.list_pending = AsyncMock(return_value=pending)
        response = client.get("/list-scheduled-emails", params={"userId": "owner-1"})

    assert response.status_code == 200
    [item] = response.json()["jobs"]
    assert item["sendAt"] == 1000
    assert item["mode"] == "autoSummary"
    service.list_pending.assert_awaited_once_with("owner-1")


def test_list_scheduled_emails_without_owner_is_400():
    with patch(SERVICE) as service:
        service.list_pending = AsyncMock(side_effect=JobValidationError("userId is required", field="userId"))
        response = client.get("/list-scheduled-emails")

    assert response.status_code == 400


def test_cancel_forbidden_is_403():
    with patch(SERVICE) as service:
        service.cancel = AsyncMock(side_effect=JobForbiddenError("Forbidden to cancel this scheduled email"))
        response = client.post("/cancel-scheduled-email", json={"userId": "owner-2", "id": "job-1"})

    assert response.status_code == 403


def test_cancel_missing_job_reports_not_cancelled():
    with patch(SERVICE) as service:
        service.cancel = AsyncMock(return_value=False)
        response = client.post("/cancel-scheduled-email", json={"userId": "owner-1", "id": "job-1"})

    assert response.status_code == 200
    assert response.json()["cancelled"] is False
    service.cancel.assert_awaited_once_with("owner-1", "job-1")


def test_dispatch_run_reports_launched_jobs():
    dispatcher = MagicMock()
    dispatcher.launch_pass = AsyncMock(return_value=LaunchedPass(jobs_due=3, completion=MagicMock()))
    with patch("summary_mailer.routes.jobs.get_dispatcher", return_value=dispatcher):
        response = client.post("/dispatch/run")

    assert response.status_code == 200
    assert response.json() == {"success": True, "launched": 3}
