"""
Tests for the job repository SQL layer (database helpers mocked).
"""

from unittest.mock import AsyncMock

import pytest

from summary_mailer.models.domain.job_domain import MarkOutcome, ScheduledJob
from summary_mailer.repositories import job_repository as repo_module
from summary_mailer.repositories.job_repository import JobRepository


@pytest.fixture
def repo():
    return JobRepository(table="scheduled_emails")


def test_rejects_unsafe_table_name():
    with pytest.raises(ValueError):
        JobRepository(table="jobs; DROP TABLE users")


@pytest.mark.asyncio
async def test_mark_outcome_applied_when_row_updated(repo, monkeypatch):
    execute = AsyncMock(return_value=1)
    monkeypatch.setattr(repo_module, "execute_query", execute)

    outcome = await repo.mark_outcome("job-1", False, 2000, 1000)

    assert outcome is MarkOutcome.APPLIED
    query, params = execute.await_args.args
    assert "sent = FALSE AND send_at = %s" in query
    assert params == (False, 2000, "job-1", 1000)


@pytest.mark.asyncio
async def test_mark_outcome_conflict_when_no_row_matches(repo, monkeypatch):
    monkeypatch.setattr(repo_module, "execute_query", AsyncMock(return_value=0))

    assert await repo.mark_outcome("job-1", True, None, 1000) is MarkOutcome.CONFLICT


@pytest.mark.asyncio
async def test_record_failure_terminal_sets_sent(repo, monkeypatch):
    execute = AsyncMock(return_value=1)
    monkeypatch.setattr(repo_module, "execute_query", execute)

    await repo.record_failure("job-1", 1000, 3, failed=True)

    _, params = execute.await_args.args
    assert params == (3, None, True, True, "job-1", 1000)


@pytest.mark.asyncio
async def test_list_due_maps_rows(repo, monkeypatch):
    fetch = AsyncMock(
        return_value=[
            {
                "id": "job-1",
                "user_id": "owner-1",
                "recipients": ["a@example.com"],
                "subject": "S",
                "body": "B",
                "body_html": None,
                "send_at": 1000,
                "sent": False,
                "mode": "autoSummary",
                "ai_model": None,
                "from_name": None,
                "recurring": None,
                "failed_attempts": None,
                "failed": False,
            }
        ]
    )
    monkeypatch.setattr(repo_module, "fetch_all", fetch)

    [job] = await repo.list_due(5000)

    assert fetch.await_args.args[1] == (5000,)
    assert job.owner_id == "owner-1"
    assert job.mode == "autoSummary"
    assert job.recurring is False
    assert job.failed_attempts == 0


@pytest.mark.asyncio
async def test_upsert_uses_on_conflict(repo, monkeypatch):
    execute = AsyncMock(return_value=1)
    monkeypatch.setattr(repo_module, "execute_query", execute)
    job = ScheduledJob(id="job-1", recipients=["a@example.com"], subject="S", body="B", send_at=1000)

    await repo.upsert(job)

    query, params = execute.await_args.args
    assert "ON CONFLICT (id) DO UPDATE" in query
    assert "WHERE scheduled_emails.sent = FALSE" in query
    assert params[0] == "job-1"
    assert len(params) == len(job.to_row())


@pytest.mark.asyncio
async def test_delete_is_guarded_by_owner(repo, monkeypatch):
    execute = AsyncMock(return_value=0)
    monkeypatch.setattr(repo_module, "execute_query", execute)

    assert await repo.delete_by_id("job-1", "owner-2") is False
    query, params = execute.await_args.args
    assert "user_id = %s" in query
    assert params == ("job-1", "owner-2")


@pytest.mark.asyncio
async def test_ensure_schema_runs_each_statement(repo, monkeypatch):
    execute = AsyncMock(return_value=0)
    monkeypatch.setattr(repo_module, "execute_query", execute)

    await repo.ensure_schema()

    assert execute.await_count == len(repo.schema_statements())
    assert "CREATE TABLE IF NOT EXISTS scheduled_emails" in execute.await_args_list[0].args[0]
