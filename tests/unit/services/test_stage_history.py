"""Tests for the stage history ledger."""

from datetime import datetime, timedelta

import pytest

from api.services import stage_history
from api.services.stage_history import (
    calculate_duration_hours,
    close_stage_entry,
    create_stage_entry,
    get_current_stage_entry,
    get_stage_history,
    get_stage_history_by_candidate_id,
)
from core.errors import NotFoundError


class TestDuration:
    def test_duration_in_hours(self):
        start = datetime(2025, 1, 1, 9, 0)
        assert calculate_duration_hours(start, start + timedelta(hours=36, minutes=30)) == 36.5

    def test_zero_duration(self):
        start = datetime(2025, 1, 1)
        assert calculate_duration_hours(start, start) == 0


class TestStageEntries:
    async def test_create_and_close_entry(self, db, factory, company, recruiter, monkeypatch):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company)
        job_candidate = await factory.application(seeded, candidate, open_entry=False)
        screening = seeded.stage("Screening")

        entered = datetime(2025, 3, 1, 8, 0)
        monkeypatch.setattr(stage_history, "utcnow", lambda: entered)
        created = await create_stage_entry(
            job_candidate.id, screening.id, screening.name,
            comment="Looks promising", moved_by=recruiter.id, session=db,
        )
        assert created["exited_at"] is None
        assert created["duration_hours"] is None
        assert created["moved_by_name"] == "Riley Recruiter"

        closed = await close_stage_entry(
            job_candidate.id, screening.id, exited_at=entered + timedelta(hours=50), session=db
        )
        assert closed["id"] == created["id"]
        assert closed["exited_at"] == "2025-03-03T10:00:00"
        assert closed["duration_hours"] == 50

    async def test_close_without_open_entry_returns_none(self, db, factory, company):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company)
        job_candidate = await factory.application(seeded, candidate, open_entry=False)

        assert await close_stage_entry(job_candidate.id, seeded.stage("Queue").id, session=db) is None

    async def test_create_for_unknown_application(self, db):
        with pytest.raises(NotFoundError) as exc_info:
            await create_stage_entry(999, None, "Queue", session=db)
        assert exc_info.value.message == "Job candidate not found"

    async def test_history_is_oldest_first(self, db, factory, company, now):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company)
        job_candidate = await factory.application(
            seeded, candidate, stage="Interview", applied_at=now - timedelta(days=9),
            entered_at=now - timedelta(days=2),
        )
        await factory.history(job_candidate, seeded.stage("Screening"), now - timedelta(days=6), now - timedelta(days=2))
        await factory.history(job_candidate, seeded.stage("Queue"), now - timedelta(days=9), now - timedelta(days=6))

        history = await get_stage_history(job_candidate.id, session=db)

        assert [entry["stage_name"] for entry in history] == ["Queue", "Screening", "Interview"]
        assert history[0]["duration_hours"] == 72

    async def test_history_for_unknown_application(self, db):
        with pytest.raises(NotFoundError):
            await get_stage_history(12345, session=db)

    async def test_history_is_hidden_from_other_companies(self, db, factory, company):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company)
        job_candidate = await factory.application(seeded, candidate)
        outsider = await factory.company("Other")

        with pytest.raises(NotFoundError):
            await get_stage_history(job_candidate.id, company_id=outsider.id, session=db)
        assert await get_stage_history_by_candidate_id(
            candidate.id, company_id=outsider.id, session=db
        ) == []
        assert len(await get_stage_history(job_candidate.id, company_id=company.id, session=db)) == 1

    async def test_candidate_history_spans_applications_newest_first(self, db, factory, company, now):
        candidate = await factory.candidate(company)
        first = await factory.job(company, title="First")
        second = await factory.job(company, title="Second")
        await factory.application(first, candidate, applied_at=now - timedelta(days=5))
        await factory.application(second, candidate, applied_at=now - timedelta(days=1))

        history = await get_stage_history_by_candidate_id(candidate.id, session=db)

        assert len(history) == 2
        assert history[0]["entered_at"] > history[1]["entered_at"]

    async def test_current_entry(self, db, factory, company, now):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company)
        job_candidate = await factory.application(seeded, candidate, stage="Screening")

        current = await get_current_stage_entry(job_candidate.id, session=db)
        assert current["stage_name"] == "Screening"
        assert await get_current_stage_entry(999, session=db) is None
