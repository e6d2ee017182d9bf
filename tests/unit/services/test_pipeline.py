"""Tests for pipeline moves, intake and feedback-driven advancement."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from api.services import pipeline as pipeline_service
from api.services.pipeline import (
    AUTO_ADVANCE_COMMENT,
    BULK_DATABASE_ERROR,
    auto_advance_on_feedback,
    bulk_move_candidates,
    create_application,
    move_candidate,
)
from core.errors import NotFoundError, ValidationError
from database.models.applications import CandidateActivity, JobCandidate, StageHistory
from database.models.interviews import InterviewStatus, Recommendation
from database.models.users import UserRole


async def open_entries(db, job_candidate_id):
    result = await db.execute(
        select(StageHistory).where(
            StageHistory.job_candidate_id == job_candidate_id,
            StageHistory.exited_at.is_(None),
        )
    )
    return result.scalars().all()


async def ledger(db, job_candidate_id):
    result = await db.execute(
        select(StageHistory)
        .where(StageHistory.job_candidate_id == job_candidate_id)
        .order_by(StageHistory.id)
    )
    return result.scalars().all()


class TestMoveCandidate:
    async def test_move_closes_and_opens_ledger_entries(self, db, factory, company, recruiter):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company)
        job_candidate = await factory.application(seeded, candidate)

        result = await move_candidate(
            job_candidate.id, seeded.stage("Screening").id,
            moved_by=recruiter.id, comment="Strong CV", session=db,
        )

        assert result["moved"] is True
        assert result["fromStage"]["name"] == "Queue"
        assert result["toStage"]["name"] == "Screening"

        entries = await ledger(db, job_candidate.id)
        assert [e.stage_name for e in entries] == ["Queue", "Screening"]
        assert entries[0].exited_at is not None
        assert entries[0].duration_hours >= 0
        assert entries[1].moved_by == recruiter.id
        assert entries[1].comment == "Strong CV"
        assert len(await open_entries(db, job_candidate.id)) == 1

        activity = await db.scalar(select(CandidateActivity))
        assert activity.description == "Moved from Queue to Screening. Reason: Strong CV"

    async def test_move_to_current_stage_is_a_no_op(self, db, factory, company):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company)
        job_candidate = await factory.application(seeded, candidate)

        result = await move_candidate(job_candidate.id, seeded.stage("Queue").id, session=db)

        assert result["moved"] is False
        assert len(await ledger(db, job_candidate.id)) == 1
        assert await db.scalar(select(func.count(CandidateActivity.id))) == 0

    async def test_rejection_requires_reason(self, db, factory, company):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company)
        job_candidate = await factory.application(seeded, candidate)

        with pytest.raises(ValidationError) as exc_info:
            await move_candidate(job_candidate.id, seeded.stage("Rejected").id, session=db)
        assert "rejectionReason" in exc_info.value.errors

        result = await move_candidate(
            job_candidate.id, seeded.stage("Rejected").id,
            rejection_reason="Salary expectations too high", session=db,
        )
        assert result["moved"] is True
        assert (await ledger(db, job_candidate.id))[-1].comment == "Salary expectations too high"

    async def test_stage_from_another_job_is_rejected(self, db, factory, company):
        seeded = await factory.job(company)
        other = await factory.job(company, title="Other")
        candidate = await factory.candidate(company)
        job_candidate = await factory.application(seeded, candidate)

        with pytest.raises(ValidationError):
            await move_candidate(job_candidate.id, other.stage("Screening").id, session=db)

    async def test_unknown_application(self, db):
        with pytest.raises(NotFoundError):
            await move_candidate(999, 1, session=db)

    async def test_other_company_application_is_not_found(self, db, factory, company):
        seeded = await factory.job(company)
        job_candidate = await factory.application(seeded, await factory.candidate(company))
        outsider = await factory.company("Other")

        with pytest.raises(NotFoundError) as exc_info:
            await move_candidate(
                job_candidate.id, seeded.stage("Screening").id,
                company_id=outsider.id, session=db,
            )
        assert exc_info.value.message == "Job candidate not found"
        assert len(await ledger(db, job_candidate.id)) == 1


class TestBulkMove:
    """Each item runs in its own transaction through the shared session factory."""

    async def test_partial_failure_keeps_successful_moves(self, db, factory, company):
        seeded = await factory.job(company)
        other = await factory.job(company, title="Other")
        first = await factory.application(seeded, await factory.candidate(company, name="Ana"))
        second = await factory.application(seeded, await factory.candidate(company, name="Ben"))
        foreign = await factory.application(other, await factory.candidate(company, name="Cat"))

        result = await bulk_move_candidates(
            seeded.id, [first.id, foreign.id, second.id, 9999], seeded.stage("Screening").id
        )

        assert result["success"] is False
        assert result["movedCount"] == 2
        assert result["failedCount"] == 2
        failures = {failure["jobCandidateId"]: failure for failure in result["failures"]}
        assert failures[foreign.id]["candidateName"] == "Cat"
        assert failures[foreign.id]["error"] == "Validation failed"
        assert failures[9999]["candidateName"] is None
        assert failures[9999]["error"] == "Job candidate not found"

        stage_ids = (
            await db.execute(
                select(JobCandidate.id, JobCandidate.current_stage_id).where(
                    JobCandidate.id.in_([first.id, second.id, foreign.id])
                )
            )
        ).all()
        current = dict(stage_ids)
        assert current[first.id] == seeded.stage("Screening").id
        assert current[second.id] == seeded.stage("Screening").id
        assert current[foreign.id] == other.stage("Queue").id

    async def test_all_succeed(self, factory, company):
        seeded = await factory.job(company)
        applications = [
            await factory.application(seeded, await factory.candidate(company, name=name))
            for name in ("Ana", "Ben")
        ]

        result = await bulk_move_candidates(
            seeded.id, [a.id for a in applications], seeded.stage("Interview").id
        )

        assert result == {"success": True, "movedCount": 2, "failedCount": 0, "failures": []}

    async def test_rejection_stage_requires_comment(self, factory, company):
        seeded = await factory.job(company)
        application = await factory.application(seeded, await factory.candidate(company))

        with pytest.raises(ValidationError):
            await bulk_move_candidates(seeded.id, [application.id], seeded.stage("Rejected").id)

    async def test_empty_id_list(self, factory, company):
        seeded = await factory.job(company)
        with pytest.raises(ValidationError):
            await bulk_move_candidates(seeded.id, [], seeded.stage("Screening").id)

    async def test_unknown_job(self, session_factory):
        with pytest.raises(NotFoundError):
            await bulk_move_candidates(404, [1], 1)

    async def test_database_error_on_one_item_does_not_stop_the_rest(
        self, factory, company, monkeypatch
    ):
        seeded = await factory.job(company)
        broken = await factory.application(seeded, await factory.candidate(company, name="Ana"))
        healthy = await factory.application(seeded, await factory.candidate(company, name="Ben"))
        move_one = pipeline_service._move_one_for_bulk

        async def flaky_move(job_candidate_id, *args):
            if job_candidate_id == broken.id:
                raise OperationalError("UPDATE job_candidates", {}, Exception("deadlock detected"))
            await move_one(job_candidate_id, *args)

        monkeypatch.setattr(pipeline_service, "_move_one_for_bulk", flaky_move)

        result = await bulk_move_candidates(
            seeded.id, [broken.id, healthy.id], seeded.stage("Interview").id
        )

        assert result["movedCount"] == 1
        assert result["failures"] == [{
            "jobCandidateId": broken.id,
            "candidateName": "Ana",
            "error": BULK_DATABASE_ERROR,
        }]

    async def test_other_company_job_is_not_found(self, factory, company):
        seeded = await factory.job(company)
        application = await factory.application(seeded, await factory.candidate(company))
        outsider = await factory.company("Other")

        with pytest.raises(NotFoundError) as exc_info:
            await bulk_move_candidates(
                seeded.id, [application.id], seeded.stage("Screening").id, company_id=outsider.id
            )
        assert exc_info.value.message == "Job not found"


class TestCreateApplication:
    async def test_lands_in_queue_with_open_entry(self, db, factory, company):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company, experience_years=4)

        result = await create_application(seeded.id, candidate.id, session=db)

        assert result["autoRejected"] is False
        assert result["jobCandidate"]["currentStageId"] == seeded.stage("Queue").id
        entries = await open_entries(db, result["jobCandidate"]["id"])
        assert [e.stage_name for e in entries] == ["Queue"]

    async def test_auto_rejection_runs_on_intake(self, db, factory, company):
        seeded = await factory.job(
            company,
            auto_rejection_rules={
                "enabled": True,
                "rules": [{"id": "r1", "field": "experience", "operator": "less_than", "value": 3}],
            },
        )
        candidate = await factory.candidate(company, experience_years=1)

        result = await create_application(seeded.id, candidate.id, session=db)

        assert result["autoRejected"] is True
        assert result["jobCandidate"]["currentStageId"] == seeded.stage("Rejected").id
        entries = await ledger(db, result["jobCandidate"]["id"])
        assert [e.stage_name for e in entries] == ["Queue", "Rejected"]
        assert [e.stage_name for e in await open_entries(db, result["jobCandidate"]["id"])] == ["Rejected"]

    async def test_duplicate_application(self, db, factory, company):
        seeded = await factory.job(company)
        candidate = await factory.candidate(company)
        await create_application(seeded.id, candidate.id, session=db)

        with pytest.raises(ValidationError) as exc_info:
            await create_application(seeded.id, candidate.id, session=db)
        assert exc_info.value.errors == {"candidateId": ["Candidate has already applied to this job"]}

    async def test_unknown_candidate(self, db, factory, company):
        seeded = await factory.job(company)
        with pytest.raises(NotFoundError) as exc_info:
            await create_application(seeded.id, 999, session=db)
        assert exc_info.value.message == "Candidate not found"

    async def test_job_and_candidate_must_share_the_caller_company(self, db, factory, company):
        seeded = await factory.job(company)
        outsider = await factory.company("Other")
        stranger = await factory.candidate(outsider)

        with pytest.raises(NotFoundError) as exc_info:
            await create_application(
                seeded.id, (await factory.candidate(company)).id,
                company_id=outsider.id, session=db,
            )
        assert exc_info.value.message == "Job not found"

        with pytest.raises(NotFoundError) as exc_info:
            await create_application(seeded.id, stranger.id, company_id=company.id, session=db)
        assert exc_info.value.message == "Candidate not found"


class TestAutoAdvance:
    async def _interview(self, factory, company, now, recommendations):
        seeded = await factory.job(company)
        job_candidate = await factory.application(
            seeded, await factory.candidate(company), stage="Interview"
        )
        panel = [
            await factory.user(company, name=f"Panelist {index}", role=UserRole.INTERVIEWER)
            for index in range(len(recommendations))
        ]
        interview = await factory.interview(
            job_candidate,
            scheduled_at=now - timedelta(days=1),
            status=InterviewStatus.SCHEDULED,
            panel=panel,
            feedback=[(user, rec, now) for user, rec in zip(panel, recommendations)],
        )
        return seeded, job_candidate, interview

    async def test_unanimous_positive_feedback_advances(self, db, factory, company, now):
        seeded, job_candidate, interview = await self._interview(
            factory, company, now, [Recommendation.HIRE, Recommendation.STRONG_HIRE]
        )

        moved_to = await auto_advance_on_feedback(interview.id, session=db)

        assert moved_to == "Offer"
        await db.refresh(job_candidate)
        await db.refresh(interview)
        assert job_candidate.current_stage_id == seeded.stage("Offer").id
        assert interview.status == InterviewStatus.COMPLETED
        assert (await ledger(db, job_candidate.id))[-1].comment == AUTO_ADVANCE_COMMENT

    async def test_mixed_feedback_does_not_advance(self, db, factory, company, now):
        seeded, job_candidate, interview = await self._interview(
            factory, company, now, [Recommendation.HIRE, Recommendation.NO_HIRE]
        )

        assert await auto_advance_on_feedback(interview.id, session=db) is None
        await db.refresh(job_candidate)
        await db.refresh(interview)
        assert job_candidate.current_stage_id == seeded.stage("Interview").id
        assert interview.status == InterviewStatus.COMPLETED

    async def test_no_feedback_does_not_advance(self, db, factory, company, now):
        _, _, interview = await self._interview(factory, company, now, [])
        assert await auto_advance_on_feedback(interview.id, session=db) is None

    async def test_unknown_interview(self, db):
        with pytest.raises(NotFoundError):
            await auto_advance_on_feedback(404, session=db)

    async def test_other_company_interview_is_not_found(self, db, factory, company, now):
        seeded, job_candidate, interview = await self._interview(
            factory, company, now, [Recommendation.STRONG_HIRE]
        )
        outsider = await factory.company("Other")

        with pytest.raises(NotFoundError) as exc_info:
            await auto_advance_on_feedback(interview.id, company_id=outsider.id, session=db)
        assert exc_info.value.message == "Interview not found"
        await db.refresh(job_candidate)
        assert job_candidate.current_stage_id == seeded.stage("Interview").id
