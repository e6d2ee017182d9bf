"""Shared fixtures and utilities for tests."""

import os

# Must be set before core.config / database.engine are imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("JSON_LOGS", "false")

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import database.engine as engine_module
from core.utils.datetime import utcnow
from database.engine import Base
from database.models import (  # noqa: F401
    applications,
    candidates,
    companies,
    interviews,
    jobs,
    pipelines,
    sla,
    users,
)
from database.models.applications import JobCandidate, StageHistory
from database.models.candidates import Candidate
from database.models.companies import Company
from database.models.interviews import (
    Interview,
    InterviewFeedback,
    InterviewPanelMember,
    InterviewStatus,
)
from database.models.jobs import Job, JobStatus
from database.models.pipelines import PipelineStage, stage_role_for_name
from database.models.sla import SLAConfig
from database.models.users import User, UserRole

DEFAULT_STAGES = ("Queue", "Screening", "Interview", "Offer", "Hired", "Rejected")


@pytest.fixture
async def db_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine, monkeypatch):
    """Session maker that services fall back to when no session is passed."""
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(engine_module, "AsyncSessionLocal", factory)
    return factory


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return utcnow().replace(microsecond=0)


class SeededJob:
    """A job plus its stages keyed by name."""

    def __init__(self, job: Job, stages: List[PipelineStage]):
        self.job = job
        self.stages = {stage.name: stage for stage in stages}

    @property
    def id(self) -> int:
        return self.job.id

    def stage(self, name: str) -> PipelineStage:
        return self.stages[name]


class Factory:
    """Creates and commits rows for a test scenario."""

    def __init__(self, session: AsyncSession, now: datetime):
        self.session = session
        self.now = now
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def _save(self, *rows):
        self.session.add_all(rows)
        await self.session.commit()

    async def company(self, name: str = "Acme") -> Company:
        company = Company(name=name)
        await self._save(company)
        return company

    async def user(
        self,
        company: Company,
        name: str = "Riley Recruiter",
        role: UserRole = UserRole.RECRUITER,
        is_active: bool = True,
    ) -> User:
        user = User(
            company_id=company.id,
            name=name,
            email=f"user{self._next()}@example.com",
            role=role,
            is_active=is_active,
        )
        await self._save(user)
        return user

    async def job(
        self,
        company: Company,
        title: str = "Backend Engineer",
        department: Optional[str] = "Engineering",
        location: Optional[str] = None,
        locations: Optional[List[str]] = None,
        status: JobStatus = JobStatus.ACTIVE,
        created_at: Optional[datetime] = None,
        recruiter: Optional[User] = None,
        stage_names: Sequence[str] = DEFAULT_STAGES,
        auto_rejection_rules: Optional[Dict[str, Any]] = None,
    ) -> SeededJob:
        job = Job(
            company_id=company.id,
            title=title,
            department=department,
            location=location,
            locations=locations,
            status=status,
            created_at=created_at or self.now - timedelta(days=20),
            assigned_recruiter_id=recruiter.id if recruiter else None,
            auto_rejection_rules=auto_rejection_rules,
        )
        await self._save(job)
        stages = [
            PipelineStage(
                job_id=job.id,
                name=name,
                position=position,
                stage_role=stage_role_for_name(name),
            )
            for position, name in enumerate(stage_names)
        ]
        await self._save(*stages)
        return SeededJob(job, stages)

    async def candidate(
        self,
        company: Company,
        name: str = "Casey Candidate",
        source: Optional[str] = "LinkedIn",
        **attributes,
    ) -> Candidate:
        candidate = Candidate(
            company_id=company.id,
            name=name,
            email=f"candidate{self._next()}@example.com",
            source=source,
            **attributes,
        )
        await self._save(candidate)
        return candidate

    async def application(
        self,
        seeded: SeededJob,
        candidate: Candidate,
        stage: str = "Queue",
        applied_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        entered_at: Optional[datetime] = None,
        open_entry: bool = True,
    ) -> JobCandidate:
        """An application sitting in ``stage`` with an open ledger entry."""
        applied_at = applied_at or self.now - timedelta(days=10)
        current = seeded.stage(stage)
        job_candidate = JobCandidate(
            job_id=seeded.id,
            candidate_id=candidate.id,
            current_stage_id=current.id,
            applied_at=applied_at,
            updated_at=updated_at or applied_at,
        )
        await self._save(job_candidate)
        if open_entry:
            await self._save(
                StageHistory(
                    job_candidate_id=job_candidate.id,
                    stage_id=current.id,
                    stage_name=current.name,
                    entered_at=entered_at or updated_at or applied_at,
                )
            )
        return job_candidate

    async def history(
        self,
        job_candidate: JobCandidate,
        stage: PipelineStage,
        entered_at: datetime,
        exited_at: datetime,
        comment: Optional[str] = None,
    ) -> StageHistory:
        """A closed ledger entry."""
        entry = StageHistory(
            job_candidate_id=job_candidate.id,
            stage_id=stage.id,
            stage_name=stage.name,
            entered_at=entered_at,
            exited_at=exited_at,
            duration_hours=(exited_at - entered_at).total_seconds() / 3600,
            comment=comment,
        )
        await self._save(entry)
        return entry

    async def interview(
        self,
        job_candidate: JobCandidate,
        scheduled_at: datetime,
        status: InterviewStatus = InterviewStatus.COMPLETED,
        panel: Sequence[User] = (),
        feedback: Sequence[tuple] = (),
    ) -> Interview:
        """
        An interview with its panel and feedback.

        ``feedback`` items are ``(user, recommendation, submitted_at)``.
        """
        interview = Interview(
            job_candidate_id=job_candidate.id,
            scheduled_at=scheduled_at,
            status=status,
        )
        await self._save(interview)
        rows = [InterviewPanelMember(interview_id=interview.id, user_id=user.id) for user in panel]
        rows += [
            InterviewFeedback(
                interview_id=interview.id,
                panel_member_id=user.id,
                recommendation=recommendation,
                submitted_at=submitted_at,
            )
            for user, recommendation, submitted_at in feedback
        ]
        if rows:
            await self._save(*rows)
        return interview

    async def sla_config(self, company: Company, stage_name: str, threshold_days: int) -> SLAConfig:
        config = SLAConfig(company_id=company.id, stage_name=stage_name, threshold_days=threshold_days)
        await self._save(config)
        return config


@pytest.fixture
def factory(db, now) -> Factory:
    return Factory(db, now)


@pytest.fixture
async def company(factory) -> Company:
    return await factory.company()


@pytest.fixture
async def admin(factory, company) -> User:
    return await factory.user(company, name="Avery Admin", role=UserRole.ADMIN)


@pytest.fixture
async def recruiter(factory, company) -> User:
    return await factory.user(company, name="Riley Recruiter", role=UserRole.RECRUITER)


