"""
Applications Module

A JobCandidate is one candidate's application to one job. Its
``current_stage_id`` is the single mutable pointer into the pipeline; every
change to it is paired, in the same transaction, with a StageHistory
close/open and a CandidateActivity record.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    ForeignKey,
    BigInteger,
    DateTime,
    Float,
    Text,
    JSON,
    Enum as SQLEnum,
    Index,
    UniqueConstraint,
)
from database.engine import Base, BigIntPK
from core.utils.datetime import utcnow
from datetime import datetime
from enum import Enum as PyEnum
from database.models.candidates import Candidate
from database.models.jobs import Job
from database.models.pipelines import PipelineStage
from typing import Any


class ActivityType(str, PyEnum):
    """Candidate timeline entry types."""

    STAGE_CHANGE = "stage_change"
    NOTE_ADDED = "note_added"
    FEEDBACK_SUBMITTED = "feedback_submitted"
    AUTO_REJECTED = "auto_rejected"


class JobCandidate(Base):
    __tablename__ = "job_candidates"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    candidate_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("candidates.id", ondelete="CASCADE"),
        nullable=False,
    )
    current_stage_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("pipeline_stages.id", ondelete="SET NULL"),
    )

    applied_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    # Most recent stage change; hire and offer analytics use it as the event time
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    # Relationships
    job: Mapped[Job] = relationship()
    candidate: Mapped[Candidate] = relationship()
    current_stage: Mapped[PipelineStage | None] = relationship()
    history: Mapped[list["StageHistory"]] = relationship(
        back_populates="job_candidate",
        order_by="StageHistory.entered_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("job_id", "candidate_id", name="uq_job_candidate"),
        Index("idx_job_candidates_stage", "current_stage_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<JobCandidate(id={self.id}, job_id={self.job_id}, "
            f"candidate_id={self.candidate_id})>"
        )


class StageHistory(Base):
    """
    One residency of an application in a pipeline stage.

    ``exited_at`` is null while the candidate is still in the stage; at most
    one such open row exists per application. ``stage_name`` is copied at
    write time so history survives stage renames and deletions.
    """

    __tablename__ = "stage_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    job_candidate_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("job_candidates.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("pipeline_stages.id", ondelete="SET NULL"),
    )
    stage_name: Mapped[str] = mapped_column(String(100), nullable=False)

    entered_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    exited_at: Mapped[datetime | None] = mapped_column(DateTime)
    duration_hours: Mapped[float | None] = mapped_column(Float)

    comment: Mapped[str | None] = mapped_column(Text)
    moved_by: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
    )

    # Relationships
    job_candidate: Mapped["JobCandidate"] = relationship(back_populates="history")

    __table_args__ = (
        Index("idx_stage_history_job_candidate", "job_candidate_id", "exited_at"),
        Index("idx_stage_history_stage_name", "stage_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<StageHistory(id={self.id}, job_candidate_id={self.job_candidate_id}, "
            f"stage='{self.stage_name}')>"
        )


class CandidateActivity(Base):
    __tablename__ = "candidate_activities"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    candidate_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("candidates.id", ondelete="CASCADE"),
        nullable=False,
    )
    job_candidate_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("job_candidates.id", ondelete="CASCADE"),
    )
    activity_type: Mapped[ActivityType] = mapped_column(
        SQLEnum(ActivityType, native_enum=False, length=50),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    activity_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_candidate_activities_candidate", "candidate_id", "created_at"),
    )
