"""
Interviews Module

Scheduled interviews, their panel and the feedback each panel member submits.
Read by recruiter and panel analytics; feedback drives auto-advance.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    ForeignKey,
    BigInteger,
    Integer,
    DateTime,
    Text,
    Enum as SQLEnum,
    Index,
    UniqueConstraint,
)
from database.engine import Base, BigIntPK
from core.utils.datetime import utcnow
from datetime import datetime
from enum import Enum as PyEnum
from database.models.applications import JobCandidate


class InterviewStatus(str, PyEnum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class Recommendation(str, PyEnum):
    STRONG_HIRE = "strong_hire"
    HIRE = "hire"
    NO_HIRE = "no_hire"
    STRONG_NO_HIRE = "strong_no_hire"


class Interview(Base):
    __tablename__ = "interviews"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    job_candidate_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("job_candidates.id", ondelete="CASCADE"),
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    status: Mapped[InterviewStatus] = mapped_column(
        SQLEnum(InterviewStatus, native_enum=False, length=50),
        nullable=False,
        default=InterviewStatus.SCHEDULED,
    )
    scheduled_by: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    # Relationships
    job_candidate: Mapped[JobCandidate] = relationship()
    panel_members: Mapped[list["InterviewPanelMember"]] = relationship(
        back_populates="interview", cascade="all, delete-orphan"
    )
    feedback: Mapped[list["InterviewFeedback"]] = relationship(
        back_populates="interview", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_interviews_scheduled_at", "scheduled_at"),)


class InterviewPanelMember(Base):
    __tablename__ = "interview_panel_members"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    interview_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("interviews.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    interview: Mapped["Interview"] = relationship(back_populates="panel_members")

    __table_args__ = (
        UniqueConstraint("interview_id", "user_id", name="uq_interview_panel_member"),
    )


class InterviewFeedback(Base):
    __tablename__ = "interview_feedback"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    interview_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("interviews.id", ondelete="CASCADE"),
        nullable=False,
    )
    # The submitting user; matches InterviewPanelMember.user_id
    panel_member_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    recommendation: Mapped[Recommendation] = mapped_column(
        SQLEnum(Recommendation, native_enum=False, length=50),
        nullable=False,
    )
    comments: Mapped[str | None] = mapped_column(Text)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    interview: Mapped["Interview"] = relationship(back_populates="feedback")
