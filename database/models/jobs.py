"""
Jobs Module

Job postings with their ordered pipeline and auto-rejection configuration.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    ForeignKey,
    BigInteger,
    Integer,
    DateTime,
    JSON,
    Enum as SQLEnum,
    Index,
)
from database.engine import Base, BigIntPK
from core.utils.datetime import utcnow
from datetime import datetime
from enum import Enum as PyEnum
from database.models.pipelines import PipelineStage
from typing import Any


class JobStatus(str, PyEnum):
    """Job posting status."""

    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"


class Job(Base):
    """
    A job posting.

    ``created_at`` doubles as the moment the requisition opened; SLA
    ``daysOpen`` and time-to-fill are measured from it. ``location`` is the
    legacy single-value field, ``locations`` the multi-value list; location
    filters match either.
    """

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[str | None] = mapped_column(String(255))
    location: Mapped[str | None] = mapped_column(String(255))
    locations: Mapped[list[str] | None] = mapped_column(JSON)
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, native_enum=False, length=50),
        nullable=False,
        default=JobStatus.ACTIVE,
    )
    openings: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # {"enabled": bool, "rules": [...]} or the legacy {"enabled": bool, "rules": {...}}
    auto_rejection_rules: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    assigned_recruiter_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    stages: Mapped[list["PipelineStage"]] = relationship(
        back_populates="job",
        order_by="PipelineStage.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_jobs_company_status", "company_id", "status"),
        Index("idx_jobs_recruiter", "assigned_recruiter_id"),
    )

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, title='{self.title}', status='{self.status}')>"
