"""
Pipelines Module

Ordered pipeline stages per job. Display names are free text and aggregate
across jobs in analytics; the semantic role of a stage (entry queue, offer,
hired, rejected) is carried separately in ``stage_role``.
"""

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    Boolean,
    ForeignKey,
    BigInteger,
    Integer,
    DateTime,
    Enum as SQLEnum,
    UniqueConstraint,
)
from database.engine import Base, BigIntPK
from core.utils.datetime import utcnow
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from database.models.jobs import Job


class StageRole(str, PyEnum):
    """Semantic role of a pipeline stage."""

    QUEUE = "queue"
    OFFER = "offer"
    HIRED = "hired"
    REJECTED = "rejected"
    INTERMEDIATE = "intermediate"


ROLE_BY_NAME = {
    "queue": StageRole.QUEUE,
    "offer": StageRole.OFFER,
    "hired": StageRole.HIRED,
    "rejected": StageRole.REJECTED,
}

REJECTION_NAME_MARKERS = ("reject", "declined", "not selected")


def stage_role_for_name(name: Optional[str]) -> StageRole:
    """Derive a stage role from the conventional display name."""
    return ROLE_BY_NAME.get((name or "").strip().lower(), StageRole.INTERMEDIATE)


def _default_stage_role(context) -> StageRole:
    return stage_role_for_name(context.get_current_parameters().get("name"))


def is_rejection_stage(stage: "PipelineStage") -> bool:
    """A stage that needs a recorded reason when candidates are moved into it."""
    if stage.stage_role == StageRole.REJECTED:
        return True
    lowered = stage.name.lower()
    return any(marker in lowered for marker in REJECTION_NAME_MARKERS)


class PipelineStage(Base):
    __tablename__ = "pipeline_stages"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    stage_role: Mapped[StageRole] = mapped_column(
        SQLEnum(StageRole, native_enum=False, length=50),
        nullable=False,
        default=_default_stage_role,
    )

    # Sub-stages hang off a top-level stage
    parent_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("pipeline_stages.id", ondelete="CASCADE"),
    )
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    # Relationships
    job: Mapped["Job"] = relationship(back_populates="stages")

    __table_args__ = (
        UniqueConstraint("job_id", "position", name="uq_pipeline_stage_position"),
    )

    def __repr__(self) -> str:
        return f"<PipelineStage(id={self.id}, name='{self.name}', position={self.position})>"
