from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    String,
    ForeignKey,
    BigInteger,
    Integer,
    DateTime,
    UniqueConstraint,
)
from database.engine import Base, BigIntPK
from core.utils.datetime import utcnow
from datetime import datetime


class SLAConfig(Base):
    """
    Maximum days a candidate may sit in a named stage.

    Stage names are matched case-insensitively at evaluation time; stages
    without a row fall back to the default threshold.
    """

    __tablename__ = "sla_configs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage_name: Mapped[str] = mapped_column(String(100), nullable=False)
    threshold_days: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("company_id", "stage_name", name="uq_sla_config_stage"),
    )

    def __repr__(self) -> str:
        return f"<SLAConfig(stage='{self.stage_name}', threshold_days={self.threshold_days})>"
