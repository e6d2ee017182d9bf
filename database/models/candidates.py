from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    String,
    ForeignKey,
    BigInteger,
    DateTime,
    Float,
    JSON,
    Index,
)
from database.engine import Base, BigIntPK
from core.utils.datetime import utcnow
from datetime import datetime


class Candidate(Base):
    """
    A person in the company's talent pool.

    The attribute columns are the inputs the auto-rejection rules evaluate:
    experience_years and salary_expectation numerically, location and
    education as text, skills as a list.
    """

    __tablename__ = "candidates"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    experience_years: Mapped[float | None] = mapped_column(Float)
    location: Mapped[str | None] = mapped_column(String(255))
    skills: Mapped[list[str] | None] = mapped_column(JSON)
    education: Mapped[str | None] = mapped_column(String(255))
    salary_expectation: Mapped[float | None] = mapped_column(Float)

    # Sourcing channel, e.g. "LinkedIn", "Referral"
    source: Mapped[str | None] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    __table_args__ = (Index("idx_candidates_company", "company_id"),)

    def __repr__(self) -> str:
        return f"<Candidate(id={self.id}, name='{self.name}')>"
