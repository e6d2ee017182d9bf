"""
Companies Module

Tenant root: every job, candidate, user and SLA configuration belongs to a company.
"""

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, DateTime
from database.engine import Base, BigIntPK
from core.utils.datetime import utcnow
from datetime import datetime


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name='{self.name}')>"
