"""
Stage history ledger.

Append-only record of each application's residency in each pipeline stage.
Entries are opened when a candidate enters a stage and closed, with their
duration fixed, when the candidate leaves it. Callers that move candidates
pass their own session so the close/open pair lands in one transaction.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.analytics_scope import ensure_job_in_company
from core.errors import NotFoundError
from core.utils.datetime import hours_between, to_naive_utc, utcnow
from database.engine import session_scope
from database.models.applications import JobCandidate, StageHistory
from database.models.jobs import Job
from database.models.users import User

logger = logging.getLogger(__name__)


def calculate_duration_hours(entered_at: datetime, exited_at: datetime) -> float:
    """Hours spent in a stage, as stored on a closed entry."""
    return hours_between(entered_at, exited_at)


def serialize_stage_entry(
    entry: StageHistory, moved_by_name: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "job_candidate_id": entry.job_candidate_id,
        "stage_id": entry.stage_id,
        "stage_name": entry.stage_name,
        "entered_at": entry.entered_at.isoformat(),
        "exited_at": entry.exited_at.isoformat() if entry.exited_at else None,
        "duration_hours": entry.duration_hours,
        "comment": entry.comment,
        "moved_by": entry.moved_by,
        "moved_by_name": moved_by_name,
    }


async def _require_job_candidate(
    session: AsyncSession, job_candidate_id: int, company_id: Optional[int] = None
) -> None:
    job_id = await session.scalar(
        select(JobCandidate.job_id).where(JobCandidate.id == job_candidate_id)
    )
    if job_id is None:
        raise NotFoundError("Job candidate")
    await ensure_job_in_company(session, job_id, company_id, "Job candidate")


async def _user_name(session: AsyncSession, user_id: Optional[int]) -> Optional[str]:
    if user_id is None:
        return None
    return await session.scalar(select(User.name).where(User.id == user_id))


def open_entry(
    session: AsyncSession,
    job_candidate_id: int,
    stage_id: Optional[int],
    stage_name: str,
    entered_at: datetime,
    comment: Optional[str] = None,
    moved_by: Optional[int] = None,
) -> StageHistory:
    """Stage a new open entry on the session. The caller flushes."""
    entry = StageHistory(
        job_candidate_id=job_candidate_id,
        stage_id=stage_id,
        stage_name=stage_name,
        entered_at=entered_at,
        exited_at=None,
        duration_hours=None,
        comment=comment,
        moved_by=moved_by,
    )
    session.add(entry)
    return entry


def close_entry(entry: StageHistory, exited_at: datetime) -> StageHistory:
    entry.exited_at = exited_at
    entry.duration_hours = calculate_duration_hours(entry.entered_at, exited_at)
    return entry


async def close_open_entries(
    session: AsyncSession, job_candidate_id: int, exited_at: datetime
) -> List[StageHistory]:
    """
    Close every open entry of an application, whatever its stage.

    Under the ledger invariant this closes at most one row.
    """
    result = await session.execute(
        select(StageHistory).where(
            StageHistory.job_candidate_id == job_candidate_id,
            StageHistory.exited_at.is_(None),
        )
    )
    entries = list(result.scalars().all())
    for entry in entries:
        close_entry(entry, exited_at)
    return entries


async def create_stage_entry(
    job_candidate_id: int,
    stage_id: Optional[int],
    stage_name: str,
    comment: Optional[str] = None,
    moved_by: Optional[int] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Open a ledger entry for an application entering a stage.

    No check is made for an existing open entry; callers close it first.

    Args:
        job_candidate_id: The application entering the stage
        stage_id: The pipeline stage entered
        stage_name: Stage display name at the time of entry
        comment: Optional comment recorded with the move
        moved_by: User who made the move, None for system moves
        session: Transaction to join; a new one is committed otherwise

    Returns:
        The new entry

    Raises:
        NotFoundError: If the application does not exist
    """
    async with session_scope(session) as db:
        await _require_job_candidate(db, job_candidate_id)
        entry = open_entry(
            db,
            job_candidate_id,
            stage_id,
            stage_name,
            entered_at=utcnow(),
            comment=comment,
            moved_by=moved_by,
        )
        await db.flush()
        return serialize_stage_entry(entry, await _user_name(db, moved_by))


async def close_stage_entry(
    job_candidate_id: int,
    stage_id: Optional[int],
    exited_at: Optional[datetime] = None,
    session: Optional[AsyncSession] = None,
) -> Optional[Dict[str, Any]]:
    """
    Close the most recently entered open entry for an application and stage.

    Args:
        job_candidate_id: The application leaving the stage
        stage_id: The stage being left
        exited_at: Exit time, defaults to now
        session: Transaction to join; a new one is committed otherwise

    Returns:
        The closed entry, or None when there was no open entry to close
    """
    async with session_scope(session) as db:
        entry = await db.scalar(
            select(StageHistory)
            .where(
                StageHistory.job_candidate_id == job_candidate_id,
                StageHistory.stage_id == stage_id,
                StageHistory.exited_at.is_(None),
            )
            .order_by(StageHistory.entered_at.desc(), StageHistory.id.desc())
            .limit(1)
        )
        if entry is None:
            return None

        close_entry(entry, to_naive_utc(exited_at) if exited_at else utcnow())
        await db.flush()
        return serialize_stage_entry(entry, await _user_name(db, entry.moved_by))


async def get_stage_history(
    job_candidate_id: int,
    company_id: Optional[int] = None,
    session: Optional[AsyncSession] = None,
) -> List[Dict[str, Any]]:
    """
    Full ledger of one application, oldest first.

    Raises:
        NotFoundError: If the application does not exist or belongs to
            another company than ``company_id``
    """
    async with session_scope(session) as db:
        await _require_job_candidate(db, job_candidate_id, company_id)
        result = await db.execute(
            select(StageHistory, User.name)
            .outerjoin(User, User.id == StageHistory.moved_by)
            .where(StageHistory.job_candidate_id == job_candidate_id)
            .order_by(StageHistory.entered_at.asc(), StageHistory.id.asc())
        )
        return [serialize_stage_entry(entry, name) for entry, name in result.all()]


async def get_stage_history_by_candidate_id(
    candidate_id: int,
    company_id: Optional[int] = None,
    session: Optional[AsyncSession] = None,
) -> List[Dict[str, Any]]:
    """
    Ledger entries across all of a candidate's applications, newest first.

    With ``company_id`` only applications to that company's jobs are included.
    """
    conditions = [JobCandidate.candidate_id == candidate_id]
    if company_id is not None:
        conditions.append(Job.company_id == company_id)
    async with session_scope(session) as db:
        result = await db.execute(
            select(StageHistory, User.name)
            .join(JobCandidate, JobCandidate.id == StageHistory.job_candidate_id)
            .join(Job, Job.id == JobCandidate.job_id)
            .outerjoin(User, User.id == StageHistory.moved_by)
            .where(*conditions)
            .order_by(StageHistory.entered_at.desc(), StageHistory.id.desc())
        )
        return [serialize_stage_entry(entry, name) for entry, name in result.all()]


async def get_current_stage_entry(
    job_candidate_id: int, session: Optional[AsyncSession] = None
) -> Optional[Dict[str, Any]]:
    """The open entry of an application, or None."""
    async with session_scope(session) as db:
        result = await db.execute(
            select(StageHistory, User.name)
            .outerjoin(User, User.id == StageHistory.moved_by)
            .where(
                StageHistory.job_candidate_id == job_candidate_id,
                StageHistory.exited_at.is_(None),
            )
            .order_by(StageHistory.entered_at.desc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        entry, name = row
        return serialize_stage_entry(entry, name)
