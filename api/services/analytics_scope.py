"""
Company scoping and rounding shared by the analytics reports and the
pipeline write paths.

A report sees the jobs of the caller's company, narrowed to the caller's own
jobs when the caller is a recruiter and further by the request filters.
"""

import math
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.analytics import AnalyticsFilters
from core.errors import NotFoundError
from database.models.jobs import Job, JobStatus
from database.models.users import UserRole

EMPTY_FILTERS = AnalyticsFilters()


def round1(value: float) -> float:
    """Round half up to one decimal place."""
    return math.floor(value * 10 + 0.5) / 10


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def is_recruiter(user_role: Any) -> bool:
    return user_role == UserRole.RECRUITER


def job_scope_conditions(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: AnalyticsFilters,
) -> list:
    """
    SQL conditions on Job for the caller's visible scope.

    The recruiter filter is ignored for recruiter callers so it cannot widen
    their view. Location is not included; see ``matches_location``.
    """
    conditions = [Job.company_id == company_id]
    if is_recruiter(user_role):
        conditions.append(Job.assigned_recruiter_id == user_id)
    elif filters.recruiter_id is not None:
        conditions.append(Job.assigned_recruiter_id == filters.recruiter_id)
    if filters.job_id is not None:
        conditions.append(Job.id == filters.job_id)
    if filters.department_id:
        conditions.append(Job.department == filters.department_id)
    return conditions


def matches_location(job: Job, location_id: Optional[str]) -> bool:
    """Match the legacy single location or membership in the locations list."""
    if not location_id:
        return True
    return job.location == location_id or location_id in (job.locations or [])


async def load_scoped_jobs(
    session: AsyncSession,
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    active_only: bool = False,
) -> List[Job]:
    """Jobs visible to the caller under the filters."""
    filters = filters or EMPTY_FILTERS
    conditions = job_scope_conditions(company_id, user_id, user_role, filters)
    if active_only:
        conditions.append(Job.status == JobStatus.ACTIVE)

    result = await session.execute(select(Job).where(*conditions).order_by(Job.id))
    return [job for job in result.scalars().all() if matches_location(job, filters.location_id)]


def date_conditions(column, filters: Optional[AnalyticsFilters]) -> list:
    """Inclusive start/end bounds on the report's relevant timestamp column."""
    if filters is None:
        return []
    conditions = []
    if filters.start_date is not None:
        conditions.append(column >= filters.start_date)
    if filters.end_date is not None:
        conditions.append(column <= filters.end_date)
    return conditions


async def ensure_job_in_company(
    session: AsyncSession,
    job_id: Optional[int],
    company_id: Optional[int],
    resource: str = "Job",
) -> None:
    """
    Hide records that hang off another company's job.

    A ``company_id`` of None skips the check, for internal callers that act
    across companies such as the SLA worker.

    Raises:
        NotFoundError: Named after ``resource``, when the job is missing or
            belongs to another company
    """
    if company_id is None:
        return
    owner = await session.scalar(select(Job.company_id).where(Job.id == job_id))
    if owner != company_id:
        raise NotFoundError(resource)
