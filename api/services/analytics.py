"""
Pipeline analytics service.

Every report is computed for the jobs the caller can see (see
``api.services.analytics_scope``) by loading the relevant rows and reducing
them in Python. Stage funnels aggregate by display name across jobs; offer and
hire populations are identified by stage role.
"""

from typing import Any, Dict, List, Optional, Sequence
from dataclasses import dataclass, field
import asyncio
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.analytics import AnalyticsFilters
from api.services import sla as sla_service
from api.services.analytics_scope import (
    EMPTY_FILTERS,
    date_conditions,
    is_recruiter,
    load_scoped_jobs,
    round1,
    round_half_up,
)
from core.config import settings
from core.utils.datetime import (
    days_between,
    local_day_bounds,
    local_month_start,
    local_week_bounds,
)
from database.engine import session_scope
from database.models.applications import JobCandidate, StageHistory
from database.models.candidates import Candidate
from database.models.interviews import (
    Interview,
    InterviewFeedback,
    InterviewPanelMember,
    InterviewStatus,
    Recommendation,
)
from database.models.jobs import Job, JobStatus
from database.models.pipelines import PipelineStage, StageRole
from database.models.users import User, UserRole

logger = logging.getLogger(__name__)

OFFER_ROLES = (StageRole.OFFER, StageRole.HIRED)

REJECTION_CATEGORIES = {
    "Skill mismatch": ["skill", "technical", "experience", "qualification", "competency", "ability"],
    "Compensation mismatch": ["salary", "compensation", "pay", "package", "benefits", "ctc"],
    "Culture fit": ["culture", "fit", "attitude", "personality", "team", "values"],
    "Location/notice/other": ["location", "notice", "availability", "other", "personal", "family"],
}
FALLBACK_REJECTION_CATEGORY = "Location/notice/other"
REJECTION_COLORS = ["#ef4444", "#f97316", "#eab308", "#22c55e"]

PANEL_REJECTION_LABELS = {
    Recommendation.NO_HIRE: "No Hire",
    Recommendation.STRONG_NO_HIRE: "Strong No Hire",
}

NO_STAGE_HISTORY_MESSAGE = "No stage history data available for the selected criteria."
NO_TRANSITIONS_MESSAGE = "No completed stage transitions found for the selected criteria."


@dataclass
class StageGroup:
    """Pipeline stages sharing a display name across the jobs in scope."""

    name: str
    position: int
    stage_ids: List[int] = field(default_factory=list)
    roles: set = field(default_factory=set)
    count: int = 0


def group_stages_by_name(stages: Sequence[Any]) -> List[StageGroup]:
    """
    Group stage rows by display name.

    Args:
        stages: Rows with ``id``, ``name``, ``position`` and ``stage_role``,
            ordered by position

    Returns:
        Groups ordered by the position of their first stage
    """
    groups: Dict[str, StageGroup] = {}
    for stage in stages:
        group = groups.get(stage.name)
        if group is None:
            group = groups[stage.name] = StageGroup(name=stage.name, position=stage.position)
        group.stage_ids.append(stage.id)
        group.roles.add(stage.stage_role)
    return sorted(groups.values(), key=lambda group: group.position)


def format_number(value: float) -> str:
    """Render whole floats without a trailing ``.0``."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def percentage(part: float, whole: float) -> float:
    return round1(part / whole * 100) if whole > 0 else 0


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0


def median_days(days: Sequence[int]) -> int:
    """Median with even-length lists averaged and rounded half up."""
    if not days:
        return 0
    ordered = sorted(days)
    middle = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return round_half_up((ordered[middle - 1] + ordered[middle]) / 2)
    return ordered[middle]


def time_in_stage_suggestion(stage_name: str, avg_days: float) -> str:
    days = format_number(avg_days)
    if avg_days > 14:
        return (
            f'The "{stage_name}" stage is taking {days} days on average, which is '
            "significantly longer than other stages. Consider streamlining this "
            "process or adding more resources to reduce delays."
        )
    if avg_days > 7:
        return (
            f'The "{stage_name}" stage is taking {days} days on average. This could '
            "be optimized by setting clearer timelines or improving communication "
            "with stakeholders."
        )
    if avg_days > 3:
        return (
            f'The "{stage_name}" stage is taking {days} days on average. Consider if '
            "this timeline can be reduced while maintaining quality."
        )
    return (
        "Your pipeline stages are moving efficiently. The longest stage "
        f'"{stage_name}" takes only {days} days on average.'
    )


def categorize_rejection(comment: Optional[str]) -> str:
    """First category with a keyword in the comment, else the fallback bucket."""
    text = (comment or "").lower()
    for category, keywords in REJECTION_CATEGORIES.items():
        if any(keyword in text for keyword in keywords):
            return category
    return FALLBACK_REJECTION_CATEGORY


def productivity_score(
    hires: int, interviews_scheduled: int, cvs_added: int, avg_time_to_fill: int
) -> int:
    """
    Composite 0-100 recruiter score.

    Hires contribute up to 40 points, the interview-to-CV ratio up to 30 and
    time-to-fill up to 30 (only when the recruiter has hires).
    """
    hires_score = min(hires * 10, 40)
    interview_ratio = interviews_scheduled / cvs_added if cvs_added > 0 else 0
    interview_score = min(interview_ratio * 30, 30)
    time_score = max(30 - (avg_time_to_fill - 30) * 0.5, 0) if avg_time_to_fill > 0 else 0
    return round_half_up(hires_score + interview_score + time_score)


def top_department(jobs: Sequence[Job]) -> str:
    counts: Dict[str, int] = {}
    for job in jobs:
        if job.department:
            counts[job.department] = counts.get(job.department, 0) + 1
    if not counts:
        return "General"
    # max() keeps the first encountered department on ties
    return max(counts, key=counts.get)


async def _load_stages(session: AsyncSession, job_ids: List[int]) -> List[Any]:
    result = await session.execute(
        select(
            PipelineStage.id,
            PipelineStage.name,
            PipelineStage.position,
            PipelineStage.stage_role,
        )
        .where(PipelineStage.job_id.in_(job_ids))
        .order_by(PipelineStage.position, PipelineStage.id)
    )
    return result.all()


async def _load_applications(
    session: AsyncSession,
    job_ids: List[int],
    conditions: Optional[list] = None,
) -> List[Any]:
    """Applications in the given jobs with their current stage role and candidate source."""
    result = await session.execute(
        select(
            JobCandidate.id,
            JobCandidate.job_id,
            JobCandidate.current_stage_id,
            JobCandidate.applied_at,
            JobCandidate.updated_at,
            PipelineStage.stage_role,
            Candidate.source,
        )
        .join(Candidate, Candidate.id == JobCandidate.candidate_id)
        .outerjoin(PipelineStage, PipelineStage.id == JobCandidate.current_stage_id)
        .where(JobCandidate.job_id.in_(job_ids), *(conditions or []))
        .order_by(JobCandidate.id)
    )
    return result.all()


async def _load_closed_history(
    session: AsyncSession,
    job_ids: List[int],
    filters: Optional[AnalyticsFilters],
    *conditions,
) -> List[Any]:
    result = await session.execute(
        select(
            StageHistory.job_candidate_id,
            StageHistory.stage_name,
            StageHistory.duration_hours,
            StageHistory.comment,
        )
        .join(JobCandidate, JobCandidate.id == StageHistory.job_candidate_id)
        .where(
            JobCandidate.job_id.in_(job_ids),
            StageHistory.exited_at.is_not(None),
            *conditions,
            *date_conditions(StageHistory.entered_at, filters),
        )
        .order_by(StageHistory.entered_at, StageHistory.id)
    )
    return result.all()


async def _count_interviews(session: AsyncSession, job_ids: List[int], start, end) -> int:
    count = await session.scalar(
        select(func.count(Interview.id))
        .join(JobCandidate, JobCandidate.id == Interview.job_candidate_id)
        .where(
            JobCandidate.job_id.in_(job_ids),
            Interview.scheduled_at >= start,
            Interview.scheduled_at < end,
        )
    )
    return count or 0


def _hire_days(job: Job, updated_at) -> float:
    return days_between(job.created_at, updated_at)


def _average_time_to_fill(applications: Sequence[Any], jobs_by_id: Dict[int, Job]) -> int:
    hired = [row for row in applications if row.stage_role == StageRole.HIRED]
    if not hired:
        return 0
    return round_half_up(mean([_hire_days(jobs_by_id[row.job_id], row.updated_at) for row in hired]))


def _offer_acceptance_percentage(applications: Sequence[Any]) -> int:
    offers = [row for row in applications if row.stage_role in OFFER_ROLES]
    accepted = [row for row in offers if row.stage_role == StageRole.HIRED]
    return round_half_up(len(accepted) / len(offers) * 100) if offers else 0


def _in_date_range(value, filters: AnalyticsFilters) -> bool:
    if filters.start_date is not None and value < filters.start_date:
        return False
    if filters.end_date is not None and value > filters.end_date:
        return False
    return True


async def get_kpi_metrics(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Headline dashboard counters.

    Interview counts use server-local calendar day and week (Sunday start)
    boundaries. Hire and offer totals respect the date filter on the last
    stage change; average time-to-fill and offer acceptance do not.
    """
    filters = filters or EMPTY_FILTERS
    today_start, today_end = local_day_bounds()
    week_start, week_end = local_week_bounds()
    month_start = local_month_start()

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        jobs_by_id = {job.id: job for job in jobs}
        job_ids = list(jobs_by_id)

        applications = await _load_applications(db, job_ids)
        interviews_today = await _count_interviews(db, job_ids, today_start, today_end)
        interviews_this_week = await _count_interviews(db, job_ids, week_start, week_end)
        sla_status = await sla_service.get_sla_status_summary(
            company_id, user_id, user_role, filters, session=db
        )

    dated = [row for row in applications if _in_date_range(row.updated_at, filters)]

    return {
        "activeRoles": sum(1 for job in jobs if job.status == JobStatus.ACTIVE),
        "activeCandidates": len(applications),
        "newCandidatesThisMonth": sum(1 for row in applications if row.applied_at >= month_start),
        "interviewsToday": interviews_today,
        "interviewsThisWeek": interviews_this_week,
        "offersPending": sum(1 for row in applications if row.stage_role == StageRole.OFFER),
        "totalHires": sum(1 for row in dated if row.stage_role == StageRole.HIRED),
        "totalOffers": sum(1 for row in dated if row.stage_role in OFFER_ROLES),
        "avgTimeToFill": _average_time_to_fill(applications, jobs_by_id),
        "offerAcceptanceRate": _offer_acceptance_percentage(applications),
        "rolesOnTrack": sla_status["summary"]["onTrack"],
        "rolesAtRisk": sla_status["summary"]["atRisk"],
        "rolesBreached": sla_status["summary"]["breached"],
    }


async def get_funnel_analytics(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Current stage occupancy grouped by stage name.

    Returns:
        Dictionary containing:
            - stages: ordered groups with count, share of applicants,
              conversion to the next group and mean days spent
            - totalApplicants, totalHired, overallConversionRate
    """
    filters = filters or EMPTY_FILTERS

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        job_ids = [job.id for job in jobs]
        groups = group_stages_by_name(await _load_stages(db, job_ids))
        applications = await _load_applications(
            db, job_ids, date_conditions(JobCandidate.applied_at, filters)
        )
        history = await _load_closed_history(db, job_ids, filters)

    group_by_stage_id = {stage_id: group for group in groups for stage_id in group.stage_ids}
    for row in applications:
        group = group_by_stage_id.get(row.current_stage_id)
        if group is not None:
            group.count += 1

    durations: Dict[str, List[float]] = {}
    for row in history:
        if row.duration_hours is not None:
            durations.setdefault(row.stage_name, []).append(row.duration_hours)

    total_applicants = len(applications)
    stages = []
    for index, group in enumerate(groups):
        conversion_to_next = 0
        if index < len(groups) - 1:
            conversion_to_next = min(percentage(groups[index + 1].count, group.count), 100)
        avg_hours = mean(durations.get(group.name, []))
        stages.append({
            "id": group.stage_ids[0],
            "name": group.name,
            "count": group.count,
            "percentage": percentage(group.count, total_applicants),
            "conversionToNext": conversion_to_next,
            "avgDaysInStage": round1(avg_hours / 24) if avg_hours else 0,
        })

    total_hired = sum(group.count for group in groups if StageRole.HIRED in group.roles)
    return {
        "stages": stages,
        "totalApplicants": total_applicants,
        "totalHired": total_hired,
        "overallConversionRate": percentage(total_hired, total_applicants),
    }


async def get_conversion_rates(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Conversion between consecutive stage groups from each candidate's history.

    A candidate converts from A to B when B first appears after A's first
    appearance in their closed stage history.
    """
    filters = filters or EMPTY_FILTERS

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        job_ids = [job.id for job in jobs]
        groups = group_stages_by_name(await _load_stages(db, job_ids))
        applications = await _load_applications(
            db, job_ids, date_conditions(JobCandidate.applied_at, filters)
        )
        result = await db.execute(
            select(StageHistory.job_candidate_id, StageHistory.stage_name)
            .where(
                StageHistory.job_candidate_id.in_([row.id for row in applications]),
                StageHistory.exited_at.is_not(None),
            )
            .order_by(StageHistory.entered_at, StageHistory.id)
        )
        history = result.all()

    sequences: Dict[int, List[str]] = {row.id: [] for row in applications}
    for job_candidate_id, stage_name in history:
        sequences[job_candidate_id].append(stage_name)

    stages = []
    for from_group, to_group in zip(groups, groups[1:]):
        reached = converted = 0
        for sequence in sequences.values():
            if from_group.name not in sequence:
                continue
            reached += 1
            to_index = sequence.index(to_group.name) if to_group.name in sequence else -1
            if to_index > sequence.index(from_group.name):
                converted += 1
        stages.append({
            "fromStage": from_group.name,
            "toStage": to_group.name,
            "conversionRate": percentage(converted, reached),
            "dropOffCount": max(0, reached - converted),
        })

    return {"stages": stages}


async def get_time_to_fill(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Days from job opening to hire, per hired candidate.

    Each hire's days are rounded and clamped at zero before averaging.
    """
    filters = filters or EMPTY_FILTERS
    target = settings.time_to_fill_target_days

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        jobs_by_id = {job.id: job for job in jobs}
        applications = await _load_applications(
            db,
            list(jobs_by_id),
            [
                PipelineStage.stage_role == StageRole.HIRED,
                *date_conditions(JobCandidate.updated_at, filters),
            ],
        )

    if not applications:
        return {
            "overall": {"average": 0, "median": 0, "target": target},
            "byDepartment": [],
            "byRole": [],
        }

    hires = [
        (jobs_by_id[row.job_id], max(0, round_half_up(_hire_days(jobs_by_id[row.job_id], row.updated_at))))
        for row in applications
    ]
    all_days = [days for _, days in hires]

    by_department: Dict[Optional[str], List[int]] = {}
    by_role: Dict[int, List[int]] = {}
    for job, days in hires:
        by_department.setdefault(job.department, []).append(days)
        by_role.setdefault(job.id, []).append(days)

    role_averages = {job_id: round_half_up(mean(days)) for job_id, days in by_role.items()}
    return {
        "overall": {
            "average": round_half_up(mean(all_days)),
            "median": median_days(all_days),
            "target": target,
        },
        "byDepartment": [
            {"department": department, "average": round_half_up(mean(days)), "count": len(days)}
            for department, days in by_department.items()
        ],
        "byRole": [
            {
                "roleId": job_id,
                "roleName": jobs_by_id[job_id].title,
                "average": average,
                "isOverTarget": average > target,
            }
            for job_id, average in role_averages.items()
        ],
    }


async def get_time_in_stage(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """Mean days per stage name from closed history, with the bottleneck stage."""
    filters = filters or EMPTY_FILTERS

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        history = await _load_closed_history(
            db, [job.id for job in jobs], filters, StageHistory.duration_hours.is_not(None)
        )

    if not history:
        return {"stages": [], "bottleneckStage": "", "suggestion": NO_STAGE_HISTORY_MESSAGE}

    durations: Dict[str, List[float]] = {}
    for row in history:
        durations.setdefault(row.stage_name, []).append(row.duration_hours)

    stages = []
    for stage_name, hours in durations.items():
        avg_hours = mean(hours)
        avg_days = round1(avg_hours / 24) if avg_hours else 0
        if avg_days > 0:
            stages.append({"stageName": stage_name, "avgDays": avg_days, "isBottleneck": False})

    if not stages:
        return {"stages": [], "bottleneckStage": "", "suggestion": NO_TRANSITIONS_MESSAGE}

    bottleneck = stages[0]
    for stage in stages[1:]:
        if stage["avgDays"] > bottleneck["avgDays"]:
            bottleneck = stage
    bottleneck["isBottleneck"] = True

    stages.sort(key=lambda stage: stage["avgDays"], reverse=True)
    return {
        "stages": stages,
        "bottleneckStage": bottleneck["stageName"],
        "suggestion": time_in_stage_suggestion(bottleneck["stageName"], bottleneck["avgDays"]),
    }


async def get_source_performance(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> List[Dict[str, Any]]:
    """Candidate volume and hire effectiveness per source, best hire rate first."""
    filters = filters or EMPTY_FILTERS

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        jobs_by_id = {job.id: job for job in jobs}
        applications = await _load_applications(
            db, list(jobs_by_id), date_conditions(JobCandidate.applied_at, filters)
        )

    by_source: Dict[str, List[Any]] = {}
    for row in applications:
        by_source.setdefault(row.source or "Unknown", []).append(row)

    sources = []
    for source, rows in by_source.items():
        hired = [row for row in rows if row.stage_role == StageRole.HIRED]
        avg_time_to_hire = 0
        if hired:
            avg_time_to_hire = round_half_up(mean([
                max(0, _hire_days(jobs_by_id[row.job_id], row.updated_at)) for row in hired
            ]))
        sources.append({
            "source": source,
            "candidateCount": len(rows),
            "percentage": percentage(len(rows), len(applications)),
            "hireCount": len(hired),
            "hireRate": percentage(len(hired), len(rows)),
            "avgTimeToHire": avg_time_to_hire,
        })

    sources.sort(key=lambda item: item["hireRate"], reverse=True)
    return sources


async def get_recruiter_productivity(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> List[Dict[str, Any]]:
    """
    Per-recruiter throughput over their assigned jobs, highest score first.

    Recruiter callers only see their own row. The applied-at date filter
    narrows the applications counted for each recruiter.
    """
    filters = filters or EMPTY_FILTERS
    recruiter_conditions = [User.company_id == company_id, User.role == UserRole.RECRUITER]
    if is_recruiter(user_role):
        recruiter_conditions.append(User.id == user_id)
    elif filters.recruiter_id is not None:
        recruiter_conditions.append(User.id == filters.recruiter_id)

    async with session_scope(session) as db:
        recruiters = (
            await db.execute(select(User).where(*recruiter_conditions).order_by(User.id))
        ).scalars().all()
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        jobs_by_id = {job.id: job for job in jobs}
        applications = await _load_applications(
            db, list(jobs_by_id), date_conditions(JobCandidate.applied_at, filters)
        )
        interview_counts = dict(
            (
                await db.execute(
                    select(Interview.job_candidate_id, func.count(Interview.id))
                    .where(
                        Interview.job_candidate_id.in_([row.id for row in applications]),
                        Interview.status.in_([InterviewStatus.SCHEDULED, InterviewStatus.COMPLETED]),
                    )
                    .group_by(Interview.job_candidate_id)
                )
            ).all()
        )

    applications_by_job: Dict[int, List[Any]] = {}
    for row in applications:
        applications_by_job.setdefault(row.job_id, []).append(row)

    report = []
    for recruiter in recruiters:
        assigned = [job for job in jobs if job.assigned_recruiter_id == recruiter.id]
        rows = [row for job in assigned for row in applications_by_job.get(job.id, [])]
        hired = [row for row in rows if row.stage_role == StageRole.HIRED]
        interviews_scheduled = sum(interview_counts.get(row.id, 0) for row in rows)

        avg_time_to_fill = 0
        if hired:
            avg_time_to_fill = round_half_up(mean([
                max(0, _hire_days(jobs_by_id[row.job_id], row.updated_at)) for row in hired
            ]))

        report.append({
            "id": recruiter.id,
            "name": recruiter.name,
            "specialty": top_department(assigned),
            "activeRoles": sum(1 for job in assigned if job.status == JobStatus.ACTIVE),
            "cvsAdded": len(rows),
            "interviewsScheduled": interviews_scheduled,
            "offersMade": sum(1 for row in rows if row.stage_role == StageRole.OFFER),
            "hires": len(hired),
            "avgTimeToFill": avg_time_to_fill,
            "productivityScore": productivity_score(
                len(hired), interviews_scheduled, len(rows), avg_time_to_fill
            ),
        })

    report.sort(key=lambda item: item["productivityScore"], reverse=True)
    return report


async def get_panel_performance(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> List[Dict[str, Any]]:
    """
    Per-interviewer outcomes across the interviews in scope.

    Rounds count completed interviews; offers count every interview whose
    candidate currently sits in an offer or hired stage. Feedback latency is
    measured in hours from the scheduled time.
    """
    filters = filters or EMPTY_FILTERS

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        interviews = (
            await db.execute(
                select(Interview.id, Interview.scheduled_at, Interview.status, PipelineStage.stage_role)
                .join(JobCandidate, JobCandidate.id == Interview.job_candidate_id)
                .outerjoin(PipelineStage, PipelineStage.id == JobCandidate.current_stage_id)
                .where(
                    JobCandidate.job_id.in_([job.id for job in jobs]),
                    *date_conditions(Interview.scheduled_at, filters),
                )
                .order_by(Interview.id)
            )
        ).all()
        interview_ids = [row.id for row in interviews]
        panel_rows = (
            await db.execute(
                select(InterviewPanelMember.interview_id, User.id, User.name)
                .join(User, User.id == InterviewPanelMember.user_id)
                .where(InterviewPanelMember.interview_id.in_(interview_ids))
                .order_by(InterviewPanelMember.id)
            )
        ).all()
        feedback_rows = (
            await db.execute(
                select(
                    InterviewFeedback.interview_id,
                    InterviewFeedback.panel_member_id,
                    InterviewFeedback.recommendation,
                    InterviewFeedback.submitted_at,
                )
                .where(InterviewFeedback.interview_id.in_(interview_ids))
                .order_by(InterviewFeedback.id)
            )
        ).all()

    panels_by_interview: Dict[int, List[Any]] = {}
    for row in panel_rows:
        panels_by_interview.setdefault(row.interview_id, []).append(row)
    feedback_by_member: Dict[tuple, Any] = {}
    for row in feedback_rows:
        feedback_by_member.setdefault((row.interview_id, row.panel_member_id), row)

    stats: Dict[int, Dict[str, Any]] = {}
    for interview in interviews:
        for member in panels_by_interview.get(interview.id, []):
            entry = stats.setdefault(member.id, {
                "name": member.name,
                "rounds": 0,
                "offers": 0,
                "feedback_hours": [],
                "rejections": {},
            })
            if interview.status == InterviewStatus.COMPLETED:
                entry["rounds"] += 1
                if interview.stage_role in OFFER_ROLES:
                    entry["offers"] += 1

            feedback = feedback_by_member.get((interview.id, member.id))
            if feedback is None:
                continue
            hours = (feedback.submitted_at - interview.scheduled_at).total_seconds() / 3600
            entry["feedback_hours"].append(hours)
            label = PANEL_REJECTION_LABELS.get(feedback.recommendation)
            if label:
                entry["rejections"][label] = entry["rejections"].get(label, 0) + 1

    report = []
    for entry in stats.values():
        rejections = entry["rejections"]
        report.append({
            "panelName": entry["name"],
            "interviewRounds": entry["rounds"],
            "offerPercentage": percentage(entry["offers"], entry["rounds"]),
            "topRejectionReason": max(rejections, key=rejections.get) if rejections else "No rejections",
            "avgFeedbackTime": round1(mean(entry["feedback_hours"])) if entry["feedback_hours"] else 0,
        })

    report.sort(key=lambda item: item["offerPercentage"], reverse=True)
    return report


async def get_drop_off_analysis(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Exits per stage group relative to the candidates who ever reached it.

    Reach is the union of candidates with history in the stage and
    candidates currently in it.
    """
    filters = filters or EMPTY_FILTERS

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        job_ids = [job.id for job in jobs]
        groups = group_stages_by_name(await _load_stages(db, job_ids))
        history = await _load_closed_history(db, job_ids, filters)
        applications = await _load_applications(
            db, job_ids, date_conditions(JobCandidate.applied_at, filters)
        )

    reached: Dict[str, set] = {}
    exits: Dict[str, int] = {}
    for row in history:
        reached.setdefault(row.stage_name, set()).add(row.job_candidate_id)
        exits[row.stage_name] = exits.get(row.stage_name, 0) + 1

    group_by_stage_id = {stage_id: group for group in groups for stage_id in group.stage_ids}
    for row in applications:
        group = group_by_stage_id.get(row.current_stage_id)
        if group is not None:
            reached.setdefault(group.name, set()).add(row.id)

    by_stage = [
        {
            "stageName": group.name,
            "dropOffCount": exits.get(group.name, 0),
            "dropOffPercentage": percentage(exits.get(group.name, 0), len(reached.get(group.name, ()))),
        }
        for group in groups
    ]

    highest = ""
    if by_stage:
        top = by_stage[0]
        for stage in by_stage[1:]:
            if stage["dropOffPercentage"] > top["dropOffPercentage"]:
                top = stage
        highest = top["stageName"]

    return {"byStage": by_stage, "highestDropOffStage": highest}


async def get_rejection_reasons(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """Keyword-categorized comments on closed stage history."""
    filters = filters or EMPTY_FILTERS

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        history = await _load_closed_history(
            db, [job.id for job in jobs], filters, StageHistory.comment.is_not(None)
        )

    counts = {category: 0 for category in REJECTION_CATEGORIES}
    by_stage: Dict[str, int] = {}
    for row in history:
        by_stage[row.stage_name] = by_stage.get(row.stage_name, 0) + 1
        counts[categorize_rejection(row.comment)] += 1

    total = sum(counts.values())
    reasons = [
        {
            "reason": category,
            "count": count,
            "percentage": percentage(count, total),
            "color": REJECTION_COLORS[index % len(REJECTION_COLORS)],
        }
        for index, (category, count) in enumerate(counts.items())
    ]

    top_stage, top_count = "", 0
    for stage_name, count in by_stage.items():
        if count > top_count:
            top_stage, top_count = stage_name, count

    return {"reasons": reasons, "topStageForRejection": top_stage}


def _acceptance_entry(total: int, accepted: int) -> Dict[str, Any]:
    return {
        "acceptanceRate": round1(accepted / total * 100),
        "totalOffers": total,
        "acceptedOffers": accepted,
    }


async def get_offer_acceptance_rate(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Share of offered candidates who were hired, overall and per department/role.

    Roles below the configured acceptance threshold are flagged.
    """
    filters = filters or EMPTY_FILTERS
    threshold = settings.offer_acceptance_threshold

    async with session_scope(session) as db:
        jobs = await load_scoped_jobs(db, company_id, user_id, user_role, filters)
        jobs_by_id = {job.id: job for job in jobs}
        offers = await _load_applications(
            db,
            list(jobs_by_id),
            [
                PipelineStage.stage_role.in_(OFFER_ROLES),
                *date_conditions(JobCandidate.updated_at, filters),
            ],
        )

    if not offers:
        return {
            "overall": {"acceptanceRate": 0, "totalOffers": 0, "acceptedOffers": 0},
            "byDepartment": [],
            "byRole": [],
        }

    by_department: Dict[Optional[str], List[int]] = {}
    by_role: Dict[int, List[int]] = {}
    for row in offers:
        accepted = 1 if row.stage_role == StageRole.HIRED else 0
        department = jobs_by_id[row.job_id].department
        by_department.setdefault(department, []).append(accepted)
        by_role.setdefault(row.job_id, []).append(accepted)

    by_role_report = []
    for job_id, outcomes in by_role.items():
        entry = _acceptance_entry(len(outcomes), sum(outcomes))
        by_role_report.append({
            "roleId": job_id,
            "roleName": jobs_by_id[job_id].title,
            **entry,
            "isUnderThreshold": entry["acceptanceRate"] < threshold,
        })

    accepted_total = sum(1 for row in offers if row.stage_role == StageRole.HIRED)
    return {
        "overall": _acceptance_entry(len(offers), accepted_total),
        "byDepartment": [
            {"department": department, **_acceptance_entry(len(outcomes), sum(outcomes))}
            for department, outcomes in by_department.items()
        ],
        "byRole": by_role_report,
    }


async def get_sla_status(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    return await sla_service.get_sla_status_summary(
        company_id, user_id, user_role, filters, session=session
    )


async def get_overview(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Dashboard overview combining the headline reports.

    Without a caller session each report runs concurrently in its own
    session; a shared session is used sequentially.
    """
    reports = {
        "kpis": get_kpi_metrics,
        "funnel": get_funnel_analytics,
        "timeToFill": get_time_to_fill,
        "sources": get_source_performance,
        "sla": get_sla_status,
    }
    args = (company_id, user_id, user_role, filters)
    logger.debug("Building analytics overview for company %s", company_id)

    if session is None:
        results = await asyncio.gather(*(report(*args) for report in reports.values()))
        return dict(zip(reports, results))

    return {key: await report(*args, session=session) for key, report in reports.items()}


REPORTS = {
    "kpis": get_kpi_metrics,
    "funnel": get_funnel_analytics,
    "conversion": get_conversion_rates,
    "time-to-fill": get_time_to_fill,
    "time-in-stage": get_time_in_stage,
    "sources": get_source_performance,
    "recruiters": get_recruiter_productivity,
    "panels": get_panel_performance,
    "drop-off": get_drop_off_analysis,
    "rejection-reasons": get_rejection_reasons,
    "offers": get_offer_acceptance_rate,
    "sla": get_sla_status,
    "overview": get_overview,
}
