"""
SLA service.

Per-company stage thresholds, the per-job on-track / at-risk / breached
classifier used by the dashboard, and per-candidate breach alerts.
"""

from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.analytics import AnalyticsFilters
from api.services.analytics_scope import load_scoped_jobs
from core.config import settings
from core.errors import NotFoundError, ValidationError
from core.utils.datetime import days_between, utcnow, whole_days_between
from database.engine import session_scope
from database.models.applications import JobCandidate, StageHistory
from database.models.candidates import Candidate
from database.models.companies import Company
from database.models.jobs import Job, JobStatus
from database.models.pipelines import PipelineStage
from database.models.sla import SLAConfig

logger = logging.getLogger(__name__)

DEFAULT_STAGE_THRESHOLDS = {
    "Applied": 3,
    "Screening": 5,
    "Interview": 7,
    "Technical Round": 7,
    "HR Round": 5,
    "Offer": 3,
}

STATUS_ORDER = {"breached": 0, "at_risk": 1, "on_track": 2}


def get_default_thresholds() -> Dict[str, int]:
    """Suggested thresholds for a company with no configuration yet."""
    return dict(DEFAULT_STAGE_THRESHOLDS)


def serialize_sla_config(config: SLAConfig) -> Dict[str, Any]:
    return {
        "id": config.id,
        "companyId": config.company_id,
        "stageName": config.stage_name,
        "thresholdDays": config.threshold_days,
        "createdAt": config.created_at.isoformat(),
        "updatedAt": config.updated_at.isoformat(),
    }


async def _require_company(session: AsyncSession, company_id: int) -> None:
    if await session.get(Company, company_id) is None:
        raise NotFoundError("Company")


async def _threshold_map(session: AsyncSession, company_id: int) -> Dict[str, int]:
    """Configured thresholds keyed by lower-cased stage name."""
    result = await session.execute(
        select(SLAConfig.stage_name, SLAConfig.threshold_days).where(
            SLAConfig.company_id == company_id
        )
    )
    return {stage_name.lower(): days for stage_name, days in result.all()}


async def _open_entry_times(
    session: AsyncSession, job_candidate_ids: Iterable[int]
) -> Dict[int, datetime]:
    """Latest open ledger entry time per application."""
    ids = list(job_candidate_ids)
    if not ids:
        return {}
    result = await session.execute(
        select(StageHistory.job_candidate_id, func.max(StageHistory.entered_at))
        .where(
            StageHistory.job_candidate_id.in_(ids),
            StageHistory.exited_at.is_(None),
        )
        .group_by(StageHistory.job_candidate_id)
    )
    return {job_candidate_id: entered_at for job_candidate_id, entered_at in result.all()}


def validate_sla_config(stage_name: Optional[str], threshold_days: Any) -> None:
    errors: Dict[str, List[str]] = {}
    if not stage_name or not stage_name.strip():
        errors["stageName"] = ["Stage name is required"]
    if threshold_days is None:
        errors["thresholdDays"] = ["Threshold days is required"]
    elif threshold_days < 1:
        errors["thresholdDays"] = ["Threshold days must be at least 1"]
    elif threshold_days != int(threshold_days):
        errors["thresholdDays"] = ["Threshold days must be a whole number"]
    if errors:
        raise ValidationError(errors)


async def get_sla_configs(
    company_id: int, session: Optional[AsyncSession] = None
) -> List[Dict[str, Any]]:
    """All configured thresholds of a company, by stage name."""
    async with session_scope(session) as db:
        await _require_company(db, company_id)
        result = await db.execute(
            select(SLAConfig)
            .where(SLAConfig.company_id == company_id)
            .order_by(SLAConfig.stage_name)
        )
        return [serialize_sla_config(config) for config in result.scalars().all()]


async def update_sla_config(
    company_id: int,
    stage_name: Optional[str],
    threshold_days: Any,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Create or replace the threshold for a stage.

    Args:
        company_id: Owning company
        stage_name: Stage display name; surrounding whitespace is ignored
        threshold_days: Whole number of days, at least 1

    Raises:
        ValidationError: If the name is blank or the threshold is invalid
        NotFoundError: If the company does not exist
    """
    validate_sla_config(stage_name, threshold_days)
    name = stage_name.strip()

    async with session_scope(session) as db:
        await _require_company(db, company_id)
        config = await db.scalar(
            select(SLAConfig).where(
                SLAConfig.company_id == company_id,
                SLAConfig.stage_name == name,
            )
        )
        if config is None:
            config = SLAConfig(company_id=company_id, stage_name=name)
            db.add(config)
        config.threshold_days = int(threshold_days)
        config.updated_at = utcnow()
        await db.flush()
        return serialize_sla_config(config)


async def update_sla_configs(
    company_id: int,
    configs: List[Dict[str, Any]],
    session: Optional[AsyncSession] = None,
) -> List[Dict[str, Any]]:
    """Upsert several thresholds in one transaction."""
    async with session_scope(session) as db:
        return [
            await update_sla_config(
                company_id,
                config.get("stageName", config.get("stage_name")),
                config.get("thresholdDays", config.get("threshold_days")),
                session=db,
            )
            for config in configs
        ]


async def delete_sla_config(
    company_id: int, stage_name: str, session: Optional[AsyncSession] = None
) -> None:
    """
    Raises:
        NotFoundError: If no threshold is configured for the stage
    """
    async with session_scope(session) as db:
        config = await db.scalar(
            select(SLAConfig).where(
                SLAConfig.company_id == company_id,
                SLAConfig.stage_name == stage_name,
            )
        )
        if config is None:
            raise NotFoundError("SLA configuration")
        await db.delete(config)
        await db.flush()


async def get_sla_status_summary(
    company_id: int,
    user_id: Optional[int],
    user_role: Any,
    filters: Optional[AnalyticsFilters] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Classify every active job in scope as on_track, at_risk or breached.

    A candidate breaches when whole days in the current stage exceed the
    stage threshold and is at risk within the at-risk window below it. A job
    takes the worst status of its candidates.

    Returns:
        Dictionary with ``summary`` counts and the ordered ``roles`` list
    """
    default_threshold = settings.sla_default_threshold_days
    at_risk_window = settings.sla_at_risk_window_days

    async with session_scope(session) as db:
        thresholds = await _threshold_map(db, company_id)
        jobs = await load_scoped_jobs(
            db, company_id, user_id, user_role, filters, active_only=True
        )
        job_ids = [job.id for job in jobs]

        candidates_by_job: Dict[int, List[Any]] = {job_id: [] for job_id in job_ids}
        if job_ids:
            result = await db.execute(
                select(
                    JobCandidate.id,
                    JobCandidate.job_id,
                    JobCandidate.applied_at,
                    PipelineStage.name,
                )
                .outerjoin(PipelineStage, PipelineStage.id == JobCandidate.current_stage_id)
                .where(JobCandidate.job_id.in_(job_ids))
            )
            for row in result.all():
                candidates_by_job[row.job_id].append(row)

        open_times = await _open_entry_times(
            db, (row.id for rows in candidates_by_job.values() for row in rows)
        )

    now = utcnow()
    display_threshold = min(thresholds.values()) if thresholds else default_threshold
    summary = {"onTrack": 0, "atRisk": 0, "breached": 0}
    roles = []

    for job in jobs:
        breaching = 0
        at_risk = False
        for row in candidates_by_job[job.id]:
            stage_name = (row.name or "").lower()
            threshold = thresholds.get(stage_name) or default_threshold
            entered_at = open_times.get(row.id, row.applied_at)
            days_in_stage = whole_days_between(entered_at, now)

            if days_in_stage > threshold:
                breaching += 1
            elif days_in_stage > threshold - at_risk_window:
                at_risk = True

        if breaching:
            status, threshold_shown = "breached", display_threshold
            summary["breached"] += 1
        elif at_risk:
            status, threshold_shown = "at_risk", display_threshold
            summary["atRisk"] += 1
        else:
            status, threshold_shown = "on_track", default_threshold
            summary["onTrack"] += 1

        roles.append({
            "roleId": job.id,
            "roleName": job.title,
            "status": status,
            "daysOpen": whole_days_between(job.created_at, now),
            "threshold": threshold_shown,
            "candidatesBreaching": breaching,
        })

    roles.sort(key=lambda role: (STATUS_ORDER[role["status"]], -role["daysOpen"]))
    return {"summary": summary, "roles": roles}


def _breach_alert(
    job_candidate_id: int,
    candidate: Candidate,
    job: Job,
    stage_name: str,
    threshold: int,
    entered_at: datetime,
    now: datetime,
) -> Optional[Dict[str, Any]]:
    days_in_stage = days_between(entered_at, now)
    if days_in_stage <= threshold:
        return None
    return {
        "id": f"sla-{job_candidate_id}",
        "candidateId": candidate.id,
        "candidateName": candidate.name,
        "jobId": job.id,
        "jobTitle": job.title,
        "stageName": stage_name,
        "daysInStage": int(days_in_stage // 1),
        "thresholdDays": threshold,
        "daysOverdue": int((days_in_stage - threshold) // 1),
        "enteredAt": entered_at.isoformat(),
    }


async def check_sla_breaches(
    company_id: int, session: Optional[AsyncSession] = None
) -> List[Dict[str, Any]]:
    """
    Candidates on active jobs who have exceeded an explicitly configured threshold.

    Stages without configuration never produce alerts here.

    Returns:
        Breach alerts, most overdue first
    """
    async with session_scope(session) as db:
        thresholds = await _threshold_map(db, company_id)
        if not thresholds:
            return []

        result = await db.execute(
            select(JobCandidate, Candidate, Job, PipelineStage.name)
            .join(Candidate, Candidate.id == JobCandidate.candidate_id)
            .join(Job, Job.id == JobCandidate.job_id)
            .join(PipelineStage, PipelineStage.id == JobCandidate.current_stage_id)
            .where(Job.company_id == company_id, Job.status == JobStatus.ACTIVE)
        )
        rows = result.all()
        open_times = await _open_entry_times(db, (row[0].id for row in rows))

    now = utcnow()
    breaches = []
    for job_candidate, candidate, job, stage_name in rows:
        threshold = thresholds.get(stage_name.lower())
        if not threshold:
            continue
        entered_at = open_times.get(job_candidate.id, job_candidate.applied_at)
        alert = _breach_alert(
            job_candidate.id, candidate, job, stage_name, threshold, entered_at, now
        )
        if alert:
            breaches.append(alert)

    breaches.sort(key=lambda alert: alert["daysOverdue"], reverse=True)
    return breaches


async def check_candidate_sla_breach(
    job_candidate_id: int,
    company_id: Optional[int] = None,
    session: Optional[AsyncSession] = None,
) -> Optional[Dict[str, Any]]:
    """
    Breach alert for one application, or None when within threshold or unconfigured.

    Raises:
        NotFoundError: If the application does not exist or belongs to
            another company than ``company_id``
    """
    async with session_scope(session) as db:
        row = (
            await db.execute(
                select(JobCandidate, Candidate, Job, PipelineStage.name)
                .join(Candidate, Candidate.id == JobCandidate.candidate_id)
                .join(Job, Job.id == JobCandidate.job_id)
                .outerjoin(PipelineStage, PipelineStage.id == JobCandidate.current_stage_id)
                .where(JobCandidate.id == job_candidate_id)
            )
        ).first()
        if row is None:
            raise NotFoundError("Job candidate")
        job_candidate, candidate, job, stage_name = row
        if company_id is not None and job.company_id != company_id:
            raise NotFoundError("Job candidate")

        if stage_name is None:
            return None
        thresholds = await _threshold_map(db, job.company_id)
        threshold = thresholds.get(stage_name.lower())
        if not threshold:
            return None
        open_times = await _open_entry_times(db, [job_candidate.id])

    entered_at = open_times.get(job_candidate.id, job_candidate.applied_at)
    return _breach_alert(
        job_candidate.id, candidate, job, stage_name, threshold, entered_at, utcnow()
    )


async def list_company_ids(session: Optional[AsyncSession] = None) -> List[int]:
    async with session_scope(session) as db:
        result = await db.execute(select(Company.id).order_by(Company.id))
        return list(result.scalars().all())
