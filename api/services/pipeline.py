"""
Pipeline movement service.

Every stage change goes through ``apply_transition``: the JobCandidate row is
locked, its open ledger entry closed, the destination entry opened, the stage
pointer moved and a timeline activity written, all in one transaction.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.services import stage_history as ledger
from api.services.analytics_scope import ensure_job_in_company
from api.services.auto_rejection import candidate_data_from_candidate, process_auto_rejection
from core.errors import ATSError, NotFoundError, ValidationError
from core.utils.datetime import utcnow
from database.engine import session_scope
from database.models.applications import ActivityType, CandidateActivity, JobCandidate
from database.models.candidates import Candidate
from database.models.interviews import Interview, InterviewFeedback, InterviewStatus, Recommendation
from database.models.jobs import Job
from database.models.pipelines import PipelineStage, StageRole, is_rejection_stage

logger = logging.getLogger(__name__)

AUTO_ADVANCE_COMMENT = "Auto-moved based on interview feedback"
BULK_DATABASE_ERROR = "Database error while moving candidate"
POSITIVE_RECOMMENDATIONS = {Recommendation.HIRE, Recommendation.STRONG_HIRE}


async def lock_job_candidate(session: AsyncSession, job_candidate_id: int) -> JobCandidate:
    """
    Load a JobCandidate with a row lock held until the transaction ends.

    Concurrent moves of the same application serialize here.

    Raises:
        NotFoundError: If the application does not exist
    """
    job_candidate = await session.scalar(
        select(JobCandidate)
        .where(JobCandidate.id == job_candidate_id)
        .with_for_update()
    )
    if job_candidate is None:
        raise NotFoundError("Job candidate")
    return job_candidate


async def apply_transition(
    session: AsyncSession,
    job_candidate: JobCandidate,
    target_stage: PipelineStage,
    now: datetime,
    description: str,
    metadata: Dict[str, Any],
    comment: Optional[str] = None,
    moved_by: Optional[int] = None,
) -> None:
    """Close the open ledger entry, open the target's, move the pointer and log the activity."""
    await ledger.close_open_entries(session, job_candidate.id, now)
    ledger.open_entry(
        session,
        job_candidate.id,
        target_stage.id,
        target_stage.name,
        entered_at=now,
        comment=comment,
        moved_by=moved_by,
    )
    job_candidate.current_stage_id = target_stage.id
    job_candidate.updated_at = now
    session.add(
        CandidateActivity(
            candidate_id=job_candidate.candidate_id,
            job_candidate_id=job_candidate.id,
            activity_type=ActivityType.STAGE_CHANGE,
            description=description,
            activity_metadata=metadata,
            created_at=now,
        )
    )
    await session.flush()


async def _stage_in_job(
    session: AsyncSession, stage_id: int, job_id: int
) -> Optional[PipelineStage]:
    return await session.scalar(
        select(PipelineStage).where(
            PipelineStage.id == stage_id,
            PipelineStage.job_id == job_id,
        )
    )


async def _stage_name(session: AsyncSession, stage_id: Optional[int]) -> Optional[str]:
    if stage_id is None:
        return None
    return await session.scalar(select(PipelineStage.name).where(PipelineStage.id == stage_id))


async def move_candidate(
    job_candidate_id: int,
    new_stage_id: int,
    moved_by: Optional[int] = None,
    comment: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    company_id: Optional[int] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Move an application to another stage of its job's pipeline.

    Args:
        job_candidate_id: The application to move
        new_stage_id: Destination stage, which must belong to the same job
        moved_by: Acting user
        comment: Optional comment stored on the new ledger entry
        rejection_reason: Required (or a comment) when the destination is a
            rejection stage
        company_id: Caller's company; applications of other companies are
            reported as not found
        session: Transaction to join

    Returns:
        Dictionary describing the move; ``moved`` is False when the
        application was already in the destination stage

    Raises:
        NotFoundError: If the application does not exist
        ValidationError: If the stage is foreign to the job or a rejection
            reason is missing
    """
    async with session_scope(session) as db:
        job_candidate = await lock_job_candidate(db, job_candidate_id)
        await ensure_job_in_company(db, job_candidate.job_id, company_id, "Job candidate")

        target_stage = await _stage_in_job(db, new_stage_id, job_candidate.job_id)
        if target_stage is None:
            raise ValidationError({"stageId": ["Stage not found in this job pipeline"]})

        from_stage_id = job_candidate.current_stage_id
        from_stage_name = await _stage_name(db, from_stage_id)
        result = {
            "jobCandidateId": job_candidate.id,
            "fromStage": {"id": from_stage_id, "name": from_stage_name},
            "toStage": {"id": target_stage.id, "name": target_stage.name},
            "moved": False,
        }
        if from_stage_id == target_stage.id:
            return result

        reason = rejection_reason or comment
        if is_rejection_stage(target_stage) and not reason:
            raise ValidationError({
                "rejectionReason": ["Rejection reason is required when moving to Rejected stage"]
            })

        description = f"Moved from {from_stage_name} to {target_stage.name}"
        if reason:
            description += f". Reason: {reason}"

        now = utcnow()
        await apply_transition(
            db,
            job_candidate,
            target_stage,
            now,
            description=description,
            metadata={
                "fromStageId": from_stage_id,
                "fromStageName": from_stage_name,
                "toStageId": target_stage.id,
                "toStageName": target_stage.name,
                "rejectionReason": rejection_reason,
                "comment": comment,
            },
            comment=reason,
            moved_by=moved_by,
        )

        logger.info(
            f"Moved job candidate {job_candidate.id} from {from_stage_name} to {target_stage.name}"
        )
        result["moved"] = True
        result["movedAt"] = now.isoformat()
        return result


async def _move_one_for_bulk(
    job_candidate_id: int,
    job_id: int,
    target_stage_id: int,
    comment: Optional[str],
    moved_by: Optional[int],
) -> None:
    async with session_scope() as db:
        job_candidate = await lock_job_candidate(db, job_candidate_id)
        if job_candidate.job_id != job_id:
            raise ValidationError({
                "jobCandidateId": ["Candidate does not belong to the specified job"]
            })
        if job_candidate.current_stage_id == target_stage_id:
            return

        target_stage = await db.get(PipelineStage, target_stage_id)
        from_stage_name = await _stage_name(db, job_candidate.current_stage_id)
        description = f"Moved from {from_stage_name} to {target_stage.name}"
        if comment:
            description += f". Comment: {comment}"

        await apply_transition(
            db,
            job_candidate,
            target_stage,
            utcnow(),
            description=description,
            metadata={
                "fromStageId": job_candidate.current_stage_id,
                "fromStageName": from_stage_name,
                "toStageId": target_stage.id,
                "toStageName": target_stage.name,
                "comment": comment,
                "bulkMove": True,
            },
            comment=comment,
            moved_by=moved_by,
        )


async def bulk_move_candidates(
    job_id: int,
    job_candidate_ids: List[int],
    target_stage_id: int,
    comment: Optional[str] = None,
    moved_by: Optional[int] = None,
    company_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Move several applications of one job to the same stage.

    Applications are processed one at a time, each in its own transaction,
    so one failure never rolls back or stops the others.

    Returns:
        Dictionary with success flag, moved and failed counts and per-item failures
    """
    if not job_candidate_ids:
        raise ValidationError({"jobCandidateIds": ["At least one candidate ID is required"]})

    async with session_scope() as db:
        job = await db.get(Job, job_id)
        if job is None or (company_id is not None and job.company_id != company_id):
            raise NotFoundError("Job")
        target_stage = await _stage_in_job(db, target_stage_id, job_id)
        if target_stage is None:
            raise ValidationError({
                "targetStageId": ["Target stage not found in this job pipeline"]
            })
        if is_rejection_stage(target_stage) and not comment:
            raise ValidationError({
                "comment": ["A comment is required when moving to a rejection stage"]
            })

    moved_count = 0
    failures: List[Dict[str, Any]] = []
    for job_candidate_id in job_candidate_ids:
        try:
            await _move_one_for_bulk(job_candidate_id, job_id, target_stage_id, comment, moved_by)
        except ATSError as exc:
            error = exc.message
        except SQLAlchemyError as exc:
            logger.error(
                f"Bulk move of job candidate {job_candidate_id} failed: {type(exc).__name__}",
                exc_info=True,
            )
            error = BULK_DATABASE_ERROR
        else:
            moved_count += 1
            continue

        async with session_scope() as db:
            candidate_name = await db.scalar(
                select(Candidate.name)
                .join(JobCandidate, JobCandidate.candidate_id == Candidate.id)
                .where(JobCandidate.id == job_candidate_id)
            )
        failures.append({
            "jobCandidateId": job_candidate_id,
            "candidateName": candidate_name,
            "error": error,
        })

    if failures:
        logger.warning(
            f"Bulk move to stage {target_stage_id} on job {job_id}: "
            f"{len(failures)} of {len(job_candidate_ids)} failed"
        )

    return {
        "success": not failures,
        "movedCount": moved_count,
        "failedCount": len(failures),
        "failures": failures,
    }


async def _entry_stage(session: AsyncSession, job_id: int) -> Optional[PipelineStage]:
    stage = await session.scalar(
        select(PipelineStage).where(
            PipelineStage.job_id == job_id,
            PipelineStage.stage_role == StageRole.QUEUE,
            PipelineStage.parent_id.is_(None),
        )
        .order_by(PipelineStage.position)
        .limit(1)
    )
    if stage is not None:
        return stage
    return await session.scalar(
        select(PipelineStage)
        .where(PipelineStage.job_id == job_id, PipelineStage.parent_id.is_(None))
        .order_by(PipelineStage.position)
        .limit(1)
    )


async def create_application(
    job_id: int,
    candidate_id: int,
    company_id: Optional[int] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Apply a candidate to a job.

    The application lands in the job's queue stage with an open ledger entry,
    then the job's auto-rejection rules run in the same transaction.

    Returns:
        Dictionary with the new application and whether it was auto-rejected

    Raises:
        NotFoundError: If the job or candidate does not exist
        ValidationError: If the candidate already applied or the job has no stages
    """
    async with session_scope(session) as db:
        job = await db.get(Job, job_id)
        if job is None or (company_id is not None and job.company_id != company_id):
            raise NotFoundError("Job")
        candidate = await db.get(Candidate, candidate_id)
        if candidate is None or candidate.company_id != job.company_id:
            raise NotFoundError("Candidate")

        existing = await db.scalar(
            select(func.count(JobCandidate.id)).where(
                JobCandidate.job_id == job_id,
                JobCandidate.candidate_id == candidate_id,
            )
        )
        if existing:
            raise ValidationError({"candidateId": ["Candidate has already applied to this job"]})

        entry_stage = await _entry_stage(db, job_id)
        if entry_stage is None:
            raise ValidationError({"jobId": ["Job has no pipeline stages"]})

        now = utcnow()
        job_candidate = JobCandidate(
            job_id=job_id,
            candidate_id=candidate_id,
            current_stage_id=entry_stage.id,
            applied_at=now,
            updated_at=now,
        )
        db.add(job_candidate)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise ValidationError(
                {"candidateId": ["Candidate has already applied to this job"]}
            ) from exc

        ledger.open_entry(db, job_candidate.id, entry_stage.id, entry_stage.name, entered_at=now)
        await db.flush()

        auto_rejected = await process_auto_rejection(
            job_candidate.id,
            candidate_id,
            candidate_data_from_candidate(candidate),
            job_id,
            session=db,
        )

        return {
            "jobCandidate": {
                "id": job_candidate.id,
                "jobId": job_id,
                "candidateId": candidate_id,
                "currentStageId": job_candidate.current_stage_id,
                "appliedAt": job_candidate.applied_at.isoformat(),
            },
            "autoRejected": auto_rejected,
        }


async def auto_advance_on_feedback(
    interview_id: int,
    company_id: Optional[int] = None,
    session: Optional[AsyncSession] = None,
) -> Optional[str]:
    """
    Advance a candidate after unanimous positive interview feedback.

    Every submitted recommendation must be hire or strong_hire; a single
    strong_no_hire blocks advancement. The interview is marked completed
    either way.

    Returns:
        Name of the stage the candidate moved to, or None
    """
    async with session_scope(session) as db:
        interview = await db.get(Interview, interview_id)
        if interview is None:
            raise NotFoundError("Interview")
        job_id = await db.scalar(
            select(JobCandidate.job_id).where(JobCandidate.id == interview.job_candidate_id)
        )
        await ensure_job_in_company(db, job_id, company_id, "Interview")

        recommendations = list(
            (
                await db.execute(
                    select(InterviewFeedback.recommendation).where(
                        InterviewFeedback.interview_id == interview_id
                    )
                )
            ).scalars().all()
        )

        moved_to = None
        all_positive = bool(recommendations) and all(
            rec in POSITIVE_RECOMMENDATIONS for rec in recommendations
        )
        if all_positive and Recommendation.STRONG_NO_HIRE not in recommendations:
            moved_to = await _advance_to_next_stage(db, interview)

        interview.status = InterviewStatus.COMPLETED
        await db.flush()
        return moved_to


async def _advance_to_next_stage(session: AsyncSession, interview: Interview) -> Optional[str]:
    job_candidate = await lock_job_candidate(session, interview.job_candidate_id)
    current_stage = (
        await session.get(PipelineStage, job_candidate.current_stage_id)
        if job_candidate.current_stage_id is not None
        else None
    )
    if current_stage is None:
        return None

    next_stage = await session.scalar(
        select(PipelineStage)
        .where(
            PipelineStage.job_id == job_candidate.job_id,
            PipelineStage.parent_id.is_(None),
            PipelineStage.position > current_stage.position,
        )
        .order_by(PipelineStage.position)
        .limit(1)
    )
    if next_stage is None:
        return None

    await apply_transition(
        session,
        job_candidate,
        next_stage,
        utcnow(),
        description=(
            f"Candidate auto-moved to {next_stage.name} based on positive interview feedback"
        ),
        metadata={
            "fromStageId": current_stage.id,
            "fromStageName": current_stage.name,
            "toStageId": next_stage.id,
            "toStageName": next_stage.name,
            "reason": "auto_stage_movement",
            "interviewId": interview.id,
        },
        comment=AUTO_ADVANCE_COMMENT,
    )
    logger.info(
        f"Auto-advanced job candidate {job_candidate.id} to {next_stage.name} "
        f"after interview {interview.id}"
    )
    return next_stage.name
