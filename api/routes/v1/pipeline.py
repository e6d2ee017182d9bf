"""
Pipeline movement endpoints.

Moves applications between stages, records applications and exposes the
stage history ledger.
"""

from fastapi import APIRouter, Depends, Path, status
from fastapi.responses import JSONResponse

from api.dependencies import require_active_user
from api.schemas.pipeline import (
    AutoRejectionRulesRequest,
    BulkMoveRequest,
    CreateApplicationRequest,
    MoveCandidateRequest,
)
from api.services import auto_rejection as auto_rejection_service
from api.services import pipeline as pipeline_service
from api.services import stage_history as stage_history_service
from database.models.users import User

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@router.post(
    "/job-candidates/{job_candidate_id}/move",
    summary="Move Candidate",
    description="Move an application to another stage of its job pipeline.",
)
async def move_candidate(
    request: MoveCandidateRequest,
    job_candidate_id: int = Path(..., description="Application ID"),
    current_user: User = Depends(require_active_user),
):
    """Rejection stages require a rejection reason."""
    return await pipeline_service.move_candidate(
        job_candidate_id=job_candidate_id,
        new_stage_id=request.stage_id,
        moved_by=current_user.id,
        comment=request.comment,
        rejection_reason=request.rejection_reason,
        company_id=current_user.company_id,
    )


@router.post(
    "/bulk-move",
    summary="Bulk Move Candidates",
    description="Move several applications of one job to the same stage. "
    "Returns 207 when some moves failed.",
)
async def bulk_move(
    request: BulkMoveRequest,
    current_user: User = Depends(require_active_user),
):
    result = await pipeline_service.bulk_move_candidates(
        job_id=request.job_id,
        job_candidate_ids=request.job_candidate_ids,
        target_stage_id=request.target_stage_id,
        comment=request.comment,
        moved_by=current_user.id,
        company_id=current_user.company_id,
    )
    if result["failedCount"] and result["movedCount"]:
        return JSONResponse(status_code=status.HTTP_207_MULTI_STATUS, content=result)
    return result


@router.get(
    "/job-candidates/{job_candidate_id}/history",
    summary="Stage History",
)
async def get_stage_history(
    job_candidate_id: int = Path(..., description="Application ID"),
    current_user: User = Depends(require_active_user),
):
    """Ledger entries of one application, oldest first."""
    return await stage_history_service.get_stage_history(
        job_candidate_id, company_id=current_user.company_id
    )


@router.get(
    "/candidates/{candidate_id}/history",
    summary="Candidate Stage History",
)
async def get_candidate_stage_history(
    candidate_id: int = Path(..., description="Candidate ID"),
    current_user: User = Depends(require_active_user),
):
    """Ledger entries across all of a candidate's applications, newest first."""
    return await stage_history_service.get_stage_history_by_candidate_id(
        candidate_id, company_id=current_user.company_id
    )


@router.post(
    "/applications",
    summary="Create Application",
    status_code=status.HTTP_201_CREATED,
)
async def create_application(
    request: CreateApplicationRequest,
    current_user: User = Depends(require_active_user),
):
    """Apply a candidate to a job; auto-rejection rules run immediately."""
    return await pipeline_service.create_application(
        job_id=request.job_id,
        candidate_id=request.candidate_id,
        company_id=current_user.company_id,
    )


@router.post(
    "/interviews/{interview_id}/evaluate-feedback",
    summary="Auto-advance From Feedback",
)
async def evaluate_interview_feedback(
    interview_id: int = Path(..., description="Interview ID"),
    current_user: User = Depends(require_active_user),
):
    """Advance the candidate when every panel recommendation is positive."""
    next_stage = await pipeline_service.auto_advance_on_feedback(
        interview_id, company_id=current_user.company_id
    )
    return {"interviewId": interview_id, "advanced": next_stage is not None, "stageName": next_stage}


@router.put(
    "/jobs/{job_id}/auto-rejection-rules",
    summary="Update Auto-rejection Rules",
)
async def update_auto_rejection_rules(
    request: AutoRejectionRulesRequest,
    job_id: int = Path(..., description="Job ID"),
    current_user: User = Depends(require_active_user),
):
    return await auto_rejection_service.update_auto_rejection_rules(
        job_id, request.model_dump(), company_id=current_user.company_id
    )
