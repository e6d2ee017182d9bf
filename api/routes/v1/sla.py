"""SLA configuration and breach endpoints."""

from fastapi import APIRouter, Depends, Path, status

from api.dependencies import require_active_user, require_admin_user
from api.schemas.sla import SLAConfigBulkUpdate, SLAConfigUpdate
from api.services import sla as sla_service
from database.models.users import User

router = APIRouter(prefix="/sla", tags=["sla"])


@router.get("/config", summary="List SLA Configuration")
async def get_sla_configs(current_user: User = Depends(require_active_user)):
    """Configured stage thresholds plus the suggested defaults."""
    return {
        "configs": await sla_service.get_sla_configs(current_user.company_id),
        "defaults": sla_service.get_default_thresholds(),
    }


@router.put("/config", summary="Upsert SLA Threshold")
async def update_sla_config(
    request: SLAConfigUpdate,
    current_user: User = Depends(require_admin_user),
):
    return await sla_service.update_sla_config(
        current_user.company_id, request.stage_name, request.threshold_days
    )


@router.put("/config/bulk", summary="Upsert Several SLA Thresholds")
async def update_sla_configs(
    request: SLAConfigBulkUpdate,
    current_user: User = Depends(require_admin_user),
):
    return await sla_service.update_sla_configs(
        current_user.company_id,
        [config.model_dump(by_alias=True) for config in request.configs],
    )


@router.delete(
    "/config/{stage_name}",
    summary="Delete SLA Threshold",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_sla_config(
    stage_name: str = Path(..., description="Stage name"),
    current_user: User = Depends(require_admin_user),
):
    await sla_service.delete_sla_config(current_user.company_id, stage_name)


@router.get("/breaches", summary="SLA Breaches")
async def get_sla_breaches(current_user: User = Depends(require_active_user)):
    """Candidates past a configured stage threshold, most overdue first."""
    return await sla_service.check_sla_breaches(current_user.company_id)


@router.get("/breaches/{job_candidate_id}", summary="Candidate SLA Breach")
async def get_candidate_sla_breach(
    job_candidate_id: int = Path(..., description="Application ID"),
    current_user: User = Depends(require_active_user),
):
    breach = await sla_service.check_candidate_sla_breach(
        job_candidate_id, company_id=current_user.company_id
    )
    return {"breached": breach is not None, "breach": breach}
