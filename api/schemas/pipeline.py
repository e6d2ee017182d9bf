"""Pipeline movement request schemas."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class MoveCandidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stage_id: int = Field(..., alias="stageId", description="Target pipeline stage")
    comment: Optional[str] = Field(None, max_length=2000)
    rejection_reason: Optional[str] = Field(None, alias="rejectionReason", max_length=2000)


class BulkMoveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: int = Field(..., alias="jobId")
    job_candidate_ids: list[int] = Field(..., alias="jobCandidateIds")
    target_stage_id: int = Field(..., alias="targetStageId")
    comment: Optional[str] = Field(None, max_length=2000)


class CreateApplicationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: int = Field(..., alias="jobId")
    candidate_id: int = Field(..., alias="candidateId")


class AutoRejectionRulesRequest(BaseModel):
    """Raw rule set in either stored shape; validated by the service."""

    enabled: bool = False
    rules: Any = Field(default_factory=list)
