"""SLA configuration request schemas.

Fields are left loose here; the SLA service owns the validation messages.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SLAConfigUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stage_name: Optional[str] = Field(None, alias="stageName")
    threshold_days: Optional[Union[int, float]] = Field(None, alias="thresholdDays")


class SLAConfigBulkUpdate(BaseModel):
    configs: list[SLAConfigUpdate]
