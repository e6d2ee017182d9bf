"""Analytics request schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from core.errors import ValidationError
from core.utils.datetime import to_naive_utc


class AnalyticsFilters(BaseModel):
    """
    Optional narrowing applied to every analytics report.

    Date bounds are inclusive and compared against whichever timestamp is
    meaningful for the report (applied, entered, hired, scheduled).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    start_date: Optional[datetime] = Field(None, alias="startDate")
    end_date: Optional[datetime] = Field(None, alias="endDate")
    department_id: Optional[str] = Field(None, alias="departmentId")
    location_id: Optional[str] = Field(None, alias="locationId")
    job_id: Optional[int] = Field(None, alias="jobId")
    recruiter_id: Optional[int] = Field(None, alias="recruiterId")

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Stored timestamps are naive UTC."""
        return to_naive_utc(v) if v is not None else None

    @model_validator(mode="after")
    def check_date_order(self) -> "AnalyticsFilters":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


def build_analytics_filters(**params) -> AnalyticsFilters:
    """
    Validate raw filter parameters.

    Raises:
        ValidationError: keyed by the offending parameter
    """
    try:
        return AnalyticsFilters.model_validate(
            {key: value for key, value in params.items() if value not in (None, "")}
        )
    except PydanticValidationError as exc:
        errors: dict[str, list[str]] = {}
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"]) or "filters"
            errors.setdefault(field, []).append(error["msg"])
        raise ValidationError(errors) from exc
