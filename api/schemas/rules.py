"""Auto-rejection rule configuration schemas, validated when a job's rules are saved."""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

RuleField = Literal["experience", "location", "skills", "education", "salary_expectation"]
RuleOperator = Literal[
    "less_than",
    "greater_than",
    "equals",
    "not_equals",
    "between",
    "contains",
    "not_contains",
    "contains_all",
    "contains_any",
]

OPERATORS_BY_FIELD = {
    "experience": {"less_than", "greater_than", "equals", "not_equals", "between"},
    "salary_expectation": {"less_than", "greater_than", "equals", "not_equals", "between"},
    "location": {"equals", "not_equals", "contains", "not_contains"},
    "education": {"equals", "not_equals", "contains", "not_contains"},
    "skills": {"contains", "not_contains", "contains_all", "contains_any"},
}


class AutoRejectionRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    field: RuleField
    operator: RuleOperator
    value: Union[float, str, list[Union[float, str]]]
    logic_connector: Optional[Literal["AND", "OR"]] = Field(None, alias="logicConnector")

    @model_validator(mode="after")
    def check_operator_for_field(self) -> "AutoRejectionRule":
        if self.operator not in OPERATORS_BY_FIELD[self.field]:
            raise ValueError(f"Operator '{self.operator}' is not valid for field '{self.field}'")
        if self.operator == "between":
            if not isinstance(self.value, list) or len(self.value) != 2:
                raise ValueError("'between' requires a [min, max] pair")
            low, high = self.value
            if not isinstance(low, (int, float)) or not isinstance(high, (int, float)):
                raise ValueError("'between' bounds must be numbers")
            if low > high:
                raise ValueError("'between' minimum must not exceed maximum")
        elif self.field in ("experience", "salary_expectation") and not isinstance(
            self.value, (int, float)
        ):
            raise ValueError(f"Field '{self.field}' requires a numeric value")
        return self


class AutoRejectionRules(BaseModel):
    enabled: bool = False
    rules: list[AutoRejectionRule] = Field(default_factory=list)


class LegacyRuleThresholds(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    min_experience: Optional[float] = Field(None, alias="minExperience", ge=0)
    max_experience: Optional[float] = Field(None, alias="maxExperience", ge=0)
    required_skills: Optional[list[str]] = Field(None, alias="requiredSkills")
    required_education: Optional[str] = Field(None, alias="requiredEducation")


class LegacyAutoRejectionRules(BaseModel):
    enabled: bool = False
    rules: LegacyRuleThresholds


def validate_rule_config(config: Any) -> dict[str, Any]:
    """
    Validate a rule set in either stored shape and return it ready to persist.

    Raises:
        pydantic.ValidationError: if the configuration is malformed
    """
    if isinstance(config, dict) and isinstance(config.get("rules"), dict):
        model: BaseModel = LegacyAutoRejectionRules.model_validate(config)
    else:
        model = AutoRejectionRules.model_validate(config)
    return model.model_dump(by_alias=True, exclude_none=True)
