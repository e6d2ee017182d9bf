"""
Auto-rejection rule engine.

Jobs carry an optional rule set evaluated against each new applicant. Two
stored shapes exist:

    {"enabled": true, "rules": [{"id", "field", "operator", "value", "logicConnector"}, ...]}
    {"enabled": true, "rules": {"minExperience": 2, "maxExperience": 10}}   # legacy

Rules fold left to right; the connector stored on rule i joins it to rule i+1.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.rules import validate_rule_config
from api.services import stage_history as ledger
from core.errors import NotFoundError, ValidationError
from core.utils.datetime import utcnow
from database.engine import session_scope
from database.models.applications import ActivityType, CandidateActivity, JobCandidate
from database.models.candidates import Candidate
from database.models.jobs import Job
from database.models.pipelines import PipelineStage, StageRole

logger = logging.getLogger(__name__)


NUMERIC_FIELDS = ("experience", "salary_expectation")
TEXT_FIELDS = ("location", "education")
ARRAY_FIELDS = ("skills",)

LEGACY_RULE_KEYS = ("minExperience", "maxExperience", "requiredSkills", "requiredEducation")

FIELD_LABELS = {
    "experience": "Experience",
    "location": "Location",
    "skills": "Skills",
    "education": "Education",
    "salary_expectation": "Salary Expectation",
}

OPERATOR_LABELS = {
    "less_than": "less than",
    "greater_than": "greater than",
    "equals": "equal to",
    "not_equals": "not equal to",
    "between": "between",
    "contains": "containing",
    "not_contains": "not containing",
    "contains_all": "containing all of",
    "contains_any": "containing any of",
}

DEFAULT_REJECTION_DESCRIPTION = "Auto-rejected: Does not meet minimum requirements"


@dataclass
class AutoRejectionResult:
    should_reject: bool
    reason: Optional[str] = None
    triggered_rule: Optional[Dict[str, Any]] = None


def _as_mapping(rules: Any) -> Any:
    # Accept validated pydantic rule models as well as stored JSON
    if hasattr(rules, "model_dump"):
        return rules.model_dump(by_alias=True)
    return rules


def is_legacy_rules(rules: Any) -> bool:
    """Legacy rule sets keep thresholds in a mapping instead of a rule list."""
    if not isinstance(rules, Mapping):
        return False
    inner = rules.get("rules")
    if not isinstance(inner, Mapping):
        return False
    return any(key in inner for key in LEGACY_RULE_KEYS)


def convert_legacy_rules(rules: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convert the legacy threshold mapping to a rule list.

    Only the experience bounds translate; requiredSkills and requiredEducation
    were never enforced and are dropped.
    """
    inner = rules["rules"]
    converted: List[Dict[str, Any]] = []

    if inner.get("minExperience") is not None:
        converted.append({
            "id": f"legacy-{len(converted) + 1}",
            "field": "experience",
            "operator": "less_than",
            "value": inner["minExperience"],
            "logicConnector": "OR",
        })
    if inner.get("maxExperience") is not None:
        converted.append({
            "id": f"legacy-{len(converted) + 1}",
            "field": "experience",
            "operator": "greater_than",
            "value": inner["maxExperience"],
            "logicConnector": "OR",
        })

    return {"enabled": rules.get("enabled", False), "rules": converted}


def _as_number(value: Any) -> Any:
    if isinstance(value, str):
        return float(value)
    return value


def evaluate_numeric(candidate_value: Any, operator: str, rule_value: Any) -> bool:
    if candidate_value is None:
        return False
    candidate_value = _as_number(candidate_value)

    if operator == "less_than":
        return candidate_value < _as_number(rule_value)
    if operator == "greater_than":
        return candidate_value > _as_number(rule_value)
    if operator == "equals":
        return candidate_value == _as_number(rule_value)
    if operator == "not_equals":
        return candidate_value != _as_number(rule_value)
    if operator == "between":
        low, high = (_as_number(bound) for bound in rule_value)
        return low <= candidate_value <= high
    return False


def evaluate_text(candidate_value: Any, operator: str, rule_value: Any) -> bool:
    if candidate_value is None:
        return False
    candidate_text = str(candidate_value).strip().lower()
    rule_text = str(rule_value).strip().lower()

    if operator == "equals":
        return candidate_text == rule_text
    if operator == "not_equals":
        return candidate_text != rule_text
    if operator == "contains":
        return rule_text in candidate_text
    if operator == "not_contains":
        return rule_text not in candidate_text
    return False


def evaluate_array(candidate_value: Any, operator: str, rule_value: Any) -> bool:
    if not isinstance(candidate_value, (list, tuple)):
        return False
    candidate_items = {str(item).strip().lower() for item in candidate_value}
    values = rule_value if isinstance(rule_value, (list, tuple)) else [rule_value]
    rule_items = [str(item).strip().lower() for item in values]

    if operator in ("contains", "contains_any"):
        return any(item in candidate_items for item in rule_items)
    if operator == "not_contains":
        return not any(item in candidate_items for item in rule_items)
    if operator == "contains_all":
        return all(item in candidate_items for item in rule_items)
    return False


def evaluate_single_rule(candidate_data: Mapping[str, Any], rule: Mapping[str, Any]) -> bool:
    """Whether one rule matches the candidate, ignoring connectors."""
    field = rule.get("field")
    candidate_value = candidate_data.get(field)
    operator = rule.get("operator")
    value = rule.get("value")

    if field in NUMERIC_FIELDS:
        return evaluate_numeric(candidate_value, operator, value)
    if field in TEXT_FIELDS:
        return evaluate_text(candidate_value, operator, value)
    if field in ARRAY_FIELDS:
        return evaluate_array(candidate_value, operator, value)
    return False


def format_value(value: Any) -> str:
    """Render a rule or candidate value the way it reads in a sentence."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def generate_rejection_reason(candidate_data: Mapping[str, Any], rule: Mapping[str, Any]) -> str:
    field = rule["field"]
    operator = rule["operator"]
    value = rule.get("value")
    candidate_value = candidate_data.get(field)

    if isinstance(value, (list, tuple)):
        if operator == "between":
            value_text = f"{format_value(value[0])} and {format_value(value[1])}"
        else:
            value_text = ", ".join(format_value(item) for item in value)
    else:
        value_text = format_value(value)

    if isinstance(candidate_value, (list, tuple)):
        candidate_text = ", ".join(format_value(item) for item in candidate_value) or "none"
    elif candidate_value is None:
        candidate_text = "not specified"
    else:
        candidate_text = format_value(candidate_value)

    unit = " years" if field == "experience" else ""
    return (
        f"Auto-rejected: {FIELD_LABELS.get(field, field)} ({candidate_text}{unit}) "
        f"is {OPERATOR_LABELS.get(operator, operator)} required ({value_text}{unit})"
    )


def evaluate_auto_rejection(
    candidate_data: Mapping[str, Any], rules: Any
) -> AutoRejectionResult:
    """
    Decide whether a candidate is rejected by a job's rule set.

    Args:
        candidate_data: Candidate attributes keyed by rule field name
            (experience, location, skills, education, salary_expectation)
        rules: Stored rule set in either shape, or None

    Returns:
        AutoRejectionResult; ``triggered_rule`` is the first rule that
        individually matched and only feeds the reason text
    """
    rules = _as_mapping(rules)
    if not rules or not rules.get("enabled"):
        return AutoRejectionResult(should_reject=False)

    if is_legacy_rules(rules):
        rules = convert_legacy_rules(rules)

    rule_list = rules.get("rules") or []
    if not rule_list:
        return AutoRejectionResult(should_reject=False)

    current_result = False
    triggered_rule = None
    pending_connector = None

    for index, rule in enumerate(rule_list):
        matches = evaluate_single_rule(candidate_data, rule)
        if matches and triggered_rule is None:
            triggered_rule = rule

        if index == 0:
            current_result = matches
        elif pending_connector == "AND":
            current_result = current_result and matches
        else:
            current_result = current_result or matches

        pending_connector = rule.get("logicConnector") or "OR"

    if not current_result:
        return AutoRejectionResult(should_reject=False)

    return AutoRejectionResult(
        should_reject=True,
        reason=generate_rejection_reason(candidate_data, triggered_rule),
        triggered_rule=dict(triggered_rule),
    )


def candidate_data_from_candidate(candidate: Candidate) -> Dict[str, Any]:
    """Build rule-engine input from a candidate row."""
    return {
        "experience": candidate.experience_years,
        "location": candidate.location,
        "skills": candidate.skills,
        "education": candidate.education,
        "salary_expectation": candidate.salary_expectation,
    }


async def _find_rejected_stage(session: AsyncSession, job_id: int) -> Optional[PipelineStage]:
    return await session.scalar(
        select(PipelineStage)
        .where(
            PipelineStage.job_id == job_id,
            PipelineStage.stage_role == StageRole.REJECTED,
            PipelineStage.parent_id.is_(None),
        )
        .order_by(PipelineStage.position)
        .limit(1)
    )


async def process_auto_rejection(
    job_candidate_id: int,
    candidate_id: int,
    candidate_data: Mapping[str, Any],
    job_id: int,
    session: Optional[AsyncSession] = None,
) -> bool:
    """
    Evaluate a job's rules for a new application and reject it if they fire.

    A missing job or a missing Rejected stage is not an error: auto-rejection
    is a side effect of intake and never blocks it.

    Args:
        job_candidate_id: The application to evaluate
        candidate_id: The applicant
        candidate_data: Candidate attributes keyed by rule field name
        job_id: The job applied to
        session: Intake transaction to join

    Returns:
        True if the application was moved to the Rejected stage
    """
    async with session_scope(session) as db:
        job = await db.get(Job, job_id)
        if job is None:
            return False

        evaluation = evaluate_auto_rejection(candidate_data, job.auto_rejection_rules)
        if not evaluation.should_reject:
            return False

        rejected_stage = await _find_rejected_stage(db, job_id)
        if rejected_stage is None:
            logger.warning(f"No Rejected stage found for job {job_id}, skipping auto-rejection")
            return False

        now = utcnow()
        job_candidate = await db.get(JobCandidate, job_candidate_id)
        if job_candidate is None:
            return False
        job_candidate.current_stage_id = rejected_stage.id
        job_candidate.updated_at = now

        await ledger.close_open_entries(db, job_candidate_id, now)
        ledger.open_entry(
            db,
            job_candidate_id,
            rejected_stage.id,
            rejected_stage.name,
            entered_at=now,
            comment=evaluation.reason,
        )

        rule = evaluation.triggered_rule or {}
        db.add(
            CandidateActivity(
                candidate_id=candidate_id,
                job_candidate_id=job_candidate_id,
                activity_type=ActivityType.STAGE_CHANGE,
                description=evaluation.reason or DEFAULT_REJECTION_DESCRIPTION,
                activity_metadata={
                    "fromStageName": "Applied",
                    "toStageName": "Rejected",
                    "toStageId": rejected_stage.id,
                    "autoRejected": True,
                    "rejectionReason": evaluation.reason,
                    "triggeredRule": {
                        "id": rule.get("id"),
                        "field": rule.get("field"),
                        "operator": rule.get("operator"),
                        "value": rule.get("value"),
                        "logicConnector": rule.get("logicConnector"),
                    },
                },
                created_at=now,
            )
        )
        await db.flush()

        logger.info(
            f"Auto-rejected job candidate {job_candidate_id} for job {job_id}: {evaluation.reason}"
        )
        return True


async def process_auto_rejection_legacy(
    job_candidate_id: int,
    candidate_id: int,
    experience: Optional[float],
    job_id: int,
    session: Optional[AsyncSession] = None,
) -> bool:
    """Experience-only entry point kept for callers that predate rule lists."""
    return await process_auto_rejection(
        job_candidate_id,
        candidate_id,
        {"experience": experience},
        job_id,
        session=session,
    )


async def update_auto_rejection_rules(
    job_id: int,
    config: Mapping[str, Any],
    company_id: Optional[int] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, Any]:
    """
    Validate and store a job's rule set.

    Raises:
        NotFoundError: If the job does not exist or belongs to another
            company than ``company_id``
        ValidationError: If the rule set is malformed
    """
    try:
        validated = validate_rule_config(dict(config))
    except PydanticValidationError as exc:
        errors: Dict[str, List[str]] = {}
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"]) or "rules"
            errors.setdefault(field, []).append(error["msg"])
        raise ValidationError(errors) from exc

    async with session_scope(session) as db:
        job = await db.get(Job, job_id)
        if job is None or (company_id is not None and job.company_id != company_id):
            raise NotFoundError("Job")
        job.auto_rejection_rules = validated
        await db.flush()
        return {"jobId": job.id, "autoRejectionRules": validated}
