"""
Condition Matcher: decides whether a workflow applies to a solution.

A workflow with no condition rules applies unconditionally. Otherwise every
rule must evaluate true (logical AND, no OR / grouping).

Field lookup:
    projectType → Solution.project_type
    budget      → Solution.estimated_value
    status      → Solution.status
    priority, department, category → no solution attribute

Unrecognized fields, and attributes that are absent, None or blank on the
solution, evaluate true so that matching is never blocked on attributes the
solution model does not carry. Ordinal operators only make sense on budget;
they are refused at save time on the text fields.

Usage:
    from app.services.condition_matcher import matches, find_matching_workflows

    if matches(workflow, solution):
        ...
    split = find_matching_workflows(solution)   # {"required": [...], "optional": [...]}
"""

import logging

from app.core.exceptions import InvalidConditionError
from app.models.workflow import CONDITION_OPERATORS, ORDINAL_OPERATORS

logger = logging.getLogger(__name__)

SOLUTION_FIELD_MAP = {
    "projectType": "project_type",
    "budget": "estimated_value",
    "status": "status",
    "priority": None,
    "department": None,
    "category": None,
}

NUMERIC_FIELDS = frozenset({"budget"})
TEXT_FIELDS = frozenset(
    field for field, attr in SOLUTION_FIELD_MAP.items() if attr and field not in NUMERIC_FIELDS
)


def _as_number(value, *, what: str, rule) -> float:
    if isinstance(value, bool):
        raise InvalidConditionError(f"{what} {value!r} is not numeric")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidConditionError(
            f"Condition '{_rule_attr(rule, 'field')} {_rule_attr(rule, 'operator')}' "
            f"needs a numeric {what}, got {value!r}",
            details={"field": _rule_attr(rule, "field"), "value": str(value)},
        )


def _rule_attr(rule, name):
    if isinstance(rule, dict):
        return rule.get(name)
    return getattr(rule, name, None)


def _lookup(solution, field: str):
    """Return (found, value) for a rule field on the solution."""
    attr = SOLUTION_FIELD_MAP.get(field)
    if attr is None:
        return False, None
    value = getattr(solution, attr, None)
    if value is None or (isinstance(value, str) and not value.strip()):
        return False, None
    return True, value


def _equals(actual, expected: str) -> bool:
    if isinstance(actual, (int, float)) and not isinstance(actual, bool):
        try:
            return float(actual) == float(expected)
        except (TypeError, ValueError):
            pass
    return str(actual) == expected


def evaluate(rule, solution) -> bool:
    """Evaluate one condition rule (model instance or dict) against a solution."""
    field = _rule_attr(rule, "field")
    operator = _rule_attr(rule, "operator")
    expected = _rule_attr(rule, "value")
    expected = "" if expected is None else str(expected)

    found, actual = _lookup(solution, field)
    if not found:
        return True

    if operator == "equals":
        return _equals(actual, expected)
    if operator == "not_equals":
        return not _equals(actual, expected)
    if operator == "contains":
        return expected in str(actual)
    if operator in ORDINAL_OPERATORS:
        left = _as_number(actual, what="solution value", rule=rule)
        right = _as_number(expected, what="rule value", rule=rule)
        if operator == "greater_than":
            return left > right
        if operator == "less_than":
            return left < right
        if operator == "greater_than_or_equal":
            return left >= right
        return left <= right

    raise InvalidConditionError(
        f"Unknown condition operator {operator!r}",
        details={"operator": str(operator)},
    )


def matches(workflow, solution) -> bool:
    """True when every condition rule of *workflow* holds for *solution*."""
    rules = list(workflow.condition_rules or [])
    if not rules:
        return True
    return all(evaluate(rule, solution) for rule in rules)


def validate_condition_rule(data: dict, position: int = 1) -> dict:
    """Validate and normalise a condition rule payload at workflow-save time.

    Returns:
        {"field", "operator", "value", "order"} ready for WorkflowConditionRule.

    Raises:
        InvalidConditionError: operator unknown, value missing, an ordinal
            operator on a text field, or a non-numeric value with an ordinal
            operator.
    """
    if not isinstance(data, dict):
        raise InvalidConditionError(f"conditionRules[{position}] must be an object")

    field = (data.get("field") or "").strip()
    operator = (data.get("operator") or "equals").strip()
    raw_value = data.get("value")
    value = "" if raw_value is None else str(raw_value).strip()

    errors = {}
    if not field:
        errors["field"] = "required"
    if operator not in CONDITION_OPERATORS:
        errors["operator"] = f"must be one of {sorted(CONDITION_OPERATORS)}"
    if not value:
        errors["value"] = "required"
    elif operator in ORDINAL_OPERATORS and field in TEXT_FIELDS:
        errors["operator"] = f"'{operator}' cannot be applied to text field '{field}'"
    elif operator in ORDINAL_OPERATORS:
        try:
            float(value)
        except ValueError:
            errors["value"] = f"operator '{operator}' needs a numeric value"
    if errors:
        raise InvalidConditionError(
            f"Invalid condition rule #{position}: "
            + "; ".join(f"{k} {v}" for k, v in errors.items()),
            details=errors,
        )

    return {
        "field": field,
        "operator": operator,
        "value": value,
        "order": data.get("order") or position,
    }


def find_matching_workflows(solution) -> dict:
    """Active, non-archived workflows applicable to *solution*, split by is_required."""
    from app.services.workflow_service import list_active

    required, optional = [], []
    for workflow in list_active():
        try:
            applies = matches(workflow, solution)
        except InvalidConditionError as exc:
            # an unevaluable stored rule excludes only its own workflow
            logger.warning(
                "Skipping workflow with unevaluable condition workflow_id=%s solution_id=%s: %s",
                workflow.id, solution.id, exc,
                extra={"workflow_id": workflow.id, "solution_id": solution.id},
            )
            continue
        if not applies:
            continue
        (required if workflow.is_required else optional).append(workflow)

    logger.debug(
        "Workflow matching solution_id=%s required=%d optional=%d",
        solution.id, len(required), len(optional),
        extra={"solution_id": solution.id},
    )
    return {
        "required": [w.to_dict() for w in required],
        "optional": [w.to_dict() for w in optional],
    }
