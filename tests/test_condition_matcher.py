"""
Condition Matcher tests.

Tests cover:
  - Conjunctive matching (all rules must hold; no rules → applies)
  - Field lookup and the permissive default for unknown / absent fields
  - Each operator, including numeric comparison on budget
  - Save-time validation of condition rules
  - find_matching_workflows required / optional split
"""
from types import SimpleNamespace

import pytest

from app.core.exceptions import InvalidConditionError
from app.models import db
from app.models.solution import Solution
from app.models.workflow import WorkflowConditionRule
from app.services.condition_matcher import (
    evaluate,
    find_matching_workflows,
    matches,
    validate_condition_rule,
)


def _solution(**overrides):
    attrs = {"id": 1, "project_type": "migration", "estimated_value": 250000.0, "status": "active"}
    attrs.update(overrides)
    return SimpleNamespace(**attrs)


def _rule(field, operator, value):
    return {"field": field, "operator": operator, "value": value}


def _workflow(*rules):
    return SimpleNamespace(condition_rules=list(rules))


# ═════════════════════════════════════════════════════════════════════════════
# MATCHING
# ═════════════════════════════════════════════════════════════════════════════

class TestMatches:
    def test_no_rules_always_matches(self):
        assert matches(_workflow(), _solution()) is True

    def test_all_rules_true(self):
        wf = _workflow(
            _rule("projectType", "equals", "migration"),
            _rule("budget", "greater_than", "100000"),
        )
        assert matches(wf, _solution()) is True

    def test_one_false_rule_fails_the_workflow(self):
        wf = _workflow(
            _rule("projectType", "equals", "migration"),
            _rule("budget", "greater_than", "1000000"),
        )
        assert matches(wf, _solution()) is False

    def test_model_rules_are_accepted(self):
        rule = WorkflowConditionRule(field="status", operator="equals", value="active")
        assert matches(_workflow(rule), _solution()) is True


class TestEvaluate:
    def test_equals_is_case_sensitive(self):
        assert evaluate(_rule("projectType", "equals", "migration"), _solution()) is True
        assert evaluate(_rule("projectType", "equals", "Migration"), _solution()) is False

    def test_not_equals(self):
        assert evaluate(_rule("status", "not_equals", "archived"), _solution()) is True
        assert evaluate(_rule("status", "not_equals", "active"), _solution()) is False

    def test_equals_on_budget_compares_numerically(self):
        assert evaluate(_rule("budget", "equals", "250000"), _solution()) is True

    def test_contains(self):
        assert evaluate(_rule("projectType", "contains", "migr"), _solution()) is True
        assert evaluate(_rule("projectType", "contains", "upgrade"), _solution()) is False

    @pytest.mark.parametrize("operator,value,expected", [
        ("greater_than", "250000", False),
        ("greater_than_or_equal", "250000", True),
        ("less_than", "300000", True),
        ("less_than_or_equal", "249999.99", False),
    ])
    def test_ordinal_operators(self, operator, value, expected):
        assert evaluate(_rule("budget", operator, value), _solution()) is expected

    def test_unknown_field_is_permissive(self):
        assert evaluate(_rule("region", "equals", "EMEA"), _solution()) is True

    @pytest.mark.parametrize("field", ["priority", "department", "category"])
    def test_fields_without_solution_attribute_are_permissive(self, field):
        assert evaluate(_rule(field, "equals", "anything"), _solution()) is True

    def test_absent_attribute_is_permissive(self):
        assert evaluate(_rule("projectType", "equals", "migration"), _solution(project_type=None)) is True

    @pytest.mark.parametrize("blank", ["", "   "])
    def test_blank_attribute_is_permissive(self, blank):
        assert evaluate(_rule("projectType", "equals", "Consulting"), _solution(project_type=blank)) is True

    def test_non_numeric_rule_value_with_ordinal_operator_raises(self):
        with pytest.raises(InvalidConditionError):
            evaluate(_rule("budget", "greater_than", "lots"), _solution())

    def test_non_numeric_solution_value_with_ordinal_operator_raises(self):
        with pytest.raises(InvalidConditionError):
            evaluate(_rule("projectType", "less_than", "5"), _solution())

    def test_unknown_operator_raises(self):
        with pytest.raises(InvalidConditionError):
            evaluate(_rule("status", "matches_regex", ".*"), _solution())


# ═════════════════════════════════════════════════════════════════════════════
# SAVE-TIME VALIDATION
# ═════════════════════════════════════════════════════════════════════════════

class TestValidateConditionRule:
    def test_normalises_valid_rule(self):
        clean = validate_condition_rule({"field": " budget ", "operator": "greater_than", "value": 500000}, 2)
        assert clean == {"field": "budget", "operator": "greater_than", "value": "500000", "order": 2}

    def test_operator_defaults_to_equals(self):
        assert validate_condition_rule({"field": "status", "value": "active"})["operator"] == "equals"

    def test_missing_field_and_value(self):
        with pytest.raises(InvalidConditionError) as exc:
            validate_condition_rule({"operator": "equals"})
        assert set(exc.value.details) == {"field", "value"}

    def test_unknown_operator(self):
        with pytest.raises(InvalidConditionError) as exc:
            validate_condition_rule({"field": "status", "operator": "like", "value": "a"})
        assert "operator" in exc.value.details

    def test_ordinal_operator_needs_numeric_value(self):
        with pytest.raises(InvalidConditionError) as exc:
            validate_condition_rule({"field": "budget", "operator": "less_than", "value": "cheap"})
        assert "value" in exc.value.details

    def test_unknown_field_is_allowed(self):
        assert validate_condition_rule({"field": "region", "value": "EMEA"})["field"] == "region"

    @pytest.mark.parametrize("field", ["status", "projectType"])
    def test_ordinal_operator_rejected_on_text_field(self, field):
        with pytest.raises(InvalidConditionError) as exc:
            validate_condition_rule({"field": field, "operator": "greater_than", "value": "5"})
        assert "operator" in exc.value.details

    def test_ordinal_operator_allowed_on_unmapped_field(self):
        clean = validate_condition_rule({"field": "department", "operator": "less_than", "value": "3"})
        assert clean["operator"] == "less_than"


# ═════════════════════════════════════════════════════════════════════════════
# WORKFLOW SELECTION
# ═════════════════════════════════════════════════════════════════════════════

class TestFindMatchingWorkflows:
    def test_split_by_required_and_skip_inactive(self, make_solution, make_workflow):
        sol = make_solution(estimatedValue=750000)
        required = make_workflow(
            name="Executive Sign-off", isRequired=True,
            conditions=[{"field": "budget", "operator": "greater_than_or_equal", "value": "500000"}],
        )
        optional = make_workflow(name="Legal Review")
        make_workflow(
            name="Small Deals",
            conditions=[{"field": "budget", "operator": "less_than", "value": "100000"}],
        )
        make_workflow(name="Retired", isActive=False)
        make_workflow(name="Archived", isArchived=True)

        split = find_matching_workflows(db.session.get(Solution, sol["id"]))

        assert [w["id"] for w in split["required"]] == [required["id"]]
        assert [w["id"] for w in split["optional"]] == [optional["id"]]

    def test_unevaluable_stored_rule_skips_only_its_workflow(self, make_solution, make_workflow):
        sol = make_solution()
        broken = make_workflow(name="Status Gate")
        plain = make_workflow(name="Plain")
        # stored without going through save-time validation
        db.session.add(WorkflowConditionRule(
            workflow_id=broken["id"], field="status", operator="greater_than", value="5", rule_order=1,
        ))
        db.session.commit()

        split = find_matching_workflows(db.session.get(Solution, sol["id"]))

        assert [w["id"] for w in split["optional"]] == [plain["id"]]
        assert split["required"] == []

    def test_solution_without_project_type_matches_project_type_rule(self, make_workflow):
        from app.services.solution_service import create_solution

        sol = create_solution({"name": "Untyped Deal"}, "alice")
        consulting = make_workflow(
            name="Consulting Review",
            conditions=[{"field": "projectType", "operator": "equals", "value": "Consulting"}],
        )

        split = find_matching_workflows(db.session.get(Solution, sol["id"]))

        assert [w["id"] for w in split["optional"]] == [consulting["id"]]
