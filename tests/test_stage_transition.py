"""
Solution Stage Transition Engine tests.

Tests cover:
  - Transition table validation
  - derive_stage over approval sets (rounds separated by rejections)
  - approval_status consistency view
  - Explicit stage override (targets, reason, pending cancellation, audit)
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.approval import OVERRIDE_CANCEL_NOTE, Approval
from app.models.audit import AuditLog
from app.models.solution import Solution
import app.services.approval_service as approval_svc
from app.services.stage_transition import (
    approval_status,
    derive_stage,
    override_stage,
    validate_stage_transition,
)


def _a(id_, status):
    return SimpleNamespace(id=id_, status=status)


# ═════════════════════════════════════════════════════════════════════════════
# TRANSITION TABLE
# ═════════════════════════════════════════════════════════════════════════════

class TestValidateStageTransition:
    @pytest.mark.parametrize("stage", ["draft", "rejected", "review"])
    def test_submit_allowed(self, stage):
        result = validate_stage_transition(SimpleNamespace(stage=stage), "submit")
        assert result["valid"] is True
        assert result["to"] == "review"

    def test_submit_blocked_when_approved(self):
        result = validate_stage_transition(SimpleNamespace(stage="approved"), "submit")
        assert result["valid"] is False
        assert "approved" in result["reason"]

    def test_reject_only_from_review(self):
        assert validate_stage_transition(SimpleNamespace(stage="review"), "reject")["to"] == "draft"
        assert validate_stage_transition(SimpleNamespace(stage="draft"), "reject")["valid"] is False

    def test_unknown_action(self):
        result = validate_stage_transition(SimpleNamespace(stage="draft"), "teleport")
        assert result["valid"] is False
        assert result["to"] is None


class TestDeriveStage:
    def test_no_approvals_keeps_current(self):
        assert derive_stage("draft", []) == "draft"
        assert derive_stage("approved", []) == "approved"

    def test_any_pending_is_review(self):
        assert derive_stage("draft", [_a(1, "approved"), _a(2, "pending")]) == "review"

    def test_all_approved(self):
        assert derive_stage("review", [_a(1, "approved"), _a(2, "approved")]) == "approved"

    def test_last_decision_rejected_is_draft(self):
        assert derive_stage("review", [_a(1, "approved"), _a(2, "rejected")]) == "draft"

    def test_resubmission_round_counts(self):
        approvals = [_a(1, "rejected"), _a(2, "rejected"), _a(3, "pending")]
        assert derive_stage("review", approvals) == "review"
        approvals[2].status = "approved"
        assert derive_stage("review", approvals) == "approved"

    def test_order_independent(self):
        assert derive_stage("review", [_a(5, "pending"), _a(2, "rejected")]) == "review"

    def test_override_with_no_later_approvals_keeps_stage(self):
        now = datetime.now(timezone.utc)
        earlier = SimpleNamespace(id=1, status="rejected", submitted_at=now - timedelta(minutes=5))
        assert derive_stage("approved", [earlier], overridden_at=now) == "approved"
        assert derive_stage("rejected", [earlier], overridden_at=now) == "rejected"

    def test_override_then_resubmission(self):
        now = datetime.now(timezone.utc)
        before = SimpleNamespace(id=1, status="rejected", submitted_at=now - timedelta(minutes=5))
        after = SimpleNamespace(id=2, status="pending", submitted_at=now + timedelta(minutes=1))
        assert derive_stage("review", [before, after], overridden_at=now.replace(tzinfo=None)) == "review"


# ═════════════════════════════════════════════════════════════════════════════
# STATUS VIEW
# ═════════════════════════════════════════════════════════════════════════════

class TestApprovalStatus:
    def test_counts_and_consistency(self, make_solution, make_workflow):
        sol = make_solution()
        a = make_workflow(name="A")
        b = make_workflow(name="B")
        first, _ = approval_svc.submit(sol["id"], [a["id"], b["id"]], "alice")
        approval_svc.process(first["id"], "approved", None, "carol")

        status = approval_status(sol["id"])

        assert status["stage"] == "review"
        assert status["derivedStage"] == "review"
        assert status["consistent"] is True
        assert status["counts"] == {"pending": 1, "approved": 1, "rejected": 0}
        assert len(status["approvals"]) == 2

    def test_unknown_solution(self):
        with pytest.raises(NotFoundError):
            approval_status(9999)


# ═════════════════════════════════════════════════════════════════════════════
# OVERRIDE
# ═════════════════════════════════════════════════════════════════════════════

class TestOverrideStage:
    def test_approved_back_to_draft(self, make_solution, make_workflow):
        sol = make_solution()
        wf = make_workflow()
        [approval] = approval_svc.submit(sol["id"], [wf["id"]], "alice")
        approval_svc.process(approval["id"], "approved", None, "carol")

        result = override_stage(sol["id"], "draft", "Customer changed scope", "admin")

        assert result["stage"] == "draft"
        log = AuditLog.query.filter_by(action="solution.stage_override").one()
        assert log.actor == "admin"
        assert log.diff["stage"] == {"old": "approved", "new": "draft"}
        assert log.diff["reason"] == "Customer changed scope"

        # resubmission is possible again
        [again] = approval_svc.submit(sol["id"], [wf["id"]], "alice")
        assert again["status"] == "pending"

    def test_override_cancels_pending(self, make_solution, make_workflow):
        sol = make_solution()
        wf = make_workflow()
        [approval] = approval_svc.submit(sol["id"], [wf["id"]], "alice")

        override_stage(sol["id"], "rejected", "Deal lost", "admin")

        row = db.session.get(Approval, approval["id"])
        assert row.status == "rejected"
        assert row.notes == OVERRIDE_CANCEL_NOTE
        assert row.processed_by == "system"
        assert db.session.get(Solution, sol["id"]).stage == "rejected"

    @pytest.mark.parametrize("target", ["approved", "rejected"])
    def test_status_consistent_after_override(self, make_solution, make_workflow, target):
        sol = make_solution()
        wf = make_workflow()
        approval_svc.submit(sol["id"], [wf["id"]], "alice")

        override_stage(sol["id"], target, "Board decision", "admin")
        status = approval_status(sol["id"])

        assert status["stage"] == target
        assert status["derivedStage"] == target
        assert status["consistent"] is True

    def test_resubmission_after_override_is_derived_again(self, make_solution, make_workflow):
        sol = make_solution()
        wf = make_workflow()
        override_stage(sol["id"], "rejected", "Paused", "admin")
        [approval] = approval_svc.submit(sol["id"], [wf["id"]], "alice")
        assert approval_status(sol["id"])["derivedStage"] == "review"

        approval_svc.process(approval["id"], "approved", None, "carol")
        status = approval_status(sol["id"])
        assert status["stage"] == status["derivedStage"] == "approved"

    def test_review_is_not_a_target(self, make_solution):
        sol = make_solution()
        with pytest.raises(ValidationError):
            override_stage(sol["id"], "review", "Skip ahead", "admin")

    def test_unknown_stage(self, make_solution):
        sol = make_solution()
        with pytest.raises(ValidationError):
            override_stage(sol["id"], "archived", "Old", "admin")

    def test_reason_required(self, make_solution):
        sol = make_solution()
        with pytest.raises(ValidationError):
            override_stage(sol["id"], "approved", "  ", "admin")

    def test_unknown_solution(self):
        with pytest.raises(NotFoundError):
            override_stage(9999, "draft", "Missing", "admin")
