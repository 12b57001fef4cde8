"""
Solution Stage Transition Engine.

Derives and updates a Solution's ``stage`` from its Approval records. This is
the only module that writes ``Solution.stage``.

States:
    draft → review → {approved, rejected}
    rejected → draft / review (resubmission)
    approved is terminal except for an explicit override

Rules (evaluated after every approval mutation for a solution):
    1. submit of ≥1 approvals while draft/rejected → review
    2. process(rejected) → draft, and every other pending approval of the
       solution is rejected by "system" (one rejection cancels all siblings)
    3. process(approved) → approved once no approval of the solution is pending
    4. otherwise no transition

Callers (approval_service) hold ``solution_lock`` and run inside one
``atomic`` transaction; nothing here commits or swallows errors.

Usage:
    from app.services.stage_transition import on_submitted, on_processed

    on_submitted(solution, actor)
    on_processed(solution, approval, actor)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from app.core.exceptions import ConflictError, ValidationError
from app.models import db
from app.models.approval import (
    OVERRIDE_CANCEL_NOTE,
    SIBLING_CANCEL_NOTE,
    SYSTEM_ACTOR,
    Approval,
    append_history,
)
from app.models.audit import AuditLog, write_audit
from app.models.solution import SOLUTION_STAGES, Solution
from app.services.helpers.locking import solution_lock
from app.services.helpers.queries import atomic, get_or_raise

logger = logging.getLogger(__name__)


STAGE_TRANSITIONS = {
    "submit": {"from": ["draft", "rejected", "review"], "to": "review"},
    "reject": {"from": ["review"], "to": "draft"},
    "complete": {"from": ["review"], "to": "approved"},
}

OVERRIDE_TARGETS = ("draft", "approved", "rejected")


class StageTransitionError(ConflictError):
    """Raised when a stage transition is invalid for the solution's current stage."""

    def __init__(self, solution_id, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' solution {solution_id} (stage={current})"
        if reason:
            msg += f": {reason}"
        super().__init__("Solution", "stage", current, message=msg)
        self.solution_id = solution_id
        self.action = action
        self.current_stage = current


def validate_stage_transition(solution: Solution, action: str) -> dict:
    """
    Validate whether an action is valid for the solution's current stage.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = STAGE_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": solution.stage, "to": None,
                "reason": f"Unknown action: {action}"}

    if solution.stage not in rule["from"]:
        return {"valid": False, "from": solution.stage, "to": rule["to"],
                "reason": f"Cannot '{action}' from stage '{solution.stage}'"}

    return {"valid": True, "from": solution.stage, "to": rule["to"], "reason": None}


def _set_stage(solution: Solution, stage: str, actor: str, reason: str) -> tuple[str, str]:
    previous = solution.stage
    if previous != stage:
        solution.stage = stage
        solution.last_modified_by = actor
        db.session.flush()
        logger.info(
            "Solution stage %s→%s solution_id=%s reason=%s by=%s",
            previous, stage, solution.id, reason, actor,
            extra={"solution_id": solution.id, "actor": actor},
        )
    return previous, stage


def _pending_for(solution_id: int, *, exclude_id: int | None = None) -> list[Approval]:
    stmt = select(Approval).where(
        Approval.solution_id == solution_id,
        Approval.status == "pending",
    )
    if exclude_id is not None:
        stmt = stmt.where(Approval.id != exclude_id)
    return list(db.session.execute(stmt.order_by(Approval.id)).scalars().all())


def _cancel_pending(solution_id: int, note: str, *, exclude_id: int | None = None) -> list[Approval]:
    """Reject every still-pending approval of the solution on behalf of "system"."""
    now = datetime.now(timezone.utc)
    cancelled = _pending_for(solution_id, exclude_id=exclude_id)
    for approval in cancelled:
        approval.status = "rejected"
        approval.notes = note
        approval.processed_at = now
        approval.processed_by = SYSTEM_ACTOR
    db.session.flush()
    for approval in cancelled:
        append_history(approval, "cancelled", SYSTEM_ACTOR)
    if cancelled:
        logger.info(
            "Cancelled %d pending approval(s) solution_id=%s ids=%s",
            len(cancelled), solution_id, [a.id for a in cancelled],
            extra={"solution_id": solution_id},
        )
    return cancelled


# ── Engine hooks ─────────────────────────────────────────────────────────────


def on_submitted(solution: Solution, actor: str) -> dict:
    """Rule 1: approvals were submitted for *solution*."""
    validation = validate_stage_transition(solution, "submit")
    if not validation["valid"]:
        raise ValidationError(
            f"Solution {solution.id} is {solution.stage}; approved solutions need a stage override before resubmission",
            details={"stage": solution.stage},
        )
    previous, stage = _set_stage(solution, validation["to"], actor, "submitted")
    return {"previous_stage": previous, "new_stage": stage, "cancelled": []}


def on_processed(solution: Solution, approval: Approval, actor: str) -> dict:
    """Rules 2–4: *approval* has just left ``pending``.

    Returns:
        {"previous_stage", "new_stage", "cancelled": [approval ids]}
    """
    if approval.status == "rejected":
        validation = validate_stage_transition(solution, "reject")
        if not validation["valid"]:
            raise StageTransitionError(solution.id, "reject", solution.stage, validation["reason"])
        cancelled = _cancel_pending(solution.id, SIBLING_CANCEL_NOTE, exclude_id=approval.id)
        previous, stage = _set_stage(solution, validation["to"], actor, f"approval {approval.id} rejected")
        return {"previous_stage": previous, "new_stage": stage, "cancelled": [a.id for a in cancelled]}

    remaining = _pending_for(solution.id, exclude_id=approval.id)
    if remaining:
        logger.debug(
            "Solution stays in %s solution_id=%s pending=%d",
            solution.stage, solution.id, len(remaining),
            extra={"solution_id": solution.id},
        )
        return {"previous_stage": solution.stage, "new_stage": solution.stage, "cancelled": []}

    validation = validate_stage_transition(solution, "complete")
    if not validation["valid"]:
        raise StageTransitionError(solution.id, "complete", solution.stage, validation["reason"])
    previous, stage = _set_stage(solution, validation["to"], actor, "all approvals approved")
    return {"previous_stage": previous, "new_stage": stage, "cancelled": []}


# ── Derived view ─────────────────────────────────────────────────────────────


def _as_utc(value):
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def derive_stage(current_stage: str, approvals, overridden_at=None) -> str:
    """Stage consistent with a set of approvals.

    After an explicit override only approvals submitted later count; with
    none, the overridden stage stands. Within that set, only the latest
    submission round counts: approvals created after the newest rejected
    one. Ids are monotonic, so a resubmission always sorts after the round
    it replaces.

      - no approvals at all           → current_stage
      - nothing after last rejection  → draft
      - any pending in current round  → review
      - all approved in current round → approved
    """
    cutoff = _as_utc(overridden_at)
    if cutoff is not None:
        approvals = [
            a for a in approvals
            if _as_utc(getattr(a, "submitted_at", None)) is not None
            and _as_utc(a.submitted_at) > cutoff
        ]

    approvals = sorted(approvals, key=lambda a: a.id)
    if not approvals:
        return current_stage

    rejected_ids = [a.id for a in approvals if a.status == "rejected"]
    boundary = max(rejected_ids) if rejected_ids else 0
    current_round = [a for a in approvals if a.id > boundary]

    if not current_round:
        return "draft"
    if any(a.status == "pending" for a in current_round):
        return "review"
    return "approved"


def _last_override_at(solution_id: int):
    stmt = (
        select(AuditLog.timestamp)
        .where(
            AuditLog.entity_type == "solution",
            AuditLog.entity_id == str(solution_id),
            AuditLog.action == "solution.stage_override",
        )
        .order_by(AuditLog.id.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar()


def approval_status(solution_id: int) -> dict:
    """Stage summary for a solution: stored stage, derived stage and counts."""
    solution = get_or_raise(Solution, solution_id)
    approvals = solution.approvals.order_by(Approval.id).all()
    counts = {"pending": 0, "approved": 0, "rejected": 0}
    for approval in approvals:
        counts[approval.status] = counts.get(approval.status, 0) + 1
    derived = derive_stage(solution.stage, approvals, _last_override_at(solution.id))
    return {
        "solutionId": solution.id,
        "stage": solution.stage,
        "derivedStage": derived,
        "consistent": derived == solution.stage,
        "counts": counts,
        "approvals": [a.to_dict() for a in approvals],
    }


# ── Override ─────────────────────────────────────────────────────────────────


def override_stage(solution_id: int, stage: str, reason: str, actor: str) -> dict:
    """Explicit stage override (the only way out of ``approved``).

    Remaining pending approvals are rejected by "system" so the stored stage
    and the approvals stay consistent.

    Raises:
        ValidationError: unknown target stage or missing reason.
        NotFoundError: no such solution.
    """
    if stage not in SOLUTION_STAGES:
        raise ValidationError(f"stage must be one of {list(SOLUTION_STAGES)}", details={"stage": str(stage)})
    if stage not in OVERRIDE_TARGETS:
        raise ValidationError(
            f"stage override target must be one of {list(OVERRIDE_TARGETS)}; "
            "review is entered by submitting approvals",
            details={"stage": stage},
        )
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required for a stage override", details={"reason": "required"})

    with solution_lock(solution_id):
        solution = get_or_raise(Solution, solution_id, for_update=True)
        with atomic("solution.stage_override", "Solution", solution.id):
            cancelled = _cancel_pending(solution.id, OVERRIDE_CANCEL_NOTE)
            previous, new_stage = _set_stage(solution, stage, actor, "override")
            write_audit(
                entity_type="solution",
                entity_id=solution.id,
                action="solution.stage_override",
                actor=actor,
                diff={
                    "stage": {"old": previous, "new": new_stage},
                    "reason": reason,
                    "cancelled_approvals": [a.id for a in cancelled],
                },
            )

    logger.warning(
        "Stage override solution_id=%s %s→%s by=%s reason=%r",
        solution.id, previous, new_stage, actor, reason,
        extra={"solution_id": solution.id, "actor": actor},
    )
    return solution.to_dict()
