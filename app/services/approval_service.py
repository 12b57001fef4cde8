"""
Approval Record Manager.

Creates approvals when a solution is submitted to one or more workflows,
records decisions, and keeps the append-only approval history. Stage changes
are delegated to app.services.stage_transition inside the same transaction.

Each mutation for a solution runs under ``solution_lock`` with the solution
row loaded ``FOR UPDATE``; the whole read-recompute-write sequence commits
once via ``atomic``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from app.core.exceptions import ConflictError, ValidationError
from app.models import db
from app.models.approval import (
    APPROVAL_DECISIONS,
    APPROVAL_PRIORITIES,
    APPROVAL_STATUSES,
    DEFAULT_STEP_NAME,
    Approval,
    ApprovalHistory,
    append_history,
)
from app.models.solution import Solution
from app.models.workflow import ApprovalWorkflow
from app.services.helpers.locking import solution_lock
from app.services.helpers.queries import atomic, get_or_raise
from app.services.stage_transition import on_processed, on_submitted

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _priority_for(solution: Solution, explicit: str | None) -> str:
    """Explicit priority wins; otherwise derive from the solution's value."""
    if explicit:
        if explicit not in APPROVAL_PRIORITIES:
            raise ValidationError(
                f"priority must be one of {list(APPROVAL_PRIORITIES)}",
                details={"priority": str(explicit)},
            )
        return explicit

    value = solution.estimated_value or 0
    if value >= current_app.config["APPROVAL_PRIORITY_HIGH_VALUE"]:
        return "high"
    if value >= current_app.config["APPROVAL_PRIORITY_MEDIUM_VALUE"]:
        return "medium"
    return "low"


def _unique_ids(workflow_ids) -> list[int]:
    if not isinstance(workflow_ids, (list, tuple)) or not workflow_ids:
        raise ValidationError(
            "workflowIds must be a non-empty list",
            details={"workflowIds": "required"},
        )
    seen: list[int] = []
    for raw in workflow_ids:
        try:
            wid = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(
                f"workflowIds contains a non-integer id: {raw!r}",
                details={"workflowIds": "integers required"},
            )
        if wid not in seen:
            seen.append(wid)
    return seen


def _load_workflows(workflow_ids: list[int]) -> list[ApprovalWorkflow]:
    workflows = []
    for wid in workflow_ids:
        workflow = get_or_raise(ApprovalWorkflow, wid, label="Workflow")
        if not workflow.is_active or workflow.is_archived:
            raise ValidationError(
                f"Workflow {workflow.id} ({workflow.name}) is not active",
                details={"workflowId": workflow.id},
            )
        workflows.append(workflow)
    return workflows


def _has_pending(solution_id: int, workflow_id: int) -> bool:
    stmt = select(Approval.id).where(
        Approval.solution_id == solution_id,
        Approval.workflow_id == workflow_id,
        Approval.status == "pending",
    )
    return db.session.execute(stmt.limit(1)).first() is not None


# ── Submission ─────────────────────────────────────────────────────────────────


def submit(solution_id: int, workflow_ids, actor: str, priority: str | None = None) -> list[dict]:
    """Create one pending approval per workflow and move the solution to review.

    Returns:
        Serialized approvals, in the order of the (deduplicated) ids.

    Raises:
        NotFoundError: unknown solution or workflow.
        ValidationError: empty list, inactive workflow, bad priority,
            or the solution is already approved.
        ConflictError: a pending approval already exists for a workflow.
    """
    ids = _unique_ids(workflow_ids)

    with solution_lock(solution_id):
        solution = get_or_raise(Solution, solution_id, for_update=True)
        workflows = _load_workflows(ids)
        approval_priority = _priority_for(solution, priority)

        for workflow in workflows:
            if _has_pending(solution.id, workflow.id):
                raise ConflictError(
                    "Approval", "workflow_id", str(workflow.id),
                    message=(
                        f"Solution {solution.id} already has a pending approval "
                        f"for workflow {workflow.id} ({workflow.name})"
                    ),
                )

        created: list[Approval] = []
        with atomic("approval.submit", "Solution", solution.id):
            now = datetime.now(timezone.utc)
            for workflow in workflows:
                steps = list(workflow.steps)
                first = steps[0] if steps else None
                approval = Approval(
                    solution_id=solution.id,
                    workflow_id=workflow.id,
                    workflow_name=workflow.name,
                    requester=actor,
                    status="pending",
                    current_step=first.name if first else DEFAULT_STEP_NAME,
                    step_order=1,
                    total_steps=len(steps),
                    assigned_approvers=list(first.assigned_approvers or []) if first else [],
                    priority=approval_priority,
                    submitted_at=now,
                )
                db.session.add(approval)
                db.session.flush()
                append_history(approval, "submitted", actor)
                created.append(approval)
            on_submitted(solution, actor)

    logger.info(
        "Submitted solution_id=%s workflows=%s approvals=%s priority=%s by=%s",
        solution.id, ids, [a.id for a in created], approval_priority, actor,
        extra={"solution_id": solution.id, "actor": actor},
    )
    return [a.to_dict() for a in created]


# ── Decision ───────────────────────────────────────────────────────────────────


def process(approval_id: int, decision: str, notes: str | None, actor: str) -> dict:
    """Record an approve/reject decision on a pending approval.

    The approval update, its history row and the resulting stage transition
    (including sibling cancellation on rejection) commit together.

    Raises:
        ValidationError: unknown decision, or rejection without notes.
        NotFoundError: no such approval.
        ConflictError: the approval is no longer pending.
        PersistenceError: the store rejected the write.
    """
    if decision not in APPROVAL_DECISIONS:
        raise ValidationError(
            f"decision must be one of {list(APPROVAL_DECISIONS)}",
            details={"decision": str(decision)},
        )
    notes = notes.strip() if isinstance(notes, str) else None
    if decision == "rejected" and not notes:
        raise ValidationError(
            "notes are required when rejecting an approval",
            details={"notes": "required"},
        )

    approval = get_or_raise(Approval, approval_id)
    solution_id = approval.solution_id

    with solution_lock(solution_id):
        solution = get_or_raise(Solution, solution_id, for_update=True)
        db.session.refresh(approval)
        if approval.status != "pending":
            raise ConflictError(
                "Approval", "status", approval.status,
                message=f"Approval {approval.id} is already {approval.status}",
            )

        with atomic("approval.process", "Approval", approval.id):
            approval.status = decision
            approval.notes = notes or None
            approval.processed_at = datetime.now(timezone.utc)
            approval.processed_by = actor
            db.session.flush()
            append_history(approval, decision, actor)
            transition = on_processed(solution, approval, actor)

    logger.info(
        "Approval %s approval_id=%s solution_id=%s stage %s→%s cancelled=%s by=%s",
        decision, approval.id, solution_id,
        transition["previous_stage"], transition["new_stage"], transition["cancelled"], actor,
        extra={"approval_id": approval.id, "solution_id": solution_id, "actor": actor},
    )
    result = approval.to_dict()
    result["solutionStage"] = transition["new_stage"]
    result["cancelledApprovals"] = transition["cancelled"]
    return result


# ── Queries ────────────────────────────────────────────────────────────────────


def get_approval(approval_id: int) -> dict:
    return get_or_raise(Approval, approval_id).to_dict()


def list_approvals(filters: dict | None = None) -> list[dict]:
    """List approvals, newest first.

    Filters: solution_id, workflow_id, status, assigned_to, priority.
    """
    filters = filters or {}
    stmt = select(Approval)

    if filters.get("solution_id") is not None:
        stmt = stmt.where(Approval.solution_id == filters["solution_id"])
    if filters.get("workflow_id") is not None:
        stmt = stmt.where(Approval.workflow_id == filters["workflow_id"])
    status = filters.get("status")
    if status:
        if status not in APPROVAL_STATUSES:
            raise ValidationError(
                f"status must be one of {list(APPROVAL_STATUSES)}",
                details={"status": status},
            )
        stmt = stmt.where(Approval.status == status)
    if filters.get("priority"):
        stmt = stmt.where(Approval.priority == filters["priority"])

    approvals = db.session.execute(stmt.order_by(Approval.id.desc())).scalars().all()

    # JSON list membership is not portable across SQLite and PostgreSQL
    assigned_to = filters.get("assigned_to")
    if assigned_to:
        approvals = [a for a in approvals if assigned_to in (a.assigned_approvers or [])]

    return [a.to_dict() for a in approvals]


def get_history(solution_id: int) -> list[dict]:
    """Approval history of a solution, oldest first."""
    solution = get_or_raise(Solution, solution_id)
    stmt = (
        select(ApprovalHistory)
        .where(ApprovalHistory.solution_id == solution.id)
        .order_by(ApprovalHistory.created_at, ApprovalHistory.id)
    )
    return [h.to_dict() for h in db.session.execute(stmt).scalars().all()]