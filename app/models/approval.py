"""
Approval runtime records.

Models:
    - Approval: one workflow applied to one solution, tracked to a decision
    - ApprovalHistory: append-only log of submissions and decisions per solution

Snapshots:
    workflow_name is copied at submit time so the record stays readable after
    the template is edited or deleted (workflow_id is SET NULL on delete).
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

APPROVAL_STATUSES = ("pending", "approved", "rejected")
APPROVAL_DECISIONS = ("approved", "rejected")
APPROVAL_PRIORITIES = ("low", "medium", "high")

DEFAULT_STEP_NAME = "Initial Review"
SYSTEM_ACTOR = "system"
SIBLING_CANCEL_NOTE = "Cancelled due to rejection in parallel workflow"
OVERRIDE_CANCEL_NOTE = "Cancelled due to stage override"


def _utcnow():
    return datetime.now(timezone.utc)


class Approval(db.Model):
    """
    Approval request for one (solution, workflow) pair.

    Business rules:
    - Created ``pending``; leaves ``pending`` exactly once and is never reopened.
    - ``notes`` is mandatory for rejections, optional for approvals.
    - At most one pending approval per (solution, workflow), enforced in
      approval_service.submit.
    """

    __tablename__ = "approvals"

    id = db.Column(db.Integer, primary_key=True)
    solution_id = db.Column(
        db.Integer,
        db.ForeignKey("solutions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_workflows.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    workflow_name = db.Column(db.String(200), nullable=False, default="")
    requester = db.Column(db.String(150), nullable=False, default="system")
    status = db.Column(
        db.String(20), nullable=False, default="pending", index=True,
        comment="pending | approved | rejected",
    )
    current_step = db.Column(db.String(200), nullable=False, default=DEFAULT_STEP_NAME)
    step_order = db.Column(db.Integer, nullable=False, default=1)
    total_steps = db.Column(db.Integer, nullable=False, default=0)
    assigned_approvers = db.Column(db.JSON, nullable=False, default=list)
    priority = db.Column(db.String(10), nullable=False, default="medium")
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by = db.Column(db.String(150), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    workflow = db.relationship("ApprovalWorkflow")

    __table_args__ = (
        db.Index("ix_approval_solution_status", "solution_id", "status"),
        db.Index("ix_approval_solution_workflow", "solution_id", "workflow_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "solutionId": self.solution_id,
            "workflowId": self.workflow_id,
            "workflowName": self.workflow_name,
            "requester": self.requester,
            "status": self.status,
            "currentStep": self.current_step,
            "stepOrder": self.step_order,
            "totalSteps": self.total_steps,
            "assignedApprovers": list(self.assigned_approvers or []),
            "priority": self.priority,
            "submittedAt": self.submitted_at.isoformat() if self.submitted_at else None,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "processedBy": self.processed_by,
            "notes": self.notes,
        }

    def __repr__(self) -> str:
        return f"<Approval #{self.id} solution={self.solution_id} workflow={self.workflow_id} {self.status}>"


class ApprovalHistory(db.Model):
    """Append-only history row. Never updated or deleted except with its solution."""

    __tablename__ = "approval_history"

    id = db.Column(db.Integer, primary_key=True)
    solution_id = db.Column(
        db.Integer,
        db.ForeignKey("solutions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approval_id = db.Column(
        db.Integer,
        db.ForeignKey("approvals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workflow_id = db.Column(db.Integer, nullable=True)
    workflow_name = db.Column(db.String(200), nullable=False, default="")
    action = db.Column(db.String(20), nullable=False, comment="submitted | approved | rejected | cancelled")
    status = db.Column(db.String(20), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system")
    notes = db.Column(db.Text, nullable=True)
    current_step = db.Column(db.String(200), nullable=True)
    step_order = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "solutionId": self.solution_id,
            "approvalId": self.approval_id,
            "workflowId": self.workflow_id,
            "workflowName": self.workflow_name,
            "action": self.action,
            "status": self.status,
            "actor": self.actor,
            "notes": self.notes,
            "currentStep": self.current_step,
            "stepOrder": self.step_order,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


def append_history(approval: Approval, action: str, actor: str, notes: str | None = None) -> ApprovalHistory:
    """Append one history row for *approval*. Uses ``flush`` so callers keep transaction control."""
    entry = ApprovalHistory(
        solution_id=approval.solution_id,
        approval_id=approval.id,
        workflow_id=approval.workflow_id,
        workflow_name=approval.workflow_name,
        action=action,
        status=approval.status,
        actor=actor,
        notes=notes if notes is not None else approval.notes,
        current_step=approval.current_step,
        step_order=approval.step_order,
    )
    db.session.add(entry)
    db.session.flush()
    return entry
