"""
Approval workflow templates.

Models:
    - ApprovalWorkflow: named, reusable template
    - ApprovalStep: ordered stage within a workflow
    - ApprovalRule: sequencing metadata (stored, not enforced)
    - WorkflowConditionRule: applicability predicate over a solution attribute

Child collections are owned by the workflow (delete-orphan) and are replaced
wholesale on edit; see app.services.workflow_service.update_workflow.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

STEP_TYPES = frozenset({
    "review",
    "approve",
    "sign_off",
    "technical_review",
    "business_review",
    "legal_review",
    "finance_review",
})

RULE_TYPES = frozenset({"sequential", "parallel", "any_one", "all_required", "majority"})

NOTIFICATION_CHANNELS = frozenset({"email", "slack", "sms", "in_app"})

CONDITION_OPERATORS = frozenset({
    "equals",
    "not_equals",
    "contains",
    "greater_than",
    "less_than",
    "greater_than_or_equal",
    "less_than_or_equal",
})

ORDINAL_OPERATORS = frozenset({
    "greater_than",
    "less_than",
    "greater_than_or_equal",
    "less_than_or_equal",
})


def _utcnow():
    return datetime.now(timezone.utc)


class ApprovalWorkflow(db.Model):
    """Reusable approval template applied to solutions."""

    __tablename__ = "approval_workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)
    is_required = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Mandatory for every matching solution vs. optional",
    )
    notifications = db.Column(db.JSON, nullable=False, default=list)
    created_by = db.Column(db.String(150), nullable=False, default="system")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    steps = db.relationship(
        "ApprovalStep",
        backref="workflow",
        order_by="ApprovalStep.step_order",
        cascade="all, delete-orphan",
    )
    rules = db.relationship(
        "ApprovalRule",
        order_by="ApprovalRule.rule_order",
        cascade="all, delete-orphan",
    )
    condition_rules = db.relationship(
        "WorkflowConditionRule",
        order_by="WorkflowConditionRule.rule_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.Index("ix_workflow_active_archived", "is_active", "is_archived"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "isActive": self.is_active,
            "isArchived": self.is_archived,
            "isRequired": self.is_required,
            "steps": [s.to_dict() for s in sorted(self.steps, key=lambda s: s.step_order)],
            "rules": [r.to_dict() for r in self.rules],
            "conditionRules": [c.to_dict() for c in self.condition_rules],
            "notifications": list(self.notifications or []),
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow #{self.id} {self.name!r}>"


class ApprovalStep(db.Model):
    """One ordered stage of a workflow. ``step_type`` is a presentation category only."""

    __tablename__ = "approval_steps"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    step_type = db.Column(db.String(30), nullable=False, default="review")
    description = db.Column(db.Text, nullable=True, default="")
    step_order = db.Column(db.Integer, nullable=False)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    assigned_approvers = db.Column(db.JSON, nullable=False, default=list)
    require_all_approvers = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="True = unanimous, False = any one approver",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.step_type,
            "description": self.description,
            "order": self.step_order,
            "isRequired": self.is_required,
            "assignedApprovers": list(self.assigned_approvers or []),
            "requireAllApprovers": self.require_all_approvers,
        }


class ApprovalRule(db.Model):
    __tablename__ = "approval_rules"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    rule_type = db.Column(db.String(20), nullable=False, default="sequential")
    description = db.Column(db.Text, nullable=True, default="")
    min_approvals = db.Column(db.Integer, nullable=True)
    max_approvals = db.Column(db.Integer, nullable=True)
    rule_order = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.rule_type,
            "description": self.description,
            "minApprovals": self.min_approvals,
            "maxApprovals": self.max_approvals,
            "order": self.rule_order,
        }


class WorkflowConditionRule(db.Model):
    """Predicate over a solution attribute; all rules of a workflow are AND-ed."""

    __tablename__ = "workflow_condition_rules"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field = db.Column(db.String(50), nullable=False)
    operator = db.Column(db.String(30), nullable=False, default="equals")
    value = db.Column(db.String(255), nullable=False)
    rule_order = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "order": self.rule_order,
        }
