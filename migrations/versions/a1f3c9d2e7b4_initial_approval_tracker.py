"""initial_approval_tracker

Creates the approval tracker schema:
  - solutions                 : proposals with stage + optimistic version counter
  - approval_workflows        : workflow templates
  - approval_steps            : ordered steps per workflow
  - approval_rules            : sequencing metadata per workflow
  - workflow_condition_rules  : AND-ed applicability conditions per workflow
  - approvals                 : one workflow applied to one solution
  - approval_history          : append-only decision log per solution
  - audit_logs                : generic lifecycle audit trail

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1f3c9d2e7b4
Revises:
Create Date: 2026-10-19 09:12:41.503118
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1f3c9d2e7b4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Solution ──────────────────────────────────────────────────────────
    if "solutions" not in existing:
        op.create_table(
            "solutions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("customer", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("opportunity", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("estimated_value", sa.Float(), nullable=False, server_default="0"),
            sa.Column("amount", sa.Float(), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
            sa.Column(
                "stage", sa.String(length=20), nullable=False, server_default="draft",
                comment="draft | review | approved | rejected",
            ),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="active"),
            sa.Column("owner", sa.String(length=150), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("project_type", sa.String(length=100), nullable=True),
            sa.Column("resource_breakdown", sa.Text(), nullable=True),
            sa.Column("scope_of_works_url", sa.String(length=500), nullable=True),
            sa.Column("additional_information", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_modified_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_solutions_stage", "solutions", ["stage"])

    # ── ApprovalWorkflow ──────────────────────────────────────────────────
    if "approval_workflows" not in existing:
        op.create_table(
            "approval_workflows",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column(
                "is_required", sa.Boolean(), nullable=False, server_default=sa.false(),
                comment="Mandatory for every matching solution vs. optional",
            ),
            sa.Column("notifications", sa.JSON(), nullable=False),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_active_archived", "approval_workflows", ["is_active", "is_archived"])

    # ── Workflow children ─────────────────────────────────────────────────
    if "approval_steps" not in existing:
        op.create_table(
            "approval_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("step_type", sa.String(length=30), nullable=False, server_default="review"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("step_order", sa.Integer(), nullable=False),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("assigned_approvers", sa.JSON(), nullable=False),
            sa.Column(
                "require_all_approvers", sa.Boolean(), nullable=False, server_default=sa.false(),
                comment="True = unanimous, False = any one approver",
            ),
            sa.ForeignKeyConstraint(["workflow_id"], ["approval_workflows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_steps_workflow_id", "approval_steps", ["workflow_id"])

    if "approval_rules" not in existing:
        op.create_table(
            "approval_rules",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("rule_type", sa.String(length=20), nullable=False, server_default="sequential"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("min_approvals", sa.Integer(), nullable=True),
            sa.Column("max_approvals", sa.Integer(), nullable=True),
            sa.Column("rule_order", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["workflow_id"], ["approval_workflows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_rules_workflow_id", "approval_rules", ["workflow_id"])

    if "workflow_condition_rules" not in existing:
        op.create_table(
            "workflow_condition_rules",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("field", sa.String(length=50), nullable=False),
            sa.Column("operator", sa.String(length=30), nullable=False, server_default="equals"),
            sa.Column("value", sa.String(length=255), nullable=False),
            sa.Column("rule_order", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["workflow_id"], ["approval_workflows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_condition_rules_workflow_id", "workflow_condition_rules", ["workflow_id"])

    # ── Approval ──────────────────────────────────────────────────────────
    if "approvals" not in existing:
        op.create_table(
            "approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("solution_id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=True),
            sa.Column("workflow_name", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("requester", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column(
                "status", sa.String(length=20), nullable=False, server_default="pending",
                comment="pending | approved | rejected",
            ),
            sa.Column("current_step", sa.String(length=200), nullable=False, server_default="Initial Review"),
            sa.Column("step_order", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("total_steps", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("assigned_approvers", sa.JSON(), nullable=False),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("processed_by", sa.String(length=150), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["solution_id"], ["solutions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["workflow_id"], ["approval_workflows.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approvals_solution_id", "approvals", ["solution_id"])
        op.create_index("ix_approvals_workflow_id", "approvals", ["workflow_id"])
        op.create_index("ix_approvals_status", "approvals", ["status"])
        op.create_index("ix_approval_solution_status", "approvals", ["solution_id", "status"])
        op.create_index("ix_approval_solution_workflow", "approvals", ["solution_id", "workflow_id"])

    if "approval_history" not in existing:
        op.create_table(
            "approval_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("solution_id", sa.Integer(), nullable=False),
            sa.Column("approval_id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=True),
            sa.Column("workflow_name", sa.String(length=200), nullable=False, server_default=""),
            sa.Column(
                "action", sa.String(length=20), nullable=False,
                comment="submitted | approved | rejected | cancelled",
            ),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("current_step", sa.String(length=200), nullable=True),
            sa.Column("step_order", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["solution_id"], ["solutions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approval_id"], ["approvals.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_history_solution_id", "approval_history", ["solution_id"])
        op.create_index("ix_approval_history_approval_id", "approval_history", ["approval_id"])

    # ── AuditLog ──────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False, comment="solution | workflow"),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs",
        "approval_history",
        "approvals",
        "workflow_condition_rules",
        "approval_rules",
        "approval_steps",
        "approval_workflows",
        "solutions",
    ):
        op.drop_table(table)
