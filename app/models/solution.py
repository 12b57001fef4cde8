"""
Solution domain model.

A Solution is a sales / project proposal that moves through approval
workflows. ``stage`` is owned by the stage transition engine
(app.services.stage_transition) and is never patched directly by callers.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

SOLUTION_STAGES = ("draft", "review", "approved", "rejected")


def _utcnow():
    return datetime.now(timezone.utc)


class Solution(db.Model):
    """
    Proposal document subject to approval.

    Business rules:
    - New solutions always start in ``draft``.
    - ``version`` is bumped on every flush; a concurrent writer holding a
      stale copy gets StaleDataError instead of silently overwriting the stage.
    - Approvals and their history rows are deleted before the solution row
      (see solution_service.delete_solution); the FK cascade covers raw deletes.
    """

    __tablename__ = "solutions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    customer = db.Column(db.String(255), nullable=False, default="")
    opportunity = db.Column(db.String(255), nullable=False, default="")
    estimated_value = db.Column(db.Float, nullable=False, default=0)
    amount = db.Column(db.Float, nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    stage = db.Column(
        db.String(20), nullable=False, default="draft", index=True,
        comment="draft | review | approved | rejected",
    )
    status = db.Column(db.String(30), nullable=False, default="active")
    owner = db.Column(db.String(150), nullable=True)

    # Free-text metadata
    description = db.Column(db.Text, nullable=True, default="")
    project_type = db.Column(db.String(100), nullable=True, default="")
    resource_breakdown = db.Column(db.Text, nullable=True)
    scope_of_works_url = db.Column(db.String(500), nullable=True)
    additional_information = db.Column(db.Text, nullable=True)

    # Audit
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by = db.Column(db.String(150), nullable=False, default="system")
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    last_modified_by = db.Column(db.String(150), nullable=False, default="system")

    version = db.Column(db.Integer, nullable=False)

    approvals = db.relationship(
        "Approval",
        backref="solution",
        lazy="dynamic",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "customer": self.customer,
            "opportunity": self.opportunity,
            "estimatedValue": self.estimated_value,
            "amount": self.amount,
            "currency": self.currency,
            "stage": self.stage,
            "status": self.status,
            "owner": self.owner,
            "description": self.description,
            "projectType": self.project_type,
            "resourceBreakdown": self.resource_breakdown,
            "scopeOfWorksUrl": self.scope_of_works_url,
            "additionalInformation": self.additional_information,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "createdBy": self.created_by,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "lastModifiedBy": self.last_modified_by,
            "version": self.version,
        }

    def __repr__(self) -> str:
        return f"<Solution #{self.id} {self.name!r} stage={self.stage}>"
