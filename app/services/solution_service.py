"""
Solution management service.

CRUD over Solution records. ``stage`` is never writable here: it starts at
``draft`` and afterwards moves only through app.services.stage_transition.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import delete, or_, select

from app.core.exceptions import ValidationError
from app.models import db
from app.models.approval import Approval, ApprovalHistory
from app.models.audit import field_diff, write_audit
from app.models.solution import SOLUTION_STAGES, Solution
from app.services.helpers.locking import solution_lock
from app.services.helpers.queries import atomic, get_or_raise

logger = logging.getLogger(__name__)

# API key → model attribute
_TEXT_FIELDS = {
    "name": "name",
    "customer": "customer",
    "opportunity": "opportunity",
    "status": "status",
    "owner": "owner",
    "description": "description",
    "projectType": "project_type",
    "resourceBreakdown": "resource_breakdown",
    "scopeOfWorksUrl": "scope_of_works_url",
    "additionalInformation": "additional_information",
}
_NUMERIC_FIELDS = {
    "estimatedValue": "estimated_value",
    "amount": "amount",
}


def _non_negative(value, key: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number", details={key: "numeric"})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number", details={key: "numeric"})
    if number < 0:
        raise ValidationError(f"{key} must be >= 0", details={key: "non-negative"})
    return number


def _currency(value) -> str:
    code = str(value or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError("currency must be a 3-letter code", details={"currency": str(value)})
    return code


def _collect_changes(data: dict) -> dict:
    """Map an API payload onto model attributes, validating as it goes."""
    changes = {}
    for key, attr in _TEXT_FIELDS.items():
        if key in data or attr in data:
            raw = data.get(key, data.get(attr))
            changes[attr] = "" if raw is None else str(raw).strip()
    for key, attr in _NUMERIC_FIELDS.items():
        if key in data or attr in data:
            raw = data.get(key, data.get(attr))
            changes[attr] = None if raw is None and attr == "amount" else _non_negative(raw, key)
    if "currency" in data:
        changes["currency"] = _currency(data["currency"])
    return changes


def create_solution(data: dict, actor: str) -> dict:
    """Create a solution in ``draft``.

    ``amount`` defaults to the estimated value and ``currency`` to
    DEFAULT_CURRENCY.
    """
    if "stage" in data and data["stage"] not in (None, "draft"):
        raise ValidationError("new solutions always start in draft", details={"stage": str(data["stage"])})

    changes = _collect_changes(data)
    if not changes.get("name"):
        raise ValidationError("name is required", details={"name": "required"})

    changes.setdefault("estimated_value", 0.0)
    if changes.get("amount") is None:
        changes["amount"] = changes["estimated_value"]
    changes.setdefault("currency", current_app.config.get("DEFAULT_CURRENCY", "USD"))
    if not changes.get("status"):
        changes["status"] = "active"

    solution = Solution(stage="draft", created_by=actor, last_modified_by=actor, **changes)
    with atomic("solution.create", "Solution"):
        db.session.add(solution)
        db.session.flush()
        write_audit(
            entity_type="solution",
            entity_id=solution.id,
            action="solution.create",
            actor=actor,
            diff={"name": {"old": None, "new": solution.name}},
        )

    logger.info(
        "Solution created id=%s name=%r value=%s by=%s",
        solution.id, solution.name, solution.estimated_value, actor,
        extra={"solution_id": solution.id, "actor": actor},
    )
    return solution.to_dict()


def get_solution(solution_id: int) -> dict:
    return get_or_raise(Solution, solution_id).to_dict()


def list_solutions(filters: dict | None = None) -> list[dict]:
    """List solutions, newest first.

    Filters: stage, status, search (name / customer / opportunity).
    """
    filters = filters or {}
    stmt = select(Solution)

    stage = filters.get("stage")
    if stage:
        if stage not in SOLUTION_STAGES:
            raise ValidationError(f"stage must be one of {list(SOLUTION_STAGES)}", details={"stage": stage})
        stmt = stmt.where(Solution.stage == stage)
    if filters.get("status"):
        stmt = stmt.where(Solution.status == filters["status"])
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search.lower()}%"
        stmt = stmt.where(or_(
            db.func.lower(Solution.name).like(like),
            db.func.lower(Solution.customer).like(like),
            db.func.lower(Solution.opportunity).like(like),
        ))

    rows = db.session.execute(stmt.order_by(Solution.id.desc())).scalars().all()
    return [s.to_dict() for s in rows]


def update_solution(solution_id: int, data: dict, actor: str) -> dict:
    """Patch solution fields. ``stage`` is rejected; use a stage override instead.

    Raises:
        NotFoundError: no such solution.
        ValidationError: bad payload or an attempt to write ``stage``.
    """
    if "stage" in data:
        raise ValidationError(
            "stage cannot be updated directly; it follows the solution's approvals",
            details={"stage": "read-only"},
        )
    changes = _collect_changes(data)
    if "name" in changes and not changes["name"]:
        raise ValidationError("name cannot be empty", details={"name": "required"})

    with solution_lock(solution_id):
        solution = get_or_raise(Solution, solution_id, for_update=True)
        before = solution.to_dict()

        with atomic("solution.update", "Solution", solution.id):
            for attr, value in changes.items():
                setattr(solution, attr, value)
            solution.last_modified_by = actor
            db.session.flush()

            diff = field_diff(before, solution.to_dict())
            for key in ("updatedAt", "version", "lastModifiedBy"):
                diff.pop(key, None)
            write_audit(
                entity_type="solution",
                entity_id=solution.id,
                action="solution.update",
                actor=actor,
                diff=diff,
            )

    logger.info(
        "Solution updated id=%s fields=%s by=%s",
        solution.id, sorted(changes), actor,
        extra={"solution_id": solution.id, "actor": actor},
    )
    return solution.to_dict()


def delete_solution(solution_id: int, actor: str) -> None:
    """Delete a solution together with its approvals and their history."""
    with solution_lock(solution_id):
        solution = get_or_raise(Solution, solution_id, for_update=True)
        sid = solution.id

        with atomic("solution.delete", "Solution", sid):
            db.session.execute(delete(ApprovalHistory).where(ApprovalHistory.solution_id == sid))
            removed = db.session.execute(delete(Approval).where(Approval.solution_id == sid)).rowcount
            write_audit(
                entity_type="solution",
                entity_id=sid,
                action="solution.delete",
                actor=actor,
                diff={"name": {"old": solution.name, "new": None}, "approvals_removed": removed},
            )
            db.session.delete(solution)

    logger.info(
        "Solution deleted id=%s approvals_removed=%s by=%s", sid, removed, actor,
        extra={"solution_id": sid, "actor": actor},
    )
