"""
Workflow Definition Store: approval workflow templates.

All business logic for creating, editing and deleting ApprovalWorkflow
templates lives here.

Rules:
  - db.session.commit() happens only in this file (via ``atomic``).
  - Steps, rules and condition rules are replaced wholesale when present in
    an update payload; they are never diffed or merged.
  - Step ``order`` is unique and contiguous from 1 after every write.
  - Condition rules are validated on save; a rule that cannot be evaluated
    is rejected here instead of failing silently at match time.

Payload keys follow the API representation (camelCase); snake_case aliases
are accepted for the scalar flags.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select, update

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.approval import Approval
from app.models.audit import field_diff, write_audit
from app.models.workflow import (
    NOTIFICATION_CHANNELS,
    RULE_TYPES,
    STEP_TYPES,
    ApprovalRule,
    ApprovalStep,
    ApprovalWorkflow,
    WorkflowConditionRule,
)
from app.services.condition_matcher import validate_condition_rule
from app.services.helpers.queries import atomic, get_or_raise

logger = logging.getLogger(__name__)

_FLAG_KEYS = {
    "is_active": ("isActive", "is_active"),
    "is_archived": ("isArchived", "is_archived"),
    "is_required": ("isRequired", "is_required"),
}


def _pick(data: dict, *keys, default=None):
    for key in keys:
        if key in data:
            return data[key]
    return default


def _has_any(data: dict, *keys) -> bool:
    return any(key in data for key in keys)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_order(value, label: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        order = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an integer", details={"order": str(value)})
    if order < 1:
        raise ValidationError(f"{label} must be >= 1", details={"order": str(value)})
    return order


def _string_list(value, label: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{label} must be an array")
    return [str(v).strip() for v in value if str(v).strip()]


# ── Child collection builders ─────────────────────────────────────────────────


def _build_steps(raw_steps) -> list[ApprovalStep]:
    """Validate step payloads and return ApprovalStep rows numbered 1..n."""
    if not isinstance(raw_steps, list):
        raise ValidationError("steps must be an array")

    errors = []
    seen_orders = set()
    staged = []
    for position, raw in enumerate(raw_steps, 1):
        if not isinstance(raw, dict):
            errors.append(f"steps[{position}] must be an object")
            continue
        name = (raw.get("name") or "").strip()
        step_type = (raw.get("type") or raw.get("step_type") or "review").strip()
        if not name:
            errors.append(f"steps[{position}].name is required")
        if step_type not in STEP_TYPES:
            errors.append(f"steps[{position}].type must be one of {sorted(STEP_TYPES)}")
        order = _as_order(raw.get("order"), f"steps[{position}].order")
        if order is not None:
            if order in seen_orders:
                errors.append(f"steps[{position}].order {order} is duplicated")
            seen_orders.add(order)
        staged.append((order if order is not None else position, position, name, step_type, raw))
    if errors:
        raise ValidationError("; ".join(errors))

    staged.sort(key=lambda item: (item[0], item[1]))
    steps = []
    for new_order, (_, position, name, step_type, raw) in enumerate(staged, 1):
        steps.append(ApprovalStep(
            name=name,
            step_type=step_type,
            description=raw.get("description") or "",
            step_order=new_order,
            is_required=_as_bool(_pick(raw, "isRequired", "is_required", default=True)),
            assigned_approvers=_string_list(
                _pick(raw, "assignedApprovers", "assigned_approvers"),
                f"steps[{position}].assignedApprovers",
            ),
            require_all_approvers=_as_bool(
                _pick(raw, "requireAllApprovers", "require_all_approvers", default=False)
            ),
        ))
    return steps


def _build_rules(raw_rules) -> list[ApprovalRule]:
    if not isinstance(raw_rules, list):
        raise ValidationError("rules must be an array")

    rules = []
    for position, raw in enumerate(raw_rules, 1):
        if not isinstance(raw, dict):
            raise ValidationError(f"rules[{position}] must be an object")
        name = (raw.get("name") or "").strip()
        rule_type = (raw.get("type") or raw.get("rule_type") or "sequential").strip()
        if not name:
            raise ValidationError(f"rules[{position}].name is required")
        if rule_type not in RULE_TYPES:
            raise ValidationError(f"rules[{position}].type must be one of {sorted(RULE_TYPES)}")
        rules.append(ApprovalRule(
            name=name,
            rule_type=rule_type,
            description=raw.get("description") or "",
            min_approvals=_as_order(_pick(raw, "minApprovals", "min_approvals"), f"rules[{position}].minApprovals"),
            max_approvals=_as_order(_pick(raw, "maxApprovals", "max_approvals"), f"rules[{position}].maxApprovals"),
            rule_order=_as_order(raw.get("order"), f"rules[{position}].order") or position,
        ))
    return rules


def _build_condition_rules(raw_conditions) -> list[WorkflowConditionRule]:
    if not isinstance(raw_conditions, list):
        raise ValidationError("conditionRules must be an array")

    built = []
    for position, raw in enumerate(raw_conditions, 1):
        clean = validate_condition_rule(raw, position)
        built.append(WorkflowConditionRule(
            field=clean["field"],
            operator=clean["operator"],
            value=clean["value"],
            rule_order=_as_order(clean["order"], f"conditionRules[{position}].order") or position,
        ))
    return built


def _notifications(value) -> list[str]:
    channels = _string_list(value, "notifications")
    unknown = sorted(set(channels) - NOTIFICATION_CHANNELS)
    if unknown:
        raise ValidationError(
            f"notifications must be a subset of {sorted(NOTIFICATION_CHANNELS)}",
            details={"notifications": ", ".join(unknown)},
        )
    return list(dict.fromkeys(channels))


def _renumber(steps: list[ApprovalStep]) -> None:
    for order, step in enumerate(steps, 1):
        step.step_order = order


# ── Public API ────────────────────────────────────────────────────────────────


def create_workflow(data: dict, actor: str) -> dict:
    """Create a workflow with its steps, rules and condition rules in one transaction.

    Raises:
        ValidationError / InvalidConditionError: bad payload.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})

    workflow = ApprovalWorkflow(
        name=name,
        description=data.get("description") or "",
        is_active=_as_bool(_pick(data, *_FLAG_KEYS["is_active"], default=True)),
        is_archived=_as_bool(_pick(data, *_FLAG_KEYS["is_archived"], default=False)),
        is_required=_as_bool(_pick(data, *_FLAG_KEYS["is_required"], default=False)),
        notifications=_notifications(data.get("notifications")),
        created_by=actor,
    )
    workflow.steps = _build_steps(data.get("steps") or [])
    workflow.rules = _build_rules(data.get("rules") or [])
    workflow.condition_rules = _build_condition_rules(
        _pick(data, "conditionRules", "condition_rules", default=[]) or []
    )

    with atomic("workflow.create", "ApprovalWorkflow"):
        db.session.add(workflow)
        db.session.flush()
        write_audit(
            entity_type="workflow",
            entity_id=workflow.id,
            action="workflow.create",
            actor=actor,
            diff={"name": {"old": None, "new": workflow.name}},
        )

    logger.info(
        "Workflow created id=%s name=%r steps=%d conditions=%d by=%s",
        workflow.id, workflow.name, len(workflow.steps), len(workflow.condition_rules), actor,
        extra={"workflow_id": workflow.id, "actor": actor},
    )
    return workflow.to_dict()


def update_workflow(workflow_id: int, data: dict, actor: str) -> dict:
    """Patch scalar fields; replace step / rule / condition collections when supplied.

    The whole payload is validated before anything on the workflow changes.

    Raises:
        NotFoundError: no such workflow.
        ValidationError / InvalidConditionError: bad payload.
    """
    workflow = get_or_raise(ApprovalWorkflow, workflow_id, label="Workflow")
    before = {k: v for k, v in workflow.to_dict().items() if k not in ("steps", "rules", "conditionRules")}

    changes = {}
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be empty", details={"name": "required"})
        changes["name"] = name
    if "description" in data:
        changes["description"] = data.get("description") or ""
    for attr, keys in _FLAG_KEYS.items():
        if _has_any(data, *keys):
            changes[attr] = _as_bool(_pick(data, *keys))
    if "notifications" in data:
        changes["notifications"] = _notifications(data.get("notifications"))

    collections = {}
    if "steps" in data:
        collections["steps"] = _build_steps(data.get("steps") or [])
    if "rules" in data:
        collections["rules"] = _build_rules(data.get("rules") or [])
    if _has_any(data, "conditionRules", "condition_rules"):
        collections["condition_rules"] = _build_condition_rules(
            _pick(data, "conditionRules", "condition_rules") or []
        )

    with atomic("workflow.update", "ApprovalWorkflow", workflow.id):
        for attr, value in changes.items():
            setattr(workflow, attr, value)
        for attr, rows in collections.items():
            setattr(workflow, attr, rows)
        db.session.flush()

        after = {k: v for k, v in workflow.to_dict().items() if k not in ("steps", "rules", "conditionRules")}
        diff = field_diff(before, after)
        diff.pop("updatedAt", None)
        for attr in collections:
            diff[attr] = {"old": "replaced", "new": "replaced"}
        write_audit(
            entity_type="workflow",
            entity_id=workflow.id,
            action="workflow.update",
            actor=actor,
            diff=diff,
        )

    logger.info(
        "Workflow updated id=%s replaced=%s by=%s",
        workflow.id, ",".join(collections) or "-", actor,
        extra={"workflow_id": workflow.id, "actor": actor},
    )
    return workflow.to_dict()


def delete_workflow(workflow_id: int, actor: str) -> None:
    """Delete a workflow and its steps, rules and condition rules.

    Historical approvals keep their workflow_name snapshot; the FK is cleared.

    Raises:
        NotFoundError: no such workflow.
        ConflictError: approvals from this workflow are still pending.
    """
    workflow = get_or_raise(ApprovalWorkflow, workflow_id, label="Workflow")

    pending = db.session.execute(
        select(db.func.count(Approval.id)).where(
            Approval.workflow_id == workflow.id,
            Approval.status == "pending",
        )
    ).scalar_one()
    if pending:
        raise ConflictError(
            "Workflow", "id", str(workflow.id),
            message=f"Workflow id={workflow.id} has {pending} pending approval(s); process them first",
        )

    with atomic("workflow.delete", "ApprovalWorkflow", workflow.id):
        db.session.execute(
            update(Approval)
            .where(Approval.workflow_id == workflow.id)
            .values(workflow_id=None)
        )
        write_audit(
            entity_type="workflow",
            entity_id=workflow.id,
            action="workflow.delete",
            actor=actor,
            diff={"name": {"old": workflow.name, "new": None}},
        )
        db.session.delete(workflow)

    logger.info(
        "Workflow deleted id=%s by=%s", workflow_id, actor,
        extra={"workflow_id": workflow_id, "actor": actor},
    )


def get_workflow(workflow_id: int) -> dict:
    return get_or_raise(ApprovalWorkflow, workflow_id, label="Workflow").to_dict()


def list_workflows(filters: dict | None = None) -> list[dict]:
    """List workflows, optionally filtered.

    Filters: search (name/description, case-insensitive), is_active,
    is_archived, is_required, created_by.
    """
    filters = filters or {}
    stmt = select(ApprovalWorkflow)

    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search.lower()}%"
        stmt = stmt.where(or_(
            db.func.lower(ApprovalWorkflow.name).like(like),
            db.func.lower(ApprovalWorkflow.description).like(like),
        ))
    for attr in ("is_active", "is_archived", "is_required"):
        value = filters.get(attr)
        if value is not None:
            stmt = stmt.where(getattr(ApprovalWorkflow, attr) == _as_bool(value))
    if filters.get("created_by"):
        stmt = stmt.where(ApprovalWorkflow.created_by == filters["created_by"])

    rows = db.session.execute(stmt.order_by(ApprovalWorkflow.id)).scalars().all()
    return [w.to_dict() for w in rows]


def list_active() -> list[ApprovalWorkflow]:
    """Candidate set for matching: active and not archived."""
    stmt = (
        select(ApprovalWorkflow)
        .where(ApprovalWorkflow.is_active.is_(True), ApprovalWorkflow.is_archived.is_(False))
        .order_by(ApprovalWorkflow.id)
    )
    return list(db.session.execute(stmt).scalars().all())


def move_step(workflow_id: int, step_id: int, new_order, actor: str) -> dict:
    """Move one step to a 1-based position and renumber all steps from 1.

    Positions beyond the last step clamp to the end.

    Raises:
        NotFoundError: workflow or step missing.
        ValidationError: new_order is not a positive integer.
    """
    workflow = get_or_raise(ApprovalWorkflow, workflow_id, label="Workflow")
    target = _as_order(new_order, "order")
    if target is None:
        raise ValidationError("order is required", details={"order": "required"})

    steps = list(workflow.steps)
    step = next((s for s in steps if str(s.id) == str(step_id)), None)
    if step is None:
        raise NotFoundError(resource="ApprovalStep", resource_id=step_id)

    old_order = step.step_order
    steps.remove(step)
    steps.insert(min(target, len(steps) + 1) - 1, step)

    with atomic("workflow.move_step", "ApprovalWorkflow", workflow.id):
        _renumber(steps)
        write_audit(
            entity_type="workflow",
            entity_id=workflow.id,
            action="workflow.move_step",
            actor=actor,
            diff={f"step:{step.id}": {"old": old_order, "new": step.step_order}},
        )

    logger.info(
        "Workflow step moved workflow_id=%s step_id=%s %s→%s by=%s",
        workflow.id, step.id, old_order, step.step_order, actor,
        extra={"workflow_id": workflow.id, "actor": actor},
    )
    return workflow.to_dict()
