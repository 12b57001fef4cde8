"""
Approval Blueprint.

Routes:
  GET    /approvals            – list approvals (filters below)
  POST   /approvals            – submit a solution to one or more workflows
  GET    /approvals/<aid>      – single approval
  PUT    /approvals/<aid>      – approve / reject a pending approval
"""

from flask import Blueprint, jsonify, request

import app.services.approval_service as approvals
from app.utils.errors import E, api_error, register_error_handlers
from app.utils.helpers import current_user, json_body

approval_bp = Blueprint("approval_bp", __name__, url_prefix="/api/v1")
register_error_handlers(approval_bp)


@approval_bp.route("/approvals", methods=["GET"])
def list_approvals():
    """List approvals.

    Query params: solution_id, workflow_id, status, assigned_to, priority
    """
    filters = {
        "solution_id": request.args.get("solution_id", type=int),
        "workflow_id": request.args.get("workflow_id", type=int),
        "status": request.args.get("status"),
        "assigned_to": request.args.get("assigned_to"),
        "priority": request.args.get("priority"),
    }
    return jsonify(approvals.list_approvals(filters))


@approval_bp.route("/approvals", methods=["POST"])
def submit_approvals():
    """Submit a solution for approval.

    Body: { solutionId, workflowIds: [int], priority? }
    Returns: 201 with the created approvals.
    """
    data, err = json_body()
    if err:
        return err
    solution_id = data.get("solutionId", data.get("solution_id"))
    workflow_ids = data.get("workflowIds", data.get("workflow_ids"))
    if solution_id in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "solutionId is required", details={"solutionId": "required"})
    created = approvals.submit(
        solution_id, workflow_ids, current_user(), priority=data.get("priority"),
    )
    return jsonify(created), 201


@approval_bp.route("/approvals/<int:aid>", methods=["GET"])
def get_approval(aid):
    return jsonify(approvals.get_approval(aid))


@approval_bp.route("/approvals/<int:aid>", methods=["PUT"])
def decide(aid):
    """Approve or reject.

    Body: { status|decision: "approved"|"rejected", notes }
    """
    data, err = json_body()
    if err:
        return err
    decision = data.get("decision") or data.get("status")
    result = approvals.process(aid, decision, data.get("notes"), current_user())
    return jsonify(result)
