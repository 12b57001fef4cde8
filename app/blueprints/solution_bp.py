"""Solution blueprint.

Endpoints:
  CRUD                  GET/POST /api/v1/solutions
                        GET/PUT/DELETE /api/v1/solutions/<id>
  Workflow selection    GET  /api/v1/solutions/<id>/matching-workflows
  Approval trail        GET  /api/v1/solutions/<id>/approval-history
                        GET  /api/v1/solutions/<id>/approval-status
  Stage override        POST /api/v1/solutions/<id>/stage

The acting user comes from the X-User header (no auth enforcement).
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import app.services.approval_service as approvals
import app.services.solution_service as solutions
from app.models.solution import Solution
from app.services import stage_transition
from app.services.condition_matcher import find_matching_workflows
from app.services.helpers.queries import get_or_raise
from app.utils.errors import register_error_handlers
from app.utils.helpers import current_user, json_body

logger = logging.getLogger(__name__)

solution_bp = Blueprint("solution_bp", __name__, url_prefix="/api/v1")
register_error_handlers(solution_bp)


# ═════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════


@solution_bp.route("/solutions", methods=["GET"])
def list_solutions():
    """List solutions.

    Query params: stage, status, search
    """
    filters = {
        "stage": request.args.get("stage"),
        "status": request.args.get("status"),
        "search": request.args.get("search"),
    }
    return jsonify(solutions.list_solutions(filters)), 200


@solution_bp.route("/solutions", methods=["POST"])
def create_solution():
    """Create a solution in draft.

    Body: { name, customer?, opportunity?, estimatedValue?, amount?, currency?,
            projectType?, description?, owner?, status?, ... }
    """
    data, err = json_body()
    if err:
        return err
    return jsonify(solutions.create_solution(data, current_user())), 201


@solution_bp.route("/solutions/<int:solution_id>", methods=["GET"])
def get_solution(solution_id):
    return jsonify(solutions.get_solution(solution_id)), 200


@solution_bp.route("/solutions/<int:solution_id>", methods=["PUT"])
def update_solution(solution_id):
    """Patch a solution. ``stage`` is read-only here; see POST .../stage."""
    data, err = json_body()
    if err:
        return err
    return jsonify(solutions.update_solution(solution_id, data, current_user())), 200


@solution_bp.route("/solutions/<int:solution_id>", methods=["DELETE"])
def delete_solution(solution_id):
    solutions.delete_solution(solution_id, current_user())
    return "", 204


# ═════════════════════════════════════════════════════════════════════════
# Workflow selection & approval trail
# ═════════════════════════════════════════════════════════════════════════


@solution_bp.route("/solutions/<int:solution_id>/matching-workflows", methods=["GET"])
def matching_workflows(solution_id):
    """Active workflows whose conditions hold for the solution.

    Returns: {"required": [workflow], "optional": [workflow]}
    """
    solution = get_or_raise(Solution, solution_id)
    return jsonify(find_matching_workflows(solution)), 200


@solution_bp.route("/solutions/<int:solution_id>/approval-history", methods=["GET"])
def approval_history(solution_id):
    return jsonify(approvals.get_history(solution_id)), 200


@solution_bp.route("/solutions/<int:solution_id>/approval-status", methods=["GET"])
def approval_status(solution_id):
    """Stored stage, the stage derived from the approvals, and status counts."""
    return jsonify(stage_transition.approval_status(solution_id)), 200


@solution_bp.route("/solutions/<int:solution_id>/stage", methods=["POST"])
def override_stage(solution_id):
    """Explicit stage override.

    Body: { stage: "draft"|"approved"|"rejected", reason }
    """
    data, err = json_body()
    if err:
        return err
    result = stage_transition.override_stage(
        solution_id, data.get("stage"), data.get("reason"), current_user(),
    )
    return jsonify(result), 200
