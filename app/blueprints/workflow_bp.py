"""Approval workflow template blueprint.

Endpoints:
  GET/POST        /api/v1/workflows
  GET/PUT/DELETE  /api/v1/workflows/<wid>
  POST            /api/v1/workflows/<wid>/steps/<step_id>/move   body: {order}

Archive / unarchive is a PUT with {"isArchived": true|false}.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import app.services.workflow_service as workflows
from app.utils.errors import register_error_handlers
from app.utils.helpers import current_user, json_body, query_bool

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow_bp", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


@workflow_bp.route("/workflows", methods=["GET"])
def list_workflows():
    """List workflow templates.

    Query params: search, is_active, is_archived, is_required, created_by
    """
    filters = {
        "search": request.args.get("search"),
        "is_active": query_bool("is_active"),
        "is_archived": query_bool("is_archived"),
        "is_required": query_bool("is_required"),
        "created_by": request.args.get("created_by"),
    }
    return jsonify(workflows.list_workflows(filters)), 200


@workflow_bp.route("/workflows", methods=["POST"])
def create_workflow():
    """Create a workflow template.

    Body: { name, description?, isActive?, isRequired?, notifications?,
            steps: [{name, type, order?, assignedApprovers?, ...}],
            rules: [{name, type, minApprovals?, ...}],
            conditionRules: [{field, operator, value}] }
    """
    data, err = json_body()
    if err:
        return err
    return jsonify(workflows.create_workflow(data, current_user())), 201


@workflow_bp.route("/workflows/<int:wid>", methods=["GET"])
def get_workflow(wid):
    return jsonify(workflows.get_workflow(wid)), 200


@workflow_bp.route("/workflows/<int:wid>", methods=["PUT"])
def update_workflow(wid):
    """Patch scalars; ``steps`` / ``rules`` / ``conditionRules`` replace whole collections."""
    data, err = json_body()
    if err:
        return err
    return jsonify(workflows.update_workflow(wid, data, current_user())), 200


@workflow_bp.route("/workflows/<int:wid>", methods=["DELETE"])
def delete_workflow(wid):
    workflows.delete_workflow(wid, current_user())
    return "", 204


@workflow_bp.route("/workflows/<int:wid>/steps/<int:step_id>/move", methods=["POST"])
def move_step(wid, step_id):
    data, err = json_body()
    if err:
        return err
    return jsonify(workflows.move_step(wid, step_id, data.get("order"), current_user())), 200
