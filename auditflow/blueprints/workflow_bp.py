"""
Engagement Workflow Blueprint.

HTTP endpoints for the engagement lifecycle state machine.

Endpoints:
    GET    /api/v1/engagements/<eid>/workflow
           Returns: state, display, progress, available + next actions.

    GET    /api/v1/engagements/<eid>/workflow/actions
           Returns: actions the acting user can perform right now.

    POST   /api/v1/engagements/<eid>/workflow/transitions
           Body: { "action": "<engagement action>", "notes": "..." }
           Returns: 200 with the new state, or
                    409 invalid_transition / concurrency_conflict,
                    422 precondition_not_met, 403 authorization_denied.

    GET    /api/v1/engagements/<eid>/workflow/actions/<action>/blocking
           Returns: every unmet requirement for the action.

    GET    /api/v1/engagements/<eid>/workflow/history
           Returns: transition log, oldest first.

    GET    /api/v1/engagements/<eid>/notifications?unread=true&limit=50
           Returns: workflow notifications addressed to the acting user
                    (or broadcast), newest first.

    PATCH  /api/v1/engagements/<eid>/checklist
           Body: { "<gating flag>": true|false, ... }

Layer contract:
    - Blueprint: parse input, resolve acting user, call service, shape JSON.
    - All state decisions and writes are owned by workflow_service.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from auditflow.auth import require_user
from auditflow.services import workflow_service
from auditflow.services.notification import NotificationService
from auditflow.services.record_store import SqlAlchemyRecordStore
from auditflow.services.workflow_service import WorkflowService
from auditflow.utils.errors import E, api_error, register_error_handlers
from auditflow.utils.helpers import json_body

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


def _service(acting_user) -> WorkflowService:
    notifier = NotificationService() if current_app.config.get("WORKFLOW_NOTIFICATIONS_ENABLED", True) else None
    return WorkflowService(SqlAlchemyRecordStore(acting_user.tenant_id), notifier)


# ── Read ──────────────────────────────────────────────────────────────────────


@workflow_bp.route("/engagements/<int:engagement_id>/workflow", methods=["GET"])
@require_user
def workflow_summary(engagement_id, acting_user):
    return jsonify(_service(acting_user).get_workflow_summary(engagement_id, acting_user)), 200


@workflow_bp.route("/engagements/<int:engagement_id>/workflow/actions", methods=["GET"])
@require_user
def available_actions(engagement_id, acting_user):
    actions = workflow_service.get_available_actions(_service(acting_user), engagement_id, acting_user)
    return jsonify({"engagement_id": engagement_id, "actions": actions}), 200


@workflow_bp.route("/engagements/<int:engagement_id>/workflow/actions/<action>/blocking", methods=["GET"])
@require_user
def blocking_requirements(engagement_id, action, acting_user):
    blocking = workflow_service.get_blocking_requirements(
        _service(acting_user), engagement_id, action, acting_user,
    )
    return jsonify({
        "engagement_id": engagement_id,
        "action": action,
        "can_perform": not blocking,
        "blocking": blocking,
    }), 200


@workflow_bp.route("/engagements/<int:engagement_id>/workflow/history", methods=["GET"])
@require_user
def transition_history(engagement_id, acting_user):
    history = _service(acting_user).get_history(engagement_id)
    return jsonify({"engagement_id": engagement_id, "items": history, "total": len(history)}), 200


@workflow_bp.route("/engagements/<int:engagement_id>/notifications", methods=["GET"])
@require_user
def engagement_notifications(engagement_id, acting_user):
    _service(acting_user).store.load(engagement_id)
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    limit = min(max(request.args.get("limit", 50, type=int), 1), 200)
    items = NotificationService.list_for_engagement(
        engagement_id, recipient_id=acting_user.id, unread_only=unread_only, limit=limit,
    )
    return jsonify({
        "engagement_id": engagement_id,
        "items": [n.to_dict() for n in items],
        "total": len(items),
    }), 200


# ── Write ─────────────────────────────────────────────────────────────────────


@workflow_bp.route("/engagements/<int:engagement_id>/workflow/transitions", methods=["POST"])
@require_user
def perform_transition(engagement_id, acting_user):
    data = json_body()
    action = (data.get("action") or "").strip() if isinstance(data.get("action"), str) else ""
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    notes = data.get("notes")
    if notes is not None and not isinstance(notes, str):
        return api_error(E.VALIDATION_RULE, "notes must be a string")

    result = _service(acting_user).transition(engagement_id, action, acting_user, notes=notes)
    return jsonify({"engagement_id": engagement_id, "action": action, **result.to_dict()}), 200


@workflow_bp.route("/engagements/<int:engagement_id>/checklist", methods=["PATCH"])
@require_user
def update_checklist(engagement_id, acting_user):
    engagement = _service(acting_user).update_checklist(engagement_id, json_body(), acting_user)
    return jsonify(engagement), 200
