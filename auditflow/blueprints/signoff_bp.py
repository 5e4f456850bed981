"""
Workpaper Sign-off Blueprint.

Endpoints:
    GET    /api/v1/workpapers/<wid>/signoffs
           Returns: chain status for the acting user, per-level checklist,
                    recorded sign-offs.

    POST   /api/v1/workpapers/<wid>/signoffs
           Body: { "signoff_type": "preparer|reviewer|manager|partner",
                   "comments": "..." }
           Returns: 201 with the new sign-off and updated chain status.

    POST   /api/v1/signoffs/<sid>/revoke
           Body: { "reason": "..." }   (mandatory)
           Returns: 200 with the reset workpaper.

    GET    /api/v1/workpapers/<wid>/integrity
           Returns: content-hash verification per sign-off.

    PATCH  /api/v1/workpapers/<wid>
           Body: { "title": "...", "content": {...}, "reference": "..." }
           Refused with 403 while the workpaper is locked.

Layer contract:
    - NO db.session calls here; all writes owned by signoff_service.
    - NO inline role checks; the chain evaluator decides.
"""

import logging

from flask import Blueprint, jsonify

from auditflow.auth import require_user
from auditflow.services.record_store import SqlAlchemyRecordStore
from auditflow.services.signoff_service import SignoffService
from auditflow.utils.errors import E, api_error, register_error_handlers
from auditflow.utils.helpers import get_client_ip, get_user_agent, json_body

logger = logging.getLogger(__name__)

signoff_bp = Blueprint("signoff", __name__, url_prefix="/api/v1")
register_error_handlers(signoff_bp)


def _service(acting_user) -> SignoffService:
    return SignoffService(SqlAlchemyRecordStore(acting_user.tenant_id))


@signoff_bp.route("/workpapers/<int:workpaper_id>/signoffs", methods=["GET"])
@require_user
def signoff_status(workpaper_id, acting_user):
    return jsonify(_service(acting_user).get_signoff_status(workpaper_id, acting_user)), 200


@signoff_bp.route("/workpapers/<int:workpaper_id>/signoffs", methods=["POST"])
@require_user
def create_signoff(workpaper_id, acting_user):
    data = json_body()
    signoff_type = data.get("signoff_type")
    if not signoff_type or not isinstance(signoff_type, str):
        return api_error(E.VALIDATION_REQUIRED, "signoff_type is required")
    comments = data.get("comments")
    if comments is not None and not isinstance(comments, str):
        return api_error(E.VALIDATION_RULE, "comments must be a string")

    service = _service(acting_user)
    signoff = service.create_signoff(
        workpaper_id,
        signoff_type.strip().lower(),
        acting_user,
        comments=comments,
        user_agent=get_user_agent(),
        ip_address=get_client_ip(),
    )
    body = signoff.to_dict()
    body["chain"] = service.get_signoff_status(workpaper_id, acting_user)["status"]
    return jsonify(body), 201


@signoff_bp.route("/signoffs/<int:signoff_id>/revoke", methods=["POST"])
@require_user
def revoke_signoff(signoff_id, acting_user):
    reason = json_body().get("reason")
    if not isinstance(reason, str) or not reason.strip():
        return api_error(E.VALIDATION_REQUIRED, "reason is required")
    workpaper = _service(acting_user).revoke_signoff(signoff_id, acting_user, reason)
    return jsonify(workpaper), 200


@signoff_bp.route("/workpapers/<int:workpaper_id>/integrity", methods=["GET"])
@require_user
def verify_integrity(workpaper_id, acting_user):
    return jsonify(_service(acting_user).verify_signoff_integrity(workpaper_id)), 200


@signoff_bp.route("/workpapers/<int:workpaper_id>", methods=["PATCH"])
@require_user
def update_workpaper(workpaper_id, acting_user):
    return jsonify(_service(acting_user).update_workpaper_content(workpaper_id, acting_user, json_body())), 200
