"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        readiness, no I/O
    GET /api/v1/health/live   database round-trip plus a workflow data check:
                              engagements whose stored status is not a
                              lifecycle state make the service "degraded"
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from auditflow.models import db
from auditflow.models.engagement import Engagement
from auditflow.services.engagement_rules import EngagementState

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    return jsonify({"status": "ok", "service": "auditflow"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}

    try:
        started = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        checks["database"] = {"status": "error", "detail": str(exc)}
    else:
        known = [s.value for s in EngagementState]
        try:
            unknown = db.session.execute(
                select(func.count(Engagement.id)).where(Engagement.status.not_in(known))
            ).scalar_one()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Health check: workflow query failed: %s", exc)
            checks["workflow"] = {"status": "error", "detail": str(exc)}
        else:
            if unknown:
                logger.error("Health check: %d engagement(s) with unknown status", unknown)
            checks["workflow"] = {"status": "error" if unknown else "ok", "unknown_status_count": unknown}

    checks["notifications"] = {"enabled": bool(current_app.config.get("WORKFLOW_NOTIFICATIONS_ENABLED"))}
    healthy = all(c.get("status", "ok") == "ok" for c in checks.values())
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
