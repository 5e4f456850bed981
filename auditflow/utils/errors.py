"""JSON error responses for the workflow API.

Every error body has the same shape::

    {"error": "<human message>", "code": "<E.* constant>", "details": {...}}

``details`` is omitted when empty. Views return ``api_error(...)`` directly
for request-shape problems; service exceptions are mapped once per
blueprint by ``register_error_handlers``.
"""

from __future__ import annotations

import logging

from flask import jsonify

from auditflow.core.exceptions import (
    AuthorizationDeniedError,
    ConcurrencyConflictError,
    IntegrityViolationError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionNotMetError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class E:
    """Error codes. ``ERR_*`` for request problems, ``WORKFLOW_*`` for workflow denials."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # missing field in the request
    VALIDATION_RULE = "ERR_VALIDATION_RULE"           # well-formed, rejected by a rule
    NOT_FOUND = "ERR_NOT_FOUND"

    INVALID_TRANSITION = "WORKFLOW_INVALID_TRANSITION"
    PRECONDITION_NOT_MET = "WORKFLOW_PRECONDITION_NOT_MET"
    AUTHORIZATION_DENIED = "WORKFLOW_AUTHORIZATION_DENIED"
    CONCURRENCY_CONFLICT = "WORKFLOW_CONCURRENCY_CONFLICT"
    INTEGRITY_VIOLATION = "WORKFLOW_INTEGRITY_VIOLATION"


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.INVALID_TRANSITION: 409,
    E.PRECONDITION_NOT_MET: 422,
    E.AUTHORIZATION_DENIED: 403,
    E.CONCURRENCY_CONFLICT: 409,
    E.INTEGRITY_VIOLATION: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(response, status)`` for *code*; status defaults from the code table, else 400."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)


def register_error_handlers(bp):
    """Map core exceptions raised by services to JSON responses on *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        # Message never includes the id, so other tenants' records cannot be probed
        logger.debug("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(InvalidTransitionError)
    def _handle_invalid_transition(error: InvalidTransitionError):
        return api_error(E.INVALID_TRANSITION, str(error), details=error.details)

    @bp.errorhandler(PreconditionNotMetError)
    def _handle_precondition(error: PreconditionNotMetError):
        return api_error(E.PRECONDITION_NOT_MET, str(error), details=error.details)

    @bp.errorhandler(AuthorizationDeniedError)
    def _handle_denied(error: AuthorizationDeniedError):
        return api_error(E.AUTHORIZATION_DENIED, str(error), details=error.details)

    @bp.errorhandler(ConcurrencyConflictError)
    def _handle_conflict(error: ConcurrencyConflictError):
        return api_error(E.CONCURRENCY_CONFLICT, str(error), details=error.details)

    @bp.errorhandler(IntegrityViolationError)
    def _handle_integrity(error: IntegrityViolationError):
        logger.error("Integrity violation: %s", error, extra={"reason": error.code})
        return api_error(E.INTEGRITY_VIOLATION, "Stored workflow data is inconsistent", details=error.details)
