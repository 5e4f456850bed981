"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Workflow taxonomy:
    InvalidTransitionError     action not defined from the current state
    PreconditionNotMetError    action defined, one or more gating flags false
    AuthorizationDeniedError   acting role cannot perform the request
    ConcurrencyConflictError   the store rejected a write made on a stale snapshot
    IntegrityViolationError    stored data is outside the declared model (fatal)

The state machine and the sign-off evaluator never raise for ordinary
denial. They return structured results; these exceptions are for the
orchestrators and the HTTP layer.

Usage:
    from auditflow.core.exceptions import NotFoundError, AuthorizationDeniedError

    raise NotFoundError(resource="Engagement", resource_id=42)
    raise AuthorizationDeniedError("Only managers and partners can revoke sign-offs")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access
    attempts, so a caller cannot probe for records owned by another tenant.

    Args:
        resource: Human-readable model/entity name (e.g. "Engagement").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional, the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Workflow errors ──────────────────────────────────────────────────────────


class WorkflowError(Exception):
    """Base for engagement / sign-off workflow errors.

    ``code`` is the machine-readable taxonomy name, ``details`` carries
    structured context (blocking requirements, sign-off type, …).
    """

    code = "workflow_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(WorkflowError):
    """Action is not defined from the engagement's current state."""

    code = "invalid_transition"

    def __init__(self, action: str, current_state: str) -> None:
        self.action = action
        self.current_state = current_state
        super().__init__(
            f"Action '{action}' is not valid from state '{current_state}'",
            details={"action": action, "current_state": current_state},
        )


class PreconditionNotMetError(WorkflowError):
    """Action is defined but gating requirements are unmet.

    ``blocked_by`` holds every unmet requirement description, not just the
    first, so the UI can render a complete checklist.
    """

    code = "precondition_not_met"

    def __init__(self, action: str, blocked_by: list[str]) -> None:
        self.action = action
        self.blocked_by = list(blocked_by)
        first = self.blocked_by[0] if self.blocked_by else "unknown requirement"
        super().__init__(
            f"Precondition not met for '{action}': {first}",
            details={"action": action, "blocked_by": self.blocked_by},
        )


class AuthorizationDeniedError(WorkflowError):
    """Acting role is insufficient for the requested operation.

    ``reason`` is a short machine-readable tag (e.g. ``out_of_order``,
    ``already_signed``, ``locked``).
    """

    code = "authorization_denied"

    def __init__(self, message: str, reason: str | None = None, details: dict | None = None) -> None:
        self.reason = reason
        merged = dict(details or {})
        if reason:
            merged.setdefault("reason", reason)
        super().__init__(message, details=merged)


class ConcurrencyConflictError(WorkflowError):
    """The store rejected a write because state changed since it was loaded.

    Callers must reload and retry from scratch; nothing is merged or retried
    internally.
    """

    code = "concurrency_conflict"

    def __init__(self, resource: str, resource_id: int | str | None = None, message: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = message or f"{resource} id={resource_id} was modified concurrently; reload and retry"
        super().__init__(msg, details={"resource": resource, "resource_id": resource_id})


class IntegrityViolationError(WorkflowError):
    """Stored data is outside the declared model.

    Examples: an engagement status that is not one of the lifecycle states,
    or two sign-off rows of the same type on one workpaper. Fatal for the
    entity; surfaced loudly, never guessed around.
    """

    code = "integrity_violation"
