"""
Engagement Lifecycle — State Machine.

Evaluates the transition rule table against an explicit, fully-built
EngagementContext snapshot. Never reads or writes a data store; all I/O
belongs to the workflow orchestrator (``workflow_service``).

Denials are returned, not raised:
    - invalid_transition     action not defined from the current state
    - authorization_denied   first unmet requirement is a role gate
    - precondition_not_met   first unmet requirement is a compliance gate

Usage:
    machine = EngagementStateMachine(context)
    machine.get_available_actions()
    result = machine.perform_action(EngagementAction.SUBMIT_FOR_ACCEPTANCE)
    if not result.success:
        machine.get_blocking_requirements(EngagementAction.SUBMIT_FOR_ACCEPTANCE)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from auditflow.core.exceptions import (
    AuthorizationDeniedError,
    ConcurrencyConflictError,
    IntegrityViolationError,
    InvalidTransitionError,
    PreconditionNotMetError,
)
from auditflow.services.engagement_rules import (
    CLOSED_STATES,
    RULES_BY_ACTION,
    STATE_ORDER,
    TERMINAL_STATES,
    TRANSITION_RULES,
    EngagementAction,
    EngagementState,
    Requirement,
    RequirementKind,
    parse_action,
    parse_state,
    rules_from,
)

logger = logging.getLogger(__name__)


# Result error codes (mirrors the exception taxonomy in core.exceptions)
INVALID_TRANSITION = "invalid_transition"
PRECONDITION_NOT_MET = "precondition_not_met"
AUTHORIZATION_DENIED = "authorization_denied"
CONCURRENCY_CONFLICT = "concurrency_conflict"

# Lifecycle priority used to pick the "next" action for the UI.
_ACTION_PRIORITY: tuple[EngagementAction, ...] = tuple(EngagementAction)


@dataclass(frozen=True)
class EngagementContext:
    """Snapshot of everything a transition decision may depend on.

    Built fresh per evaluation by the orchestrator; never persisted as-is.
    ``current_state`` may be given as its stored string; a value outside
    the lifecycle raises IntegrityViolationError on construction.
    """
    current_state: EngagementState | str
    engagement_id: int | str
    user_id: int | str | None = None
    user_role: str | None = None
    is_engagement_partner: bool = False
    is_manager: bool = False

    independence_confirmed: bool = False
    client_accepted: bool = False
    engagement_letter_signed: bool = False
    planning_memo_approved: bool = False
    risk_assessment_complete: bool = False
    materiality_set: bool = False
    all_procedures_complete: bool = False
    review_notes_cleared: bool = False
    wrap_up_complete: bool = False
    eqcr_complete: bool = False
    partner_signoff: bool = False
    report_approved: bool = False

    def __post_init__(self):
        state = parse_state(self.current_state)
        if state is None:
            raise IntegrityViolationError(
                f"Engagement id={self.engagement_id} has unknown state '{self.current_state}'",
                details={"engagement_id": self.engagement_id, "status": str(self.current_state)},
            )
        object.__setattr__(self, "current_state", state)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of an attempted transition.

    success ⇒ new_state set, no error.  failure ⇒ error set, no new_state.
    """
    success: bool
    new_state: EngagementState | None = None
    error: str | None = None
    error_code: str | None = None
    blocked_by: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.success and (self.new_state is None or self.error is not None):
            raise ValueError("successful TransitionResult requires new_state and no error")
        if not self.success and (not self.error or self.new_state is not None):
            raise ValueError("failed TransitionResult requires error and no new_state")

    @classmethod
    def ok(cls, new_state: EngagementState) -> "TransitionResult":
        return cls(success=True, new_state=new_state)

    @classmethod
    def fail(cls, error: str, code: str, blocked_by=()) -> "TransitionResult":
        return cls(success=False, error=error, error_code=code, blocked_by=tuple(blocked_by))

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "new_state": self.new_state.value if self.new_state else None,
            "error": self.error,
            "error_code": self.error_code,
            "blocked_by": list(self.blocked_by),
        }

    def raise_for_error(self, action, current_state) -> None:
        """Raise the matching workflow exception for a failed result.

        For in-process callers that prefer exceptions over result values.
        """
        if self.success:
            return
        label = str(getattr(action, "value", action))
        state = str(getattr(current_state, "value", current_state))
        if self.error_code == INVALID_TRANSITION:
            raise InvalidTransitionError(label, state)
        if self.error_code == PRECONDITION_NOT_MET:
            raise PreconditionNotMetError(label, list(self.blocked_by))
        if self.error_code == AUTHORIZATION_DENIED:
            raise AuthorizationDeniedError(self.error, reason="role_requirement",
                                           details={"action": label, "blocked_by": list(self.blocked_by)})
        raise ConcurrencyConflictError("Engagement", message=self.error)


@dataclass(frozen=True)
class BlockingRequirement:
    key: str
    description: str
    kind: str

    def to_dict(self) -> dict:
        return {"key": self.key, "description": self.description, "kind": self.kind}


class EngagementStateMachine:
    """Pure decision core over one EngagementContext.

    Instances are cheap and immutable in practice: build one per request
    from a freshly loaded snapshot.
    """

    def __init__(self, context: EngagementContext):
        self._context = context

    @property
    def context(self) -> EngagementContext:
        return self._context

    @property
    def state(self) -> EngagementState:
        return self._context.current_state

    # ── Queries ──────────────────────────────────────────────────────────

    def get_available_actions(self) -> list[EngagementAction]:
        """Actions defined from the current state whose requirements all hold."""
        return [
            rule.action
            for rule in rules_from(self.state)
            if not self._unmet(rule.requirements)
        ]

    def can_perform_action(self, action: EngagementAction | str) -> TransitionResult:
        """Evaluate *action* without mutating anything."""
        parsed = parse_action(action)
        label = parsed.value if parsed else str(action)
        rule = TRANSITION_RULES.get((self.state, parsed)) if parsed else None
        if rule is None:
            return TransitionResult.fail(
                f"Action '{label}' is not valid from state '{self.state.value}'",
                INVALID_TRANSITION,
            )

        unmet = self._unmet(rule.requirements)
        if unmet:
            first = unmet[0]
            if first.kind == RequirementKind.ROLE:
                code = AUTHORIZATION_DENIED
                error = f"Not authorized to '{label}': {first.description}"
            else:
                code = PRECONDITION_NOT_MET
                error = f"Precondition not met for '{label}': {first.description}"
            return TransitionResult.fail(error, code, blocked_by=[r.description for r in unmet])

        return TransitionResult.ok(rule.to_state)

    def perform_action(self, action: EngagementAction | str) -> TransitionResult:
        """Same evaluation as can_perform_action; the result carries new_state.

        Persists nothing. The orchestrator applies the state change.
        """
        result = self.can_perform_action(action)
        if not result.success:
            logger.info(
                "Engagement transition blocked",
                extra={
                    "engagement_id": self._context.engagement_id,
                    "action": str(getattr(action, "value", action)),
                    "current_state": self.state.value,
                    "error_code": result.error_code,
                },
            )
        return result

    def get_requirements_for_action(self, action: EngagementAction | str) -> list[Requirement]:
        parsed = parse_action(action)
        rule = RULES_BY_ACTION.get(parsed) if parsed else None
        return list(rule.requirements) if rule else []

    def get_blocking_requirements(self, action: EngagementAction | str) -> list[BlockingRequirement]:
        """Every unmet requirement for *action* (empty when it is performable).

        When the action is not defined from the current state, the list opens
        with an ``invalid_transition`` entry and continues with the unmet
        requirements of the action's own rule.
        """
        parsed = parse_action(action)
        label = parsed.value if parsed else str(action)
        blocking: list[BlockingRequirement] = []

        rule = TRANSITION_RULES.get((self.state, parsed)) if parsed else None
        if rule is None:
            blocking.append(BlockingRequirement(
                key="current_state",
                description=f"Action '{label}' is not available from state '{self.state.value}'",
                kind=INVALID_TRANSITION,
            ))
            rule = RULES_BY_ACTION.get(parsed) if parsed else None
            if rule is None:
                return blocking

        blocking.extend(
            BlockingRequirement(key=r.key, description=r.description, kind=r.kind.value)
            for r in self._unmet(rule.requirements)
        )
        return blocking

    # ── Lifecycle helpers ────────────────────────────────────────────────

    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_active(self) -> bool:
        return self.state not in CLOSED_STATES

    def get_progress_percentage(self) -> int:
        index = STATE_ORDER.index(self.state)
        return round(index / (len(STATE_ORDER) - 1) * 100)

    def get_next_required_action(self) -> EngagementAction | None:
        available = self.get_available_actions()
        for action in _ACTION_PRIORITY:
            if action in available:
                return action
        return None

    # ── Internal ─────────────────────────────────────────────────────────

    def _unmet(self, requirements) -> list[Requirement]:
        return [r for r in requirements if not r.is_met(self._context)]
