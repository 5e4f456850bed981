"""
Engagement Workflow Service — orchestrator.

Owns all I/O around the pure engagement state machine:

    1. load the engagement (tenant scoped) and build a fresh context
    2. evaluate the action; a denial is returned untouched
    3. compare-and-swap the status; a lost race is a concurrency_conflict
       result and nothing else is written
    4. append a TransitionLog row in its own commit; failure is logged at
       WARNING and does not undo the state change
    5. publish ``engagement.transitioned``; failure is logged and swallowed

Exactly one state mutation and at most one log append per call. No retry:
callers reload and resubmit on conflict.

Usage:
    service = WorkflowService(SqlAlchemyRecordStore(tenant_id), NotificationService())
    result = service.perform_action(engagement_id, "submit_for_acceptance", acting_user)
"""

from __future__ import annotations

import logging

from auditflow.core.exceptions import AuthorizationDeniedError, IntegrityViolationError, ValidationError
from auditflow.services.engagement_rules import (
    ACTION_LABELS,
    CLOSED_STATES,
    STATE_DISPLAY,
    STORED_GATE_FLAGS,
    EngagementAction,
    parse_state,
)
from auditflow.services.engagement_state_machine import (
    CONCURRENCY_CONFLICT,
    BlockingRequirement,
    EngagementContext,
    EngagementStateMachine,
    TransitionResult,
)

logger = logging.getLogger(__name__)

TRANSITIONED_EVENT = "engagement.transitioned"

# Checklist keys accepted by update_checklist. partner_signoff is the
# engagement partner's own attestation and only they may set it.
CHECKLIST_KEYS = frozenset(STORED_GATE_FLAGS) | {"partner_signoff"}


def _action_dict(action: EngagementAction) -> dict:
    return {"action": action.value, "label": ACTION_LABELS[action]}


class WorkflowService:
    """Engagement lifecycle orchestrator over a RecordStore."""

    def __init__(self, store, notifier=None):
        self.store = store
        self.notifier = notifier

    # ── Context ──────────────────────────────────────────────────────────

    def build_context(self, engagement, acting_user) -> EngagementContext:
        """Snapshot *engagement* for *acting_user*.

        Raises:
            IntegrityViolationError: stored status is not a lifecycle state.
        """
        state = parse_state(engagement.status)
        if state is None:
            logger.error(
                "Engagement has unknown status",
                extra={"engagement_id": engagement.id, "status": engagement.status},
            )
            raise IntegrityViolationError(
                f"Engagement id={engagement.id} has unknown status '{engagement.status}'",
                details={"engagement_id": engagement.id, "status": engagement.status},
            )

        user_id = getattr(acting_user, "id", None)
        total, locked = self.store.count_workpapers(engagement.id)
        flags = {name: bool(getattr(engagement, name)) for name in STORED_GATE_FLAGS}

        return EngagementContext(
            current_state=state,
            engagement_id=engagement.id,
            user_id=user_id,
            user_role=getattr(acting_user, "role", None),
            is_engagement_partner=user_id is not None and engagement.engagement_partner_id == user_id,
            is_manager=user_id is not None and engagement.manager_id == user_id,
            partner_signoff=bool(engagement.partner_signoff) and total > 0 and locked == total,
            **flags,
        )

    def _machine(self, engagement_id, acting_user):
        engagement = self.store.load(engagement_id)
        return engagement, EngagementStateMachine(self.build_context(engagement, acting_user))

    # ── Queries ──────────────────────────────────────────────────────────

    def get_available_actions(self, engagement_id, acting_user) -> list[EngagementAction]:
        _, machine = self._machine(engagement_id, acting_user)
        return machine.get_available_actions()

    def get_blocking_requirements(self, engagement_id, action, acting_user) -> list[BlockingRequirement]:
        _, machine = self._machine(engagement_id, acting_user)
        return machine.get_blocking_requirements(action)

    def get_workflow_summary(self, engagement_id, acting_user) -> dict:
        engagement, machine = self._machine(engagement_id, acting_user)
        state = machine.state
        next_action = machine.get_next_required_action()
        return {
            "engagement_id": engagement.id,
            "name": engagement.name,
            "state": state.value,
            "display": STATE_DISPLAY[state],
            "progress": machine.get_progress_percentage(),
            "is_terminal": machine.is_terminal(),
            "is_active": machine.is_active(),
            "available_actions": [_action_dict(a) for a in machine.get_available_actions()],
            "next_required_action": _action_dict(next_action) if next_action else None,
            "checklist": engagement.checklist(),
            "partner_signoff_effective": machine.context.partner_signoff,
        }

    def get_history(self, engagement_id) -> list[dict]:
        self.store.load(engagement_id)
        return [row.to_dict() for row in self.store.list_log(engagement_id)]

    # ── Commands ─────────────────────────────────────────────────────────

    def perform_action(self, engagement_id, action, acting_user, notes: str | None = None) -> TransitionResult:
        """Apply *action*; denials come back as a failed TransitionResult."""
        result, _ = self._perform(engagement_id, action, acting_user, notes)
        return result

    def transition(self, engagement_id, action, acting_user, notes: str | None = None) -> TransitionResult:
        """Apply *action*, raising the matching WorkflowError on denial.

        Raises:
            InvalidTransitionError, PreconditionNotMetError,
            AuthorizationDeniedError, ConcurrencyConflictError
        """
        result, from_state = self._perform(engagement_id, action, acting_user, notes)
        result.raise_for_error(action, from_state)
        return result

    def _perform(self, engagement_id, action, acting_user, notes):
        engagement, machine = self._machine(engagement_id, acting_user)
        from_state = machine.state
        tenant_id = engagement.tenant_id
        partner_id, manager_id = engagement.engagement_partner_id, engagement.manager_id

        result = machine.perform_action(action)
        if not result.success:
            return result, from_state

        user_id = getattr(acting_user, "id", None)
        action_value = getattr(action, "value", action)
        if not self.store.save(engagement_id, from_state.value, result.new_state.value):
            logger.warning(
                "Engagement transition lost a concurrent update",
                extra={"engagement_id": engagement_id, "action": action_value, "user_id": user_id},
            )
            return TransitionResult.fail(
                f"Engagement id={engagement_id} was modified concurrently; reload and retry",
                CONCURRENCY_CONFLICT,
            ), from_state

        logger.info(
            "Engagement transitioned",
            extra={
                "engagement_id": engagement_id,
                "action": action_value,
                "from_state": from_state.value,
                "to_state": result.new_state.value,
                "user_id": user_id,
            },
        )

        try:
            self.store.append_log(
                tenant_id=tenant_id,
                entity_type="engagement",
                entity_id=str(engagement_id),
                engagement_id=engagement_id,
                from_state=from_state.value,
                to_state=result.new_state.value,
                action=action_value,
                performed_by=user_id,
                notes=notes,
            )
        except Exception:
            logger.warning(
                "Transition log append failed; state change stands",
                exc_info=True,
                extra={"engagement_id": engagement_id, "action": action_value},
            )

        self._publish(engagement_id, {
            "type": TRANSITIONED_EVENT,
            "tenant_id": tenant_id,
            "title": f"{STATE_DISPLAY[from_state]['label']} → {STATE_DISPLAY[result.new_state]['label']}",
            "action": action_value,
            "from_state": from_state.value,
            "to_state": result.new_state.value,
            "performed_by": user_id,
            "recipients": [partner_id, manager_id],
        })
        return result, from_state

    def update_checklist(self, engagement_id, updates: dict, acting_user) -> dict:
        """Set gating checklist flags.

        Only whitelisted boolean flags are accepted; ``status`` is never
        writable here. Closed engagements (issued, archived) are frozen.
        """
        if not isinstance(updates, dict) or not updates:
            raise ValidationError("At least one checklist flag is required")
        unknown = sorted(set(updates) - CHECKLIST_KEYS)
        if unknown:
            raise ValidationError(
                f"Unknown checklist field(s): {', '.join(unknown)}",
                details={"allowed": sorted(CHECKLIST_KEYS)},
            )
        not_bool = sorted(k for k, v in updates.items() if not isinstance(v, bool))
        if not_bool:
            raise ValidationError(f"Checklist values must be booleans: {', '.join(not_bool)}")

        engagement, machine = self._machine(engagement_id, acting_user)
        if machine.state in CLOSED_STATES:
            raise ValidationError(f"Engagement is {machine.state.value}; checklist is frozen")
        if "partner_signoff" in updates and not machine.context.is_engagement_partner:
            raise AuthorizationDeniedError(
                "Only the engagement partner can record the partner sign-off",
                reason="role_not_permitted",
            )

        engagement = self.store.update_checklist(engagement_id, updates)
        logger.info(
            "Engagement checklist updated",
            extra={
                "engagement_id": engagement_id,
                "fields": sorted(updates),
                "user_id": getattr(acting_user, "id", None),
            },
        )
        return engagement.to_dict()

    # ── Internal ─────────────────────────────────────────────────────────

    def _publish(self, engagement_id, event: dict):
        if self.notifier is None:
            return
        try:
            self.notifier.publish(engagement_id, event)
        except Exception:
            logger.warning(
                "Workflow notification publish failed",
                exc_info=True,
                extra={"engagement_id": engagement_id, "event_type": event.get("type")},
            )


# ── Module-level helpers (blueprint entry points) ────────────────────────────


def get_available_actions(service: WorkflowService, engagement_id, acting_user) -> list[dict]:
    return [_action_dict(a) for a in service.get_available_actions(engagement_id, acting_user)]


def get_blocking_requirements(service: WorkflowService, engagement_id, action, acting_user) -> list[dict]:
    return [b.to_dict() for b in service.get_blocking_requirements(engagement_id, action, acting_user)]
