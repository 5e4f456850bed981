"""
Engagement Lifecycle — Transition Rule Table.

Declarative map of every legal (from_state, action) pair to its target state
and the named requirements that must all hold. Pure static data: no I/O, no
mutable state. Absence of an entry means the action is illegal from that
state.

Role gates are requirements of kind ``role`` living in the same tuple as the
compliance gates, so one evaluation yields one allow/deny answer.

Lifecycle (AU-C 300, ISQM 1):
    draft → acceptance_pending → accepted → planning → planning_review →
    fieldwork → fieldwork_review → wrap_up → reporting → partner_review →
    issued → archived

There is no skip and no backward entry. Corrections happen through explicit
sign-off revocation, never through state rewriting.

Usage:
    from auditflow.services.engagement_rules import TRANSITION_RULES, EngagementState

    rule = TRANSITION_RULES.get((EngagementState.PLANNING, EngagementAction.COMPLETE_PLANNING))
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from auditflow.services.engagement_state_machine import EngagementContext


# ═════════════════════════════════════════════════════════════════════════════
# States & Actions
# ═════════════════════════════════════════════════════════════════════════════

class EngagementState(str, Enum):
    DRAFT = "draft"
    ACCEPTANCE_PENDING = "acceptance_pending"
    ACCEPTED = "accepted"
    PLANNING = "planning"
    PLANNING_REVIEW = "planning_review"
    FIELDWORK = "fieldwork"
    FIELDWORK_REVIEW = "fieldwork_review"
    WRAP_UP = "wrap_up"
    REPORTING = "reporting"
    PARTNER_REVIEW = "partner_review"
    ISSUED = "issued"
    ARCHIVED = "archived"


class EngagementAction(str, Enum):
    SUBMIT_FOR_ACCEPTANCE = "submit_for_acceptance"
    APPROVE_ACCEPTANCE = "approve_acceptance"
    BEGIN_PLANNING = "begin_planning"
    COMPLETE_PLANNING = "complete_planning"
    APPROVE_PLANNING = "approve_planning"
    COMPLETE_FIELDWORK = "complete_fieldwork"
    APPROVE_FIELDWORK = "approve_fieldwork"
    COMPLETE_WRAP_UP = "complete_wrap_up"
    SUBMIT_FOR_PARTNER_REVIEW = "submit_for_partner_review"
    ISSUE_REPORT = "issue_report"
    ARCHIVE = "archive"


# Declared lifecycle order; progress and display rely on it.
STATE_ORDER: tuple[EngagementState, ...] = tuple(EngagementState)

# Report issued / file archived: no further fieldwork or review.
CLOSED_STATES = frozenset({EngagementState.ISSUED, EngagementState.ARCHIVED})

# No outgoing transitions at all.
TERMINAL_STATES = frozenset({EngagementState.ARCHIVED})


def parse_state(value: str | None) -> EngagementState | None:
    """Return the EngagementState for *value*, or None if it is not one."""
    try:
        return EngagementState(value)
    except ValueError:
        return None


def parse_action(value: str | None) -> EngagementAction | None:
    """Return the EngagementAction for *value*, or None if it is not one."""
    try:
        return EngagementAction(value)
    except ValueError:
        return None


# ═════════════════════════════════════════════════════════════════════════════
# Requirements
# ═════════════════════════════════════════════════════════════════════════════

class RequirementKind(str, Enum):
    GATE = "gate"     # compliance precondition flag
    ROLE = "role"     # acting-user authority


@dataclass(frozen=True)
class Requirement:
    """Named boolean predicate over an EngagementContext."""
    key: str
    description: str
    check: Callable[["EngagementContext"], bool]
    kind: RequirementKind = RequirementKind.GATE

    def is_met(self, context: "EngagementContext") -> bool:
        return bool(self.check(context))


def _flag(key: str, description: str) -> Requirement:
    return Requirement(key=key, description=description, check=lambda ctx: getattr(ctx, key) is True)


INDEPENDENCE_CONFIRMED = _flag(
    "independence_confirmed",
    "Independence must be confirmed by all team members (AU-C 220)",
)
CLIENT_ACCEPTED = _flag(
    "client_accepted",
    "Client acceptance evaluation must be completed (ISQM 1)",
)
ENGAGEMENT_LETTER_SIGNED = _flag(
    "engagement_letter_signed",
    "Engagement letter must be signed by the client (AU-C 210)",
)
PLANNING_MEMO_APPROVED = _flag(
    "planning_memo_approved",
    "Planning memo must be approved (AU-C 300)",
)
RISK_ASSESSMENT_COMPLETE = _flag(
    "risk_assessment_complete",
    "Risk assessment must be completed (AU-C 315)",
)
MATERIALITY_SET = _flag(
    "materiality_set",
    "Materiality must be set (AU-C 320)",
)
ALL_PROCEDURES_COMPLETE = _flag(
    "all_procedures_complete",
    "All assigned audit procedures must be completed (AU-C 330)",
)
REVIEW_NOTES_CLEARED = _flag(
    "review_notes_cleared",
    "All review notes must be cleared",
)
WRAP_UP_COMPLETE = _flag(
    "wrap_up_complete",
    "Wrap-up procedures must be completed (going concern, subsequent events)",
)
EQCR_COMPLETE = _flag(
    "eqcr_complete",
    "Engagement Quality Control Review must be completed (ISQM 2)",
)
PARTNER_SIGNOFF = _flag(
    "partner_signoff",
    "Engagement partner must sign off the engagement and all workpapers",
)
REPORT_APPROVED = _flag(
    "report_approved",
    "Audit report must be approved for issuance (AU-C 700)",
)

ENGAGEMENT_PARTNER_ONLY = Requirement(
    key="engagement_partner",
    description="Only the engagement partner can perform this action",
    check=lambda ctx: ctx.is_engagement_partner,
    kind=RequirementKind.ROLE,
)
MANAGER_OR_PARTNER = Requirement(
    key="manager_or_partner",
    description="Only the engagement manager or engagement partner can perform this action",
    check=lambda ctx: ctx.is_manager or ctx.is_engagement_partner,
    kind=RequirementKind.ROLE,
)

# Stored boolean columns that feed the context one-to-one. partner_signoff is
# derived from the workpaper sign-off chains and is not in this list.
STORED_GATE_FLAGS: tuple[str, ...] = (
    "independence_confirmed",
    "client_accepted",
    "engagement_letter_signed",
    "planning_memo_approved",
    "risk_assessment_complete",
    "materiality_set",
    "all_procedures_complete",
    "review_notes_cleared",
    "wrap_up_complete",
    "eqcr_complete",
    "report_approved",
)


# ═════════════════════════════════════════════════════════════════════════════
# Rule Table
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransitionRule:
    from_state: EngagementState
    action: EngagementAction
    to_state: EngagementState
    requirements: tuple[Requirement, ...] = ()


def _rule(from_state, action, to_state, *requirements) -> TransitionRule:
    return TransitionRule(from_state, action, to_state, tuple(requirements))


_S = EngagementState
_A = EngagementAction

_RULES: tuple[TransitionRule, ...] = (
    _rule(_S.DRAFT, _A.SUBMIT_FOR_ACCEPTANCE, _S.ACCEPTANCE_PENDING,
          INDEPENDENCE_CONFIRMED, CLIENT_ACCEPTED),
    _rule(_S.ACCEPTANCE_PENDING, _A.APPROVE_ACCEPTANCE, _S.ACCEPTED,
          ENGAGEMENT_PARTNER_ONLY),
    _rule(_S.ACCEPTED, _A.BEGIN_PLANNING, _S.PLANNING,
          ENGAGEMENT_LETTER_SIGNED),
    _rule(_S.PLANNING, _A.COMPLETE_PLANNING, _S.PLANNING_REVIEW,
          PLANNING_MEMO_APPROVED, RISK_ASSESSMENT_COMPLETE, MATERIALITY_SET),
    _rule(_S.PLANNING_REVIEW, _A.APPROVE_PLANNING, _S.FIELDWORK,
          MANAGER_OR_PARTNER),
    _rule(_S.FIELDWORK, _A.COMPLETE_FIELDWORK, _S.FIELDWORK_REVIEW,
          ALL_PROCEDURES_COMPLETE),
    _rule(_S.FIELDWORK_REVIEW, _A.APPROVE_FIELDWORK, _S.WRAP_UP,
          REVIEW_NOTES_CLEARED, MANAGER_OR_PARTNER),
    _rule(_S.WRAP_UP, _A.COMPLETE_WRAP_UP, _S.REPORTING,
          WRAP_UP_COMPLETE),
    _rule(_S.REPORTING, _A.SUBMIT_FOR_PARTNER_REVIEW, _S.PARTNER_REVIEW,
          EQCR_COMPLETE),
    _rule(_S.PARTNER_REVIEW, _A.ISSUE_REPORT, _S.ISSUED,
          PARTNER_SIGNOFF, REPORT_APPROVED, ENGAGEMENT_PARTNER_ONLY),
    _rule(_S.ISSUED, _A.ARCHIVE, _S.ARCHIVED,
          ENGAGEMENT_PARTNER_ONLY),
)

# (from_state, action) → rule, in lifecycle order.
TRANSITION_RULES: dict[tuple[EngagementState, EngagementAction], TransitionRule] = {
    (r.from_state, r.action): r for r in _RULES
}

# action → rule, for explaining an action requested from the wrong state.
RULES_BY_ACTION: dict[EngagementAction, TransitionRule] = {r.action: r for r in _RULES}


def rules_from(state: EngagementState) -> list[TransitionRule]:
    """Every rule whose from_state is *state*, in table order."""
    return [r for (s, _), r in TRANSITION_RULES.items() if s == state]


# ═════════════════════════════════════════════════════════════════════════════
# Display
# ═════════════════════════════════════════════════════════════════════════════

STATE_DISPLAY: dict[EngagementState, dict[str, str]] = {
    _S.DRAFT: {"label": "Draft", "description": "Engagement is being set up", "color": "gray"},
    _S.ACCEPTANCE_PENDING: {
        "label": "Pending Acceptance",
        "description": "Awaiting client acceptance approval",
        "color": "yellow",
    },
    _S.ACCEPTED: {"label": "Accepted", "description": "Engagement accepted, planning not started", "color": "blue"},
    _S.PLANNING: {"label": "Planning", "description": "Risk assessment and audit strategy", "color": "indigo"},
    _S.PLANNING_REVIEW: {"label": "Planning Review", "description": "Planning under manager review", "color": "purple"},
    _S.FIELDWORK: {"label": "Fieldwork", "description": "Executing audit procedures", "color": "cyan"},
    _S.FIELDWORK_REVIEW: {
        "label": "Fieldwork Review",
        "description": "Fieldwork under manager review",
        "color": "purple",
    },
    _S.WRAP_UP: {"label": "Wrap-Up", "description": "Completion procedures", "color": "orange"},
    _S.REPORTING: {"label": "Reporting", "description": "Drafting the audit report", "color": "pink"},
    _S.PARTNER_REVIEW: {"label": "Partner Review", "description": "Report under partner review", "color": "purple"},
    _S.ISSUED: {"label": "Issued", "description": "Audit report issued to the client", "color": "green"},
    _S.ARCHIVED: {"label": "Archived", "description": "Engagement file archived", "color": "gray"},
}

ACTION_LABELS: dict[EngagementAction, str] = {
    _A.SUBMIT_FOR_ACCEPTANCE: "Submit for Acceptance",
    _A.APPROVE_ACCEPTANCE: "Approve Acceptance",
    _A.BEGIN_PLANNING: "Begin Planning",
    _A.COMPLETE_PLANNING: "Submit Planning for Review",
    _A.APPROVE_PLANNING: "Approve Planning",
    _A.COMPLETE_FIELDWORK: "Submit Fieldwork for Review",
    _A.APPROVE_FIELDWORK: "Approve Fieldwork",
    _A.COMPLETE_WRAP_UP: "Complete Wrap-Up",
    _A.SUBMIT_FOR_PARTNER_REVIEW: "Submit for Partner Review",
    _A.ISSUE_REPORT: "Issue Report",
    _A.ARCHIVE: "Archive Engagement",
}
