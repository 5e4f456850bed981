"""
Workpaper Sign-off Chain — pure evaluator.

A workpaper collects sign-offs in strict hierarchy order:

    preparer → reviewer → manager → partner

Each type may be present at most once, a user may sign a workpaper only
once (in any type), and a partner sign-off locks the workpaper.

Every function here works over a plain sequence of sign-off rows (anything
exposing ``signoff_type`` and ``user_id`` attributes, e.g. the
``WorkpaperSignoff`` ORM model). Nothing reads or writes a data store.

Usage:
    status = evaluate_signoff_status(rows, user_id=7, role="manager")
    decision = check_signoff(rows, user_id=7, role="manager", signoff_type="manager")
    if not decision.allowed:
        raise AuthorizationDeniedError(decision.message, reason=decision.reason)
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from auditflow.core.exceptions import IntegrityViolationError


class SignoffType(str, Enum):
    PREPARER = "preparer"
    REVIEWER = "reviewer"
    MANAGER = "manager"
    PARTNER = "partner"


# Hierarchy order; index = seniority.
SIGNOFF_HIERARCHY: tuple[SignoffType, ...] = tuple(SignoffType)

SIGNOFF_LABELS = {
    SignoffType.PREPARER: "Prepared by",
    SignoffType.REVIEWER: "Reviewed by",
    SignoffType.MANAGER: "Manager review",
    SignoffType.PARTNER: "Partner approval",
}


class UserRole(str, Enum):
    STAFF = "staff"
    SENIOR = "senior"
    REVIEWER = "reviewer"
    MANAGER = "manager"
    PARTNER = "partner"


_ROLE_ALIASES = {
    "staff_auditor": UserRole.STAFF,
    "senior_auditor": UserRole.SENIOR,
}

ROLE_SIGNOFF_AUTHORITY: dict[UserRole, frozenset[SignoffType]] = {
    UserRole.STAFF: frozenset({SignoffType.PREPARER}),
    UserRole.SENIOR: frozenset({SignoffType.PREPARER, SignoffType.REVIEWER}),
    UserRole.REVIEWER: frozenset({SignoffType.REVIEWER}),
    UserRole.MANAGER: frozenset({SignoffType.PREPARER, SignoffType.REVIEWER, SignoffType.MANAGER}),
    UserRole.PARTNER: frozenset(SIGNOFF_HIERARCHY),
}

# Roles allowed to revoke an existing sign-off.
REVOKING_ROLES = frozenset({UserRole.MANAGER, UserRole.PARTNER})

# Workpaper review_status written when a sign-off of this type is recorded.
REVIEW_STATUS_BY_TYPE = {
    SignoffType.PREPARER: "pending_review",
    SignoffType.REVIEWER: "in_review",
    SignoffType.MANAGER: "approved",
    SignoffType.PARTNER: "locked",
}
DRAFT_REVIEW_STATUS = "draft"

# Denial reasons
LOCKED = "locked"
UNKNOWN_ROLE = "unknown_role"
INVALID_TYPE = "invalid_type"
OUT_OF_ORDER = "out_of_order"
ROLE_NOT_PERMITTED = "role_not_permitted"
ALREADY_SIGNED = "already_signed"
NOT_MOST_SENIOR = "not_most_senior"


def parse_role(value: str | None) -> UserRole | None:
    """Map a stored role string to UserRole. Unknown roles return None."""
    if value is None:
        return None
    if isinstance(value, UserRole):
        return value
    key = str(value).strip().lower()
    if key in _ROLE_ALIASES:
        return _ROLE_ALIASES[key]
    try:
        return UserRole(key)
    except ValueError:
        return None


def parse_signoff_type(value: str | None) -> SignoffType | None:
    try:
        return SignoffType(value)
    except ValueError:
        return None


# ── Results ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SignoffStatus:
    can_sign: bool
    next_required_type: SignoffType | None
    completed_types: tuple[SignoffType, ...] = field(default_factory=tuple)
    pending_types: tuple[SignoffType, ...] = field(default_factory=tuple)
    is_fully_signed: bool = False
    is_locked: bool = False

    def to_dict(self) -> dict:
        return {
            "can_sign": self.can_sign,
            "next_required_type": self.next_required_type.value if self.next_required_type else None,
            "completed_types": [t.value for t in self.completed_types],
            "pending_types": [t.value for t in self.pending_types],
            "is_fully_signed": self.is_fully_signed,
            "is_locked": self.is_locked,
        }


@dataclass(frozen=True)
class SignoffDecision:
    allowed: bool
    reason: str | None = None
    message: str | None = None

    @classmethod
    def allow(cls) -> "SignoffDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str, message: str) -> "SignoffDecision":
        return cls(allowed=False, reason=reason, message=message)


# ── Chain evaluation ────────────────────────────────────────────────────────


def index_signoffs(signoffs: Iterable[Any]) -> dict[SignoffType, Any]:
    """Map signoff_type → row.

    Raises:
        IntegrityViolationError: a type appears twice or is not a known type.
    """
    indexed: dict[SignoffType, Any] = {}
    for row in signoffs:
        signoff_type = parse_signoff_type(getattr(row, "signoff_type", None))
        if signoff_type is None:
            raise IntegrityViolationError(
                f"Unknown sign-off type '{getattr(row, 'signoff_type', None)}' in stored chain",
                details={"signoff_id": getattr(row, "id", None)},
            )
        if signoff_type in indexed:
            raise IntegrityViolationError(
                f"Duplicate '{signoff_type.value}' sign-off in stored chain",
                details={
                    "signoff_type": signoff_type.value,
                    "signoff_ids": [getattr(indexed[signoff_type], "id", None), getattr(row, "id", None)],
                },
            )
        indexed[signoff_type] = row
    return indexed


def next_required_type(indexed: dict[SignoffType, Any]) -> SignoffType | None:
    for signoff_type in SIGNOFF_HIERARCHY:
        if signoff_type not in indexed:
            return signoff_type
    return None


def has_user_signed(signoffs: Iterable[Any], user_id) -> bool:
    return user_id is not None and any(getattr(s, "user_id", None) == user_id for s in signoffs)


def evaluate_signoff_status(signoffs: Iterable[Any], user_id=None, role: str | None = None) -> SignoffStatus:
    """Compute the chain status, and whether *user_id* acting as *role* may sign next."""
    rows = list(signoffs)
    indexed = index_signoffs(rows)
    next_type = next_required_type(indexed)
    completed = tuple(t for t in SIGNOFF_HIERARCHY if t in indexed)
    pending = tuple(t for t in SIGNOFF_HIERARCHY if t not in indexed)

    parsed_role = parse_role(role)
    can_sign = (
        next_type is not None
        and parsed_role is not None
        and next_type in ROLE_SIGNOFF_AUTHORITY[parsed_role]
        and not has_user_signed(rows, user_id)
    )
    return SignoffStatus(
        can_sign=can_sign,
        next_required_type=next_type,
        completed_types=completed,
        pending_types=pending,
        is_fully_signed=not pending,
        is_locked=SignoffType.PARTNER in indexed,
    )


def check_signoff(signoffs: Iterable[Any], user_id, role: str | None, signoff_type) -> SignoffDecision:
    """Decide whether *user_id* acting as *role* may record *signoff_type* now.

    Denials name the specific rule that failed, checked in this order:
    invalid_type, locked, unknown_role, out_of_order, role_not_permitted,
    already_signed.
    """
    rows = list(signoffs)
    requested = parse_signoff_type(signoff_type)
    if requested is None:
        return SignoffDecision.deny(
            INVALID_TYPE,
            f"Invalid sign-off type '{signoff_type}'. "
            f"Must be one of: {', '.join(t.value for t in SIGNOFF_HIERARCHY)}",
        )

    indexed = index_signoffs(rows)
    if SignoffType.PARTNER in indexed:
        return SignoffDecision.deny(LOCKED, "Workpaper is locked by partner sign-off")

    parsed_role = parse_role(role)
    if parsed_role is None:
        return SignoffDecision.deny(UNKNOWN_ROLE, f"Role '{role}' has no sign-off authority")

    expected = next_required_type(indexed)
    if requested != expected:
        if requested in indexed:
            message = f"Workpaper already has a {requested.value} sign-off"
        else:
            message = f"Cannot sign off as {requested.value}: {expected.value} sign-off is required first"
        return SignoffDecision.deny(OUT_OF_ORDER, message)

    if requested not in ROLE_SIGNOFF_AUTHORITY[parsed_role]:
        return SignoffDecision.deny(
            ROLE_NOT_PERMITTED,
            f"Role '{parsed_role.value}' cannot sign off as {requested.value}",
        )

    if has_user_signed(rows, user_id):
        return SignoffDecision.deny(
            ALREADY_SIGNED,
            "User has already signed off this workpaper; a different user must sign the next level",
        )

    return SignoffDecision.allow()


def check_revocation(signoffs: Iterable[Any], role: str | None, signoff_type) -> SignoffDecision:
    """Only managers and partners revoke, and only the most senior existing sign-off."""
    parsed_role = parse_role(role)
    if parsed_role is None:
        return SignoffDecision.deny(UNKNOWN_ROLE, f"Role '{role}' cannot revoke sign-offs")
    if parsed_role not in REVOKING_ROLES:
        return SignoffDecision.deny(ROLE_NOT_PERMITTED, "Only managers and partners can revoke sign-offs")

    target = parse_signoff_type(signoff_type)
    indexed = index_signoffs(signoffs)
    senior = next((t for t in reversed(SIGNOFF_HIERARCHY) if t in indexed), None)
    if target is None or target != senior:
        return SignoffDecision.deny(
            NOT_MOST_SENIOR,
            f"Only the most senior sign-off ({senior.value if senior else 'none'}) can be revoked",
        )
    return SignoffDecision.allow()


def get_signoff_requirements(signoffs: Iterable[Any]) -> list[dict]:
    """Per-type checklist for display: completed flag plus the row, if any."""
    indexed = index_signoffs(signoffs)
    return [
        {
            "type": t.value,
            "label": SIGNOFF_LABELS[t],
            "completed": t in indexed,
            "signoff": indexed[t].to_dict() if t in indexed and hasattr(indexed[t], "to_dict") else None,
        }
        for t in SIGNOFF_HIERARCHY
    ]


# ── Content integrity ───────────────────────────────────────────────────────


def compute_content_hash(content, title: str | None) -> str:
    """SHA-256 hex digest over canonical JSON of *content* followed by *title*."""
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256((canonical + (title or "")).encode("utf-8")).hexdigest()
