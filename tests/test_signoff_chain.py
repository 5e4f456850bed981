"""
Sign-off chain evaluator tests (pure, no database).

Rows are plain namespaces exposing ``signoff_type`` and ``user_id``, the
same attributes the ORM model carries.
"""

from types import SimpleNamespace

import pytest

from auditflow.core.exceptions import IntegrityViolationError
from auditflow.services.signoff_chain import (
    ALREADY_SIGNED,
    INVALID_TYPE,
    LOCKED,
    NOT_MOST_SENIOR,
    OUT_OF_ORDER,
    ROLE_NOT_PERMITTED,
    ROLE_SIGNOFF_AUTHORITY,
    UNKNOWN_ROLE,
    SignoffType,
    UserRole,
    check_revocation,
    check_signoff,
    compute_content_hash,
    evaluate_signoff_status,
    get_signoff_requirements,
    has_user_signed,
    parse_role,
)


def _row(signoff_type, user_id, row_id=None):
    return SimpleNamespace(id=row_id, signoff_type=signoff_type, user_id=user_id)


def _chain(*types):
    """Rows for *types* signed by users 1, 2, 3, ... in order."""
    return [_row(t, i + 1, row_id=i + 1) for i, t in enumerate(types)]


# ═════════════════════════════════════════════════════════════════════════════
# Status
# ═════════════════════════════════════════════════════════════════════════════


class TestSignoffStatus:

    def test_empty_chain(self):
        status = evaluate_signoff_status([], user_id=1, role="staff")
        assert status.next_required_type == SignoffType.PREPARER
        assert status.can_sign
        assert status.completed_types == ()
        assert len(status.pending_types) == 4
        assert not status.is_fully_signed
        assert not status.is_locked

    def test_partial_chain(self):
        status = evaluate_signoff_status(_chain("preparer", "reviewer"), user_id=9, role="manager")
        assert status.next_required_type == SignoffType.MANAGER
        assert status.completed_types == (SignoffType.PREPARER, SignoffType.REVIEWER)
        assert status.can_sign

    def test_fully_signed_is_locked(self):
        status = evaluate_signoff_status(_chain("preparer", "reviewer", "manager", "partner"), 9, "partner")
        assert status.next_required_type is None
        assert status.is_fully_signed
        assert status.is_locked
        assert not status.can_sign
        assert status.to_dict()["next_required_type"] is None

    def test_duplicate_type_is_integrity_violation(self):
        rows = [_row("preparer", 1, 1), _row("preparer", 2, 2)]
        with pytest.raises(IntegrityViolationError):
            evaluate_signoff_status(rows, 3, "manager")

    def test_unknown_stored_type_is_integrity_violation(self):
        with pytest.raises(IntegrityViolationError):
            evaluate_signoff_status([_row("auditor", 1)], 3, "manager")


# ═════════════════════════════════════════════════════════════════════════════
# Order, role authority, self-review, lock
# ═════════════════════════════════════════════════════════════════════════════


class TestMonotonicOrder:

    def test_reviewer_before_preparer_denied(self):
        decision = check_signoff([], user_id=1, role="partner", signoff_type="reviewer")
        assert not decision.allowed
        assert decision.reason == OUT_OF_ORDER
        assert "preparer" in decision.message

    def test_existing_level_cannot_be_signed_again(self):
        decision = check_signoff(_chain("preparer"), user_id=5, role="manager", signoff_type="preparer")
        assert decision.reason == OUT_OF_ORDER

    def test_chain_in_order_with_distinct_users(self):
        rows = []
        for user_id, (role, signoff_type) in enumerate(
            [("staff", "preparer"), ("senior", "reviewer"), ("manager", "manager"), ("partner", "partner")],
            start=1,
        ):
            assert check_signoff(rows, user_id, role, signoff_type).allowed
            rows.append(_row(signoff_type, user_id))
        assert evaluate_signoff_status(rows, 99, "partner").is_fully_signed


class TestRoleAuthority:

    @pytest.mark.parametrize("role, signoff_type, allowed", [
        ("staff", "preparer", True),
        ("senior", "preparer", True),
        ("reviewer", "preparer", False),
        ("manager", "preparer", True),
        ("partner", "preparer", True),
    ])
    def test_preparer_level(self, role, signoff_type, allowed):
        decision = check_signoff([], user_id=1, role=role, signoff_type=signoff_type)
        assert decision.allowed is allowed
        if not allowed:
            assert decision.reason == ROLE_NOT_PERMITTED

    def test_staff_cannot_review(self):
        decision = check_signoff(_chain("preparer"), user_id=9, role="staff", signoff_type="reviewer")
        assert decision.reason == ROLE_NOT_PERMITTED

    def test_manager_cannot_partner_sign(self):
        rows = _chain("preparer", "reviewer", "manager")
        decision = check_signoff(rows, user_id=9, role="manager", signoff_type="partner")
        assert decision.reason == ROLE_NOT_PERMITTED

    def test_authority_matrix(self):
        assert ROLE_SIGNOFF_AUTHORITY[UserRole.PARTNER] == frozenset(SignoffType)
        assert ROLE_SIGNOFF_AUTHORITY[UserRole.REVIEWER] == frozenset({SignoffType.REVIEWER})

    @pytest.mark.parametrize("role", ["admin", "", None, "Partner-ish"])
    def test_unknown_role_fails_closed(self, role):
        decision = check_signoff([], user_id=1, role=role, signoff_type="preparer")
        assert decision.reason == UNKNOWN_ROLE
        assert not evaluate_signoff_status([], 1, role).can_sign

    def test_role_aliases(self):
        assert parse_role("staff_auditor") is UserRole.STAFF
        assert parse_role("Senior_Auditor") is UserRole.SENIOR
        assert parse_role("MANAGER") is UserRole.MANAGER


class TestSelfReviewPrevention:

    def test_preparer_cannot_review_own_work(self):
        decision = check_signoff(_chain("preparer"), user_id=1, role="senior", signoff_type="reviewer")
        assert not decision.allowed
        assert decision.reason == ALREADY_SIGNED

    def test_status_reports_cannot_sign(self):
        assert not evaluate_signoff_status(_chain("preparer"), user_id=1, role="senior").can_sign
        assert evaluate_signoff_status(_chain("preparer"), user_id=2, role="senior").can_sign


class TestLockTerminality:

    @pytest.mark.parametrize("signoff_type", ["preparer", "reviewer", "manager", "partner"])
    def test_nothing_after_partner(self, signoff_type):
        rows = _chain("preparer", "reviewer", "manager", "partner")
        decision = check_signoff(rows, user_id=42, role="partner", signoff_type=signoff_type)
        assert decision.reason == LOCKED

    def test_invalid_type(self):
        assert check_signoff([], 1, "partner", "auditor").reason == INVALID_TYPE


# ═════════════════════════════════════════════════════════════════════════════
# Revocation
# ═════════════════════════════════════════════════════════════════════════════


class TestRevocation:

    def test_only_managers_and_partners(self):
        rows = _chain("preparer")
        assert check_revocation(rows, "senior", "preparer").reason == ROLE_NOT_PERMITTED
        assert check_revocation(rows, "ghost", "preparer").reason == UNKNOWN_ROLE
        assert check_revocation(rows, "manager", "preparer").allowed

    def test_only_most_senior_level(self):
        rows = _chain("preparer", "reviewer", "manager")
        assert check_revocation(rows, "partner", "reviewer").reason == NOT_MOST_SENIOR
        assert check_revocation(rows, "partner", "manager").allowed


# ═════════════════════════════════════════════════════════════════════════════
# Lookups and hashing
# ═════════════════════════════════════════════════════════════════════════════


class TestLookups:

    def test_has_user_signed(self):
        rows = _chain("preparer", "reviewer")
        assert has_user_signed(rows, 2)
        assert not has_user_signed(rows, 3)
        assert not has_user_signed(rows, None)

    def test_requirements_view(self):
        view = get_signoff_requirements(_chain("preparer"))
        assert [v["type"] for v in view] == ["preparer", "reviewer", "manager", "partner"]
        assert [v["completed"] for v in view] == [True, False, False, False]


class TestContentHash:

    def test_deterministic_and_key_order_independent(self):
        a = compute_content_hash({"b": 2, "a": 1}, "Cash")
        b = compute_content_hash({"a": 1, "b": 2}, "Cash")
        assert a == b
        assert len(a) == 64

    def test_title_and_content_both_count(self):
        base = compute_content_hash({"a": 1}, "Cash")
        assert compute_content_hash({"a": 1}, "Receivables") != base
        assert compute_content_hash({"a": 2}, "Cash") != base

    def test_none_content(self):
        assert compute_content_hash(None, None) == compute_content_hash(None, "")
