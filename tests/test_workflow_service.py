"""
Workflow orchestrator tests.

Two layers:
    - FakeStore (in-memory RecordStore) for failure injection: lost CAS,
      log append failure, notification failure, corrupt status.
    - SqlAlchemyRecordStore against the test database for the end-to-end
      lifecycle, the real compare-and-swap, checklist updates and history.
"""

import logging
from types import SimpleNamespace

import pytest
from sqlalchemy import update

from auditflow.auth import ActingUser
from auditflow.core.exceptions import (
    AuthorizationDeniedError,
    ConcurrencyConflictError,
    IntegrityViolationError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionNotMetError,
    ValidationError,
)
from auditflow.models import db
from auditflow.models.engagement import Engagement, TransitionLog
from auditflow.services.engagement_rules import STORED_GATE_FLAGS, EngagementAction, EngagementState
from auditflow.services.engagement_state_machine import (
    AUTHORIZATION_DENIED,
    CONCURRENCY_CONFLICT,
    INVALID_TRANSITION,
    PRECONDITION_NOT_MET,
)
from auditflow.services.notification import NotificationService
from auditflow.services.record_store import SqlAlchemyRecordStore
from auditflow.services.workflow_service import TRANSITIONED_EVENT, WorkflowService

from conftest import make_workpaper

PARTNER = ActingUser(id=100, tenant_id=1, role="partner")
MANAGER = ActingUser(id=200, tenant_id=1, role="manager")
STAFF = ActingUser(id=300, tenant_id=1, role="staff")


# ═════════════════════════════════════════════════════════════════════════════
# In-memory collaborators
# ═════════════════════════════════════════════════════════════════════════════


def _engagement(status="draft", **flags):
    values = {flag: False for flag in STORED_GATE_FLAGS}
    values.update(partner_signoff=False)
    values.update(flags)
    return SimpleNamespace(
        id=1, tenant_id=1, name="FY26", status=status,
        engagement_partner_id=PARTNER.id, manager_id=MANAGER.id,
        checklist=lambda: {}, **values,
    )


class FakeStore:
    def __init__(self, engagement, workpaper_counts=(0, 0)):
        self.engagement = engagement
        self.workpaper_counts = workpaper_counts
        self.saves = []
        self.logs = []
        self.lose_race = False
        self.fail_log = False

    def load(self, engagement_id):
        if engagement_id != self.engagement.id:
            raise NotFoundError("Engagement", engagement_id)
        return self.engagement

    def save(self, engagement_id, expected_status, new_status):
        if self.lose_race or self.engagement.status != expected_status:
            return False
        self.engagement.status = new_status
        self.saves.append((expected_status, new_status))
        return True

    def append_log(self, **entry):
        if self.fail_log:
            raise RuntimeError("log store unavailable")
        self.logs.append(entry)

    def count_workpapers(self, engagement_id):
        return self.workpaper_counts


class RecordingNotifier:
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def publish(self, engagement_id, event):
        if self.fail:
            raise ConnectionError("notification sink down")
        self.events.append((engagement_id, event))


def _service(engagement, **store_kwargs):
    store = FakeStore(engagement, **store_kwargs)
    notifier = RecordingNotifier()
    return WorkflowService(store, notifier), store, notifier


# ═════════════════════════════════════════════════════════════════════════════
# Orchestration contract (fake store)
# ═════════════════════════════════════════════════════════════════════════════


class TestPerformAction:

    def test_success_writes_once_logs_once_publishes_once(self):
        service, store, notifier = _service(_engagement(independence_confirmed=True, client_accepted=True))

        result = service.perform_action(1, "submit_for_acceptance", STAFF, notes="ready")

        assert result.success
        assert result.new_state == EngagementState.ACCEPTANCE_PENDING
        assert store.saves == [("draft", "acceptance_pending")]
        assert len(store.logs) == 1
        log = store.logs[0]
        assert log["entity_type"] == "engagement"
        assert log["from_state"] == "draft"
        assert log["to_state"] == "acceptance_pending"
        assert log["performed_by"] == STAFF.id
        assert log["notes"] == "ready"
        assert len(notifier.events) == 1
        assert notifier.events[0][1]["type"] == TRANSITIONED_EVENT

    def test_denial_writes_nothing(self):
        service, store, notifier = _service(_engagement())

        result = service.perform_action(1, "submit_for_acceptance", STAFF)

        assert result.error_code == PRECONDITION_NOT_MET
        assert store.saves == []
        assert store.logs == []
        assert notifier.events == []

    def test_invalid_action_writes_nothing(self):
        service, store, _ = _service(_engagement())
        assert service.perform_action(1, "archive", PARTNER).error_code == INVALID_TRANSITION
        assert store.saves == []

    def test_lost_race_is_concurrency_conflict(self):
        service, store, notifier = _service(
            _engagement(independence_confirmed=True, client_accepted=True), workpaper_counts=(0, 0),
        )
        store.lose_race = True

        result = service.perform_action(1, "submit_for_acceptance", STAFF)

        assert not result.success
        assert result.error_code == CONCURRENCY_CONFLICT
        assert result.new_state is None
        assert store.logs == []
        assert notifier.events == []

    def test_log_failure_does_not_undo_state_change(self, caplog):
        service, store, notifier = _service(_engagement(independence_confirmed=True, client_accepted=True))
        store.fail_log = True

        with caplog.at_level(logging.WARNING):
            result = service.perform_action(1, "submit_for_acceptance", STAFF)

        assert result.success
        assert store.engagement.status == "acceptance_pending"
        assert any("log append failed" in r.getMessage() for r in caplog.records)
        assert len(notifier.events) == 1

    def test_notification_failure_is_swallowed(self, caplog):
        engagement = _engagement(independence_confirmed=True, client_accepted=True)
        store = FakeStore(engagement)
        service = WorkflowService(store, RecordingNotifier(fail=True))

        with caplog.at_level(logging.WARNING):
            result = service.perform_action(1, "submit_for_acceptance", STAFF)

        assert result.success
        assert len(store.logs) == 1
        assert any("notification publish failed" in r.getMessage() for r in caplog.records)

    def test_without_notifier(self):
        store = FakeStore(_engagement(independence_confirmed=True, client_accepted=True))
        result = WorkflowService(store).perform_action(1, "submit_for_acceptance", STAFF)
        assert result.success

    def test_corrupt_status_raises_integrity_violation(self):
        service, store, _ = _service(_engagement(status="closed"))
        with pytest.raises(IntegrityViolationError):
            service.perform_action(1, "archive", PARTNER)
        assert store.saves == []

    def test_missing_engagement(self):
        service, _, _ = _service(_engagement())
        with pytest.raises(NotFoundError):
            service.perform_action(99, "archive", PARTNER)

    def test_partner_role_alone_is_not_engagement_partner(self):
        other_partner = ActingUser(id=999, tenant_id=1, role="partner")
        service, _, _ = _service(_engagement(status="acceptance_pending"))
        result = service.perform_action(1, "approve_acceptance", other_partner)
        assert result.error_code == AUTHORIZATION_DENIED


class TestTransitionRaises:

    def test_success_returns_result(self):
        service, store, _ = _service(_engagement(independence_confirmed=True, client_accepted=True))
        result = service.transition(1, "submit_for_acceptance", STAFF)
        assert result.new_state == EngagementState.ACCEPTANCE_PENDING
        assert store.engagement.status == "acceptance_pending"

    def test_invalid_transition_names_current_state(self):
        service, store, _ = _service(_engagement())
        with pytest.raises(InvalidTransitionError) as exc:
            service.transition(1, "archive", PARTNER)
        assert exc.value.current_state == "draft"
        assert store.saves == []

    def test_precondition(self):
        service, _, _ = _service(_engagement())
        with pytest.raises(PreconditionNotMetError) as exc:
            service.transition(1, "submit_for_acceptance", STAFF)
        assert len(exc.value.blocked_by) == 2

    def test_role_gate(self):
        service, _, _ = _service(_engagement(status="acceptance_pending"))
        with pytest.raises(AuthorizationDeniedError):
            service.transition(1, "approve_acceptance", MANAGER)

    def test_lost_race(self):
        service, store, _ = _service(_engagement(independence_confirmed=True, client_accepted=True))
        store.lose_race = True
        with pytest.raises(ConcurrencyConflictError):
            service.transition(1, "submit_for_acceptance", STAFF)


class TestContextBuilding:

    @pytest.mark.parametrize("attested, counts, expected", [
        (True, (2, 2), True),
        (True, (2, 1), False),
        (True, (0, 0), False),
        (False, (3, 3), False),
    ])
    def test_partner_signoff_derivation(self, attested, counts, expected):
        engagement = _engagement(status="partner_review", partner_signoff=attested)
        service, _, _ = _service(engagement, workpaper_counts=counts)
        ctx = service.build_context(engagement, PARTNER)
        assert ctx.partner_signoff is expected
        assert ctx.is_engagement_partner
        assert not ctx.is_manager

    def test_manager_identity(self):
        engagement = _engagement()
        service, _, _ = _service(engagement)
        ctx = service.build_context(engagement, MANAGER)
        assert ctx.is_manager
        assert ctx.user_role == "manager"

    def test_summary(self):
        service, _, _ = _service(_engagement(status="accepted", engagement_letter_signed=True))
        summary = service.get_workflow_summary(1, STAFF)
        assert summary["state"] == "accepted"
        assert summary["display"]["label"] == "Accepted"
        assert summary["next_required_action"]["action"] == "begin_planning"
        assert summary["available_actions"] == [{"action": "begin_planning", "label": "Begin Planning"}]
        assert summary["is_active"]


# ═════════════════════════════════════════════════════════════════════════════
# Database-backed orchestration
# ═════════════════════════════════════════════════════════════════════════════


def _db_service(tenant_id, notifier=None):
    return WorkflowService(SqlAlchemyRecordStore(tenant_id), notifier)


class TestEndToEndLifecycle:

    def test_draft_to_accepted_then_issue_report_rejected(self, engagement, users):
        engagement.independence_confirmed = True
        engagement.client_accepted = True
        db.session.commit()
        service = _db_service(engagement.tenant_id, NotificationService())
        partner = ActingUser.from_user(users["partner"])

        first = service.perform_action(engagement.id, EngagementAction.SUBMIT_FOR_ACCEPTANCE,
                                       ActingUser.from_user(users["staff"]))
        assert first.success
        assert db.session.get(Engagement, engagement.id).status == "acceptance_pending"

        second = service.perform_action(engagement.id, "approve_acceptance", partner)
        assert second.success
        assert db.session.get(Engagement, engagement.id).status == "accepted"

        third = service.perform_action(engagement.id, "issue_report", partner)
        assert not third.success
        assert third.error_code == INVALID_TRANSITION
        assert db.session.get(Engagement, engagement.id).status == "accepted"

        history = service.get_history(engagement.id)
        assert [(h["from_state"], h["to_state"]) for h in history] == [
            ("draft", "acceptance_pending"),
            ("acceptance_pending", "accepted"),
        ]
        notifications = NotificationService.list_for_engagement(engagement.id)
        assert len(notifications) == 4  # partner + manager, two transitions
        assert {n.recipient_id for n in notifications} == {users["partner"].id, users["manager"].id}

    def test_issue_report_requires_locked_workpapers(self, engagement, users):
        engagement.status = "partner_review"
        engagement.report_approved = True
        engagement.partner_signoff = True
        make_workpaper(engagement)
        db.session.commit()
        service = _db_service(engagement.tenant_id)
        partner = ActingUser.from_user(users["partner"])

        result = service.perform_action(engagement.id, "issue_report", partner)
        assert result.error_code == PRECONDITION_NOT_MET

        blocking = service.get_blocking_requirements(engagement.id, "issue_report", partner)
        assert [b.key for b in blocking] == ["partner_signoff"]

    def test_cross_tenant_engagement_is_not_found(self, engagement):
        with pytest.raises(NotFoundError):
            _db_service(engagement.tenant_id + 1).perform_action(engagement.id, "archive", PARTNER)


class TestCompareAndSwap:

    def test_save_with_stale_expected_status_writes_nothing(self, engagement):
        store = SqlAlchemyRecordStore(engagement.tenant_id)
        assert store.save(engagement.id, "accepted", "planning") is False
        assert db.session.get(Engagement, engagement.id).status == "draft"
        assert store.save(engagement.id, "draft", "acceptance_pending") is True
        assert db.session.get(Engagement, engagement.id).status == "acceptance_pending"

    def test_concurrent_writer_between_load_and_save(self, engagement, users):
        engagement.independence_confirmed = True
        engagement.client_accepted = True
        db.session.commit()

        class RacingStore(SqlAlchemyRecordStore):
            def load(self, engagement_id):
                loaded = super().load(engagement_id)
                # Another request moves the row after our snapshot was taken
                db.session.execute(
                    update(Engagement)
                    .where(Engagement.id == engagement_id)
                    .values(status="acceptance_pending")
                    .execution_options(synchronize_session=False)
                )
                return loaded

        service = WorkflowService(RacingStore(engagement.tenant_id))
        result = service.perform_action(engagement.id, "submit_for_acceptance", ActingUser.from_user(users["staff"]))

        assert result.error_code == CONCURRENCY_CONFLICT
        assert db.session.query(TransitionLog).count() == 0


class TestChecklist:

    def test_update_flags(self, engagement, users):
        service = _db_service(engagement.tenant_id)
        result = service.update_checklist(
            engagement.id, {"independence_confirmed": True, "client_accepted": True},
            ActingUser.from_user(users["staff"]),
        )
        assert result["checklist"]["independence_confirmed"] is True
        assert result["status"] == "draft"

    @pytest.mark.parametrize("updates", [{}, {"status": "issued"}, {"materiality_set": "yes"}])
    def test_rejects_bad_updates(self, engagement, users, updates):
        with pytest.raises(ValidationError):
            _db_service(engagement.tenant_id).update_checklist(
                engagement.id, updates, ActingUser.from_user(users["partner"]),
            )

    def test_partner_attestation_only_by_engagement_partner(self, engagement, users):
        service = _db_service(engagement.tenant_id)
        with pytest.raises(AuthorizationDeniedError):
            service.update_checklist(engagement.id, {"partner_signoff": True}, ActingUser.from_user(users["manager"]))
        result = service.update_checklist(
            engagement.id, {"partner_signoff": True}, ActingUser.from_user(users["partner"]),
        )
        assert result["checklist"]["partner_signoff"] is True

    def test_closed_engagement_is_frozen(self, engagement, users):
        engagement.status = "issued"
        db.session.commit()
        with pytest.raises(ValidationError):
            _db_service(engagement.tenant_id).update_checklist(
                engagement.id, {"eqcr_complete": True}, ActingUser.from_user(users["partner"]),
            )
