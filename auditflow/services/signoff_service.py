"""
Workpaper Sign-off Service — orchestrator.

Records and revokes workpaper sign-offs on top of the pure chain evaluator
in ``signoff_chain``.

Design decisions:
    - The chain is reloaded and re-evaluated right before every write;
      UNIQUE(workpaper_id, signoff_type) settles what slips through, and the
      losing insert surfaces as ConcurrencyConflictError.
    - Sign-off rows are inserted or deleted, never updated. Every record and
      revoke event is appended to the transition log (entity_type
      "workpaper"), best-effort like engagement transitions.
    - signature_hash is SHA-256 over canonical JSON content + title at
      signing time; verify_signoff_integrity recomputes it later.
    - Partner sign-off locks the workpaper: no further sign-offs and no
      content edits until a manager or partner revokes it.
    - Only the most senior existing sign-off can be revoked, so the signed
      set is always a prefix of the hierarchy.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from auditflow.core.exceptions import AuthorizationDeniedError, ValidationError
from auditflow.models.workpaper import WorkpaperSignoff
from auditflow.services.signoff_chain import (
    DRAFT_REVIEW_STATUS,
    INVALID_TYPE,
    LOCKED,
    REVIEW_STATUS_BY_TYPE,
    SignoffType,
    check_revocation,
    check_signoff,
    compute_content_hash,
    evaluate_signoff_status,
    get_signoff_requirements,
)

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = frozenset({"title", "content", "reference"})


class SignoffService:
    """Sign-off chain orchestrator over a RecordStore."""

    def __init__(self, store):
        self.store = store

    # ── Queries ──────────────────────────────────────────────────────────

    def get_signoff_status(self, workpaper_id, acting_user=None) -> dict:
        workpaper = self.store.load_workpaper(workpaper_id)
        signoffs = self.store.load_signoffs(workpaper_id)
        status = evaluate_signoff_status(
            signoffs,
            user_id=getattr(acting_user, "id", None),
            role=getattr(acting_user, "role", None),
        )
        return {
            "workpaper": workpaper.to_dict(),
            "status": status.to_dict(),
            "requirements": get_signoff_requirements(signoffs),
            "signoffs": [s.to_dict() for s in signoffs],
        }

    def verify_signoff_integrity(self, workpaper_id) -> dict:
        """Recompute the content hash and compare it with every signature.

        ``is_valid`` is False as soon as the workpaper changed after any
        recorded sign-off.
        """
        workpaper = self.store.load_workpaper(workpaper_id)
        signoffs = self.store.load_signoffs(workpaper_id)
        current = compute_content_hash(workpaper.content, workpaper.title)

        checks = [
            {
                "signoff_id": s.id,
                "signoff_type": s.signoff_type,
                "signed_at": s.signed_at.isoformat() if s.signed_at else None,
                "matches": s.signature_hash == current,
            }
            for s in signoffs
        ]
        is_valid = all(c["matches"] for c in checks) and (
            workpaper.content_hash is None or workpaper.content_hash == current
        )
        if not is_valid:
            logger.warning(
                "Workpaper content changed after sign-off",
                extra={"workpaper_id": workpaper_id},
            )
        return {
            "workpaper_id": workpaper.id,
            "current_hash": current,
            "stored_hash": workpaper.content_hash,
            "is_valid": is_valid,
            "signoffs": checks,
        }

    # ── Commands ─────────────────────────────────────────────────────────

    def create_signoff(
        self,
        workpaper_id,
        signoff_type,
        acting_user,
        comments: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> WorkpaperSignoff:
        """Record the next sign-off level for *acting_user*.

        Raises:
            NotFoundError: workpaper missing or owned by another tenant.
            ValidationError: unknown sign-off type.
            AuthorizationDeniedError: the chain does not allow this sign-off.
            ConcurrencyConflictError: another request recorded this level first.
        """
        workpaper = self.store.load_workpaper(workpaper_id)
        signoffs = self.store.load_signoffs(workpaper_id)

        decision = check_signoff(signoffs, acting_user.id, acting_user.role, signoff_type)
        if not decision.allowed:
            if decision.reason == INVALID_TYPE:
                raise ValidationError(decision.message, details={"signoff_type": signoff_type})
            logger.info(
                "Sign-off denied",
                extra={
                    "workpaper_id": workpaper_id,
                    "signoff_type": signoff_type,
                    "user_id": acting_user.id,
                    "reason": decision.reason,
                },
            )
            raise AuthorizationDeniedError(
                decision.message,
                reason=decision.reason,
                details={"workpaper_id": workpaper_id, "signoff_type": signoff_type},
            )

        signoff_type = SignoffType(signoff_type)
        content_hash = compute_content_hash(workpaper.content, workpaper.title)
        from_status = workpaper.review_status
        to_status = REVIEW_STATUS_BY_TYPE[signoff_type]

        updates = {"review_status": to_status, "content_hash": content_hash}
        if signoff_type == SignoffType.PARTNER:
            updates["locked_at"] = datetime.now(timezone.utc)
            updates["locked_by"] = acting_user.id

        signoff = WorkpaperSignoff(
            workpaper_id=workpaper.id,
            user_id=acting_user.id,
            signer_name_snapshot=acting_user.full_name or self.store.user_name(acting_user.id),
            signoff_type=signoff_type.value,
            comments=(comments or "").strip() or None,
            signature_hash=content_hash,
            user_agent=(user_agent or "")[:500] or None,
            ip_address=ip_address,
        )
        engagement_id = workpaper.engagement_id
        tenant_id = workpaper.tenant_id
        signoff = self.store.insert_signoff(signoff, updates)

        logger.info(
            "Workpaper signed off",
            extra={
                "workpaper_id": workpaper_id,
                "engagement_id": engagement_id,
                "signoff_type": signoff_type.value,
                "user_id": acting_user.id,
            },
        )
        self._log_event(
            tenant_id=tenant_id,
            engagement_id=engagement_id,
            workpaper_id=workpaper_id,
            from_state=from_status,
            to_state=to_status,
            action=f"signoff_{signoff_type.value}",
            performed_by=acting_user.id,
            notes=signoff.comments,
        )
        return signoff

    def revoke_signoff(self, signoff_id, acting_user, reason: str) -> dict:
        """Delete the most senior sign-off and reset the workpaper to draft.

        Returns:
            The updated workpaper dict.
        """
        if not (reason or "").strip():
            raise ValidationError("A reason is required to revoke a sign-off.")

        signoff = self.store.load_signoff(signoff_id)
        workpaper = self.store.load_workpaper(signoff.workpaper_id)
        signoffs = self.store.load_signoffs(workpaper.id)

        decision = check_revocation(signoffs, acting_user.role, signoff.signoff_type)
        if not decision.allowed:
            raise AuthorizationDeniedError(
                decision.message,
                reason=decision.reason,
                details={"signoff_id": signoff_id, "signoff_type": signoff.signoff_type},
            )

        workpaper_id = workpaper.id
        engagement_id = workpaper.engagement_id
        tenant_id = workpaper.tenant_id
        from_status = workpaper.review_status
        revoked_type = signoff.signoff_type

        self.store.delete_signoff(signoff, {
            "review_status": DRAFT_REVIEW_STATUS,
            "locked_at": None,
            "locked_by": None,
        })

        logger.info(
            "Workpaper sign-off revoked",
            extra={
                "workpaper_id": workpaper_id,
                "engagement_id": engagement_id,
                "signoff_type": revoked_type,
                "user_id": acting_user.id,
            },
        )
        self._log_event(
            tenant_id=tenant_id,
            engagement_id=engagement_id,
            workpaper_id=workpaper_id,
            from_state=from_status,
            to_state=DRAFT_REVIEW_STATUS,
            action=f"revoke_{revoked_type}",
            performed_by=acting_user.id,
            notes=reason.strip(),
        )
        return self.store.load_workpaper(workpaper_id).to_dict()

    def update_workpaper_content(self, workpaper_id, acting_user, updates: dict) -> dict:
        """Edit title / content / reference of an unlocked workpaper."""
        if not isinstance(updates, dict) or not updates:
            raise ValidationError("Nothing to update")
        unknown = sorted(set(updates) - _EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Field(s) not editable: {', '.join(unknown)}",
                details={"allowed": sorted(_EDITABLE_FIELDS)},
            )
        if "title" in updates and not str(updates["title"] or "").strip():
            raise ValidationError("title must not be empty")

        workpaper = self.store.load_workpaper(workpaper_id)
        if workpaper.is_locked:
            raise AuthorizationDeniedError(
                "Workpaper is locked by partner sign-off; revoke the partner sign-off to edit",
                reason=LOCKED,
                details={"workpaper_id": workpaper_id},
            )

        workpaper = self.store.update_workpaper(workpaper_id, updates)
        logger.info(
            "Workpaper content updated",
            extra={"workpaper_id": workpaper_id, "user_id": getattr(acting_user, "id", None)},
        )
        return workpaper.to_dict()

    # ── Internal ─────────────────────────────────────────────────────────

    def _log_event(self, *, tenant_id, engagement_id, workpaper_id, from_state, to_state,
                   action, performed_by, notes):
        try:
            self.store.append_log(
                tenant_id=tenant_id,
                entity_type="workpaper",
                entity_id=str(workpaper_id),
                engagement_id=engagement_id,
                from_state=from_state,
                to_state=to_state,
                action=action,
                performed_by=performed_by,
                notes=notes,
            )
        except Exception:
            logger.warning(
                "Sign-off log append failed; sign-off change stands",
                exc_info=True,
                extra={"workpaper_id": workpaper_id, "action": action},
            )
