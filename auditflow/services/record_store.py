"""
Record store — persistence collaborator for the workflow orchestrators.

The orchestrators depend on the ``RecordStore`` protocol only; production
code uses ``SqlAlchemyRecordStore`` over the Flask-SQLAlchemy session.

Every lookup is tenant scoped: a record owned by another tenant is reported
as ``NotFoundError``, exactly like a missing one.

Write semantics:
    save            compare-and-swap on engagements.status; False on conflict
    append_log      own commit; raises on failure (caller decides severity)
    insert_signoff  sign-off row + workpaper update in one transaction;
                    UNIQUE(workpaper_id, signoff_type) violation →
                    ConcurrencyConflictError
    delete_signoff  row delete + workpaper reset in one transaction
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auditflow.core.exceptions import ConcurrencyConflictError, NotFoundError
from auditflow.models import db
from auditflow.models.auth import User
from auditflow.models.engagement import Engagement, TransitionLog
from auditflow.models.workpaper import Workpaper, WorkpaperSignoff

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    def load(self, engagement_id: int) -> Engagement: ...

    def save(self, engagement_id: int, expected_status: str, new_status: str) -> bool: ...

    def append_log(self, **entry) -> TransitionLog: ...

    def count_workpapers(self, engagement_id: int) -> tuple[int, int]: ...

    def update_checklist(self, engagement_id: int, values: dict) -> Engagement: ...

    def list_log(self, engagement_id: int) -> list[TransitionLog]: ...

    def load_workpaper(self, workpaper_id: int) -> Workpaper: ...

    def update_workpaper(self, workpaper_id: int, values: dict) -> Workpaper: ...

    def load_signoffs(self, workpaper_id: int) -> list[WorkpaperSignoff]: ...

    def load_signoff(self, signoff_id: int) -> WorkpaperSignoff: ...

    def insert_signoff(self, signoff: WorkpaperSignoff, workpaper_updates: dict) -> WorkpaperSignoff: ...

    def delete_signoff(self, signoff: WorkpaperSignoff, workpaper_updates: dict) -> None: ...

    def user_name(self, user_id: int | None) -> str | None: ...


class SqlAlchemyRecordStore:
    """RecordStore over ``db.session``, scoped to one tenant."""

    def __init__(self, tenant_id: int | None):
        self.tenant_id = tenant_id

    # ── Engagements ──────────────────────────────────────────────────────

    def load(self, engagement_id: int) -> Engagement:
        stmt = select(Engagement).where(Engagement.id == engagement_id)
        if self.tenant_id is not None:
            stmt = stmt.where(Engagement.tenant_id == self.tenant_id)
        engagement = db.session.execute(stmt).scalar_one_or_none()
        if engagement is None:
            raise NotFoundError(resource="Engagement", resource_id=engagement_id, tenant_id=self.tenant_id)
        return engagement

    def save(self, engagement_id: int, expected_status: str, new_status: str) -> bool:
        """Move status from *expected_status* to *new_status* atomically.

        Returns False (and writes nothing) when the stored status no longer
        equals *expected_status*.
        """
        stmt = (
            update(Engagement)
            .where(Engagement.id == engagement_id, Engagement.status == expected_status)
            .values(status=new_status, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if self.tenant_id is not None:
            stmt = stmt.where(Engagement.tenant_id == self.tenant_id)
        try:
            result = db.session.execute(stmt)
            if result.rowcount != 1:
                db.session.rollback()
                return False
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        # Session identity map still holds the pre-update row.
        db.session.expire_all()
        return True

    def update_checklist(self, engagement_id: int, values: dict) -> Engagement:
        engagement = self.load(engagement_id)
        for key, value in values.items():
            setattr(engagement, key, value)
        self._commit()
        return engagement

    def count_workpapers(self, engagement_id: int) -> tuple[int, int]:
        """Return (total, locked) workpaper counts for the engagement."""
        total, locked = db.session.execute(
            select(
                func.count(Workpaper.id),
                func.count(Workpaper.locked_at),
            ).where(Workpaper.engagement_id == engagement_id)
        ).one()
        return int(total or 0), int(locked or 0)

    # ── Transition log ───────────────────────────────────────────────────

    def append_log(self, **entry) -> TransitionLog:
        entry.setdefault("tenant_id", self.tenant_id)
        row = TransitionLog(**entry)
        db.session.add(row)
        self._commit()
        return row

    def list_log(self, engagement_id: int) -> list[TransitionLog]:
        stmt = (
            select(TransitionLog)
            .where(TransitionLog.engagement_id == engagement_id)
            .order_by(TransitionLog.performed_at.asc(), TransitionLog.id.asc())
        )
        if self.tenant_id is not None:
            stmt = stmt.where(TransitionLog.tenant_id == self.tenant_id)
        return list(db.session.execute(stmt).scalars().all())

    # ── Workpapers & sign-offs ───────────────────────────────────────────

    def load_workpaper(self, workpaper_id: int) -> Workpaper:
        stmt = select(Workpaper).where(Workpaper.id == workpaper_id)
        if self.tenant_id is not None:
            stmt = stmt.where(Workpaper.tenant_id == self.tenant_id)
        workpaper = db.session.execute(stmt).scalar_one_or_none()
        if workpaper is None:
            raise NotFoundError(resource="Workpaper", resource_id=workpaper_id, tenant_id=self.tenant_id)
        return workpaper

    def update_workpaper(self, workpaper_id: int, values: dict) -> Workpaper:
        workpaper = self.load_workpaper(workpaper_id)
        for key, value in values.items():
            setattr(workpaper, key, value)
        self._commit()
        return workpaper

    def load_signoffs(self, workpaper_id: int) -> list[WorkpaperSignoff]:
        return list(db.session.execute(
            select(WorkpaperSignoff)
            .where(WorkpaperSignoff.workpaper_id == workpaper_id)
            .order_by(WorkpaperSignoff.signed_at.asc(), WorkpaperSignoff.id.asc())
        ).scalars().all())

    def load_signoff(self, signoff_id: int) -> WorkpaperSignoff:
        stmt = (
            select(WorkpaperSignoff)
            .join(Workpaper, Workpaper.id == WorkpaperSignoff.workpaper_id)
            .where(WorkpaperSignoff.id == signoff_id)
        )
        if self.tenant_id is not None:
            stmt = stmt.where(Workpaper.tenant_id == self.tenant_id)
        signoff = db.session.execute(stmt).scalar_one_or_none()
        if signoff is None:
            raise NotFoundError(resource="WorkpaperSignoff", resource_id=signoff_id, tenant_id=self.tenant_id)
        return signoff

    def insert_signoff(self, signoff: WorkpaperSignoff, workpaper_updates: dict) -> WorkpaperSignoff:
        workpaper = self.load_workpaper(signoff.workpaper_id)
        db.session.add(signoff)
        for key, value in workpaper_updates.items():
            setattr(workpaper, key, value)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            logger.warning(
                "Sign-off insert rejected by unique constraint",
                extra={"workpaper_id": signoff.workpaper_id, "signoff_type": signoff.signoff_type},
            )
            raise ConcurrencyConflictError(
                "WorkpaperSignoff",
                signoff.workpaper_id,
                message=f"A {signoff.signoff_type} sign-off was recorded concurrently; reload and retry",
            ) from exc
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return signoff

    def delete_signoff(self, signoff: WorkpaperSignoff, workpaper_updates: dict) -> None:
        workpaper = self.load_workpaper(signoff.workpaper_id)
        db.session.delete(signoff)
        for key, value in workpaper_updates.items():
            setattr(workpaper, key, value)
        self._commit()

    # ── Users ────────────────────────────────────────────────────────────

    def user_name(self, user_id: int | None) -> str | None:
        if not user_id:
            return None
        user = db.session.get(User, user_id)
        return user.full_name if user else None

    # ── Internal ─────────────────────────────────────────────────────────

    def _commit(self):
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
