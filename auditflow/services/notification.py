"""
Notification Service — workflow event sink.

Receives engagement events after the state change has committed and turns
them into in-app notifications for the engagement partner and manager.
Delivery is best-effort: callers log and swallow failures, so nothing here
may influence workflow correctness.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from auditflow.models import db
from auditflow.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Publish ───────────────────────────────────────────────────────────

    @staticmethod
    def publish(engagement_id, event: dict):
        """
        Record *event* as one notification per recipient.

        Args:
            engagement_id: Engagement the event belongs to.
            event: dict with at least ``type`` and ``tenant_id``; optional
                ``title``, ``message``, ``recipients`` (user ids) and any
                extra payload fields.

        Returns:
            List of created Notification instances (already committed).
        """
        recipients = [r for r in (event.get("recipients") or []) if r is not None] or [None]
        payload = {k: v for k, v in event.items() if k not in ("recipients", "title", "message")}
        notifications = []
        for recipient_id in dict.fromkeys(recipients):
            notif = Notification(
                tenant_id=event["tenant_id"],
                engagement_id=engagement_id,
                recipient_id=recipient_id,
                event_type=event["type"],
                title=event.get("title") or event["type"],
                message=event.get("message", ""),
                category=event.get("category", "workflow"),
                payload=payload,
            )
            db.session.add(notif)
            notifications.append(notif)
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        logger.debug(
            "Notifications published",
            extra={"engagement_id": engagement_id, "event_type": event["type"], "count": len(notifications)},
        )
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_engagement(engagement_id, recipient_id=None, unread_only=False, limit=50):
        """Notifications for an engagement, newest first."""
        stmt = select(Notification).where(Notification.engagement_id == engagement_id)
        if recipient_id is not None:
            stmt = stmt.where(
                (Notification.recipient_id == recipient_id) | (Notification.recipient_id.is_(None))
            )
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return list(db.session.execute(stmt).scalars().all())
