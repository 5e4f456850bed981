"""
Engagement domain model.

Models:
    - Engagement: one audit engagement and its compliance checklist flags.
    - TransitionLog: immutable, append-only record of every state change
      (engagement lifecycle transitions and workpaper sign-off events).

``Engagement.status`` is written only by the workflow orchestrator through a
compare-and-swap update; checklist flags are written by the checklist
endpoint. Nothing else mutates either.
"""

from datetime import datetime, timezone

from auditflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class Engagement(db.Model):
    """
    Audit engagement.

    Eleven boolean gating flags map one-to-one onto the state machine
    context. ``partner_signoff`` is the engagement partner's own attestation;
    the effective gate additionally requires every workpaper to be locked.
    """

    __tablename__ = "engagements"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    client_name = db.Column(db.String(200), nullable=True)
    fiscal_year_end = db.Column(db.Date, nullable=True)
    status = db.Column(
        db.String(30),
        nullable=False,
        default="draft",
        comment="draft | acceptance_pending | accepted | planning | planning_review | fieldwork | "
                "fieldwork_review | wrap_up | reporting | partner_review | issued | archived",
    )

    engagement_partner_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    manager_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    # Compliance checklist
    independence_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    client_accepted = db.Column(db.Boolean, nullable=False, default=False)
    engagement_letter_signed = db.Column(db.Boolean, nullable=False, default=False)
    planning_memo_approved = db.Column(db.Boolean, nullable=False, default=False)
    risk_assessment_complete = db.Column(db.Boolean, nullable=False, default=False)
    materiality_set = db.Column(db.Boolean, nullable=False, default=False)
    all_procedures_complete = db.Column(db.Boolean, nullable=False, default=False)
    review_notes_cleared = db.Column(db.Boolean, nullable=False, default=False)
    wrap_up_complete = db.Column(db.Boolean, nullable=False, default=False)
    eqcr_complete = db.Column(db.Boolean, nullable=False, default=False)
    report_approved = db.Column(db.Boolean, nullable=False, default=False)
    partner_signoff = db.Column(
        db.Boolean,
        nullable=False,
        default=False,
        comment="Engagement partner attestation; effective gate also requires all workpapers locked",
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.Index("ix_engagements_tenant_status", "tenant_id", "status"),
    )

    workpapers = db.relationship("Workpaper", back_populates="engagement", lazy="dynamic")

    CHECKLIST_FIELDS = (
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
        "partner_signoff",
    )

    def checklist(self) -> dict:
        return {f: bool(getattr(self, f)) for f in self.CHECKLIST_FIELDS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "client_name": self.client_name,
            "fiscal_year_end": self.fiscal_year_end.isoformat() if self.fiscal_year_end else None,
            "status": self.status,
            "engagement_partner_id": self.engagement_partner_id,
            "manager_id": self.manager_id,
            "checklist": self.checklist(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Engagement #{self.id} {self.name} [{self.status}]>"


class TransitionLog(db.Model):
    """
    Immutable transition trail.

    Rows are NEVER updated or deleted. entity_type is ``engagement`` for
    lifecycle transitions and ``workpaper`` for sign-off record / revoke
    events (whose states are workpaper review statuses).
    """

    __tablename__ = "transition_log"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entity_type = db.Column(db.String(30), nullable=False, comment="engagement | workpaper")
    entity_id = db.Column(db.String(64), nullable=False)
    engagement_id = db.Column(
        db.Integer,
        db.ForeignKey("engagements.id", ondelete="CASCADE"),
        nullable=True,
        comment="Owning engagement, also set for workpaper events so history can be listed per engagement",
    )
    from_state = db.Column(db.String(30), nullable=True)
    to_state = db.Column(db.String(30), nullable=False)
    action = db.Column(db.String(50), nullable=False)
    performed_by = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    notes = db.Column(db.Text, nullable=True, comment="Free text; revocation reason for revoke events")

    __table_args__ = (
        db.Index("ix_transition_log_entity", "entity_type", "entity_id"),
        db.Index("ix_transition_log_engagement", "engagement_id", "performed_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "engagement_id": self.engagement_id,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "action": self.action,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at.isoformat() if self.performed_at else None,
            "notes": self.notes,
        }

    def __repr__(self) -> str:
        return f"<TransitionLog #{self.id} {self.entity_type}/{self.entity_id} {self.from_state}->{self.to_state}>"
