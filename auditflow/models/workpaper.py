"""
Workpaper & sign-off models.

Workpaper sign-offs follow the chain preparer → reviewer → manager →
partner. A sign-off row is inserted or deleted (revocation), never
updated. ``UNIQUE(workpaper_id, signoff_type)`` settles concurrent
attempts to record the same level: exactly one insert wins.
"""

from datetime import datetime, timezone

from auditflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class Workpaper(db.Model):
    __tablename__ = "workpapers"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    engagement_id = db.Column(
        db.Integer,
        db.ForeignKey("engagements.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reference = db.Column(db.String(50), nullable=True, comment="Index reference, e.g. 'B-100'")
    title = db.Column(db.String(300), nullable=False)
    content = db.Column(db.JSON, nullable=True)

    review_status = db.Column(
        db.String(30),
        nullable=False,
        default="draft",
        comment="draft | pending_review | in_review | approved | locked",
    )
    content_hash = db.Column(
        db.String(64),
        nullable=True,
        comment="SHA-256 of content+title captured at the most recent sign-off",
    )
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    engagement = db.relationship("Engagement", back_populates="workpapers")
    signoffs = db.relationship(
        "WorkpaperSignoff",
        back_populates="workpaper",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "engagement_id": self.engagement_id,
            "reference": self.reference,
            "title": self.title,
            "content": self.content,
            "review_status": self.review_status,
            "content_hash": self.content_hash,
            "is_locked": self.is_locked,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "locked_by": self.locked_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Workpaper #{self.id} {self.title[:40]} [{self.review_status}]>"


class WorkpaperSignoff(db.Model):
    """
    One level of a workpaper's sign-off chain.

    signer_name_snapshot keeps the trail readable after the User row is
    deleted.
    """

    __tablename__ = "workpaper_signoffs"

    id = db.Column(db.Integer, primary_key=True)
    workpaper_id = db.Column(
        db.Integer,
        db.ForeignKey("workpapers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    signer_name_snapshot = db.Column(db.String(255), nullable=True)
    signoff_type = db.Column(
        db.String(20),
        nullable=False,
        comment="preparer | reviewer | manager | partner",
    )
    signed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    comments = db.Column(db.Text, nullable=True)
    signature_hash = db.Column(
        db.String(64),
        nullable=False,
        comment="Workpaper content hash at signing time",
    )
    user_agent = db.Column(db.String(500), nullable=True)
    ip_address = db.Column(
        db.String(45),   # IPv6 max length is 39 chars; 45 accommodates mapped v4
        nullable=True,
        comment="Client IP at sign-off time (X-Forwarded-For if behind load balancer)",
    )

    __table_args__ = (
        db.UniqueConstraint("workpaper_id", "signoff_type", name="uq_workpaper_signoff_type"),
    )

    workpaper = db.relationship("Workpaper", back_populates="signoffs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workpaper_id": self.workpaper_id,
            "user_id": self.user_id,
            "signer_name": self.signer_name_snapshot,
            "signoff_type": self.signoff_type,
            "signed_at": self.signed_at.isoformat() if self.signed_at else None,
            "comments": self.comments,
            "signature_hash": self.signature_hash,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }

    def __repr__(self) -> str:
        return f"<WorkpaperSignoff #{self.id} wp={self.workpaper_id} {self.signoff_type}>"
