"""
Auth Models — tenants and users.

The acting user's audit role (staff, senior, reviewer, manager, partner)
lives on the User row; requests never supply it themselves.
"""

from datetime import datetime, timezone

from auditflow.models import db


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    """Audit firm. Every engagement, workpaper and user belongs to exactly one."""

    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    def __repr__(self):
        return f"<Tenant {self.id} {self.slug}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    role = db.Column(
        db.String(30),
        nullable=False,
        default="staff",
        comment="staff | senior | reviewer | manager | partner (aliases: staff_auditor, senior_auditor)",
    )
    status = db.Column(db.String(20), default="active")  # active | inactive | suspended
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # An auditor may hold accounts at several firms under one email
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
    )

    tenant = db.relationship("Tenant", back_populates="users")

    @property
    def is_active(self) -> bool:
        """Only active users can act on engagements or workpapers."""
        return self.status == "active"

    def __repr__(self):
        return f"<User {self.id} {self.email} ({self.role})>"
