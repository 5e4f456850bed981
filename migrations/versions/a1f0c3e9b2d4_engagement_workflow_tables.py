"""engagement_workflow_tables

Create tenants, users, engagements, workpapers, workpaper_signoffs,
transition_log and notifications.

Revision ID: a1f0c3e9b2d4
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1f0c3e9b2d4"
down_revision = None
branch_labels = None
depends_on = None

_GATE_FLAGS = (
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


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "tenants" not in existing_tables:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="staff"),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        )
        op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    if "engagements" not in existing_tables:
        op.create_table(
            "engagements",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("client_name", sa.String(length=200), nullable=True),
            sa.Column("fiscal_year_end", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="draft"),
            sa.Column("engagement_partner_id", sa.Integer(), nullable=True),
            sa.Column("manager_id", sa.Integer(), nullable=True),
            *[
                sa.Column(flag, sa.Boolean(), nullable=False, server_default=sa.false())
                for flag in _GATE_FLAGS
            ],
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["engagement_partner_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["manager_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_engagements_tenant_id", "engagements", ["tenant_id"])
        op.create_index("ix_engagements_tenant_status", "engagements", ["tenant_id", "status"])

    if "workpapers" not in existing_tables:
        op.create_table(
            "workpapers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("engagement_id", sa.Integer(), nullable=False),
            sa.Column("reference", sa.String(length=50), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("content", sa.JSON(), nullable=True),
            sa.Column("review_status", sa.String(length=30), nullable=False, server_default="draft"),
            sa.Column("content_hash", sa.String(length=64), nullable=True),
            sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("locked_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["engagement_id"], ["engagements.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["locked_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workpapers_tenant_id", "workpapers", ["tenant_id"])
        op.create_index("ix_workpapers_engagement_id", "workpapers", ["engagement_id"])

    if "workpaper_signoffs" not in existing_tables:
        op.create_table(
            "workpaper_signoffs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workpaper_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("signer_name_snapshot", sa.String(length=255), nullable=True),
            sa.Column("signoff_type", sa.String(length=20), nullable=False),
            sa.Column("signed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("signature_hash", sa.String(length=64), nullable=False),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("ip_address", sa.String(length=45), nullable=True),
            sa.ForeignKeyConstraint(["workpaper_id"], ["workpapers.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workpaper_id", "signoff_type", name="uq_workpaper_signoff_type"),
        )
        op.create_index("ix_workpaper_signoffs_workpaper_id", "workpaper_signoffs", ["workpaper_id"])

    if "transition_log" not in existing_tables:
        op.create_table(
            "transition_log",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=False),
            sa.Column("engagement_id", sa.Integer(), nullable=True),
            sa.Column("from_state", sa.String(length=30), nullable=True),
            sa.Column("to_state", sa.String(length=30), nullable=False),
            sa.Column("action", sa.String(length=50), nullable=False),
            sa.Column("performed_by", sa.Integer(), nullable=True),
            sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["engagement_id"], ["engagements.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["performed_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_transition_log_tenant_id", "transition_log", ["tenant_id"])
        op.create_index("ix_transition_log_entity", "transition_log", ["entity_type", "entity_id"])
        op.create_index("ix_transition_log_engagement", "transition_log", ["engagement_id", "performed_at"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("engagement_id", sa.Integer(), nullable=True),
            sa.Column("recipient_id", sa.Integer(), nullable=True),
            sa.Column("event_type", sa.String(length=50), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["engagement_id"], ["engagements.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["recipient_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_tenant_id", "notifications", ["tenant_id"])
        op.create_index("ix_notifications_engagement_id", "notifications", ["engagement_id"])
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])


def downgrade():
    for table in (
        "notifications",
        "transition_log",
        "workpaper_signoffs",
        "workpapers",
        "engagements",
        "users",
        "tenants",
    ):
        op.drop_table(table)
