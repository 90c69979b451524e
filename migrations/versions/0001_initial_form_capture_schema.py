"""initial form capture schema

Creates the form capture tables:
  - users            — accounts with one role each
  - form_templates   — JSON field structure + section permissions
  - form_entries     — captured data, status, workflow stage, signature
  - activity_logs    — append-only audit trail

Tables are created conditionally so the migration can run against a database
that already received them via db.create_all() in development.

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Users ─────────────────────────────────────────────────────────────
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=100), nullable=False),
            sa.Column("password_hash", sa.String(length=256), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False,
                      comment="superadmin | admin | production | production_manager | "
                              "quality | quality_manager | viewer"),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username"),
        )

    # ── Form templates ────────────────────────────────────────────────────
    if "form_templates" not in existing:
        op.create_table(
            "form_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("structure", sa.JSON(), nullable=False,
                      comment='{"title", "fields": [...], "sections": [...]}'),
            sa.Column("section_permissions", sa.JSON(), nullable=True),
            sa.Column("workflow_enabled", sa.Boolean(), nullable=False,
                      server_default=sa.false()),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )

    # ── Form entries ──────────────────────────────────────────────────────
    if "form_entries" not in existing:
        op.create_table(
            "form_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("form_template_id", sa.Integer(), nullable=False),
            sa.Column("data", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False,
                      server_default="initiated",
                      comment="initiated | in_progress | pending_quality | completed | "
                              "signed | approved | rejected"),
            sa.Column("workflow_stage", sa.String(length=20), nullable=False,
                      server_default="init",
                      comment="init | operation | quality | completed"),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("lot_number", sa.String(length=100), nullable=True),
            sa.Column("folio_number", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("last_updated_by", sa.Integer(), nullable=True),
            sa.Column("signature", sa.Text(), nullable=True),
            sa.Column("signed_by", sa.Integer(), nullable=True),
            sa.Column("signed_at", sa.DateTime(), nullable=True),
            sa.Column("approved_by", sa.Integer(), nullable=True),
            sa.Column("approved_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["form_template_id"], ["form_templates.id"]),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["last_updated_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["signed_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_form_entries_form_template_id", "form_entries",
                        ["form_template_id"])
        op.create_index("idx_entry_template_status", "form_entries",
                        ["form_template_id", "status"])

    # ── Activity log ──────────────────────────────────────────────────────
    if "activity_logs" not in existing:
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=40), nullable=False),
            sa.Column("resource_type", sa.String(length=30), nullable=False),
            sa.Column("resource_id", sa.Integer(), nullable=False),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_activity_resource", "activity_logs",
                        ["resource_type", "resource_id"])
        op.create_index("idx_activity_user", "activity_logs", ["user_id"])
        op.create_index("idx_activity_ts", "activity_logs", ["timestamp"])


def downgrade():
    op.drop_table("activity_logs")
    op.drop_table("form_entries")
    op.drop_table("form_templates")
    op.drop_table("users")
