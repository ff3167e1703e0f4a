"""bounce records

Revision ID: 0001_bounce_records
Revises: 
Create Date: 2026-10-18 00:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_bounce_records"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "bounce_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("email_key", sa.String(length=320), nullable=False),
        sa.Column("timestamp", sa.String(length=64), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=True),
        sa.Column("source_email", sa.String(length=320), nullable=False),
        sa.Column("source_ip", sa.String(length=64), nullable=False),
        sa.Column("bounce_type", sa.String(length=255), nullable=False),
        sa.Column("bounce_sub_type", sa.String(length=255), nullable=False),
        sa.Column("diagnostic_code", sa.Text(), nullable=False),
        sa.Column("reporting_agent", sa.String(length=255), nullable=False),
        sa.Column("feedback_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email_key", "timestamp", "feedback_id", name="uq_bounce_records_identity"),
    )
    op.create_index(op.f("ix_bounce_records_email_key"), "bounce_records", ["email_key"], unique=False)
    op.create_index(op.f("ix_bounce_records_occurred_at"), "bounce_records", ["occurred_at"], unique=False)


def downgrade():
    op.drop_index(op.f("ix_bounce_records_occurred_at"), table_name="bounce_records")
    op.drop_index(op.f("ix_bounce_records_email_key"), table_name="bounce_records")
    op.drop_table("bounce_records")
