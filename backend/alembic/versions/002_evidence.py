"""Evidence records per task result and their field history

Revision ID: 002_evidence
Revises: 001_initial_schema
Create Date: 2026-10-18

Creates: evidences, evidence_history
"""
from alembic import op
import sqlalchemy as sa

revision = "002_evidence"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "evidences",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("task_result_id", sa.Integer,
                  sa.ForeignKey("assessment_task_results.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("review_status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("link", sa.String(2000)),
        sa.Column("owner", sa.String(200)),
        sa.Column("evidence_date", sa.Date),
        sa.Column("valid_until", sa.Date),
        sa.Column("notes", sa.Text),
        sa.Column("created_by_id", sa.String(64)),
        sa.Column("updated_by_id", sa.String(64)),
        sa.Column("deleted_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_evidences_task_result_id", "evidences", ["task_result_id"])

    op.create_table(
        "evidence_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("evidence_id", sa.Integer,
                  sa.ForeignKey("evidences.id", ondelete="CASCADE"), nullable=False),
        sa.Column("changed_by_id", sa.String(64)),
        sa.Column("field_name", sa.String(100), nullable=False),
        sa.Column("old_value", sa.Text),
        sa.Column("new_value", sa.Text),
        sa.Column("reason", sa.Text),
        sa.Column("request_id", sa.String(100)),
        sa.Column("ip", sa.String(45)),
        sa.Column("user_agent", sa.String(300)),
        sa.Column("metadata", sa.JSON),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_evidence_history_evidence_id", "evidence_history", ["evidence_id"])


def downgrade() -> None:
    op.drop_table("evidence_history")
    op.drop_table("evidences")
