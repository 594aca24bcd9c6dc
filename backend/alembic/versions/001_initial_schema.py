"""Initial schema: SSDF/CIS reference data, mappings, assessments, audit trail

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

Creates: organizations, ssdf_groups, ssdf_practices, ssdf_tasks, cis_controls,
         cis_safeguards, ssdf_cis_mappings, assessments, assessment_task_results,
         assessment_cis_results, assessment_releases, assessment_snapshots,
         audit_log, assessment_task_history
"""
from alembic import op
import sqlalchemy as sa

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── 1. Tenants ────────────────────────────────────────────────
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("deleted_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    # ── 2. SSDF reference data ────────────────────────────────────
    op.create_table(
        "ssdf_groups",
        sa.Column("id", sa.String(10), primary_key=True),
        sa.Column("name", sa.String(300), nullable=False),
    )
    op.create_table(
        "ssdf_practices",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("group_id", sa.String(10), sa.ForeignKey("ssdf_groups.id"), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
    )
    op.create_table(
        "ssdf_tasks",
        sa.Column("id", sa.String(30), primary_key=True),
        sa.Column("practice_id", sa.String(20), sa.ForeignKey("ssdf_practices.id"), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("examples", sa.Text),
        sa.Column("references", sa.Text),
        sa.Column("order_id", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    # ── 3. CIS reference data ─────────────────────────────────────
    op.create_table(
        "cis_controls",
        sa.Column("id", sa.String(10), primary_key=True),
        sa.Column("name", sa.String(400), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_table(
        "cis_safeguards",
        sa.Column("id", sa.String(10), primary_key=True),
        sa.Column("control_id", sa.String(10), sa.ForeignKey("cis_controls.id"), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("implementation_group", sa.String(5), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    # ── 4. SSDF → CIS mappings ────────────────────────────────────
    op.create_table(
        "ssdf_cis_mappings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ssdf_task_id", sa.String(30), sa.ForeignKey("ssdf_tasks.id"), nullable=False),
        sa.Column("cis_control_id", sa.String(10), sa.ForeignKey("cis_controls.id")),
        sa.Column("cis_safeguard_id", sa.String(10), sa.ForeignKey("cis_safeguards.id")),
        sa.Column("mapping_type", sa.String(20), nullable=False),
        sa.Column("weight", sa.Float, nullable=False, server_default="1.0"),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.CheckConstraint(
            "(cis_control_id IS NULL) != (cis_safeguard_id IS NULL)",
            name="ck_mapping_single_target",
        ),
        sa.CheckConstraint("weight >= 0 AND weight <= 1", name="ck_mapping_weight"),
    )
    op.create_index("ix_mapping_task", "ssdf_cis_mappings", ["ssdf_task_id"])
    op.create_index("ix_mapping_control", "ssdf_cis_mappings", ["cis_control_id"])
    op.create_index("ix_mapping_safeguard", "ssdf_cis_mappings", ["cis_safeguard_id"])

    # ── 5. Assessments ────────────────────────────────────────────
    op.create_table(
        "assessments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("unit", sa.String(200)),
        sa.Column("scope", sa.Text),
        sa.Column("assessment_owner", sa.String(200)),
        sa.Column("start_date", sa.Date),
        sa.Column("review_date", sa.Date),
        sa.Column("notes", sa.Text),
        sa.Column("editing_mode", sa.String(30), nullable=False, server_default="UNLOCKED_FOR_ASSESSORS"),
        sa.Column("editing_locked_by_id", sa.String(64)),
        sa.Column("editing_locked_at", sa.DateTime),
        sa.Column("editing_lock_note", sa.Text),
        sa.Column("created_by_id", sa.String(64)),
        sa.Column("deleted_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "assessment_task_results",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("assessment_id", sa.Integer,
                  sa.ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ssdf_task_id", sa.String(30), sa.ForeignKey("ssdf_tasks.id"), nullable=False),
        sa.Column("applicable", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(30), nullable=False, server_default="NOT_STARTED"),
        sa.Column("maturity_level", sa.Integer, nullable=False, server_default="0"),
        sa.Column("target_level", sa.Integer, nullable=False, server_default="2"),
        sa.Column("weight", sa.Integer, nullable=False, server_default="3"),
        sa.Column("owner", sa.String(200)),
        sa.Column("team", sa.String(200)),
        sa.Column("due_date", sa.Date),
        sa.Column("last_review", sa.Date),
        sa.Column("evidence_text", sa.Text),
        sa.Column("evidence_links", sa.JSON),
        sa.Column("comments", sa.Text),
        sa.Column("updated_by_id", sa.String(64)),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("assessment_id", "ssdf_task_id", name="uq_task_result"),
    )
    op.create_index("ix_task_result_task", "assessment_task_results", ["ssdf_task_id"])

    op.create_table(
        "assessment_cis_results",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("assessment_id", sa.Integer,
                  sa.ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("target_key", sa.String(24), nullable=False),
        sa.Column("cis_control_id", sa.String(10), sa.ForeignKey("cis_controls.id"), nullable=False),
        sa.Column("cis_safeguard_id", sa.String(10), sa.ForeignKey("cis_safeguards.id")),
        sa.Column("derived_status", sa.String(30), nullable=False, server_default="NOT_APPLICABLE"),
        sa.Column("derived_maturity_level", sa.Integer, nullable=False, server_default="0"),
        sa.Column("derived_coverage_score", sa.Float, nullable=False, server_default="0"),
        sa.Column("derived_from_task_ids", sa.JSON, nullable=False),
        sa.Column("derived_from_ssdf", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("manual_override", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("manual_status", sa.String(30)),
        sa.Column("manual_maturity_level", sa.Integer),
        sa.Column("updated_by_id", sa.String(64)),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("assessment_id", "target_key", name="uq_cis_result_target"),
    )
    op.create_index("ix_cis_result_control", "assessment_cis_results", ["assessment_id", "cis_control_id"])

    # ── 6. Releases and snapshots ─────────────────────────────────
    op.create_table(
        "assessment_releases",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("assessment_id", sa.Integer,
                  sa.ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="DRAFT"),
        sa.Column("notes", sa.Text),
        sa.Column("snapshot", sa.JSON),
        sa.Column("base_release_id", sa.Integer,
                  sa.ForeignKey("assessment_releases.id", ondelete="SET NULL")),
        sa.Column("created_by_id", sa.String(64)),
        sa.Column("approved_by_id", sa.String(64)),
        sa.Column("approved_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_release_assessment", "assessment_releases", ["assessment_id", "created_at"])

    op.create_table(
        "assessment_snapshots",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("assessment_id", sa.Integer,
                  sa.ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("release_id", sa.Integer,
                  sa.ForeignKey("assessment_releases.id", ondelete="SET NULL")),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("label", sa.String(80)),
        sa.Column("snapshot", sa.JSON, nullable=False),
        sa.Column("created_by_id", sa.String(64)),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_snapshot_assessment", "assessment_snapshots", ["assessment_id", "created_at"])

    # ── 7. Audit trail ────────────────────────────────────────────
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(10), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(64)),
        sa.Column("field_name", sa.String(100)),
        sa.Column("old_value", sa.Text),
        sa.Column("new_value", sa.Text),
        sa.Column("organization_id", sa.Integer),
        sa.Column("actor_user_id", sa.String(64)),
        sa.Column("actor_email", sa.String(200)),
        sa.Column("actor_role", sa.String(20)),
        sa.Column("success", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("error_message", sa.Text),
        sa.Column("request_id", sa.String(100)),
        sa.Column("metadata", sa.JSON),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])
    op.create_index("ix_audit_org", "audit_log", ["organization_id"])

    op.create_table(
        "assessment_task_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("task_result_id", sa.Integer,
                  sa.ForeignKey("assessment_task_results.id", ondelete="CASCADE"), nullable=False),
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
    op.create_index(
        "ix_assessment_task_history_task_result_id", "assessment_task_history", ["task_result_id"],
    )


def downgrade() -> None:
    op.drop_table("assessment_task_history")
    op.drop_table("audit_log")
    op.drop_table("assessment_snapshots")
    op.drop_table("assessment_releases")
    op.drop_table("assessment_cis_results")
    op.drop_table("assessment_task_results")
    op.drop_table("assessments")
    op.drop_table("ssdf_cis_mappings")
    op.drop_table("cis_safeguards")
    op.drop_table("cis_controls")
    op.drop_table("ssdf_tasks")
    op.drop_table("ssdf_practices")
    op.drop_table("ssdf_groups")
    op.drop_table("organizations")
