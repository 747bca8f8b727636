"""initial onboarding schema

Revision ID: 3b1f0c2a9d10
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1f0c2a9d10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UUID = postgresql.UUID(as_uuid=True)
_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    # --- live authoring ---
    op.create_table(
        "flows",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_by", _UUID, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("estimated_hours", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "tags", postgresql.ARRAY(sa.String()), nullable=False, server_default="{}"
        ),
        sa.Column("settings", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("active_content_id", _UUID, nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
    )
    op.create_table(
        "flow_contents",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("flow_id", _UUID, sa.ForeignKey("flows.id"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_by", _UUID, nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.UniqueConstraint("flow_id", "version"),
    )
    op.create_table(
        "flow_steps",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "content_id",
            _UUID,
            sa.ForeignKey("flow_contents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("order_key", sa.String(32), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_flow_steps_content_id", "flow_steps", ["content_id"])
    op.create_table(
        "components",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "step_id",
            _UUID,
            sa.ForeignKey("flow_steps.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("order_key", sa.String(32), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("estimated_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=True),
        sa.Column("minimum_score", sa.Integer(), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
    )
    op.create_index("ix_components_step_id", "components", ["step_id"])

    # --- immutable history ---
    op.create_table(
        "entity_versions",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("original_id", _UUID, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("content", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_by", _UUID, nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
        sa.UniqueConstraint("original_id", "version"),
    )
    op.create_index("ix_entity_versions_original_id", "entity_versions", ["original_id"])
    op.create_index(
        "uq_entity_versions_one_active",
        "entity_versions",
        ["original_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_table(
        "flow_snapshots",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("original_flow_id", _UUID, nullable=False),
        sa.Column("flow_version_id", _UUID, nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("content_version", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("estimated_hours", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "tags", postgresql.ARRAY(sa.String()), nullable=False, server_default="{}"
        ),
        sa.Column("settings", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_by", _UUID, nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.UniqueConstraint("original_flow_id", "version"),
    )
    op.create_index(
        "ix_flow_snapshots_original_flow_id", "flow_snapshots", ["original_flow_id"]
    )
    op.create_index(
        "ix_flow_snapshots_flow_version_id", "flow_snapshots", ["flow_version_id"]
    )
    op.create_index("ix_flow_snapshots_created_at", "flow_snapshots", ["created_at"])
    op.create_table(
        "step_snapshots",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "snapshot_id",
            _UUID,
            sa.ForeignKey("flow_snapshots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("original_step_id", _UUID, nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("order_key", sa.String(32), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_step_snapshots_snapshot_id", "step_snapshots", ["snapshot_id"])
    op.create_table(
        "component_snapshots",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "step_snapshot_id",
            _UUID,
            sa.ForeignKey("step_snapshots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("original_component_id", _UUID, nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("order_key", sa.String(32), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("estimated_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=True),
        sa.Column("minimum_score", sa.Integer(), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
    )
    op.create_index(
        "ix_component_snapshots_step_snapshot_id",
        "component_snapshots",
        ["step_snapshot_id"],
    )

    # --- learner state ---
    op.create_table(
        "flow_assignments",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("user_id", _UUID, nullable=False),
        sa.Column("flow_id", _UUID, sa.ForeignKey("flows.id"), nullable=False),
        sa.Column(
            "snapshot_id",
            _UUID,
            sa.ForeignKey("flow_snapshots.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("flow_version_id", _UUID, nullable=True),
        sa.Column("content_id", _UUID, nullable=True),
        sa.Column("buddy_id", _UUID, nullable=True),
        sa.Column("assigned_by", _UUID, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="assigned"),
        sa.Column("completed_steps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_steps", sa.Integer(), nullable=False),
        sa.Column("assigned_at", _TS, nullable=False),
        sa.Column("due_date", _TS, nullable=False),
        sa.Column("started_at", _TS, nullable=True),
        sa.Column("completed_at", _TS, nullable=True),
        sa.Column("paused_at", _TS, nullable=True),
        sa.Column("pause_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", _TS, nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("final_score", sa.Integer(), nullable=True),
        sa.Column("user_rating", sa.Integer(), nullable=True),
        sa.Column("user_feedback", sa.Text(), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", _TS, nullable=False),
    )
    op.create_index("ix_flow_assignments_user_id", "flow_assignments", ["user_id"])
    op.create_index("ix_flow_assignments_snapshot_id", "flow_assignments", ["snapshot_id"])
    op.create_index(
        "ix_flow_assignments_flow_version_id", "flow_assignments", ["flow_version_id"]
    )
    op.create_index(
        "ix_flow_assignments_status_due", "flow_assignments", ["status", "due_date"]
    )
    op.create_index(
        "uq_flow_assignments_one_active",
        "flow_assignments",
        ["user_id", "flow_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('assigned', 'in_progress', 'paused')"),
    )
    op.create_table(
        "flow_progress",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "assignment_id",
            _UUID,
            sa.ForeignKey("flow_assignments.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("user_id", _UUID, nullable=False),
        sa.Column("snapshot_id", _UUID, nullable=False),
        sa.Column("is_sequential", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("started_at", _TS, nullable=True),
        sa.Column("completed_at", _TS, nullable=True),
        sa.Column("last_activity_at", _TS, nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_table(
        "step_progress",
        sa.Column(
            "flow_progress_id",
            _UUID,
            sa.ForeignKey("flow_progress.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("step_snapshot_id", _UUID, primary_key=True),
        sa.Column("order_key", sa.String(32), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_accessible", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("started_at", _TS, nullable=True),
        sa.Column("completed_at", _TS, nullable=True),
    )
    op.create_table(
        "component_progress",
        sa.Column(
            "flow_progress_id",
            _UUID,
            sa.ForeignKey("flow_progress.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("component_snapshot_id", _UUID, primary_key=True),
        sa.Column("step_snapshot_id", _UUID, nullable=False),
        sa.Column("order_key", sa.String(32), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(16), nullable=False, server_default="not_started"),
        sa.Column("attempts_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("best_score", sa.Integer(), nullable=True),
        sa.Column("last_score", sa.Integer(), nullable=True),
        sa.Column("time_spent_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", _TS, nullable=True),
        sa.Column("completed_at", _TS, nullable=True),
        sa.Column("last_attempt_at", _TS, nullable=True),
    )


def downgrade() -> None:
    op.drop_table("component_progress")
    op.drop_table("step_progress")
    op.drop_table("flow_progress")
    op.drop_index("uq_flow_assignments_one_active", table_name="flow_assignments")
    op.drop_index("ix_flow_assignments_status_due", table_name="flow_assignments")
    op.drop_table("flow_assignments")
    op.drop_table("component_snapshots")
    op.drop_table("step_snapshots")
    op.drop_table("flow_snapshots")
    op.drop_index("uq_entity_versions_one_active", table_name="entity_versions")
    op.drop_table("entity_versions")
    op.drop_table("components")
    op.drop_table("flow_steps")
    op.drop_table("flow_contents")
    op.drop_table("flows")
