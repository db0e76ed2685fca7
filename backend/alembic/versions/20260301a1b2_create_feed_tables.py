"""Create attendance, feature observation and mode change tables.

Revision ID: 20260301a1b2
Revises:
Create Date: 2026-03-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20260301a1b2"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "session_attendance",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_code", sa.String(length=40), nullable=False),
        sa.Column("student_id", sa.String(length=120), nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("profile_image", sa.String(length=500), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_session_attendance_session_code", "session_attendance", ["session_code"])
    op.create_unique_constraint("uq_attendance_session_student", "session_attendance", ["session_code", "student_id"])

    op.create_table(
        "feature_observations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_code", sa.String(length=40), nullable=False),
        sa.Column("student_id", sa.String(length=120), nullable=False),
        sa.Column("time_key", sa.String(length=40), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_feature_observations_session_code", "feature_observations", ["session_code"])
    op.create_index("ix_observation_session_student", "feature_observations", ["session_code", "student_id"])
    op.create_unique_constraint(
        "uq_observation_key", "feature_observations", ["session_code", "student_id", "time_key"]
    )

    op.create_table(
        "mode_changes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_code", sa.String(length=40), nullable=False),
        sa.Column("time_key", sa.String(length=40), nullable=False),
        sa.Column("mode", sa.String(length=40), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_mode_changes_session_code", "mode_changes", ["session_code"])
    op.create_unique_constraint("uq_mode_change_key", "mode_changes", ["session_code", "time_key"])


def downgrade() -> None:
    op.drop_table("mode_changes")
    op.drop_table("feature_observations")
    op.drop_table("session_attendance")
