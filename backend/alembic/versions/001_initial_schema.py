"""Initial schema: class sessions and reservations with indexes and constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "class_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("coach_id", sa.String(128), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("max_capacity", sa.Integer(), nullable=False),
        sa.Column("occupied_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("max_capacity > 0", name="check_max_capacity_positive"),
        sa.CheckConstraint("occupied_count >= 0", name="check_occupied_non_negative"),
        sa.CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
    )
    op.create_index("ix_class_sessions_id", "class_sessions", ["id"])
    # Schedule listings always filter and sort by start time
    op.create_index("ix_class_sessions_starts_at", "class_sessions", ["starts_at"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "class_id",
            sa.Integer(),
            sa.ForeignKey("class_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("ordered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("promoted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_walk_in", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("attended", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        # One live claim per user per class; cancelled rows are deleted
        sa.UniqueConstraint("class_id", "user_id", name="uq_class_user_reservation"),
        sa.CheckConstraint(
            "status IN ('confirmed', 'waitlist', 'pending_confirmation')",
            name="check_reservation_status",
        ),
    )
    op.create_index("ix_reservations_id", "reservations", ["id"])
    op.create_index("ix_reservations_class_id", "reservations", ["class_id"])
    op.create_index("ix_reservations_user_id", "reservations", ["user_id"])
    # Waitlist head lookup on every freed seat:
    # WHERE class_id = ? AND status = 'waitlist' ORDER BY ordered_at, id LIMIT 1
    op.create_index(
        "ix_reservations_class_status_order",
        "reservations",
        ["class_id", "status", "ordered_at", "id"],
    )


def downgrade() -> None:
    op.drop_table("reservations")
    op.drop_table("class_sessions")
