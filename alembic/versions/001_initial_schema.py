"""Initial schema: users, stalls, reservations with indexes and constraints.

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

ACTIVE_FILTER = "status IN ('PENDING', 'CONFIRMED')"


def upgrade() -> None:
    # Users table (mirrors the identity service)
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("business_name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'user'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Stalls table
    op.create_table(
        "stalls",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("size", sa.String(10), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("dimensions", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'AVAILABLE'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price >= 0", name="check_stall_price_non_negative"),
        sa.CheckConstraint("size IN ('SMALL', 'MEDIUM', 'LARGE')", name="check_stall_size"),
        sa.CheckConstraint(
            "status IN ('AVAILABLE', 'RESERVED', 'MAINTENANCE')", name="check_stall_status"
        ),
    )
    op.create_index("ix_stalls_code", "stalls", ["code"], unique=True)
    # The floor plan lists AVAILABLE stalls sorted by code on every poll
    op.create_index("ix_stalls_status_code", "stalls", ["status", "code"])

    # Reservations table
    op.create_table(
        "reservations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "stall_id", sa.String(36), sa.ForeignKey("stalls.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'CONFIRMED'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("total_amount >= 0", name="check_reservation_amount_non_negative"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED')", name="check_reservation_status"
        ),
    )
    # Quota check counts a user's active reservations on every booking
    op.create_index("ix_reservations_user_status", "reservations", ["user_id", "status"])
    op.create_index("ix_reservations_stall_status", "reservations", ["stall_id", "status"])
    # At most one active reservation per stall, even if application checks are bypassed
    op.create_index(
        "uq_reservations_active_stall",
        "reservations",
        ["stall_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_FILTER),
    )


def downgrade() -> None:
    op.drop_table("reservations")
    op.drop_table("stalls")
    op.drop_table("users")
