"""State records and workspace locks.

Revision ID: 0001_initial_state
Revises:
Create Date: 2026-10-16
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial_state"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "state_record",
        sa.Column("workspace", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=512), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("provider_id", sa.String(length=1024), nullable=True),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("attributes", sa.JSON(), nullable=False),
        sa.Column("dependencies", sa.JSON(), nullable=False),
        sa.Column("prevent_destroy", sa.Boolean(), nullable=False),
        sa.Column("sensitive_attributes", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("workspace", "address", name="pk_state_record"),
    )
    op.create_index(
        "ix_state_record_resource_type", "state_record", ["workspace", "resource_type"]
    )
    op.create_table(
        "state_lock",
        sa.Column("workspace", sa.String(length=255), nullable=False),
        sa.Column("lock_id", sa.String(length=64), nullable=False),
        sa.Column("holder", sa.String(length=255), nullable=False),
        sa.Column("operation", sa.String(length=64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("workspace", name="pk_state_lock"),
        sa.UniqueConstraint("lock_id", name="uq_state_lock_lock_id"),
    )


def downgrade() -> None:
    op.drop_table("state_lock")
    op.drop_index("ix_state_record_resource_type", table_name="state_record")
    op.drop_table("state_record")
