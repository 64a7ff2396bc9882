"""Objects superseded by a create-before-destroy replacement.

Revision ID: 0002_deposed_objects
Revises: 0001_initial_state
Create Date: 2026-10-16
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002_deposed_objects"
down_revision = "0001_initial_state"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("state_record") as batch:
        batch.add_column(
            sa.Column("deposed", sa.JSON(), nullable=False, server_default=sa.text("'[]'"))
        )


def downgrade() -> None:
    with op.batch_alter_table("state_record") as batch:
        batch.drop_column("deposed")
