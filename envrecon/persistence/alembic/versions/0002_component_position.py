"""add component insertion sequence

Revision ID: 0002_component_position
Revises: 0001_init
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_component_position"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "components",
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    # Backfill existing rows in their previous list order.
    op.execute(
        """
        UPDATE components AS c
        SET position = ranked.seq
        FROM (
            SELECT id, row_number() OVER (PARTITION BY environment_id ORDER BY created_at, id) AS seq
            FROM components
        ) AS ranked
        WHERE c.id = ranked.id
        """
    )
    op.create_index("ix_components_env_position", "components", ["environment_id", "position"])


def downgrade() -> None:
    op.drop_index("ix_components_env_position", table_name="components")
    op.drop_column("components", "position")
