"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "teams",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("organization_id", "name", name="uq_teams_org_name"),
    )
    op.create_index("ix_teams_organization_id", "teams", ["organization_id"])

    op.create_table(
        "environments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("dag", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        # No foreign key: reconciliations already reference environments.
        sa.Column("latest_env_recon_id", sa.Integer(), nullable=True),
        sa.Column("last_reconcile_datetime", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("organization_id", "team_id", "name", name="uq_environments_org_team_name"),
    )
    op.create_index("ix_environments_organization_id", "environments", ["organization_id"])
    op.create_index("ix_environments_team_id", "environments", ["team_id"])

    op.create_table(
        "components",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("environment_id", sa.String(), sa.ForeignKey("environments.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("latest_comp_recon_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_components_organization_id", "components", ["organization_id"])
    op.create_index("ix_components_environment_id", "components", ["environment_id"])
    # Removed component names can come back, so uniqueness covers live rows only.
    op.create_index(
        "uq_components_env_name_live",
        "components",
        ["environment_id", "name"],
        unique=True,
        postgresql_where=sa.text("NOT is_deleted"),
    )

    op.create_table(
        "environment_reconciliations",
        sa.Column("reconcile_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("environment_id", sa.String(), sa.ForeignKey("environments.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("dag", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("start_date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("git_sha", sa.String(), nullable=True),
        sa.Column("estimated_cost", sa.Float(), nullable=False, server_default="0"),
    )
    op.create_index(
        "ix_environment_reconciliations_organization_id", "environment_reconciliations", ["organization_id"]
    )
    op.create_index("ix_environment_reconciliations_team_id", "environment_reconciliations", ["team_id"])
    op.create_index("ix_environment_reconciliations_git_sha", "environment_reconciliations", ["git_sha"])
    op.create_index(
        "ix_env_recons_env_start", "environment_reconciliations", ["environment_id", "start_date_time"]
    )
    op.create_index(
        "ix_env_recons_open", "environment_reconciliations", ["environment_id", "end_date_time", "status"]
    )

    op.create_table(
        "component_reconciliations",
        sa.Column("reconcile_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column(
            "environment_reconciliation_id",
            sa.Integer(),
            sa.ForeignKey("environment_reconciliations.reconcile_id"),
            nullable=False,
        ),
        sa.Column("component_id", sa.String(), sa.ForeignKey("components.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("start_date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_skipped", sa.Boolean(), nullable=True),
    )
    op.create_index(
        "ix_component_reconciliations_organization_id", "component_reconciliations", ["organization_id"]
    )
    op.create_index(
        "ix_comp_recons_component_start", "component_reconciliations", ["component_id", "start_date_time"]
    )
    op.create_index("ix_comp_recons_parent", "component_reconciliations", ["environment_reconciliation_id"])


def downgrade() -> None:
    op.drop_table("component_reconciliations")
    op.drop_table("environment_reconciliations")
    op.drop_index("uq_components_env_name_live", table_name="components")
    op.drop_table("components")
    op.drop_table("environments")
    op.drop_table("teams")
    op.drop_table("organizations")
