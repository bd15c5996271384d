from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from envrecon.domain.status import SkipState


# JSONB on Postgres; plain JSON keeps SQLite test databases working.
JsonType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Organization names are baked into CD hosts and storage bucket names.
    name: Mapped[str] = mapped_column(String, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (UniqueConstraint("organization_id", "name", name="uq_teams_org_name"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, ForeignKey("organizations.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Environment(Base):
    __tablename__ = "environments"
    __table_args__ = (
        UniqueConstraint("organization_id", "team_id", "name", name="uq_environments_org_team_name"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, ForeignKey("organizations.id"), index=True)
    team_id: Mapped[str] = mapped_column(String, ForeignKey("teams.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    # Ordered component specs; this order drives display and the next diff.
    dag: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, default=list)
    # Soft delete keeps historical reconciliation references intact.
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    # Plain pointer column; the reconciliations table references environments, not the reverse.
    latest_env_recon_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_reconcile_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Component(Base):
    __tablename__ = "components"
    __table_args__ = (
        # Names are unique among live components only, so a removed name can be re-added.
        Index(
            "uq_components_env_name_live",
            "environment_id",
            "name",
            unique=True,
            postgresql_where=text("NOT is_deleted"),
            sqlite_where=text("is_deleted = 0"),
        ),
        Index("ix_components_env_position", "environment_id", "position"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String, ForeignKey("organizations.id"), index=True)
    environment_id: Mapped[str] = mapped_column(String, ForeignKey("environments.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    latest_comp_recon_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Insertion sequence within the environment; list order follows it.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class EnvironmentReconciliation(Base):
    __tablename__ = "environment_reconciliations"
    __table_args__ = (
        Index("ix_env_recons_env_start", "environment_id", "start_date_time"),
        Index("ix_env_recons_open", "environment_id", "end_date_time", "status"),
    )

    # Autoincrement keeps reconcile ids monotonic within every organization.
    reconcile_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, ForeignKey("organizations.id"), index=True)
    team_id: Mapped[str] = mapped_column(String, ForeignKey("teams.id"), index=True)
    environment_id: Mapped[str] = mapped_column(String, ForeignKey("environments.id"))
    status: Mapped[str] = mapped_column(String)
    # Snapshot of the environment dag at attempt start.
    dag: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, default=list)
    start_date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_date_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    git_sha: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    estimated_cost: Mapped[float] = mapped_column(Float, default=0.0, server_default="0", nullable=False)


class ComponentReconciliation(Base):
    __tablename__ = "component_reconciliations"
    __table_args__ = (
        Index("ix_comp_recons_component_start", "component_id", "start_date_time"),
        Index("ix_comp_recons_parent", "environment_reconciliation_id"),
    )

    reconcile_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, ForeignKey("organizations.id"), index=True)
    environment_reconciliation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("environment_reconciliations.reconcile_id")
    )
    component_id: Mapped[str] = mapped_column(String, ForeignKey("components.id"))
    status: Mapped[str] = mapped_column(String)
    start_date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_date_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_cost: Mapped[float] = mapped_column(Float, default=0.0, server_default="0", nullable=False)
    # NULL for records written before the flag existed; read through skip_state.
    is_skipped: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    @property
    def skip_state(self) -> SkipState:
        return SkipState.from_column(self.is_skipped)
