# src/aaflood/db/models.py
"""
Database models for the anticipatory-action trigger engine.

Basins (sources) own per-year phases, phases own triggers and activities,
and activities may be gated on specific triggers through an association table.
"""

from __future__ import annotations
import enum
import uuid as uuid_lib
from datetime import datetime
from typing import Optional, List, Any

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    String, Text, Boolean, DateTime, ForeignKey, Index, UniqueConstraint,
    Integer, JSON, Column, Table, func, Enum as SQLEnum,
)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """SQLAlchemy declarative base for aaflood models."""
    pass


def _new_uuid() -> str:
    return str(uuid_lib.uuid4())

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class PhaseName(str, enum.Enum):
    PREPAREDNESS = "PREPAREDNESS"
    ACTIVATION = "ACTIVATION"
    READINESS = "READINESS"


# Preparedness precedes activation precedes readiness.
PHASE_ORDER = (PhaseName.PREPAREDNESS, PhaseName.ACTIVATION, PhaseName.READINESS)


class DataSource(str, enum.Enum):
    DHM = "DHM"
    GLOFAS = "GLOFAS"
    GFH = "GFH"
    MANUAL = "MANUAL"


class ActivityStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    WORK_IN_PROGRESS = "WORK_IN_PROGRESS"
    COMPLETED = "COMPLETED"
    DELAYED = "DELAYED"


PhaseNameEnum = SQLEnum(PhaseName, name="phase_name_enum")
DataSourceEnum = SQLEnum(DataSource, name="data_source_enum")
ActivityStatusEnum = SQLEnum(ActivityStatus, name="activity_status_enum")

# ---------------------------------------------------------------------------
# Basin & phases
# ---------------------------------------------------------------------------

class Source(Base):
    """A monitored river basin and the data sources configured for it."""
    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=_new_uuid)
    river_basin: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    sources: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    phases: Mapped[List["Phase"]] = relationship(back_populates="source")


class Phase(Base):
    """One preparedness phase of a basin for one active year."""
    __tablename__ = "phases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=_new_uuid)
    name: Mapped[PhaseName] = mapped_column(PhaseNameEnum, nullable=False)
    river_basin: Mapped[str] = mapped_column(ForeignKey("sources.river_basin"), nullable=False)
    active_year: Mapped[int] = mapped_column(Integer, nullable=False)
    can_trigger_payout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_revert: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    required_mandatory_triggers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_optional_triggers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    source: Mapped["Source"] = relationship(back_populates="phases")
    triggers: Mapped[List["Trigger"]] = relationship(back_populates="phase")
    activities: Mapped[List["Activity"]] = relationship(back_populates="phase")

    __table_args__ = (
        UniqueConstraint("river_basin", "active_year", "name", name="uq_phases_basin_year_name"),
    )

# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

class Trigger(Base):
    """A stored condition over incoming readings, owned by one phase."""
    __tablename__ = "triggers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=_new_uuid)
    repeat_key: Mapped[str] = mapped_column(Text, nullable=False, default=_new_uuid)
    phase_id: Mapped[int] = mapped_column(ForeignKey("phases.id"), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    data_source: Mapped[DataSource] = mapped_column(DataSourceEnum, nullable=False)
    trigger_statement: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    triggered_by: Mapped[Optional[str]] = mapped_column(Text)
    # repeat_key value the current firing belongs to
    fired_repeat_key: Mapped[Optional[str]] = mapped_column(Text)
    transaction_hash: Mapped[Optional[str]] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    phase: Mapped["Phase"] = relationship(back_populates="triggers")
    history: Mapped[List["TriggerHistory"]] = relationship(back_populates="trigger", order_by="TriggerHistory.id")

    __table_args__ = (
        Index("idx_triggers_phase_id", "phase_id"),
        Index("idx_triggers_repeat_key", "repeat_key"),
        Index("idx_triggers_unconfirmed", "transaction_hash", "is_deleted"),
    )


class TriggerHistory(Base):
    """Append-only record of every firing, kept across repeat-key resets."""
    __tablename__ = "trigger_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trigger_id: Mapped[int] = mapped_column(ForeignKey("triggers.id"), nullable=False)
    repeat_key: Mapped[str] = mapped_column(Text, nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    triggered_by: Mapped[str] = mapped_column(Text, nullable=False)
    reading: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    trigger: Mapped["Trigger"] = relationship(back_populates="history")

    __table_args__ = (
        Index("idx_trigger_history_trigger_id", "trigger_id"),
    )

# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------

activity_triggers = Table(
    "activity_triggers",
    Base.metadata,
    Column("activity_id", ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True),
    Column("trigger_id", ForeignKey("triggers.id", ondelete="CASCADE"), primary_key=True),
)


class Activity(Base):
    """A unit of response work (communication, payout, manual task)."""
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=_new_uuid)
    phase_id: Mapped[int] = mapped_column(ForeignKey("phases.id"), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ActivityStatus] = mapped_column(ActivityStatusEnum, nullable=False, default=ActivityStatus.NOT_STARTED)
    is_automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # [{groupType, groupId, communicationType, message?, audioURL?}, ...]
    communications: Mapped[List[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_by: Mapped[Optional[str]] = mapped_column(Text)
    difference_in_trigger_and_activity_completion: Mapped[Optional[str]] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    phase: Mapped["Phase"] = relationship(back_populates="activities")
    triggers: Mapped[List["Trigger"]] = relationship(secondary=activity_triggers)

    __table_args__ = (
        Index("idx_activities_phase_id", "phase_id"),
    )
