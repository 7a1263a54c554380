"""Trigger engine schema: sources, phases, triggers, history, activities

Revision ID: 0001_trigger_engine
Revises:
Create Date: 2025-08-05 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_trigger_engine'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PHASE_NAMES = ('PREPAREDNESS', 'ACTIVATION', 'READINESS')
DATA_SOURCES = ('DHM', 'GLOFAS', 'GFH', 'MANUAL')
ACTIVITY_STATUSES = ('NOT_STARTED', 'WORK_IN_PROGRESS', 'COMPLETED', 'DELAYED')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    phase_name = sa.Enum(*PHASE_NAMES, name='phase_name_enum')
    data_source = sa.Enum(*DATA_SOURCES, name='data_source_enum')
    activity_status = sa.Enum(*ACTIVITY_STATUSES, name='activity_status_enum')

    # -------------------
    # sources (basins)
    # -------------------
    op.create_table(
        'sources',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('uuid', sa.String(36), nullable=False, unique=True),
        sa.Column('river_basin', sa.Text(), nullable=False, unique=True),
        sa.Column('sources', sa.JSON(), nullable=False),
        *_timestamps(),
    )

    # -------------------
    # phases
    # -------------------
    op.create_table(
        'phases',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('uuid', sa.String(36), nullable=False, unique=True),
        sa.Column('name', phase_name, nullable=False),
        sa.Column('river_basin', sa.Text(), sa.ForeignKey('sources.river_basin'), nullable=False),
        sa.Column('active_year', sa.Integer(), nullable=False),
        sa.Column('can_trigger_payout', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('required_mandatory_triggers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('required_optional_triggers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('activated_at', sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint('river_basin', 'active_year', 'name', name='uq_phases_basin_year_name'),
    )

    # -------------------
    # triggers
    # -------------------
    op.create_table(
        'triggers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('uuid', sa.String(36), nullable=False, unique=True),
        sa.Column('repeat_key', sa.Text(), nullable=False),
        sa.Column('phase_id', sa.Integer(), sa.ForeignKey('phases.id'), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('notes', sa.Text()),
        sa.Column('data_source', data_source, nullable=False),
        sa.Column('trigger_statement', sa.JSON(), nullable=False),
        sa.Column('is_mandatory', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_triggered', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('triggered_at', sa.DateTime(timezone=True)),
        sa.Column('triggered_by', sa.Text()),
        sa.Column('fired_repeat_key', sa.Text()),
        sa.Column('transaction_hash', sa.Text()),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('idx_triggers_phase_id', 'triggers', ['phase_id'])
    op.create_index('idx_triggers_repeat_key', 'triggers', ['repeat_key'])
    op.create_index('idx_triggers_unconfirmed', 'triggers', ['transaction_hash', 'is_deleted'])

    op.create_table(
        'trigger_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('trigger_id', sa.Integer(), sa.ForeignKey('triggers.id'), nullable=False),
        sa.Column('repeat_key', sa.Text(), nullable=False),
        sa.Column('triggered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('triggered_by', sa.Text(), nullable=False),
        sa.Column('reading', sa.JSON(), nullable=False),
    )
    op.create_index('idx_trigger_history_trigger_id', 'trigger_history', ['trigger_id'])

    # -------------------
    # activities
    # -------------------
    op.create_table(
        'activities',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('uuid', sa.String(36), nullable=False, unique=True),
        sa.Column('phase_id', sa.Integer(), sa.ForeignKey('phases.id'), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('status', activity_status, nullable=False, server_default='NOT_STARTED'),
        sa.Column('is_automated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('communications', sa.JSON(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('completed_by', sa.Text()),
        sa.Column('difference_in_trigger_and_activity_completion', sa.Text()),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('idx_activities_phase_id', 'activities', ['phase_id'])

    op.create_table(
        'activity_triggers',
        sa.Column('activity_id', sa.Integer(), sa.ForeignKey('activities.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('trigger_id', sa.Integer(), sa.ForeignKey('triggers.id', ondelete='CASCADE'), primary_key=True),
    )


def downgrade() -> None:
    op.drop_table('activity_triggers')
    op.drop_index('idx_activities_phase_id', table_name='activities')
    op.drop_table('activities')
    op.drop_index('idx_trigger_history_trigger_id', table_name='trigger_history')
    op.drop_table('trigger_history')
    op.drop_index('idx_triggers_unconfirmed', table_name='triggers')
    op.drop_index('idx_triggers_repeat_key', table_name='triggers')
    op.drop_index('idx_triggers_phase_id', table_name='triggers')
    op.drop_table('triggers')
    op.drop_table('phases')
    op.drop_table('sources')

    bind = op.get_bind()
    for enum_name in ('activity_status_enum', 'data_source_enum', 'phase_name_enum'):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
