"""add can_revert to phases

Revision ID: 0002_phase_can_revert
Revises: 0001_trigger_engine
Create Date: 2025-08-19 10:15:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002_phase_can_revert'
down_revision: Union[str, Sequence[str], None] = '0001_trigger_engine'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

def upgrade():
    op.add_column('phases',
        sa.Column('can_revert', sa.Boolean(), nullable=False, server_default=sa.false())
    )

def downgrade():
    op.drop_column('phases', 'can_revert')
