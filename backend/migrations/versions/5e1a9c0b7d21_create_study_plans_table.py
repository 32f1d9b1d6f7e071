"""Create study_plans table

Revision ID: 5e1a9c0b7d21
Revises:
Create Date: 2025-02-03 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5e1a9c0b7d21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'study_plans',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('owner_id', sa.String(128), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('modules', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('metadata', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_study_plans_owner_id'), 'study_plans', ['owner_id'], unique=False)
    op.create_index('ix_study_plans_owner_created', 'study_plans', ['owner_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_study_plans_owner_created', table_name='study_plans')
    op.drop_index(op.f('ix_study_plans_owner_id'), table_name='study_plans')
    op.drop_table('study_plans')
