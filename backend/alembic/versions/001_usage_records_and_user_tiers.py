"""usage_records and user_tiers

Revision ID: 001_usage_tiers
Revises:
Create Date: 2026-10-19 10:12:37.402118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_usage_tiers'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 每用户每日生成次数
    op.create_table(
        'usage_records',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('user_id', 'usage_date')
    )
    op.create_index(op.f('ix_usage_records_usage_date'), 'usage_records', ['usage_date'])

    # 用户等级
    op.create_table(
        'user_tiers',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('tier', sa.String(length=20), nullable=False, server_default='free'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('user_id')
    )


def downgrade() -> None:
    op.drop_table('user_tiers')
    op.drop_index(op.f('ix_usage_records_usage_date'), table_name='usage_records')
    op.drop_table('usage_records')
