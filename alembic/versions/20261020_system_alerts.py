"""add system_alerts table

Revision ID: 20261020_system_alerts
Revises: 20261019_init_schema
Create Date: 2026-10-20
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = '20261020_system_alerts'
down_revision = '20261019_init_schema'
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    # The bootstrap revision already creates it on fresh databases
    if 'system_alerts' not in insp.get_table_names():
        op.create_table(
            'system_alerts',
            sa.Column('id', sa.Uuid(), primary_key=True),
            sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('kind', sa.String(length=32), nullable=False),
            sa.Column('related_id', sa.Uuid(), nullable=True),
            sa.Column('message', sa.String(length=512), nullable=False),
            sa.Column('details', sa.String(length=1000), nullable=True),
            sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index('ix_alert_user_created', 'system_alerts', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_alert_user_created', table_name='system_alerts')
    op.drop_table('system_alerts')
