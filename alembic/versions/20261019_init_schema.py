"""initial schema creation

Revision ID: 20261019_init_schema
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op


revision = '20261019_init_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Bootstrap an empty database to the current model metadata
    bind = op.get_bind()
    from fleetopia.models import Base
    Base.metadata.create_all(bind)


def downgrade() -> None:
    bind = op.get_bind()
    from fleetopia.models import Base
    Base.metadata.drop_all(bind)
