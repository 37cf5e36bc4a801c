"""add_scan_attempt_id

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, Sequence[str], None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column('scans', sa.Column('attempt_id', sa.String(64), nullable=True))


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_column('scans', 'attempt_id')
