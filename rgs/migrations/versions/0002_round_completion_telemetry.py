"""add completion telemetry to rounds

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-05 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0002'
down_revision = '0001'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    cols = {c['name'] for c in insp.get_columns('rounds')}
    with op.batch_alter_table('rounds') as batch_op:
        if 'completed_at' not in cols:
            batch_op.add_column(sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True))
        if 'duration_ms' not in cols:
            batch_op.add_column(sa.Column('duration_ms', sa.Integer(), nullable=True))


def downgrade():
    with op.batch_alter_table('rounds') as batch_op:
        batch_op.drop_column('duration_ms')
        batch_op.drop_column('completed_at')
