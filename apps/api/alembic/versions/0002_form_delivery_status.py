"""Track delivery events reported for form invitations.

Revision ID: 0002_form_delivery_status
Revises: 0001_initial
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_form_delivery_status'
down_revision = '0001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table('forms') as batch_op:
        batch_op.add_column(sa.Column('delivery_status', sa.String(20), nullable=True))
        batch_op.add_column(
            sa.Column('delivery_updated_at', sa.DateTime(timezone=True), nullable=True)
        )


def downgrade() -> None:
    with op.batch_alter_table('forms') as batch_op:
        batch_op.drop_column('delivery_updated_at')
        batch_op.drop_column('delivery_status')
