"""create revoked_token_families

Revision ID: b41e9a07c2d5
Revises: 7f3c21d0a9e4
Create Date: 2026-10-17 12:00:00.000000
"""
import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = 'b41e9a07c2d5'
down_revision = '7f3c21d0a9e4'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'revoked_token_families',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('family_id', sa.String(length=64), nullable=False),
        sa.Column('reason', sa.String(length=64), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_revoked_token_families'),
        sa.UniqueConstraint('family_id', name='uq_revoked_token_families_family_id'),
    )
    op.create_index(
        'ix_revoked_token_families_revoked_at', 'revoked_token_families', ['revoked_at']
    )


def downgrade():
    op.drop_index('ix_revoked_token_families_revoked_at', table_name='revoked_token_families')
    op.drop_table('revoked_token_families')
