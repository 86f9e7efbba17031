"""create users, refresh_tokens and token_blacklist

Revision ID: 7f3c21d0a9e4
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = '7f3c21d0a9e4'
down_revision = None
branch_labels = None
depends_on = None

refresh_token_status = sa.Enum('active', 'used', 'revoked', name='refresh_token_status')
token_type = sa.Enum('access', 'refresh', name='token_type')


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=254), nullable=False),
        sa.Column('username', sa.String(length=50), nullable=False),
        sa.Column('password_hash', sa.String(length=254), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sa.UniqueConstraint('username', name='uq_users_username'),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_username', 'users', ['username'])

    op.create_table(
        'refresh_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('jti', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('device_id', sa.String(length=128), nullable=False),
        sa.Column('device_name', sa.String(length=255), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=False),
        sa.Column('platform', sa.String(length=64), nullable=True),
        sa.Column('browser', sa.String(length=64), nullable=True),
        sa.Column('status', refresh_token_status, nullable=False),
        sa.Column('family_id', sa.String(length=64), nullable=False),
        sa.Column('parent_jti', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=64), nullable=True),
        sa.CheckConstraint('expires_at > created_at', name='ck_refresh_tokens_expiry_after_creation'),
        sa.PrimaryKeyConstraint('id', name='pk_refresh_tokens'),
        sa.UniqueConstraint('jti', name='uq_refresh_tokens_jti'),
    )
    op.create_index('ix_refresh_tokens_user_status', 'refresh_tokens', ['user_id', 'status'])
    op.create_index('ix_refresh_tokens_user_device', 'refresh_tokens', ['user_id', 'device_id'])
    op.create_index('ix_refresh_tokens_family', 'refresh_tokens', ['family_id'])
    op.create_index('ix_refresh_tokens_expires_at', 'refresh_tokens', ['expires_at'])

    op.create_table(
        'token_blacklist',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('jti', sa.String(length=64), nullable=False),
        sa.Column('token_type', token_type, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('device_id', sa.String(length=128), nullable=True),
        sa.Column('reason', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('blacklisted_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_token_blacklist'),
        sa.UniqueConstraint('jti', name='uq_token_blacklist_jti'),
    )
    op.create_index('ix_token_blacklist_user', 'token_blacklist', ['user_id'])
    op.create_index('ix_token_blacklist_expires_at', 'token_blacklist', ['expires_at'])


def downgrade():
    op.drop_index('ix_token_blacklist_expires_at', table_name='token_blacklist')
    op.drop_index('ix_token_blacklist_user', table_name='token_blacklist')
    op.drop_table('token_blacklist')
    op.drop_index('ix_refresh_tokens_expires_at', table_name='refresh_tokens')
    op.drop_index('ix_refresh_tokens_family', table_name='refresh_tokens')
    op.drop_index('ix_refresh_tokens_user_device', table_name='refresh_tokens')
    op.drop_index('ix_refresh_tokens_user_status', table_name='refresh_tokens')
    op.drop_table('refresh_tokens')
    op.drop_index('ix_users_username', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    token_type.drop(op.get_bind(), checkfirst=True)
    refresh_token_status.drop(op.get_bind(), checkfirst=True)
