"""Create eBay connected accounts and authorization requests

Revision ID: ebay_gateway_001
Revises:
Create Date: 2026-03-01

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = 'ebay_gateway_001'
down_revision = None
branch_labels = None
depends_on = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade():
    conn = op.get_bind()
    inspector = inspect(conn)
    tables = inspector.get_table_names()

    if 'ebay_connected_accounts' not in tables:
        op.create_table(
            'ebay_connected_accounts',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('owner_user_id', sa.String(length=36), nullable=False),
            sa.Column('marketplace_user_id', sa.Text(), nullable=True),
            sa.Column('marketplace_username', sa.Text(), nullable=True),
            sa.Column('friendly_name', sa.Text(), nullable=True),
            sa.Column('environment', sa.String(length=16), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
            sa.Column('access_token', sa.Text(), nullable=True),
            sa.Column('refresh_token', sa.Text(), nullable=True),
            sa.Column('token_type', sa.Text(), nullable=True),
            sa.Column('access_token_expires_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('refresh_token_expires_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('granted_scopes', _json(), nullable=False),
            sa.Column('user_selected_scopes', _json(), nullable=False),
            sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('last_error', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint(
                'owner_user_id', 'marketplace_user_id', 'environment',
                name='uq_ebay_connected_accounts_owner_identity_env',
            ),
        )
        op.create_index('idx_ebay_connected_accounts_owner', 'ebay_connected_accounts', ['owner_user_id'])
        op.create_index('idx_ebay_connected_accounts_status', 'ebay_connected_accounts', ['status'])

    if 'ebay_authorization_requests' not in tables:
        op.create_table(
            'ebay_authorization_requests',
            sa.Column('state', sa.String(length=128), primary_key=True),
            sa.Column(
                'account_id',
                sa.String(length=36),
                sa.ForeignKey('ebay_connected_accounts.id', ondelete='CASCADE'),
                nullable=False,
            ),
            sa.Column('redirect_uri', sa.Text(), nullable=True),
            sa.Column('scopes', _json(), nullable=False),
            sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index(
            'idx_ebay_authorization_requests_account_id', 'ebay_authorization_requests', ['account_id']
        )


def downgrade():
    op.drop_index('idx_ebay_authorization_requests_account_id', table_name='ebay_authorization_requests')
    op.drop_table('ebay_authorization_requests')
    op.drop_index('idx_ebay_connected_accounts_status', table_name='ebay_connected_accounts')
    op.drop_index('idx_ebay_connected_accounts_owner', table_name='ebay_connected_accounts')
    op.drop_table('ebay_connected_accounts')
