"""Create user_marketplace_links

Revision ID: 001_user_marketplace_links
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_user_marketplace_links'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'user_marketplace_links',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('marketplace_id', sa.Integer(), nullable=False),
        sa.Column('connection_status', sa.String(length=32), nullable=False, server_default='DISCONNECTED'),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text("timezone('utc', now())")),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text("timezone('utc', now())")),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'marketplace_id', name='uq_user_marketplace_links_user_marketplace'),
    )
    op.create_index('ix_user_marketplace_links_user_id', 'user_marketplace_links', ['user_id'])
    op.create_index('ix_user_marketplace_links_marketplace_id', 'user_marketplace_links', ['marketplace_id'])
    op.create_index('ix_user_marketplace_links_connection_status', 'user_marketplace_links', ['connection_status'])
    op.create_index('ix_user_marketplace_links_token_expires_at', 'user_marketplace_links', ['token_expires_at'])


def downgrade() -> None:
    op.drop_index('ix_user_marketplace_links_token_expires_at', table_name='user_marketplace_links')
    op.drop_index('ix_user_marketplace_links_connection_status', table_name='user_marketplace_links')
    op.drop_index('ix_user_marketplace_links_marketplace_id', table_name='user_marketplace_links')
    op.drop_index('ix_user_marketplace_links_user_id', table_name='user_marketplace_links')
    op.drop_table('user_marketplace_links')
