"""Create watchlist, watchlist_history and instagram_events

Revision ID: 3f1c9a7d2e40
Revises:
Create Date: 2026-10-16 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2e40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('watchlist',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account', sa.Text(), nullable=False),
        sa.Column('followings', sa.JSON(), nullable=False),
        sa.Column('last_checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account'),
    )

    op.create_table('watchlist_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account', sa.Text(), nullable=False),
        sa.Column('followings_count', sa.Integer(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_watchlist_history_account_recorded_at', 'watchlist_history', ['account', 'recorded_at'])

    op.create_table('instagram_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account', sa.Text(), nullable=False),
        sa.Column('post_id', sa.Text(), nullable=False),
        sa.Column('post_url', sa.Text(), nullable=True),
        sa.Column('post_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('is_event', sa.Boolean(), nullable=False),
        sa.Column('event_type', sa.Text(), nullable=True),
        sa.Column('event_details', sa.JSON(), nullable=True),
        sa.Column('confidence_score', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('post_id'),
    )
    op.create_index('ix_instagram_events_account', 'instagram_events', ['account'])
    op.create_index('ix_instagram_events_post_date', 'instagram_events', ['post_date'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_instagram_events_post_date', table_name='instagram_events')
    op.drop_index('ix_instagram_events_account', table_name='instagram_events')
    op.drop_table('instagram_events')
    op.drop_index('ix_watchlist_history_account_recorded_at', table_name='watchlist_history')
    op.drop_table('watchlist_history')
    op.drop_table('watchlist')
