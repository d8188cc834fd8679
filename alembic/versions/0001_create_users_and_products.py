"""create_users_and_products

Revision ID: 0001_create_users_and_products
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = '0001_create_users_and_products'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.Text(), nullable=False),
        sa.Column('marketplace_access_token', sa.Text(), nullable=True),
        sa.Column('marketplace_refresh_token', sa.Text(), nullable=True),
        sa.Column('marketplace_token_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_user_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('condition', sa.Text(), nullable=False, server_default='used_good'),
        sa.Column('category', sa.Text(), nullable=True),
        sa.Column('brand', sa.Text(), nullable=True),
        sa.Column('purchase_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('sale_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('sold', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('analysis', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('listing_id', sa.Text(), nullable=True),
        sa.Column('listing_status', sa.Text(), nullable=True),
        sa.Column('listing_url', sa.Text(), nullable=True),
        sa.Column('listing_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('listing_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_products_quantity_non_negative'),
        sa.CheckConstraint(
            "condition IN ('new', 'open_box', 'used_like_new', 'used_good', 'used_fair')",
            name='ck_products_condition',
        ),
        sa.ForeignKeyConstraint(['owner_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_owner_user_id', 'products', ['owner_user_id'])


def downgrade() -> None:
    op.drop_index('ix_products_owner_user_id', table_name='products')
    op.drop_table('products')
    op.drop_table('users')
