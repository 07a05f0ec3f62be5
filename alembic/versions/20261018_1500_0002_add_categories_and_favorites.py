"""Add categories and favorites

Revision ID: 0002_add_categories_and_favorites
Revises: 0001_create_freshmall_tables
Create Date: 2026-10-18 15:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002_add_categories_and_favorites'
down_revision: Union[str, None] = '0001_create_freshmall_tables'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create categories/favorites and link products to a category"""

    op.create_table('categories',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False, comment='分类名称'),
        sa.Column('description', sa.String(length=500), nullable=True, comment='分类描述'),
        sa.Column('icon', sa.String(length=200), nullable=True, comment='分类图标'),
        sa.Column('parent_id', sa.BigInteger(), nullable=True, comment='父分类ID'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0', comment='排序'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active', comment='状态'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint("status IN ('active','inactive')", name='ck_categories_status'),
        sa.ForeignKeyConstraint(['parent_id'], ['categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_categories_parent', 'categories', ['parent_id'])
    op.create_index('ix_categories_sort', 'categories', ['sort_order'])

    op.add_column('products', sa.Column('category_id', sa.BigInteger(), nullable=True, comment='分类ID'))
    op.create_foreign_key(
        'fk_products_category_id', 'products', 'categories', ['category_id'], ['id'], ondelete='SET NULL'
    )
    op.create_index('ix_products_category', 'products', ['category_id'])

    op.create_table('favorites',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='用户ID'),
        sa.Column('product_id', sa.BigInteger(), nullable=False, comment='商品ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False,
                  comment='收藏时间'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'product_id', name='uq_favorites_user_product')
    )
    op.create_index('ix_favorites_user', 'favorites', ['user_id', 'created_at'])


def downgrade() -> None:
    """Drop favorites/categories"""
    op.drop_table('favorites')
    op.drop_index('ix_products_category', table_name='products')
    op.drop_constraint('fk_products_category_id', 'products', type_='foreignkey')
    op.drop_column('products', 'category_id')
    op.drop_table('categories')
