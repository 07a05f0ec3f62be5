"""Create FreshMall tables

Revision ID: 0001_create_freshmall_tables
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_create_freshmall_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

Money = sa.Numeric(10, 2)


def _timestamps(with_updated: bool = True):
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]
    if with_updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)
        )
    return columns


def upgrade() -> None:
    """Create products, addresses, coupons, orders, payments and reviews"""

    op.create_table('products',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False, comment='商品名称'),
        sa.Column('description', sa.Text(), nullable=True, comment='商品描述'),
        sa.Column('unit', sa.String(length=20), nullable=True, comment='单位'),
        sa.Column('price', Money, nullable=False, comment='售价'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0', comment='库存数量'),
        sa.Column('sales', sa.Integer(), nullable=False, server_default='0', comment='销量'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active', comment='状态'),
        sa.Column('rating', sa.Numeric(3, 2), nullable=False, server_default='0', comment='平均评分'),
        sa.Column('review_count', sa.Integer(), nullable=False, server_default='0', comment='评价数'),
        *_timestamps(),
        sa.CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint("status IN ('active','inactive')", name='ck_products_status'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_products_status', 'products', ['status'])
    op.create_index('ix_products_sales', 'products', ['sales'])

    op.create_table('addresses',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='用户ID'),
        sa.Column('receiver_name', sa.String(length=50), nullable=False, comment='收货人姓名'),
        sa.Column('receiver_phone', sa.String(length=20), nullable=False, comment='收货人电话'),
        sa.Column('province', sa.String(length=50), nullable=False, comment='省份'),
        sa.Column('city', sa.String(length=50), nullable=False, comment='城市'),
        sa.Column('district', sa.String(length=50), nullable=False, comment='区县'),
        sa.Column('detail', sa.Text(), nullable=False, comment='详细地址'),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false(), comment='是否默认地址'),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True, comment='删除时间'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_addresses_user', 'addresses', ['user_id', 'is_default'])

    op.create_table('coupons',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False, comment='优惠券名称'),
        sa.Column('kind', sa.String(length=16), nullable=False, comment='类型'),
        sa.Column('value', Money, nullable=False, comment='面值或折扣率'),
        sa.Column('min_amount', Money, nullable=False, server_default='0', comment='最低消费金额'),
        sa.Column('max_discount', Money, nullable=True, comment='折扣券最大减免'),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False, comment='生效时间'),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False, comment='失效时间'),
        sa.Column('total_count', sa.Integer(), nullable=True, comment='发放上限，空表示不限'),
        sa.Column('issued_count', sa.Integer(), nullable=False, server_default='0', comment='已领取数量'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active', comment='active/inactive'),
        *_timestamps(with_updated=False),
        sa.CheckConstraint("kind IN ('fixed','percentage')", name='ck_coupons_kind'),
        sa.CheckConstraint('value > 0', name='ck_coupons_value_positive'),
        sa.CheckConstraint('start_time < end_time', name='ck_coupons_window'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_coupons_window', 'coupons', ['start_time', 'end_time'])

    op.create_table('user_coupons',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='用户ID'),
        sa.Column('coupon_id', sa.BigInteger(), nullable=False, comment='优惠券ID'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='unused', comment='状态'),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True, comment='使用时间'),
        sa.Column('order_id', sa.BigInteger(), nullable=True, comment='使用订单ID'),
        sa.Column('claimed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False,
                  comment='领取时间'),
        sa.CheckConstraint("status IN ('unused','used','expired')", name='ck_user_coupons_status'),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'coupon_id', name='uq_user_coupons_user_coupon')
    )
    op.create_index('ix_user_coupons_user_status', 'user_coupons', ['user_id', 'status'])

    op.create_table('orders',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_no', sa.String(length=32), nullable=False, comment='订单号'),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='下单用户'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending', comment='订单状态'),
        sa.Column('total_amount', Money, nullable=False, comment='商品小计'),
        sa.Column('discount_amount', Money, nullable=False, server_default='0', comment='优惠金额'),
        sa.Column('delivery_fee', Money, nullable=False, server_default='0', comment='运费'),
        sa.Column('final_amount', Money, nullable=False, comment='实付金额'),
        sa.Column('address_id', sa.BigInteger(), nullable=True, comment='下单时选择的地址ID'),
        sa.Column('receiver_name', sa.String(length=50), nullable=False, comment='收货人'),
        sa.Column('receiver_phone', sa.String(length=20), nullable=False, comment='收货电话'),
        sa.Column('receiver_address', sa.Text(), nullable=False, comment='收货地址'),
        sa.Column('coupon_id', sa.BigInteger(), nullable=True, comment='优惠券模板ID'),
        sa.Column('user_coupon_id', sa.BigInteger(), nullable=True, comment='核销的用户优惠券ID'),
        sa.Column('remark', sa.String(length=200), nullable=False, server_default='', comment='订单备注'),
        sa.Column('cancel_reason', sa.String(length=200), nullable=True, comment='取消原因'),
        sa.Column('carrier', sa.String(length=50), nullable=True, comment='承运商'),
        sa.Column('tracking_no', sa.String(length=64), nullable=True, comment='运单号'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending','paid','shipped','delivered','completed','cancelled')",
            name='ck_orders_status'
        ),
        sa.CheckConstraint('final_amount >= 0', name='ck_orders_final_amount_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_no', name='uq_orders_order_no')
    )
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])
    op.create_index('ix_orders_status', 'orders', ['status'])

    op.create_table('order_items',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False, comment='关联订单ID'),
        sa.Column('product_id', sa.BigInteger(), nullable=False, comment='商品ID'),
        sa.Column('product_name', sa.String(length=200), nullable=False, comment='商品名称快照'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='数量'),
        sa.Column('price', Money, nullable=False, comment='单价快照'),
        sa.Column('total_amount', Money, nullable=False, comment='小计'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('price >= 0', name='ck_order_items_price_non_negative'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_items_order', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product', 'order_items', ['product_id'])

    op.create_table('payments',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False, comment='订单ID'),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='付款用户'),
        sa.Column('amount', Money, nullable=False, comment='支付金额'),
        sa.Column('method', sa.String(length=16), nullable=False, comment='支付方式'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending', comment='支付状态'),
        sa.Column('prepay_id', sa.String(length=128), nullable=True, comment='预支付ID'),
        sa.Column('transaction_id', sa.String(length=128), nullable=True, comment='渠道交易号'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("method IN ('wechat','alipay','balance')", name='ck_payments_method'),
        sa.CheckConstraint("status IN ('pending','success','failed')", name='ck_payments_status'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_payments_order', 'payments', ['order_id'])

    op.create_table('reviews',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='评价用户'),
        sa.Column('order_id', sa.BigInteger(), nullable=False, comment='订单ID'),
        sa.Column('rating', sa.Integer(), nullable=False, comment='评分'),
        sa.Column('content', sa.Text(), nullable=False, comment='评价内容'),
        sa.Column('tags', sa.JSON(), nullable=False, server_default='[]', comment='标签'),
        sa.Column('images', sa.JSON(), nullable=False, server_default='[]', comment='图片'),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default=sa.false(), comment='是否匿名'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('rating BETWEEN 1 AND 5', name='ck_reviews_rating'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', name='uq_reviews_order')
    )
    op.create_index('ix_reviews_user', 'reviews', ['user_id'])


def downgrade() -> None:
    """Drop all FreshMall tables"""
    op.drop_table('reviews')
    op.drop_table('payments')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('user_coupons')
    op.drop_table('coupons')
    op.drop_table('addresses')
    op.drop_table('products')
