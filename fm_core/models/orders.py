"""
订单相关数据模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    BigInteger, String, Text, Integer,
    DateTime, CheckConstraint, Index,
    ForeignKey, UniqueConstraint, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK, Money

ORDER_STATUSES = ("pending", "paid", "shipped", "delivered", "completed", "cancelled")


class Order(Base):
    """订单表

    收货信息在创建时从地址簿复制，之后不再变化。
    """
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_no: Mapped[str] = mapped_column(String(32), nullable=False, comment="订单号")
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="下单用户")

    status: Mapped[str] = mapped_column(
        String(16),
        CheckConstraint(
            "status IN ('pending','paid','shipped','delivered','completed','cancelled')",
            name="ck_orders_status"
        ),
        nullable=False,
        default="pending",
        comment="订单状态"
    )

    # 金额
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, comment="商品小计")
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), comment="优惠金额")
    delivery_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), comment="运费")
    final_amount: Mapped[Decimal] = mapped_column(
        Money,
        CheckConstraint("final_amount >= 0", name="ck_orders_final_amount_non_negative"),
        nullable=False,
        comment="实付金额"
    )

    # 收货快照
    address_id: Mapped[Optional[int]] = mapped_column(BigInteger, comment="下单时选择的地址ID")
    receiver_name: Mapped[str] = mapped_column(String(50), nullable=False, comment="收货人")
    receiver_phone: Mapped[str] = mapped_column(String(20), nullable=False, comment="收货电话")
    receiver_address: Mapped[str] = mapped_column(Text, nullable=False, comment="收货地址")

    # 优惠券
    coupon_id: Mapped[Optional[int]] = mapped_column(BigInteger, comment="优惠券模板ID")
    user_coupon_id: Mapped[Optional[int]] = mapped_column(BigInteger, comment="核销的用户优惠券ID")

    remark: Mapped[str] = mapped_column(String(200), nullable=False, default="", comment="订单备注")
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(200), comment="取消原因")

    # 物流
    carrier: Mapped[Optional[str]] = mapped_column(String(50), comment="承运商")
    tracking_no: Mapped[Optional[str]] = mapped_column(String(64), comment="运单号")

    # 生命周期时间戳
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="记录创建时间"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="记录更新时间"
    )

    __table_args__ = (
        UniqueConstraint("order_no", name="uq_orders_order_no"),
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status", "status"),
    )

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id"
    )


class OrderItem(Base):
    """订单商品快照（下单时冻结名称与单价）"""
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        comment="关联订单ID"
    )
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="商品ID")
    product_name: Mapped[str] = mapped_column(String(200), nullable=False, comment="商品名称快照")

    quantity: Mapped[int] = mapped_column(
        Integer,
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        nullable=False,
        comment="数量"
    )
    price: Mapped[Decimal] = mapped_column(
        Money,
        CheckConstraint("price >= 0", name="ck_order_items_price_non_negative"),
        nullable=False,
        comment="单价快照"
    )
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, comment="小计")

    __table_args__ = (
        Index("ix_order_items_order", "order_id"),
        Index("ix_order_items_product", "product_id"),
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")
