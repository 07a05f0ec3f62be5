"""
支付数据模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger, String, DateTime, ForeignKey,
    CheckConstraint, Index, func
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, Money

PAYMENT_METHODS = ("wechat", "alipay", "balance")
PAYMENT_STATUSES = ("pending", "success", "failed")


class Payment(Base):
    """支付单"""
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        comment="订单ID"
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="付款用户")
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, comment="支付金额")

    method: Mapped[str] = mapped_column(
        String(16),
        CheckConstraint("method IN ('wechat','alipay','balance')", name="ck_payments_method"),
        nullable=False,
        comment="支付方式"
    )
    status: Mapped[str] = mapped_column(
        String(16),
        CheckConstraint("status IN ('pending','success','failed')", name="ck_payments_status"),
        nullable=False,
        default="pending",
        comment="支付状态"
    )

    # 支付渠道返回
    prepay_id: Mapped[Optional[str]] = mapped_column(String(128), comment="预支付ID")
    transaction_id: Mapped[Optional[str]] = mapped_column(String(128), comment="渠道交易号")

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_payments_order", "order_id"),
    )
