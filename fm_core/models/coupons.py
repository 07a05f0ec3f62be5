"""
优惠券数据模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger, String, Integer, DateTime, ForeignKey,
    CheckConstraint, UniqueConstraint, Index, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK, Money

COUPON_KINDS = ("fixed", "percentage")
USER_COUPON_STATUSES = ("unused", "used", "expired")


class Coupon(Base):
    """优惠券模板

    fixed: value 为减免金额
    percentage: value 为折扣率（0.8 即八折），max_discount 为减免上限
    """
    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, comment="优惠券名称")

    kind: Mapped[str] = mapped_column(
        String(16),
        CheckConstraint("kind IN ('fixed','percentage')", name="ck_coupons_kind"),
        nullable=False,
        comment="类型"
    )
    value: Mapped[Decimal] = mapped_column(
        Money,
        CheckConstraint("value > 0", name="ck_coupons_value_positive"),
        nullable=False,
        comment="面值或折扣率"
    )
    min_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), comment="最低消费金额")
    max_discount: Mapped[Optional[Decimal]] = mapped_column(Money, comment="折扣券最大减免")

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, comment="生效时间")
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, comment="失效时间")

    # 发放控制
    total_count: Mapped[Optional[int]] = mapped_column(Integer, comment="发放上限，空表示不限")
    issued_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="已领取数量")

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", comment="active/inactive")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_coupons_window"),
        Index("ix_coupons_window", "start_time", "end_time"),
    )


class UserCoupon(Base):
    """用户领取的优惠券（unused → used / expired）"""
    __tablename__ = "user_coupons"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="用户ID")
    coupon_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("coupons.id", ondelete="CASCADE"),
        nullable=False,
        comment="优惠券ID"
    )

    status: Mapped[str] = mapped_column(
        String(16),
        CheckConstraint("status IN ('unused','used','expired')", name="ck_user_coupons_status"),
        nullable=False,
        default="unused",
        comment="状态"
    )
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="使用时间")
    order_id: Mapped[Optional[int]] = mapped_column(BigInteger, comment="使用订单ID")

    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="领取时间"
    )

    __table_args__ = (
        # 每个用户每张券只能领取一次
        UniqueConstraint("user_id", "coupon_id", name="uq_user_coupons_user_coupon"),
        Index("ix_user_coupons_user_status", "user_id", "status"),
    )

    coupon: Mapped["Coupon"] = relationship("Coupon", lazy="joined", innerjoin=True)
