"""
评价数据模型
"""
from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    BigInteger, Text, Integer, Boolean, DateTime, ForeignKey, JSON,
    CheckConstraint, UniqueConstraint, Index, func
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK


class Review(Base):
    """订单评价（每个订单一条）"""
    __tablename__ = "reviews"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="评价用户")
    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        comment="订单ID"
    )

    rating: Mapped[int] = mapped_column(
        Integer,
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating"),
        nullable=False,
        comment="评分"
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, comment="评价内容")
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list, comment="标签")
    images: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list, comment="图片")
    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, comment="是否匿名")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_reviews_order"),
        Index("ix_reviews_user", "user_id"),
    )
