"""
商品数据模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger, Text, String, Integer, DateTime, Numeric, ForeignKey,
    CheckConstraint, Index, func
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, Money

PRODUCT_STATUSES = ("active", "inactive")


class Product(Base):
    """商品表

    stock/sales 只由库存账本在结算事务内修改。
    """
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False, comment="商品名称")
    description: Mapped[Optional[str]] = mapped_column(Text, comment="商品描述")
    unit: Mapped[Optional[str]] = mapped_column(String(20), comment="单位")
    category_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("categories.id", ondelete="SET NULL"),
        comment="分类ID"
    )

    price: Mapped[Decimal] = mapped_column(
        Money,
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        nullable=False,
        comment="售价"
    )

    # 库存与销量
    stock: Mapped[int] = mapped_column(
        Integer,
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        nullable=False,
        default=0,
        comment="库存数量"
    )
    sales: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="销量")

    status: Mapped[str] = mapped_column(
        String(16),
        CheckConstraint("status IN ('active','inactive')", name="ck_products_status"),
        nullable=False,
        default="active",
        comment="状态"
    )

    # 评价汇总
    rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False, default=Decimal("0"), comment="平均评分")
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="评价数")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="创建时间"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="更新时间"
    )

    __table_args__ = (
        Index("ix_products_status", "status"),
        Index("ix_products_sales", "sales"),
        Index("ix_products_category", "category_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"
