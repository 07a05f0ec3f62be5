"""
商品分类数据模型
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, String, Integer, DateTime, ForeignKey, CheckConstraint, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK

CATEGORY_STATUSES = ("active", "inactive")


class Category(Base):
    """商品分类表，parent_id 为空表示顶级分类"""
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, comment="分类名称")
    description: Mapped[Optional[str]] = mapped_column(String(500), comment="分类描述")
    icon: Mapped[Optional[str]] = mapped_column(String(200), comment="分类图标")
    parent_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("categories.id", ondelete="SET NULL"),
        comment="父分类ID"
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="排序")
    status: Mapped[str] = mapped_column(
        String(16),
        CheckConstraint("status IN ('active','inactive')", name="ck_categories_status"),
        nullable=False,
        default="active",
        comment="状态"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_categories_parent", "parent_id"),
        Index("ix_categories_sort", "sort_order"),
    )
