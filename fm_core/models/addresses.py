"""
收货地址数据模型
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, String, Text, Boolean, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK


class Address(Base):
    """收货地址表（软删除）"""
    __tablename__ = "addresses"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="用户ID")

    receiver_name: Mapped[str] = mapped_column(String(50), nullable=False, comment="收货人姓名")
    receiver_phone: Mapped[str] = mapped_column(String(20), nullable=False, comment="收货人电话")
    province: Mapped[str] = mapped_column(String(50), nullable=False, comment="省份")
    city: Mapped[str] = mapped_column(String(50), nullable=False, comment="城市")
    district: Mapped[str] = mapped_column(String(50), nullable=False, comment="区县")
    detail: Mapped[str] = mapped_column(Text, nullable=False, comment="详细地址")
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, comment="是否默认地址")

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
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="删除时间")

    __table_args__ = (
        Index("ix_addresses_user", "user_id", "is_default"),
    )

    @property
    def full_address(self) -> str:
        return f"{self.province} {self.city} {self.district} {self.detail}"
