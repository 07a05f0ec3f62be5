"""
FreshMall 数据库基础模型
遵循约束：UTC 时间、Decimal 金额、统一命名规范
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import BigInteger, DateTime, Integer, Numeric
from sqlalchemy.orm import DeclarativeBase

# BIGINT 主键；SQLite 只有 INTEGER PRIMARY KEY 才会自增
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

# 金额统一 DECIMAL(10,2)
Money = Numeric(10, 2)


class Base(DeclarativeBase):
    """数据库模型基类"""

    type_annotation_map = {
        datetime: DateTime(timezone=True),  # 强制使用 timezone-aware datetime
        Decimal: Money,
    }

    # INSERT/UPDATE 后立即取回服务端生成的列，异步会话中不能懒加载
    __mapper_args__ = {"eager_defaults": True}

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)

            if isinstance(value, Decimal):
                result[column.name] = str(value)
            elif isinstance(value, datetime):
                result[column.name] = value.isoformat()
            else:
                result[column.name] = value

        return result
