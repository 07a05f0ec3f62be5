"""
基础服务类
"""
from typing import Optional, Dict, Any, List, Callable
from abc import ABC

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.utils.logger import get_logger
from fm_core.utils.errors import (
    FreshMallException, InternalServerError, StorageConflictError, ValidationError
)
from fm_core.database import DatabaseManager, get_db_manager

logger = get_logger(__name__)

# 锁等待超时 / 死锁 / 序列化失败 / 唯一键冲突
CONFLICT_SQLSTATES = {"40P01", "40001", "55P03", "23505"}


def is_storage_conflict(exc: DBAPIError) -> bool:
    """判断数据库异常是否为并发冲突（可重试）"""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True
    if isinstance(exc, IntegrityError) and "UNIQUE" in str(orig):
        return True
    message = str(orig).lower()
    return "database is locked" in message or "deadlock" in message


class BaseService(ABC):
    """基础服务类

    数据库管理器由构造参数注入，未传入时使用应用级单例。
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db_manager = db_manager or get_db_manager()
        self.logger = get_logger(self.__class__.__name__)

    async def execute_with_transaction(
        self,
        operation: Callable,
        *args,
        **kwargs
    ) -> Any:
        """在事务中执行操作：成功提交，任何异常回滚"""
        try:
            async with self.db_manager.get_transaction() as session:
                return await operation(session, *args, **kwargs)
        except FreshMallException:
            raise
        except DBAPIError as e:
            if is_storage_conflict(e):
                self.logger.warning("Transaction aborted by storage conflict", err=str(e.orig))
                raise StorageConflictError(detail="Concurrent update detected, please retry") from e
            self.logger.error("Transaction operation failed", exc_info=True)
            raise InternalServerError(
                code="TRANSACTION_FAILED",
                detail=f"Database transaction failed: {str(e.orig)}"
            ) from e
        except Exception as e:
            self.logger.error("Transaction operation failed", exc_info=True)
            raise InternalServerError(
                code="TRANSACTION_FAILED",
                detail=f"Database transaction failed: {str(e)}"
            ) from e

    async def execute_with_session(
        self,
        operation: Callable,
        *args,
        **kwargs
    ) -> Any:
        """使用数据库会话执行只读操作"""
        try:
            async with self.db_manager.get_session() as session:
                return await operation(session, *args, **kwargs)
        except FreshMallException:
            raise
        except Exception as e:
            self.logger.error("Session operation failed", exc_info=True)
            raise InternalServerError(
                code="SESSION_OPERATION_FAILED",
                detail=f"Database operation failed: {str(e)}"
            ) from e

    def validate_required_fields(self, data: Dict[str, Any], required_fields: List[str]) -> None:
        """验证必填字段"""
        missing_fields = [
            field for field in required_fields
            if field not in data or data[field] is None or data[field] == ""
        ]

        if missing_fields:
            raise ValidationError(
                code="MISSING_REQUIRED_FIELDS",
                detail=f"Missing required fields: {', '.join(missing_fields)}"
            )

    def validate_updatable_fields(
        self,
        data: Dict[str, Any],
        validators: Dict[str, Callable[[Any], Any]]
    ) -> Dict[str, Any]:
        """按白名单校验更新字段，返回校验后的值

        白名单以外的字段直接拒绝，避免意外写入其他列。
        """
        unknown = sorted(set(data) - set(validators))
        if unknown:
            raise ValidationError(
                code="FIELD_NOT_UPDATABLE",
                detail=f"Fields not updatable: {', '.join(unknown)}"
            )
        if not data:
            raise ValidationError(code="EMPTY_UPDATE", detail="No fields to update")

        return {field: validators[field](value) for field, value in data.items()}


class RepositoryMixin:
    """仓储混入类 - 提供常用的数据库操作"""

    async def get_by_id(
        self,
        session: AsyncSession,
        model_class,
        record_id: int,
        for_update: bool = False
    ) -> Optional[Any]:
        """根据ID获取记录，for_update 时加行锁"""
        if not for_update:
            return await session.get(model_class, record_id)

        stmt = select(model_class).where(model_class.id == record_id).with_for_update()
        result = await session.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def create(
        self,
        session: AsyncSession,
        model_class,
        data: Dict[str, Any]
    ) -> Any:
        """创建记录"""
        instance = model_class(**data)
        session.add(instance)
        await session.flush()  # 获取生成的ID
        return instance

    async def update(
        self,
        session: AsyncSession,
        instance: Any,
        data: Dict[str, Any]
    ) -> Any:
        """更新记录（调用方负责白名单校验）"""
        for key, value in data.items():
            setattr(instance, key, value)

        await session.flush()
        return instance

    async def exists(
        self,
        session: AsyncSession,
        model_class,
        **filters
    ) -> bool:
        """检查记录是否存在"""
        stmt = select(model_class.id)
        for field, value in filters.items():
            stmt = stmt.where(getattr(model_class, field) == value)

        stmt = stmt.limit(1)
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
