"""
FreshMall 数据库连接和会话管理

生产环境使用 PostgreSQL（asyncpg），测试和本地开发可以使用 SQLite（aiosqlite）。
"""
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
    AsyncEngine
)
from sqlalchemy import text, event

from fm_core.config import Settings, get_settings
from fm_core.utils.logger import get_logger
from fm_core.models.base import Base

logger = get_logger(__name__)
slow_query_logger = get_logger("slow_query")

MAX_LOGGED_SQL = 2000


def _watch_slow_queries(engine, threshold_ms: int) -> None:
    """超过阈值的语句以 WARNING 记录（SQL 截断，参数不落日志）"""
    @event.listens_for(engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start_times = conn.info.get("query_start_time")
        if not start_times:
            return
        duration_ms = (time.perf_counter() - start_times.pop()) * 1000
        if duration_ms < threshold_ms:
            return

        sql = " ".join(statement.split())
        if len(sql) > MAX_LOGGED_SQL:
            sql = sql[:MAX_LOGGED_SQL] + "..."
        slow_query_logger.warning(
            "Slow query",
            duration_ms=round(duration_ms, 1),
            sql=sql,
            executemany=executemany
        )


def _enable_sqlite_foreign_keys(engine) -> None:
    """SQLite 默认不校验外键"""
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class DatabaseManager:
    """数据库管理器

    持有引擎和会话工厂；服务层通过构造参数注入同一个实例。
    """

    def __init__(self, settings: Optional[Settings] = None, database_url: Optional[str] = None):
        self.settings = settings or get_settings()
        self.database_url = database_url or self.settings.database_url
        self._async_engine: Optional[AsyncEngine] = None
        self._async_session_factory: Optional[async_sessionmaker] = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _engine_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"echo": self.settings.api_debug}
        if self.is_sqlite:
            # 写锁等待，超时后报 database is locked（按存储冲突处理）
            options["connect_args"] = {"timeout": self.settings.db_lock_timeout_ms / 1000}
            return options

        options.update(
            pool_size=self.settings.db_pool_size,
            max_overflow=self.settings.db_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
            # 行锁等待超时返回 55P03，调用方可重试
            connect_args={"server_settings": {"lock_timeout": str(self.settings.db_lock_timeout_ms)}},
        )
        return options

    def create_async_engine(self) -> AsyncEngine:
        """创建异步数据库引擎"""
        if self._async_engine is None:
            self._async_engine = create_async_engine(self.database_url, **self._engine_options())
            _watch_slow_queries(self._async_engine.sync_engine, self.settings.slow_query_threshold_ms)
            if self.is_sqlite:
                _enable_sqlite_foreign_keys(self._async_engine.sync_engine)
            logger.info("Created async database engine", dialect=self._async_engine.dialect.name)

        return self._async_engine

    def get_async_session_factory(self) -> async_sessionmaker:
        """获取异步会话工厂"""
        if self._async_session_factory is None:
            engine = self.create_async_engine()
            self._async_session_factory = async_sessionmaker(
                engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,  # 手动控制刷新时机
                autocommit=False,
            )

        return self._async_session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """获取数据库会话上下文管理器"""
        session_factory = self.get_async_session_factory()
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def get_transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """获取事务上下文管理器（工作单元）

        正常退出时提交；任何异常都会回滚并继续抛出。
        """
        session_factory = self.get_async_session_factory()
        async with session_factory() as session:
            async with session.begin():
                yield session

    async def create_tables(self) -> None:
        """创建所有表（仅用于测试和本地开发）"""
        engine = self.create_async_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Created all database tables")

    async def drop_tables(self) -> None:
        """删除所有表（仅用于测试）"""
        engine = self.create_async_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.info("Dropped all database tables")

    async def check_connection(self) -> bool:
        """检查数据库连接"""
        try:
            engine = self.create_async_engine()
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection check passed")
            return True
        except Exception:
            logger.error("Database connection check failed", exc_info=True)
            return False

    async def close(self) -> None:
        """关闭数据库连接"""
        if self._async_engine:
            await self._async_engine.dispose()
            self._async_engine = None
            self._async_session_factory = None
            logger.info("Closed async database engine")


# 全局数据库管理器实例（仅供应用装配使用）
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """获取数据库管理器单例"""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager
