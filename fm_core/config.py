"""
FreshMall Configuration Management
遵循约束：环境变量前缀 FM__
"""
from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """全局配置类"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FM__",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="freshmall")
    db_user: str = Field(default="freshmall")
    db_password: str = Field(default="")
    db_pool_size: int = Field(default=20)
    db_max_overflow: int = Field(default=40)
    db_lock_timeout_ms: int = Field(default=5000)  # 行锁等待上限
    # 测试或本地开发时直接指定连接串（如 sqlite+aiosqlite:///./dev.db）
    database_url_override: Optional[str] = Field(default=None)

    # Redis
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    redis_db: int = Field(default=0)
    redis_password: Optional[str] = Field(default=None)
    redis_max_connections: int = Field(default=50)

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_prefix: str = Field(default="/api/fm/v1")
    api_title: str = Field(default="FreshMall API")
    api_version: str = Field(default="1.0.0")
    api_debug: bool = Field(default=False)

    # Security
    secret_key: str = Field(default="change-me-in-production")
    algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=7 * 24 * 60)

    # Monitoring
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text
    slow_query_threshold_ms: int = Field(default=100)

    # 业务参数
    default_delivery_fee: Decimal = Field(default=Decimal("0.00"))
    price_tolerance: Decimal = Field(default=Decimal("0.01"))
    cart_ttl_seconds: int = Field(default=7 * 24 * 3600)
    cart_max_quantity: int = Field(default=99)
    order_remark_max_length: int = Field(default=200)

    # Payment
    payment_gateway_url: Optional[str] = Field(default=None)
    payment_timeout: float = Field(default=10.0)
    payment_notify_url: str = Field(default="http://localhost:8000/api/fm/v1/payment/notify")

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, v):
        """确保 API 前缀符合规范"""
        if not v.startswith("/api/fm/"):
            raise ValueError("API prefix must start with /api/fm/")
        return v

    @field_validator("price_tolerance")
    @classmethod
    def validate_price_tolerance(cls, v):
        if v <= 0:
            raise ValueError("Price tolerance must be positive")
        return v

    @property
    def database_url(self) -> str:
        """构建数据库连接字符串"""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def sync_database_url(self) -> str:
        """构建同步数据库连接字符串（用于 Alembic）"""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def redis_url(self) -> str:
        """构建 Redis 连接字符串"""
        password = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{password}{self.redis_host}:{self.redis_port}/{self.redis_db}"


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
