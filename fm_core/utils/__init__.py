"""
FreshMall 实用工具模块
"""

from .logger import bind_user_id, get_logger, LogContext, setup_logging
from .errors import FreshMallException, ValidationError, NotFoundError

__all__ = [
    "bind_user_id",
    "get_logger",
    "LogContext",
    "setup_logging",
    "FreshMallException",
    "ValidationError",
    "NotFoundError",
]
