# mypy: disable-error-code="no-untyped-def, assignment, var-annotated"
"""
FreshMall 日志系统
- JSON 格式输出，structlog 与标准 logging 共用同一条处理器链
- 上下文字段：ts, level, trace_id, user_id, action
- PII 自动脱敏（手机号、收货地址）
"""
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from contextvars import ContextVar

import structlog
from structlog.processors import JSONRenderer, add_log_level

# 请求级上下文
trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
user_id_var: ContextVar[Optional[int]] = ContextVar("user_id", default=None)


class PIIMaskingProcessor:
    """PII 数据脱敏处理器"""

    # 不脱敏的字段（业务主键、金额等）
    SAFE_KEYS = {"order_no", "trace_id", "action", "level", "ts", "timestamp"}

    PATTERNS = {
        # 大陆手机号：保留前3位和后4位
        "phone": (re.compile(r"(?<!\d)(1[3-9]\d)\d{4}(\d{4})(?!\d)"), r"\1****\2"),
        # 收货地址字段值
        "address": (re.compile(r"(receiver_address[\"']?\s*[:=]\s*[\"']?)[^\"',}]+"), r"\1[MASKED]"),
        # Token/密钥
        "token": (re.compile(r"(token|key|secret|password)[\"']?\s*[:=]\s*[\"']?([^\"'\s,}]+)"), r"\1=***MASKED***"),
    }

    # 整体替换的字段
    MASKED_KEYS = {"receiver_address", "detail", "receiver_name"}

    def __call__(self, logger, method_name, event_dict):
        return self._mask_dict(event_dict)

    def _mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """递归脱敏字典中的 PII 数据"""
        if not isinstance(data, dict):
            return data

        masked_data = {}
        for key, value in data.items():
            if key in self.MASKED_KEYS and value:
                masked_data[key] = "[MASKED]"
            elif key in self.SAFE_KEYS:
                masked_data[key] = value
            elif isinstance(value, str):
                masked_data[key] = self._mask_string(value)
            elif isinstance(value, dict):
                masked_data[key] = self._mask_dict(value)
            elif isinstance(value, list):
                masked_data[key] = [
                    (
                        self._mask_dict(item)
                        if isinstance(item, dict)
                        else self._mask_string(item) if isinstance(item, str) else item
                    )
                    for item in value
                ]
            else:
                masked_data[key] = value
        return masked_data

    def _mask_string(self, text: str) -> str:
        for pattern, replacement in self.PATTERNS.values():
            text = pattern.sub(replacement, text)
        return text

class FreshMallProcessor:
    """添加 FreshMall 上下文字段"""

    def __call__(self, logger, method_name, event_dict):
        event_dict.setdefault("ts", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))

        if trace_id := trace_id_var.get():
            event_dict.setdefault("trace_id", trace_id)
        if user_id := user_id_var.get():
            event_dict.setdefault("user_id", user_id)

        if "event" in event_dict:
            event_dict["action"] = event_dict.pop("event")
        return event_dict


# 第三方库只输出 WARNING 以上
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "uvicorn.access", "sqlalchemy.engine", "aiosqlite")


def _shared_processors(enable_pii_masking: bool) -> List[Any]:
    processors = [
        structlog.stdlib.add_logger_name,
        add_log_level,
        structlog.processors.format_exc_info,
        FreshMallProcessor(),
    ]
    if enable_pii_masking:
        processors.append(PIIMaskingProcessor())
    return processors


def _renderer(log_format: str):
    if log_format == "json":
        return JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_level: str = "INFO", log_format: str = "json", enable_pii_masking: bool = True) -> None:
    """配置日志系统

    structlog 事件交给标准 logging 输出，第三方库（SQLAlchemy、uvicorn）的日志
    经 ProcessorFormatter 走同一条处理器链，统一为 JSON 并脱敏。
    """
    level = getattr(logging, log_level.upper())
    shared = _shared_processors(enable_pii_masking)

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(log_format),
        ],
    ))

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取日志记录器"""
    return structlog.get_logger(name)


def bind_user_id(user_id: int) -> None:
    """认证通过后把用户ID写入当前请求的日志上下文"""
    user_id_var.set(user_id)


class LogContext:
    """日志上下文管理器，用于设置请求级别的上下文"""

    def __init__(self, trace_id: Optional[str] = None, user_id: Optional[int] = None):
        self.trace_id = trace_id
        self.user_id = user_id
        self._tokens = []

    def __enter__(self):
        if self.trace_id:
            self._tokens.append(trace_id_var.set(self.trace_id))
        if self.user_id:
            self._tokens.append(user_id_var.set(self.user_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for token in reversed(self._tokens):
            token.var.reset(token)
