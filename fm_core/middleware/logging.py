"""
请求日志中间件

每个请求一条入站日志、一条结果日志，并通过 X-Trace-Id 响应头回传 trace_id
"""
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from fm_core.utils.logger import get_logger, LogContext

# 不记录日志的路径
SKIP_PATHS = {
    "/healthz",
    "/favicon.ico",
}

# 上游网关传入的 trace_id 只接受这种格式
TRACE_ID_PATTERN = re.compile(r"^[A-Za-z0-9\-]{8,64}$")

SENSITIVE_FIELDS = {"token", "authorization", "secret", "sign"}


def resolve_trace_id(request: Request) -> str:
    incoming = request.headers.get("x-trace-id", "")
    if TRACE_ID_PATTERN.match(incoming):
        return incoming
    return uuid.uuid4().hex


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求日志中间件"""

    def __init__(self, app, logger=None):
        super().__init__(app)
        self.logger = logger or get_logger("middleware.logging")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = resolve_trace_id(request)
        request.state.trace_id = trace_id

        if request.url.path in SKIP_PATHS:
            response = await call_next(request)
            response.headers["X-Trace-Id"] = trace_id
            return response

        method = request.method
        path = request.url.path
        start_time = time.perf_counter()

        with LogContext(trace_id=trace_id):
            query_params = {
                key: ("***MASKED***" if key.lower() in SENSITIVE_FIELDS else value)
                for key, value in request.query_params.items()
            }
            self.logger.info(
                "API request",
                method=method,
                path=path,
                query_params=query_params or None,
                client_ip=self._get_client_ip(request)
            )

            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error(
                    "API request failed",
                    method=method,
                    path=path,
                    latency_ms=int((time.perf_counter() - start_time) * 1000),
                    err=str(e),
                    exc_info=True
                )
                raise

            result = {
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "latency_ms": int((time.perf_counter() - start_time) * 1000),
                # 认证中间件在内层写入
                "user_id": getattr(request.state, "user_id", None),
            }
            if response.status_code >= 500:
                self.logger.error("API response error", **result)
            elif response.status_code >= 400:
                self.logger.warning("API response rejected", **result)
            else:
                self.logger.info("API response", **result)

            response.headers["X-Trace-Id"] = trace_id
            return response

    @staticmethod
    def _get_client_ip(request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"
