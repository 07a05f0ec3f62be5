"""
认证中间件
校验 Bearer JWT，把 user_id / role 写入 request.state
"""
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from fm_core.config import get_settings
from fm_core.utils.errors import UnauthorizedError, FreshMallException
from fm_core.utils.logger import bind_user_id, get_logger
from fm_core.utils.tokens import decode_token


class AuthMiddleware(BaseHTTPMiddleware):
    """认证中间件"""

    def __init__(self, app, logger=None):
        super().__init__(app)
        self.logger = logger or get_logger("middleware.auth")
        prefix = get_settings().api_prefix

        # 无需认证的路径
        self.public_paths = {
            "/healthz",
            "/docs",
            "/redoc",
            "/openapi.json",
            f"{prefix}/payment/notify",  # 支付渠道回调
        }
        # 只读公开的路径前缀（商品、分类、评价）
        self.public_get_prefixes = [
            f"{prefix}/products",
            f"{prefix}/categories",
            f"{prefix}/reviews",
        ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._is_public_path(request):
            self._attach_optional_user(request)
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if not auth_header:
            return UnauthorizedError(
                code="MISSING_AUTH_HEADER",
                detail="Authorization header is required"
            ).to_response(request)

        if not auth_header.startswith("Bearer "):
            return UnauthorizedError(
                code="INVALID_AUTH_FORMAT",
                detail="Authorization header must start with 'Bearer '"
            ).to_response(request)

        try:
            payload = decode_token(auth_header[7:])
        except FreshMallException as e:
            self.logger.warning("Token rejected", path=request.url.path, code=e.code)
            return e.to_response(request)

        self._set_user(request, payload)
        return await call_next(request)

    def _attach_optional_user(self, request: Request) -> None:
        """公开接口带了有效令牌时同样写入登录态，无效令牌按匿名处理"""
        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            return
        try:
            payload = decode_token(auth_header[7:])
        except FreshMallException as e:
            self.logger.debug("Ignoring token on public path", path=request.url.path, code=e.code)
            return
        self._set_user(request, payload)

    @staticmethod
    def _set_user(request: Request, payload: dict) -> None:
        request.state.user_id = int(payload["sub"])
        request.state.role = payload.get("role", "user")
        bind_user_id(request.state.user_id)

    def _is_public_path(self, request: Request) -> bool:
        path = request.url.path
        if path in self.public_paths:
            return True
        if request.method == "GET":
            return any(path.startswith(prefix) for prefix in self.public_get_prefixes)
        return False
