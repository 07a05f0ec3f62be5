"""
FreshMall 错误处理系统
遵循 RFC7807 Problem Details 标准，同时输出 error_kind/message 供客户端识别错误类别
"""
from typing import Any, Dict, Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field


class ProblemDetail(BaseModel):
    """RFC7807 Problem Details 模型"""
    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "type": "about:blank",
                "title": "Insufficient stock",
                "status": 409,
                "detail": "Product 12 has 5 in stock, 6 requested",
                "code": "INSUFFICIENT_STOCK",
                "error_kind": "InsufficientStock"
            }
        }
    )

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: Optional[str] = None
    instance: Optional[str] = None
    code: Optional[str] = None  # 业务错误码
    error_kind: Optional[str] = None  # 错误分类


class FreshMallException(Exception):
    """FreshMall 基础异常类"""

    error_kind = "Internal"
    retryable = False

    def __init__(
        self,
        status: int,
        code: str,
        title: str,
        detail: Optional[str] = None,
        **kwargs
    ):
        self.status = status
        self.code = code
        self.title = title
        self.detail = detail
        self.extra = kwargs
        super().__init__(detail or title)

    @property
    def message(self) -> str:
        return self.detail or self.title

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        """转换为 Problem Details 格式"""
        return ProblemDetail(
            type="about:blank",
            title=self.title,
            status=self.status,
            detail=self.detail,
            instance=instance,
            code=self.code,
            error_kind=self.error_kind,
            **self.extra
        )

    def to_dict(self) -> Dict[str, Any]:
        """客户端错误契约：{error_kind, message}"""
        return {"error_kind": self.error_kind, "message": self.message}

    def to_response(self, request: Optional[Request] = None) -> JSONResponse:
        """转换为 JSON 响应"""
        instance = str(request.url) if request else None
        problem = self.to_problem_detail(instance)

        content = {"ok": False, **self.to_dict(), "error": problem.model_dump(exclude_none=True)}
        headers = {"Retry-After": "1"} if self.retryable else None
        return JSONResponse(status_code=self.status, content=content, headers=headers)


class ValidationError(FreshMallException):
    """422 输入校验失败（在访问存储之前拒绝）"""
    error_kind = "ValidationError"

    def __init__(self, code: str, detail: str):
        super().__init__(
            status=422,
            code=code,
            title="Validation Failed",
            detail=detail
        )


class UnauthorizedError(FreshMallException):
    """401 未授权"""
    error_kind = "Unauthorized"

    def __init__(self, code: str = "UNAUTHORIZED", detail: str = "Authentication required"):
        super().__init__(
            status=401,
            code=code,
            title="Unauthorized",
            detail=detail
        )


class ForbiddenError(FreshMallException):
    """403 禁止访问"""
    error_kind = "Forbidden"

    def __init__(self, code: str = "FORBIDDEN", detail: str = "Access denied"):
        super().__init__(
            status=403,
            code=code,
            title="Forbidden",
            detail=detail
        )


class NotFoundError(FreshMallException):
    """404 地址/商品/优惠券/订单不存在"""
    error_kind = "NotFound"

    def __init__(self, code: str, resource: str):
        super().__init__(
            status=404,
            code=code,
            title="Not Found",
            detail=f"{resource} not found"
        )


class ConflictError(FreshMallException):
    """409 冲突（业务规则拒绝）"""
    error_kind = "Conflict"

    def __init__(self, code: str, detail: str, title: str = "Conflict", **kwargs):
        super().__init__(
            status=409,
            code=code,
            title=title,
            detail=detail,
            **kwargs
        )


class ProductUnavailableError(ConflictError):
    """商品已下架"""
    error_kind = "ProductUnavailable"

    def __init__(self, product_id: int, name: Optional[str] = None):
        label = name or f"Product {product_id}"
        super().__init__(
            code="PRODUCT_UNAVAILABLE",
            title="Product unavailable",
            detail=f"{label} is not available for sale",
            product_id=product_id
        )


class InsufficientStockError(ConflictError):
    """库存不足"""
    error_kind = "InsufficientStock"

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            code="INSUFFICIENT_STOCK",
            title="Insufficient stock",
            detail=f"Product {product_id} has {available} in stock, {requested} requested",
            product_id=product_id
        )


class PriceMismatchError(ConflictError):
    """提交价格与商品当前价格不一致"""
    error_kind = "PriceMismatch"

    def __init__(self, product_id: int, submitted: Any, current: Any):
        super().__init__(
            code="PRICE_MISMATCH",
            title="Price changed",
            detail=f"Product {product_id} price is {current}, submitted {submitted}",
            product_id=product_id
        )


class InvalidStateTransitionError(ConflictError):
    """订单状态不允许该操作"""
    error_kind = "InvalidStateTransition"

    def __init__(self, current: str, target: str, code: str = "INVALID_STATE_TRANSITION"):
        super().__init__(
            code=code,
            title="Invalid state transition",
            detail=f"Cannot move order from '{current}' to '{target}'"
        )


class AlreadyConsumedError(ConflictError):
    """优惠券已使用 / 已领取 / 订单已评价"""
    error_kind = "AlreadyConsumed"

    def __init__(self, code: str, detail: str):
        super().__init__(
            code=code,
            title="Already consumed",
            detail=detail
        )


class StorageConflictError(ConflictError):
    """并发结算导致的锁等待超时 / 死锁 / 唯一键冲突，调用方可以安全重试"""
    error_kind = "StorageConflict"
    retryable = True

    def __init__(self, code: str = "STORAGE_CONFLICT", detail: str = "Concurrent update detected, please retry"):
        super().__init__(
            code=code,
            title="Storage conflict",
            detail=detail
        )


class InternalServerError(FreshMallException):
    """500 内部错误"""
    error_kind = "Internal"

    def __init__(self, code: str = "INTERNAL_ERROR", detail: str = "An internal error occurred"):
        super().__init__(
            status=500,
            code=code,
            title="Internal Server Error",
            detail=detail
        )


class ServiceUnavailableError(FreshMallException):
    """503 外部依赖不可用（支付网关等）"""
    error_kind = "Internal"

    def __init__(self, code: str = "SERVICE_UNAVAILABLE", detail: str = "Service temporarily unavailable"):
        super().__init__(
            status=503,
            code=code,
            title="Service Unavailable",
            detail=detail
        )
