"""
API 请求/响应模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar('T')


class ApiResponse(BaseModel, Generic[T]):
    """统一 API 响应格式"""
    ok: bool = Field(description="操作是否成功")
    data: Optional[T] = Field(default=None, description="响应数据")
    error: Optional[Dict[str, Any]] = Field(default=None, description="错误信息（RFC7807 Problem Details）")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="元数据")

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> "ApiResponse[T]":
        """创建成功响应"""
        return cls(ok=True, data=data, metadata=metadata)


class PaginatedResponse(BaseModel, Generic[T]):
    """分页响应"""
    items: List[T] = Field(description="数据列表")
    total: int = Field(description="总数量")
    page: int = Field(description="页码")
    page_size: int = Field(description="每页大小")
    has_more: bool = Field(description="是否有更多数据")

    @classmethod
    def build(cls, items: List[T], total: int, page: int, page_size: int) -> "PaginatedResponse[T]":
        return cls(items=items, total=total, page=page, page_size=page_size, has_more=page * page_size < total)


# 订单
class OrderItemRequest(BaseModel):
    """下单商品行"""
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    price: Decimal = Field(ge=0, description="客户端看到的单价")


class CreateOrderRequest(BaseModel):
    """创建订单请求"""
    items: List[OrderItemRequest] = Field(min_length=1)
    address_id: int = Field(gt=0)
    delivery_fee: Optional[Decimal] = Field(default=None, ge=0, description="不传时使用默认运费")
    coupon_id: Optional[int] = Field(default=None, gt=0)
    remark: str = Field(default="", max_length=200)


class CreateOrderResponse(BaseModel):
    order_id: int
    order_no: str
    final_amount: str


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=200)


class ShipOrderRequest(BaseModel):
    carrier: Optional[str] = Field(default=None, max_length=50)
    tracking_no: Optional[str] = Field(default=None, max_length=64)


# 购物车
class CartAddRequest(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(default=1, ge=1, le=99)


class CartUpdateRequest(BaseModel):
    quantity: int = Field(ge=0, le=99)


# 地址（字段校验在服务层按白名单完成）
class CreateAddressRequest(BaseModel):
    receiver_name: str
    receiver_phone: str
    province: str
    city: str
    district: str
    detail: str
    is_default: bool = False


# 商品
class CreateProductRequest(BaseModel):
    name: str
    price: Decimal = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    status: str = "active"
    description: Optional[str] = None
    unit: Optional[str] = None
    category_id: Optional[int] = Field(default=None, gt=0)


class RestockRequest(BaseModel):
    quantity: int = Field(gt=0)


class CreateCategoryRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    parent_id: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=500)
    icon: Optional[str] = Field(default=None, max_length=200)
    sort_order: int = 0


# 收藏
class AddFavoriteRequest(BaseModel):
    product_id: int = Field(gt=0)


class BatchDeleteFavoritesRequest(BaseModel):
    favorite_ids: List[int] = Field(min_length=1, max_length=100)


# 优惠券
class CreateCouponRequest(BaseModel):
    name: str
    kind: str = Field(description="fixed | percentage")
    value: Decimal
    min_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_discount: Optional[Decimal] = Field(default=None, ge=0)
    start_time: datetime
    end_time: datetime
    total_count: Optional[int] = Field(default=None, gt=0)


# 支付
class CreatePaymentRequest(BaseModel):
    order_id: int = Field(gt=0)
    method: str = Field(default="wechat")


class PaymentNotifyRequest(BaseModel):
    payment_id: int = Field(gt=0)
    success: bool
    transaction_id: Optional[str] = None


# 评价
class SubmitReviewRequest(BaseModel):
    order_id: int = Field(gt=0)
    rating: int
    content: str
    tags: Optional[List[str]] = None
    images: Optional[List[str]] = None
    is_anonymous: bool = False
