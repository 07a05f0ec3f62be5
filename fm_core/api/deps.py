"""
API 依赖注入
"""
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from fm_core.database import DatabaseManager
from fm_core.event_bus import EventBus
from fm_core.services import (
    AddressService, CartStore, CategoryService, CouponService, FavoriteService, InventoryService,
    OrdersService, PaymentProvider, PaymentService, ProductService, ReviewService, SettlementService
)
from fm_core.utils.errors import ForbiddenError, UnauthorizedError


class Services:
    """应用级服务容器，所有服务共享同一组存储句柄"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        redis_client: Optional[redis.Redis] = None,
        event_bus: Optional[EventBus] = None,
        payment_provider: Optional[PaymentProvider] = None
    ):
        self.redis_client = redis_client
        self.event_bus = event_bus or EventBus(redis_client)
        self.inventory = InventoryService(db_manager)
        self.coupons = CouponService(db_manager)
        self.addresses = AddressService(db_manager)
        self.products = ProductService(db_manager)
        self.categories = CategoryService(db_manager)
        self.favorites = FavoriteService(db_manager)
        self.cart = CartStore(redis_client, db_manager)
        self.settlement = SettlementService(
            db_manager,
            cart=self.cart,
            event_bus=self.event_bus,
            inventory=self.inventory,
            coupons=self.coupons,
            addresses=self.addresses,
        )
        self.orders = OrdersService(
            db_manager,
            event_bus=self.event_bus,
            inventory=self.inventory,
            coupons=self.coupons,
        )
        self.payments = PaymentService(db_manager, provider=payment_provider, event_bus=self.event_bus)
        self.reviews = ReviewService(db_manager, event_bus=self.event_bus)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user_id(request: Request) -> int:
    """从认证中间件写入的请求状态读取用户ID"""
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise UnauthorizedError()
    return user_id


def get_optional_user_id(request: Request) -> Optional[int]:
    """公开接口上的可选登录态"""
    return getattr(request.state, "user_id", None)


def require_admin(request: Request, user_id: int = Depends(get_current_user_id)) -> int:
    if getattr(request.state, "role", None) != "admin":
        raise ForbiddenError(code="ADMIN_REQUIRED", detail="Admin role required")
    return user_id
