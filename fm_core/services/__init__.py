"""
FreshMall 核心服务模块
"""
from .base import BaseService
from .inventory import InventoryService
from .coupons import CouponService
from .cart import CartStore
from .addresses import AddressService
from .products import ProductService
from .categories import CategoryService
from .favorites import FavoriteService
from .settlement import SettlementService, CreateOrderInput, OrderLine, SettlementResult
from .orders import OrdersService
from .payments import PaymentService, PaymentProvider, MockPaymentProvider, HttpPaymentProvider
from .reviews import ReviewService

__all__ = [
    "BaseService",
    "InventoryService",
    "CouponService",
    "CartStore",
    "AddressService",
    "ProductService",
    "CategoryService",
    "FavoriteService",
    "SettlementService",
    "CreateOrderInput",
    "OrderLine",
    "SettlementResult",
    "OrdersService",
    "PaymentService",
    "PaymentProvider",
    "MockPaymentProvider",
    "HttpPaymentProvider",
    "ReviewService",
]
