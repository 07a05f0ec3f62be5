"""
FreshMall 数据模型包
"""
from .base import Base
from .categories import Category
from .products import Product
from .favorites import Favorite
from .addresses import Address
from .coupons import Coupon, UserCoupon
from .orders import Order, OrderItem
from .payments import Payment
from .reviews import Review

__all__ = [
    "Base",
    "Category",
    "Product",
    "Favorite",
    "Address",
    "Coupon",
    "UserCoupon",
    "Order",
    "OrderItem",
    "Payment",
    "Review",
]
