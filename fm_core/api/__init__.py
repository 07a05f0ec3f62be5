"""
FreshMall API 路由模块
"""
from fastapi import APIRouter

from .addresses import router as addresses_router
from .cart import router as cart_router
from .categories import router as categories_router
from .coupons import router as coupons_router
from .favorites import router as favorites_router
from .orders import router as orders_router
from .payment import router as payment_router
from .products import router as products_router
from .reviews import router as reviews_router

# 创建主路由器
api_router = APIRouter()

api_router.include_router(products_router, prefix="/products", tags=["Products"])
api_router.include_router(categories_router, prefix="/categories", tags=["Categories"])
api_router.include_router(favorites_router, prefix="/favorites", tags=["Favorites"])
api_router.include_router(cart_router, prefix="/cart", tags=["Cart"])
api_router.include_router(addresses_router, prefix="/addresses", tags=["Addresses"])
api_router.include_router(coupons_router, prefix="/coupons", tags=["Coupons"])
api_router.include_router(orders_router, prefix="/orders", tags=["Orders"])
api_router.include_router(payment_router, prefix="/payment", tags=["Payment"])
api_router.include_router(reviews_router, prefix="/reviews", tags=["Reviews"])
