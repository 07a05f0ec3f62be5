"""
商品 API 路由
"""
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from fm_core.services import ProductService
from .deps import Services, get_optional_user_id, get_services, require_admin
from .models import ApiResponse, CreateProductRequest, PaginatedResponse, RestockRequest

router = APIRouter()


@router.get("", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_products(
    keyword: Optional[str] = Query(default=None, max_length=50),
    category_id: Optional[int] = Query(default=None, ge=1),
    min_price: Optional[Decimal] = Query(default=None, ge=0),
    max_price: Optional[Decimal] = Query(default=None, ge=0),
    sort: str = Query(default="sales_desc"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    services: Services = Depends(get_services)
):
    """在售商品列表"""
    products, total = await services.products.list_products(
        status="active",
        keyword=keyword,
        category_id=category_id,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        page=page,
        page_size=page_size,
    )
    items = [ProductService.serialize(p) for p in products]
    return ApiResponse.success(PaginatedResponse.build(items, total, page, page_size))


@router.get("/hot", response_model=ApiResponse[list])
async def hot_products(services: Services = Depends(get_services)):
    products = await services.products.hot_products()
    return ApiResponse.success([ProductService.serialize(p) for p in products])


@router.get("/recommend", response_model=ApiResponse[list])
async def recommended_products(
    user_id: Optional[int] = Depends(get_optional_user_id),
    services: Services = Depends(get_services)
):
    """推荐商品（登录后按收藏分类推荐）"""
    products = await services.products.recommended_products(user_id)
    return ApiResponse.success([ProductService.serialize(p) for p in products])


@router.get("/{product_id}", response_model=ApiResponse[dict])
async def get_product(product_id: int, services: Services = Depends(get_services)):
    product = await services.products.get_product(product_id)
    return ApiResponse.success(ProductService.serialize(product))


@router.post("", response_model=ApiResponse[dict])
async def create_product(
    body: CreateProductRequest,
    _admin_id: int = Depends(require_admin),
    services: Services = Depends(get_services)
):
    product = await services.products.create_product(**body.model_dump())
    return ApiResponse.success(ProductService.serialize(product))


@router.put("/{product_id}", response_model=ApiResponse[dict])
async def update_product(
    product_id: int,
    data: Dict[str, Any] = Body(...),
    _admin_id: int = Depends(require_admin),
    services: Services = Depends(get_services)
):
    """更新商品（只接受白名单字段）"""
    product = await services.products.update_product(product_id, data)
    return ApiResponse.success(ProductService.serialize(product))


@router.post("/{product_id}/restock", response_model=ApiResponse[dict])
async def restock_product(
    product_id: int,
    body: RestockRequest,
    _admin_id: int = Depends(require_admin),
    services: Services = Depends(get_services)
):
    """补货"""
    product = await services.inventory.restock(product_id, body.quantity)
    return ApiResponse.success(ProductService.serialize(product))
