"""
购物车 API 路由
"""
from fastapi import APIRouter, Depends

from .deps import Services, get_current_user_id, get_services
from .models import ApiResponse, CartAddRequest, CartUpdateRequest

router = APIRouter()


@router.get("", response_model=ApiResponse[dict])
async def view_cart(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    return ApiResponse.success(await services.cart.view(user_id))


@router.post("", response_model=ApiResponse[dict])
async def add_to_cart(
    body: CartAddRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """加入购物车"""
    quantity = await services.cart.add(user_id, body.product_id, body.quantity)
    return ApiResponse.success({"product_id": body.product_id, "quantity": quantity})


@router.put("/{product_id}", response_model=ApiResponse[dict])
async def update_cart_item(
    product_id: int,
    body: CartUpdateRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    quantity = await services.cart.update(user_id, product_id, body.quantity)
    return ApiResponse.success({"product_id": product_id, "quantity": quantity})


@router.delete("/{product_id}", response_model=ApiResponse[dict])
async def remove_cart_item(
    product_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    await services.cart.remove(user_id, product_id)
    return ApiResponse.success({"product_id": product_id})


@router.delete("", response_model=ApiResponse[dict])
async def clear_cart(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    await services.cart.clear(user_id)
    return ApiResponse.success({"cleared": True})


@router.get("/count", response_model=ApiResponse[dict])
async def cart_count(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    return ApiResponse.success({"count": await services.cart.count(user_id)})


@router.get("/check", response_model=ApiResponse[dict])
async def check_cart(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """检查购物车商品是否可购买"""
    return ApiResponse.success(await services.cart.check(user_id))
