"""
收藏 API 路由
"""
from fastapi import APIRouter, Depends, Query

from .deps import Services, get_current_user_id, get_services
from .models import AddFavoriteRequest, ApiResponse, BatchDeleteFavoritesRequest, PaginatedResponse

router = APIRouter()


@router.get("", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_favorites(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    items, total = await services.favorites.list_favorites(user_id, page, page_size)
    return ApiResponse.success(PaginatedResponse.build(items, total, page, page_size))


@router.post("", response_model=ApiResponse[dict])
async def add_favorite(
    body: AddFavoriteRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    favorite = await services.favorites.add_favorite(user_id, body.product_id)
    return ApiResponse.success({"id": favorite.id, "product_id": favorite.product_id})


@router.post("/batch-delete", response_model=ApiResponse[dict])
async def batch_delete_favorites(
    body: BatchDeleteFavoritesRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    deleted = await services.favorites.batch_remove(user_id, body.favorite_ids)
    return ApiResponse.success({"deleted_count": deleted})


@router.get("/check/{product_id}", response_model=ApiResponse[dict])
async def check_favorite(
    product_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    is_favorited = await services.favorites.is_favorited(user_id, product_id)
    return ApiResponse.success({"product_id": product_id, "is_favorited": is_favorited})


@router.delete("/{favorite_id}", response_model=ApiResponse[dict])
async def remove_favorite(
    favorite_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    await services.favorites.remove_favorite(user_id, favorite_id)
    return ApiResponse.success({"favorite_id": favorite_id, "deleted": True})
