"""
评价 API 路由
"""
from fastapi import APIRouter, Depends, Query

from fm_core.services import ReviewService
from .deps import Services, get_current_user_id, get_services
from .models import ApiResponse, PaginatedResponse, SubmitReviewRequest

router = APIRouter()


@router.post("", response_model=ApiResponse[dict])
async def submit_review(
    body: SubmitReviewRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """提交订单评价"""
    review = await services.reviews.submit_review(user_id, **body.model_dump())
    return ApiResponse.success(ReviewService.serialize(review))


@router.get("/product/{product_id}", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_product_reviews(
    product_id: int,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    services: Services = Depends(get_services)
):
    items, total = await services.reviews.list_product_reviews(product_id, page, page_size)
    return ApiResponse.success(PaginatedResponse.build(items, total, page, page_size))


@router.get("/{review_id}", response_model=ApiResponse[dict])
async def get_review(review_id: int, services: Services = Depends(get_services)):
    return ApiResponse.success(await services.reviews.get_review(review_id))


@router.delete("/{review_id}", response_model=ApiResponse[dict])
async def delete_review(
    review_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    await services.reviews.delete_review(user_id, review_id)
    return ApiResponse.success({"review_id": review_id, "deleted": True})
