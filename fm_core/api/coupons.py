"""
优惠券 API 路由
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query

from fm_core.services import CouponService
from .deps import Services, get_current_user_id, get_services, require_admin
from .models import ApiResponse, CreateCouponRequest

router = APIRouter()


@router.get("", response_model=ApiResponse[list])
async def list_my_coupons(
    status: Optional[str] = Query(default=None),
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """我的优惠券"""
    return ApiResponse.success(await services.coupons.list_user_coupons(user_id, status))


@router.get("/available", response_model=ApiResponse[list])
async def list_redeemable_coupons(
    amount: Decimal = Query(ge=0, description="订单商品小计"),
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """当前订单金额可用的优惠券"""
    user_coupons = await services.coupons.find_redeemable(user_id, amount)
    return ApiResponse.success([CouponService.serialize(uc) for uc in user_coupons])


@router.post("/{coupon_id}/claim", response_model=ApiResponse[dict])
async def claim_coupon(
    coupon_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    user_coupon = await services.coupons.claim(user_id, coupon_id)
    return ApiResponse.success(CouponService.serialize(user_coupon))


@router.post("", response_model=ApiResponse[dict])
async def create_coupon(
    body: CreateCouponRequest,
    _admin_id: int = Depends(require_admin),
    services: Services = Depends(get_services)
):
    coupon = await services.coupons.create_coupon(body.model_dump())
    return ApiResponse.success(coupon.to_dict())
