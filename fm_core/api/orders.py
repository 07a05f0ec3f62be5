"""
订单 API 路由
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from fm_core.config import get_settings
from fm_core.services import CreateOrderInput, OrderLine, OrdersService
from fm_core.utils.logger import get_logger
from .deps import Services, get_current_user_id, get_services, require_admin
from .models import (
    ApiResponse, CancelOrderRequest, CreateOrderRequest, CreateOrderResponse,
    PaginatedResponse, ShipOrderRequest
)

router = APIRouter()
logger = get_logger(__name__)


@router.post("", response_model=ApiResponse[CreateOrderResponse])
async def create_order(
    body: CreateOrderRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """创建订单"""
    delivery_fee = body.delivery_fee if body.delivery_fee is not None else get_settings().default_delivery_fee
    request = CreateOrderInput(
        items=[OrderLine(item.product_id, item.quantity, item.price) for item in body.items],
        address_id=body.address_id,
        delivery_fee=delivery_fee,
        coupon_id=body.coupon_id,
        remark=body.remark,
    )
    result = await services.settlement.settle(user_id, request)
    return ApiResponse.success(CreateOrderResponse(**result.to_dict()))


@router.get("", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_orders(
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """订单列表"""
    orders, total = await services.orders.list_orders(user_id, status=status, page=page, page_size=page_size)
    items = [OrdersService.serialize(order) for order in orders]
    return ApiResponse.success(PaginatedResponse.build(items, total, page, page_size))


@router.get("/{order_id}", response_model=ApiResponse[dict])
async def get_order(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    order = await services.orders.get_order(user_id, order_id)
    return ApiResponse.success(OrdersService.serialize(order))


@router.put("/{order_id}/cancel", response_model=ApiResponse[dict])
async def cancel_order(
    order_id: int,
    body: Optional[CancelOrderRequest] = None,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """取消订单"""
    reason = body.reason if body else None
    order = await services.orders.cancel_order(user_id, order_id, reason)
    return ApiResponse.success(OrdersService.serialize(order, with_items=False))


@router.put("/{order_id}/confirm", response_model=ApiResponse[dict])
async def confirm_receipt(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """确认收货"""
    order = await services.orders.confirm_receipt(user_id, order_id)
    return ApiResponse.success(OrdersService.serialize(order, with_items=False))


@router.put("/{order_id}/ship", response_model=ApiResponse[dict])
async def ship_order(
    order_id: int,
    body: ShipOrderRequest,
    _admin_id: int = Depends(require_admin),
    services: Services = Depends(get_services)
):
    """发货（管理端）"""
    order = await services.orders.ship_order(order_id, carrier=body.carrier, tracking_no=body.tracking_no)
    return ApiResponse.success(OrdersService.serialize(order, with_items=False))


@router.delete("/{order_id}", response_model=ApiResponse[dict])
async def delete_order(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    await services.orders.delete_order(user_id, order_id)
    return ApiResponse.success({"order_id": order_id, "deleted": True})
