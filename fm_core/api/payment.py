"""
支付 API 路由
"""
from fastapi import APIRouter, Depends

from .deps import Services, get_current_user_id, get_services
from .models import ApiResponse, CreatePaymentRequest, PaymentNotifyRequest

router = APIRouter()


@router.post("/create", response_model=ApiResponse[dict])
async def create_payment(
    body: CreatePaymentRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """创建支付单并返回预支付参数"""
    params = await services.payments.create_payment(user_id, body.order_id, body.method)
    return ApiResponse.success(params)


@router.post("/notify", response_model=ApiResponse[dict])
async def payment_notify(body: PaymentNotifyRequest, services: Services = Depends(get_services)):
    """支付渠道回调（幂等）"""
    # TODO: 接入真实渠道后在此校验回调签名
    payment = await services.payments.handle_callback(body.payment_id, body.success, body.transaction_id)
    return ApiResponse.success({"payment_id": payment.id, "status": payment.status})
