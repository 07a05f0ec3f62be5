"""
支付服务
创建支付单、请求支付渠道预支付参数、处理支付回调
"""
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.config import get_settings
from fm_core.database import DatabaseManager
from fm_core.event_bus import EventBus, get_event_bus
from fm_core.models import Order, Payment
from fm_core.models.payments import PAYMENT_METHODS
from fm_core.utils.errors import (
    InvalidStateTransitionError, NotFoundError, ServiceUnavailableError, ValidationError
)
from fm_core.utils.logger import get_logger
from . import order_state
from .base import BaseService, RepositoryMixin

logger = get_logger(__name__)


class PaymentProvider(ABC):
    """支付渠道"""

    @abstractmethod
    async def create_prepay(self, payment: Payment, order_no: str) -> Dict[str, Any]:
        """返回客户端拉起支付所需的参数，必须包含 prepay_id"""


class MockPaymentProvider(PaymentProvider):
    """本地/测试环境使用，直接生成预支付ID"""

    async def create_prepay(self, payment: Payment, order_no: str) -> Dict[str, Any]:
        prepay_id = f"mock_{uuid.uuid4().hex[:24]}"
        return {"prepay_id": prepay_id, "package": f"prepay_id={prepay_id}"}


class HttpPaymentProvider(PaymentProvider):
    """通过 HTTP 网关下单"""

    def __init__(self, gateway_url: str, notify_url: str, timeout: float = 10.0):
        self.gateway_url = gateway_url.rstrip("/")
        self.notify_url = notify_url
        self.timeout = timeout

    async def create_prepay(self, payment: Payment, order_no: str) -> Dict[str, Any]:
        body = {
            "out_trade_no": order_no,
            "payment_id": payment.id,
            "amount": str(payment.amount),
            "method": payment.method,
            "notify_url": self.notify_url,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(f"{self.gateway_url}/prepay", json=body)
                response.raise_for_status()
                data = response.json()
            except httpx.TimeoutException as e:
                logger.error("Payment gateway timeout", payment_id=payment.id)
                raise ServiceUnavailableError(code="PAYMENT_GATEWAY_TIMEOUT", detail="Payment gateway timeout") from e
            except httpx.HTTPError as e:
                logger.error("Payment gateway error", payment_id=payment.id, error=str(e))
                raise ServiceUnavailableError(code="PAYMENT_GATEWAY_ERROR", detail="Payment gateway unavailable") from e

        if not data.get("prepay_id"):
            raise ServiceUnavailableError(code="PAYMENT_GATEWAY_ERROR", detail="Payment gateway returned no prepay_id")
        return data


def build_payment_provider() -> PaymentProvider:
    settings = get_settings()
    if settings.payment_gateway_url:
        return HttpPaymentProvider(
            settings.payment_gateway_url,
            settings.payment_notify_url,
            timeout=settings.payment_timeout
        )
    return MockPaymentProvider()


class PaymentService(BaseService, RepositoryMixin):
    """支付服务

    支付回调按支付单ID幂等：重复的成功回调不会再次改变订单。
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        provider: Optional[PaymentProvider] = None,
        event_bus: Optional[EventBus] = None
    ):
        super().__init__(db_manager)
        self.provider = provider or build_payment_provider()
        self.event_bus = event_bus or get_event_bus()

    async def create_payment(self, user_id: int, order_id: int, method: str) -> Dict[str, Any]:
        if method not in PAYMENT_METHODS:
            raise ValidationError(
                code="INVALID_PAYMENT_METHOD",
                detail=f"Payment method must be one of {', '.join(PAYMENT_METHODS)}"
            )

        payment, order_no = await self.execute_with_transaction(
            self._prepare_payment_tx, user_id, order_id, method
        )

        # 渠道调用不占用数据库事务
        params = await self.provider.create_prepay(payment, order_no)

        async def _save_prepay_tx(session: AsyncSession) -> None:
            record = await self.get_by_id(session, Payment, payment.id, for_update=True)
            record.prepay_id = params["prepay_id"]

        await self.execute_with_transaction(_save_prepay_tx)

        self.logger.info("Payment created", user_id=user_id, order_id=order_id, payment_id=payment.id, method=method)
        return {
            "payment_id": payment.id,
            "order_id": order_id,
            "amount": str(payment.amount),
            "method": method,
            **params,
        }

    async def _prepare_payment_tx(
        self,
        session: AsyncSession,
        user_id: int,
        order_id: int,
        method: str
    ):
        order = (await session.execute(
            select(Order)
            .where(Order.id == order_id, Order.user_id == user_id, Order.deleted_at.is_(None))
            .with_for_update()
        )).scalar_one_or_none()
        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")
        if order.status != order_state.PENDING:
            raise InvalidStateTransitionError(order.status, order_state.PAID, code="ORDER_NOT_PAYABLE")

        # 同一订单同一方式的待支付单直接复用
        existing = (await session.execute(
            select(Payment).where(
                Payment.order_id == order_id,
                Payment.method == method,
                Payment.status == "pending"
            ).order_by(Payment.id.desc()).limit(1)
        )).scalar_one_or_none()
        if existing is not None:
            return existing, order.order_no

        payment = await self.create(session, Payment, {
            "order_id": order.id,
            "user_id": user_id,
            "amount": order.final_amount,
            "method": method,
            "status": "pending",
        })
        return payment, order.order_no

    async def handle_callback(
        self,
        payment_id: int,
        success: bool,
        transaction_id: Optional[str] = None
    ) -> Payment:
        """处理支付结果通知（幂等）"""
        payment, transitioned = await self.execute_with_transaction(
            self._callback_tx, payment_id, success, transaction_id
        )

        if transitioned:
            self.logger.info("Order paid", order_id=payment.order_id, payment_id=payment_id)
            await self.event_bus.publish_safely("fm.order.paid", {
                "user_id": payment.user_id,
                "order_id": payment.order_id,
                "payment_id": payment_id,
                "amount": str(payment.amount),
            })
        return payment

    async def _callback_tx(
        self,
        session: AsyncSession,
        payment_id: int,
        success: bool,
        transaction_id: Optional[str]
    ):
        payment = await self.get_by_id(session, Payment, payment_id, for_update=True)
        if payment is None:
            raise NotFoundError(code="PAYMENT_NOT_FOUND", resource=f"Payment {payment_id}")

        if payment.status != "pending":
            self.logger.info("Duplicate payment callback ignored", payment_id=payment_id, status=payment.status)
            return payment, False

        now = datetime.now(timezone.utc)
        if not success:
            payment.status = "failed"
            await session.flush()
            self.logger.warning("Payment failed", payment_id=payment_id, order_id=payment.order_id)
            return payment, False

        payment.status = "success"
        payment.paid_at = now
        payment.transaction_id = transaction_id

        order = await self.get_by_id(session, Order, payment.order_id, for_update=True)
        transitioned = False
        if order.status == order_state.PENDING:
            order_state.apply_transition(order, order_state.PAID)
            transitioned = True
        else:
            # 订单已取消等情况下的到账需要人工退款
            self.logger.warning(
                "Payment succeeded for non-pending order",
                payment_id=payment_id,
                order_id=order.id,
                order_status=order.status
            )

        await session.flush()
        return payment, transitioned
