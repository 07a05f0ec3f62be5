"""
订单服务
查询、取消、发货、确认收货、删除
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.database import DatabaseManager
from fm_core.event_bus import EventBus, get_event_bus
from fm_core.models import Order
from fm_core.models.orders import ORDER_STATUSES
from fm_core.utils.errors import InvalidStateTransitionError, NotFoundError, ValidationError
from . import order_state
from .base import BaseService, RepositoryMixin
from .coupons import CouponService
from .inventory import InventoryService

DEFAULT_CANCEL_REASON = "用户取消"


class OrdersService(BaseService, RepositoryMixin):
    """订单服务"""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        event_bus: Optional[EventBus] = None,
        inventory: Optional[InventoryService] = None,
        coupons: Optional[CouponService] = None
    ):
        super().__init__(db_manager)
        self.event_bus = event_bus or get_event_bus()
        self.inventory = inventory or InventoryService(self.db_manager)
        self.coupons = coupons or CouponService(self.db_manager)

    async def find_order(
        self,
        session: AsyncSession,
        order_id: int,
        user_id: Optional[int] = None,
        for_update: bool = False
    ) -> Order:
        """读取订单；user_id 为空时不校验归属（管理端）"""
        stmt = select(Order).where(Order.id == order_id, Order.deleted_at.is_(None))
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        order = (await session.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")
        return order

    # ========== 查询 ==========

    async def list_orders(
        self,
        user_id: int,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Order], int]:
        if status is not None and status not in ORDER_STATUSES:
            raise ValidationError(code="INVALID_STATUS", detail=f"Invalid order status: {status}")
        page = max(page, 1)
        page_size = min(max(page_size, 1), 100)

        async def _query(session: AsyncSession) -> Tuple[List[Order], int]:
            stmt = select(Order).where(Order.user_id == user_id, Order.deleted_at.is_(None))
            if status:
                stmt = stmt.where(Order.status == status)

            total = (await session.execute(
                select(func.count()).select_from(stmt.subquery())
            )).scalar_one()

            stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
            stmt = stmt.offset((page - 1) * page_size).limit(page_size)
            orders = list((await session.execute(stmt)).scalars().all())
            return orders, total

        return await self.execute_with_session(_query)

    async def get_order(self, user_id: int, order_id: int) -> Order:
        return await self.execute_with_session(self.find_order, order_id, user_id)

    # ========== 状态变更 ==========

    async def cancel_order(self, user_id: int, order_id: int, reason: Optional[str] = None) -> Order:
        """取消订单：回补库存并退回已核销的优惠券

        状态切换在行锁内完成，重复取消会被状态机拒绝，库存不会被二次回补。
        """
        reason = (reason or DEFAULT_CANCEL_REASON).strip()
        if len(reason) > 200:
            raise ValidationError(code="INVALID_REASON", detail="Cancel reason exceeds 200 characters")

        async def _cancel_tx(session: AsyncSession) -> Tuple[Order, str]:
            order = await self.find_order(session, order_id, user_id, for_update=True)
            previous = order_state.apply_transition(order, order_state.CANCELLED)
            order.cancel_reason = reason

            for item in order.items:
                await self.inventory.release(session, item.product_id, item.quantity)

            if order.user_coupon_id is not None:
                await self.coupons.restore(session, order.user_coupon_id)

            await session.flush()
            return order, previous

        order, previous = await self.execute_with_transaction(_cancel_tx)
        self.logger.info(
            "Order cancelled",
            user_id=user_id,
            order_id=order_id,
            previous_status=previous,
            user_coupon_id=order.user_coupon_id
        )
        await self.event_bus.publish_safely("fm.order.cancelled", {
            "user_id": user_id,
            "order_id": order_id,
            "order_no": order.order_no,
            "previous_status": previous,
            "reason": reason,
        })
        return order

    async def ship_order(
        self,
        order_id: int,
        carrier: Optional[str] = None,
        tracking_no: Optional[str] = None
    ) -> Order:
        """发货（履约端调用）"""
        async def _ship_tx(session: AsyncSession) -> Order:
            order = await self.find_order(session, order_id, for_update=True)
            order_state.apply_transition(order, order_state.SHIPPED)
            order.carrier = carrier
            order.tracking_no = tracking_no
            await session.flush()
            return order

        order = await self.execute_with_transaction(_ship_tx)
        self.logger.info("Order shipped", order_id=order_id, carrier=carrier, tracking_no=tracking_no)
        await self.event_bus.publish_safely("fm.order.shipped", {
            "user_id": order.user_id,
            "order_id": order_id,
            "carrier": carrier,
            "tracking_no": tracking_no,
        })
        return order

    async def confirm_receipt(self, user_id: int, order_id: int) -> Order:
        """确认收货"""
        async def _confirm_tx(session: AsyncSession) -> Order:
            order = await self.find_order(session, order_id, user_id, for_update=True)
            order_state.apply_transition(order, order_state.DELIVERED)
            await session.flush()
            return order

        order = await self.execute_with_transaction(_confirm_tx)
        self.logger.info("Order delivered", user_id=user_id, order_id=order_id)
        await self.event_bus.publish_safely("fm.order.delivered", {"user_id": user_id, "order_id": order_id})
        return order

    async def delete_order(self, user_id: int, order_id: int) -> None:
        """软删除，仅限已取消、已收货、已完成的订单"""
        async def _delete_tx(session: AsyncSession) -> None:
            order = await self.find_order(session, order_id, user_id, for_update=True)
            if order.status not in order_state.DELETABLE_STATES:
                raise InvalidStateTransitionError(order.status, "deleted", code="ORDER_NOT_DELETABLE")
            order.deleted_at = datetime.now(timezone.utc)
            await session.flush()

        await self.execute_with_transaction(_delete_tx)
        self.logger.info("Order deleted", user_id=user_id, order_id=order_id)

    @staticmethod
    def serialize(order: Order, with_items: bool = True) -> Dict[str, Any]:
        data = {
            "id": order.id,
            "order_no": order.order_no,
            "status": order.status,
            "total_amount": str(order.total_amount),
            "discount_amount": str(order.discount_amount),
            "delivery_fee": str(order.delivery_fee),
            "final_amount": str(order.final_amount),
            "receiver_name": order.receiver_name,
            "receiver_phone": order.receiver_phone,
            "receiver_address": order.receiver_address,
            "coupon_id": order.coupon_id,
            "remark": order.remark,
            "cancel_reason": order.cancel_reason,
            "carrier": order.carrier,
            "tracking_no": order.tracking_no,
            "created_at": order.created_at.isoformat() if order.created_at else None,
            "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        }
        if with_items:
            data["items"] = [
                {
                    "product_id": item.product_id,
                    "product_name": item.product_name,
                    "quantity": item.quantity,
                    "price": str(item.price),
                    "total_amount": str(item.total_amount),
                }
                for item in order.items
            ]
        return data
