"""
结算编排
购物车选中商品 → 订单：地址校验、价格校验、扣库存、核销优惠券、写订单，全部在一个事务中完成
"""
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.config import get_settings
from fm_core.database import DatabaseManager
from fm_core.event_bus import EventBus, get_event_bus
from fm_core.models import Order, OrderItem
from fm_core.utils.errors import ValidationError
from .addresses import AddressService
from .base import BaseService, RepositoryMixin
from .cart import CartStore
from .coupons import CouponService, compute_discount
from .inventory import InventoryService
from .pricing import Number, ZERO, PriceBreakdown, calculate, line_total, to_money, verify_price


def _positive_int(value: Any, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(code="INVALID_PARAMETER", detail=f"{name} must be positive integer, got: {value!r}")
    return value


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int
    price: Decimal


@dataclass
class CreateOrderInput:
    """下单参数，构造后调用 validate() 在开启事务前完成校验"""
    items: List[OrderLine]
    address_id: int
    delivery_fee: Decimal = ZERO
    coupon_id: Optional[int] = None
    remark: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateOrderInput":
        raw_items = data.get("items")
        if not isinstance(raw_items, list):
            raise ValidationError(code="INVALID_ITEMS", detail="items must be a list")

        items = []
        for raw in raw_items:
            if not isinstance(raw, dict) or "price" not in raw:
                raise ValidationError(code="INVALID_ITEMS", detail="Each item needs product_id, quantity and price")
            items.append(OrderLine(
                product_id=raw.get("product_id"),
                quantity=raw.get("quantity"),
                price=to_money(raw["price"]),
            ))

        return cls(
            items=items,
            address_id=data.get("address_id"),
            delivery_fee=to_money(data.get("delivery_fee") or 0),
            coupon_id=data.get("coupon_id"),
            remark=data.get("remark") or "",
        )

    def validate(self, remark_max_length: int = 200) -> "CreateOrderInput":
        if not self.items:
            raise ValidationError(code="EMPTY_ORDER", detail="Order must contain at least one item")

        seen = set()
        for line in self.items:
            _positive_int(line.product_id, "product_id")
            _positive_int(line.quantity, "quantity")
            if to_money(line.price) < 0:
                raise ValidationError(code="INVALID_PRICE", detail=f"Price cannot be negative: {line.price}")
            if line.product_id in seen:
                raise ValidationError(
                    code="DUPLICATE_ITEM",
                    detail=f"Product {line.product_id} appears more than once"
                )
            seen.add(line.product_id)

        _positive_int(self.address_id, "address_id")
        if self.coupon_id is not None:
            _positive_int(self.coupon_id, "coupon_id")

        if to_money(self.delivery_fee) < 0:
            raise ValidationError(code="INVALID_DELIVERY_FEE", detail="Delivery fee cannot be negative")

        if not isinstance(self.remark, str) or len(self.remark) > remark_max_length:
            raise ValidationError(
                code="INVALID_REMARK",
                detail=f"Remark must be a string of at most {remark_max_length} characters"
            )
        return self


@dataclass
class SettlementResult:
    order_id: int
    order_no: str
    final_amount: Decimal
    breakdown: PriceBreakdown
    user_coupon_id: Optional[int] = None
    order: Optional[Order] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_no": self.order_no,
            "final_amount": str(self.final_amount),
        }


def generate_order_no() -> str:
    """订单号：UTC 时间到秒 + 4 位随机数"""
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S") + f"{secrets.randbelow(10000):04d}"


class SettlementService(BaseService, RepositoryMixin):
    """结算服务

    存储句柄（数据库管理器、购物车、事件总线）由构造参数注入。
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        cart: Optional[CartStore] = None,
        event_bus: Optional[EventBus] = None,
        inventory: Optional[InventoryService] = None,
        coupons: Optional[CouponService] = None,
        addresses: Optional[AddressService] = None
    ):
        super().__init__(db_manager)
        self.settings = get_settings()
        self.cart = cart or CartStore(db_manager=self.db_manager)
        self.event_bus = event_bus or get_event_bus()
        self.inventory = inventory or InventoryService(self.db_manager)
        self.coupons = coupons or CouponService(self.db_manager)
        self.addresses = addresses or AddressService(self.db_manager)

    async def create_order(
        self,
        user_id: int,
        items: List[Dict[str, Any]],
        address_id: int,
        delivery_fee: Number = ZERO,
        coupon_id: Optional[int] = None,
        remark: str = ""
    ) -> SettlementResult:
        """创建订单（字典形式的商品行）"""
        request = CreateOrderInput.from_dict({
            "items": items,
            "address_id": address_id,
            "delivery_fee": delivery_fee,
            "coupon_id": coupon_id,
            "remark": remark,
        })
        return await self.settle(user_id, request)

    async def settle(self, user_id: int, request: CreateOrderInput) -> SettlementResult:
        """结算主流程

        任一步骤失败整个事务回滚：库存不扣减、优惠券不核销、不产生订单。
        购物车清理在提交之后进行，失败只记录日志。
        """
        request.validate(self.settings.order_remark_max_length)

        result = await self.execute_with_transaction(self._settle_tx, user_id, request)

        self.logger.info(
            "Order created",
            user_id=user_id,
            order_id=result.order_id,
            order_no=result.order_no,
            final_amount=str(result.final_amount),
            user_coupon_id=result.user_coupon_id
        )

        await self._cleanup_cart(user_id, [line.product_id for line in request.items])
        await self.event_bus.publish_safely("fm.order.created", {
            "user_id": user_id,
            "order_id": result.order_id,
            "order_no": result.order_no,
            "final_amount": str(result.final_amount),
            "items": [{"product_id": line.product_id, "quantity": line.quantity} for line in request.items],
        })
        return result

    async def _settle_tx(
        self,
        session: AsyncSession,
        user_id: int,
        request: CreateOrderInput
    ) -> SettlementResult:
        # 1. 收货地址
        address = await self.addresses.find_address(session, user_id, request.address_id)

        # 2. 按商品ID顺序加锁，避免并发结算互相等待形成死锁
        snapshots = []
        for line in sorted(request.items, key=lambda l: l.product_id):
            product = await self.inventory.lock_product(session, line.product_id)
            if product.is_active:
                verify_price(line.product_id, line.price, product.price, self.settings.price_tolerance)
            product = await self.inventory.reserve(session, line.product_id, line.quantity)
            snapshots.append({
                "product_id": product.id,
                "product_name": product.name,
                "quantity": line.quantity,
                "price": to_money(product.price),
                "total_amount": line_total(product.price, line.quantity),
            })

        subtotal = sum((s["total_amount"] for s in snapshots), ZERO)

        # 3. 优惠券：不可用时按无优惠继续下单
        user_coupon = None
        discount = ZERO
        if request.coupon_id is not None:
            user_coupon = await self.coupons.get_redeemable_for_update(
                session, user_id, request.coupon_id, subtotal
            )
            if user_coupon is None:
                self.logger.warning(
                    "Coupon not redeemable, settling without discount",
                    user_id=user_id,
                    coupon_id=request.coupon_id,
                    subtotal=str(subtotal)
                )
            else:
                discount = compute_discount(user_coupon.coupon, subtotal)

        # 4. 金额
        breakdown = calculate(
            [(s["price"], s["quantity"]) for s in snapshots],
            delivery_fee=request.delivery_fee,
            discount=discount
        )

        # 5. 订单与商品快照
        order = Order(
            order_no=generate_order_no(),
            user_id=user_id,
            status="pending",
            total_amount=breakdown.subtotal,
            discount_amount=breakdown.discount,
            delivery_fee=breakdown.delivery_fee,
            final_amount=breakdown.final_amount,
            address_id=address.id,
            receiver_name=address.receiver_name,
            receiver_phone=address.receiver_phone,
            receiver_address=address.full_address,
            coupon_id=request.coupon_id if user_coupon is not None else None,
            remark=request.remark,
            items=[OrderItem(**s) for s in snapshots],
        )
        session.add(order)
        await session.flush()

        if user_coupon is not None:
            await self.coupons.consume(session, user_coupon.id, order.id)
            order.user_coupon_id = user_coupon.id
            await session.flush()

        return SettlementResult(
            order_id=order.id,
            order_no=order.order_no,
            final_amount=breakdown.final_amount,
            breakdown=breakdown,
            user_coupon_id=user_coupon.id if user_coupon is not None else None,
            order=order,
        )

    async def _cleanup_cart(self, user_id: int, product_ids: List[int]) -> None:
        try:
            await self.cart.remove_lines(user_id, product_ids)
        except Exception:
            self.logger.error("Cart cleanup failed after order commit", user_id=user_id, exc_info=True)
