"""
优惠券服务
领取、可用券查询、折扣计算、核销与退回
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Any

from sqlalchemy import select, and_, update as sql_update
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.database import DatabaseManager
from fm_core.models import Coupon, UserCoupon
from fm_core.models.coupons import COUPON_KINDS, USER_COUPON_STATUSES
from fm_core.utils.errors import (
    AlreadyConsumedError, ConflictError, NotFoundError, ValidationError
)
from fm_core.utils.logger import get_logger
from .base import BaseService, RepositoryMixin
from .pricing import ZERO, to_money

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_discount(coupon: Coupon, order_amount: Decimal) -> Decimal:
    """计算优惠金额

    fixed: min(value, order_amount)
    percentage: order_amount * (1 - rate)，max_discount 为正时不超过该上限
    """
    amount = to_money(order_amount)
    if amount <= 0:
        return ZERO

    if coupon.kind == "fixed":
        return min(to_money(coupon.value), amount)

    if coupon.kind == "percentage":
        rate = Decimal(str(coupon.value))
        discount = to_money(amount * (Decimal("1") - rate))
        if coupon.max_discount is not None and coupon.max_discount > 0:
            discount = min(discount, to_money(coupon.max_discount))
        return min(discount, amount)

    raise ValidationError(code="INVALID_COUPON_KIND", detail=f"Unknown coupon kind: {coupon.kind}")


class CouponService(BaseService, RepositoryMixin):
    """优惠券服务"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        super().__init__(db_manager)

    # ========== 优惠券模板 ==========

    def _validate_coupon_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """验证优惠券模板数据"""
        self.validate_required_fields(data, ["name", "kind", "value", "start_time", "end_time"])

        kind = data["kind"]
        if kind not in COUPON_KINDS:
            raise ValidationError(
                code="INVALID_COUPON_KIND",
                detail=f"Coupon kind must be one of {', '.join(COUPON_KINDS)}, got: {kind}"
            )

        value = to_money(data["value"])
        if kind == "percentage":
            # 折扣率列只保留两位小数
            exact = Decimal(str(data["value"])).normalize()
            if exact.as_tuple().exponent < -2 or not (ZERO < exact < Decimal("1")):
                raise ValidationError(
                    code="INVALID_COUPON_RATE",
                    detail=f"Percentage coupon rate must be between 0 and 1 with at most 2 decimals, got: {data['value']}"
                )
        if kind == "fixed" and value <= 0:
            raise ValidationError(
                code="INVALID_COUPON_VALUE",
                detail=f"Fixed coupon value must be positive, got: {value}"
            )

        if data["start_time"] >= data["end_time"]:
            raise ValidationError(
                code="INVALID_COUPON_WINDOW",
                detail="Coupon start_time must be earlier than end_time"
            )

        max_discount = data.get("max_discount")
        total_count = data.get("total_count")
        if total_count is not None and total_count <= 0:
            raise ValidationError(code="INVALID_TOTAL_COUNT", detail="total_count must be positive")

        return {
            "name": data["name"].strip(),
            "kind": kind,
            "value": value,
            "min_amount": to_money(data.get("min_amount") or 0),
            # 固定金额券不使用上限
            "max_discount": to_money(max_discount) if kind == "percentage" and max_discount is not None else None,
            "start_time": data["start_time"],
            "end_time": data["end_time"],
            "total_count": total_count,
            "status": data.get("status", "active"),
        }

    async def create_coupon(self, data: Dict[str, Any]) -> Coupon:
        """创建优惠券模板"""
        values = self._validate_coupon_data(data)

        async def _create_tx(session: AsyncSession) -> Coupon:
            return await self.create(session, Coupon, values)

        coupon = await self.execute_with_transaction(_create_tx)
        self.logger.info("Created coupon", coupon_id=coupon.id, kind=coupon.kind)
        return coupon

    # ========== 领取 ==========

    async def claim(self, user_id: int, coupon_id: int) -> UserCoupon:
        """领取优惠券：每人每券一次，受发放上限约束"""
        user_coupon = await self.execute_with_transaction(self._claim_tx, user_id, coupon_id)
        self.logger.info("Coupon claimed", user_id=user_id, coupon_id=coupon_id, user_coupon_id=user_coupon.id)
        return user_coupon

    async def _claim_tx(self, session: AsyncSession, user_id: int, coupon_id: int) -> UserCoupon:
        coupon = await self.get_by_id(session, Coupon, coupon_id, for_update=True)
        if coupon is None:
            raise NotFoundError(code="COUPON_NOT_FOUND", resource=f"Coupon {coupon_id}")

        # 在数据库侧比较时间，兼容不带时区存储的方言
        claimable = await self.exists(session, Coupon, id=coupon_id, status="active") and (
            await session.execute(
                select(Coupon.id).where(Coupon.id == coupon_id, Coupon.end_time > utcnow())
            )
        ).scalar_one_or_none() is not None
        if not claimable:
            raise ConflictError(code="COUPON_NOT_CLAIMABLE", detail=f"Coupon {coupon_id} is expired or disabled")

        if coupon.total_count is not None and coupon.issued_count >= coupon.total_count:
            raise ConflictError(code="COUPON_SOLD_OUT", detail=f"Coupon {coupon_id} has been fully claimed")

        if await self.exists(session, UserCoupon, user_id=user_id, coupon_id=coupon_id):
            raise AlreadyConsumedError(
                code="COUPON_ALREADY_CLAIMED",
                detail=f"Coupon {coupon_id} already claimed"
            )

        coupon.issued_count = coupon.issued_count + 1
        user_coupon = await self.create(session, UserCoupon, {
            "user_id": user_id,
            "coupon_id": coupon_id,
            "status": "unused",
        })
        user_coupon.coupon = coupon
        return user_coupon

    # ========== 查询 ==========

    async def list_user_coupons(self, user_id: int, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """查询用户的优惠券"""
        if status is not None and status not in USER_COUPON_STATUSES:
            raise ValidationError(code="INVALID_STATUS", detail=f"Invalid coupon status: {status}")

        async def _query(session: AsyncSession) -> List[Dict[str, Any]]:
            stmt = select(UserCoupon).where(UserCoupon.user_id == user_id)
            if status:
                stmt = stmt.where(UserCoupon.status == status)
            stmt = stmt.order_by(UserCoupon.id.desc())
            result = await session.execute(stmt)
            return [self.serialize(uc) for uc in result.unique().scalars().all()]

        return await self.execute_with_session(_query)

    def _redeemable_stmt(self, user_id: int, order_amount: Decimal):
        now = utcnow()
        return (
            select(UserCoupon)
            .join(Coupon, Coupon.id == UserCoupon.coupon_id)
            .where(
                and_(
                    UserCoupon.user_id == user_id,
                    UserCoupon.status == "unused",
                    Coupon.status == "active",
                    Coupon.start_time <= now,
                    Coupon.end_time >= now,
                    Coupon.min_amount <= to_money(order_amount),
                )
            )
        )

    async def find_redeemable(
        self,
        user_id: int,
        order_amount: Decimal,
        session: Optional[AsyncSession] = None
    ) -> List[UserCoupon]:
        """查询当前可用于该订单金额的优惠券"""
        async def _query(s: AsyncSession) -> List[UserCoupon]:
            stmt = self._redeemable_stmt(user_id, order_amount).order_by(UserCoupon.id)
            result = await s.execute(stmt)
            return list(result.unique().scalars().all())

        if session is not None:
            return await _query(session)
        return await self.execute_with_session(_query)

    async def get_redeemable_for_update(
        self,
        session: AsyncSession,
        user_id: int,
        coupon_id: int,
        order_amount: Decimal
    ) -> Optional[UserCoupon]:
        """按优惠券ID查找该用户可用的券并加行锁；不可用返回 None"""
        stmt = (
            self._redeemable_stmt(user_id, order_amount)
            .where(UserCoupon.coupon_id == coupon_id)
            .with_for_update(of=UserCoupon)
        )
        result = await session.execute(stmt)
        return result.unique().scalar_one_or_none()

    # ========== 核销 / 退回 ==========

    async def consume(self, session: AsyncSession, user_coupon_id: int, order_id: int) -> UserCoupon:
        """核销优惠券（必须与创建订单在同一事务中）"""
        user_coupon = await self.get_by_id(session, UserCoupon, user_coupon_id, for_update=True)
        if user_coupon is None:
            raise NotFoundError(code="USER_COUPON_NOT_FOUND", resource=f"User coupon {user_coupon_id}")

        if user_coupon.status != "unused":
            raise AlreadyConsumedError(
                code="COUPON_ALREADY_USED",
                detail=f"User coupon {user_coupon_id} is {user_coupon.status}"
            )

        user_coupon.status = "used"
        user_coupon.used_at = utcnow()
        user_coupon.order_id = order_id
        await session.flush()

        logger.info("Coupon consumed", user_coupon_id=user_coupon_id, order_id=order_id)
        return user_coupon

    async def restore(self, session: AsyncSession, user_coupon_id: int) -> Optional[UserCoupon]:
        """退回已核销的优惠券（订单取消时调用）"""
        user_coupon = await self.get_by_id(session, UserCoupon, user_coupon_id, for_update=True)
        if user_coupon is None or user_coupon.status != "used":
            logger.warning("Coupon not restorable", user_coupon_id=user_coupon_id)
            return user_coupon

        user_coupon.status = "unused"
        user_coupon.used_at = None
        user_coupon.order_id = None
        await session.flush()

        logger.info("Coupon restored", user_coupon_id=user_coupon_id)
        return user_coupon

    async def expire_overdue(self) -> int:
        """将已过期的未使用优惠券标记为 expired"""
        async def _expire_tx(session: AsyncSession) -> int:
            expired_coupons = select(Coupon.id).where(Coupon.end_time < utcnow())
            stmt = (
                sql_update(UserCoupon)
                .where(
                    UserCoupon.status == "unused",
                    UserCoupon.coupon_id.in_(expired_coupons)
                )
                .values(status="expired")
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount

        count = await self.execute_with_transaction(_expire_tx)
        self.logger.info("Expired overdue coupons", count=count)
        return count

    @staticmethod
    def serialize(user_coupon: UserCoupon) -> Dict[str, Any]:
        coupon = user_coupon.coupon
        return {
            "id": user_coupon.id,
            "coupon_id": user_coupon.coupon_id,
            "status": user_coupon.status,
            "used_at": user_coupon.used_at.isoformat() if user_coupon.used_at else None,
            "order_id": user_coupon.order_id,
            "name": coupon.name,
            "kind": coupon.kind,
            "value": str(coupon.value),
            "min_amount": str(coupon.min_amount),
            "max_discount": str(coupon.max_discount) if coupon.max_discount is not None else None,
            "start_time": coupon.start_time.isoformat(),
            "end_time": coupon.end_time.isoformat(),
        }
