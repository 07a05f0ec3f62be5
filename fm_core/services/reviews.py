"""
评价服务
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.database import DatabaseManager
from fm_core.event_bus import EventBus, get_event_bus
from fm_core.models import Order, OrderItem, Product, Review
from fm_core.utils.errors import (
    AlreadyConsumedError, InvalidStateTransitionError, NotFoundError, ValidationError
)
from . import order_state
from .base import BaseService, RepositoryMixin

MAX_CONTENT_LENGTH = 500
MAX_LIST_SIZE = 9


def _string_list(value: Optional[List[Any]], name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(code="INVALID_REVIEW", detail=f"{name} must be a list of strings")
    if len(value) > MAX_LIST_SIZE:
        raise ValidationError(code="INVALID_REVIEW", detail=f"{name} accepts at most {MAX_LIST_SIZE} entries")
    return value


class ReviewService(BaseService, RepositoryMixin):
    """评价服务：每个订单一条评价，评价后订单完成"""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        event_bus: Optional[EventBus] = None
    ):
        super().__init__(db_manager)
        self.event_bus = event_bus or get_event_bus()

    async def submit_review(
        self,
        user_id: int,
        order_id: int,
        rating: int,
        content: str,
        tags: Optional[List[str]] = None,
        images: Optional[List[str]] = None,
        is_anonymous: bool = False
    ) -> Review:
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise ValidationError(code="INVALID_RATING", detail="Rating must be between 1 and 5")
        if not isinstance(content, str) or not 1 <= len(content.strip()) <= MAX_CONTENT_LENGTH:
            raise ValidationError(
                code="INVALID_CONTENT",
                detail=f"Content length must be between 1 and {MAX_CONTENT_LENGTH} characters"
            )
        values = {
            "user_id": user_id,
            "order_id": order_id,
            "rating": rating,
            "content": content.strip(),
            "tags": _string_list(tags, "tags"),
            "images": _string_list(images, "images"),
            "is_anonymous": bool(is_anonymous),
        }

        async def _submit_tx(session: AsyncSession) -> Review:
            order = (await session.execute(
                select(Order)
                .where(Order.id == order_id, Order.user_id == user_id, Order.deleted_at.is_(None))
                .with_for_update()
            )).scalar_one_or_none()
            if order is None:
                raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")

            if await self.exists(session, Review, order_id=order_id):
                raise AlreadyConsumedError(
                    code="ORDER_ALREADY_REVIEWED",
                    detail=f"Order {order_id} has already been reviewed"
                )
            if order.status != order_state.DELIVERED:
                raise InvalidStateTransitionError(
                    order.status, order_state.COMPLETED, code="ORDER_NOT_REVIEWABLE"
                )

            review = await self.create(session, Review, values)
            order_state.apply_transition(order, order_state.COMPLETED)
            await session.flush()

            for product_id in {item.product_id for item in order.items}:
                await self._refresh_product_rating(session, product_id)
            return review

        review = await self.execute_with_transaction(_submit_tx)
        self.logger.info("Review submitted", user_id=user_id, order_id=order_id, rating=rating)
        await self.event_bus.publish_safely("fm.order.completed", {"user_id": user_id, "order_id": order_id})
        return review

    async def _refresh_product_rating(self, session: AsyncSession, product_id: int) -> None:
        """按该商品所在订单的有效评价重算平均分与评价数"""
        avg_rating, count = (await session.execute(
            select(func.avg(Review.rating), func.count(Review.id))
            .join(OrderItem, OrderItem.order_id == Review.order_id)
            .where(OrderItem.product_id == product_id, Review.deleted_at.is_(None))
        )).one()

        product = await self.get_by_id(session, Product, product_id, for_update=True)
        if product is None:
            return
        product.rating = Decimal(str(avg_rating or 0)).quantize(Decimal("0.01"))
        product.review_count = count
        await session.flush()

    async def list_product_reviews(
        self,
        product_id: int,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Dict[str, Any]], int]:
        page = max(page, 1)
        page_size = min(max(page_size, 1), 100)

        async def _query(session: AsyncSession) -> Tuple[List[Dict[str, Any]], int]:
            stmt = (
                select(Review)
                .join(OrderItem, OrderItem.order_id == Review.order_id)
                .where(OrderItem.product_id == product_id, Review.deleted_at.is_(None))
            )
            total = (await session.execute(
                select(func.count()).select_from(stmt.subquery())
            )).scalar_one()

            stmt = stmt.order_by(Review.created_at.desc(), Review.id.desc())
            stmt = stmt.offset((page - 1) * page_size).limit(page_size)
            reviews = (await session.execute(stmt)).scalars().all()
            return [self.serialize(r) for r in reviews], total

        return await self.execute_with_session(_query)

    async def get_review(self, review_id: int) -> Dict[str, Any]:
        """评价详情，附带订单号和订单中的商品"""
        async def _query(session: AsyncSession) -> Dict[str, Any]:
            row = (await session.execute(
                select(Review, Order.order_no)
                .join(Order, Order.id == Review.order_id)
                .where(Review.id == review_id, Review.deleted_at.is_(None))
            )).one_or_none()
            if row is None:
                raise NotFoundError(code="REVIEW_NOT_FOUND", resource=f"Review {review_id}")
            review, order_no = row

            items = (await session.execute(
                select(OrderItem.product_id, OrderItem.product_name)
                .where(OrderItem.order_id == review.order_id)
                .order_by(OrderItem.id)
            )).all()
            return {
                **self.serialize(review),
                "order_no": order_no,
                "products": [{"product_id": pid, "product_name": name} for pid, name in items],
            }

        return await self.execute_with_session(_query)

    async def delete_review(self, user_id: int, review_id: int) -> None:
        """软删除评价并重算相关商品评分"""
        async def _delete_tx(session: AsyncSession) -> None:
            review = (await session.execute(
                select(Review)
                .where(Review.id == review_id, Review.user_id == user_id, Review.deleted_at.is_(None))
                .with_for_update()
            )).scalar_one_or_none()
            if review is None:
                raise NotFoundError(code="REVIEW_NOT_FOUND", resource=f"Review {review_id}")

            review.deleted_at = datetime.now(timezone.utc)
            await session.flush()

            product_ids = (await session.execute(
                select(OrderItem.product_id).where(OrderItem.order_id == review.order_id).distinct()
            )).scalars().all()
            for product_id in product_ids:
                await self._refresh_product_rating(session, product_id)

        await self.execute_with_transaction(_delete_tx)
        self.logger.info("Review deleted", user_id=user_id, review_id=review_id)

    @staticmethod
    def serialize(review: Review) -> Dict[str, Any]:
        return {
            "id": review.id,
            "order_id": review.order_id,
            "user_id": None if review.is_anonymous else review.user_id,
            "rating": review.rating,
            "content": review.content,
            "tags": review.tags,
            "images": review.images,
            "is_anonymous": review.is_anonymous,
            "created_at": review.created_at.isoformat() if review.created_at else None,
        }
