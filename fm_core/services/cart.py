"""
购物车存储
Redis 哈希 fm:cart:{user_id}，字段为商品ID，值为数量
"""
from typing import Dict, Iterable, List, Optional, Tuple, Any

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.config import get_settings
from fm_core.database import DatabaseManager
from fm_core.models import Product
from fm_core.utils.errors import InsufficientStockError, NotFoundError, ProductUnavailableError, ValidationError
from fm_core.utils.redis import get_redis
from .base import BaseService
from .pricing import ZERO, line_total


class CartStore(BaseService):
    """购物车服务

    数量变更使用 HINCRBY 原子累加，每次写入刷新过期时间。
    """

    KEY_PREFIX = "fm:cart:"

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        db_manager: Optional[DatabaseManager] = None
    ):
        super().__init__(db_manager)
        self.settings = get_settings()
        self._redis = redis_client

    async def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = await get_redis()
        return self._redis

    def _key(self, user_id: int) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    def _validate_quantity(self, quantity: int, allow_zero: bool = False) -> None:
        low = 0 if allow_zero else 1
        if (
            not isinstance(quantity, int)
            or isinstance(quantity, bool)
            or not low <= quantity <= self.settings.cart_max_quantity
        ):
            raise ValidationError(
                code="INVALID_QUANTITY",
                detail=f"Quantity must be between {low} and {self.settings.cart_max_quantity}, got: {quantity}"
            )

    async def _load_product(self, product_id: int) -> Product:
        async def _query(session: AsyncSession) -> Optional[Product]:
            return await session.get(Product, product_id)

        product = await self.execute_with_session(_query)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource=f"Product {product_id}")
        if not product.is_active:
            raise ProductUnavailableError(product_id, product.name)
        return product

    # ========== 写操作 ==========

    async def add(self, user_id: int, product_id: int, quantity: int) -> int:
        """加入购物车，返回该商品的新数量"""
        self._validate_quantity(quantity)
        product = await self._load_product(product_id)

        r = await self._client()
        key = self._key(user_id)

        current = int(await r.hget(key, str(product_id)) or 0)
        if current + quantity > product.stock:
            raise InsufficientStockError(product_id, requested=current + quantity, available=product.stock)

        async with r.pipeline(transaction=True) as pipe:
            pipe.hincrby(key, str(product_id), quantity)
            pipe.expire(key, self.settings.cart_ttl_seconds)
            new_quantity, _ = await pipe.execute()

        # 并发加购可能越过库存上限，回退本次增量
        if new_quantity > product.stock or new_quantity > self.settings.cart_max_quantity:
            await r.hincrby(key, str(product_id), -quantity)
            raise InsufficientStockError(product_id, requested=new_quantity, available=product.stock)

        self.logger.info("Cart item added", user_id=user_id, product_id=product_id, quantity=new_quantity)
        return int(new_quantity)

    async def update(self, user_id: int, product_id: int, quantity: int) -> int:
        """设置商品数量，0 表示移除"""
        self._validate_quantity(quantity, allow_zero=True)
        if quantity == 0:
            await self.remove(user_id, product_id)
            return 0

        product = await self._load_product(product_id)
        if quantity > product.stock:
            raise InsufficientStockError(product_id, requested=quantity, available=product.stock)

        r = await self._client()
        key = self._key(user_id)
        async with r.pipeline(transaction=True) as pipe:
            pipe.hset(key, str(product_id), quantity)
            pipe.expire(key, self.settings.cart_ttl_seconds)
            await pipe.execute()

        self.logger.info("Cart item updated", user_id=user_id, product_id=product_id, quantity=quantity)
        return quantity

    async def remove(self, user_id: int, product_id: int) -> None:
        r = await self._client()
        await r.hdel(self._key(user_id), str(product_id))

    async def remove_lines(self, user_id: int, product_ids: Iterable[int]) -> int:
        """删除已下单的商品行"""
        fields = [str(pid) for pid in product_ids]
        if not fields:
            return 0
        r = await self._client()
        return await r.hdel(self._key(user_id), *fields)

    async def clear(self, user_id: int) -> None:
        r = await self._client()
        await r.delete(self._key(user_id))

    # ========== 读操作 ==========

    async def get_cart_lines(self, user_id: int) -> List[Tuple[int, int]]:
        """返回 [(product_id, quantity)]，按商品ID排序"""
        r = await self._client()
        raw = await r.hgetall(self._key(user_id))
        lines = []
        for field, value in raw.items():
            qty = int(value)
            if qty > 0:
                lines.append((int(field), qty))
        return sorted(lines)

    async def count(self, user_id: int) -> int:
        lines = await self.get_cart_lines(user_id)
        return sum(qty for _, qty in lines)

    async def _products_for(self, product_ids: List[int]) -> Dict[int, Product]:
        if not product_ids:
            return {}

        async def _query(session: AsyncSession) -> Dict[int, Product]:
            rows = await session.execute(select(Product).where(Product.id.in_(product_ids)))
            return {p.id: p for p in rows.scalars().all()}

        return await self.execute_with_session(_query)

    async def view(self, user_id: int) -> Dict[str, Any]:
        """购物车详情：合并商品实时价格，跳过已下架或不存在的商品"""
        lines = await self.get_cart_lines(user_id)
        products = await self._products_for([pid for pid, _ in lines])

        items = []
        total_amount = ZERO
        total_quantity = 0
        for product_id, quantity in lines:
            product = products.get(product_id)
            if product is None or not product.is_active:
                continue
            subtotal = line_total(product.price, quantity)
            items.append({
                "product_id": product_id,
                "name": product.name,
                "unit": product.unit,
                "price": str(product.price),
                "quantity": quantity,
                "stock": product.stock,
                "subtotal": str(subtotal),
            })
            total_amount += subtotal
            total_quantity += quantity

        return {
            "items": items,
            "total_quantity": total_quantity,
            "total_amount": str(total_amount),
        }

    async def check(self, user_id: int) -> Dict[str, Any]:
        """检查购物车中哪些商品当前可以购买"""
        lines = await self.get_cart_lines(user_id)
        products = await self._products_for([pid for pid, _ in lines])

        purchasable = []
        unavailable = []
        for product_id, quantity in lines:
            product = products.get(product_id)
            if product is None:
                unavailable.append({"product_id": product_id, "quantity": quantity, "reason": "not_found"})
            elif not product.is_active:
                unavailable.append({"product_id": product_id, "quantity": quantity, "reason": "unavailable"})
            elif product.stock < quantity:
                unavailable.append({
                    "product_id": product_id,
                    "quantity": quantity,
                    "reason": "insufficient_stock",
                    "available": product.stock,
                })
            else:
                purchasable.append({
                    "product_id": product_id,
                    "quantity": quantity,
                    "price": str(product.price),
                })

        return {
            "purchasable": purchasable,
            "unavailable": unavailable,
            "all_available": not unavailable,
        }
