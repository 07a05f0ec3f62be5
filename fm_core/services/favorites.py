"""
商品收藏服务
"""
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.database import DatabaseManager
from fm_core.models import Favorite, Product
from fm_core.utils.errors import (
    AlreadyConsumedError, NotFoundError, ProductUnavailableError, ValidationError
)
from .base import BaseService, RepositoryMixin

MAX_BATCH_SIZE = 100


class FavoriteService(BaseService, RepositoryMixin):
    """收藏服务：同一商品每个用户只能收藏一次"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        super().__init__(db_manager)

    async def add_favorite(self, user_id: int, product_id: int) -> Favorite:
        """收藏在售商品"""
        async def _add_tx(session: AsyncSession) -> Favorite:
            product = await session.get(Product, product_id)
            if product is None:
                raise NotFoundError(code="PRODUCT_NOT_FOUND", resource=f"Product {product_id}")
            if not product.is_active:
                raise ProductUnavailableError(product_id, product.name)

            if await self.exists(session, Favorite, user_id=user_id, product_id=product_id):
                raise AlreadyConsumedError(
                    code="ALREADY_FAVORITED",
                    detail=f"Product {product_id} is already in favorites"
                )
            # 并发重复收藏由唯一约束兜底，映射为 StorageConflict
            return await self.create(session, Favorite, {"user_id": user_id, "product_id": product_id})

        favorite = await self.execute_with_transaction(_add_tx)
        self.logger.info("Favorite added", user_id=user_id, product_id=product_id, favorite_id=favorite.id)
        return favorite

    async def remove_favorite(self, user_id: int, favorite_id: int) -> None:
        async def _remove_tx(session: AsyncSession) -> None:
            result = await session.execute(
                delete(Favorite).where(Favorite.id == favorite_id, Favorite.user_id == user_id)
            )
            if result.rowcount == 0:
                raise NotFoundError(code="FAVORITE_NOT_FOUND", resource=f"Favorite {favorite_id}")

        await self.execute_with_transaction(_remove_tx)
        self.logger.info("Favorite removed", user_id=user_id, favorite_id=favorite_id)

    async def batch_remove(self, user_id: int, favorite_ids: List[int]) -> int:
        """批量取消收藏

        任一ID不存在或不属于当前用户时整批不删除。
        """
        ids = set(favorite_ids or [])
        if not ids or len(ids) > MAX_BATCH_SIZE:
            raise ValidationError(
                code="INVALID_FAVORITE_IDS",
                detail=f"favorite_ids must contain 1-{MAX_BATCH_SIZE} ids"
            )

        async def _batch_tx(session: AsyncSession) -> int:
            owned = (await session.execute(
                select(Favorite.id).where(Favorite.id.in_(ids), Favorite.user_id == user_id)
            )).scalars().all()
            missing = sorted(ids - set(owned))
            if missing:
                raise NotFoundError(
                    code="FAVORITE_NOT_FOUND",
                    resource=f"Favorites {', '.join(str(i) for i in missing)}"
                )
            result = await session.execute(delete(Favorite).where(Favorite.id.in_(ids)))
            return result.rowcount

        deleted = await self.execute_with_transaction(_batch_tx)
        self.logger.info("Favorites removed", user_id=user_id, count=deleted)
        return deleted

    async def is_favorited(self, user_id: int, product_id: int) -> bool:
        async def _query(session: AsyncSession) -> bool:
            return await self.exists(session, Favorite, user_id=user_id, product_id=product_id)

        return await self.execute_with_session(_query)

    async def list_favorites(
        self,
        user_id: int,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Dict[str, Any]], int]:
        """收藏列表，最近收藏在前"""
        page = max(page, 1)
        page_size = min(max(page_size, 1), 100)

        async def _query(session: AsyncSession) -> Tuple[List[Dict[str, Any]], int]:
            total = (await session.execute(
                select(func.count(Favorite.id)).where(Favorite.user_id == user_id)
            )).scalar_one()

            stmt = (
                select(Favorite)
                .where(Favorite.user_id == user_id)
                .order_by(Favorite.created_at.desc(), Favorite.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            favorites = (await session.execute(stmt)).scalars().all()
            return [self.serialize(f) for f in favorites], total

        return await self.execute_with_session(_query)

    @staticmethod
    def serialize(favorite: Favorite) -> Dict[str, Any]:
        product = favorite.product
        return {
            "id": favorite.id,
            "product_id": favorite.product_id,
            "product_name": product.name,
            "price": str(product.price),
            "stock": product.stock,
            "in_stock": product.is_active and product.stock > 0,
            "created_at": favorite.created_at.isoformat() if favorite.created_at else None,
        }
