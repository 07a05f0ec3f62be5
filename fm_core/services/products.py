"""
商品服务
"""
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.database import DatabaseManager
from fm_core.models import Category, Favorite, Product
from fm_core.models.products import PRODUCT_STATUSES
from fm_core.utils.errors import NotFoundError, ValidationError
from .base import BaseService, RepositoryMixin
from .pricing import to_money


def _name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(code="INVALID_PRODUCT_NAME", detail="Product name cannot be empty")
    if len(value.strip()) > 200:
        raise ValidationError(code="INVALID_PRODUCT_NAME", detail="Product name exceeds 200 characters")
    return value.strip()


def _price(value: Any):
    price = to_money(value)
    if price < 0:
        raise ValidationError(code="INVALID_PRICE", detail="Price cannot be negative")
    return price


def _description(value: Any) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise ValidationError(code="INVALID_DESCRIPTION", detail="Description must be a string")
    return value


def _status(value: Any) -> str:
    if value not in PRODUCT_STATUSES:
        raise ValidationError(
            code="INVALID_STATUS",
            detail=f"Product status must be one of {', '.join(PRODUCT_STATUSES)}"
        )
    return value


def _stock(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationError(code="INVALID_STOCK", detail=f"Stock must be non-negative integer, got: {value}")
    return value


def _category_id(value: Any) -> Optional[int]:
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(code="INVALID_CATEGORY", detail=f"category_id must be positive integer, got: {value!r}")
    return value


# 管理端可更新字段；sales/rating/review_count 由系统维护
PRODUCT_FIELDS: Dict[str, Callable[[Any], Any]] = {
    "name": _name,
    "price": _price,
    "description": _description,
    "status": _status,
    "stock": _stock,
    "category_id": _category_id,
}

# 列表排序方式，同值时按ID保证分页稳定
PRODUCT_SORTS = {
    "sales_desc": (Product.sales.desc(), Product.id.desc()),
    "price_asc": (Product.price.asc(), Product.id.asc()),
    "price_desc": (Product.price.desc(), Product.id.desc()),
    "created_desc": (Product.created_at.desc(), Product.id.desc()),
}

FEED_SIZE = 10


class ProductService(BaseService, RepositoryMixin):
    """商品服务"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        super().__init__(db_manager)

    async def _ensure_category(self, session: AsyncSession, category_id: Optional[int]) -> None:
        if category_id is not None and not await self.exists(session, Category, id=category_id):
            raise NotFoundError(code="CATEGORY_NOT_FOUND", resource=f"Category {category_id}")

    async def create_product(
        self,
        name: str,
        price: Any,
        stock: int = 0,
        status: str = "active",
        description: Optional[str] = None,
        unit: Optional[str] = None,
        category_id: Optional[int] = None
    ) -> Product:
        values = {
            "name": _name(name),
            "price": _price(price),
            "stock": _stock(stock),
            "status": _status(status),
            "description": _description(description),
            "unit": unit,
            "category_id": _category_id(category_id),
        }

        async def _create_tx(session: AsyncSession) -> Product:
            await self._ensure_category(session, values["category_id"])
            return await self.create(session, Product, values)

        product = await self.execute_with_transaction(_create_tx)
        self.logger.info("Product created", product_id=product.id, price=str(product.price), stock=product.stock)
        return product

    async def get_product(self, product_id: int) -> Product:
        async def _query(session: AsyncSession) -> Optional[Product]:
            return await session.get(Product, product_id)

        product = await self.execute_with_session(_query)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource=f"Product {product_id}")
        return product

    async def list_products(
        self,
        status: Optional[str] = None,
        keyword: Optional[str] = None,
        category_id: Optional[int] = None,
        min_price: Optional[Any] = None,
        max_price: Optional[Any] = None,
        sort: str = "sales_desc",
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Product], int]:
        """分页查询商品，返回 (商品列表, 总数)"""
        if status is not None:
            _status(status)
        if sort not in PRODUCT_SORTS:
            raise ValidationError(
                code="INVALID_SORT",
                detail=f"Sort must be one of {', '.join(PRODUCT_SORTS)}"
            )
        low = _price(min_price) if min_price is not None else None
        high = _price(max_price) if max_price is not None else None
        page = max(page, 1)
        page_size = min(max(page_size, 1), 100)

        async def _query(session: AsyncSession) -> Tuple[List[Product], int]:
            stmt = select(Product)
            if status:
                stmt = stmt.where(Product.status == status)
            if keyword:
                pattern = f"%{keyword.strip()}%"
                stmt = stmt.where(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
            if category_id is not None:
                stmt = stmt.where(Product.category_id == category_id)
            if low is not None:
                stmt = stmt.where(Product.price >= low)
            if high is not None:
                stmt = stmt.where(Product.price <= high)

            total = (await session.execute(
                select(func.count()).select_from(stmt.subquery())
            )).scalar_one()

            stmt = stmt.order_by(*PRODUCT_SORTS[sort])
            stmt = stmt.offset((page - 1) * page_size).limit(page_size)
            products = list((await session.execute(stmt)).scalars().all())
            return products, total

        return await self.execute_with_session(_query)

    async def hot_products(self, limit: int = FEED_SIZE) -> List[Product]:
        """热销商品：在售商品按销量倒序"""
        async def _query(session: AsyncSession) -> List[Product]:
            stmt = (
                select(Product)
                .where(Product.status == "active")
                .order_by(Product.sales.desc(), Product.id.desc())
                .limit(limit)
            )
            return list((await session.execute(stmt)).scalars().all())

        return await self.execute_with_session(_query)

    async def recommended_products(self, user_id: Optional[int] = None, limit: int = FEED_SIZE) -> List[Product]:
        """推荐商品

        登录用户优先推荐其收藏商品所在分类中未收藏的商品，不足部分用热销商品补齐。
        """
        async def _query(session: AsyncSession) -> List[Product]:
            picked: List[Product] = []
            excluded: Set[int] = set()

            if user_id is not None:
                favored_ids = select(Favorite.product_id).where(Favorite.user_id == user_id)
                excluded.update((await session.execute(favored_ids)).scalars().all())

                favored_categories = (
                    select(Product.category_id)
                    .where(Product.id.in_(favored_ids), Product.category_id.is_not(None))
                    .distinct()
                )
                stmt = (
                    select(Product)
                    .where(
                        Product.status == "active",
                        Product.category_id.in_(favored_categories),
                        Product.id.not_in(favored_ids)
                    )
                    .order_by(Product.sales.desc(), Product.id.desc())
                    .limit(limit)
                )
                picked = list((await session.execute(stmt)).scalars().all())

            if len(picked) < limit:
                excluded.update(p.id for p in picked)
                stmt = select(Product).where(Product.status == "active")
                if excluded:
                    stmt = stmt.where(Product.id.not_in(excluded))
                stmt = stmt.order_by(Product.sales.desc(), Product.id.desc()).limit(limit - len(picked))
                picked.extend((await session.execute(stmt)).scalars().all())
            return picked

        return await self.execute_with_session(_query)

    async def update_product(self, product_id: int, data: Dict[str, Any]) -> Product:
        """按白名单更新商品"""
        values = self.validate_updatable_fields(data, PRODUCT_FIELDS)

        async def _update_tx(session: AsyncSession) -> Product:
            product = await self.get_by_id(session, Product, product_id, for_update=True)
            if product is None:
                raise NotFoundError(code="PRODUCT_NOT_FOUND", resource=f"Product {product_id}")
            if "category_id" in values:
                await self._ensure_category(session, values["category_id"])
            return await self.update(session, product, values)

        product = await self.execute_with_transaction(_update_tx)
        self.logger.info("Product updated", product_id=product_id, fields=sorted(values))
        return product

    @staticmethod
    def serialize(product: Product) -> Dict[str, Any]:
        return {
            "id": product.id,
            "name": product.name,
            "description": product.description,
            "unit": product.unit,
            "category_id": product.category_id,
            "price": str(product.price),
            "stock": product.stock,
            "sales": product.sales,
            "status": product.status,
            "rating": str(product.rating),
            "review_count": product.review_count,
        }
