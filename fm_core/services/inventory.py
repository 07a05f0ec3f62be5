"""
库存账本
下单时扣减库存、增加销量；取消订单时按相同数量回补
"""
from typing import Optional

from sqlalchemy import case, update as sql_update
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.database import DatabaseManager
from fm_core.models import Product
from fm_core.utils.errors import (
    InsufficientStockError, NotFoundError, ProductUnavailableError, ValidationError
)
from fm_core.utils.logger import get_logger
from .base import BaseService, RepositoryMixin

logger = get_logger(__name__)


class InventoryService(BaseService, RepositoryMixin):
    """库存服务

    reserve/release 只在调用方的事务内执行，商品行通过 SELECT ... FOR UPDATE 串行化。
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        super().__init__(db_manager)

    @staticmethod
    def _validate_quantity(quantity: int) -> None:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError(
                code="INVALID_QUANTITY",
                detail=f"Quantity must be positive integer, got: {quantity}"
            )

    async def lock_product(self, session: AsyncSession, product_id: int) -> Product:
        """锁定商品行"""
        product = await self.get_by_id(session, Product, product_id, for_update=True)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource=f"Product {product_id}")
        return product

    async def reserve(self, session: AsyncSession, product_id: int, quantity: int) -> Product:
        """扣减库存

        商品下架抛出 ProductUnavailable，库存不足抛出 InsufficientStock；
        失败时不修改任何数据，由外层事务统一回滚之前的扣减。
        """
        self._validate_quantity(quantity)
        product = await self.lock_product(session, product_id)

        if not product.is_active:
            raise ProductUnavailableError(product_id, product.name)

        if product.stock < quantity:
            raise InsufficientStockError(product_id, requested=quantity, available=product.stock)

        # 条件更新兜底：即使行锁失效也不会出现负库存
        stmt = (
            sql_update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity, sales=Product.sales + quantity)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            raise InsufficientStockError(product_id, requested=quantity, available=product.stock)
        await session.refresh(product, attribute_names=["stock", "sales"])

        logger.info(
            "Stock reserved",
            product_id=product_id,
            quantity=quantity,
            remaining=product.stock
        )
        return product

    async def release(self, session: AsyncSession, product_id: int, quantity: int) -> Product:
        """回补库存（订单取消时调用，每个订单只调用一次，由订单状态切换保证）"""
        self._validate_quantity(quantity)
        product = await self.lock_product(session, product_id)

        stmt = (
            sql_update(Product)
            .where(Product.id == product_id)
            .values(
                stock=Product.stock + quantity,
                # 销量不为负（历史数据可能早于销量统计）
                sales=case((Product.sales >= quantity, Product.sales - quantity), else_=0)
            )
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        await session.refresh(product, attribute_names=["stock", "sales"])

        logger.info(
            "Stock released",
            product_id=product_id,
            quantity=quantity,
            remaining=product.stock
        )
        return product

    async def restock(self, product_id: int, quantity: int) -> Product:
        """补货"""
        self._validate_quantity(quantity)

        async def _restock_tx(session: AsyncSession) -> Product:
            product = await self.lock_product(session, product_id)
            product.stock = product.stock + quantity
            await session.flush()
            return product

        product = await self.execute_with_transaction(_restock_tx)
        self.logger.info("Product restocked", product_id=product_id, quantity=quantity, stock=product.stock)
        return product
