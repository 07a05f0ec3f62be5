"""
商品分类服务
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.database import DatabaseManager
from fm_core.models import Category
from fm_core.models.categories import CATEGORY_STATUSES
from fm_core.utils.errors import NotFoundError, ValidationError
from .base import BaseService, RepositoryMixin


class CategoryService(BaseService, RepositoryMixin):
    """商品分类服务"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        super().__init__(db_manager)

    async def create_category(
        self,
        name: str,
        parent_id: Optional[int] = None,
        description: Optional[str] = None,
        icon: Optional[str] = None,
        sort_order: int = 0,
        status: str = "active"
    ) -> Category:
        if not isinstance(name, str) or not name.strip() or len(name.strip()) > 100:
            raise ValidationError(code="INVALID_CATEGORY_NAME", detail="Category name must be 1-100 characters")
        if status not in CATEGORY_STATUSES:
            raise ValidationError(
                code="INVALID_STATUS",
                detail=f"Category status must be one of {', '.join(CATEGORY_STATUSES)}"
            )
        values = {
            "name": name.strip(),
            "parent_id": parent_id,
            "description": description,
            "icon": icon,
            "sort_order": sort_order,
            "status": status,
        }

        async def _create_tx(session: AsyncSession) -> Category:
            if parent_id is not None and not await self.exists(session, Category, id=parent_id):
                raise NotFoundError(code="CATEGORY_NOT_FOUND", resource=f"Category {parent_id}")
            return await self.create(session, Category, values)

        category = await self.execute_with_transaction(_create_tx)
        self.logger.info("Category created", category_id=category.id, parent_id=parent_id)
        return category

    async def list_categories(self) -> List[Dict[str, Any]]:
        """启用的分类树

        同级按 sort_order、id 排序；父分类停用时其子分类不展示。
        """
        async def _query(session: AsyncSession) -> List[Category]:
            stmt = (
                select(Category)
                .where(Category.status == "active")
                .order_by(Category.sort_order.asc(), Category.id.asc())
            )
            return list((await session.execute(stmt)).scalars().all())

        categories = await self.execute_with_session(_query)

        nodes = {c.id: {**self.serialize(c), "children": []} for c in categories}
        roots = []
        for category in categories:
            node = nodes[category.id]
            if category.parent_id is None:
                roots.append(node)
            elif category.parent_id in nodes:
                nodes[category.parent_id]["children"].append(node)
        return roots

    @staticmethod
    def serialize(category: Category) -> Dict[str, Any]:
        return {
            "id": category.id,
            "name": category.name,
            "description": category.description,
            "icon": category.icon,
            "parent_id": category.parent_id,
            "sort_order": category.sort_order,
        }
