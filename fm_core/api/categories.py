"""
商品分类 API 路由
"""
from fastapi import APIRouter, Depends

from fm_core.services import CategoryService
from .deps import Services, get_services, require_admin
from .models import ApiResponse, CreateCategoryRequest

router = APIRouter()


@router.get("", response_model=ApiResponse[list])
async def list_categories(services: Services = Depends(get_services)):
    """分类树"""
    return ApiResponse.success(await services.categories.list_categories())


@router.post("", response_model=ApiResponse[dict])
async def create_category(
    body: CreateCategoryRequest,
    _admin_id: int = Depends(require_admin),
    services: Services = Depends(get_services)
):
    category = await services.categories.create_category(**body.model_dump())
    return ApiResponse.success(CategoryService.serialize(category))
