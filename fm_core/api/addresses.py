"""
收货地址 API 路由
"""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from fm_core.services import AddressService
from .deps import Services, get_current_user_id, get_services
from .models import ApiResponse, CreateAddressRequest

router = APIRouter()


@router.get("", response_model=ApiResponse[list])
async def list_addresses(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    addresses = await services.addresses.list_addresses(user_id)
    return ApiResponse.success([AddressService.serialize(a) for a in addresses])


@router.get("/{address_id}", response_model=ApiResponse[dict])
async def get_address(
    address_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    address = await services.addresses.get_address(user_id, address_id)
    return ApiResponse.success(AddressService.serialize(address))


@router.post("", response_model=ApiResponse[dict])
async def create_address(
    body: CreateAddressRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    address = await services.addresses.create_address(user_id, body.model_dump())
    return ApiResponse.success(AddressService.serialize(address))


@router.put("/{address_id}", response_model=ApiResponse[dict])
async def update_address(
    address_id: int,
    data: Dict[str, Any] = Body(...),
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """更新地址（只接受白名单字段）"""
    address = await services.addresses.update_address(user_id, address_id, data)
    return ApiResponse.success(AddressService.serialize(address))


@router.put("/{address_id}/default", response_model=ApiResponse[dict])
async def set_default_address(
    address_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    address = await services.addresses.set_default(user_id, address_id)
    return ApiResponse.success(AddressService.serialize(address))


@router.delete("/{address_id}", response_model=ApiResponse[dict])
async def delete_address(
    address_id: int,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    await services.addresses.delete_address(user_id, address_id)
    return ApiResponse.success({"address_id": address_id, "deleted": True})
