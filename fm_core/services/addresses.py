"""
收货地址服务
"""
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update as sql_update
from sqlalchemy.ext.asyncio import AsyncSession

from fm_core.database import DatabaseManager
from fm_core.models import Address
from fm_core.utils.errors import NotFoundError, ValidationError
from .base import BaseService, RepositoryMixin

PHONE_PATTERN = re.compile(r"^1[3-9]\d{9}$")


def _text(field: str, max_length: int) -> Callable[[Any], str]:
    def validator(value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(code="INVALID_ADDRESS", detail=f"{field} cannot be empty")
        value = value.strip()
        if len(value) > max_length:
            raise ValidationError(code="INVALID_ADDRESS", detail=f"{field} exceeds {max_length} characters")
        return value
    return validator


def _phone(value: Any) -> str:
    if not isinstance(value, str) or not PHONE_PATTERN.match(value):
        raise ValidationError(code="INVALID_PHONE", detail="receiver_phone must be a valid mobile number")
    return value


def _flag(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(code="INVALID_ADDRESS", detail="is_default must be boolean")
    return value


# 可更新字段白名单及其校验器
ADDRESS_FIELDS: Dict[str, Callable[[Any], Any]] = {
    "receiver_name": _text("receiver_name", 50),
    "receiver_phone": _phone,
    "province": _text("province", 50),
    "city": _text("city", 50),
    "district": _text("district", 50),
    "detail": _text("detail", 500),
    "is_default": _flag,
}

REQUIRED_FIELDS = ["receiver_name", "receiver_phone", "province", "city", "district", "detail"]


class AddressService(BaseService, RepositoryMixin):
    """收货地址服务（按用户隔离，软删除）"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        super().__init__(db_manager)

    @staticmethod
    def _active(user_id: int):
        return select(Address).where(Address.user_id == user_id, Address.deleted_at.is_(None))

    async def find_address(
        self,
        session: AsyncSession,
        user_id: int,
        address_id: int,
        for_update: bool = False
    ) -> Address:
        """在调用方会话内读取用户地址，不存在/已删除/非本人均视为不存在"""
        stmt = self._active(user_id).where(Address.id == address_id)
        if for_update:
            stmt = stmt.with_for_update()
        address = (await session.execute(stmt)).scalar_one_or_none()
        if address is None:
            raise NotFoundError(code="ADDRESS_NOT_FOUND", resource=f"Address {address_id}")
        return address

    async def list_addresses(self, user_id: int) -> List[Address]:
        """默认地址在前，其余按创建时间倒序"""
        async def _query(session: AsyncSession) -> List[Address]:
            stmt = self._active(user_id).order_by(
                Address.is_default.desc(), Address.created_at.desc(), Address.id.desc()
            )
            return list((await session.execute(stmt)).scalars().all())

        return await self.execute_with_session(_query)

    async def get_address(self, user_id: int, address_id: int) -> Address:
        return await self.execute_with_session(self.find_address, user_id, address_id)

    async def _clear_default(self, session: AsyncSession, user_id: int) -> None:
        await session.execute(
            sql_update(Address)
            .where(Address.user_id == user_id, Address.is_default.is_(True))
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )

    async def create_address(self, user_id: int, data: Dict[str, Any]) -> Address:
        """新增地址，用户的第一个地址自动设为默认"""
        self.validate_required_fields(data, REQUIRED_FIELDS)
        values = self.validate_updatable_fields(data, ADDRESS_FIELDS)
        wants_default = values.pop("is_default", False)

        async def _create_tx(session: AsyncSession) -> Address:
            has_address = (
                await session.execute(self._active(user_id).with_only_columns(Address.id).limit(1))
            ).scalar_one_or_none() is not None

            is_default = wants_default or not has_address
            if is_default and has_address:
                await self._clear_default(session, user_id)

            return await self.create(session, Address, {
                "user_id": user_id,
                "is_default": is_default,
                **values,
            })

        address = await self.execute_with_transaction(_create_tx)
        self.logger.info("Address created", user_id=user_id, address_id=address.id, is_default=address.is_default)
        return address

    async def update_address(self, user_id: int, address_id: int, data: Dict[str, Any]) -> Address:
        """按白名单更新地址"""
        values = self.validate_updatable_fields(data, ADDRESS_FIELDS)

        async def _update_tx(session: AsyncSession) -> Address:
            address = await self.find_address(session, user_id, address_id, for_update=True)
            if values.get("is_default"):
                await self._clear_default(session, user_id)
            elif values.get("is_default") is False:
                # 取消默认通过设置其他地址为默认完成
                values.pop("is_default")
            return await self.update(session, address, values)

        address = await self.execute_with_transaction(_update_tx)
        self.logger.info("Address updated", user_id=user_id, address_id=address_id, fields=sorted(data))
        return address

    async def set_default(self, user_id: int, address_id: int) -> Address:
        async def _default_tx(session: AsyncSession) -> Address:
            address = await self.find_address(session, user_id, address_id, for_update=True)
            await self._clear_default(session, user_id)
            address.is_default = True
            await session.flush()
            return address

        return await self.execute_with_transaction(_default_tx)

    async def delete_address(self, user_id: int, address_id: int) -> None:
        """软删除；删除默认地址时将最新的剩余地址设为默认"""
        async def _delete_tx(session: AsyncSession) -> None:
            address = await self.find_address(session, user_id, address_id, for_update=True)
            was_default = address.is_default
            address.deleted_at = datetime.now(timezone.utc)
            address.is_default = False
            await session.flush()

            if was_default:
                stmt = self._active(user_id).order_by(Address.created_at.desc(), Address.id.desc()).limit(1)
                newest = (await session.execute(stmt)).scalar_one_or_none()
                if newest is not None:
                    newest.is_default = True
                    await session.flush()

        await self.execute_with_transaction(_delete_tx)
        self.logger.info("Address deleted", user_id=user_id, address_id=address_id)

    @staticmethod
    def serialize(address: Address) -> Dict[str, Any]:
        return {
            "id": address.id,
            "receiver_name": address.receiver_name,
            "receiver_phone": address.receiver_phone,
            "province": address.province,
            "city": address.city,
            "district": address.district,
            "detail": address.detail,
            "is_default": address.is_default,
            "full_address": address.full_address,
        }
