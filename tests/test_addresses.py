"""
收货地址测试
"""
import pytest

from fm_core.utils.errors import NotFoundError, ValidationError

from .conftest import OTHER_USER_ID, USER_ID


async def test_first_address_becomes_default(services, make_address):
    first = await make_address()
    second = await make_address(detail="No. 2 Wensan Road")

    assert first.is_default is True
    assert second.is_default is False


async def test_new_default_clears_previous(services, make_address):
    first = await make_address()
    second = await make_address(detail="No. 2 Wensan Road", is_default=True)

    addresses = await services.addresses.list_addresses(USER_ID)

    assert [a.id for a in addresses] == [second.id, first.id]
    assert [a.is_default for a in addresses] == [True, False]


async def test_invalid_phone_rejected(make_address):
    with pytest.raises(ValidationError) as exc_info:
        await make_address(receiver_phone="12345")
    assert exc_info.value.code == "INVALID_PHONE"


async def test_missing_field_rejected(services):
    with pytest.raises(ValidationError) as exc_info:
        await services.addresses.create_address(USER_ID, {"receiver_name": "Li Si"})
    assert exc_info.value.code == "MISSING_REQUIRED_FIELDS"


async def test_update_uses_field_allow_list(services, make_address):
    address = await make_address()

    with pytest.raises(ValidationError) as exc_info:
        await services.addresses.update_address(USER_ID, address.id, {"user_id": OTHER_USER_ID})
    assert exc_info.value.code == "FIELD_NOT_UPDATABLE"

    updated = await services.addresses.update_address(USER_ID, address.id, {"city": "Ningbo"})
    assert updated.city == "Ningbo"
    assert updated.user_id == USER_ID


async def test_set_default(services, make_address):
    first = await make_address()
    second = await make_address(detail="No. 2 Wensan Road")

    await services.addresses.set_default(USER_ID, second.id)

    addresses = {a.id: a.is_default for a in await services.addresses.list_addresses(USER_ID)}
    assert addresses == {first.id: False, second.id: True}


async def test_delete_default_promotes_newest(services, make_address):
    first = await make_address()
    await make_address(detail="No. 2 Wensan Road")
    newest = await make_address(detail="No. 3 Wensan Road")

    await services.addresses.delete_address(USER_ID, first.id)

    addresses = await services.addresses.list_addresses(USER_ID)
    assert first.id not in [a.id for a in addresses]
    assert addresses[0].id == newest.id
    assert addresses[0].is_default is True


async def test_addresses_isolated_per_user(services, make_address):
    address = await make_address()

    with pytest.raises(NotFoundError):
        await services.addresses.get_address(OTHER_USER_ID, address.id)
    with pytest.raises(NotFoundError):
        await services.addresses.delete_address(OTHER_USER_ID, address.id)
