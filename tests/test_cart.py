"""
购物车测试（fakeredis）
"""
import asyncio

import pytest

from fm_core.utils.errors import (
    InsufficientStockError, NotFoundError, ProductUnavailableError, ValidationError
)

from .conftest import USER_ID


async def test_add_accumulates_and_sets_ttl(services, make_product, redis_client):
    product = await make_product(stock=5)

    assert await services.cart.add(USER_ID, product.id, 2) == 2
    assert await services.cart.add(USER_ID, product.id, 1) == 3

    key = f"fm:cart:{USER_ID}"
    assert await redis_client.hget(key, str(product.id)) == "3"
    assert await redis_client.ttl(key) > 0


async def test_add_beyond_stock_rejected(services, make_product):
    product = await make_product(stock=3)
    await services.cart.add(USER_ID, product.id, 2)

    with pytest.raises(InsufficientStockError):
        await services.cart.add(USER_ID, product.id, 2)

    assert await services.cart.get_cart_lines(USER_ID) == [(product.id, 2)]


async def test_concurrent_adds_stay_within_stock(services, make_product):
    product = await make_product(stock=5)

    results = await asyncio.gather(
        services.cart.add(USER_ID, product.id, 3),
        services.cart.add(USER_ID, product.id, 3),
        return_exceptions=True,
    )

    assert sorted(r for r in results if isinstance(r, int)) == [3]
    assert sum(isinstance(r, InsufficientStockError) for r in results) == 1
    assert await services.cart.get_cart_lines(USER_ID) == [(product.id, 3)]


async def test_add_unknown_or_inactive_product(services, make_product):
    inactive = await make_product(status="inactive")

    with pytest.raises(NotFoundError):
        await services.cart.add(USER_ID, 9999, 1)
    with pytest.raises(ProductUnavailableError):
        await services.cart.add(USER_ID, inactive.id, 1)


@pytest.mark.parametrize("quantity", [0, -1, 100])
async def test_add_invalid_quantity(services, make_product, quantity):
    product = await make_product(stock=200)

    with pytest.raises(ValidationError):
        await services.cart.add(USER_ID, product.id, quantity)


async def test_update_and_remove(services, make_product):
    apple = await make_product(name="Apple", stock=10)
    pear = await make_product(name="Pear", stock=10)
    await services.cart.add(USER_ID, apple.id, 1)
    await services.cart.add(USER_ID, pear.id, 1)

    assert await services.cart.update(USER_ID, apple.id, 4) == 4
    assert await services.cart.update(USER_ID, pear.id, 0) == 0
    assert await services.cart.get_cart_lines(USER_ID) == [(apple.id, 4)]
    assert await services.cart.count(USER_ID) == 4

    await services.cart.clear(USER_ID)
    assert await services.cart.get_cart_lines(USER_ID) == []


async def test_view_skips_unavailable_products(services, make_product):
    apple = await make_product(name="Apple", price="3.50", stock=10)
    pear = await make_product(name="Pear", price="2.00", stock=10)
    await services.cart.add(USER_ID, apple.id, 2)
    await services.cart.add(USER_ID, pear.id, 1)
    await services.products.update_product(pear.id, {"status": "inactive"})

    view = await services.cart.view(USER_ID)

    assert [item["product_id"] for item in view["items"]] == [apple.id]
    assert view["total_quantity"] == 2
    assert view["total_amount"] == "7.00"


async def test_check_reports_unavailable_lines(services, make_product):
    apple = await make_product(name="Apple", stock=10)
    pear = await make_product(name="Pear", stock=10)
    await services.cart.add(USER_ID, apple.id, 2)
    await services.cart.add(USER_ID, pear.id, 5)
    await services.products.update_product(pear.id, {"stock": 3})

    result = await services.cart.check(USER_ID)

    assert result["all_available"] is False
    assert [line["product_id"] for line in result["purchasable"]] == [apple.id]
    assert result["unavailable"] == [
        {"product_id": pear.id, "quantity": 5, "reason": "insufficient_stock", "available": 3}
    ]
