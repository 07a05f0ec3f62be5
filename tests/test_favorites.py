"""
收藏测试
"""
import pytest

from fm_core.models import Favorite
from fm_core.utils.errors import (
    AlreadyConsumedError, NotFoundError, ProductUnavailableError, ValidationError
)

from .conftest import OTHER_USER_ID, USER_ID


async def test_add_and_list_favorites(services, make_product):
    apple = await make_product(name="Apple", price="6.00", stock=0)
    pear = await make_product(name="Pear")

    first = await services.favorites.add_favorite(USER_ID, apple.id)
    second = await services.favorites.add_favorite(USER_ID, pear.id)

    items, total = await services.favorites.list_favorites(USER_ID)
    assert total == 2
    assert [item["id"] for item in items] == [second.id, first.id]
    assert items[1]["product_name"] == "Apple"
    assert items[1]["price"] == "6.00"
    assert items[1]["in_stock"] is False
    assert items[0]["in_stock"] is True

    _, others = await services.favorites.list_favorites(OTHER_USER_ID)
    assert others == 0


async def test_favorite_once_per_product(services, make_product, count_rows):
    product = await make_product()
    await services.favorites.add_favorite(USER_ID, product.id)

    with pytest.raises(AlreadyConsumedError) as exc_info:
        await services.favorites.add_favorite(USER_ID, product.id)
    assert exc_info.value.code == "ALREADY_FAVORITED"

    await services.favorites.add_favorite(OTHER_USER_ID, product.id)
    assert await count_rows(Favorite) == 2


async def test_favorite_requires_active_product(services, make_product):
    hidden = await make_product(status="inactive")

    with pytest.raises(ProductUnavailableError):
        await services.favorites.add_favorite(USER_ID, hidden.id)
    with pytest.raises(NotFoundError):
        await services.favorites.add_favorite(USER_ID, 9999)


async def test_check_and_remove(services, make_product):
    product = await make_product()
    favorite = await services.favorites.add_favorite(USER_ID, product.id)

    assert await services.favorites.is_favorited(USER_ID, product.id) is True
    assert await services.favorites.is_favorited(OTHER_USER_ID, product.id) is False

    with pytest.raises(NotFoundError):
        await services.favorites.remove_favorite(OTHER_USER_ID, favorite.id)

    await services.favorites.remove_favorite(USER_ID, favorite.id)
    assert await services.favorites.is_favorited(USER_ID, product.id) is False

    # 取消后可以再次收藏
    await services.favorites.add_favorite(USER_ID, product.id)


async def test_batch_remove_is_all_or_nothing(services, make_product, count_rows):
    apple = await make_product(name="Apple")
    pear = await make_product(name="Pear")
    mine = [
        (await services.favorites.add_favorite(USER_ID, apple.id)).id,
        (await services.favorites.add_favorite(USER_ID, pear.id)).id,
    ]
    theirs = (await services.favorites.add_favorite(OTHER_USER_ID, apple.id)).id

    with pytest.raises(NotFoundError):
        await services.favorites.batch_remove(USER_ID, mine + [theirs])
    assert await count_rows(Favorite) == 3

    assert await services.favorites.batch_remove(USER_ID, mine) == 2
    assert await count_rows(Favorite) == 1

    with pytest.raises(ValidationError):
        await services.favorites.batch_remove(USER_ID, [])
