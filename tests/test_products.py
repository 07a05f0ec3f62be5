"""
商品目录测试：分类、筛选排序、热销与推荐
"""
import pytest

from fm_core.utils.errors import NotFoundError, ValidationError

from .conftest import OTHER_USER_ID, USER_ID


@pytest.fixture
def sell(services):
    """通过库存账本制造销量"""
    async def _sell(product, quantity):
        async with services.inventory.db_manager.get_transaction() as session:
            await services.inventory.reserve(session, product.id, quantity)
    return _sell


async def test_category_tree(services):
    fruit = await services.categories.create_category("Fruit", sort_order=2)
    veg = await services.categories.create_category("Vegetables", sort_order=1)
    citrus = await services.categories.create_category("Citrus", parent_id=fruit.id)
    hidden = await services.categories.create_category("Seasonal", status="inactive")
    await services.categories.create_category("Under hidden", parent_id=hidden.id)

    tree = await services.categories.list_categories()

    assert [node["id"] for node in tree] == [veg.id, fruit.id]
    assert [child["id"] for child in tree[1]["children"]] == [citrus.id]
    assert tree[0]["children"] == []


async def test_category_validation(services):
    with pytest.raises(ValidationError):
        await services.categories.create_category("  ")
    with pytest.raises(NotFoundError) as exc_info:
        await services.categories.create_category("Orphan", parent_id=9999)
    assert exc_info.value.code == "CATEGORY_NOT_FOUND"


async def test_product_requires_existing_category(services, make_product):
    with pytest.raises(NotFoundError) as exc_info:
        await make_product(category_id=9999)
    assert exc_info.value.code == "CATEGORY_NOT_FOUND"

    product = await make_product()
    with pytest.raises(NotFoundError):
        await services.products.update_product(product.id, {"category_id": 9999})


async def test_list_products_filters_and_sorts(services, make_product):
    fruit = await services.categories.create_category("Fruit")
    apple = await make_product(name="Apple", price="6.00", category_id=fruit.id)
    mango = await make_product(name="Mango", price="18.00", category_id=fruit.id)
    await make_product(name="Cabbage", price="3.00")

    in_fruit, total = await services.products.list_products(category_id=fruit.id, sort="price_asc")
    assert total == 2
    assert [p.id for p in in_fruit] == [apple.id, mango.id]

    priced, _ = await services.products.list_products(min_price="5", max_price="10")
    assert [p.id for p in priced] == [apple.id]

    by_price, _ = await services.products.list_products(sort="price_desc")
    assert [p.name for p in by_price] == ["Mango", "Apple", "Cabbage"]

    with pytest.raises(ValidationError) as exc_info:
        await services.products.list_products(sort="random")
    assert exc_info.value.code == "INVALID_SORT"


async def test_hot_products_by_sales(services, make_product, sell):
    slow = await make_product(name="Slow", stock=10)
    fast = await make_product(name="Fast", stock=10)
    off_shelf = await make_product(name="Off shelf", stock=10)
    await sell(slow, 1)
    await sell(fast, 4)
    await sell(off_shelf, 9)
    await services.products.update_product(off_shelf.id, {"status": "inactive"})

    hot = await services.products.hot_products()

    assert [p.id for p in hot] == [fast.id, slow.id]


async def test_recommendations_follow_favorite_categories(services, make_product, sell):
    fruit = await services.categories.create_category("Fruit")
    dairy = await services.categories.create_category("Dairy")
    liked = await make_product(name="Apple", category_id=fruit.id)
    pear = await make_product(name="Pear", category_id=fruit.id)
    milk = await make_product(name="Milk", stock=10, category_id=dairy.id)
    await sell(milk, 5)
    await services.favorites.add_favorite(USER_ID, liked.id)

    personal = await services.products.recommended_products(USER_ID, limit=2)
    anonymous = await services.products.recommended_products(limit=2)
    stranger = await services.products.recommended_products(OTHER_USER_ID, limit=3)

    # 同分类未收藏的商品优先，收藏过的不再推荐
    assert [p.id for p in personal] == [pear.id, milk.id]
    assert anonymous[0].id == milk.id
    assert {p.id for p in stranger} == {liked.id, pear.id, milk.id}

