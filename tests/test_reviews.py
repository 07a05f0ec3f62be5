"""
评价测试
"""
from decimal import Decimal

import pytest

from fm_core.models import Order, Product
from fm_core.utils.errors import (
    AlreadyConsumedError, InvalidStateTransitionError, NotFoundError, ValidationError
)

from .conftest import OTHER_USER_ID, USER_ID


@pytest.fixture
def delivered_order(services, make_product, make_address):
    """创建并推进到已收货状态的订单，返回 (订单ID, 商品)"""
    async def _create():
        product = await make_product(price="10.00", stock=5)
        address = await make_address()
        result = await services.settlement.create_order(
            USER_ID,
            [{"product_id": product.id, "quantity": 1, "price": product.price}],
            address.id
        )
        payment = await services.payments.create_payment(USER_ID, result.order_id, "wechat")
        await services.payments.handle_callback(payment["payment_id"], success=True)
        await services.orders.ship_order(result.order_id)
        await services.orders.confirm_receipt(USER_ID, result.order_id)
        return result.order_id, product
    return _create


async def test_review_completes_order_and_updates_rating(services, delivered_order, fetch, published):
    order_id, product = await delivered_order()

    review = await services.reviews.submit_review(USER_ID, order_id, 4, "  Fresh and sweet  ", tags=["fresh"])

    assert review.content == "Fresh and sweet"
    assert (await fetch(Order, order_id)).status == "completed"
    stored = await fetch(Product, product.id)
    assert stored.rating == Decimal("4.00")
    assert stored.review_count == 1
    assert published[-1][0] == "fm.order.completed"


async def test_second_review_rejected(services, delivered_order):
    order_id, _ = await delivered_order()
    await services.reviews.submit_review(USER_ID, order_id, 5, "Great")

    with pytest.raises(AlreadyConsumedError) as exc_info:
        await services.reviews.submit_review(USER_ID, order_id, 3, "Again")
    assert exc_info.value.code == "ORDER_ALREADY_REVIEWED"


async def test_review_requires_delivered_order(services, make_product, make_address):
    product = await make_product(stock=5)
    address = await make_address()
    result = await services.settlement.create_order(
        USER_ID, [{"product_id": product.id, "quantity": 1, "price": product.price}], address.id
    )

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await services.reviews.submit_review(USER_ID, result.order_id, 5, "Too early")
    assert exc_info.value.code == "ORDER_NOT_REVIEWABLE"


@pytest.mark.parametrize("rating,content", [(0, "ok"), (6, "ok"), (5, ""), (5, "x" * 501)])
async def test_review_input_validation(services, rating, content):
    with pytest.raises(ValidationError):
        await services.reviews.submit_review(USER_ID, 1, rating, content)


async def test_review_other_users_order(services, delivered_order):
    order_id, _ = await delivered_order()

    with pytest.raises(NotFoundError):
        await services.reviews.submit_review(OTHER_USER_ID, order_id, 5, "Not mine")


async def test_list_and_delete_reviews(services, delivered_order, fetch):
    order_id, product = await delivered_order()
    review = await services.reviews.submit_review(USER_ID, order_id, 2, "Bruised", is_anonymous=True)

    items, total = await services.reviews.list_product_reviews(product.id)
    assert total == 1
    assert items[0]["user_id"] is None
    assert items[0]["rating"] == 2

    await services.reviews.delete_review(USER_ID, review.id)

    _, total = await services.reviews.list_product_reviews(product.id)
    assert total == 0
    stored = await fetch(Product, product.id)
    assert stored.review_count == 0
    assert stored.rating == Decimal("0.00")


async def test_get_review_detail(services, delivered_order):
    order_id, product = await delivered_order()
    review = await services.reviews.submit_review(USER_ID, order_id, 5, "Crisp", is_anonymous=True)

    detail = await services.reviews.get_review(review.id)

    assert detail["id"] == review.id
    assert detail["user_id"] is None
    assert len(detail["order_no"]) == 18
    assert detail["products"] == [{"product_id": product.id, "product_name": product.name}]

    await services.reviews.delete_review(USER_ID, review.id)
    with pytest.raises(NotFoundError) as exc_info:
        await services.reviews.get_review(review.id)
    assert exc_info.value.code == "REVIEW_NOT_FOUND"
