"""
结算编排测试
"""
import asyncio
from decimal import Decimal

import pytest

from fm_core.models import Order, Product, UserCoupon
from fm_core.services import CreateOrderInput, OrderLine, SettlementResult
from fm_core.utils.errors import (
    InsufficientStockError, NotFoundError, PriceMismatchError, ProductUnavailableError,
    StorageConflictError, ValidationError
)

from .conftest import OTHER_USER_ID, USER_ID


def _line(product, quantity, price=None):
    return {"product_id": product.id, "quantity": quantity, "price": price or product.price}


async def test_create_order_basic(services, make_product, make_address, fetch):
    """库存 5、单价 10.00，购买 3 件，运费 2.00"""
    product = await make_product(price="10.00", stock=5)
    address = await make_address()

    result = await services.settlement.create_order(
        USER_ID, [_line(product, 3)], address.id, delivery_fee=Decimal("2.00")
    )

    assert result.final_amount == Decimal("32.00")
    assert result.breakdown.subtotal == Decimal("30.00")
    assert result.user_coupon_id is None
    assert len(result.order_no) == 18

    order = await fetch(Order, result.order_id)
    assert order.status == "pending"
    assert order.user_id == USER_ID
    assert order.total_amount == Decimal("30.00")
    assert order.delivery_fee == Decimal("2.00")
    assert order.discount_amount == Decimal("0.00")
    assert order.receiver_name == "Zhang San"
    assert order.receiver_address == address.full_address
    assert [(item.product_id, item.quantity, item.price) for item in order.items] == [
        (product.id, 3, Decimal("10.00"))
    ]
    assert order.items[0].product_name == product.name

    stored = await fetch(Product, product.id)
    assert stored.stock == 2
    assert stored.sales == 3


async def test_insufficient_stock_rolls_back(services, make_product, make_address, fetch, count_rows):
    product = await make_product(stock=5)
    address = await make_address()

    with pytest.raises(InsufficientStockError) as exc_info:
        await services.settlement.create_order(USER_ID, [_line(product, 6)], address.id)

    assert exc_info.value.error_kind == "InsufficientStock"
    assert (await fetch(Product, product.id)).stock == 5
    assert await count_rows(Order) == 0


async def test_fixed_coupon_applied_and_consumed(services, make_product, make_address, make_coupon, fetch):
    """满 10.00 减 5.00，小计 20.00"""
    product = await make_product(price="10.00", stock=5)
    address = await make_address()
    coupon, user_coupon = await make_coupon(kind="fixed", value="5.00", min_amount="10.00")

    result = await services.settlement.create_order(
        USER_ID, [_line(product, 2)], address.id, coupon_id=coupon.id
    )

    assert result.final_amount == Decimal("15.00")
    assert result.breakdown.discount == Decimal("5.00")
    assert result.user_coupon_id == user_coupon.id

    consumed = await fetch(UserCoupon, user_coupon.id)
    assert consumed.status == "used"
    assert consumed.order_id == result.order_id

    order = await fetch(Order, result.order_id)
    assert order.coupon_id == coupon.id
    assert order.user_coupon_id == user_coupon.id


async def test_percentage_coupon_capped(services, make_product, make_address, make_coupon):
    """8 折券，最高减 3.00，小计 50.00"""
    product = await make_product(price="25.00", stock=5)
    address = await make_address()
    coupon, _ = await make_coupon(kind="percentage", value="0.80", min_amount="0", max_discount="3.00")

    result = await services.settlement.create_order(
        USER_ID, [_line(product, 2)], address.id, delivery_fee=Decimal("4.00"), coupon_id=coupon.id
    )

    assert result.breakdown.discount == Decimal("3.00")
    assert result.final_amount == Decimal("51.00")


async def test_failure_midway_leaves_no_trace(services, make_product, make_address, fetch, count_rows):
    """五个商品中第三个库存不足：全部回滚"""
    products = [await make_product(name=f"Item {i}", stock=5) for i in range(5)]
    address = await make_address()
    lines = [_line(p, 6 if i == 2 else 1) for i, p in enumerate(products)]

    with pytest.raises(InsufficientStockError):
        await services.settlement.create_order(USER_ID, lines, address.id)

    for product in products:
        stored = await fetch(Product, product.id)
        assert stored.stock == 5
        assert stored.sales == 0
    assert await count_rows(Order) == 0


async def test_failure_keeps_coupon_unused(services, make_product, make_address, make_coupon, fetch):
    product = await make_product(stock=1)
    address = await make_address()
    coupon, user_coupon = await make_coupon(min_amount="0")

    with pytest.raises(InsufficientStockError):
        await services.settlement.create_order(USER_ID, [_line(product, 2)], address.id, coupon_id=coupon.id)

    assert (await fetch(UserCoupon, user_coupon.id)).status == "unused"


async def test_price_mismatch(services, make_product, make_address, fetch, count_rows):
    product = await make_product(price="10.00", stock=5)
    address = await make_address()

    with pytest.raises(PriceMismatchError):
        await services.settlement.create_order(USER_ID, [_line(product, 1, Decimal("9.00"))], address.id)

    assert (await fetch(Product, product.id)).stock == 5
    assert await count_rows(Order) == 0


async def test_inactive_product(services, make_product, make_address):
    product = await make_product(status="inactive")
    address = await make_address()

    with pytest.raises(ProductUnavailableError):
        await services.settlement.create_order(USER_ID, [_line(product, 1)], address.id)


async def test_address_must_belong_to_user(services, make_product, make_address, fetch):
    product = await make_product(stock=5)
    foreign = await make_address(user_id=OTHER_USER_ID)

    with pytest.raises(NotFoundError) as exc_info:
        await services.settlement.create_order(USER_ID, [_line(product, 1)], foreign.id)

    assert exc_info.value.code == "ADDRESS_NOT_FOUND"
    assert (await fetch(Product, product.id)).stock == 5


async def test_unusable_coupon_settles_without_discount(services, make_product, make_address, make_coupon, fetch):
    """门槛未达到的优惠券被忽略，订单按原价创建"""
    product = await make_product(price="10.00", stock=5)
    address = await make_address()
    coupon, user_coupon = await make_coupon(value="5.00", min_amount="100.00")

    result = await services.settlement.create_order(
        USER_ID, [_line(product, 2)], address.id, coupon_id=coupon.id
    )

    assert result.final_amount == Decimal("20.00")
    assert result.user_coupon_id is None
    assert (await fetch(UserCoupon, user_coupon.id)).status == "unused"
    assert (await fetch(Order, result.order_id)).coupon_id is None


async def test_coupon_used_by_only_one_order(services, make_product, make_address, make_coupon):
    product = await make_product(price="10.00", stock=10)
    address = await make_address()
    coupon, _ = await make_coupon(value="5.00", min_amount="0")

    first = await services.settlement.create_order(USER_ID, [_line(product, 1)], address.id, coupon_id=coupon.id)
    second = await services.settlement.create_order(USER_ID, [_line(product, 1)], address.id, coupon_id=coupon.id)

    assert first.final_amount == Decimal("5.00")
    assert second.final_amount == Decimal("10.00")
    assert second.user_coupon_id is None


async def test_concurrent_orders_never_oversell(services, make_product, make_address, fetch, count_rows):
    """两个并发订单各买 3 件，库存 5：只能成功一个"""
    product = await make_product(stock=5)
    address = await make_address()

    results = await asyncio.gather(
        services.settlement.create_order(USER_ID, [_line(product, 3)], address.id),
        services.settlement.create_order(USER_ID, [_line(product, 3)], address.id),
        return_exceptions=True,
    )

    succeeded = [r for r in results if isinstance(r, SettlementResult)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (InsufficientStockError, StorageConflictError))

    stored = await fetch(Product, product.id)
    assert stored.stock == 2
    assert stored.sales == 3
    assert await count_rows(Order) == 1


async def test_ordered_lines_removed_from_cart(services, make_product, make_address, published):
    ordered = await make_product(name="Milk", stock=5)
    kept = await make_product(name="Bread", stock=5)
    address = await make_address()
    await services.cart.add(USER_ID, ordered.id, 2)
    await services.cart.add(USER_ID, kept.id, 1)

    result = await services.settlement.create_order(USER_ID, [_line(ordered, 2)], address.id)

    assert await services.cart.get_cart_lines(USER_ID) == [(kept.id, 1)]
    assert ("fm.order.created", result.order_id) in [(t, p["order_id"]) for t, p in published]


async def test_products_locked_in_id_order(services, make_product, make_address, fetch):
    first = await make_product(name="A", stock=5)
    second = await make_product(name="B", stock=5)
    address = await make_address()

    result = await services.settlement.create_order(
        USER_ID, [_line(second, 1), _line(first, 2)], address.id
    )

    order = await fetch(Order, result.order_id)
    assert sorted((item.product_id, item.quantity) for item in order.items) == [(first.id, 2), (second.id, 1)]
    assert (await fetch(Product, first.id)).stock == 3
    assert (await fetch(Product, second.id)).stock == 4


class TestInputValidation:
    """参数校验在访问存储之前完成"""

    def test_empty_items(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateOrderInput(items=[], address_id=1).validate()
        assert exc_info.value.code == "EMPTY_ORDER"

    def test_duplicate_product(self):
        lines = [OrderLine(1, 1, Decimal("1.00")), OrderLine(1, 2, Decimal("1.00"))]
        with pytest.raises(ValidationError) as exc_info:
            CreateOrderInput(items=lines, address_id=1).validate()
        assert exc_info.value.code == "DUPLICATE_ITEM"

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity(self, quantity):
        with pytest.raises(ValidationError):
            CreateOrderInput(items=[OrderLine(1, quantity, Decimal("1.00"))], address_id=1).validate()

    def test_negative_delivery_fee(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateOrderInput(
                items=[OrderLine(1, 1, Decimal("1.00"))], address_id=1, delivery_fee=Decimal("-1")
            ).validate()
        assert exc_info.value.code == "INVALID_DELIVERY_FEE"

    def test_remark_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateOrderInput(items=[OrderLine(1, 1, Decimal("1.00"))], address_id=1, remark="x" * 201).validate()
        assert exc_info.value.code == "INVALID_REMARK"

    def test_from_dict_requires_price(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateOrderInput.from_dict({"items": [{"product_id": 1, "quantity": 1}], "address_id": 1})
        assert exc_info.value.code == "INVALID_ITEMS"


async def test_validation_error_touches_nothing(services, make_product, make_address, fetch, count_rows):
    product = await make_product(stock=5)
    address = await make_address()

    with pytest.raises(ValidationError):
        await services.settlement.create_order(
            USER_ID, [_line(product, 1), _line(product, 1)], address.id
        )

    assert (await fetch(Product, product.id)).stock == 5
    assert await count_rows(Order) == 0
