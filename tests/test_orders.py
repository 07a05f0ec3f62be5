"""
订单生命周期测试：状态机、取消回补、发货、收货、删除
"""
from decimal import Decimal

import pytest

from fm_core.models import Order, Product, UserCoupon
from fm_core.services import order_state
from fm_core.utils.errors import InvalidStateTransitionError, NotFoundError

from .conftest import OTHER_USER_ID, USER_ID


@pytest.fixture
def place_order(services, make_product, make_address):
    """下单：返回 (结算结果, 商品)"""
    async def _place(quantity=2, stock=5, coupon_id=None):
        product = await make_product(price="10.00", stock=stock)
        address = await make_address()
        result = await services.settlement.create_order(
            USER_ID,
            [{"product_id": product.id, "quantity": quantity, "price": product.price}],
            address.id,
            coupon_id=coupon_id
        )
        return result, product
    return _place


async def _pay(services, order_id):
    payment = await services.payments.create_payment(USER_ID, order_id, "wechat")
    await services.payments.handle_callback(payment["payment_id"], success=True, transaction_id="tx-1")


class TestTransitions:
    def test_allowed(self):
        assert order_state.can_transition("pending", "paid")
        assert order_state.can_transition("pending", "cancelled")
        assert order_state.can_transition("paid", "cancelled")
        assert order_state.can_transition("paid", "shipped")
        assert order_state.can_transition("shipped", "delivered")
        assert order_state.can_transition("delivered", "completed")

    @pytest.mark.parametrize("current,target", [
        ("shipped", "cancelled"),
        ("delivered", "cancelled"),
        ("cancelled", "paid"),
        ("completed", "cancelled"),
        ("pending", "shipped"),
    ])
    def test_rejected(self, current, target):
        assert not order_state.can_transition(current, target)
        with pytest.raises(InvalidStateTransitionError):
            order_state.ensure_transition(current, target)

    def test_apply_sets_timestamp(self):
        order = Order(status="pending")
        previous = order_state.apply_transition(order, "cancelled")

        assert previous == "pending"
        assert order.status == "cancelled"
        assert order.cancelled_at is not None


async def test_cancel_paid_order_restores_stock_and_coupon(services, place_order, make_coupon, fetch, published):
    coupon, user_coupon = await make_coupon(value="5.00", min_amount="0")
    result, product = await place_order(quantity=2, coupon_id=coupon.id)
    await _pay(services, result.order_id)
    assert (await fetch(Order, result.order_id)).status == "paid"

    cancelled = await services.orders.cancel_order(USER_ID, result.order_id, "changed my mind")

    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "changed my mind"
    stored = await fetch(Product, product.id)
    assert stored.stock == 5
    assert stored.sales == 0
    restored = await fetch(UserCoupon, user_coupon.id)
    assert restored.status == "unused"
    assert restored.order_id is None
    assert ("fm.order.cancelled", result.order_id) in [(t, p["order_id"]) for t, p in published]


async def test_cancel_twice_rejected_without_second_release(services, place_order, fetch):
    result, product = await place_order(quantity=2)

    await services.orders.cancel_order(USER_ID, result.order_id)
    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await services.orders.cancel_order(USER_ID, result.order_id)

    assert exc_info.value.error_kind == "InvalidStateTransition"
    assert (await fetch(Product, product.id)).stock == 5


async def test_cancel_pending_uses_default_reason(services, place_order, make_coupon, fetch):
    coupon, user_coupon = await make_coupon(value="5.00", min_amount="0")
    result, _ = await place_order(coupon_id=coupon.id)

    cancelled = await services.orders.cancel_order(USER_ID, result.order_id)

    assert cancelled.cancel_reason == "用户取消"
    assert (await fetch(UserCoupon, user_coupon.id)).status == "unused"


async def test_cancel_shipped_order_rejected(services, place_order, fetch):
    result, product = await place_order(quantity=2)
    await _pay(services, result.order_id)
    await services.orders.ship_order(result.order_id, carrier="SF", tracking_no="SF123")

    with pytest.raises(InvalidStateTransitionError):
        await services.orders.cancel_order(USER_ID, result.order_id)

    assert (await fetch(Product, product.id)).stock == 3


async def test_cancel_other_users_order(services, place_order):
    result, _ = await place_order()

    with pytest.raises(NotFoundError):
        await services.orders.cancel_order(OTHER_USER_ID, result.order_id)


async def test_ship_confirm_and_delete(services, place_order, published):
    result, _ = await place_order()

    with pytest.raises(InvalidStateTransitionError):
        await services.orders.ship_order(result.order_id)

    await _pay(services, result.order_id)
    shipped = await services.orders.ship_order(result.order_id, carrier="SF", tracking_no="SF123")
    assert shipped.status == "shipped"
    assert shipped.tracking_no == "SF123"
    assert shipped.shipped_at is not None

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await services.orders.delete_order(USER_ID, result.order_id)
    assert exc_info.value.code == "ORDER_NOT_DELETABLE"

    delivered = await services.orders.confirm_receipt(USER_ID, result.order_id)
    assert delivered.status == "delivered"

    await services.orders.delete_order(USER_ID, result.order_id)
    with pytest.raises(NotFoundError):
        await services.orders.get_order(USER_ID, result.order_id)

    topics = [topic for topic, _ in published]
    assert topics == ["fm.order.created", "fm.order.paid", "fm.order.shipped", "fm.order.delivered"]


async def test_list_orders(services, place_order):
    first, _ = await place_order()
    second, _ = await place_order()
    await services.orders.cancel_order(USER_ID, first.order_id)

    orders, total = await services.orders.list_orders(USER_ID)
    assert total == 2
    assert {o.id for o in orders} == {first.order_id, second.order_id}

    pending, total = await services.orders.list_orders(USER_ID, status="pending")
    assert total == 1
    assert pending[0].id == second.order_id

    _, total = await services.orders.list_orders(OTHER_USER_ID)
    assert total == 0


async def test_serialize_order(services, place_order):
    result, product = await place_order(quantity=3)

    order = await services.orders.get_order(USER_ID, result.order_id)
    data = services.orders.serialize(order)

    assert data["status"] == "pending"
    assert data["final_amount"] == str(Decimal("30.00"))
    assert data["items"][0]["product_id"] == product.id
    assert data["items"][0]["total_amount"] == "30.00"
