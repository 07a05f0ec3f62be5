"""
支付测试：预支付、回调幂等
"""
from decimal import Decimal

import httpx
import pytest

from fm_core.models import Order, Payment
from fm_core.services import HttpPaymentProvider
from fm_core.utils.errors import (
    InvalidStateTransitionError, NotFoundError, ServiceUnavailableError, ValidationError
)

from .conftest import USER_ID


@pytest.fixture
def pending_order(services, make_product, make_address):
    async def _create():
        product = await make_product(price="10.00", stock=5)
        address = await make_address()
        return await services.settlement.create_order(
            USER_ID,
            [{"product_id": product.id, "quantity": 2, "price": product.price}],
            address.id,
            delivery_fee=Decimal("1.50")
        )
    return _create


async def test_create_payment_returns_prepay(services, pending_order, fetch):
    order = await pending_order()

    params = await services.payments.create_payment(USER_ID, order.order_id, "wechat")

    assert params["amount"] == "21.50"
    assert params["prepay_id"].startswith("mock_")
    payment = await fetch(Payment, params["payment_id"])
    assert payment.status == "pending"
    assert payment.prepay_id == params["prepay_id"]


async def test_pending_payment_reused(services, pending_order):
    order = await pending_order()

    first = await services.payments.create_payment(USER_ID, order.order_id, "wechat")
    second = await services.payments.create_payment(USER_ID, order.order_id, "wechat")

    assert first["payment_id"] == second["payment_id"]


async def test_invalid_method(services, pending_order):
    order = await pending_order()

    with pytest.raises(ValidationError) as exc_info:
        await services.payments.create_payment(USER_ID, order.order_id, "cash")
    assert exc_info.value.code == "INVALID_PAYMENT_METHOD"


async def test_callback_is_idempotent(services, pending_order, fetch, published):
    order = await pending_order()
    params = await services.payments.create_payment(USER_ID, order.order_id, "wechat")

    await services.payments.handle_callback(params["payment_id"], success=True, transaction_id="tx-1")
    await services.payments.handle_callback(params["payment_id"], success=True, transaction_id="tx-2")

    stored = await fetch(Order, order.order_id)
    assert stored.status == "paid"
    assert stored.paid_at is not None
    assert (await fetch(Payment, params["payment_id"])).transaction_id == "tx-1"
    assert [t for t, _ in published].count("fm.order.paid") == 1


async def test_failed_callback_keeps_order_pending(services, pending_order, fetch):
    order = await pending_order()
    params = await services.payments.create_payment(USER_ID, order.order_id, "alipay")

    payment = await services.payments.handle_callback(params["payment_id"], success=False)

    assert payment.status == "failed"
    assert (await fetch(Order, order.order_id)).status == "pending"


async def test_cannot_pay_cancelled_order(services, pending_order):
    order = await pending_order()
    await services.orders.cancel_order(USER_ID, order.order_id)

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await services.payments.create_payment(USER_ID, order.order_id, "wechat")
    assert exc_info.value.code == "ORDER_NOT_PAYABLE"


async def test_unknown_payment_callback(services):
    with pytest.raises(NotFoundError):
        await services.payments.handle_callback(9999, success=True)


async def test_http_provider_maps_gateway_errors(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"message": "bad gateway"})

    original = httpx.AsyncClient

    def client_factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return original(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)
    provider = HttpPaymentProvider("http://gateway.test", "http://notify.test")
    payment = Payment(id=1, amount=Decimal("1.00"), method="wechat")

    with pytest.raises(ServiceUnavailableError) as exc_info:
        await provider.create_prepay(payment, "202610181200000001")
    assert exc_info.value.code == "PAYMENT_GATEWAY_ERROR"
