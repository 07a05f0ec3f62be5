"""
价格计算测试（纯函数）
"""
from decimal import Decimal

import pytest

from fm_core.services.pricing import calculate, line_total, to_money, verify_price
from fm_core.utils.errors import PriceMismatchError, ValidationError


def test_to_money_rounds_half_up():
    assert to_money("1.005") == Decimal("1.01")
    assert to_money(2) == Decimal("2.00")
    # float 先转字符串
    assert to_money(0.1 + 0.2) == Decimal("0.30")


@pytest.mark.parametrize("value", ["abc", None, "NaN", "Infinity"])
def test_to_money_rejects_invalid(value):
    with pytest.raises(ValidationError):
        to_money(value)


def test_line_total():
    assert line_total("10.00", 3) == Decimal("30.00")
    assert line_total(Decimal("3.33"), 3) == Decimal("9.99")


def test_calculate_without_discount():
    breakdown = calculate([(Decimal("10.00"), 3)], delivery_fee=Decimal("2.00"))

    assert breakdown.subtotal == Decimal("30.00")
    assert breakdown.delivery_fee == Decimal("2.00")
    assert breakdown.discount == Decimal("0.00")
    assert breakdown.final_amount == Decimal("32.00")


def test_calculate_multiple_lines_with_discount():
    breakdown = calculate(
        [(Decimal("12.50"), 2), (Decimal("5.00"), 1)],
        delivery_fee="3.00",
        discount="4.50"
    )

    assert breakdown.subtotal == Decimal("30.00")
    assert breakdown.final_amount == Decimal("28.50")


def test_calculate_never_negative():
    breakdown = calculate([(Decimal("1.00"), 1)], delivery_fee=0, discount=Decimal("5.00"))
    assert breakdown.final_amount == Decimal("0.00")


def test_calculate_rejects_negative_fee_and_discount():
    with pytest.raises(ValidationError) as exc_info:
        calculate([(Decimal("1.00"), 1)], delivery_fee=Decimal("-1"))
    assert exc_info.value.code == "INVALID_DELIVERY_FEE"

    with pytest.raises(ValidationError) as exc_info:
        calculate([(Decimal("1.00"), 1)], discount=Decimal("-1"))
    assert exc_info.value.code == "INVALID_DISCOUNT"


def test_verify_price_within_tolerance():
    verify_price(1, Decimal("10.00"), Decimal("10.00"))
    verify_price(1, Decimal("10.01"), Decimal("10.00"))


def test_verify_price_mismatch():
    with pytest.raises(PriceMismatchError) as exc_info:
        verify_price(7, Decimal("9.00"), Decimal("10.00"))

    assert exc_info.value.error_kind == "PriceMismatch"
    assert exc_info.value.extra["product_id"] == 7
