"""
价格计算

纯函数：不访问数据库。金额统一使用 Decimal 并保留两位小数。
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional, Tuple, Union

from fm_core.utils.errors import PriceMismatchError, ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """转换为两位小数的 Decimal（float 先转字符串，避免二进制误差）"""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(code="INVALID_AMOUNT", detail=f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(code="INVALID_AMOUNT", detail=f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    """订单金额明细"""
    subtotal: Decimal
    delivery_fee: Decimal
    discount: Decimal
    final_amount: Decimal


def line_total(price: Number, quantity: int) -> Decimal:
    return to_money(to_money(price) * quantity)


def calculate(
    lines: Iterable[Tuple[Number, int]],
    delivery_fee: Number = ZERO,
    discount: Optional[Number] = None
) -> PriceBreakdown:
    """计算订单金额

    subtotal = Σ price * quantity
    final = max(0, subtotal + delivery_fee - discount)
    """
    subtotal = sum((line_total(price, quantity) for price, quantity in lines), ZERO)
    fee = to_money(delivery_fee)
    discount_amount = to_money(discount) if discount is not None else ZERO

    if fee < 0:
        raise ValidationError(code="INVALID_DELIVERY_FEE", detail="Delivery fee cannot be negative")
    if discount_amount < 0:
        raise ValidationError(code="INVALID_DISCOUNT", detail="Discount cannot be negative")

    final_amount = max(ZERO, subtotal + fee - discount_amount)
    return PriceBreakdown(
        subtotal=subtotal,
        delivery_fee=fee,
        discount=discount_amount,
        final_amount=final_amount,
    )


def verify_price(
    product_id: int,
    submitted: Number,
    current: Number,
    tolerance: Number = CENT
) -> None:
    """校验客户端提交的单价与商品当前价格一致（允许舍入误差）"""
    submitted_amount = to_money(submitted)
    current_amount = to_money(current)
    if abs(submitted_amount - current_amount) > Decimal(str(tolerance)):
        raise PriceMismatchError(product_id, submitted_amount, current_amount)
