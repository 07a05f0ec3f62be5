"""
订单状态机

pending → paid → shipped → delivered → completed
pending / paid → cancelled
"""
from datetime import datetime, timezone
from typing import Dict, FrozenSet

from fm_core.models import Order
from fm_core.utils.errors import InvalidStateTransitionError

PENDING = "pending"
PAID = "paid"
SHIPPED = "shipped"
DELIVERED = "delivered"
COMPLETED = "completed"
CANCELLED = "cancelled"

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({PAID, CANCELLED}),
    PAID: frozenset({SHIPPED, CANCELLED}),
    SHIPPED: frozenset({DELIVERED}),
    DELIVERED: frozenset({COMPLETED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}

# 进入某状态时写入的时间戳字段
TIMESTAMP_FIELDS = {
    PAID: "paid_at",
    SHIPPED: "shipped_at",
    DELIVERED: "delivered_at",
    COMPLETED: "completed_at",
    CANCELLED: "cancelled_at",
}

# 允许用户删除（软删除）的状态
DELETABLE_STATES = frozenset({CANCELLED, DELIVERED, COMPLETED})


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidStateTransitionError(current, target)


def apply_transition(order: Order, target: str) -> str:
    """校验并切换订单状态，返回原状态"""
    previous = order.status
    ensure_transition(previous, target)

    order.status = target
    field = TIMESTAMP_FIELDS.get(target)
    if field:
        setattr(order, field, datetime.now(timezone.utc))
    return previous
