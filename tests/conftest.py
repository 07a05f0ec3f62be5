"""
Pytest 配置和 fixtures

每个测试使用独立的 SQLite 数据库文件（aiosqlite）和 fakeredis，互不影响。
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import fakeredis
import pytest
import pytest_asyncio

from fm_core.api.deps import Services
from fm_core.database import DatabaseManager
from fm_core.event_bus import EventBus
from fm_core.models import Coupon, Product, UserCoupon
from fm_core.services import MockPaymentProvider

USER_ID = 1001
OTHER_USER_ID = 2002


@pytest_asyncio.fixture
async def db_manager(tmp_path):
    """数据库管理器 fixture"""
    manager = DatabaseManager(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await manager.create_tables()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def event_bus(redis_client):
    return EventBus(redis_client)


ORDER_TOPICS = (
    "fm.order.created", "fm.order.cancelled", "fm.order.paid",
    "fm.order.shipped", "fm.order.delivered", "fm.order.completed",
)


@pytest_asyncio.fixture
async def published(event_bus):
    """记录进程内收到的订单事件 [(topic, payload)]"""
    events = []

    def _recorder(topic):
        async def handler(payload: Dict[str, Any]) -> None:
            events.append((topic, payload))
        return handler

    for topic in ORDER_TOPICS:
        await event_bus.subscribe(topic, _recorder(topic))
    return events


@pytest.fixture
def services(db_manager, redis_client, event_bus):
    return Services(
        db_manager,
        redis_client=redis_client,
        event_bus=event_bus,
        payment_provider=MockPaymentProvider(),
    )


@pytest.fixture
def make_product(services):
    """创建商品"""
    async def _make(
        name: str = "Organic Apple",
        price: str = "10.00",
        stock: int = 5,
        status: str = "active",
        category_id: Optional[int] = None
    ) -> Product:
        return await services.products.create_product(
            name=name, price=Decimal(price), stock=stock, status=status, category_id=category_id
        )
    return _make


@pytest.fixture
def make_address(services):
    """创建收货地址"""
    async def _make(user_id: int = USER_ID, **overrides):
        data = {
            "receiver_name": "Zhang San",
            "receiver_phone": "13800138000",
            "province": "Zhejiang",
            "city": "Hangzhou",
            "district": "Xihu",
            "detail": "No. 1 Wensan Road",
        }
        data.update(overrides)
        return await services.addresses.create_address(user_id, data)
    return _make


@pytest.fixture
def make_coupon(services):
    """创建优惠券模板，claim_for 不为空时为该用户领取"""
    async def _make(
        kind: str = "fixed",
        value: str = "5.00",
        min_amount: str = "10.00",
        max_discount: Optional[str] = None,
        claim_for: Optional[int] = USER_ID,
        total_count: Optional[int] = None,
        starts_in: timedelta = timedelta(days=-1),
        lasts: timedelta = timedelta(days=30)
    ):
        start = datetime.now(timezone.utc) + starts_in
        coupon: Coupon = await services.coupons.create_coupon({
            "name": f"{kind} {value}",
            "kind": kind,
            "value": Decimal(value),
            "min_amount": Decimal(min_amount),
            "max_discount": Decimal(max_discount) if max_discount is not None else None,
            "start_time": start,
            "end_time": start + lasts,
            "total_count": total_count,
        })
        user_coupon: Optional[UserCoupon] = None
        if claim_for is not None:
            user_coupon = await services.coupons.claim(claim_for, coupon.id)
        return coupon, user_coupon
    return _make


@pytest.fixture
def fetch(db_manager):
    """按主键读取最新的数据库状态"""
    async def _fetch(model, record_id):
        async with db_manager.get_session() as session:
            return await session.get(model, record_id)
    return _fetch


@pytest.fixture
def count_rows(db_manager):
    async def _count(model) -> int:
        from sqlalchemy import func, select
        async with db_manager.get_session() as session:
            return (await session.execute(select(func.count()).select_from(model))).scalar_one()
    return _count
