"""
事件总线测试
"""
import json

import pytest


async def test_publish_writes_stream_and_triggers_handlers(event_bus, redis_client):
    received = []

    async def handler(payload):
        received.append(payload)

    await event_bus.subscribe("fm.order.created", handler)
    event_id = await event_bus.publish("fm.order.created", {"user_id": 1, "order_id": 7})

    assert received == [{"user_id": 1, "order_id": 7}]
    entries = await redis_client.xrange("fm:events:fm.order.created")
    assert len(entries) == 1
    event = json.loads(entries[0][1]["data"])
    assert event["event_id"] == event_id
    assert event["user_id"] == 1
    assert event["payload"]["order_id"] == 7


async def test_failing_handler_does_not_block_others(event_bus):
    received = []

    async def broken(payload):
        raise RuntimeError("boom")

    async def working(payload):
        received.append(payload["order_id"])

    await event_bus.subscribe("fm.order.paid", broken)
    await event_bus.subscribe("fm.order.paid", working)
    await event_bus.publish("fm.order.paid", {"order_id": 3})

    assert received == [3]


async def test_invalid_topic(event_bus):
    with pytest.raises(ValueError):
        await event_bus.publish("order.created", {})


async def test_publish_safely_swallows_storage_errors(event_bus):
    class Unavailable:
        async def xadd(self, *args, **kwargs):
            raise ConnectionError("redis down")

    event_bus.redis_client = Unavailable()

    assert await event_bus.publish_safely("fm.order.created", {"order_id": 1}) is None
