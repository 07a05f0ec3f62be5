"""
FreshMall 事件总线
基于 Redis Streams 持久化订单事件，同时触发进程内订阅者
"""
import json
import uuid
import asyncio
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Callable, Awaitable

import redis.asyncio as redis

from fm_core.utils.logger import get_logger
from fm_core.utils.redis import get_redis

logger = get_logger(__name__)

TOPIC_PREFIX = "fm."

Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class EventPayload:
    """事件载荷"""

    def __init__(
        self,
        event_id: Optional[str] = None,
        topic: str = "",
        user_id: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
        timestamp: Optional[str] = None
    ):
        self.event_id = event_id or str(uuid.uuid4())
        self.topic = topic
        self.user_id = user_id
        self.payload = payload or {}
        self.timestamp = timestamp or datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "ts": self.timestamp,
            "topic": self.topic,
            "user_id": self.user_id,
            "payload": self.payload
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventPayload":
        return cls(
            event_id=data.get("event_id"),
            topic=data.get("topic", ""),
            user_id=data.get("user_id"),
            payload=data.get("payload", {}),
            timestamp=data.get("ts")
        )


class EventBus:
    """事件总线实现"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, maxlen: int = 10000):
        self.redis_client = redis_client
        self.maxlen = maxlen
        self.subscriptions: Dict[str, List[Handler]] = {}
        self._consumer_tasks: List[asyncio.Task] = []
        self._running = False

    async def _get_redis(self) -> redis.Redis:
        if self.redis_client is None:
            self.redis_client = await get_redis()
        return self.redis_client

    @staticmethod
    def _check_topic(topic: str) -> None:
        if not topic.startswith(TOPIC_PREFIX):
            raise ValueError(f"Invalid topic format: {topic}")

    @staticmethod
    def _get_stream_name(topic: str) -> str:
        return f"fm:events:{topic}"

    @staticmethod
    def _get_consumer_group(topic: str) -> str:
        return f"fm:group:{topic}"

    async def initialize(self) -> None:
        logger.info("Initializing event bus")
        r = await self._get_redis()
        await r.ping()
        self._running = True
        logger.info("Event bus initialized")

    async def shutdown(self) -> None:
        logger.info("Shutting down event bus")
        self._running = False

        for task in self._consumer_tasks:
            task.cancel()
        if self._consumer_tasks:
            await asyncio.gather(*self._consumer_tasks, return_exceptions=True)
        self._consumer_tasks.clear()

        logger.info("Event bus shutdown complete")

    async def publish(self, topic: str, payload: Dict[str, Any]) -> str:
        """发布事件到指定主题，返回事件ID"""
        self._check_topic(topic)

        event = EventPayload(topic=topic, user_id=payload.get("user_id"), payload=payload)
        event_data = {"data": json.dumps(event.to_dict(), ensure_ascii=False, default=str)}

        r = await self._get_redis()
        message_id = await r.xadd(
            self._get_stream_name(topic), event_data, maxlen=self.maxlen, approximate=True
        )

        logger.debug("Published event", topic=topic, event_id=event.event_id, message_id=message_id)

        await self._trigger_handlers(topic, event)
        return event.event_id

    async def publish_safely(self, topic: str, payload: Dict[str, Any]) -> Optional[str]:
        """提交后发布事件：失败只记录日志，不影响已提交的数据"""
        try:
            return await self.publish(topic, payload)
        except Exception:
            logger.error("Event publish failed", topic=topic, exc_info=True)
            return None

    async def subscribe(self, topic: str, handler: Handler, consume: bool = False) -> None:
        """订阅事件主题

        consume=True 时额外创建消费组并启动后台消费任务（跨进程消费）。
        """
        self._check_topic(topic)
        self.subscriptions.setdefault(topic, []).append(handler)

        if consume:
            stream_name = self._get_stream_name(topic)
            group_name = self._get_consumer_group(topic)
            r = await self._get_redis()
            try:
                await r.xgroup_create(stream_name, group_name, id="0", mkstream=True)
                logger.info("Created consumer group", group=group_name, stream=stream_name)
            except redis.ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise

            self._consumer_tasks.append(asyncio.create_task(self._consume_stream(topic, handler)))

        logger.info("Subscribed to topic", topic=topic)

    async def _consume_stream(self, topic: str, handler: Handler) -> None:
        stream_name = self._get_stream_name(topic)
        group_name = self._get_consumer_group(topic)
        consumer_name = f"{group_name}:{uuid.uuid4().hex[:8]}"

        logger.info("Starting consumer", consumer=consumer_name, topic=topic)

        while self._running:
            try:
                r = await self._get_redis()
                messages = await r.xreadgroup(
                    group_name,
                    consumer_name,
                    {stream_name: ">"},
                    count=10,
                    block=1000
                )
                for _, stream_messages in messages or []:
                    for message_id, data in stream_messages:
                        try:
                            event = EventPayload.from_dict(json.loads(data.get("data", "{}")))
                            await handler(event.payload)
                            await r.xack(stream_name, group_name, message_id)
                        except Exception:
                            # 未确认的消息保留在 PEL 中，由 get_pending_messages 排查
                            logger.error("Error processing message", message_id=message_id, exc_info=True)
            except asyncio.CancelledError:
                logger.info("Consumer cancelled", consumer=consumer_name)
                break
            except Exception:
                logger.error("Consumer error", consumer=consumer_name, exc_info=True)
                await asyncio.sleep(5)

    async def _trigger_handlers(self, topic: str, event: EventPayload) -> None:
        """触发进程内处理器，单个处理器失败不影响其他处理器"""
        for handler in self.subscriptions.get(topic, []):
            try:
                await handler(event.payload)
            except Exception:
                logger.error(
                    "Handler error",
                    topic=topic,
                    handler=getattr(handler, "__name__", repr(handler)),
                    exc_info=True
                )

    async def get_pending_messages(self, topic: str) -> List[Dict[str, Any]]:
        """获取消费组中待确认的消息"""
        stream_name = self._get_stream_name(topic)
        group_name = self._get_consumer_group(topic)

        r = await self._get_redis()
        messages = await r.xpending_range(stream_name, group_name, min="-", max="+", count=100)
        return [
            {
                "message_id": msg["message_id"],
                "consumer": msg["consumer"],
                "idle_time_ms": msg["time_since_delivered"],
                "delivery_count": msg["times_delivered"]
            }
            for msg in messages
        ]


_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """获取事件总线单例"""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
