"""
Order Service — Redis Pub/Sub パブリッシャー

ブレーカーの状態遷移と注文結果を Redis に発行する。

ブレーカーのリスナーは同期関数なので、イベントはいったんキューに積み、
バックグラウンドタスクが順に Redis へ publish する。
Redis が落ちていても注文処理は止めない(ログに残すだけ)。

  circuit_events … CircuitStateChanged
  order_events   … OrderPlaced / OrderFailed
"""

import asyncio
import logging

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CIRCUIT_CHANNEL = "circuit_events"
ORDER_CHANNEL = "order_events"
MAX_PENDING_EVENTS = 1000


class EventPublisher:
    def __init__(self, redis: aioredis.Redis, max_pending: int = MAX_PENDING_EVENTS):
        self.redis = redis
        self._queue: asyncio.Queue[tuple[str, BaseModel]] = asyncio.Queue(maxsize=max_pending)

    def enqueue(self, channel: str, event: BaseModel) -> None:
        """
        イベントを発行待ちキューに積む(ブロックしない)。
        キューが満杯なら (Redis が詰まっている) 捨てて警告だけ残す。
        """
        try:
            self._queue.put_nowait((channel, event))
        except asyncio.QueueFull:
            logger.warning("Event queue full, dropping %s for %s", type(event).__name__, channel)

    async def publish(self, channel: str, event: BaseModel) -> None:
        try:
            await self.redis.publish(channel, event.model_dump_json())
        except RedisError:
            logger.exception("Failed to publish %s to %s", type(event).__name__, channel)

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """
        shutdown_event がセットされるまでキューを Redis に流し続ける。
        停止時に残っているイベントも送り切る。
        """
        while not shutdown_event.is_set():
            try:
                channel, event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            await self.publish(channel, event)

        while not self._queue.empty():
            channel, event = self._queue.get_nowait()
            await self.publish(channel, event)
