import asyncio
import itertools
from dataclasses import dataclass
from typing import Awaitable, Callable

from core.config import settings
from core.logger import chat_logger
from schemas.chat import PersistedMessage

InsertCallback = Callable[[PersistedMessage], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    claim_id: str
    token: int


class InMemoryRealtimeFeed:
    """Per-claim publish/subscribe inside one process."""

    def __init__(self):
        self.subscribers: dict[str, dict[int, InsertCallback]] = {}
        self._tokens = itertools.count(1)

    # ---------------------------------------------
    # Register a callback for inserts on a claim
    # ---------------------------------------------
    async def subscribe(self, claim_id, on_insert: InsertCallback) -> Subscription:
        claim_id = str(claim_id)
        handle = Subscription(claim_id, next(self._tokens))
        self.subscribers.setdefault(claim_id, {})[handle.token] = on_insert
        chat_logger.logger.info(f"✅ Subscribed to chat:{claim_id} ({len(self.subscribers[claim_id])} active)")
        return handle

    async def unsubscribe(self, handle: Subscription):
        callbacks = self.subscribers.get(handle.claim_id)
        if callbacks is None:
            return
        callbacks.pop(handle.token, None)
        if not callbacks:
            del self.subscribers[handle.claim_id]
        chat_logger.logger.info(f"❌ Unsubscribed from chat:{handle.claim_id}")

    def subscriber_count(self, claim_id) -> int:
        return len(self.subscribers.get(str(claim_id), {}))

    # ---------------------------------------------
    # Deliver an inserted message to every subscriber
    # ---------------------------------------------
    async def publish(self, claim_id, message: PersistedMessage):
        await self.dispatch(str(claim_id), message)

    async def dispatch(self, claim_id: str, message: PersistedMessage):
        callbacks = self.subscribers.get(claim_id)
        if not callbacks:
            return

        chat_logger.log_publish(claim_id, message.id, len(callbacks))
        dead = []

        for token, callback in list(callbacks.items()):
            try:
                await callback(message)
            except Exception as e:
                chat_logger.log_error(f"feed callback chat:{claim_id}", e)
                dead.append(token)

        for token in dead:
            await self.unsubscribe(Subscription(claim_id, token))


class RedisRealtimeFeed(InMemoryRealtimeFeed):
    """Fans inserts out across worker processes over Redis pub/sub channels chat:<claim_id>."""

    def __init__(self, redis_client):
        super().__init__()
        self.redis = redis_client
        self._listeners: dict[str, tuple] = {}

    @staticmethod
    def channel(claim_id) -> str:
        return f"chat:{claim_id}"

    async def subscribe(self, claim_id, on_insert: InsertCallback) -> Subscription:
        handle = await super().subscribe(claim_id, on_insert)
        if handle.claim_id not in self._listeners:
            pubsub = self.redis.pubsub()
            await pubsub.subscribe(self.channel(handle.claim_id))
            task = asyncio.create_task(self._listen(handle.claim_id, pubsub))
            self._listeners[handle.claim_id] = (pubsub, task)
        return handle

    async def unsubscribe(self, handle: Subscription):
        await super().unsubscribe(handle)
        if handle.claim_id in self.subscribers or handle.claim_id not in self._listeners:
            return

        pubsub, task = self._listeners.pop(handle.claim_id)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await pubsub.unsubscribe(self.channel(handle.claim_id))
        await pubsub.aclose()

    async def publish(self, claim_id, message: PersistedMessage):
        await self.redis.publish(self.channel(claim_id), message.model_dump_json())

    async def _listen(self, claim_id: str, pubsub):
        try:
            async for item in pubsub.listen():
                if item.get("type") != "message":
                    continue
                try:
                    message = PersistedMessage.model_validate_json(item["data"])
                except ValueError as e:
                    chat_logger.log_error(f"decode chat:{claim_id}", e)
                    continue
                await self.dispatch(claim_id, message)
        except Exception as e:
            chat_logger.log_error(f"listen chat:{claim_id}", e)
        else:
            chat_logger.logger.warning(f"⚠️ Listener for chat:{claim_id} stopped")

        # the next subscribe for this claim starts a fresh listener
        listener = self._listeners.get(claim_id)
        if listener and listener[0] is pubsub:
            del self._listeners[claim_id]
            await pubsub.aclose()


_feed = None


def get_realtime_feed():
    global _feed
    if _feed is None:
        if settings.REALTIME_BACKEND == "redis":
            from core.cache import redis_client
            _feed = RedisRealtimeFeed(redis_client)
        else:
            _feed = InMemoryRealtimeFeed()
    return _feed
