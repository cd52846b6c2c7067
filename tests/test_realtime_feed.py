from conftest import NOW
from schemas.chat import PersistedMessage
from services.realtime_feed import InMemoryRealtimeFeed, RedisRealtimeFeed


def message(claim_id="c1"):
    return PersistedMessage(id="m1", claim_id=claim_id, sender_id="u1", message="Hallo", created_at=NOW)


async def test_publish_reaches_only_subscribers_of_that_claim():
    feed = InMemoryRealtimeFeed()
    received = []

    async def on_c1(msg):
        received.append(("c1", msg.id))

    async def on_c2(msg):
        received.append(("c2", msg.id))

    await feed.subscribe("c1", on_c1)
    await feed.subscribe("c2", on_c2)

    await feed.publish("c1", message())

    assert received == [("c1", "m1")]


async def test_unsubscribe_stops_delivery():
    feed = InMemoryRealtimeFeed()
    received = []

    async def on_insert(msg):
        received.append(msg.id)

    handle = await feed.subscribe("c1", on_insert)
    await feed.unsubscribe(handle)
    await feed.unsubscribe(handle)

    await feed.publish("c1", message())

    assert received == []
    assert feed.subscriber_count("c1") == 0


async def test_failing_subscriber_is_dropped_without_affecting_others():
    feed = InMemoryRealtimeFeed()
    received = []

    async def broken(msg):
        raise ConnectionError("socket closed")

    async def healthy(msg):
        received.append(msg.id)

    await feed.subscribe("c1", broken)
    await feed.subscribe("c1", healthy)

    await feed.publish("c1", message())
    await feed.publish("c1", message())

    assert received == ["m1", "m1"]
    assert feed.subscriber_count("c1") == 1


class FakePubSub:
    def __init__(self, items=(), error=None):
        self.items = list(items)
        self.error = error
        self.channels = []
        self.closed = False

    async def subscribe(self, channel):
        self.channels.append(channel)

    async def unsubscribe(self, channel):
        self.channels.remove(channel)

    async def aclose(self):
        self.closed = True

    async def listen(self):
        for item in self.items:
            yield item
        if self.error:
            raise self.error


class FakeRedis:
    def __init__(self, *pubsubs):
        self.pending = list(pubsubs)
        self.created = []

    def pubsub(self):
        pubsub = self.pending.pop(0) if self.pending else FakePubSub(error=ConnectionError("no server"))
        self.created.append(pubsub)
        return pubsub


async def test_redis_listener_dispatches_channel_messages():
    pubsub = FakePubSub(items=[
        {"type": "subscribe", "data": 1},
        {"type": "message", "data": message().model_dump_json()},
        {"type": "message", "data": "not json"},
    ])
    feed = RedisRealtimeFeed(FakeRedis(pubsub))
    received = []

    async def on_insert(msg):
        received.append(msg.id)

    await feed.subscribe("c1", on_insert)
    _, task = feed._listeners["c1"]
    await task

    assert pubsub.channels == ["chat:c1"]
    assert received == ["m1"]


async def test_redis_listener_failure_is_replaced_on_next_subscribe():
    broken = FakePubSub(error=ConnectionError("connection lost"))
    redis = FakeRedis(broken, FakePubSub())
    feed = RedisRealtimeFeed(redis)

    async def on_insert(msg):
        pass

    await feed.subscribe("c1", on_insert)
    _, task = feed._listeners["c1"]
    await task

    assert "c1" not in feed._listeners
    assert broken.closed

    await feed.subscribe("c1", on_insert)
    assert len(redis.created) == 2
    assert redis.created[1].channels == ["chat:c1"]

    _, task = feed._listeners["c1"]
    await task
