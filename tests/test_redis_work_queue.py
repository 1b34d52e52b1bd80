from __future__ import annotations

import asyncio
import json

import pytest

from mediaapp.core.errors import PublishFailed, QueueClosed
from mediaapp.core.queue import DeliveryOutcome, Envelope, RedisWorkQueue
from mediaapp.domain import SearchTask
from tests.fakes import FakeRedis

QUEUE = "photo_search_queue"


def make_queue(redis: FakeRedis, **kwargs) -> RedisWorkQueue:
    kwargs.setdefault("poll_interval_s", 0.01)
    return RedisWorkQueue(redis, QUEUE, **kwargs)


def test_publish_pushes_an_envelope_around_the_canonical_task():
    redis = FakeRedis()
    queue = make_queue(redis)

    asyncio.run(queue.publish(SearchTask.normalized("mountains", 2, 5)))

    (raw,) = redis.items(QUEUE)
    envelope = json.loads(raw)
    assert envelope["attempts"] == 0
    assert envelope["content_type"] == "application/json"
    assert json.loads(envelope["body"]) == {"query": "mountains", "page": 2, "per_page": 5}


def test_receive_moves_to_processing_and_ack_removes_it():
    redis = FakeRedis()
    queue = make_queue(redis)

    async def handler(task: SearchTask) -> None:
        assert redis.items(queue.processing_key("w-0")) != []

    async def scenario():
        await queue.publish(SearchTask.normalized("forest"))
        delivery = await queue._receive("w-0", 0.1)
        return await queue.dispatch(delivery, handler, consumer="w-0")

    outcome = asyncio.run(scenario())

    assert outcome is DeliveryOutcome.acknowledged
    assert redis.items(QUEUE) == []
    assert redis.items(queue.processing_key("w-0")) == []


def test_failed_delivery_is_requeued_with_incremented_attempts():
    redis = FakeRedis()
    queue = make_queue(redis, max_attempts=3)

    async def handler(task: SearchTask) -> None:
        raise RuntimeError("catalog unavailable")

    async def scenario():
        await queue.publish(SearchTask.normalized("forest"))
        delivery = await queue._receive("w-0", 0.1)
        return await queue.dispatch(delivery, handler, consumer="w-0")

    outcome = asyncio.run(scenario())

    assert outcome is DeliveryOutcome.requeued
    (raw,) = redis.items(QUEUE)
    assert Envelope.loads(raw).attempts == 1
    assert redis.items(queue.processing_key("w-0")) == []


def test_delivery_is_dead_lettered_after_max_attempts():
    redis = FakeRedis()
    queue = make_queue(redis, max_attempts=2)
    calls = []

    async def handler(task: SearchTask) -> None:
        calls.append(task.query)
        raise RuntimeError("catalog unavailable")

    async def scenario():
        await queue.publish(SearchTask.normalized("forest"))
        stop = asyncio.Event()
        consumer = asyncio.create_task(queue.consume(handler, stop=stop, consumer="w-0"))
        while not redis.items(queue.dead_letter_key):
            await asyncio.sleep(0.005)
        stop.set()
        await asyncio.wait_for(consumer, timeout=1)

    asyncio.run(scenario())

    assert calls == ["forest", "forest"]
    assert redis.items(QUEUE) == []
    assert len(redis.items(queue.dead_letter_key)) == 1


def test_poison_message_goes_straight_to_dead_letters():
    redis = FakeRedis()
    queue = make_queue(redis)

    async def handler(task: SearchTask) -> None:
        pytest.fail("handler must not see a malformed task")

    async def scenario():
        await redis.lpush(QUEUE, Envelope(body='{"page": 1}').dumps())
        delivery = await queue._receive("w-0", 0.1)
        return await queue.dispatch(delivery, handler, consumer="w-0")

    outcome = asyncio.run(scenario())

    assert outcome is DeliveryOutcome.rejected
    assert redis.items(QUEUE) == []
    assert len(redis.items(queue.dead_letter_key)) == 1


def test_consumer_recovers_unacknowledged_messages_on_start():
    redis = FakeRedis()
    queue = make_queue(redis)
    seen = []

    async def handler(task: SearchTask) -> None:
        seen.append(task.query)

    async def scenario():
        # A previous consumer crashed after receiving but before acknowledging.
        await queue.publish(SearchTask.normalized("orphaned"))
        await queue._receive("w-0", 0.1)
        assert redis.items(QUEUE) == []

        stop = asyncio.Event()
        consumer = asyncio.create_task(queue.consume(handler, stop=stop, consumer="w-0"))
        while not seen:
            await asyncio.sleep(0.005)
        stop.set()
        await asyncio.wait_for(consumer, timeout=1)

    asyncio.run(scenario())

    assert seen == ["orphaned"]
    assert redis.items(queue.processing_key("w-0")) == []


def test_lost_connection_is_terminal_for_the_consumer():
    redis = FakeRedis()
    queue = make_queue(redis)

    async def handler(task: SearchTask) -> None:
        return None

    async def scenario():
        stop = asyncio.Event()
        consumer = asyncio.create_task(queue.consume(handler, stop=stop, consumer="w-0"))
        await asyncio.sleep(0.02)
        redis.disconnected = True
        with pytest.raises(QueueClosed):
            await asyncio.wait_for(consumer, timeout=1)

    asyncio.run(scenario())


def test_publish_failure_is_reported_and_nothing_is_enqueued():
    redis = FakeRedis()
    redis.disconnected = True
    queue = make_queue(redis)

    with pytest.raises(PublishFailed):
        asyncio.run(queue.publish(SearchTask.normalized("forest")))
    assert redis.items(QUEUE) == []


def test_close_closes_the_client():
    redis = FakeRedis()
    queue = make_queue(redis)

    asyncio.run(queue.close())

    assert redis.closed is True


def test_undecodable_payload_is_dead_lettered_and_consumption_continues():
    redis = FakeRedis()
    queue = make_queue(redis)
    seen = []

    async def handler(task: SearchTask) -> None:
        seen.append(task.query)

    async def scenario():
        await redis.lpush(QUEUE, b"\xff\xfe not utf-8")
        await queue.publish(SearchTask.normalized("glacier"))
        stop = asyncio.Event()
        consumer = asyncio.create_task(queue.consume(handler, stop=stop, consumer="w-0"))
        while not seen:
            await asyncio.sleep(0.005)
        stop.set()
        await asyncio.wait_for(consumer, timeout=1)

    asyncio.run(scenario())

    assert seen == ["glacier"]
    assert redis.items(queue.dead_letter_key) == [b"\xff\xfe not utf-8"]
    assert redis.items(queue.processing_key("w-0")) == []
    assert redis.items(QUEUE) == []


def test_undecodable_leftover_does_not_block_consumer_start():
    redis = FakeRedis()
    queue = make_queue(redis)
    seen = []

    async def handler(task: SearchTask) -> None:
        seen.append(task.query)

    async def scenario():
        await redis.lpush(queue.processing_key("w-0"), b"\x80\x81")
        await queue.publish(SearchTask.normalized("harbour"))
        stop = asyncio.Event()
        consumer = asyncio.create_task(queue.consume(handler, stop=stop, consumer="w-0"))
        while not seen:
            await asyncio.sleep(0.005)
        stop.set()
        await asyncio.wait_for(consumer, timeout=1)

    asyncio.run(scenario())

    assert seen == ["harbour"]
    assert redis.items(queue.dead_letter_key) == [b"\x80\x81"]
    assert redis.items(queue.processing_key("w-0")) == []


def test_interrupted_deliveries_count_towards_max_attempts():
    redis = FakeRedis()
    queue = make_queue(redis, max_attempts=2)
    attempts = []

    async def scenario():
        await queue.publish(SearchTask.normalized("volcano"))
        for _ in range(4):
            delivery = await queue._receive("w-0", 0.05)
            if delivery is None:
                break
            attempts.append(delivery.attempts)
            # The worker dies here; the next start recovers the delivery.
            await queue._recover("w-0")

    asyncio.run(scenario())

    assert attempts == [1, 2]
    assert redis.items(QUEUE) == []
    assert redis.items(queue.processing_key("w-0")) == []
    (dead,) = redis.items(queue.dead_letter_key)
    assert Envelope.loads(dead).attempts == 1


def test_recovered_delivery_is_requeued_with_incremented_attempts():
    redis = FakeRedis()
    queue = make_queue(redis)

    async def scenario():
        await queue.publish(SearchTask.normalized("canyon"))
        await queue.publish(SearchTask.normalized("meadow"))
        await queue._receive("w-0", 0.05)
        return await queue._recover("w-0")

    recovered = asyncio.run(scenario())

    assert recovered == 1
    first, second = (Envelope.loads(raw) for raw in redis.items(QUEUE))
    assert json.loads(second.body)["query"] == "canyon"
    assert second.attempts == 1
    assert first.attempts == 0
