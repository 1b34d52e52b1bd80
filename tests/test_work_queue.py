from __future__ import annotations

import asyncio
import json

import pytest

from mediaapp.core.errors import PublishFailed, QueueClosed
from mediaapp.core.queue import DeliveryOutcome, Envelope, InMemoryWorkQueue
from mediaapp.domain import SearchTask


def make_queue(**kwargs) -> InMemoryWorkQueue:
    kwargs.setdefault("poll_interval_s", 0.01)
    return InMemoryWorkQueue("photo_search_queue", **kwargs)


async def consume_until(queue: InMemoryWorkQueue, handler, condition, timeout: float = 2.0) -> None:
    stop = asyncio.Event()
    consumer = asyncio.create_task(queue.consume(handler, stop=stop))
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            break
        await asyncio.sleep(0.005)
    stop.set()
    await asyncio.wait_for(consumer, timeout=1)


def test_wire_format_is_canonical_json():
    task = SearchTask.normalized("mountains", 2, 10)

    assert json.loads(task.to_wire()) == {"query": "mountains", "page": 2, "per_page": 10}
    assert SearchTask.from_wire(b'{"query": "sea", "page": 1, "per_page": 3}') == SearchTask(query="sea")


@pytest.mark.parametrize(
    "page, per_page, expected",
    [
        (None, None, (1, 3)),
        (0, 0, (1, 3)),
        (-2, 101, (1, 3)),
        (4, 100, (4, 100)),
    ],
)
def test_tasks_are_clamped_at_the_producer(page, per_page, expected):
    task = SearchTask.normalized("q", page, per_page)
    assert (task.page, task.per_page) == expected


def test_successful_handler_acknowledges_once():
    queue = make_queue()
    seen = []

    async def handler(task: SearchTask) -> None:
        seen.append(task)

    async def scenario():
        await queue.publish(SearchTask.normalized("forest"))
        await consume_until(queue, handler, lambda: queue.acknowledged)

    asyncio.run(scenario())

    assert [task.query for task in seen] == ["forest"]
    assert len(queue.acknowledged) == 1
    assert queue.pending_count() == 0


def test_failing_handler_is_redelivered():
    queue = make_queue(max_attempts=0)
    attempts = []

    async def handler(task: SearchTask) -> None:
        attempts.append(task.query)
        if len(attempts) < 3:
            raise RuntimeError("source timed out")

    async def scenario():
        await queue.publish(SearchTask.normalized("forest"))
        await consume_until(queue, handler, lambda: queue.acknowledged)

    asyncio.run(scenario())

    assert attempts == ["forest", "forest", "forest"]
    assert len(queue.acknowledged) == 1
    assert queue.dead_letters == []


def test_malformed_payload_is_rejected_without_redelivery():
    queue = make_queue()
    handled = []

    async def handler(task: SearchTask) -> None:
        handled.append(task)

    async def scenario():
        queue.push_raw("{not json")
        queue.push_raw('{"query": "x", "page": "one", "per_page": 3}')
        await queue.publish(SearchTask.normalized("valid"))
        await consume_until(queue, handler, lambda: queue.acknowledged)

    asyncio.run(scenario())

    assert queue.dead_letters == ["{not json", '{"query": "x", "page": "one", "per_page": 3}']
    assert [task.query for task in handled] == ["valid"]
    assert queue.pending_count() == 0


def test_dispatch_takes_exactly_one_terminal_action():
    queue = make_queue(max_attempts=2)

    async def failing(task: SearchTask) -> None:
        raise RuntimeError("nope")

    async def scenario():
        await queue.publish(SearchTask.normalized("q"))
        first = await queue._receive("default", 0.1)
        outcome_one = await queue.dispatch(first, failing)
        second = await queue._receive("default", 0.1)
        outcome_two = await queue.dispatch(second, failing)
        return first.attempts, outcome_one, second.attempts, outcome_two

    first_attempts, outcome_one, second_attempts, outcome_two = asyncio.run(scenario())

    assert (first_attempts, outcome_one) == (1, DeliveryOutcome.requeued)
    assert (second_attempts, outcome_two) == (2, DeliveryOutcome.rejected)
    assert len(queue.dead_letters) == 1
    assert queue.acknowledged == []
    assert queue.pending_count() == 0


def test_stop_lets_the_running_handler_finish():
    queue = make_queue()
    finished = []
    started = asyncio.Event()

    async def scenario():
        async def slow_handler(task: SearchTask) -> None:
            started.set()
            await asyncio.sleep(0.1)
            finished.append(task.query)

        stop = asyncio.Event()
        await queue.publish(SearchTask.normalized("first"))
        await queue.publish(SearchTask.normalized("second"))
        consumer = asyncio.create_task(queue.consume(slow_handler, stop=stop))
        await started.wait()
        stop.set()
        await asyncio.wait_for(consumer, timeout=1)

    asyncio.run(scenario())

    assert finished == ["first"]
    assert queue.pending_count() == 1


def test_closed_queue_ends_consumer_and_refuses_publish():
    queue = make_queue()

    async def handler(task: SearchTask) -> None:
        return None

    async def scenario():
        await queue.close()
        with pytest.raises(QueueClosed):
            await queue.consume(handler, stop=asyncio.Event())
        with pytest.raises(PublishFailed):
            await queue.publish(SearchTask.normalized("late"))

    asyncio.run(scenario())


def test_publish_is_bounded_by_its_own_timeout():
    class StuckQueue(InMemoryWorkQueue):
        async def _push(self, envelope: Envelope) -> None:
            await asyncio.sleep(10)

    queue = StuckQueue("stuck", publish_timeout_s=0.05)

    with pytest.raises(PublishFailed):
        asyncio.run(queue.publish(SearchTask.normalized("q")))
    assert queue.pending_count() == 0


def test_envelope_tolerates_foreign_payloads():
    raw = '{"query": "plain", "page": 1, "per_page": 3}'

    envelope = Envelope.loads(raw)

    assert envelope.body == raw
    assert envelope.attempts == 0
    assert Envelope.loads(Envelope(body=raw, attempts=3).dumps()).attempts == 3
