"""Search task queue: publish/consume with explicit acknowledgement.

Every delivery ends in exactly one terminal action:

* payload does not decode or parse -> rejected without requeue (dead-lettered)
* handler succeeds       -> acknowledged
* handler raises         -> rejected with requeue, or dead-lettered once the
                            delivery count reaches ``max_attempts``
"""

from __future__ import annotations

import asyncio
import enum
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from pydantic import ValidationError
from redis import asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from mediaapp.domain.tasks import SearchTask

from .config import Settings
from .errors import PublishFailed, QueueClosed
from .logging import get_logger

CONTENT_TYPE = "application/json"

TaskHandler = Callable[[SearchTask], Awaitable[None]]


class DeliveryOutcome(str, enum.Enum):
    acknowledged = "acknowledged"
    requeued = "requeued"
    rejected = "rejected"


@dataclass(slots=True)
class Delivery:
    body: str
    attempts: int
    message_id: Optional[str] = None
    token: Any = None
    decode_error: Optional[str] = None


@dataclass(slots=True)
class Envelope:
    body: str
    attempts: int = 0
    message_id: str = field(default_factory=lambda: uuid4().hex)
    content_type: str = CONTENT_TYPE
    decode_error: Optional[str] = None

    def dumps(self) -> str:
        return json.dumps(
            {
                "id": self.message_id,
                "attempts": self.attempts,
                "content_type": self.content_type,
                "body": self.body,
            }
        )

    @classmethod
    def loads(cls, raw: str | bytes) -> "Envelope":
        """Parse a stored envelope; anything else is carried as an opaque body.

        Bytes that are not UTF-8 come back flagged with ``decode_error``.
        """
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                return cls(body=raw.decode("utf-8", errors="replace"), decode_error=str(exc))
        try:
            data = json.loads(raw)
        except ValueError:
            return cls(body=raw)
        if not isinstance(data, dict) or not isinstance(data.get("body"), str):
            return cls(body=raw)
        attempts = data.get("attempts")
        return cls(
            body=data["body"],
            attempts=attempts if isinstance(attempts, int) else 0,
            message_id=str(data.get("id") or uuid4().hex),
            content_type=str(data.get("content_type") or CONTENT_TYPE),
        )


class WorkQueue(ABC):
    """Durable single queue with manual acknowledgement."""

    def __init__(
        self,
        name: str,
        *,
        publish_timeout_s: float = 5.0,
        poll_interval_s: float = 1.0,
        max_attempts: int = 0,
    ):
        self.name = name
        self.publish_timeout_s = publish_timeout_s
        self.poll_interval_s = poll_interval_s
        self.max_attempts = max_attempts
        self.logger = get_logger(component="work_queue", queue=name)

    async def publish(self, task: SearchTask) -> None:
        """Enqueue ``task`` or raise :class:`PublishFailed`; the bound is independent of the caller's."""
        try:
            body = task.to_wire()
        except (TypeError, ValueError) as exc:
            raise PublishFailed(f"could not serialize task: {exc}") from exc

        try:
            await asyncio.wait_for(self._push(Envelope(body=body)), timeout=self.publish_timeout_s)
        except asyncio.TimeoutError as exc:
            self.logger.error("queue_publish_timed_out", timeout_s=self.publish_timeout_s)
            raise PublishFailed(f"publish to {self.name} timed out") from exc
        except (QueueClosed, RedisError, OSError) as exc:
            self.logger.error("queue_publish_failed", error=str(exc))
            raise PublishFailed(f"publish to {self.name} failed: {exc}") from exc
        self.logger.info("queue_message_published", body=body)

    async def consume(self, handler: TaskHandler, *, stop: asyncio.Event, consumer: str = "default") -> None:
        """Process deliveries one at a time until ``stop`` is set.

        A handler already running when ``stop`` is set finishes before the
        loop exits. Raises :class:`QueueClosed` when the broker goes away.
        """
        logger = self.logger.bind(consumer=consumer)
        try:
            recovered = await self._recover(consumer)
            if recovered:
                logger.warning("queue_unacked_messages_recovered", count=recovered)
            logger.info("queue_consumer_started")
            while not stop.is_set():
                delivery = await self._receive(consumer, self.poll_interval_s)
                if delivery is None:
                    continue
                await self.dispatch(delivery, handler, consumer=consumer)
        except QueueClosed:
            logger.error("queue_channel_closed")
            raise
        logger.info("queue_consumer_stopped")

    async def dispatch(self, delivery: Delivery, handler: TaskHandler, *, consumer: str = "default") -> DeliveryOutcome:
        logger = self.logger.bind(consumer=consumer, message_id=delivery.message_id, attempts=delivery.attempts)
        if delivery.decode_error is not None:
            logger.error("queue_message_undecodable", error=delivery.decode_error)
            await self._settle(self._reject(consumer, delivery, requeue=False), logger)
            return DeliveryOutcome.rejected

        try:
            task = SearchTask.from_wire(delivery.body)
        except ValidationError as exc:
            logger.error("queue_message_malformed", body=delivery.body, error=str(exc))
            await self._settle(self._reject(consumer, delivery, requeue=False), logger)
            return DeliveryOutcome.rejected

        logger.info("queue_message_received", query=task.query, page=task.page, per_page=task.per_page)
        try:
            await handler(task)
        except Exception as exc:  # noqa: BLE001 - any handler failure drives redelivery
            if self.max_attempts and delivery.attempts >= self.max_attempts:
                logger.error("queue_message_dead_lettered", error=str(exc), max_attempts=self.max_attempts)
                await self._settle(self._reject(consumer, delivery, requeue=False), logger)
                return DeliveryOutcome.rejected
            logger.warning("queue_message_requeued", error=str(exc))
            await self._settle(self._reject(consumer, delivery, requeue=True), logger)
            return DeliveryOutcome.requeued

        await self._settle(self._ack(consumer, delivery), logger)
        logger.info("queue_message_acknowledged")
        return DeliveryOutcome.acknowledged

    async def _settle(self, action: Awaitable[None], logger: Any) -> None:
        try:
            await action
        except (RedisError, OSError) as exc:
            logger.error("queue_settle_failed", error=str(exc))

    async def close(self) -> None:
        return None

    async def _recover(self, consumer: str) -> int:
        return 0

    @abstractmethod
    async def _push(self, envelope: Envelope) -> None: ...

    @abstractmethod
    async def _receive(self, consumer: str, timeout: float) -> Optional[Delivery]: ...

    @abstractmethod
    async def _ack(self, consumer: str, delivery: Delivery) -> None: ...

    @abstractmethod
    async def _reject(self, consumer: str, delivery: Delivery, *, requeue: bool) -> None: ...


_CLOSED = object()


class InMemoryWorkQueue(WorkQueue):
    """Process-local queue used for development, the embedded worker and tests."""

    def __init__(self, name: str, **kwargs: Any):
        super().__init__(name, **kwargs)
        self._pending: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self.acknowledged: list[str] = []
        self.dead_letters: list[str] = []

    def pending_count(self) -> int:
        return self._pending.qsize()

    def push_raw(self, body: str) -> None:
        """Inject an arbitrary payload, bypassing serialization."""
        self._pending.put_nowait(Envelope(body=body))

    async def close(self) -> None:
        self._closed = True
        self._pending.put_nowait(_CLOSED)

    async def _push(self, envelope: Envelope) -> None:
        if self._closed:
            raise QueueClosed(f"queue {self.name} is closed")
        self._pending.put_nowait(envelope)

    async def _receive(self, consumer: str, timeout: float) -> Optional[Delivery]:
        if self._closed and self._pending.empty():
            raise QueueClosed(f"queue {self.name} is closed")
        try:
            item = await asyncio.wait_for(self._pending.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        if item is _CLOSED:
            raise QueueClosed(f"queue {self.name} is closed")
        item.attempts += 1
        return Delivery(body=item.body, attempts=item.attempts, message_id=item.message_id, token=item)

    async def _ack(self, consumer: str, delivery: Delivery) -> None:
        self.acknowledged.append(delivery.body)

    async def _reject(self, consumer: str, delivery: Delivery, *, requeue: bool) -> None:
        if requeue:
            self._pending.put_nowait(delivery.token)
        else:
            self.dead_letters.append(delivery.body)


class RedisWorkQueue(WorkQueue):
    """Reliable-list queue on Redis.

    Keys: ``<name>`` holds pending envelopes, ``<name>:processing:<consumer>``
    holds deliveries awaiting a terminal action and ``<name>:dead`` collects
    rejected messages.
    """

    def __init__(self, client: Any, name: str, **kwargs: Any):
        super().__init__(name, **kwargs)
        self.client = client
        self.dead_letter_key = f"{name}:dead"

    @classmethod
    def from_url(cls, url: str, name: str, **kwargs: Any) -> "RedisWorkQueue":
        # Replies stay bytes; envelopes are decoded per delivery.
        client = aioredis.Redis.from_url(url, decode_responses=False)
        return cls(client, name, **kwargs)

    def processing_key(self, consumer: str) -> str:
        return f"{self.name}:processing:{consumer}"

    async def close(self) -> None:
        await self.client.aclose()

    async def _push(self, envelope: Envelope) -> None:
        await self.client.lpush(self.name, envelope.dumps())

    async def _recover(self, consumer: str) -> int:
        """Settle deliveries a previous run of ``consumer`` left in flight.

        The interrupted delivery counts as an attempt: the envelope goes back
        to the consuming end of the queue with ``attempts + 1``, or to the dead-letter
        list once that reaches ``max_attempts``. Undecodable payloads are
        dead-lettered as they are.
        """
        key = self.processing_key(consumer)
        moved = 0
        try:
            while True:
                raw = await self.client.lindex(key, -1)
                if raw is None:
                    return moved
                envelope = Envelope.loads(raw)
                attempts = envelope.attempts + 1
                dead = envelope.decode_error is not None or (bool(self.max_attempts) and attempts >= self.max_attempts)
                async with self.client.pipeline(transaction=True) as pipe:
                    pipe.lrem(key, -1, raw)
                    if dead:
                        pipe.lpush(self.dead_letter_key, raw)
                    else:
                        retry = Envelope(body=envelope.body, attempts=attempts, message_id=envelope.message_id)
                        pipe.rpush(self.name, retry.dumps())
                    await pipe.execute()
                if dead:
                    self.logger.error(
                        "queue_message_dead_lettered",
                        consumer=consumer,
                        message_id=envelope.message_id,
                        attempts=attempts,
                        error=envelope.decode_error or "delivery interrupted",
                    )
                moved += 1
        except (RedisConnectionError, OSError) as exc:
            raise QueueClosed(f"lost connection to redis: {exc}") from exc

    async def _receive(self, consumer: str, timeout: float) -> Optional[Delivery]:
        try:
            raw = await self.client.blmove(self.name, self.processing_key(consumer), timeout, "RIGHT", "LEFT")
        except (RedisConnectionError, OSError) as exc:
            raise QueueClosed(f"lost connection to redis: {exc}") from exc
        if raw is None:
            return None
        envelope = Envelope.loads(raw)
        return Delivery(
            body=envelope.body,
            attempts=envelope.attempts + 1,
            message_id=envelope.message_id,
            token=raw,
            decode_error=envelope.decode_error,
        )

    async def _ack(self, consumer: str, delivery: Delivery) -> None:
        await self.client.lrem(self.processing_key(consumer), 1, delivery.token)

    async def _reject(self, consumer: str, delivery: Delivery, *, requeue: bool) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key(consumer), 1, delivery.token)
            if requeue:
                retry = Envelope(body=delivery.body, attempts=delivery.attempts, message_id=delivery.message_id or uuid4().hex)
                pipe.lpush(self.name, retry.dumps())
            else:
                pipe.lpush(self.dead_letter_key, delivery.token)
            await pipe.execute()


def get_work_queue(settings: Settings) -> WorkQueue:
    options = {
        "publish_timeout_s": settings.publish_timeout_s,
        "poll_interval_s": settings.consume_poll_interval_s,
        "max_attempts": settings.max_delivery_attempts,
    }
    if settings.work_queue_backend == "memory":
        return InMemoryWorkQueue(settings.work_queue_name, **options)
    if settings.work_queue_backend == "redis":
        return RedisWorkQueue.from_url(settings.redis_url, settings.work_queue_name, **options)
    raise ValueError(f"Unsupported work queue backend: {settings.work_queue_backend}")


__all__ = [
    "CONTENT_TYPE",
    "Delivery",
    "DeliveryOutcome",
    "Envelope",
    "InMemoryWorkQueue",
    "RedisWorkQueue",
    "TaskHandler",
    "WorkQueue",
    "get_work_queue",
]
