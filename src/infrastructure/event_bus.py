"""
Event bus
=========

Topic-based publish/subscribe with consumer groups and at-least-once
delivery.  Consumers receive ``Delivery`` objects and must call
``ack()`` once the message has been handled; anything not acknowledged
is handed out again, either when the consumer restarts or once it has
sat idle long enough to be reclaimed.

Implementations
---------------
* ``RedisStreamEventBus`` -- one Redis stream per topic, one consumer
  group per subscribing service.  ``XADD`` publishes, ``XREADGROUP``
  consumes, ``XACK`` acknowledges.  On (re)subscribe the consumer first
  replays its own pending entries, then switches to new ones.  While
  running it periodically takes over entries that stayed unacknowledged
  longer than ``claim_idle_ms`` (``XAUTOCLAIM``), so a failed event comes
  back without a restart.
* ``InMemoryEventBus`` -- same fan-out and ack tracking inside one
  process, without redelivery; used by the test-suite and for running
  the service without Redis.

Ordering: a stream is a single ordered log, so a group sees messages in
publish order.  Per-key ordering *after* fan-out to concurrent workers is
the consumer's responsibility (see ``src.workers.acceptance``).
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import ResponseError

logger = logging.getLogger(__name__)


@dataclass
class Delivery:
    topic: str
    message_id: str
    payload: str
    key: Optional[str] = None
    _ack: Optional[Callable[[], Awaitable[None]]] = field(default=None, repr=False)

    async def ack(self) -> None:
        if self._ack is not None:
            await self._ack()


class EventBus(Protocol):
    async def publish(
        self, topic: str, payload: str, key: Optional[str] = None
    ) -> str: ...

    def subscribe(
        self, topic: str, group: str, consumer: str
    ) -> AsyncIterator[Delivery]: ...


# ── Redis Streams ─────────────────────────────────────────────────────


class RedisStreamEventBus:
    def __init__(
        self,
        client: aioredis.Redis,
        *,
        block_ms: int = 5000,
        maxlen: Optional[int] = 100_000,
        batch_size: int = 10,
        claim_idle_ms: int = 30_000,
    ):
        self.redis = client
        self.block_ms = block_ms
        self.maxlen = maxlen
        self.batch_size = batch_size
        self.claim_idle_ms = claim_idle_ms

    async def publish(
        self, topic: str, payload: str, key: Optional[str] = None
    ) -> str:
        fields = {"payload": payload}
        if key is not None:
            fields["key"] = key
        return await self.redis.xadd(
            topic, fields, maxlen=self.maxlen, approximate=True
        )

    async def ensure_group(self, topic: str, group: str) -> None:
        try:
            await self.redis.xgroup_create(topic, group, id="0", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def subscribe(
        self, topic: str, group: str, consumer: str
    ) -> AsyncIterator[Delivery]:
        await self.ensure_group(topic, group)
        loop = asyncio.get_running_loop()
        last_claim = loop.time()

        # "0" walks this consumer's pending list; ">" asks for new entries
        cursor = "0"
        while True:
            if cursor == ">" and loop.time() - last_claim >= self.claim_idle_ms / 1000:
                last_claim = loop.time()
                async for delivery in self._reclaim(topic, group, consumer):
                    yield delivery

            response = await self.redis.xreadgroup(
                group,
                consumer,
                {topic: cursor},
                count=self.batch_size,
                block=self.block_ms,
            )
            entries = response[0][1] if response else []

            if cursor != ">":
                if not entries:
                    logger.info("Pending replay finished for %s/%s", topic, group)
                    cursor = ">"
                    continue
                cursor = entries[-1][0]

            async for delivery in self._deliveries(topic, group, entries):
                yield delivery

    async def _reclaim(
        self, topic: str, group: str, consumer: str
    ) -> AsyncIterator[Delivery]:
        """Take over entries left unacknowledged for longer than ``claim_idle_ms``."""
        result = await self.redis.xautoclaim(
            topic,
            group,
            consumer,
            min_idle_time=self.claim_idle_ms,
            start_id="0-0",
            count=self.batch_size,
        )
        entries = result[1] if result else []
        if entries:
            logger.info(
                "Reclaimed %d idle pending entries on %s/%s", len(entries), topic, group
            )
        async for delivery in self._deliveries(topic, group, entries):
            yield delivery

    async def _deliveries(
        self, topic: str, group: str, entries
    ) -> AsyncIterator[Delivery]:
        for message_id, fields in entries:
            if not fields:
                # Entry trimmed from the stream while still pending
                await self.redis.xack(topic, group, message_id)
                continue
            yield Delivery(
                topic=topic,
                message_id=message_id,
                payload=fields.get("payload", ""),
                key=fields.get("key"),
                _ack=self._acker(topic, group, message_id),
            )

    def _acker(
        self, topic: str, group: str, message_id: str
    ) -> Callable[[], Awaitable[None]]:
        async def ack() -> None:
            await self.redis.xack(topic, group, message_id)

        return ack

    async def close(self) -> None:
        await self.redis.aclose()


# ── In-memory ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PublishedMessage:
    topic: str
    message_id: str
    payload: str
    key: Optional[str] = None


class InMemoryEventBus:
    """Process-local bus.  A group created late still sees the full log."""

    def __init__(self) -> None:
        self._log: dict[str, list[PublishedMessage]] = defaultdict(list)
        self._queues: dict[tuple[str, str], asyncio.Queue[PublishedMessage]] = {}
        self._sequence = 0
        self.acked: list[str] = []

    @property
    def published(self) -> list[PublishedMessage]:
        return sorted(
            (m for messages in self._log.values() for m in messages),
            key=lambda m: int(m.message_id.split("-")[0]),
        )

    def messages(self, topic: str) -> list[PublishedMessage]:
        return list(self._log[topic])

    async def publish(
        self, topic: str, payload: str, key: Optional[str] = None
    ) -> str:
        self._sequence += 1
        message = PublishedMessage(topic, f"{self._sequence}-0", payload, key)
        self._log[topic].append(message)
        for (queue_topic, _), queue in self._queues.items():
            if queue_topic == topic:
                queue.put_nowait(message)
        return message.message_id

    def _queue(self, topic: str, group: str) -> asyncio.Queue[PublishedMessage]:
        queue = self._queues.get((topic, group))
        if queue is None:
            queue = self._queues[(topic, group)] = asyncio.Queue()
            for message in self._log[topic]:
                queue.put_nowait(message)
        return queue

    async def subscribe(
        self, topic: str, group: str, consumer: str
    ) -> AsyncIterator[Delivery]:
        queue = self._queue(topic, group)
        while True:
            message = await queue.get()
            yield Delivery(
                topic=topic,
                message_id=message.message_id,
                payload=message.payload,
                key=message.key,
                _ack=self._acker(message.message_id),
            )

    def _acker(self, message_id: str) -> Callable[[], Awaitable[None]]:
        async def ack() -> None:
            self.acked.append(message_id)

        return ack

    async def close(self) -> None:
        self._queues.clear()
