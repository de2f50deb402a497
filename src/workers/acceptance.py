"""
Acceptance Event Processor
==========================

Consumes driver acceptance events and applies them through the same
transition path as synchronous status updates
(``TripLifecycleManager.accept``).

Pipeline
--------
1. One consumer task reads the subscription and decodes each payload.
2. Decoded events are routed to one of ``lanes`` worker queues by a stable
   hash of the trip id.
3. Each lane applies its events strictly in arrival order.

So events for the same trip are applied in order, while a slow trip only
holds up the trips that share its lane.

Failure policy
--------------
* Malformed payload, unknown trip, conflicting acceptance or invalid
  transition: recorded (and dead-lettered when configured), acknowledged,
  never retried.
* Anything unexpected (e.g. the store is down): retried in place up to
  ``handle_attempts`` times with a growing delay, which holds back later
  events of the same lane.  If it still fails it is logged with traceback
  and recorded, but **not** acknowledged, so the bus hands the event out
  again once it is reclaimed or the consumer restarts.
* Nothing raised while handling one event stops the processor.
"""

from __future__ import annotations

import asyncio
import logging
import zlib
from typing import Optional

from src.domain.errors import MalformedEvent, TripServiceError
from src.domain.events import AcceptTripEvent
from src.infrastructure.event_bus import Delivery, EventBus
from src.infrastructure.observability import FailureRecorder
from src.services.trip_lifecycle import TripLifecycleManager

logger = logging.getLogger(__name__)


class AcceptanceEventProcessor:
    def __init__(
        self,
        manager: TripLifecycleManager,
        bus: EventBus,
        recorder: FailureRecorder,
        *,
        topic: str,
        group: str,
        consumer: str,
        lanes: int = 8,
        lane_capacity: int = 100,
        resubscribe_delay: float = 1.0,
        drain_timeout: float = 5.0,
        handle_attempts: int = 3,
        retry_delay: float = 0.5,
    ):
        self.manager = manager
        self.bus = bus
        self.recorder = recorder
        self.topic = topic
        self.group = group
        self.consumer = consumer
        self.lane_count = max(1, lanes)
        self.lane_capacity = lane_capacity
        self.resubscribe_delay = resubscribe_delay
        self.drain_timeout = drain_timeout
        self.handle_attempts = max(1, handle_attempts)
        self.retry_delay = retry_delay

        self.processed = 0
        self._lanes: list[asyncio.Queue[tuple[Delivery, AcceptTripEvent]]] = []
        self._lane_tasks: list[asyncio.Task] = []
        self._consumer_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._consumer_task is not None and not self._consumer_task.done()

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        self._lanes = [
            asyncio.Queue(maxsize=self.lane_capacity) for _ in range(self.lane_count)
        ]
        self._lane_tasks = [
            asyncio.create_task(self._drain(queue), name=f"acceptance-lane-{i}")
            for i, queue in enumerate(self._lanes)
        ]
        self._consumer_task = asyncio.create_task(
            self._consume(), name="acceptance-consumer"
        )
        logger.info(
            "Acceptance processor started (topic=%s, group=%s, lanes=%d)",
            self.topic,
            self.group,
            self.lane_count,
        )

    async def stop(self) -> None:
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

        # Let in-flight events finish; unfinished ones stay unacknowledged
        try:
            await asyncio.wait_for(
                asyncio.gather(*(queue.join() for queue in self._lanes)),
                timeout=self.drain_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Acceptance lanes not drained within %ss", self.drain_timeout)

        for task in self._lane_tasks:
            task.cancel()
        await asyncio.gather(*self._lane_tasks, return_exceptions=True)
        self._lane_tasks = []
        self._lanes = []
        logger.info("Acceptance processor stopped")

    # ── Internals ─────────────────────────────────────────────────────

    def lane_for(self, trip_id: str) -> int:
        return zlib.crc32(trip_id.encode("utf-8")) % self.lane_count

    async def _consume(self) -> None:
        while True:
            try:
                async for delivery in self.bus.subscribe(
                    self.topic, self.group, self.consumer
                ):
                    await self.dispatch(delivery)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Subscription to %s failed; resubscribing in %ss",
                    self.topic,
                    self.resubscribe_delay,
                )
                await asyncio.sleep(self.resubscribe_delay)

    async def dispatch(self, delivery: Delivery) -> None:
        """Decode *delivery* and queue it on its trip's lane."""
        try:
            event = AcceptTripEvent.decode(delivery.payload)
        except MalformedEvent as exc:
            # Not retried; with dead-lettering disabled the record is the only trace
            await self.recorder.record(exc.error_type, exc.message, delivery)
            await self._ack(delivery)
            return
        await self._lanes[self.lane_for(event.trip_id)].put((delivery, event))

    async def _drain(
        self, queue: asyncio.Queue[tuple[Delivery, AcceptTripEvent]]
    ) -> None:
        while True:
            delivery, event = await queue.get()
            try:
                await self.handle(delivery, event)
            finally:
                queue.task_done()

    async def handle(self, delivery: Delivery, event: AcceptTripEvent) -> None:
        for attempt in range(1, self.handle_attempts + 1):
            try:
                trip = await self.manager.accept(event)
            except TripServiceError as exc:
                await self.recorder.record(exc.error_type, exc.message, delivery)
                break
            except Exception as exc:
                if attempt < self.handle_attempts:
                    logger.warning(
                        "Applying event %s failed (attempt %d/%d), retrying",
                        delivery.message_id,
                        attempt,
                        self.handle_attempts,
                        exc_info=True,
                    )
                    await asyncio.sleep(self.retry_delay * attempt)
                    continue
                logger.exception(
                    "Unexpected failure applying event %s", delivery.message_id
                )
                await self.recorder.record(
                    "PROCESSING_ERROR", repr(exc), delivery, dead_letter=False
                )
                return
            else:
                self.processed += 1
                logger.info(
                    "Trip %s accepted by driver %s (status=%s)",
                    event.trip_id,
                    event.driver_id,
                    trip.status.value,
                )
                break
        await self._ack(delivery)

    async def _ack(self, delivery: Delivery) -> None:
        try:
            await delivery.ack()
        except Exception:
            logger.exception("Could not acknowledge event %s", delivery.message_id)
