"""
Observability side channels.

* ``BusLogPublisher`` -- publishes one small structured record per
  lifecycle step to the logs topic.  Strictly fire-and-forget: a slow or
  broken bus is logged locally and never reaches the caller.
* ``FailureRecorder`` -- turns every dropped inbound event into a
  ``FailureRecord``: logged at WARNING, kept in a bounded history that the
  admin API exposes, and optionally copied to a dead-letter topic so the
  payload can be inspected or replayed later.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .event_bus import Delivery, EventBus

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class BusLogPublisher:
    def __init__(
        self,
        bus: EventBus,
        topic: str,
        service_name: str,
        timeout: float = 1.0,
    ):
        self.bus = bus
        self.topic = topic
        self.service_name = service_name
        self.timeout = timeout

    async def emit(self, message: str) -> None:
        payload = json.dumps(
            {
                "message": message,
                "service": self.service_name,
                "timestamp": utc_now_iso(),
            }
        )
        try:
            await asyncio.wait_for(
                self.bus.publish(self.topic, payload), timeout=self.timeout
            )
        except Exception:
            logger.warning(
                "Could not publish log record to %s", self.topic, exc_info=True
            )


@dataclass(frozen=True)
class FailureRecord:
    error_type: str
    error_message: str
    original_payload: str
    topic: str
    message_id: str
    recorded_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, str]:
        return {
            "errorType": self.error_type,
            "errorMessage": self.error_message,
            "originalPayload": self.original_payload,
            "topic": self.topic,
            "messageId": self.message_id,
            "recordedAt": self.recorded_at,
        }


class FailureRecorder:
    def __init__(
        self,
        bus: Optional[EventBus] = None,
        dead_letter_topic: Optional[str] = None,
        history_size: int = 500,
    ):
        self.bus = bus
        self.dead_letter_topic = dead_letter_topic
        self._history: deque[FailureRecord] = deque(maxlen=history_size)

    def __len__(self) -> int:
        return len(self._history)

    def recent(self, limit: int = 50) -> list[FailureRecord]:
        """Newest first."""
        return list(reversed(self._history))[:limit]

    async def record(
        self,
        error_type: str,
        error_message: str,
        delivery: Delivery,
        dead_letter: bool = True,
    ) -> FailureRecord:
        record = FailureRecord(
            error_type=error_type,
            error_message=error_message,
            original_payload=delivery.payload,
            topic=delivery.topic,
            message_id=delivery.message_id,
        )
        self._history.append(record)
        logger.warning(
            "Failed event %s from %s [%s]: %s",
            record.message_id,
            record.topic,
            record.error_type,
            record.error_message,
        )

        if dead_letter and self.bus is not None and self.dead_letter_topic:
            try:
                await self.bus.publish(
                    self.dead_letter_topic, json.dumps(record.to_dict())
                )
            except Exception:
                logger.exception(
                    "Dead-letter publish failed for %s", record.message_id
                )
        return record
