"""Durable publish/subscribe bus.

Two implementations share one contract: ``RedisStreamBus`` for deployments
(Redis Streams with consumer groups) and ``InMemoryEventBus`` for local mode
and tests. Both give at-least-once delivery: a message whose handler fails is
redelivered up to ``max_deliveries`` times, then dead-lettered.
"""

from __future__ import annotations

import asyncio
import json
import logging
import socket
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from assure.config import settings
from assure.events.dispatch import DispatchOutcome, HandlerFn, Subscription, dispatch_message
from assure.events.topics import dead_letter_topic
from assure.services.id_generator import generate_id

logger = logging.getLogger(__name__)

SOURCE_SYSTEM = "assure-spec-patcher"


def build_envelope(topic: str, payload: dict, source: str = SOURCE_SYSTEM) -> dict:
    """Wrap a payload with the standard ``_meta`` block."""
    return {
        **payload,
        "_meta": {
            "topic": topic,
            "event_id": generate_id("evt_"),
            "published_at": datetime.now(timezone.utc).isoformat(),
            "source": source,
        },
    }


class EventBus(ABC):
    def __init__(self, max_deliveries: int | None = None) -> None:
        self.max_deliveries = max_deliveries or settings.bus_max_deliveries
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        group: str,
        topics: list[str] | tuple[str, ...],
        handler: HandlerFn,
        model: type[BaseModel] | None = None,
    ) -> Subscription:
        """Register a handler. Must be called before ``start()``."""
        sub = Subscription(
            group=group,
            topics=tuple(topics),
            handler=handler,
            model=model,
            name=getattr(handler, "__name__", repr(handler)),
        )
        self._subscriptions.append(sub)
        return sub

    @abstractmethod
    async def publish(self, topic: str, payload: dict, key: str | None = None) -> str:
        """Publish a JSON payload; returns the message id."""
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# In-process bus
# ---------------------------------------------------------------------------


class InMemoryEventBus(EventBus):
    """asyncio-based bus; one queue per subscription."""

    def __init__(self, max_deliveries: int | None = None) -> None:
        super().__init__(max_deliveries)
        self.published: list[tuple[str, dict]] = []
        self.dead_letters: list[tuple[str, dict]] = []
        self._queues: dict[int, asyncio.Queue] = {}
        self._tasks: list[asyncio.Task] = []
        self._in_flight = 0

    async def publish(self, topic: str, payload: dict, key: str | None = None) -> str:
        envelope = build_envelope(topic, payload)
        message_id = envelope["_meta"]["event_id"]
        self.published.append((topic, envelope))
        for sub in self._subscriptions:
            if topic in sub.topics:
                self._in_flight += 1
                self._queue_for(sub).put_nowait((topic, message_id, envelope, 1))
        logger.debug("Published to %s%s", topic, f" (key: {key})" if key else "")
        return message_id

    def _queue_for(self, sub: Subscription) -> asyncio.Queue:
        return self._queues.setdefault(id(sub), asyncio.Queue())

    async def start(self) -> None:
        for sub in self._subscriptions:
            self._tasks.append(asyncio.create_task(self._consume(sub)))

    async def _consume(self, sub: Subscription) -> None:
        queue = self._queue_for(sub)
        while True:
            topic, message_id, envelope, deliveries = await queue.get()
            try:
                outcome = await dispatch_message(sub, topic, message_id, envelope)
                if outcome is DispatchOutcome.RETRY and deliveries < self.max_deliveries:
                    self._in_flight += 1
                    queue.put_nowait((topic, message_id, envelope, deliveries + 1))
                elif outcome is not DispatchOutcome.ACK:
                    logger.error("Dead-lettering %s on %s after %d deliveries", message_id, topic, deliveries)
                    self.dead_letters.append((dead_letter_topic(topic), envelope))
            finally:
                self._in_flight -= 1
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every published message has been handled (tests, local mode)."""
        while self._in_flight:
            for queue in list(self._queues.values()):
                await queue.join()

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()


# ---------------------------------------------------------------------------
# Redis Streams bus
# ---------------------------------------------------------------------------


class RedisStreamBus(EventBus):
    """Redis Streams with consumer groups.

    Messages are acked only after a successful handler call. Failed messages
    stay in the group's pending list and are reclaimed with XAUTOCLAIM once
    idle for ``claim_idle_ms``; after ``max_deliveries`` they are copied to
    ``<topic>.dead`` and acked.
    """

    def __init__(
        self,
        redis,
        consumer_name: str | None = None,
        max_deliveries: int | None = None,
        claim_idle_ms: int | None = None,
        block_ms: int | None = None,
    ) -> None:
        super().__init__(max_deliveries)
        self.redis = redis
        self.consumer_name = consumer_name or f"{socket.gethostname()}-{generate_id()[:8]}"
        self.claim_idle_ms = claim_idle_ms or settings.bus_claim_idle_ms
        self.block_ms = block_ms or settings.bus_block_ms
        self._tasks: list[asyncio.Task] = []

    async def publish(self, topic: str, payload: dict, key: str | None = None) -> str:
        envelope = build_envelope(topic, payload)
        fields: dict[str, Any] = {"data": json.dumps(envelope, default=str)}
        if key:
            fields["key"] = key
        message_id = await self.redis.xadd(topic, fields)
        logger.info("Published to %s%s", topic, f" (key: {key})" if key else "")
        return message_id

    async def _ensure_group(self, topic: str, group: str) -> None:
        from redis.exceptions import ResponseError

        try:
            await self.redis.xgroup_create(topic, group, id="$", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def start(self) -> None:
        for sub in self._subscriptions:
            for topic in sub.topics:
                await self._ensure_group(topic, sub.group)
            self._tasks.append(asyncio.create_task(self._consume(sub)))
            logger.info("Consumer group %r subscribed to: %s", sub.group, ", ".join(sub.topics))

    async def _handle(self, sub: Subscription, topic: str, message_id: str, fields: dict) -> None:
        outcome = await dispatch_message(sub, topic, message_id, fields.get("data", "{}"))
        if outcome is DispatchOutcome.ACK:
            await self.redis.xack(topic, sub.group, message_id)
        elif outcome is DispatchOutcome.DEAD:
            await self._dead_letter(sub, topic, message_id, fields)

    async def _dead_letter(self, sub: Subscription, topic: str, message_id: str, fields: dict) -> None:
        await self.redis.xadd(dead_letter_topic(topic), {**fields, "original_id": message_id, "group": sub.group})
        await self.redis.xack(topic, sub.group, message_id)
        logger.error("Dead-lettered %s from %s (group=%s)", message_id, topic, sub.group)

    async def _reclaim(self, sub: Subscription) -> None:
        for topic in sub.topics:
            claimed = await self.redis.xautoclaim(
                topic, sub.group, self.consumer_name, min_idle_time=self.claim_idle_ms, start_id="0-0", count=10
            )
            messages = claimed[1] if len(claimed) > 1 else []
            for message_id, fields in messages:
                if fields is None:
                    continue
                pending = await self.redis.xpending_range(topic, sub.group, min=message_id, max=message_id, count=1)
                deliveries = pending[0]["times_delivered"] if pending else 1
                if deliveries > self.max_deliveries:
                    await self._dead_letter(sub, topic, message_id, fields)
                    continue
                await self._handle(sub, topic, message_id, fields)

    async def _consume(self, sub: Subscription) -> None:
        streams = {topic: ">" for topic in sub.topics}
        while True:
            try:
                await self._reclaim(sub)
                response = await self.redis.xreadgroup(
                    sub.group, self.consumer_name, streams, count=10, block=self.block_ms
                )
                for topic, messages in response or []:
                    topic = topic.decode() if isinstance(topic, bytes) else topic
                    for message_id, fields in messages:
                        await self._handle(sub, topic, message_id, fields)
            except asyncio.CancelledError:
                raise
            except Exception:
                # Keep polling; the unacked messages are reclaimed on a later pass.
                logger.exception("Consumer loop error (group=%s)", sub.group)
                await asyncio.sleep(1)

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
