"""Tests for the event bus: delivery, redelivery, dead-lettering and per-message isolation."""

import asyncio
import json

import pytest

from assure.errors.exceptions import NotFoundError, TransientError
from assure.events import topics
from assure.events.bus import RedisStreamBus, build_envelope
from assure.events.dispatch import DispatchOutcome, Subscription, dispatch_message
from assure.models.regulation import RegulationEvent

REGULATION = {
    "eventId": "evt_1",
    "eventType": "regulation.new",
    "regulation": {"framework": "GDPR", "article": "Article 32", "jurisdiction": "EU", "content": "Encrypt."},
}


def test_build_envelope_adds_meta():
    envelope = build_envelope(topics.SPEC_UPDATED, {"workspaceId": "ws"})
    assert envelope["workspaceId"] == "ws"
    assert envelope["_meta"]["topic"] == topics.SPEC_UPDATED
    assert envelope["_meta"]["source"] == "assure-spec-patcher"
    assert envelope["_meta"]["event_id"].startswith("evt_")


async def test_handler_receives_typed_event(bus):
    received: list[RegulationEvent] = []

    async def handler(event):
        received.append(event)

    bus.subscribe("g", [topics.REGULATION_NEW], handler, model=RegulationEvent)
    await bus.start()
    await bus.publish(topics.REGULATION_NEW, REGULATION)
    await asyncio.wait_for(bus.drain(), timeout=5)

    assert len(received) == 1
    assert received[0].regulation.ref == "GDPR Article 32"
    assert received[0].event_id == "evt_1"


async def test_bare_regulation_payload_is_accepted(bus):
    received = []

    async def handler(event):
        received.append(event)

    bus.subscribe("g", [topics.REGULATION_UPDATED], handler, model=RegulationEvent)
    await bus.start()
    await bus.publish(topics.REGULATION_UPDATED, REGULATION["regulation"])
    await asyncio.wait_for(bus.drain(), timeout=5)

    assert received[0].regulation.framework == "GDPR"


async def test_failed_handler_is_redelivered(bus):
    calls = []

    async def handler(event):
        calls.append(event)
        if len(calls) < 3:
            raise TransientError("try again")

    bus.subscribe("g", [topics.SPEC_UPDATED], handler)
    await bus.start()
    await bus.publish(topics.SPEC_UPDATED, {"n": 1})
    await asyncio.wait_for(bus.drain(), timeout=5)

    assert len(calls) == 3
    assert bus.dead_letters == []


async def test_poison_message_is_dead_lettered_after_max_deliveries(bus):
    calls = []

    async def handler(event):
        calls.append(event)
        raise RuntimeError("always broken")

    bus.subscribe("g", [topics.SPEC_UPDATED], handler)
    await bus.start()
    await bus.publish(topics.SPEC_UPDATED, {"n": 1})
    await asyncio.wait_for(bus.drain(), timeout=5)

    assert len(calls) == bus.max_deliveries == 3
    assert [t for t, _ in bus.dead_letters] == ["spec.updated.dead"]


async def test_undecodable_message_does_not_stop_the_consumer(bus):
    received = []

    async def handler(event):
        received.append(event.regulation.ref)

    bus.subscribe("g", [topics.REGULATION_NEW], handler, model=RegulationEvent)
    await bus.start()
    await bus.publish(topics.REGULATION_NEW, {"regulation": {"framework": "GDPR"}})
    await bus.publish(topics.REGULATION_NEW, REGULATION)
    await asyncio.wait_for(bus.drain(), timeout=5)

    assert received == ["GDPR Article 32"]
    assert len(bus.dead_letters) == 1


async def test_non_retryable_error_is_dead_lettered_immediately(bus):
    calls = []

    async def handler(event):
        calls.append(event)
        raise NotFoundError("SpecVersion", "x")

    bus.subscribe("g", [topics.SPEC_PR_REQUESTED], handler)
    await bus.start()
    await bus.publish(topics.SPEC_PR_REQUESTED, {"n": 1})
    await asyncio.wait_for(bus.drain(), timeout=5)

    assert len(calls) == 1
    assert len(bus.dead_letters) == 1


async def test_each_group_gets_its_own_copy(bus):
    seen = {"a": 0, "b": 0}

    async def handler_a(event):
        seen["a"] += 1

    async def handler_b(event):
        seen["b"] += 1

    bus.subscribe("group-a", [topics.SPEC_UPDATED], handler_a)
    bus.subscribe("group-b", [topics.SPEC_UPDATED, topics.SPEC_PR_CREATED], handler_b)
    await bus.start()
    await bus.publish(topics.SPEC_UPDATED, {})
    await bus.publish(topics.SPEC_PR_CREATED, {})
    await asyncio.wait_for(bus.drain(), timeout=5)

    assert seen == {"a": 1, "b": 2}


@pytest.mark.parametrize("raw", [b"not json", "[1, 2]", '"text"'])
async def test_dispatch_rejects_undecodable_payloads(raw):
    async def handler(event):
        raise AssertionError("must not be called")

    outcome = await dispatch_message(Subscription("g", ("t",), handler), "t", "1-0", raw)
    assert outcome is DispatchOutcome.DEAD


async def test_dispatch_decodes_json_bytes():
    received = []

    async def handler(event):
        received.append(event)

    outcome = await dispatch_message(Subscription("g", ("t",), handler), "t", "1-0", b'{"a": 1}')
    assert outcome is DispatchOutcome.ACK
    assert received == [{"a": 1}]


# ---------------------------------------------------------------------------
# Redis Streams bus against a recording double of the stream commands
# ---------------------------------------------------------------------------


class RecordingStreams:
    def __init__(self, claimed=None, deliveries=1):
        self.added: list[tuple[str, dict]] = []
        self.acked: list[tuple[str, str, str]] = []
        self.claimed = claimed or []
        self.deliveries = deliveries

    async def xadd(self, stream, fields):
        self.added.append((stream, fields))
        return f"{len(self.added)}-0"

    async def xack(self, stream, group, message_id):
        self.acked.append((stream, group, message_id))
        return 1

    async def xautoclaim(self, stream, group, consumer, min_idle_time, start_id="0-0", count=None):
        claimed, self.claimed = self.claimed, []
        return ["0-0", claimed, []]

    async def xpending_range(self, stream, group, min, max, count):
        return [{"message_id": min, "consumer": "c", "time_since_delivered": 1, "times_delivered": self.deliveries}]


def _redis_bus(redis, handler, model=None):
    bus = RedisStreamBus(redis, consumer_name="test", max_deliveries=5, claim_idle_ms=10, block_ms=10)
    sub = bus.subscribe("g", [topics.REGULATION_NEW], handler, model=model)
    return bus, sub


async def test_redis_publish_writes_envelope():
    redis = RecordingStreams()
    bus, _ = _redis_bus(redis, None)

    message_id = await bus.publish(topics.SPEC_UPDATED, {"workspaceId": "ws"}, key="ws")

    assert message_id == "1-0"
    stream, fields = redis.added[0]
    assert stream == topics.SPEC_UPDATED
    assert fields["key"] == "ws"
    assert json.loads(fields["data"])["workspaceId"] == "ws"


async def test_redis_ack_only_on_success():
    redis = RecordingStreams()
    outcomes = [TransientError("later"), None]

    async def handler(event):
        error = outcomes.pop(0)
        if error:
            raise error

    bus, sub = _redis_bus(redis, handler)
    fields = {"data": json.dumps(REGULATION)}

    await bus._handle(sub, topics.REGULATION_NEW, "1-0", fields)
    assert redis.acked == []

    await bus._handle(sub, topics.REGULATION_NEW, "1-0", fields)
    assert redis.acked == [(topics.REGULATION_NEW, "g", "1-0")]


async def test_redis_undecodable_message_goes_to_dead_stream():
    redis = RecordingStreams()

    async def handler(event):
        raise AssertionError("must not be called")

    bus, sub = _redis_bus(redis, handler, model=RegulationEvent)
    await bus._handle(sub, topics.REGULATION_NEW, "7-0", {"data": "{not json"})

    assert redis.added[0][0] == "regulation.new.dead"
    assert redis.added[0][1]["original_id"] == "7-0"
    assert redis.acked == [(topics.REGULATION_NEW, "g", "7-0")]


async def test_redis_reclaim_retries_pending_messages():
    redis = RecordingStreams(claimed=[("3-0", {"data": json.dumps(REGULATION)})], deliveries=2)
    received = []

    async def handler(event):
        received.append(event)

    bus, sub = _redis_bus(redis, handler)
    await bus._reclaim(sub)

    assert len(received) == 1
    assert redis.acked == [(topics.REGULATION_NEW, "g", "3-0")]


async def test_redis_reclaim_dead_letters_exhausted_messages():
    redis = RecordingStreams(claimed=[("3-0", {"data": json.dumps(REGULATION)})], deliveries=6)
    received = []

    async def handler(event):
        received.append(event)

    bus, sub = _redis_bus(redis, handler)
    await bus._reclaim(sub)

    assert received == []
    assert redis.added[0][0] == "regulation.new.dead"
    assert redis.acked == [(topics.REGULATION_NEW, "g", "3-0")]
