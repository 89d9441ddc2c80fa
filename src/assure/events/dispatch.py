"""Per-message decode and dispatch shared by every bus implementation.

A handler error never escapes: it is logged with the message context and
turned into a dispatch outcome the consumer loop acts on.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from assure.errors.exceptions import is_retryable
from assure.logging_config import bind_event_context, clear_context

logger = logging.getLogger(__name__)

HandlerFn = Callable[[Any], Awaitable[None]]


class DispatchOutcome(StrEnum):
    ACK = "ack"        # handled; remove from the stream
    RETRY = "retry"    # leave pending for redelivery
    DEAD = "dead"      # undecodable or permanently rejected; dead-letter it


@dataclass
class Subscription:
    """A handler bound to topics under a consumer group.

    When ``model`` is set, the decoded payload is validated into that pydantic
    model before the handler is called.
    """

    group: str
    topics: tuple[str, ...]
    handler: HandlerFn
    model: type[BaseModel] | None = None
    name: str = ""


def decode_payload(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError(f"expected a JSON object, got {type(value).__name__}")
    return value


async def dispatch_message(subscription: Subscription, topic: str, message_id: str, raw: Any) -> DispatchOutcome:
    bind_event_context(topic, message_id)
    try:
        try:
            payload = decode_payload(raw)
            event = subscription.model.model_validate(payload) if subscription.model else payload
        except (ValueError, PydanticValidationError) as exc:
            logger.error("Undecodable message on %s (%s): %s", topic, message_id, exc)
            return DispatchOutcome.DEAD

        try:
            await subscription.handler(event)
        except Exception as exc:
            if not is_retryable(exc):
                logger.error("Handler %s rejected message %s on %s: %s", subscription.name, message_id, topic, exc)
                return DispatchOutcome.DEAD
            logger.exception("Handler %s failed on %s (%s)", subscription.name, topic, message_id)
            return DispatchOutcome.RETRY
        return DispatchOutcome.ACK
    finally:
        clear_context()
