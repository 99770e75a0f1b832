"""Inbound delivery representation and processing outcomes."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Outcome(str, Enum):
    """Result of processing one delivery, mapped onto an ack or nack."""

    ACKNOWLEDGED = "acknowledged"
    REJECTED_REQUEUE = "rejected_requeue"
    # Never produced by the pipeline; resolved as nack without requeue.
    REJECTED_NO_REQUEUE = "rejected_no_requeue"


@dataclass(frozen=True)
class MessageProperties:
    """AMQP basic properties of a message."""

    headers: dict[str, Any] = field(default_factory=dict)
    content_type: str | None = None
    content_encoding: str | None = None
    correlation_id: str | None = None
    message_id: str | None = None
    reply_to: str | None = None
    delivery_mode: int | None = None
    priority: int | None = None
    timestamp: datetime | None = None
    type: str | None = None
    app_id: str | None = None
    expiration: float | None = None  # seconds


@dataclass(frozen=True)
class Delivery:
    """A message delivered by the broker, as handed to the processing function.

    ``delivery_tag`` is the broker's handle for acknowledging this message and
    is only meaningful on the channel that delivered it.
    """

    body: bytes
    routing_key: str
    delivery_tag: int
    exchange: str = ""
    redelivered: bool = False
    properties: MessageProperties = field(default_factory=MessageProperties)
