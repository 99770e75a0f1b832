"""Shared fixtures: a recording in-memory channel and config helpers."""

import itertools
from typing import Any

import pytest

from rmq_declarative.channel import Channel, DeliveryCallback
from rmq_declarative.config import Settings, load_consumer_config, load_producer_config
from rmq_declarative.delivery import Delivery, MessageProperties


class RecordingChannel(Channel):
    """In-memory Channel that records every protocol call in order.

    ``fail_on`` maps a method name to the exception that method raises.
    """

    def __init__(self, fail_on: dict[str, Exception] | None = None):
        self.calls: list[tuple[Any, ...]] = []
        self.fail_on = fail_on or {}
        self.callbacks: dict[str, DeliveryCallback] = {}
        self.closed = False
        self._tags = itertools.count(1)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        if method in self.fail_on:
            raise self.fail_on[method]

    @property
    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]

    @property
    def acks(self) -> list[int]:
        return [call[1] for call in self.calls if call[0] == "basic_ack"]

    @property
    def nacks(self) -> list[tuple[int, bool]]:
        return [(call[1], call[2]) for call in self.calls if call[0] == "basic_nack"]

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [call[1:] for call in self.calls if call[0] == method]

    def deliver(self, delivery: Delivery, consumer_tag: str | None = None) -> None:
        """Push a delivery to a registered consumer, like the broker would."""
        if consumer_tag is None:
            consumer_tag = next(iter(self.callbacks))
        self.callbacks[consumer_tag](delivery)

    async def exchange_declare(self, name, kind, durable, auto_delete):
        self._record("exchange_declare", name, getattr(kind, "value", kind), durable, auto_delete)

    async def queue_declare(self, name, durable, exclusive, auto_delete):
        self._record("queue_declare", name, durable, exclusive, auto_delete)

    async def queue_bind(self, queue_name, exchange_name, routing_key):
        self._record("queue_bind", queue_name, exchange_name, routing_key)

    async def basic_qos(self, prefetch_count):
        self._record("basic_qos", prefetch_count)

    async def basic_consume(self, queue_name, callback):
        self._record("basic_consume", queue_name)
        consumer_tag = f"ctag-{next(self._tags)}"
        self.callbacks[consumer_tag] = callback
        return consumer_tag

    async def basic_cancel(self, consumer_tag):
        self._record("basic_cancel", consumer_tag)
        self.callbacks.pop(consumer_tag, None)

    async def basic_ack(self, delivery_tag):
        self._record("basic_ack", delivery_tag)
        return True

    async def basic_nack(self, delivery_tag, requeue):
        self._record("basic_nack", delivery_tag, requeue)
        return True

    async def basic_publish(self, exchange_name, routing_key, body, properties=None):
        self._record("basic_publish", exchange_name, routing_key, body, properties)

    async def close(self):
        self._record("close")
        self.closed = True


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, log_intercept_stdlib=False)


@pytest.fixture
def make_delivery():
    def _make(tag: int, body: bytes = b"payload", routing_key: str = "rk") -> Delivery:
        return Delivery(
            body=body,
            routing_key=routing_key,
            delivery_tag=tag,
            exchange="ex1",
            properties=MessageProperties(content_type="text/plain"),
        )

    return _make


@pytest.fixture
def consumer_config(settings):
    """Build a ConsumerConfig from camelCase overrides of a small base mapping."""

    def _make(**overrides: Any):
        mapping: dict[str, Any] = {
            "name": "test-consumer",
            "queueName": "q1",
            "prefetchCount": 5,
            "processTimeout": "2s",
            "bindings": [{"exchange": {"name": "ex1"}, "routingKeys": []}],
        }
        mapping.update(overrides)
        return load_consumer_config(mapping, settings)

    return _make


@pytest.fixture
def producer_config(settings):
    def _make(**overrides: Any):
        mapping: dict[str, Any] = {"name": "test-producer", "exchangeName": "ex1"}
        mapping.update(overrides)
        return load_producer_config(mapping, settings)

    return _make
