"""Pydantic V2 models for producer and consumer configuration.

Models are strict and immutable: every field must be present once the
layered defaults from ``rmq_declarative.config`` have been merged in. Keys
are camelCase on the wire and snake_case in Python.
"""

import re
from datetime import timedelta
from typing import Annotated, Any

from aio_pika import ExchangeType
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]+)\s*$")

# Unit spellings accepted by HOCON durations
_DURATION_UNITS: dict[str, float] = {
    name: factor
    for factor, names in (
        (1e-9, ("ns", "nano", "nanos", "nanosecond", "nanoseconds")),
        (1e-6, ("us", "micro", "micros", "microsecond", "microseconds")),
        (1e-3, ("ms", "milli", "millis", "millisecond", "milliseconds")),
        (1.0, ("s", "second", "seconds")),
        (60.0, ("m", "minute", "minutes")),
        (3600.0, ("h", "hour", "hours")),
        (86400.0, ("d", "day", "days")),
    )
    for name in names
}


def parse_duration(value: Any) -> Any:
    """Convert HOCON-style duration strings ("500ms", "2 seconds") to timedelta.

    Anything else (timedelta, numbers of seconds, ISO-8601 strings) is left
    for pydantic's own timedelta parsing.
    """
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match:
            amount, unit = match.groups()
            factor = _DURATION_UNITS.get(unit.lower())
            if factor is None:
                raise ValueError(f"Unknown duration unit '{unit}' in {value!r}")
            return timedelta(seconds=float(amount) * factor)
    return value


def _positive(value: timedelta) -> timedelta:
    if value <= timedelta(0):
        raise ValueError("Duration must be positive")
    return value


Duration = Annotated[timedelta, BeforeValidator(parse_duration), AfterValidator(_positive)]


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class AutoDeclareExchange(_ConfigModel):
    """Exchange auto-declaration settings."""

    enabled: bool
    kind: ExchangeType = Field(..., alias="type", description="Exchange type")
    durable: bool
    auto_delete: bool


class AutoDeclareQueue(_ConfigModel):
    """Queue auto-declaration settings."""

    enabled: bool
    durable: bool
    exclusive: bool
    auto_delete: bool


class BindExchange(_ConfigModel):
    name: str = Field(..., description="Exchange the queue is bound to")
    declare: AutoDeclareExchange


class BindingSpec(_ConfigModel):
    """Binding of the consumer's queue to one exchange.

    An empty ``routing_keys`` means a single binding with the empty routing
    key, which is what fanout exchanges expect.
    """

    exchange: BindExchange
    routing_keys: tuple[str, ...]

    @property
    def exchange_name(self) -> str:
        return self.exchange.name

    @property
    def exchange_auto_declare(self) -> AutoDeclareExchange:
        return self.exchange.declare


class ProducerConfig(_ConfigModel):
    """Resolved producer configuration."""

    name: str = Field(..., description="Label used for logging and metrics")
    exchange_name: str = Field(..., description="Exchange the producer publishes to")
    declare: AutoDeclareExchange


class ConsumerConfig(_ConfigModel):
    """Resolved consumer configuration."""

    name: str = Field(..., description="Label used for logging and metrics")
    queue_name: str = Field(..., min_length=1, description="Queue to consume from")
    process_timeout: Duration = Field(..., description="Deadline for one delivery")
    prefetch_count: int = Field(
        ...,
        gt=0,
        le=65535,
        description="Maximum unacknowledged deliveries pushed by the broker",
    )
    declare: AutoDeclareQueue
    bindings: tuple[BindingSpec, ...]

    @property
    def process_timeout_seconds(self) -> float:
        return self.process_timeout.total_seconds()
