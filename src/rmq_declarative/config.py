"""Configuration module using Pydantic Settings v2.

Provides process settings loaded from environment variables (with .env
support) and the layered-default resolution that turns a raw producer or
consumer mapping into a validated, immutable config model.

Resolution order, highest priority first:

1. the explicit mapping passed by the caller;
2. the ``*_defaults`` layers from :class:`Settings` (environment, JSON);
3. the built-in layers defined in this module.

Bindings are resolved individually against the binding-defaults layer.
"""

from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from rmq_declarative.errors import ConfigurationError
from rmq_declarative.models import ConsumerConfig, ProducerConfig

_EXCHANGE_DECLARE_DEFAULTS: dict[str, Any] = {
    "enabled": False,
    "type": "direct",
    "durable": True,
    "autoDelete": False,
}

PRODUCER_DEFAULTS: dict[str, Any] = {
    "name": "Default",
    "declare": _EXCHANGE_DECLARE_DEFAULTS,
}

CONSUMER_DEFAULTS: dict[str, Any] = {
    "name": "Default",
    "prefetchCount": 100,
    "processTimeout": "10s",
    "declare": {
        "enabled": False,
        "durable": True,
        "exclusive": False,
        "autoDelete": False,
    },
    "bindings": [],
}

CONSUMER_BINDING_DEFAULTS: dict[str, Any] = {
    "routingKeys": [],
    "exchange": {
        "declare": _EXCHANGE_DECLARE_DEFAULTS,
    },
}


class Settings(BaseSettings):
    """Process-level configuration with validation.

    All settings are loaded from environment variables with optional .env
    file support. The ``*_defaults`` fields take JSON objects and override
    the built-in default layers key by key.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format (json for production, text for development)",
    )
    log_file: str | None = Field(
        default=None,
        description="Path to log file. If None, logs only to stdout.",
    )
    log_rotation: str = Field(
        default="500 MB",
        description="Log rotation condition (size, time, etc.)",
    )
    log_retention: str = Field(
        default="10 days",
        description="Log retention duration",
    )
    log_intercept_stdlib: bool = Field(
        default=True,
        description="Route standard library logging (aio-pika, aiormq) into Loguru",
    )

    # Default layers
    producer_defaults: dict[str, Any] = Field(
        default_factory=dict,
        description="Overrides for the built-in producer defaults",
    )
    consumer_defaults: dict[str, Any] = Field(
        default_factory=dict,
        description="Overrides for the built-in consumer defaults",
    )
    consumer_binding_defaults: dict[str, Any] = Field(
        default_factory=dict,
        description="Overrides for the built-in consumer binding defaults",
    )

    @property
    def resolved_producer_defaults(self) -> dict[str, Any]:
        return merge(self.producer_defaults, PRODUCER_DEFAULTS)

    @property
    def resolved_consumer_defaults(self) -> dict[str, Any]:
        return merge(self.consumer_defaults, CONSUMER_DEFAULTS)

    @property
    def resolved_consumer_binding_defaults(self) -> dict[str, Any]:
        return merge(self.consumer_binding_defaults, CONSUMER_BINDING_DEFAULTS)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


def merge(layer: Mapping[str, Any], defaults: Mapping[str, Any]) -> dict[str, Any]:
    """Resolve ``layer`` against ``defaults``.

    Keys in ``layer`` win. Nested mappings are merged recursively, any other
    value (sequences included) replaces the default outright. Neither input is
    mutated.
    """
    resolved: dict[str, Any] = {}
    for key, default in defaults.items():
        resolved[key] = _copy(default)
    for key, value in layer.items():
        default = resolved.get(key)
        if isinstance(value, Mapping) and isinstance(default, Mapping):
            resolved[key] = merge(value, default)
        else:
            resolved[key] = _copy(value)
    return resolved


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _copy(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _copy(item) for key, item in value.items()}
    if _is_sequence(value):
        return [_copy(item) for item in value]
    return value


def load_producer_config(
    mapping: Mapping[str, Any], settings: Settings | None = None
) -> ProducerConfig:
    """Build a :class:`ProducerConfig` from a raw mapping and the default layers.

    Raises:
        ConfigurationError: If a required field is missing or a value is invalid.
    """
    settings = settings or get_settings()
    resolved = merge(mapping, settings.resolved_producer_defaults)
    try:
        return ProducerConfig.model_validate(resolved)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid producer configuration: {e}") from e


def load_consumer_config(
    mapping: Mapping[str, Any], settings: Settings | None = None
) -> ConsumerConfig:
    """Build a :class:`ConsumerConfig` from a raw mapping and the default layers.

    Each entry of ``bindings`` is resolved against the binding-defaults layer
    before validation.

    Raises:
        ConfigurationError: If a required field is missing or a value is invalid.
    """
    settings = settings or get_settings()
    resolved = merge(mapping, settings.resolved_consumer_defaults)

    bindings = resolved.get("bindings")
    if not _is_sequence(bindings):
        raise ConfigurationError(
            f"Invalid consumer configuration: 'bindings' must be a sequence, got {type(bindings).__name__}"
        )
    binding_defaults = settings.resolved_consumer_binding_defaults
    resolved["bindings"] = [
        merge(binding, binding_defaults) if isinstance(binding, Mapping) else binding
        for binding in bindings
    ]

    try:
        return ConsumerConfig.model_validate(resolved)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid consumer configuration: {e}") from e
