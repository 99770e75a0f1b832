"""Exception hierarchy for the declarative RabbitMQ client.

Setup faults (configuration, topology) propagate to the caller of a builder.
Per-delivery faults never leave the delivery pipeline and have no exception
type here.
"""


class RabbitMQClientError(Exception):
    """Base exception for client errors."""

    pass


class ConfigurationError(RabbitMQClientError):
    """Raised when a producer or consumer configuration is invalid or incomplete."""

    pass


class TopologyError(RabbitMQClientError):
    """Raised when the broker rejects a declare, bind, qos or consume call."""

    pass


class PublishError(RabbitMQClientError):
    """Raised when publishing a message fails."""

    pass
