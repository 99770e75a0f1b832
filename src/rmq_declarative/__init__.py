"""Declarative RabbitMQ producers and consumers on top of aio-pika.

Public API:
    - load_producer_config, load_consumer_config: mapping -> validated config
    - build_producer, build_consumer: config + channel -> live handle
    - ClientFactory: mapping -> handle on a freshly opened channel
    - Delivery, MessageProperties, Outcome: delivery data types
"""

from rmq_declarative.channel import AioPikaChannel, Channel, ChannelFactory
from rmq_declarative.config import (
    Settings,
    get_settings,
    load_consumer_config,
    load_producer_config,
    merge,
)
from rmq_declarative.consumer import ConsumerHandle, build_consumer
from rmq_declarative.delivery import Delivery, MessageProperties, Outcome
from rmq_declarative.errors import (
    ConfigurationError,
    PublishError,
    RabbitMQClientError,
    TopologyError,
)
from rmq_declarative.factory import ClientFactory
from rmq_declarative.log import setup_logging
from rmq_declarative.models import (
    AutoDeclareExchange,
    AutoDeclareQueue,
    BindExchange,
    BindingSpec,
    ConsumerConfig,
    ProducerConfig,
)
from rmq_declarative.pipeline import DeliveryPipeline
from rmq_declarative.producer import ProducerHandle, build_producer
from rmq_declarative.topology import TopologyDeclarator

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    "setup_logging",
    "merge",
    "load_producer_config",
    "load_consumer_config",
    "AutoDeclareExchange",
    "AutoDeclareQueue",
    "BindExchange",
    "BindingSpec",
    "ConsumerConfig",
    "ProducerConfig",
    # Channel
    "Channel",
    "AioPikaChannel",
    "ChannelFactory",
    # Builders and handles
    "TopologyDeclarator",
    "DeliveryPipeline",
    "build_producer",
    "build_consumer",
    "ProducerHandle",
    "ConsumerHandle",
    "ClientFactory",
    # Data types
    "Delivery",
    "MessageProperties",
    "Outcome",
    # Errors
    "RabbitMQClientError",
    "ConfigurationError",
    "TopologyError",
    "PublishError",
]
