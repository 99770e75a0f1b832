"""Producer builder and publishing handle."""

from loguru import logger

from rmq_declarative.channel import Channel
from rmq_declarative.delivery import MessageProperties
from rmq_declarative.errors import PublishError
from rmq_declarative.metrics import PRODUCER_FAILED, PRODUCER_SENT
from rmq_declarative.models import ProducerConfig
from rmq_declarative.topology import TopologyDeclarator


class ProducerHandle:
    """Publishes to one exchange over one channel.

    Publishing is fire-and-forget; there are no publisher confirms.
    """

    def __init__(self, name: str, exchange_name: str, channel: Channel):
        self._name = name
        self._exchange_name = exchange_name
        self._channel = channel

    @property
    def name(self) -> str:
        return self._name

    @property
    def exchange_name(self) -> str:
        return self._exchange_name

    @property
    def channel(self) -> Channel:
        return self._channel

    async def send(
        self,
        routing_key: str,
        body: bytes,
        properties: MessageProperties | None = None,
    ) -> None:
        """Publish ``body`` to the producer's exchange.

        Raises:
            PublishError: If the channel refuses the message.
        """
        try:
            await self._channel.basic_publish(
                self._exchange_name, routing_key, body, properties
            )
        except PublishError as e:
            self._record_failure(routing_key, e)
            raise
        except Exception as e:
            self._record_failure(routing_key, e)
            raise PublishError(f"Failed to publish message: {e}") from e

        PRODUCER_SENT.labels(self._name).inc()
        logger.debug(
            "Message sent",
            producer=self._name,
            exchange=self._exchange_name,
            routing_key=routing_key,
        )

    def _record_failure(self, routing_key: str, error: Exception) -> None:
        PRODUCER_FAILED.labels(self._name).inc()
        logger.error(
            "Failed to send message",
            producer=self._name,
            exchange=self._exchange_name,
            routing_key=routing_key,
            error=str(error),
        )


async def build_producer(config: ProducerConfig, channel: Channel) -> ProducerHandle:
    """Declare the producer's exchange if enabled and return the handle.

    Raises:
        TopologyError: If the exchange declaration is rejected.
    """
    await TopologyDeclarator(channel).declare_exchange(config.exchange_name, config.declare)

    logger.info(
        "Producer ready",
        producer=config.name,
        exchange=config.exchange_name,
    )
    return ProducerHandle(config.name, config.exchange_name, channel)
