"""Channel contract and its aio-pika implementation.

The builders and the delivery pipeline only talk to :class:`Channel`. The
contract mirrors the AMQP methods the client needs: exchange/queue
declaration, binding, qos, consume/cancel, ack/nack and publish.

Setup calls (declare, bind, qos, consume) are issued sequentially by the
builders before consumption starts. After that, ack/nack calls come from
per-delivery tasks running on the same event loop as the channel.
"""

import abc
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import partial

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractIncomingMessage,
    AbstractQueue,
)
from loguru import logger

from rmq_declarative.delivery import Delivery, MessageProperties
from rmq_declarative.errors import PublishError, TopologyError

DeliveryCallback = Callable[[Delivery], None]


class Channel(abc.ABC):
    """AMQP channel as seen by the declarative client."""

    @abc.abstractmethod
    async def exchange_declare(
        self, name: str, kind: ExchangeType | str, durable: bool, auto_delete: bool
    ) -> None:
        pass

    @abc.abstractmethod
    async def queue_declare(
        self, name: str, durable: bool, exclusive: bool, auto_delete: bool
    ) -> None:
        pass

    @abc.abstractmethod
    async def queue_bind(self, queue_name: str, exchange_name: str, routing_key: str) -> None:
        pass

    @abc.abstractmethod
    async def basic_qos(self, prefetch_count: int) -> None:
        pass

    @abc.abstractmethod
    async def basic_consume(self, queue_name: str, callback: DeliveryCallback) -> str:
        """Start consuming in manual-acknowledgement mode.

        ``callback`` is invoked once per delivery and must not block.

        :return: The consumer tag.
        """
        pass

    @abc.abstractmethod
    async def basic_cancel(self, consumer_tag: str) -> None:
        pass

    @abc.abstractmethod
    async def basic_ack(self, delivery_tag: int) -> bool:
        pass

    @abc.abstractmethod
    async def basic_nack(self, delivery_tag: int, requeue: bool) -> bool:
        pass

    @abc.abstractmethod
    async def basic_publish(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        properties: MessageProperties | None = None,
    ) -> None:
        pass

    @abc.abstractmethod
    async def close(self) -> None:
        pass


@contextmanager
def _topology_errors(action: str) -> Iterator[None]:
    try:
        yield
    except aio_pika.exceptions.AMQPError as e:
        logger.error(f"Failed to {action}: {e}")
        raise TopologyError(f"Failed to {action}: {e}") from e


def _to_delivery(message: AbstractIncomingMessage) -> Delivery:
    return Delivery(
        body=message.body,
        routing_key=message.routing_key or "",
        delivery_tag=message.delivery_tag or 0,
        exchange=message.exchange or "",
        redelivered=message.redelivered or False,
        properties=MessageProperties(
            headers=dict(message.headers) if message.headers else {},
            content_type=message.content_type,
            content_encoding=message.content_encoding,
            correlation_id=message.correlation_id,
            message_id=message.message_id,
            reply_to=message.reply_to,
            delivery_mode=int(message.delivery_mode) if message.delivery_mode else None,
            priority=message.priority,
            timestamp=message.timestamp,
            type=message.type,
            app_id=message.app_id,
            expiration=message.expiration,
        ),
    )


class AioPikaChannel(Channel):
    """:class:`Channel` backed by an open aio-pika channel.

    Incoming messages are tracked by delivery tag until acknowledged or
    rejected, so callers only ever deal with tags.
    """

    def __init__(self, channel: AbstractChannel):
        self._channel = channel
        self._pending: dict[int, AbstractIncomingMessage] = {}
        self._consumers: dict[str, AbstractQueue] = {}

    @property
    def pending_count(self) -> int:
        """Number of delivered messages not yet acknowledged or rejected."""
        return len(self._pending)

    @property
    def is_closed(self) -> bool:
        return self._channel.is_closed

    async def exchange_declare(
        self, name: str, kind: ExchangeType | str, durable: bool, auto_delete: bool
    ) -> None:
        with _topology_errors(f"declare exchange '{name}'"):
            await self._channel.declare_exchange(
                name,
                ExchangeType(kind),
                durable=durable,
                auto_delete=auto_delete,
            )

    async def queue_declare(
        self, name: str, durable: bool, exclusive: bool, auto_delete: bool
    ) -> None:
        with _topology_errors(f"declare queue '{name}'"):
            await self._channel.declare_queue(
                name,
                durable=durable,
                exclusive=exclusive,
                auto_delete=auto_delete,
            )

    async def queue_bind(self, queue_name: str, exchange_name: str, routing_key: str) -> None:
        with _topology_errors(f"bind '{queue_name}' to '{exchange_name}'"):
            queue = await self._channel.get_queue(queue_name, ensure=False)
            await queue.bind(exchange_name, routing_key=routing_key)

    async def basic_qos(self, prefetch_count: int) -> None:
        with _topology_errors(f"set prefetch count {prefetch_count}"):
            await self._channel.set_qos(prefetch_count=prefetch_count)

    async def basic_consume(self, queue_name: str, callback: DeliveryCallback) -> str:
        with _topology_errors(f"consume from '{queue_name}'"):
            queue = await self._channel.get_queue(queue_name, ensure=False)
            consumer_tag = await queue.consume(
                partial(self._on_message, callback),
                no_ack=False,
            )
        self._consumers[consumer_tag] = queue
        return consumer_tag

    async def _on_message(
        self, callback: DeliveryCallback, message: AbstractIncomingMessage
    ) -> None:
        if message.delivery_tag is None:
            logger.warning("Received message without delivery_tag, ignoring")
            return
        self._pending[message.delivery_tag] = message
        callback(_to_delivery(message))

    async def basic_cancel(self, consumer_tag: str) -> None:
        queue = self._consumers.pop(consumer_tag, None)
        if queue is None:
            logger.debug("Consumer already cancelled", consumer_tag=consumer_tag)
            return
        await queue.cancel(consumer_tag)

    async def basic_ack(self, delivery_tag: int) -> bool:
        message = self._pending.pop(delivery_tag, None)
        if message is None:
            logger.warning("Unknown delivery tag, ack skipped", delivery_tag=delivery_tag)
            return False

        try:
            await message.ack()
            return True
        except Exception as e:
            logger.error(f"Failed to acknowledge message: {e}")
            self._pending[delivery_tag] = message
            raise

    async def basic_nack(self, delivery_tag: int, requeue: bool) -> bool:
        message = self._pending.pop(delivery_tag, None)
        if message is None:
            logger.warning("Unknown delivery tag, nack skipped", delivery_tag=delivery_tag)
            return False

        try:
            await message.nack(requeue=requeue)
            return True
        except Exception as e:
            logger.error(f"Failed to reject message: {e}")
            self._pending[delivery_tag] = message
            raise

    async def basic_publish(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        properties: MessageProperties | None = None,
    ) -> None:
        properties = properties or MessageProperties()
        message = Message(
            body=body,
            headers=properties.headers or {},
            content_type=properties.content_type,
            content_encoding=properties.content_encoding,
            correlation_id=properties.correlation_id,
            message_id=properties.message_id,
            reply_to=properties.reply_to,
            delivery_mode=properties.delivery_mode,
            priority=properties.priority,
            timestamp=properties.timestamp,
            type=properties.type,
            app_id=properties.app_id,
            expiration=properties.expiration,
        )

        try:
            if exchange_name:
                exchange = await self._channel.get_exchange(exchange_name, ensure=False)
            else:
                exchange = self._channel.default_exchange
            await exchange.publish(message, routing_key=routing_key, mandatory=False)
        except aio_pika.exceptions.AMQPError as e:
            raise PublishError(f"AMQP error: {e}") from e

    async def close(self) -> None:
        """Close the underlying channel, dropping tracked deliveries.

        Unacknowledged messages are requeued by the broker when the channel
        closes.
        """
        self._consumers.clear()
        self._pending.clear()
        if not self._channel.is_closed:
            await self._channel.close()


class ChannelFactory:
    """Opens :class:`AioPikaChannel` instances on an already open connection."""

    def __init__(self, connection: AbstractConnection):
        self._connection = connection

    async def create_channel(self) -> AioPikaChannel:
        # No publisher confirms: publishing here is fire-and-forget
        channel = await self._connection.channel(publisher_confirms=False)
        return AioPikaChannel(channel)
