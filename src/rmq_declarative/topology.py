"""Declarative topology setup: exchanges, queues and bindings.

Every call is a single awaited round-trip on the channel. Broker rejections
surface as :class:`~rmq_declarative.errors.TopologyError` and are not
retried. Disabled declarations issue no channel call at all.
"""

from collections.abc import Iterable

from loguru import logger

from rmq_declarative.channel import Channel
from rmq_declarative.models import AutoDeclareExchange, AutoDeclareQueue, BindingSpec


class TopologyDeclarator:
    """Issues declare and bind calls for one channel."""

    def __init__(self, channel: Channel):
        self._channel = channel

    async def declare_exchange(self, name: str, declare: AutoDeclareExchange) -> bool:
        """Declare ``name`` if auto-declaration is enabled.

        :return: True if a declaration was issued.
        """
        if not declare.enabled:
            logger.debug("Exchange auto-declare disabled", exchange=name)
            return False

        logger.info(f"Declaring exchange '{name}' of type {declare.kind.value}")
        await self._channel.exchange_declare(
            name, declare.kind, durable=declare.durable, auto_delete=declare.auto_delete
        )
        return True

    async def declare_queue(self, name: str, declare: AutoDeclareQueue) -> bool:
        """Declare ``name`` if auto-declaration is enabled.

        :return: True if a declaration was issued.
        """
        if not declare.enabled:
            logger.debug("Queue auto-declare disabled", queue=name)
            return False

        logger.info(f"Declaring queue '{name}'")
        await self._channel.queue_declare(
            name,
            durable=declare.durable,
            exclusive=declare.exclusive,
            auto_delete=declare.auto_delete,
        )
        return True

    async def bind(self, queue_name: str, exchange_name: str, routing_key: str) -> None:
        logger.info(f"Binding {exchange_name}({routing_key}) -> '{queue_name}'")
        await self._channel.queue_bind(queue_name, exchange_name, routing_key)

    async def bind_all(self, queue_name: str, bindings: Iterable[BindingSpec]) -> int:
        """Bind ``queue_name`` according to ``bindings``, in order.

        One bind per listed routing key; a binding without routing keys gets a
        single bind with the empty key. Duplicates are not filtered.

        :return: Number of bind calls issued.
        """
        count = 0
        for binding in bindings:
            for routing_key in binding.routing_keys or ("",):
                await self.bind(queue_name, binding.exchange_name, routing_key)
                count += 1
        return count
