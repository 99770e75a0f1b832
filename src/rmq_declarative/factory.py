"""Producers and consumers built straight from configuration mappings.

Each call resolves the mapping against the default layers, opens a fresh
channel and runs the matching builder. The channel is closed again if the
build fails, so the caller either gets a working handle or an exception.
"""

from collections.abc import Mapping
from concurrent.futures import Executor
from typing import Any

from loguru import logger

from rmq_declarative.channel import Channel, ChannelFactory
from rmq_declarative.config import (
    Settings,
    get_settings,
    load_consumer_config,
    load_producer_config,
)
from rmq_declarative.consumer import ConsumerHandle, build_consumer
from rmq_declarative.pipeline import ProcessFunction
from rmq_declarative.producer import ProducerHandle, build_producer


class ClientFactory:
    """Creates producers and consumers, one channel each."""

    def __init__(self, channel_factory: ChannelFactory, settings: Settings | None = None):
        self._channel_factory = channel_factory
        self._settings = settings or get_settings()

    async def producer_from_config(self, mapping: Mapping[str, Any]) -> ProducerHandle:
        """Create a producer from a raw ``producer`` configuration mapping.

        Raises:
            ConfigurationError: If the configuration is invalid.
            TopologyError: If the exchange declaration is rejected.
        """
        config = load_producer_config(mapping, self._settings)
        channel = await self._channel_factory.create_channel()
        try:
            return await build_producer(config, channel)
        except BaseException:
            await self._close_quietly(channel)
            raise

    async def consumer_from_config(
        self,
        mapping: Mapping[str, Any],
        process: ProcessFunction,
        *,
        executor: Executor | None = None,
    ) -> ConsumerHandle:
        """Create a consumer from a raw ``consumer`` configuration mapping.

        Raises:
            ConfigurationError: If the configuration is invalid.
            TopologyError: If any setup call is rejected.
        """
        config = load_consumer_config(mapping, self._settings)
        channel = await self._channel_factory.create_channel()
        try:
            return await build_consumer(config, channel, process, executor=executor)
        except BaseException:
            await self._close_quietly(channel)
            raise

    @staticmethod
    async def _close_quietly(channel: Channel) -> None:
        try:
            await channel.close()
        except Exception as e:
            logger.warning(f"Error closing channel after failed setup: {e}")
