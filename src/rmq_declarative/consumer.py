"""Consumer builder and subscription handle.

Setup runs in a fixed order on one channel, before any delivery can arrive:

1. declare each binding's exchange (if enabled)
2. declare the queue (if enabled)
3. set the prefetch count
4. bind the queue
5. start consuming with manual acknowledgement

A failure at any step propagates to the caller and no handle is returned.
"""

from concurrent.futures import Executor, ThreadPoolExecutor

from loguru import logger

from rmq_declarative.channel import Channel
from rmq_declarative.models import ConsumerConfig
from rmq_declarative.pipeline import DeliveryPipeline, ProcessFunction, is_async_callable
from rmq_declarative.topology import TopologyDeclarator


class ConsumerHandle:
    """A live subscription. Lasts until cancelled or the channel closes."""

    def __init__(
        self,
        name: str,
        queue_name: str,
        channel: Channel,
        consumer_tag: str,
        pipeline: DeliveryPipeline,
        executor: Executor | None = None,
    ):
        self._name = name
        self._queue_name = queue_name
        self._channel = channel
        self._consumer_tag = consumer_tag
        self._pipeline = pipeline
        # Only set when the executor was created for this consumer
        self._executor = executor
        self._cancelled = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def queue_name(self) -> str:
        return self._queue_name

    @property
    def consumer_tag(self) -> str:
        return self._consumer_tag

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def pipeline(self) -> DeliveryPipeline:
        return self._pipeline

    @property
    def in_flight(self) -> int:
        return self._pipeline.in_flight

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    async def bind_to(self, exchange_name: str, routing_key: str = "") -> None:
        """Add a binding of the consumer's queue at runtime."""
        await TopologyDeclarator(self._channel).bind(self._queue_name, exchange_name, routing_key)

    async def cancel(self) -> None:
        """Stop consuming.

        The broker stops delivering before the pipeline is closed. Deliveries
        still being processed are not awaited; anything left unacknowledged is
        requeued by the broker once the channel closes.
        """
        if self._cancelled:
            return
        self._cancelled = True

        try:
            await self._channel.basic_cancel(self._consumer_tag)
        finally:
            self._pipeline.close()
            if self._executor is not None:
                self._executor.shutdown(wait=False)

        logger.info(
            "Consumer cancelled",
            consumer=self._name,
            queue=self._queue_name,
            in_flight=self._pipeline.in_flight,
        )

    async def __aenter__(self) -> "ConsumerHandle":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cancel()


async def build_consumer(
    config: ConsumerConfig,
    channel: Channel,
    process: ProcessFunction,
    *,
    executor: Executor | None = None,
) -> ConsumerHandle:
    """Set up topology on ``channel`` and start consuming ``config.queue_name``.

    ``process`` receives each :class:`~rmq_declarative.delivery.Delivery` and
    returns (or resolves to) True to acknowledge it, False to requeue it.
    Plain callables run on ``executor``; when none is given, a thread pool with
    ``prefetch_count`` workers is created and shut down on cancel.

    Raises:
        TopologyError: If any declare, qos, bind or consume call is rejected.
    """
    declarator = TopologyDeclarator(channel)

    for binding in config.bindings:
        await declarator.declare_exchange(binding.exchange_name, binding.exchange_auto_declare)

    await declarator.declare_queue(config.queue_name, config.declare)

    await channel.basic_qos(config.prefetch_count)

    await declarator.bind_all(config.queue_name, config.bindings)

    owned_executor = None
    if executor is None and not is_async_callable(process):
        owned_executor = executor = ThreadPoolExecutor(
            max_workers=config.prefetch_count,
            thread_name_prefix=f"rmq-{config.name}",
        )

    pipeline = DeliveryPipeline(
        config.name,
        channel,
        process,
        process_timeout=config.process_timeout_seconds,
        executor=executor,
    )

    try:
        consumer_tag = await channel.basic_consume(config.queue_name, pipeline.on_delivery)
    except BaseException:
        if owned_executor is not None:
            owned_executor.shutdown(wait=False)
        raise

    logger.info(
        "Consumer started",
        consumer=config.name,
        queue=config.queue_name,
        prefetch_count=config.prefetch_count,
        process_timeout=config.process_timeout_seconds,
        consumer_tag=consumer_tag,
    )
    return ConsumerHandle(
        config.name,
        config.queue_name,
        channel,
        consumer_tag,
        pipeline,
        executor=owned_executor,
    )
