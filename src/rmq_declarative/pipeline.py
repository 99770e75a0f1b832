"""Delivery pipeline: runs the processing function for each delivery.

Every delivery moves through::

    Received -> Processing -> TimedOut | Completed | Faulted -> Resolved

- Processing races the user function against ``process_timeout``.
- A timed-out invocation is abandoned, not cancelled: it keeps running and
  whatever it eventually returns or raises is discarded. A plain callable
  still queued for an executor worker at the deadline is never started.
- Any exception from the user function, raised synchronously or from the
  awaitable it returns, is caught at a single fault boundary.
- ``True`` is acknowledged. ``False``, a fault and a timeout all become a
  nack with requeue. There is no redelivery cap, so a message that always
  fails is redelivered indefinitely unless the broker dead-letters it.

Exactly one ack or nack is sent per delivery tag.

Async callables run on the event loop. Plain callables run on an executor so
that a blocking function cannot stall the loop or escape the deadline; the
executor should have at least ``prefetch_count`` workers, since prefetch is
the only bound on concurrent deliveries.
"""

import asyncio
import concurrent.futures
import functools
import inspect
import time
from collections.abc import Awaitable, Callable
from concurrent.futures import Executor
from typing import Any

from loguru import logger

from rmq_declarative.channel import Channel
from rmq_declarative.delivery import Delivery, Outcome
from rmq_declarative.metrics import (
    CONSUMER_DELIVERIES,
    CONSUMER_FAULTS,
    CONSUMER_IN_FLIGHT,
    CONSUMER_OUTCOMES,
    CONSUMER_PROCESS_SECONDS,
    CONSUMER_TIMEOUTS,
)

ProcessFunction = Callable[[Delivery], bool | Awaitable[bool]]


def is_async_callable(obj: Any) -> bool:
    """Return True if calling ``obj`` produces a coroutine."""
    while isinstance(obj, functools.partial):
        obj = obj.func
    return inspect.iscoroutinefunction(obj) or (
        callable(obj) and inspect.iscoroutinefunction(obj.__call__)
    )


class DeliveryPipeline:
    """Turns deliveries into processing tasks and ack/nack decisions."""

    def __init__(
        self,
        name: str,
        channel: Channel,
        process: ProcessFunction,
        process_timeout: float,
        executor: Executor | None = None,
    ):
        self._name = name
        self._channel = channel
        self._process = process
        self._is_async = is_async_callable(process)
        self._timeout = process_timeout
        self._executor = executor
        self._closed = False

        # Strong references, otherwise the loop may drop running tasks
        self._tasks: set[asyncio.Future] = set()
        self._abandoned: set[asyncio.Future] = set()

    @property
    def in_flight(self) -> int:
        """Deliveries received and not yet resolved."""
        return len(self._tasks)

    @property
    def abandoned(self) -> int:
        """Timed-out invocations that are still running."""
        return len(self._abandoned)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop processing new deliveries. In-flight deliveries are not awaited."""
        self._closed = True

    def on_delivery(self, delivery: Delivery) -> None:
        """Channel callback: schedule handling of ``delivery`` and return at once."""
        CONSUMER_DELIVERIES.labels(self._name).inc()

        if self._closed:
            logger.debug(
                "Pipeline closed, requeueing delivery",
                consumer=self._name,
                delivery_tag=delivery.delivery_tag,
            )
            task = asyncio.ensure_future(self._resolve(delivery, Outcome.REJECTED_REQUEUE))
        else:
            task = asyncio.ensure_future(self._handle(delivery))

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight deliveries to be resolved.

        Abandoned invocations are not waited for.

        :return: True if nothing is left in flight.
        """
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
        return not self._tasks

    async def _handle(self, delivery: Delivery) -> None:
        started = time.monotonic()
        gauge = CONSUMER_IN_FLIGHT.labels(self._name)
        gauge.inc()
        try:
            with logger.contextualize(consumer=self._name, delivery_tag=delivery.delivery_tag):
                outcome = await self._run(delivery)
                await self._resolve(delivery, outcome)
        finally:
            gauge.dec()
            CONSUMER_PROCESS_SECONDS.labels(self._name).observe(time.monotonic() - started)

    def _invoke(
        self, delivery: Delivery
    ) -> tuple[asyncio.Future, concurrent.futures.Future | None]:
        """Start ``process`` for ``delivery``.

        :return: The future to race against the deadline, and for plain
            callables the executor job, which can be cancelled until a worker
            picks it up.
        """
        if not self._is_async:
            job = self._submit(delivery)
            return asyncio.ensure_future(self._await_job(job)), job

        result = self._process(delivery)
        if inspect.isawaitable(result):
            return asyncio.ensure_future(result), None
        future = asyncio.get_running_loop().create_future()
        future.set_result(result)
        return future, None

    def _submit(self, delivery: Delivery) -> concurrent.futures.Future:
        job: concurrent.futures.Future = concurrent.futures.Future()

        def run() -> None:
            # False once the job was cancelled while queued
            if not job.set_running_or_notify_cancel():
                return
            try:
                job.set_result(self._process(delivery))
            except BaseException as e:
                job.set_exception(e)

        asyncio.get_running_loop().run_in_executor(self._executor, run)
        return job

    @staticmethod
    async def _await_job(job: concurrent.futures.Future) -> Any:
        result = await asyncio.wrap_future(job)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _run(self, delivery: Delivery) -> Outcome:
        """Processing state: returns the outcome, never raises."""
        try:
            future, job = self._invoke(delivery)
            done, _ = await asyncio.wait({future}, timeout=self._timeout)
            if not done:
                self._abandon(future, job, delivery)
                CONSUMER_TIMEOUTS.labels(self._name).inc()
                logger.warning(
                    f"Processing timed out after {self._timeout}s, will be redelivered"
                )
                return Outcome.REJECTED_REQUEUE
            if future.cancelled():
                CONSUMER_FAULTS.labels(self._name).inc()
                logger.warning("Processing was cancelled, will be redelivered")
                return Outcome.REJECTED_REQUEUE
            result = future.result()
        except Exception as e:
            CONSUMER_FAULTS.labels(self._name).inc()
            logger.opt(exception=e).warning(
                "Error while executing callback, will be redelivered",
                error=str(e),
            )
            return Outcome.REJECTED_REQUEUE

        return Outcome.ACKNOWLEDGED if result else Outcome.REJECTED_REQUEUE

    def _abandon(
        self,
        future: asyncio.Future,
        job: concurrent.futures.Future | None,
        delivery: Delivery,
    ) -> None:
        # Fails once a worker has started the job; that run is left to finish
        if job is not None and job.cancel():
            logger.debug(
                "Dropped queued invocation of timed-out delivery",
                consumer=self._name,
                delivery_tag=delivery.delivery_tag,
            )
        self._abandoned.add(future)
        future.add_done_callback(
            functools.partial(self._discard_late_result, delivery.delivery_tag)
        )

    def _discard_late_result(self, delivery_tag: int, future: asyncio.Future) -> None:
        self._abandoned.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.debug(
                "Discarding late failure of timed-out delivery",
                consumer=self._name,
                delivery_tag=delivery_tag,
                error=str(error),
            )
        else:
            logger.debug(
                "Discarding late result of timed-out delivery",
                consumer=self._name,
                delivery_tag=delivery_tag,
                result=future.result(),
            )

    async def _resolve(self, delivery: Delivery, outcome: Outcome) -> None:
        """Send the single ack or nack for ``delivery``."""
        try:
            if outcome is Outcome.ACKNOWLEDGED:
                await self._channel.basic_ack(delivery.delivery_tag)
            else:
                await self._channel.basic_nack(
                    delivery.delivery_tag,
                    requeue=outcome is Outcome.REJECTED_REQUEUE,
                )
        except Exception as e:
            # Static message: extras make loguru format it, and broker errors contain braces
            logger.error(
                "Failed to resolve delivery",
                consumer=self._name,
                delivery_tag=delivery.delivery_tag,
                outcome=outcome.value,
                error=str(e),
            )
            return

        CONSUMER_OUTCOMES.labels(self._name, outcome.value).inc()
        logger.debug(
            "Delivery resolved",
            consumer=self._name,
            delivery_tag=delivery.delivery_tag,
            outcome=outcome.value,
        )
