# src/promtree/triggers.py
"""
Triggered metrics.

A triggered metric is a family whose values are computed on demand: its
producer runs at the start of every collection pass (or at most once per
``interval``) and writes into the family before serialization.

Producers are fanned out concurrently and isolated from each other. A
producer that raises, reports an error or exceeds its timeout only costs its
own family, which is left out of that pass's output; every other family is
still rendered. Producers registered without a timeout get the registry's
``default_timeout``.

Producer forms:
    - ``async def producer(family)``: completes when the coroutine returns
    - ``def producer(family)``: runs in a worker thread, completes on return
    - ``def producer(family, done)``: callback style, wrapped with
      ``callback_producer``; calling ``done()`` or ``done(error)`` is the
      completion signal

Example:
    >>> queue_depth = root.gauge("queue_depth", help="Jobs waiting")
    >>>
    >>> async def sample_queue(family):
    ...     family.set(await broker.pending_jobs())
    >>>
    >>> root.add_triggered_metric(queue_depth, sample_queue, timeout=2.0)
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Union

from promtree.exceptions import ProducerError

if TYPE_CHECKING:
    from promtree.family import MetricFamily

logger = logging.getLogger(__name__)

Producer = Callable[["MetricFamily"], Union[Awaitable[None], None]]
Interval = Union[timedelta, float, None]

# Per-run timeout applied when a producer is registered without one
DEFAULT_PRODUCER_TIMEOUT = 10.0


def _seconds(interval: Interval) -> Optional[float]:
    if isinstance(interval, timedelta):
        return interval.total_seconds()
    return interval


def _consume_result(future: asyncio.Future) -> None:
    # Retrieve the outcome of a run nobody awaits any more (after a timeout)
    if not future.cancelled():
        future.exception()


def callback_producer(fn: Callable[["MetricFamily", Callable[..., None]], None]) -> Producer:
    """
    Adapt a callback-style producer.

    ``fn(family, done)`` must eventually call ``done()`` on success or
    ``done(error)`` on failure; ``done`` may be called from any thread. Only
    the first call counts.
    """

    @functools.wraps(fn)
    async def producer(family: "MetricFamily") -> None:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()

        def resolve(error: Any) -> None:
            if future.done():
                return
            if error is None:
                future.set_result(None)
            elif isinstance(error, BaseException):
                future.set_exception(error)
            else:
                future.set_exception(ProducerError(family.full_name, str(error)))

        def done(error: Any = None) -> None:
            loop.call_soon_threadsafe(resolve, error)

        fn(family, done)
        await future

    return producer


@dataclass
class TriggeredMetric:
    """
    A producer bound to the family it fills.

    Attributes:
        family: Target family
        producer: Callable computing the family's values
        interval: Minimum seconds between runs (None = every collection)
        timeout: Seconds before the producer is abandoned (None = no limit)
        pending: Worker thread result of a sync producer, while it runs
        last_run: Clock reading of the last successful run
        run_count: Total successful runs
        error_count: Total failures
        last_error: Most recent error message
    """

    family: "MetricFamily"
    producer: Producer
    interval: Optional[float] = None
    timeout: Optional[float] = None

    # State
    last_run: Optional[float] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    pending: Optional[asyncio.Future] = field(default=None, init=False, repr=False)

    def is_due(self, now: float) -> bool:
        """Check whether the producer should run in a pass at ``now``."""
        if self.interval is None or self.last_run is None:
            return True
        return now - self.last_run >= self.interval

    async def run(self) -> None:
        """
        Run the producer once, without isolation.

        A sync producer keeps its worker thread after a timeout; until that
        thread returns, further runs fail instead of taking another thread.

        Raises:
            ProducerError: If a previous sync run is still in its thread.
        """
        if inspect.iscoroutinefunction(self.producer):
            result = await self.producer(self.family)
        else:
            if self.pending is not None and not self.pending.done():
                raise ProducerError(self.family.full_name, "still running")
            loop = asyncio.get_running_loop()
            ctx = contextvars.copy_context()
            self.pending = loop.run_in_executor(None, ctx.run, self.producer, self.family)
            self.pending.add_done_callback(_consume_result)
            # Cancelling the shield leaves the thread's future to complete
            result = await asyncio.shield(self.pending)
        if inspect.isawaitable(result):
            await result

    def record_success(self, now: float) -> None:
        self.last_run = now
        self.run_count += 1
        self.last_error = None

    def record_error(self, error: str) -> None:
        self.error_count += 1
        self.last_error = error


class TriggerRegistry:
    """
    Holds the triggered metrics of a root collector.

    Entries live as long as the registry; registering the same producer for
    the same family twice returns the existing entry.

    Args:
        default_timeout: Per-run timeout for producers registered without
            one (None = no limit).
    """

    def __init__(self, default_timeout: Optional[float] = DEFAULT_PRODUCER_TIMEOUT) -> None:
        self.default_timeout = default_timeout
        self._entries: List[TriggeredMetric] = []
        self._lock = threading.Lock()

    def register(
        self,
        family: "MetricFamily",
        producer: Producer,
        interval: Interval = None,
        timeout: Optional[float] = None,
    ) -> TriggeredMetric:
        """
        Register a producer for a family.

        Args:
            family: Family the producer writes into.
            producer: Producer callable (see module docstring).
            interval: Minimum time between runs, as timedelta or seconds.
            timeout: Per-run timeout in seconds (default: the registry's
                default_timeout).

        Returns:
            The registry entry.
        """
        if timeout is None:
            timeout = self.default_timeout
        with self._lock:
            for entry in self._entries:
                if entry.family is family and entry.producer is producer:
                    return entry
            entry = TriggeredMetric(
                family=family,
                producer=producer,
                interval=_seconds(interval),
                timeout=timeout,
            )
            self._entries.append(entry)

        logger.debug(
            f"Registered triggered metric: {family.full_name}",
            extra={"interval": entry.interval, "timeout": timeout},
        )
        return entry

    def entries(self) -> List[TriggeredMetric]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def run_all(self, now: float) -> List[ProducerError]:
        """
        Run every due producer concurrently.

        Args:
            now: Clock reading used for interval bookkeeping.

        Returns:
            One ProducerError per failed producer.
        """
        due = [entry for entry in self.entries() if entry.is_due(now)]
        if not due:
            return []
        results = await asyncio.gather(*(self._run_one(entry, now) for entry in due))
        return [error for error in results if error is not None]

    async def _run_one(self, entry: TriggeredMetric, now: float) -> Optional[ProducerError]:
        name = entry.family.full_name
        try:
            if entry.timeout is not None:
                await asyncio.wait_for(entry.run(), timeout=entry.timeout)
            else:
                await entry.run()
        except asyncio.CancelledError as e:
            # Cancellation of the collection itself must propagate
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            error = ProducerError(name, "cancelled", cause=e)
        except asyncio.TimeoutError as e:
            error = ProducerError(name, f"timed out after {entry.timeout}s", cause=e)
        except ProducerError as e:
            error = e
        except Exception as e:
            error = ProducerError(name, str(e) or type(e).__name__, cause=e)
        else:
            entry.record_success(now)
            return None

        entry.record_error(str(error))
        logger.warning(f"Triggered metric '{name}' failed: {error}")
        return error
