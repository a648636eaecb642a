"""Cancellable repeating timers for the monitoring background work.

A RepeatingTask runs one coroutine (or plain callable) per tick on the event
loop. Ticks never overlap, an exception in one tick is logged and the next tick
still runs, and stop() waits for a tick already in progress before returning so
no write happens after shutdown.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from nutrition_monitor.lib.distributed_tracing import generate_correlation_id
from nutrition_monitor.lib.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)

Interval = Union[float, Callable[[], float]]
TickFunction = Callable[[], Union[Awaitable[Any], Any]]


class RepeatingTask:
    """Repeating timer with a fixed or adaptive interval (seconds)."""

    def __init__(
        self,
        name: str,
        func: TickFunction,
        interval: Interval,
        run_immediately: bool = False,
    ):
        """Initialize the task without starting it.

        Args:
            name: Task name used in logs and correlation IDs
            func: Tick body, sync or async
            interval: Seconds between ticks, or a callable re-evaluated before each wait
            run_immediately: Run one tick as soon as the task starts
        """
        self.name = name
        self._func = func
        self._interval = interval
        self._run_immediately = run_immediately
        self._stopping: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self.tick_count = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_interval(self) -> float:
        return float(self._interval() if callable(self._interval) else self._interval)

    def start(self) -> None:
        """Schedule the loop on the running event loop. Idempotent."""
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f'repeating:{self.name}')

    async def _run(self) -> None:
        if self._run_immediately:
            await self.run_once()

        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.next_interval())
                break
            except asyncio.TimeoutError:
                pass
            await self.run_once()

    async def run_once(self) -> None:
        """Run a single tick, logging (not raising) any failure."""
        generate_correlation_id(self.name)
        try:
            result = self._func()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f'Scheduled task {self.name} failed: {e}', exc_info=True, task=self.name)
        finally:
            self.tick_count += 1

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop and wait for an in-flight tick.

        Args:
            timeout: Seconds to wait for the in-flight tick before cancelling it
        """
        if self._task is None:
            return

        self._stopping.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f'Scheduled task {self.name} did not finish in time, cancelling', task=self.name)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
