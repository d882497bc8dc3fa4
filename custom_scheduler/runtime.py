"""
Background loop handles.

Monitor and worker loops run as asyncio tasks owned by a ``BackgroundLoop``.
The handle carries the stop event the loop waits on between ticks, so a stop
request is observed within one tick, and ``stop()`` joins the task within a
caller-supplied grace period.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TickFn = Callable[[], Awaitable[None]]


class BackgroundLoop:
    """
    Runs a coroutine on a fixed interval until stopped.

    Ticks never overlap: the next wait starts only after the previous tick
    returns, so a slow tick delays the schedule. Exceptions raised by a tick
    are logged and the loop carries on.
    """

    def __init__(self, name: str, tick: TickFn, interval: float):
        """
        Initialize the loop.

        Args:
            name: Name used for the task and in logs.
            tick: Coroutine function run once per interval.
            interval: Seconds to wait between ticks.
        """
        self.name = name
        self.interval = interval
        self._tick = tick
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def stopping(self) -> bool:
        """True once a stop has been requested."""
        return self._stop_event.is_set()

    @property
    def running(self) -> bool:
        """True while the loop task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the loop as a task on the running event loop."""
        if self._task is not None:
            raise RuntimeError(f"{self.name} already started")
        self._task = asyncio.create_task(self.run(), name=self.name)
        return self._task

    async def run(self) -> None:
        """Run ticks until a stop is requested."""
        logger.info(
            "Starting loop",
            extra={"loop": self.name, "interval": self.interval},
        )

        while not self._stop_event.is_set():
            if await self._wait_for_stop(self.interval):
                break
            try:
                await self._tick()
            except Exception as e:
                logger.exception(
                    f"Error in {self.name} loop: {e}",
                    extra={"loop": self.name},
                )

        logger.info("Loop stopped", extra={"loop": self.name})

    def request_stop(self) -> None:
        """Ask the loop to stop after the current tick."""
        self._stop_event.set()

    async def stop(self, grace_seconds: float) -> bool:
        """
        Stop the loop and wait for the in-flight tick to finish.

        Args:
            grace_seconds: Longest time to wait for the task to exit.

        Returns:
            True if the loop exited within the grace period, False if the
            task had to be cancelled.
        """
        self.request_stop()
        if self._task is None:
            return True

        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=grace_seconds)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "Loop did not stop within grace period",
                extra={"loop": self.name, "grace_seconds": grace_seconds},
            )
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            return False

    async def _wait_for_stop(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False
