"""Background sweep of expired counters."""

import asyncio
import contextlib
from types import TracebackType
from typing import Optional

import structlog

from kazwab_admission.controller import AdmissionController
from kazwab_admission.errors import ConfigurationError
from kazwab_admission.metrics import metrics

logger = structlog.get_logger()


class CounterSweeper:
    """Periodically removes expired counters from a controller's store.

    The task belongs to whoever starts it: call ``start()``/``stop()`` from
    the application lifespan, or use the sweeper as an async context
    manager.
    """

    def __init__(self, controller: AdmissionController, interval_seconds: float = 3600.0) -> None:
        if not interval_seconds > 0:
            raise ConfigurationError(f"sweep interval must be > 0, got {interval_seconds}")
        self._controller = controller
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> int:
        """Sweep now, in the calling thread."""
        removed = self._controller.sweep()
        metrics.sweeps_total.labels(status="ok").inc()
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                # The Redis store does network I/O, keep it off the event loop
                await asyncio.to_thread(self.run_once)
            except Exception as e:
                metrics.sweeps_total.labels(status="error").inc()
                logger.exception("counter_sweep_failed", error=str(e))

    async def start(self) -> None:
        """Start the sweep loop. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="admission-counter-sweeper")
        logger.info("counter_sweeper_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("counter_sweeper_stopped")

    async def __aenter__(self) -> "CounterSweeper":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.stop()
