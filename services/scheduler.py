"""
Fetch Scheduler

Background service that drives the FetchOrchestrator:

    - start() runs one pass immediately and waits for it, so the service
      has data (or known failures) before it reports ready
    - afterwards a pass runs every fetch interval, on a fixed-rate grid
      anchored at the start time
    - passes never overlap: grid points that fall inside a running pass are
      skipped and the next pass waits for the following grid point
    - a pass that raises is logged and the timer keeps going
"""

import asyncio
import contextlib
from typing import Awaitable, Callable, Optional

from core.fetch_state import FETCH_INTERVAL_MS
from core.logging import get_logger
from core.orchestrator import FetchOrchestrator, PassReport


class FetchScheduler:
    """
    Periodic driver of fetch passes.

    Args:
        orchestrator: Orchestrator whose run_pass() is called on each tick
        interval_ms: Time between pass starts
        on_pass: Optional coroutine called with each PassReport

    Example:
        >>> scheduler = FetchScheduler(orchestrator, interval_ms=40_000)
        >>> await scheduler.start()   # first pass done when this returns
        >>> ...
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        interval_ms: int = FETCH_INTERVAL_MS,
        on_pass: Optional[Callable[[PassReport], Awaitable[None]]] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.interval_ms = interval_ms
        self.on_pass = on_pass
        self.passes_completed = 0
        self.last_report: Optional[PassReport] = None
        self._running = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._logger = get_logger(__name__)

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    async def start(self) -> None:
        if self._running.is_set():
            return
        self._running.set()
        self._logger.info("Starting fetch scheduler...")

        loop = asyncio.get_running_loop()
        anchor = loop.time()
        await self._run_pass_safely()

        self._task = asyncio.create_task(self._run(anchor), name="fetch_scheduler")
        self._logger.info(f"Fetch scheduler started with {self.interval_ms / 1000:.0f}s interval")

    async def stop(self) -> None:
        if not self._running.is_set():
            return
        self._logger.info("Stopping fetch scheduler...")
        self._running.clear()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    # ============================================
    # Core Loop
    # ============================================

    async def _run(self, anchor: float) -> None:
        loop = asyncio.get_running_loop()
        interval = self.interval_ms / 1000.0
        next_tick = anchor + interval

        while self._running.is_set():
            now = loop.time()
            if next_tick <= now:
                # pass overran one or more ticks; resume on the grid
                missed = int((now - next_tick) // interval) + 1
                next_tick += missed * interval
                self._logger.debug(f"Skipped {missed} tick(s) while a pass was running")

            try:
                await asyncio.sleep(next_tick - loop.time())
            except asyncio.CancelledError:
                break
            next_tick += interval

            if not self._running.is_set():
                break
            await self._run_pass_safely()

    async def _run_pass_safely(self) -> None:
        try:
            report = await self.orchestrator.run_pass()
            self.last_report = report
            if self.on_pass is not None:
                await self.on_pass(report)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(f"Fetch pass failed: {e}")
        self.passes_completed += 1
