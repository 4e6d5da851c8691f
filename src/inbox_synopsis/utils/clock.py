"""Time sources and a restartable ticker.

Background loops take a :class:`Clock` instead of calling ``asyncio.sleep`` and
``datetime.now`` directly so tests can drive them without waiting on the wall
clock.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol

import structlog

logger = structlog.get_logger()


class Clock(Protocol):
    """Source of the current time and of timed suspension."""

    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock time in UTC and real ``asyncio`` sleeps."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class Ticker:
    """Run an async callback, sleep for ``interval``, repeat until stopped.

    The next tick is only scheduled after the callback returns, so two
    callbacks of the same ticker never overlap. ``stop()`` interrupts the idle
    sleep but lets a callback that is already running finish.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        clock: Clock | None = None,
    ) -> None:
        self.name = name
        self._interval = interval
        self._callback = callback
        self._clock = clock or SystemClock()
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._in_callback = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name=f"ticker:{self.name}")
        logger.debug("ticker_started", ticker=self.name, interval=self._interval)

    async def stop(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is None:
            return
        if not self._in_callback:
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("ticker_stopped", ticker=self.name, ticks=self.ticks)

    async def _run(self) -> None:
        while not self._stopping:
            self._in_callback = True
            try:
                await self._callback()
            except Exception as exc:  # noqa: BLE001
                logger.exception("ticker_callback_failed", ticker=self.name, error=str(exc))
            finally:
                self._in_callback = False
                self.ticks += 1

            if self._stopping:
                break
            await self._clock.sleep(self._interval)
