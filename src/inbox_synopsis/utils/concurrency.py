"""Bounded async worker pool with adaptive concurrency.

The pool starts with ``initial_concurrency`` workers. A quota error halves the
number of workers allowed to pick up new items and puts the failed item back
at the front of the line; a run of consecutive successes lets the limit grow
back one step at a time, never past the initial size.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Awaitable, Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


class _PoolState(Generic[T, R]):
    def __init__(self, items: list[T], limit: int) -> None:
        self.pending: deque[tuple[int, T, int]] = deque((i, item, 0) for i, item in enumerate(items))
        self.results: dict[int, R] = {}
        self.in_flight = 0
        self.limit = limit
        self.successes = 0
        self.fatal: BaseException | None = None
        self.cond = asyncio.Condition()


class AdaptiveConcurrencyPool(Generic[T, R]):
    """Apply an async function to many items with a shrinking/growing worker limit."""

    def __init__(
        self,
        initial_concurrency: int,
        *,
        is_quota_error: Callable[[BaseException], bool],
        is_fatal_error: Callable[[BaseException], bool] = lambda exc: False,
        rate_limit_pause: float = 1.0,
        max_requeues: int = 3,
        grow_after: int = 10,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if initial_concurrency < 1:
            raise ValueError("initial_concurrency must be at least 1")
        self._initial = initial_concurrency
        self._is_quota_error = is_quota_error
        self._is_fatal_error = is_fatal_error
        self._rate_limit_pause = rate_limit_pause
        self._max_requeues = max_requeues
        self._grow_after = grow_after
        self._sleep = sleep
        self.current_limit = initial_concurrency
        self.peak_in_flight = 0

    async def map(self, items: list[T], fn: Callable[[T], Awaitable[R]]) -> list[R]:
        """Run ``fn`` over ``items`` and return the successful results in input order.

        Items whose call raised a non-quota error are left out of the result.
        A fatal error stops the pool from starting new items and is re-raised
        once the calls already in flight have finished.
        """

        if not items:
            return []

        state: _PoolState[T, R] = _PoolState(items, self._initial)
        self.current_limit = self._initial
        workers = [
            asyncio.create_task(self._worker(slot, state, fn))
            for slot in range(min(self._initial, len(items)))
        ]
        await asyncio.gather(*workers)

        if state.fatal is not None:
            raise state.fatal
        return [state.results[i] for i in sorted(state.results)]

    async def _worker(self, slot: int, state: _PoolState[T, R], fn: Callable[[T], Awaitable[R]]) -> None:
        def can_proceed() -> bool:
            if state.fatal is not None:
                return True
            if not state.pending:
                return state.in_flight == 0
            return slot < state.limit

        while True:
            async with state.cond:
                await state.cond.wait_for(can_proceed)
                if state.fatal is not None or not state.pending:
                    return
                index, item, requeues = state.pending.popleft()
                state.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, state.in_flight)

            requeue: tuple[int, T, int] | None = None
            try:
                state.results[index] = await fn(item)
            except Exception as exc:  # noqa: BLE001
                if self._is_fatal_error(exc):
                    if state.fatal is None:
                        state.fatal = exc
                    logger.error("pool_fatal_error", index=index, error=str(exc))
                elif self._is_quota_error(exc):
                    requeue = await self._on_quota_error(state, index, item, requeues, exc)
                else:
                    logger.error("pool_item_failed", index=index, error=str(exc))
            else:
                self._on_success(state)
            finally:
                async with state.cond:
                    state.in_flight -= 1
                    if requeue is not None and state.fatal is None:
                        state.pending.appendleft(requeue)
                    state.cond.notify_all()

    async def _on_quota_error(
        self,
        state: _PoolState[T, R],
        index: int,
        item: T,
        requeues: int,
        exc: BaseException,
    ) -> tuple[int, T, int] | None:
        state.limit = max(1, state.limit // 2)
        state.successes = 0
        self.current_limit = state.limit
        logger.warning("pool_concurrency_reduced", concurrency=state.limit, index=index, error=str(exc))

        await self._sleep(self._rate_limit_pause)

        if requeues >= self._max_requeues:
            logger.error("pool_item_dropped_after_requeues", index=index, requeues=requeues)
            return None
        return (index, item, requeues + 1)

    def _on_success(self, state: _PoolState[T, R]) -> None:
        state.successes += 1
        if state.limit < self._initial and state.successes >= self._grow_after:
            state.limit += 1
            state.successes = 0
            self.current_limit = state.limit
            logger.info("pool_concurrency_increased", concurrency=state.limit)
