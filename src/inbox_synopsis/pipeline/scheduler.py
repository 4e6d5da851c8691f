"""Adaptive Batch Scheduler.

Runs the synopsis generator over small concurrent groups. A rate-limited item
halts the run and grows both delays; a clean group decays them back toward
their base values. Delays are passed in and handed back through
``BatchOutcome.current_delays`` so a long-lived caller (the background queue)
carries them from one run to the next.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from inbox_synopsis.config import Settings
from inbox_synopsis.exceptions import AuthError, PermissionDeniedError, RateLimitedError
from inbox_synopsis.models import (
    BatchOutcome,
    DelayState,
    FailedMessage,
    NormalizedMessage,
    ProcessedMessage,
    QuotaInfo,
    RunState,
    SynopsisResult,
)
from inbox_synopsis.utils.clock import Clock, SystemClock

logger = structlog.get_logger()


class Generator(Protocol):
    async def generate(self, message: NormalizedMessage, owner_id: str) -> SynopsisResult | None: ...


def _quota_from(error: RateLimitedError) -> QuotaInfo:
    if error.quota is not None:
        return error.quota
    return QuotaInfo(retry_after_ms=error.retry_after_ms)


class AdaptiveBatchScheduler:
    """Drives a generator over messages in sequential, internally concurrent groups."""

    def __init__(self, generator: Generator, settings: Settings | None = None, clock: Clock | None = None) -> None:
        from inbox_synopsis.config import get_settings

        self.settings = settings or get_settings()
        self._generator = generator
        self._clock = clock or SystemClock()
        self.state = RunState.IDLE

    def base_delays(self) -> DelayState:
        return DelayState(group_delay=self.settings.base_group_delay, item_delay=self.settings.base_item_delay)

    def backoff(self, delays: DelayState) -> DelayState:
        mult, cap = self.settings.backoff_multiplier, self.settings.max_delay
        return DelayState(
            group_delay=min(cap, delays.group_delay * mult),
            item_delay=min(cap, delays.item_delay * mult),
        )

    def decay(self, delays: DelayState) -> DelayState:
        mult = self.settings.backoff_multiplier
        return DelayState(
            group_delay=max(self.settings.base_group_delay, delays.group_delay / mult),
            item_delay=max(self.settings.base_item_delay, delays.item_delay / mult),
        )

    async def _run_item(
        self, message: NormalizedMessage, owner_id: str, stagger: float
    ) -> SynopsisResult | None:
        if stagger > 0:
            await self._clock.sleep(stagger)
        return await self._generator.generate(message, owner_id)

    async def run(
        self,
        messages: list[NormalizedMessage],
        owner_id: str,
        delays: DelayState | None = None,
    ) -> BatchOutcome:
        """Process ``messages`` and aggregate every outcome.

        Args:
            messages: Messages to summarize, already deduplicated.
            owner_id: Owner the synopses are stored under.
            delays: Delays carried over from a previous run; base values if None.

        Returns:
            BatchOutcome with successes, failures, skips, messages left
            unprocessed after a halt, quota details and the updated delays.
        """

        outcome = BatchOutcome(current_delays=delays or self.base_delays())
        self.state = outcome.state = RunState.RUNNING
        size = max(1, self.settings.scheduler_concurrency)
        groups = [messages[i : i + size] for i in range(0, len(messages), size)]

        for index, group in enumerate(groups):
            current = outcome.current_delays
            assert current is not None
            if index > 0:
                await self._clock.sleep(current.group_delay)

            cap = self.settings.max_delay
            results = await asyncio.gather(
                *(self._run_item(m, owner_id, min(cap, current.item_delay * i)) for i, m in enumerate(group)),
                return_exceptions=True,
            )

            rate_limit: RateLimitedError | None = None
            auth_failure = False
            for message, result in zip(group, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    is_rate_limit = isinstance(result, RateLimitedError)
                    if is_rate_limit and rate_limit is None:
                        rate_limit = result
                    auth_failure = auth_failure or isinstance(result, (AuthError, PermissionDeniedError))
                    outcome.failed.append(FailedMessage(message, result, is_rate_limit=is_rate_limit))
                    logger.warning(
                        "scheduler_item_failed",
                        message_id=message.id,
                        error_kind=getattr(result, "kind", type(result).__name__),
                        error=str(result),
                    )
                elif result is None:
                    outcome.skipped.append(message)
                else:
                    outcome.successful.append(ProcessedMessage(message, result))

            remaining = [m for g in groups[index + 1 :] for m in g]

            if rate_limit is not None:
                outcome.quota_info = _quota_from(rate_limit)
                outcome.current_delays = self.backoff(current)
                outcome.pending = remaining
                self.state = outcome.state = RunState.HALTED_ON_QUOTA
                logger.warning(
                    "scheduler_halted_on_quota",
                    group=index + 1,
                    groups=len(groups),
                    pending=len(remaining),
                    retry_after_ms=outcome.quota_info.retry_after_ms,
                    group_delay=outcome.current_delays.group_delay,
                    item_delay=outcome.current_delays.item_delay,
                )
                return outcome

            outcome.current_delays = self.decay(current)

            if auth_failure:
                outcome.pending = remaining
                self.state = outcome.state = RunState.HALTED_ON_AUTH
                logger.error("scheduler_halted_on_auth", group=index + 1, pending=len(remaining))
                return outcome

        self.state = outcome.state = RunState.COMPLETED
        logger.info(
            "scheduler_run_completed",
            successful=len(outcome.successful),
            failed=len(outcome.failed),
            skipped=len(outcome.skipped),
        )
        return outcome
