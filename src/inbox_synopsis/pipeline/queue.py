"""Background Queue for message volumes too large to process inline.

The queue owns its item map and the adaptive delay state. Only ``enqueue``,
``drain_once`` and ``clear`` touch them; ``drain_once`` is guarded by a flag
so two drain cycles never overlap. ``start()`` runs ``drain_once`` and the
stats report on :class:`Ticker` loops; tests call ``drain_once`` directly.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from inbox_synopsis.config import Settings
from inbox_synopsis.models import (
    BatchOutcome,
    DelayState,
    EnqueueResult,
    NormalizedMessage,
    Priority,
    QueuedItem,
    QueueStats,
    RunState,
)
from inbox_synopsis.pipeline.dedup import Deduplicator
from inbox_synopsis.pipeline.scheduler import AdaptiveBatchScheduler
from inbox_synopsis.utils.clock import Clock, SystemClock, Ticker

logger = structlog.get_logger()


class BackgroundQueue:
    """Bounded in-memory priority queue drained on a fixed cadence."""

    def __init__(
        self,
        scheduler: AdaptiveBatchScheduler,
        deduplicator: Deduplicator,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        from inbox_synopsis.config import get_settings

        self.settings = settings or get_settings()
        self._scheduler = scheduler
        self._dedup = deduplicator
        self._clock = clock or SystemClock()
        self._items: dict[str, QueuedItem] = {}
        self._in_flight: set[str] = set()
        self._delays: DelayState = scheduler.base_delays()
        self._draining = False
        self._shutting_down = False
        self._cooldown_until: datetime | None = None
        self._drain_ticker = Ticker("queue_drain", self.settings.queue_drain_interval, self._drain_tick, self._clock)
        self._stats_ticker = Ticker("queue_stats", self.settings.queue_stats_interval, self._stats_tick, self._clock)

    @property
    def delays(self) -> DelayState:
        return self._delays

    @property
    def running(self) -> bool:
        return self._drain_ticker.running

    def size(self) -> int:
        return len(self._items)

    def is_full(self) -> bool:
        return len(self._items) >= self.settings.queue_capacity

    def priority_for(self, message: NormalizedMessage) -> Priority:
        """Priority from message age: under a day high, under a week medium."""

        age = self._clock.now() - message.date_received
        if age < timedelta(hours=24):
            return Priority.HIGH
        if age < timedelta(days=7):
            return Priority.MEDIUM
        return Priority.LOW

    def enqueue(self, messages: list[NormalizedMessage], owner_id: str) -> EnqueueResult:
        """Add messages; ids already queued are ignored, overflow is rejected."""

        accepted = 0
        rejected_ids: list[str] = []
        now = self._clock.now()

        for message in messages:
            if self.is_full():
                rejected_ids.append(message.id)
                continue
            if message.id in self._items:
                logger.debug("queue_item_already_queued", message_id=message.id)
                continue
            self._items[message.id] = QueuedItem(
                message=message,
                owner_id=owner_id,
                added_at=now,
                priority=self.priority_for(message),
            )
            accepted += 1

        if rejected_ids:
            logger.warning("queue_full", capacity=self.settings.queue_capacity, rejected=len(rejected_ids))
        logger.info("queue_enqueued", accepted=accepted, rejected=len(rejected_ids))
        self.log_stats()
        return EnqueueResult(accepted=accepted, rejected=len(rejected_ids), rejected_ids=rejected_ids)

    def stats(self) -> QueueStats:
        """Snapshot of the queue computed from its current contents."""

        now = self._clock.now()
        items = list(self._items.values())
        processing = sum(1 for item in items if item.message.id in self._in_flight)
        retrying = sum(
            1 for item in items if item.next_retry_at is not None and item.message.id not in self._in_flight
        )
        pending = sum(
            1 for item in items if item.last_attempt_at is None and item.message.id not in self._in_flight
        )
        total_wait = sum((now - item.added_at).total_seconds() for item in items)

        return QueueStats(
            total=len(items),
            pending=pending,
            processing=processing,
            retrying=retrying,
            average_wait_seconds=total_wait / len(items) if items else 0.0,
        )

    def log_stats(self) -> None:
        stats = self.stats()
        logger.info(
            "queue_stats",
            total=stats.total,
            pending=stats.pending,
            processing=stats.processing,
            retrying=stats.retrying,
            average_wait_seconds=round(stats.average_wait_seconds, 1),
        )

    def clear(self) -> int:
        """Drop every queued item; returns how many were removed."""

        removed = len(self._items)
        self._items.clear()
        logger.info("queue_cleared", removed=removed)
        return removed

    @property
    def cooldown_until(self) -> datetime | None:
        return self._cooldown_until

    def _ready_items(self) -> list[QueuedItem]:
        now = self._clock.now()
        if self._cooldown_until is not None and now < self._cooldown_until:
            return []
        ready = [
            item
            for item in self._items.values()
            if item.message.id not in self._in_flight and (item.next_retry_at is None or item.next_retry_at <= now)
        ]
        ready.sort(key=lambda item: (-item.priority.score, item.added_at))
        return ready[: self.settings.queue_batch_size]

    def _handle_failure(self, item: QueuedItem, error: Exception, is_rate_limit: bool) -> None:
        item.retry_count += 1
        message_id = item.message.id

        if item.retry_count >= self.settings.queue_max_retries:
            self._items.pop(message_id, None)
            logger.error(
                "queue_item_dropped",
                message_id=message_id,
                attempts=item.retry_count,
                error=str(error),
            )
            return

        delay = self.settings.queue_base_retry_delay * (2 ** (item.retry_count - 1))
        if is_rate_limit:
            delay = max(delay, self.settings.queue_rate_limit_retry_floor)
        delay = min(delay, self.settings.queue_max_retry_delay)

        item.next_retry_at = self._clock.now() + timedelta(seconds=delay)
        logger.warning(
            "queue_item_retry_scheduled",
            message_id=message_id,
            retry_count=item.retry_count,
            max_retries=self.settings.queue_max_retries,
            retry_in_seconds=delay,
            rate_limited=is_rate_limit,
        )

    async def drain_once(self) -> list[BatchOutcome]:
        """Run one drain cycle.

        Returns:
            One outcome per owner processed this cycle; empty when the queue
            is shutting down, another cycle is active or nothing is ready.
        """

        if self._shutting_down or self._draining:
            return []

        self._draining = True
        try:
            batch = self._ready_items()
            if not batch:
                return []
            return await self._process(batch)
        finally:
            self._draining = False

    async def _process(self, batch: list[QueuedItem]) -> list[BatchOutcome]:
        by_owner: dict[str, list[QueuedItem]] = {}
        for item in batch:
            by_owner.setdefault(item.owner_id, []).append(item)

        outcomes: list[BatchOutcome] = []
        logger.info("queue_batch_started", size=len(batch), owners=len(by_owner))

        for owner_id, items in by_owner.items():
            fresh = await self._dedup.filter_new([item.message for item in items])
            fresh_ids = {m.id for m in fresh}
            for item in items:
                if item.message.id not in fresh_ids:
                    self._items.pop(item.message.id, None)
                    logger.info("queue_item_already_processed", message_id=item.message.id)
            items = [item for item in items if item.message.id in fresh_ids]
            if not items:
                continue

            attempt_at = self._clock.now()
            self._in_flight.update(item.message.id for item in items)

            try:
                outcome = await self._scheduler.run([item.message for item in items], owner_id, self._delays)
            except Exception as exc:
                logger.exception("queue_batch_failed", owner_id=owner_id, error=str(exc))
                for item in items:
                    item.last_attempt_at = attempt_at
                    self._handle_failure(item, exc, is_rate_limit=False)
                continue
            finally:
                self._in_flight.difference_update(item.message.id for item in items)

            self._apply(outcome, {item.message.id: item for item in items}, attempt_at)
            outcomes.append(outcome)
            if outcome.state is RunState.HALTED_ON_QUOTA:
                break

        self.log_stats()
        return outcomes

    def _start_cooldown(self, outcome: BatchOutcome) -> None:
        retry_after_ms = outcome.quota_info.retry_after_ms if outcome.quota_info else None
        seconds = max(
            (retry_after_ms or 0) / 1000,
            self._delays.group_delay,
        )
        self._cooldown_until = self._clock.now() + timedelta(seconds=seconds)
        logger.warning(
            "queue_cooldown_started",
            cooldown_seconds=seconds,
            retry_after_ms=retry_after_ms,
            deferred=len(outcome.pending),
        )

    def _apply(self, outcome: BatchOutcome, items: dict[str, QueuedItem], attempt_at: datetime) -> None:
        if outcome.current_delays is not None:
            self._delays = outcome.current_delays

        # items left in ``pending`` were never attempted and keep their state
        for processed in outcome.successful:
            self._items.pop(processed.message.id, None)
        for message in outcome.skipped:
            self._items.pop(message.id, None)
            logger.info("queue_item_skipped", message_id=message.id)
        for failure in outcome.failed:
            item = items.get(failure.message.id)
            if item is not None and failure.message.id in self._items:
                item.last_attempt_at = attempt_at
                self._handle_failure(item, failure.error, failure.is_rate_limit)

        if outcome.state is RunState.HALTED_ON_QUOTA:
            self._start_cooldown(outcome)

        logger.info(
            "queue_batch_completed",
            successful=len(outcome.successful),
            failed=len(outcome.failed),
            skipped=len(outcome.skipped),
            deferred=len(outcome.pending),
            state=outcome.state.value,
        )

    async def _drain_tick(self) -> None:
        await self.drain_once()

    async def _stats_tick(self) -> None:
        self.log_stats()

    def start(self) -> None:
        """Start the drain and stats loops."""

        self._shutting_down = False
        self._drain_ticker.start()
        self._stats_ticker.start()
        logger.info(
            "queue_started",
            drain_interval=self.settings.queue_drain_interval,
            stats_interval=self.settings.queue_stats_interval,
        )

    async def shutdown(self) -> None:
        """Stop accepting drain cycles and wait for the current one to finish."""

        self._shutting_down = True
        await self._drain_ticker.stop()
        await self._stats_ticker.stop()
        logger.info("queue_shutdown_complete", remaining=len(self._items))

    async def wait_until_empty(self, poll_interval: float | None = None) -> None:
        """Sleep until the queue holds no items or is shut down."""

        interval = poll_interval if poll_interval is not None else self.settings.queue_drain_interval
        while self._items and not self._shutting_down:
            await self._clock.sleep(interval)
