from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError

from splitship.jobs.logger import JobConsumerLogger
from splitship.jobs.queue import JobQueue, QueuedJob
from splitship.jobs.router import TopicRouter, UnknownTopicError
from splitship.orchestrators.errors import HoldPersistenceError, SplitOutcome

# Dead-lettered on the first failure.
NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    UnknownTopicError,
    ValidationError,
    HoldPersistenceError,
)


class JobEventKind(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


@dataclass(frozen=True, slots=True)
class JobEvent:
    kind: JobEventKind
    job_id: int
    topic: str
    attempt: int
    outcome: SplitOutcome | None = None
    error: str | None = None
    retry_in_seconds: float | None = None


JobListener = Callable[[JobEvent], None]


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... for attempts 1, 2, 3."""
    return base_seconds * 2 ** max(attempt - 1, 0)


def summarize(outcome: SplitOutcome) -> str:
    if outcome.skipped:
        return f"skipped ({outcome.reason_label})"
    return outcome.status or "done"


class JobConsumer:
    """Run queued jobs through the router with bounded concurrency.

    Handlers are synchronous and run in worker threads. A failing job is
    retried with exponential backoff until ``max_attempts`` is reached and
    then dead-lettered. Outbound rate limiting lives in the gateway wrapper
    so it is shared across all workers.
    """

    def __init__(
        self,
        queue: JobQueue,
        router: TopicRouter,
        *,
        concurrency: int = 5,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        poll_interval_seconds: float = 0.5,
        dedup_purge_interval_seconds: float = 3600.0,
        logger: JobConsumerLogger | None = None,
    ) -> None:
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self._queue = queue
        self._router = router
        self._concurrency = concurrency
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._poll_interval = poll_interval_seconds
        self._purge_interval = dedup_purge_interval_seconds
        self._logger = logger or JobConsumerLogger()
        self._listeners: list[JobListener] = []
        self._processed = 0

    def add_listener(self, listener: JobListener) -> None:
        """Register a callback for completed/failed/dead-lettered events."""
        self._listeners.append(listener)

    @property
    def processed(self) -> int:
        return self._processed

    async def process_one(self) -> bool:
        """Claim and run a single job.

        Returns:
            False when no job was due
        """
        job = await asyncio.to_thread(self._queue.claim)
        if job is None:
            return False

        self._logger.job_started(job.job_id, job.topic, job.attempts)
        try:
            outcome = await asyncio.to_thread(
                self._router.dispatch, job.topic, job.shop, job.payload
            )
        except Exception as e:
            await self._handle_failure(job, e)
        else:
            await asyncio.to_thread(self._queue.complete, job.job_id)
            self._logger.job_completed(job.job_id, job.topic, summarize(outcome))
            self._emit(
                JobEvent(
                    kind=JobEventKind.COMPLETED,
                    job_id=job.job_id,
                    topic=job.topic,
                    attempt=job.attempts,
                    outcome=outcome,
                )
            )
        self._processed += 1
        return True

    async def _handle_failure(self, job: QueuedJob, error: Exception) -> None:
        message = f"{type(error).__name__}: {error}"
        exhausted = job.attempts >= self._max_attempts
        if exhausted or isinstance(error, NON_RETRYABLE_ERRORS):
            await asyncio.to_thread(self._queue.dead_letter, job.job_id, message)
            self._logger.job_dead_lettered(job.job_id, job.topic, job.attempts, message)
            self._emit(
                JobEvent(
                    kind=JobEventKind.DEAD_LETTERED,
                    job_id=job.job_id,
                    topic=job.topic,
                    attempt=job.attempts,
                    error=message,
                )
            )
            return

        delay = backoff_delay(job.attempts, self._backoff_base)
        await asyncio.to_thread(self._queue.retry, job.job_id, message, delay)
        self._logger.job_failed(job.job_id, job.topic, job.attempts, delay, message)
        self._emit(
            JobEvent(
                kind=JobEventKind.FAILED,
                job_id=job.job_id,
                topic=job.topic,
                attempt=job.attempts,
                error=message,
                retry_in_seconds=delay,
            )
        )

    def _emit(self, event: JobEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:  # noqa: BLE001 - observers must not fail jobs
                self._logger.listener_failed(event.kind.value, e)

    async def _worker(self, stop: asyncio.Event, *, drain: bool) -> None:
        while not stop.is_set():
            if await self.process_one():
                continue
            if drain:
                return
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass

    async def _purge_dedup_periodically(self, stop: asyncio.Event) -> None:
        while True:
            removed = await asyncio.to_thread(self._queue.purge_expired_dedup)
            if removed:
                self._logger.dedup_purged(removed)
            if stop.is_set():
                return
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._purge_interval)
            except TimeoutError:
                pass

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Process jobs until ``stop`` is set.

        Expired dedup entries are purged on start and every
        ``dedup_purge_interval_seconds`` after that.
        """
        stop_event = stop or asyncio.Event()
        self._logger.consumer_started(self._concurrency)
        await asyncio.gather(
            self._purge_dedup_periodically(stop_event),
            *(self._worker(stop_event, drain=False) for _ in range(self._concurrency)),
        )
        self._logger.consumer_stopped(self._processed)

    async def drain(self) -> int:
        """Process jobs until none is due, then return the number processed."""
        start = self._processed
        await asyncio.gather(
            *(
                self._worker(asyncio.Event(), drain=True)
                for _ in range(self._concurrency)
            )
        )
        return self._processed - start
