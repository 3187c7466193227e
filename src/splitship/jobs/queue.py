"""Durable job queue on top of the saga database.

Delivery is at least once. A claim holds a lease; if the worker dies mid-job
the job stays RUNNING until the lease expires and the next claim takes it
again as a new attempt.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
import json
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from splitship.adapters.db.facade import SagaStore
from splitship.adapters.db.models import EventDedup, Job, JobStatus, utcnow
from splitship.jobs.logger import JobConsumerLogger

EVENT_ID_HEADERS = ("x-event-id", "x-shopify-event-id", "webhook-id")
_CLAIM_ATTEMPTS = 5


def event_id_from_headers(headers: Mapping[str, str]) -> str | None:
    """Pick the upstream event id out of webhook headers (case-insensitive)."""
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in EVENT_ID_HEADERS:
        value = lowered.get(name, "").strip()
        if value:
            return value
    return None


@dataclass(frozen=True, slots=True)
class QueuedJob:
    """Detached snapshot of a claimed job."""

    job_id: int
    shop: str
    topic: str
    payload: dict[str, Any]
    attempts: int
    event_id: str | None = None

    @classmethod
    def from_row(cls, row: Job) -> QueuedJob:
        return cls(
            job_id=row.job_id,
            shop=row.shop_domain,
            topic=row.topic,
            payload=json.loads(row.payload),
            attempts=row.attempts,
            event_id=row.event_id,
        )


class JobQueue:
    """Enqueue, claim, retry and dead-letter webhook jobs."""

    def __init__(
        self,
        store: SagaStore,
        *,
        dedup_ttl_seconds: int = 24 * 3600,
        lease_seconds: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
        logger: JobConsumerLogger | None = None,
    ) -> None:
        self._store = store
        self._logger = logger or JobConsumerLogger()
        self._dedup_ttl = timedelta(seconds=dedup_ttl_seconds)
        self._lease = timedelta(seconds=lease_seconds)
        self._clock = clock

    def enqueue(
        self,
        shop: str,
        topic: str,
        payload: dict[str, Any],
        *,
        event_id: str | None = None,
    ) -> int | None:
        """Add a job unless ``event_id`` was already seen within the TTL.

        Args:
            shop: Shop domain
            topic: Webhook topic, e.g. "orders/create"
            payload: Webhook body
            event_id: Upstream delivery id used for deduplication

        Returns:
            The new job id, or None when the delivery is a duplicate
        """
        now = self._clock()
        try:
            with self._store.session() as session:
                if event_id is not None:
                    seen = session.scalar(
                        select(EventDedup).where(EventDedup.event_id == event_id)
                    )
                    if seen is not None and now - seen.seen_at < self._dedup_ttl:
                        self._logger.duplicate_dropped(event_id, topic)
                        return None
                    if seen is None:
                        session.add(EventDedup(event_id=event_id, seen_at=now))
                    else:
                        seen.seen_at = now
                job = Job(
                    event_id=event_id,
                    shop_domain=shop,
                    topic=topic,
                    payload=json.dumps(payload),
                    status=JobStatus.QUEUED,
                    attempts=0,
                    available_at=now,
                    created_at=now,
                    updated_at=now,
                )
                session.add(job)
                session.flush()
                job_id = job.job_id
        except IntegrityError:
            # A concurrent delivery of the same event won the insert.
            self._logger.duplicate_dropped(event_id or "", topic)
            return None
        self._logger.enqueued(job_id, topic, shop)
        return job_id

    def claim(self) -> QueuedJob | None:
        """Take the oldest runnable job, or None if nothing is due.

        Runnable means QUEUED and due, or RUNNING with a lease older than
        ``lease_seconds``. Both count as a new attempt. The UPDATE repeats the
        status and lease it read, so two workers racing for one row cannot
        both see ``rowcount == 1``.
        """
        for _ in range(_CLAIM_ATTEMPTS):
            now = self._clock()
            stale_before = now - self._lease
            with self._store.session() as session:
                candidate = session.execute(
                    select(Job.job_id, Job.status, Job.claimed_at)
                    .where(
                        or_(
                            and_(
                                Job.status == JobStatus.QUEUED,
                                Job.available_at <= now,
                            ),
                            and_(
                                Job.status == JobStatus.RUNNING,
                                or_(
                                    Job.claimed_at.is_(None),
                                    Job.claimed_at <= stale_before,
                                ),
                            ),
                        )
                    )
                    .order_by(Job.available_at, Job.job_id)
                    .limit(1)
                ).first()
                if candidate is None:
                    return None
                job_id, status, claimed_at = candidate

                guard = [Job.job_id == job_id, Job.status == status]
                if status == JobStatus.RUNNING:
                    guard.append(
                        Job.claimed_at.is_(None)
                        if claimed_at is None
                        else Job.claimed_at == claimed_at
                    )
                result = session.execute(
                    update(Job)
                    .where(*guard)
                    .values(
                        status=JobStatus.RUNNING,
                        attempts=Job.attempts + 1,
                        claimed_at=now,
                        updated_at=now,
                    )
                )
                if result.rowcount != 1:  # type: ignore[attr-defined]
                    continue
                row = session.get(Job, job_id, populate_existing=True)
                if row is None:
                    continue
                if status == JobStatus.RUNNING:
                    self._logger.lease_expired(job_id, row.topic, row.attempts)
                return QueuedJob.from_row(row)
        return None

    def complete(self, job_id: int) -> None:
        self._set_status(job_id, JobStatus.COMPLETED, last_error=None)

    def retry(self, job_id: int, error: str, delay_seconds: float) -> None:
        """Put a failed job back on the queue after ``delay_seconds``."""
        now = self._clock()
        with self._store.session() as session:
            session.execute(
                update(Job)
                .where(Job.job_id == job_id)
                .values(
                    status=JobStatus.QUEUED,
                    last_error=error,
                    available_at=now + timedelta(seconds=delay_seconds),
                    updated_at=now,
                )
            )

    def dead_letter(self, job_id: int, error: str) -> None:
        self._set_status(job_id, JobStatus.DEAD, last_error=error)

    def requeue(self, job_id: int) -> bool:
        """Move a dead-lettered job back to the queue with a fresh attempt count.

        Returns:
            False if the job is not dead-lettered
        """
        now = self._clock()
        with self._store.session() as session:
            result = session.execute(
                update(Job)
                .where(Job.job_id == job_id, Job.status == JobStatus.DEAD)
                .values(
                    status=JobStatus.QUEUED,
                    attempts=0,
                    available_at=now,
                    updated_at=now,
                )
            )
            return bool(result.rowcount)  # type: ignore[attr-defined]

    def list_dead_letters(self) -> list[Job]:
        with self._store.session() as session:
            jobs = list(
                session.scalars(
                    select(Job)
                    .where(Job.status == JobStatus.DEAD)
                    .order_by(Job.job_id)
                )
            )
            for job in jobs:
                session.expunge(job)
            return jobs

    def get(self, job_id: int) -> Job | None:
        with self._store.session() as session:
            job = session.get(Job, job_id)
            if job is not None:
                session.expunge(job)
            return job

    def counts(self) -> dict[JobStatus, int]:
        with self._store.session() as session:
            rows = session.execute(
                select(Job.status, func.count()).group_by(Job.status)
            ).all()
        counts = {status: 0 for status in JobStatus}
        for status, count in rows:
            counts[status] = count
        return counts

    def purge_expired_dedup(self) -> int:
        """Delete dedup entries older than the TTL."""
        cutoff = self._clock() - self._dedup_ttl
        with self._store.session() as session:
            result = session.execute(
                delete(EventDedup).where(EventDedup.seen_at < cutoff)
            )
            return int(result.rowcount)  # type: ignore[attr-defined]

    def _set_status(
        self, job_id: int, status: JobStatus, *, last_error: str | None
    ) -> None:
        with self._store.session() as session:
            session.execute(
                update(Job)
                .where(Job.job_id == job_id)
                .values(status=status, last_error=last_error, updated_at=self._clock())
            )
