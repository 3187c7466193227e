from __future__ import annotations

from datetime import datetime, timedelta

from splitship.adapters.db.facade import SagaStore
from splitship.adapters.db.models import JobStatus
from splitship.jobs.queue import JobQueue, event_id_from_headers


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def create_queue(
    *, ttl_seconds: int = 3600, lease_seconds: float = 300
) -> tuple[JobQueue, SagaStore, FakeClock]:
    store = SagaStore("sqlite:///:memory:")
    store.create_schema()
    clock = FakeClock()
    queue = JobQueue(
        store,
        dedup_ttl_seconds=ttl_seconds,
        lease_seconds=lease_seconds,
        clock=clock,
    )
    return queue, store, clock


class TestEnqueue:
    def test_enqueue_returns_job_id_and_stores_payload(self) -> None:
        queue, _, _ = create_queue()

        job_id = queue.enqueue("shop.example", "orders/create", {"id": 1})

        assert job_id is not None
        job = queue.get(job_id)
        assert job is not None
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 0
        assert job.topic == "orders/create"

    def test_duplicate_event_within_ttl_is_dropped(self) -> None:
        queue, _, clock = create_queue(ttl_seconds=3600)

        first = queue.enqueue("s", "orders/create", {"id": 1}, event_id="evt-1")
        clock.advance(minutes=30)
        second = queue.enqueue("s", "orders/create", {"id": 1}, event_id="evt-1")

        assert first is not None
        assert second is None
        assert queue.counts()[JobStatus.QUEUED] == 1

    def test_event_is_accepted_again_after_ttl(self) -> None:
        queue, _, clock = create_queue(ttl_seconds=3600)

        queue.enqueue("s", "orders/create", {"id": 1}, event_id="evt-1")
        clock.advance(hours=2)
        again = queue.enqueue("s", "orders/create", {"id": 1}, event_id="evt-1")

        assert again is not None
        assert queue.counts()[JobStatus.QUEUED] == 2

    def test_jobs_without_event_id_are_never_deduplicated(self) -> None:
        queue, _, _ = create_queue()

        first = queue.enqueue("s", "orders/paid", {"id": 1})
        second = queue.enqueue("s", "orders/paid", {"id": 1})

        assert first is not None and second is not None
        assert first != second

    def test_purge_expired_dedup(self) -> None:
        queue, _, clock = create_queue(ttl_seconds=60)
        queue.enqueue("s", "t", {}, event_id="old")
        clock.advance(seconds=120)
        queue.enqueue("s", "t", {}, event_id="new")

        assert queue.purge_expired_dedup() == 1


class TestClaim:
    def test_claim_takes_oldest_job_and_counts_attempt(self) -> None:
        queue, _, clock = create_queue()
        first = queue.enqueue("s", "orders/create", {"id": 1}, event_id="a")
        clock.advance(seconds=1)
        queue.enqueue("s", "orders/create", {"id": 2}, event_id="b")

        job = queue.claim()

        assert job is not None
        assert job.job_id == first
        assert job.payload == {"id": 1}
        assert job.attempts == 1
        assert job.event_id == "a"
        stored = queue.get(job.job_id)
        assert stored is not None and stored.status == JobStatus.RUNNING

    def test_claimed_job_is_not_claimed_twice(self) -> None:
        queue, _, _ = create_queue()
        queue.enqueue("s", "orders/create", {"id": 1})

        assert queue.claim() is not None
        assert queue.claim() is None

    def test_abandoned_job_is_reclaimed_after_lease_expires(self) -> None:
        queue, _, clock = create_queue(lease_seconds=60)
        job_id = queue.enqueue("s", "orders/create", {"id": 1})
        first = queue.claim()
        assert first is not None and first.job_id == job_id

        clock.advance(seconds=59)
        assert queue.claim() is None

        clock.advance(seconds=1)
        again = queue.claim()

        assert again is not None
        assert again.job_id == job_id
        assert again.attempts == 2
        stored = queue.get(again.job_id)
        assert stored is not None
        assert stored.status == JobStatus.RUNNING
        assert stored.claimed_at == clock.now

    def test_reclaim_renews_the_lease(self) -> None:
        queue, _, clock = create_queue(lease_seconds=60)
        queue.enqueue("s", "orders/create", {"id": 1})
        assert queue.claim() is not None
        clock.advance(seconds=60)
        assert queue.claim() is not None

        clock.advance(seconds=30)

        assert queue.claim() is None

    def test_running_job_does_not_block_queued_jobs(self) -> None:
        queue, _, clock = create_queue(lease_seconds=60)
        first = queue.enqueue("s", "orders/create", {"id": 1})
        clock.advance(seconds=1)
        second = queue.enqueue("s", "orders/create", {"id": 2})

        claimed = [queue.claim(), queue.claim()]

        assert [job.job_id if job else None for job in claimed] == [first, second]

    def test_retry_delays_next_claim(self) -> None:
        queue, _, clock = create_queue()
        queue.enqueue("s", "orders/create", {"id": 1})
        job = queue.claim()
        assert job is not None

        queue.retry(job.job_id, "TransientExternalFailure: boom", 10)

        assert queue.claim() is None
        clock.advance(seconds=10)
        again = queue.claim()
        assert again is not None
        assert again.attempts == 2
        stored = queue.get(job.job_id)
        assert stored is not None
        assert stored.last_error == "TransientExternalFailure: boom"

    def test_complete_clears_last_error(self) -> None:
        queue, _, _ = create_queue()
        queue.enqueue("s", "orders/create", {"id": 1})
        job = queue.claim()
        assert job is not None
        queue.retry(job.job_id, "boom", 0)
        job = queue.claim()
        assert job is not None

        queue.complete(job.job_id)

        stored = queue.get(job.job_id)
        assert stored is not None
        assert stored.status == JobStatus.COMPLETED
        assert stored.last_error is None


class TestDeadLetters:
    def test_dead_letter_and_requeue(self) -> None:
        queue, _, _ = create_queue()
        job_id = queue.enqueue("s", "orders/create", {"id": 1})
        assert job_id is not None
        job = queue.claim()
        assert job is not None

        queue.dead_letter(job.job_id, "HoldPersistenceError: manual")

        dead = queue.list_dead_letters()
        assert [d.job_id for d in dead] == [job_id]
        assert dead[0].last_error == "HoldPersistenceError: manual"

        assert queue.requeue(job_id) is True
        requeued = queue.get(job_id)
        assert requeued is not None
        assert requeued.status == JobStatus.QUEUED
        assert requeued.attempts == 0
        assert queue.list_dead_letters() == []

    def test_requeue_ignores_jobs_that_are_not_dead(self) -> None:
        queue, _, _ = create_queue()
        job_id = queue.enqueue("s", "orders/create", {"id": 1})
        assert job_id is not None

        assert queue.requeue(job_id) is False
        assert queue.requeue(999) is False

    def test_counts_cover_every_status(self) -> None:
        queue, _, _ = create_queue()
        queue.enqueue("s", "t", {})
        queue.enqueue("s", "t", {})
        job = queue.claim()
        assert job is not None
        queue.dead_letter(job.job_id, "x")

        counts = queue.counts()

        assert counts == {
            JobStatus.QUEUED: 1,
            JobStatus.RUNNING: 0,
            JobStatus.COMPLETED: 0,
            JobStatus.DEAD: 1,
        }


def test_event_id_from_headers_is_case_insensitive() -> None:
    assert event_id_from_headers({"X-Shopify-Event-Id": " evt-9 "}) == "evt-9"
    assert event_id_from_headers({"Webhook-Id": "w-1"}) == "w-1"
    assert event_id_from_headers({"X-Event-Id": "", "Content-Type": "json"}) is None
