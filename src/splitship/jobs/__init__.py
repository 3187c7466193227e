"""Durable job intake and the consumer that drives the saga."""

from __future__ import annotations

from splitship.jobs.consumer import JobConsumer, JobEvent, JobEventKind
from splitship.jobs.queue import JobQueue, QueuedJob, event_id_from_headers
from splitship.jobs.router import TopicRouter, UnknownTopicError, build_router

__all__ = [
    "JobConsumer",
    "JobEvent",
    "JobEventKind",
    "JobQueue",
    "QueuedJob",
    "TopicRouter",
    "UnknownTopicError",
    "build_router",
    "event_id_from_headers",
]
