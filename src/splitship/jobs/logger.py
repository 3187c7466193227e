"""Logging for the job consumer."""

from __future__ import annotations

import loguru
from loguru import logger


class JobConsumerLogger:
    """Handles all logging for queue intake and job execution."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        """Initialize logger.

        Args:
            logger_instance: Logger instance to use (defaults to loguru.logger)
        """
        self._logger = logger_instance

    def enqueued(self, job_id: int, topic: str, shop: str) -> None:
        self._logger.bind(job_id=job_id, topic=topic, shop=shop).info(
            "Queued job {} ({}) for {}", job_id, topic, shop
        )

    def duplicate_dropped(self, event_id: str, topic: str) -> None:
        self._logger.bind(event_id=event_id, topic=topic).info(
            "Dropped duplicate delivery {} ({})", event_id, topic
        )

    def consumer_started(self, concurrency: int) -> None:
        self._logger.bind(concurrency=concurrency).info(
            "Job consumer started with {} workers", concurrency
        )

    def consumer_stopped(self, processed: int) -> None:
        self._logger.bind(processed=processed).info(
            "Job consumer stopped after {} jobs", processed
        )

    def job_started(self, job_id: int, topic: str, attempt: int) -> None:
        self._logger.bind(job_id=job_id, topic=topic, attempt=attempt).debug(
            "Running job {} ({}) attempt {}", job_id, topic, attempt
        )

    def lease_expired(self, job_id: int, topic: str, attempt: int) -> None:
        self._logger.bind(job_id=job_id, topic=topic, attempt=attempt).warning(
            "Job {} ({}) lease expired while RUNNING; reclaimed as attempt {}",
            job_id,
            topic,
            attempt,
        )

    def dedup_purged(self, removed: int) -> None:
        self._logger.bind(removed=removed).info(
            "Purged {} expired dedup entries", removed
        )

    def job_completed(self, job_id: int, topic: str, summary: str) -> None:
        self._logger.bind(job_id=job_id, topic=topic).info(
            "Job {} ({}) completed: {}", job_id, topic, summary
        )

    def job_failed(
        self, job_id: int, topic: str, attempt: int, delay: float, error: str
    ) -> None:
        self._logger.bind(job_id=job_id, topic=topic, attempt=attempt).warning(
            "Job {} ({}) failed on attempt {}; retrying in {:.1f}s: {}",
            job_id,
            topic,
            attempt,
            delay,
            error,
        )

    def job_dead_lettered(
        self, job_id: int, topic: str, attempt: int, error: str
    ) -> None:
        self._logger.bind(job_id=job_id, topic=topic, attempt=attempt).error(
            "Job {} ({}) dead-lettered after {} attempts: {}",
            job_id,
            topic,
            attempt,
            error,
        )

    def listener_failed(self, kind: str, error: Exception) -> None:
        self._logger.bind(event=kind).exception(
            "Job event listener failed on {}: {}", kind, error
        )
