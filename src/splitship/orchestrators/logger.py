"""Logging for the split saga and its terminal handlers.

Keeps log wording and structured fields out of the saga code.
"""

from __future__ import annotations

import loguru
from loguru import logger


class SplitOrchestratorLogger:
    """Handles all logging for the order-created saga."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        """Initialize logger.

        Args:
            logger_instance: Logger instance to use (defaults to loguru.logger)
        """
        self._logger = logger_instance

    def skipped(self, order_id: str | None, reason: str) -> None:
        self._logger.bind(order_id=order_id, reason=reason).info(
            "Skipping order {}: {}", order_id, reason
        )

    def parcels_computed(
        self, order_name: str, parcels: int, amount_cents: int, level: str
    ) -> None:
        self._logger.bind(
            order_name=order_name, parcels=parcels, amount_cents=amount_cents
        ).info(
            "Order {} packs into {} parcels (level {}, extra {} cents)",
            order_name,
            parcels,
            level,
            amount_cents,
        )

    def parcel_count_mismatch(
        self, order_name: str, computed: int, requested: int
    ) -> None:
        self._logger.bind(
            order_name=order_name, computed=computed, requested=requested
        ).warning(
            "Order {} checkout asked for {} parcels but packing produced {}",
            order_name,
            requested,
            computed,
        )

    def request_initialized(self, request_id: int, status: str) -> None:
        self._logger.bind(split_request_id=request_id, status=status).info(
            "Split request {} initialized as {}", request_id, status
        )

    def holds_resumed(self, request_id: int, hold_count: int) -> None:
        self._logger.bind(split_request_id=request_id, holds=hold_count).info(
            "Split request {} already has {} recorded holds; skipping split",
            request_id,
            hold_count,
        )

    def split_done(self, order_name: str, fulfillment_order_ids: list[str]) -> None:
        self._logger.bind(
            order_name=order_name, fulfillment_orders=len(fulfillment_order_ids)
        ).info(
            "Split order {} into fulfillment orders {}",
            order_name,
            ", ".join(fulfillment_order_ids),
        )

    def hold_partial_failure(
        self, order_name: str, failed: dict[str, str], rolled_back: list[str]
    ) -> None:
        self._logger.bind(
            order_name=order_name, failed=len(failed), rolled_back=len(rolled_back)
        ).error(
            "Hold batch for {} failed on {}; released {} successful holds",
            order_name,
            ", ".join(f"{fo_id} ({error})" for fo_id, error in failed.items()),
            len(rolled_back),
        )

    def rollback_incomplete(self, order_name: str, errors: list[str]) -> None:
        self._logger.bind(order_name=order_name).critical(
            "Rollback for {} left holds in place: {}", order_name, "; ".join(errors)
        )

    def holds_recorded(self, order_name: str, hold_count: int) -> None:
        self._logger.bind(order_name=order_name, holds=hold_count).info(
            "All {} parcels of {} held and recorded", hold_count, order_name
        )

    def hold_persistence_failed(self, order_name: str, hold_ids: list[str]) -> None:
        self._logger.bind(order_name=order_name, hold_ids=hold_ids).critical(
            "Holds {} for {} are live but were not recorded; manual "
            "reconciliation required",
            ", ".join(hold_ids),
            order_name,
        )

    def payment_order_created(
        self, order_name: str, payment_order_name: str, draft_order_id: str
    ) -> None:
        self._logger.bind(
            order_name=order_name, draft_order_id=draft_order_id
        ).info(
            "Created payment order {} for {}", payment_order_name, order_name
        )

    def invoice_sent(self, order_name: str, locale: str) -> None:
        self._logger.bind(order_name=order_name, locale=locale).info(
            "Invoice for {} sent ({})", order_name, locale
        )

    def saga_completed(self, order_name: str, request_id: int) -> None:
        self._logger.bind(order_name=order_name, split_request_id=request_id).info(
            "Order {} split and invoiced; awaiting payment", order_name
        )


class ReconcileLogger:
    """Handles logging for payment-captured and cancellation events."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def skipped(self, order_id: str | None, reason: str) -> None:
        self._logger.bind(order_id=order_id, reason=reason).debug(
            "Ignoring order {}: {}", order_id, reason
        )

    def payment_received(self, payment_order_name: str | None, status: str) -> None:
        self._logger.bind(payment_order=payment_order_name).info(
            "Payment order {} is {}", payment_order_name, status
        )

    def self_corrected(self, request_id: int) -> None:
        self._logger.bind(split_request_id=request_id).info(
            "No active holds for split request {}; marking completed", request_id
        )

    def holds_released(self, request_id: int, released: int) -> None:
        self._logger.bind(split_request_id=request_id, released=released).info(
            "Released {} holds for split request {}", released, request_id
        )

    def partial_release(self, request_id: int, errors: list[str]) -> None:
        self._logger.bind(split_request_id=request_id).error(
            "Payment captured but holds remain for split request {}: {}",
            request_id,
            "; ".join(errors),
        )

    def request_cancelled(self, request_id: int, which: str, status: str) -> None:
        self._logger.bind(split_request_id=request_id, which=which).info(
            "{} order of split request {} cancelled (status {})",
            which.capitalize(),
            request_id,
            status,
        )

    def counterpart_active(
        self, request_id: int, which: str, order_id: str | None
    ) -> None:
        self._logger.bind(split_request_id=request_id, counterpart=order_id).warning(
            "Split request {}: {} order {} is still open; review manually",
            request_id,
            which,
            order_id,
        )

    def counterpart_cancel_failed(
        self, request_id: int, order_id: str, error: str
    ) -> None:
        self._logger.bind(split_request_id=request_id, order_id=order_id).error(
            "Split request {}: could not cancel order {}: {}",
            request_id,
            order_id,
            error,
        )
