"""Terminal transitions driven by payment and cancellation events."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from splitship.adapters.db.facade import SagaStore
from splitship.adapters.db.models import FulfillmentHold, SplitRequest, SplitStatus
from splitship.adapters.gateway.protocol import GatewayError
from splitship.orchestrators.errors import SkipReason, SplitOutcome
from splitship.orchestrators.logger import ReconcileLogger
from splitship.orchestrators.payload import OrderPayload
from splitship.orchestrators.split import GatewayFactory

# Release errors that mean the hold is already gone.
_CLEARED_MARKERS = ("not found", "not on hold")

COUNTERPART_CANCEL_REASON = "OTHER"


def hold_already_cleared(error: str | None) -> bool:
    if error is None:
        return True
    lowered = error.lower()
    return any(marker in lowered for marker in _CLEARED_MARKERS)


def group_by_fulfillment_order(
    holds: list[FulfillmentHold],
) -> dict[str, list[FulfillmentHold]]:
    grouped: dict[str, list[FulfillmentHold]] = {}
    for hold in holds:
        grouped.setdefault(hold.fulfillment_order_id, []).append(hold)
    return grouped


class SplitReconciler:
    """Close out split requests when the payment order is paid or cancelled."""

    def __init__(
        self,
        *,
        store: SagaStore,
        gateway_for: GatewayFactory,
        cancel_counterpart_orders: bool = False,
        logger: ReconcileLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._gateway_for = gateway_for
        self._cancel_counterparts = cancel_counterpart_orders
        self._logger = logger or ReconcileLogger()
        self._clock = clock or (lambda: datetime.now(UTC).replace(tzinfo=None))

    def handle_payment_captured(
        self, shop: str, payload: OrderPayload | dict[str, Any]
    ) -> SplitOutcome:
        """Release the holds of a split request once its payment order is paid.

        Holds whose release reports "not found" or "not on hold" count as
        released. If every hold clears the request becomes COMPLETED;
        otherwise it becomes FAILED with the release errors and the cleared
        holds are still marked released.

        Raises:
            GatewayError: A release call failed outright (request is FAILED)
        """
        order = _parse(payload)
        primary_order_id = order.primary_order_id
        if not order.is_payment_order or not primary_order_id:
            return self._skip(SkipReason.NOT_PAYMENT_ORDER, order.id)

        self._logger.payment_received(order.name, order.financial_status or "unknown")
        if not order.payment_secured:
            return self._skip(SkipReason.PAYMENT_NOT_SECURED, order.id)

        request = self._store.find_split_request(primary_order_id)
        if request is None:
            return self._skip(SkipReason.NO_SPLIT_REQUEST, primary_order_id)
        if request.status in (SplitStatus.COMPLETED, SplitStatus.CANCELLED):
            return self._skip(
                SkipReason.ALREADY_PROCESSED,
                primary_order_id,
                request=request,
            )

        try:
            request = self._release_all(shop, request)
        except Exception as e:
            self._store.record_failure(request.id, f"System Error: {e}")
            raise

        return SplitOutcome(
            order_id=primary_order_id,
            split_request_id=request.id,
            payment_order_id=request.payment_order_id,
            status=request.status.value,
        )

    def _release_all(self, shop: str, request: SplitRequest) -> SplitRequest:
        active = self._store.list_active_holds(request.id)
        if not active:
            self._logger.self_corrected(request.id)
            return self._store.update_status(request.id, SplitStatus.COMPLETED)

        gateway = self._gateway_for(shop)
        cleared: list[str] = []
        errors: list[str] = []
        for fo_id, holds in group_by_fulfillment_order(active).items():
            results = gateway.release_holds(fo_id, [hold.hold_id for hold in holds])
            for hold, result in zip(holds, results, strict=True):
                if hold_already_cleared(result.error):
                    cleared.append(hold.hold_id)
                else:
                    errors.append(f"Hold {hold.hold_id}: {result.error}")

        self._store.mark_holds_released(cleared)
        self._logger.holds_released(request.id, len(cleared))

        if errors:
            self._logger.partial_release(request.id, errors)
            return self._store.update_status(
                request.id,
                SplitStatus.FAILED,
                error_log=f"Partial release failed: {'; '.join(errors)}",
            )
        return self._store.update_status(
            request.id, SplitStatus.COMPLETED, error_log=None
        )

    def handle_order_cancelled(
        self, shop: str, payload: OrderPayload | dict[str, Any]
    ) -> SplitOutcome:
        """Record the cancellation of a primary or payment order.

        An in-flight request becomes CANCELLED. A request that already reached
        a terminal status keeps it; only the cancellation timestamp is
        written.
        """
        order = _parse(payload)
        if not order.id:
            return self._skip(SkipReason.MISSING_ORDER_FIELDS, None)

        if order.is_payment_order:
            which = "payment"
            request = self._store.find_split_request_by_payment_order(order.id)
        elif order.requests_split_attributes:
            which = "primary"
            request = self._store.find_split_request(order.id)
        else:
            return self._skip(SkipReason.NOT_SPLIT_ORDER, order.id)

        if request is None:
            return self._skip(SkipReason.NO_SPLIT_REQUEST, order.id)

        cancelled_at = _naive(order.cancelled_at or order.updated_at) or self._clock()
        self._store.mark_order_cancelled(order.id, cancelled_at, shop_domain=shop)
        timestamps = _timestamp_fields(which, cancelled_at)

        if request.status.is_terminal:
            request = self._store.stamp_cancellation(request.id, **timestamps)
        else:
            request = self._store.update_status(
                request.id, SplitStatus.CANCELLED, **timestamps
            )
        self._logger.request_cancelled(request.id, which, request.status.value)

        self._check_counterpart(shop, request, which)
        return SplitOutcome(
            order_id=request.primary_order_id,
            split_request_id=request.id,
            payment_order_id=request.payment_order_id,
            status=request.status.value,
        )

    def _check_counterpart(self, shop: str, request: SplitRequest, which: str) -> None:
        if which == "primary":
            counterpart_which = "payment"
            counterpart_id = request.payment_order_id
        else:
            counterpart_which = "primary"
            counterpart_id = request.primary_order_id
        if not counterpart_id:
            return

        counterpart = self._store.get_order(counterpart_id)
        if counterpart is not None and counterpart.cancelled_at is not None:
            return

        if not self._cancel_counterparts:
            self._logger.counterpart_active(
                request.id, counterpart_which, counterpart_id
            )
            return

        gateway = self._gateway_for(shop)
        try:
            result = gateway.cancel_order(counterpart_id, COUNTERPART_CANCEL_REASON)
        except GatewayError as e:
            self._logger.counterpart_cancel_failed(request.id, counterpart_id, str(e))
            return
        if not result.ok:
            self._logger.counterpart_cancel_failed(
                request.id, counterpart_id, result.error or "unknown error"
            )
            return

        cancelled_at = self._clock()
        self._store.mark_order_cancelled(counterpart_id, cancelled_at, shop_domain=shop)
        self._store.stamp_cancellation(
            request.id, **_timestamp_fields(counterpart_which, cancelled_at)
        )

    def _skip(
        self,
        reason: SkipReason,
        order_id: str | None,
        *,
        request: SplitRequest | None = None,
    ) -> SplitOutcome:
        self._logger.skipped(order_id, reason.value)
        return SplitOutcome.skip(
            reason,
            order_id,
            split_request_id=request.id if request is not None else None,
            status=request.status.value if request is not None else None,
        )


def _parse(payload: OrderPayload | dict[str, Any]) -> OrderPayload:
    if isinstance(payload, OrderPayload):
        return payload
    return OrderPayload.parse(payload)


def _naive(value: datetime | None) -> datetime | None:
    """Normalize to naive UTC, matching how timestamps are stored."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _timestamp_fields(which: str, cancelled_at: datetime) -> dict[str, datetime]:
    if which == "primary":
        return {"primary_order_cancelled_at": cancelled_at}
    return {"payment_order_cancelled_at": cancelled_at}
