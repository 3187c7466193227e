"""Tests for payment-captured and order-cancelled reconciliation."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest

from splitship.adapters.db.facade import HoldRecord, SagaStore
from splitship.adapters.db.models import SplitStatus
from splitship.adapters.gateway.protocol import GatewayError, OperationResult
from splitship.orchestrators.errors import SkipReason
from splitship.orchestrators.reconcile import (
    SplitReconciler,
    group_by_fulfillment_order,
    hold_already_cleared,
)

SHOP = "shop.example"
NOW = datetime(2026, 1, 3, 9, 30, 0)


class ReleaseGateway:
    """Gateway fake covering the calls reconciliation makes."""

    def __init__(
        self,
        *,
        release_errors: dict[str, str] | None = None,
        release_raises: str | None = None,
        cancel_error: str | None = None,
    ) -> None:
        self.release_errors = release_errors or {}
        self.release_raises = release_raises
        self.cancel_error = cancel_error
        self.release_calls: list[tuple[str, list[str]]] = []
        self.cancelled: list[str] = []

    def release_holds(
        self, fulfillment_order_id: str, hold_ids: list[str]
    ) -> list[OperationResult]:
        self.release_calls.append((fulfillment_order_id, list(hold_ids)))
        if self.release_raises is not None:
            raise GatewayError(self.release_raises)
        return [
            OperationResult(id=h, hold_id=h, error=self.release_errors.get(h))
            for h in hold_ids
        ]

    def cancel_order(self, order_id: str, reason: str) -> OperationResult:
        self.cancelled.append(order_id)
        return OperationResult(id=order_id, error=self.cancel_error)


def create_store() -> SagaStore:
    store = SagaStore("sqlite:///:memory:")
    store.create_schema()
    return store


def seed_request(
    store: SagaStore,
    *,
    status: SplitStatus = SplitStatus.AWAITING_PAYMENT,
    holds: list[tuple[str, str]] | None = None,
) -> int:
    """Create primary 1001 with payment order 5001 and the given holds."""
    store.upsert_order(order_id="1001", shop_domain=SHOP, order_name="#1001")
    store.upsert_order(order_id="5001", shop_domain=SHOP, order_name="#1002")
    request = store.upsert_split_request(
        "1001",
        shop_domain=SHOP,
        user_choice=True,
        status=status,
        calculated_parcels=3,
        shipping_level="3",
        additional_shipping_amount_cents=90000,
        payment_order_id="5001",
        draft_order_id="draft-1",
    )
    default_holds = [("h1", "fo1"), ("h2", "fo2"), ("h3", "fo2")]
    store.insert_hold_records(
        [
            HoldRecord(hold_id, fo_id, request.id)
            for hold_id, fo_id in (default_holds if holds is None else holds)
        ]
    )
    return request.id


def create_reconciler(
    store: SagaStore, gateway: ReleaseGateway, *, cancel_counterparts: bool = False
) -> SplitReconciler:
    return SplitReconciler(
        store=store,
        gateway_for=lambda shop: gateway,
        cancel_counterpart_orders=cancel_counterparts,
        clock=lambda: NOW,
    )


def payment_payload(financial_status: str = "paid", **overrides: Any) -> dict:
    payload: dict[str, Any] = {
        "id": 5001,
        "name": "#1002",
        "financial_status": financial_status,
        "note_attributes": [
            {"name": "is_additional_shipping_payment_order", "value": "true"},
            {"name": "primary_order_id", "value": "1001"},
        ],
    }
    payload.update(overrides)
    return payload


def primary_payload(**overrides: Any) -> dict:
    payload: dict[str, Any] = {
        "id": 1001,
        "name": "#1001",
        "note_attributes": [
            {"name": "split_choice", "value": "yes"},
            {"name": "split_fulfillment_count", "value": "3"},
        ],
    }
    payload.update(overrides)
    return payload


class TestPaymentCaptured:
    def test_releases_all_holds_and_completes(self) -> None:
        store = create_store()
        request_id = seed_request(store)
        gateway = ReleaseGateway()

        outcome = create_reconciler(store, gateway).handle_payment_captured(
            SHOP, payment_payload()
        )

        assert outcome.status == "COMPLETED"
        assert outcome.order_id == "1001"
        assert gateway.release_calls == [("fo1", ["h1"]), ("fo2", ["h2", "h3"])]
        assert store.list_active_holds(request_id) == []
        request = store.get_split_request(request_id)
        assert request is not None and request.error_log is None

    def test_already_released_hold_counts_as_cleared(self) -> None:
        store = create_store()
        request_id = seed_request(store)
        gateway = ReleaseGateway(release_errors={"h2": "Hold not found"})

        outcome = create_reconciler(store, gateway).handle_payment_captured(
            SHOP, payment_payload()
        )

        assert outcome.status == "COMPLETED"
        assert store.list_active_holds(request_id) == []

    def test_partial_release_fails_request(self) -> None:
        store = create_store()
        request_id = seed_request(store)
        gateway = ReleaseGateway(release_errors={"h2": "Internal error"})

        outcome = create_reconciler(store, gateway).handle_payment_captured(
            SHOP, payment_payload()
        )

        assert outcome.status == "FAILED"
        request = store.get_split_request(request_id)
        assert request is not None
        assert request.error_log == "Partial release failed: Hold h2: Internal error"
        assert [h.hold_id for h in store.list_active_holds(request_id)] == ["h2"]

    def test_retry_after_partial_release_completes(self) -> None:
        store = create_store()
        request_id = seed_request(store)
        gateway = ReleaseGateway(release_errors={"h2": "Internal error"})
        reconciler = create_reconciler(store, gateway)
        reconciler.handle_payment_captured(SHOP, payment_payload())

        gateway.release_errors = {}
        gateway.release_calls.clear()
        outcome = reconciler.handle_payment_captured(SHOP, payment_payload())

        assert outcome.status == "COMPLETED"
        assert gateway.release_calls == [("fo2", ["h2"])]
        assert store.list_active_holds(request_id) == []

    def test_no_active_holds_self_corrects(self) -> None:
        store = create_store()
        seed_request(store, holds=[])
        gateway = ReleaseGateway()

        outcome = create_reconciler(store, gateway).handle_payment_captured(
            SHOP, payment_payload()
        )

        assert outcome.status == "COMPLETED"
        assert gateway.release_calls == []

    def test_release_exception_marks_failed_and_raises(self) -> None:
        store = create_store()
        request_id = seed_request(store)
        gateway = ReleaseGateway(release_raises="Gateway unavailable")

        with pytest.raises(GatewayError):
            create_reconciler(store, gateway).handle_payment_captured(
                SHOP, payment_payload()
            )

        request = store.get_split_request(request_id)
        assert request is not None
        assert request.status == SplitStatus.FAILED
        assert request.error_log == "System Error: Gateway unavailable"

    @pytest.mark.parametrize(
        ("payload", "reason"),
        [
            (payment_payload(note_attributes=[]), SkipReason.NOT_PAYMENT_ORDER),
            (payment_payload("pending"), SkipReason.PAYMENT_NOT_SECURED),
        ],
    )
    def test_payload_skips(self, payload: dict, reason: SkipReason) -> None:
        store = create_store()
        seed_request(store)
        gateway = ReleaseGateway()

        outcome = create_reconciler(store, gateway).handle_payment_captured(
            SHOP, payload
        )

        assert outcome.reason == reason
        assert gateway.release_calls == []

    def test_authorized_payment_counts_as_secured(self) -> None:
        store = create_store()
        seed_request(store)

        outcome = create_reconciler(store, ReleaseGateway()).handle_payment_captured(
            SHOP, payment_payload("authorized")
        )

        assert outcome.status == "COMPLETED"

    def test_unknown_request_is_skipped(self) -> None:
        store = create_store()

        outcome = create_reconciler(store, ReleaseGateway()).handle_payment_captured(
            SHOP, payment_payload()
        )

        assert outcome.reason == SkipReason.NO_SPLIT_REQUEST

    def test_completed_request_is_not_reprocessed(self) -> None:
        store = create_store()
        seed_request(store, status=SplitStatus.COMPLETED)
        gateway = ReleaseGateway()

        outcome = create_reconciler(store, gateway).handle_payment_captured(
            SHOP, payment_payload()
        )

        assert outcome.reason == SkipReason.ALREADY_PROCESSED
        assert gateway.release_calls == []


class TestOrderCancelled:
    def test_primary_cancellation_cancels_request(self) -> None:
        store = create_store()
        request_id = seed_request(store)
        gateway = ReleaseGateway()

        outcome = create_reconciler(store, gateway).handle_order_cancelled(
            SHOP, primary_payload(cancelled_at="2026-01-05T10:00:00+08:00")
        )

        assert outcome.status == "CANCELLED"
        request = store.get_split_request(request_id)
        assert request is not None
        assert request.primary_order_cancelled_at == datetime(2026, 1, 5, 2, 0, 0)
        assert request.payment_order_cancelled_at is None
        order = store.get_order("1001")
        assert order is not None and order.cancelled_at is not None
        assert gateway.cancelled == []

    def test_payment_cancellation_cancels_request(self) -> None:
        store = create_store()
        request_id = seed_request(store)

        outcome = create_reconciler(store, ReleaseGateway()).handle_order_cancelled(
            SHOP, payment_payload("voided")
        )

        assert outcome.status == "CANCELLED"
        request = store.get_split_request(request_id)
        assert request is not None
        assert request.payment_order_cancelled_at == NOW

    def test_terminal_request_only_gets_timestamp(self) -> None:
        store = create_store()
        request_id = seed_request(store, status=SplitStatus.COMPLETED)

        outcome = create_reconciler(store, ReleaseGateway()).handle_order_cancelled(
            SHOP, payment_payload(cancelled_at="2026-01-04T00:00:00Z")
        )

        assert outcome.status == "COMPLETED"
        request = store.get_split_request(request_id)
        assert request is not None
        assert request.status == SplitStatus.COMPLETED
        assert request.payment_order_cancelled_at == datetime(2026, 1, 4)

    def test_unrelated_order_is_skipped(self) -> None:
        store = create_store()
        seed_request(store)

        outcome = create_reconciler(store, ReleaseGateway()).handle_order_cancelled(
            SHOP, {"id": 42, "name": "#42"}
        )

        assert outcome.reason == SkipReason.NOT_SPLIT_ORDER

    def test_split_order_without_request_is_skipped(self) -> None:
        store = create_store()

        outcome = create_reconciler(store, ReleaseGateway()).handle_order_cancelled(
            SHOP, primary_payload()
        )

        assert outcome.reason == SkipReason.NO_SPLIT_REQUEST

    def test_counterpart_is_cancelled_when_enabled(self) -> None:
        store = create_store()
        request_id = seed_request(store)
        gateway = ReleaseGateway()

        create_reconciler(
            store, gateway, cancel_counterparts=True
        ).handle_order_cancelled(SHOP, primary_payload())

        assert gateway.cancelled == ["5001"]
        request = store.get_split_request(request_id)
        assert request is not None
        assert request.payment_order_cancelled_at == NOW
        payment_order = store.get_order("5001")
        assert payment_order is not None and payment_order.cancelled_at == NOW

    def test_cancelled_counterpart_is_left_alone(self) -> None:
        store = create_store()
        seed_request(store)
        store.mark_order_cancelled("5001", NOW, shop_domain=SHOP)
        gateway = ReleaseGateway()

        create_reconciler(
            store, gateway, cancel_counterparts=True
        ).handle_order_cancelled(SHOP, primary_payload())

        assert gateway.cancelled == []

    def test_counterpart_cancel_failure_keeps_request_cancelled(self) -> None:
        store = create_store()
        request_id = seed_request(store)
        gateway = ReleaseGateway(cancel_error="Order has been paid")

        outcome = create_reconciler(
            store, gateway, cancel_counterparts=True
        ).handle_order_cancelled(SHOP, payment_payload())

        assert gateway.cancelled == ["1001"]
        assert outcome.status == "CANCELLED"
        request = store.get_split_request(request_id)
        assert request is not None
        assert request.primary_order_cancelled_at is None


def test_hold_already_cleared_markers() -> None:
    assert hold_already_cleared(None)
    assert hold_already_cleared("Hold NOT FOUND")
    assert hold_already_cleared("Fulfillment order is not on hold")
    assert not hold_already_cleared("Throttled")


def test_group_by_fulfillment_order_keeps_order() -> None:
    store = create_store()
    request_id = seed_request(store, holds=[("a", "fo2"), ("b", "fo1"), ("c", "fo2")])

    grouped = group_by_fulfillment_order(store.list_holds(request_id))

    assert {fo: [h.hold_id for h in holds] for fo, holds in grouped.items()} == {
        "fo2": ["a", "c"],
        "fo1": ["b"],
    }
