"""Order-created saga: split the fulfillment, hold it, and invoice the extra parcels.

Phases run strictly in order for one order:

1. precheck the payload (skip, no writes)
2. pack the line items and price the extra parcels (pure)
3. write reference rows and the split request checkpoint
4. split the open fulfillment order and hold every piece, releasing
   successful holds if any hold in the batch fails
5. create, complete and invoice the payment order
6. mark the request AWAITING_PAYMENT
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from splitship.adapters.db.facade import HoldRecord, SagaStore
from splitship.adapters.db.models import SplitRequest, SplitStatus
from splitship.adapters.gateway.protocol import (
    FulfillmentGateway,
    FulfillmentOrder,
    GatewayError,
    SplitLine,
    SplitSpec,
)
from splitship.core.config import PackingConfig
from splitship.orchestrators.errors import (
    HoldPersistenceError,
    PartialHoldFailure,
    SkipReason,
    SplitInitError,
    SplitOutcome,
    TransientExternalFailure,
)
from splitship.orchestrators.invoice import (
    HOLD_NOTES,
    HOLD_REASON,
    build_payment_draft,
    invoice_copy,
)
from splitship.orchestrators.logger import SplitOrchestratorLogger
from splitship.orchestrators.payload import CustomerPayload, OrderPayload
from splitship.packing.parcel_packer import Parcel, pack
from splitship.shipping.rates import ShippingRate, ShippingRateTable

GatewayFactory = Callable[[str], FulfillmentGateway]

HOLD_RECORDS_FAILED = (
    "Database failed to save hold records. Manual intervention required."
)


@dataclass(frozen=True, slots=True)
class SplitPlan:
    """Everything phases 3-6 need, derived from the payload without I/O."""

    order_id: str
    order_name: str
    customer: CustomerPayload
    customer_id: str
    customer_gid: str
    wants_split: bool
    requested_parcels: int
    parcels: tuple[Parcel, ...]
    rate: ShippingRate
    additional_amount_cents: int
    locale: str

    @property
    def parcel_count(self) -> int:
        return len(self.parcels)


def unique_in_order(ids: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in ids:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def build_split_specs(
    parcels: tuple[Parcel, ...] | list[Parcel], fulfillment_order: FulfillmentOrder
) -> list[SplitSpec]:
    """Map parcels 2..N onto fulfillment-order lines.

    The first parcel stays on the source fulfillment order. Items whose line
    is not on the fulfillment order are dropped; a parcel left empty is
    skipped.
    """
    specs: list[SplitSpec] = []
    for parcel in parcels[1:]:
        lines: list[SplitLine] = []
        for item in parcel.items:
            fo_line = fulfillment_order.line_for(item.line_item_id)
            if fo_line is not None:
                lines.append(
                    SplitLine(
                        fulfillment_order_line_id=fo_line.id, quantity=item.quantity
                    )
                )
        if lines:
            specs.append(SplitSpec(lines=tuple(lines)))
    return specs


class SplitOrchestrator:
    """Drive the order-created saga against the store and the gateway.

    All collaborators are injected once at process start. The orchestrator
    holds no per-order state between calls; the split request row is the only
    synchronization point between concurrent deliveries.
    """

    def __init__(
        self,
        *,
        store: SagaStore,
        gateway_for: GatewayFactory,
        rates: ShippingRateTable,
        packing: PackingConfig | None = None,
        default_locale: str = "zh-CN",
        invoice_due_hours: int = 24,
        logger: SplitOrchestratorLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._gateway_for = gateway_for
        self._rates = rates
        self._packing = packing or PackingConfig()
        self._default_locale = default_locale
        self._invoice_due_hours = invoice_due_hours
        self._logger = logger or SplitOrchestratorLogger()
        self._clock = clock or (lambda: datetime.now(UTC))

    def handle_order_created(
        self, shop: str, payload: OrderPayload | dict[str, Any]
    ) -> SplitOutcome:
        """Run the saga for one order-created event.

        Args:
            shop: Shop domain the event belongs to
            payload: Order-created webhook body

        Returns:
            Outcome describing the work done or why it was skipped

        Raises:
            SplitInitError: The checkpoint could not be written
            TransientExternalFailure: A gateway call failed (request is FAILED)
            PartialHoldFailure: Some holds failed and the rest were released
            HoldPersistenceError: Holds are live but were not recorded
        """
        order = (
            payload
            if isinstance(payload, OrderPayload)
            else OrderPayload.parse(payload)
        )

        plan_or_skip = self._plan(order)
        if isinstance(plan_or_skip, SplitOutcome):
            self._logger.skipped(order.id, plan_or_skip.reason_label)
            return plan_or_skip
        plan = plan_or_skip

        request_or_skip = self._init_request(shop, plan)
        if isinstance(request_or_skip, SplitOutcome):
            self._logger.skipped(order.id, request_or_skip.reason_label)
            return request_or_skip
        request = request_or_skip

        gateway = self._gateway_for(shop)

        existing_holds = self._store.list_holds(request.id)
        if existing_holds:
            self._logger.holds_resumed(request.id, len(existing_holds))
        else:
            self._split_and_hold(gateway, plan, request)

        payment_order_id, draft_order_id = self._create_payment_order(
            gateway, shop, plan, request
        )

        try:
            request = self._store.update_status(
                request.id,
                SplitStatus.AWAITING_PAYMENT,
                payment_order_id=payment_order_id,
                draft_order_id=draft_order_id,
                error_log=None,
            )
        except Exception as e:
            self._store.record_failure(request.id, f"Finalize failed: {e}")
            raise

        self._logger.saga_completed(plan.order_name, request.id)
        return SplitOutcome(
            order_id=plan.order_id,
            split_request_id=request.id,
            payment_order_id=payment_order_id,
            draft_order_id=draft_order_id,
            status=request.status.value,
        )

    # Phases 1-2 -------------------------------------------------------------

    def _plan(self, order: OrderPayload) -> SplitPlan | SplitOutcome:
        if not order.id or not order.name:
            return SplitOutcome.skip(SkipReason.MISSING_ORDER_FIELDS, order.id)
        if order.customer is None or not order.customer.id:
            return SplitOutcome.skip(SkipReason.MISSING_CUSTOMER, order.id)
        if not order.shipping_lines:
            return SplitOutcome.skip(SkipReason.NO_SHIPPING_LINES, order.id)
        if not order.requests_split_attributes:
            return SplitOutcome.skip(SkipReason.NO_SPLIT_REQUIRED, order.id)

        rate = self._rates.lookup(
            order.first_shipping_title, order.shipping_country_code
        )
        if rate is None:
            return SplitOutcome.skip(SkipReason.UNKNOWN_SHIPPING_RATE, order.id)

        parcels = pack(
            order.packer_lines(),
            cap_cents=self._packing.cap_cents,
            absorb_budget_cents=self._packing.absorb_budget_cents,
            absorb_items=self._packing.absorb_items,
        )
        if len(parcels) <= 1:
            return SplitOutcome.skip(SkipReason.SINGLE_PARCEL, order.id)
        if len(parcels) != order.split_count:
            self._logger.parcel_count_mismatch(
                order.name, len(parcels), order.split_count
            )

        amount = (len(parcels) - 1) * rate.cost_per_parcel_cents
        self._logger.parcels_computed(order.name, len(parcels), amount, rate.level)
        return SplitPlan(
            order_id=order.id,
            order_name=order.name,
            customer=order.customer,
            customer_id=order.customer.id,
            customer_gid=order.customer.admin_graphql_api_id or order.customer.id,
            wants_split=order.split_choice == "yes",
            requested_parcels=order.split_count,
            parcels=tuple(parcels),
            rate=rate,
            additional_amount_cents=amount,
            locale=order.locale(self._default_locale),
        )

    # Phase 3 ----------------------------------------------------------------

    def _init_request(self, shop: str, plan: SplitPlan) -> SplitRequest | SplitOutcome:
        customer = plan.customer
        try:
            shop_row = self._store.upsert_shop(shop)
            self._store.upsert_order(
                order_id=plan.order_id,
                order_name=plan.order_name,
                shop_domain=shop,
                customer_id=plan.customer_id,
            )
            self._store.upsert_customer(
                customer_id=plan.customer_id,
                shop_domain=shop,
                email=customer.email,
                first_name=customer.first_name,
                last_name=customer.last_name,
                locale=plan.locale,
            )

            existing = self._store.find_split_request(plan.order_id)
            if existing is not None and existing.status.skips_order_created:
                return SplitOutcome.skip(
                    SkipReason.ALREADY_PROCESSED,
                    plan.order_id,
                    split_request_id=existing.id,
                    status=existing.status.value,
                )

            if not shop_row.app_enabled:
                status = SplitStatus.APP_DISABLED
            elif plan.wants_split:
                status = SplitStatus.PENDING
            else:
                status = SplitStatus.COMPLETED

            request = self._store.upsert_split_request(
                plan.order_id,
                shop_domain=shop,
                user_choice=plan.wants_split,
                status=status,
                calculated_parcels=plan.parcel_count,
                shipping_level=plan.rate.level,
                additional_shipping_amount_cents=plan.additional_amount_cents,
                error_log=None,
            )
        except SQLAlchemyError as e:
            raise SplitInitError(f"Split init DB failed: {e}") from e

        self._logger.request_initialized(request.id, request.status.value)

        match request.status:
            case SplitStatus.APP_DISABLED:
                return SplitOutcome.skip(
                    SkipReason.APP_DISABLED,
                    plan.order_id,
                    split_request_id=request.id,
                    status=request.status.value,
                )
            case SplitStatus.COMPLETED:
                return SplitOutcome.skip(
                    SkipReason.USER_DECLINED,
                    plan.order_id,
                    split_request_id=request.id,
                    status=request.status.value,
                )
            case SplitStatus.PENDING:
                return request
            case (
                SplitStatus.AWAITING_PAYMENT
                | SplitStatus.FAILED
                | SplitStatus.CANCELLED
            ):
                raise SplitInitError(
                    f"Split request {request.id} initialized as {request.status.value}"
                )

    # Phase 4 ----------------------------------------------------------------

    def _split_and_hold(
        self, gateway: FulfillmentGateway, plan: SplitPlan, request: SplitRequest
    ) -> None:
        try:
            held = self._place_holds(gateway, plan)
        except GatewayError as e:
            self._store.record_failure(request.id, f"Split/hold failed: {e}")
            raise TransientExternalFailure(str(e)) from e
        except Exception as e:
            self._store.record_failure(request.id, f"Split/hold failed: {e}")
            raise

        records = [
            HoldRecord(
                hold_id=hold_id,
                fulfillment_order_id=fo_id,
                split_request_id=request.id,
            )
            for fo_id, hold_id in held
        ]
        try:
            self._store.insert_hold_records(records)
        except Exception as e:
            self._logger.hold_persistence_failed(
                plan.order_name, [record.hold_id for record in records]
            )
            self._store.record_failure(
                request.id, f"Split/hold failed: {HOLD_RECORDS_FAILED}"
            )
            raise HoldPersistenceError(HOLD_RECORDS_FAILED) from e
        self._logger.holds_recorded(plan.order_name, len(records))

    def _place_holds(
        self, gateway: FulfillmentGateway, plan: SplitPlan
    ) -> list[tuple[str, str]]:
        """Split and hold; return (fulfillment_order_id, hold_id) pairs."""
        open_orders = gateway.fetch_open_fulfillment_orders(plan.order_id)
        if not open_orders:
            raise TransientExternalFailure(
                f"No OPEN fulfillment order found for {plan.order_name}"
            )

        fulfillment_order = open_orders[0]
        fo_ids = [fo.id for fo in open_orders]
        # Several open pieces means an earlier attempt already split the order.
        specs = (
            build_split_specs(plan.parcels, fulfillment_order)
            if len(open_orders) == 1
            else []
        )
        if specs:
            split = gateway.split_fulfillment_order(fulfillment_order.id, specs)
            fo_ids.extend(split.new_ids)
            fo_ids.append(split.remaining_id)
        fo_ids = unique_in_order(fo_ids)
        self._logger.split_done(plan.order_name, fo_ids)

        results = gateway.hold_fulfillment_orders(fo_ids, HOLD_REASON, HOLD_NOTES)
        succeeded: list[tuple[str, str]] = []
        failed: dict[str, str] = {}
        for result in results:
            if result.ok and result.hold_id is not None:
                succeeded.append((result.id, result.hold_id))
            else:
                failed[result.id] = result.error or "no hold id returned"
        if not failed:
            return succeeded

        rollback_errors = self._roll_back_holds(gateway, succeeded)
        rolled_back = [hold_id for _, hold_id in succeeded]
        self._logger.hold_partial_failure(plan.order_name, failed, rolled_back)
        if rollback_errors:
            self._logger.rollback_incomplete(plan.order_name, rollback_errors)
        details = "; ".join(f"{fo_id}: {error}" for fo_id, error in failed.items())
        raise PartialHoldFailure(
            f"Hold Phase Failed. Rolled back holds. Errors: {details}",
            failed=failed,
            rolled_back=rolled_back,
            rollback_errors=rollback_errors,
        )

    def _roll_back_holds(
        self, gateway: FulfillmentGateway, held: list[tuple[str, str]]
    ) -> list[str]:
        """Release holds placed in a failed batch; return any release errors."""
        errors: list[str] = []
        for fo_id, hold_id in held:
            try:
                outcomes = gateway.release_holds(fo_id, [hold_id])
            except GatewayError as e:
                errors.append(f"Hold {hold_id}: {e}")
                continue
            errors.extend(
                f"Hold {outcome.hold_id or hold_id}: {outcome.error}"
                for outcome in outcomes
                if not outcome.ok
            )
        return errors

    # Phase 5 ----------------------------------------------------------------

    def _create_payment_order(
        self,
        gateway: FulfillmentGateway,
        shop: str,
        plan: SplitPlan,
        request: SplitRequest,
    ) -> tuple[str, str]:
        spec = build_payment_draft(
            customer_id=plan.customer_gid,
            primary_order_id=plan.order_id,
            order_name=plan.order_name,
            parcel_count=plan.parcel_count,
            shipping_level=plan.rate.level,
            amount_cents=plan.additional_amount_cents,
            due_hours=self._invoice_due_hours,
            now=self._clock(),
        )
        try:
            draft_order_id = gateway.create_draft_order(spec)
            completed = gateway.complete_draft_order(draft_order_id)
            self._logger.payment_order_created(
                plan.order_name, completed.order_name, draft_order_id
            )
            self._store.upsert_order(
                order_id=completed.order_id,
                order_name=completed.order_name,
                shop_domain=shop,
                customer_id=plan.customer_id,
            )
            copy = invoice_copy(plan.order_name, plan.locale)
            sent = gateway.send_invoice(
                completed.order_id, copy.subject, copy.message_html
            )
            if not sent.ok:
                raise GatewayError(f"Invoice send failed: {sent.error}")
        except GatewayError as e:
            self._store.record_failure(request.id, f"Payment order failed: {e}")
            raise TransientExternalFailure(str(e)) from e
        except Exception as e:
            self._store.record_failure(request.id, f"Payment order failed: {e}")
            raise

        self._logger.invoice_sent(plan.order_name, plan.locale)
        return completed.order_id, draft_order_id
