"""Interface to the external commerce platform's fulfillment operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


class GatewayError(Exception):
    """Raised when a gateway operation fails as a whole."""


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of one sub-operation inside a batched call.

    ``id`` echoes the object the sub-operation targeted. ``hold_id`` is set by
    successful hold operations.
    """

    id: str
    hold_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class FulfillmentOrderLine:
    """One line of a fulfillment order mapped back to its order line item."""

    id: str
    line_item_id: str
    quantity: int


@dataclass(frozen=True, slots=True)
class FulfillmentOrder:
    id: str
    status: str
    lines: tuple[FulfillmentOrderLine, ...] = ()

    def line_for(self, line_item_id: str) -> FulfillmentOrderLine | None:
        for line in self.lines:
            if line.line_item_id == line_item_id:
                return line
        return None


@dataclass(frozen=True, slots=True)
class SplitLine:
    fulfillment_order_line_id: str
    quantity: int


@dataclass(frozen=True, slots=True)
class SplitSpec:
    """Lines to carve off the source fulfillment order into a new one."""

    lines: tuple[SplitLine, ...]


@dataclass(frozen=True, slots=True)
class SplitResult:
    """Ids produced by a split: one new id per spec plus the remaining source."""

    new_ids: tuple[str, ...]
    remaining_id: str


@dataclass(frozen=True, slots=True)
class DraftOrderLine:
    title: str
    quantity: int
    unit_price_cents: int


@dataclass(frozen=True, slots=True)
class DraftOrderSpec:
    customer_id: str
    note: str
    lines: tuple[DraftOrderLine, ...]
    custom_attributes: dict[str, str] = field(default_factory=dict)
    tags: tuple[str, ...] = ()
    due_at: str | None = None  # ISO-8601


@dataclass(frozen=True, slots=True)
class CompletedOrder:
    order_id: str
    order_name: str


@runtime_checkable
class FulfillmentGateway(Protocol):
    """External split/hold/release/draft-order/invoice/cancel operations.

    Operations that act on several objects return one ``OperationResult`` per
    object so callers can tell which sub-operations succeeded. Operations on a
    single object raise ``GatewayError`` on failure.
    """

    def fetch_open_fulfillment_orders(self, order_id: str) -> list[FulfillmentOrder]:
        ...

    def split_fulfillment_order(
        self, source_id: str, split_specs: list[SplitSpec]
    ) -> SplitResult:
        ...

    def hold_fulfillment_orders(
        self, ids: list[str], reason: str, notes: str
    ) -> list[OperationResult]:
        ...

    def release_holds(
        self, fulfillment_order_id: str, hold_ids: list[str]
    ) -> list[OperationResult]:
        ...

    def create_draft_order(self, spec: DraftOrderSpec) -> str:
        ...

    def complete_draft_order(self, draft_id: str) -> CompletedOrder:
        ...

    def send_invoice(
        self, order_id: str, subject: str, message_html: str
    ) -> OperationResult:
        ...

    def cancel_order(self, order_id: str, reason: str) -> OperationResult:
        ...
