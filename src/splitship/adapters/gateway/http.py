from __future__ import annotations

import json
from typing import Any, Self, TypeVar, cast
import urllib.error
import urllib.request

from pydantic import BaseModel, Field, ValidationError

from splitship.adapters.gateway.protocol import (
    CompletedOrder,
    DraftOrderSpec,
    FulfillmentOrder,
    FulfillmentOrderLine,
    GatewayError,
    OperationResult,
    SplitResult,
    SplitSpec,
)

BATCH_PATH = "/batch"

M = TypeVar("M", bound="GatewayBaseModel")


class GatewayBaseModel(BaseModel):
    """Shared base for gateway response models with a short parse alias."""

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class ErrorModel(GatewayBaseModel):
    message: str
    field: list[str] | None = None


class SubResultModel(GatewayBaseModel):
    data: dict[str, Any] | None = None
    errors: list[ErrorModel] = Field(default_factory=list)

    def error_text(self) -> str | None:
        if not self.errors:
            return None
        return "; ".join(error.message for error in self.errors)


class BatchResponse(GatewayBaseModel):
    results: list[SubResultModel]


class FulfillmentOrderLineModel(GatewayBaseModel):
    id: str
    line_item_id: str
    quantity: int


class FulfillmentOrderModel(GatewayBaseModel):
    id: str
    status: str
    line_items: list[FulfillmentOrderLineModel] = Field(default_factory=list)

    def to_domain(self) -> FulfillmentOrder:
        return FulfillmentOrder(
            id=self.id,
            status=self.status,
            lines=tuple(
                FulfillmentOrderLine(
                    id=line.id, line_item_id=line.line_item_id, quantity=line.quantity
                )
                for line in self.line_items
            ),
        )


class FulfillmentOrdersData(GatewayBaseModel):
    fulfillment_orders: list[FulfillmentOrderModel] = Field(default_factory=list)


class SplitPieceModel(GatewayBaseModel):
    fulfillment_order_id: str
    remaining_fulfillment_order_id: str


class SplitData(GatewayBaseModel):
    splits: list[SplitPieceModel]


class HoldData(GatewayBaseModel):
    hold_id: str


class DraftOrderData(GatewayBaseModel):
    draft_order_id: str


class CompletedOrderData(GatewayBaseModel):
    order_id: str
    order_name: str


class HttpFulfillmentGateway:
    """Gateway that multiplexes sub-operations over one batch endpoint.

    Every call is a single POST of ``{"operations": [...]}``. The endpoint
    answers ``{"results": [...]}`` with one entry per operation, in order,
    each carrying either ``data`` or ``errors``.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        shop_domain: str,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._shop_domain = shop_domain
        self._timeout = timeout_seconds

    @property
    def shop_domain(self) -> str:
        return self._shop_domain

    def _parse_json_response(self, body: str) -> dict[str, Any]:
        try:
            return cast(dict[str, Any], json.loads(body))
        except json.JSONDecodeError as e:
            raise GatewayError(
                f"Failed to parse gateway response as JSON: {e}: {body}"
            ) from e

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = self._base_url + BATCH_PATH
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(  # noqa: S310
            url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._token}",
                "X-Shop-Domain": self._shop_domain,
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(  # noqa: S310 - configured HTTPS endpoint
                req, timeout=self._timeout
            ) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            err_body = e.read().decode("utf-8", "ignore")
            raise GatewayError(f"Gateway API error ({e.code}): {err_body}") from e
        except urllib.error.URLError as e:
            raise GatewayError(f"Network error calling gateway: {e}") from e
        except TimeoutError as e:
            raise GatewayError(f"Gateway call timed out: {e}") from e

        return self._parse_json_response(body)

    def execute(self, operations: list[dict[str, Any]]) -> list[SubResultModel]:
        """Run independent sub-operations and return per-index results.

        Raises:
            GatewayError: If the call fails or the result count does not match
        """
        if not operations:
            return []
        try:
            response = BatchResponse.parse(self._post({"operations": operations}))
        except ValidationError as e:
            raise GatewayError(f"Malformed batch response: {e}") from e
        if len(response.results) != len(operations):
            raise GatewayError(
                f"Batch returned {len(response.results)} results "
                f"for {len(operations)} operations"
            )
        return response.results

    def _execute_one(self, op: str, args: dict[str, Any]) -> dict[str, Any]:
        (result,) = self.execute([{"op": op, "args": args}])
        error = result.error_text()
        if error is not None:
            raise GatewayError(f"{op} failed: {error}")
        return result.data or {}

    @staticmethod
    def _parse_data(model: type[M], op: str, data: Any) -> M:
        try:
            return model.parse(data)
        except ValidationError as e:
            raise GatewayError(f"Malformed {op} response: {e}") from e

    # Operations -----------------------------------------------------------

    def fetch_open_fulfillment_orders(self, order_id: str) -> list[FulfillmentOrder]:
        data = self._execute_one(
            "fetch_fulfillment_orders", {"order_id": order_id, "status": "OPEN"}
        )
        parsed = self._parse_data(
            FulfillmentOrdersData, "fetch_fulfillment_orders", data
        )
        return [fo.to_domain() for fo in parsed.fulfillment_orders]

    def split_fulfillment_order(
        self, source_id: str, split_specs: list[SplitSpec]
    ) -> SplitResult:
        if not split_specs:
            return SplitResult(new_ids=(), remaining_id=source_id)
        args = {
            "fulfillment_order_id": source_id,
            "splits": [
                {
                    "line_items": [
                        {
                            "id": line.fulfillment_order_line_id,
                            "quantity": line.quantity,
                        }
                        for line in spec.lines
                    ]
                }
                for spec in split_specs
            ],
        }
        data = self._execute_one("split_fulfillment_order", args)
        parsed = self._parse_data(SplitData, "split_fulfillment_order", data)
        if not parsed.splits:
            raise GatewayError("split_fulfillment_order returned no splits")
        return SplitResult(
            new_ids=tuple(piece.fulfillment_order_id for piece in parsed.splits),
            remaining_id=parsed.splits[-1].remaining_fulfillment_order_id,
        )

    def hold_fulfillment_orders(
        self, ids: list[str], reason: str, notes: str
    ) -> list[OperationResult]:
        results = self.execute(
            [
                {
                    "op": "hold_fulfillment_order",
                    "args": {"id": fo_id, "reason": reason, "notes": notes},
                }
                for fo_id in ids
            ]
        )
        outcomes: list[OperationResult] = []
        for fo_id, result in zip(ids, results, strict=True):
            error = result.error_text()
            if error is not None:
                outcomes.append(OperationResult(id=fo_id, error=error))
                continue
            # One bad item must not hide the hold ids of the others.
            try:
                hold = HoldData.parse(result.data)
            except ValidationError as e:
                message = f"Malformed hold_fulfillment_order response: {e}"
                outcomes.append(OperationResult(id=fo_id, error=message))
                continue
            outcomes.append(OperationResult(id=fo_id, hold_id=hold.hold_id))
        return outcomes

    def release_holds(
        self, fulfillment_order_id: str, hold_ids: list[str]
    ) -> list[OperationResult]:
        results = self.execute(
            [
                {
                    "op": "release_hold",
                    "args": {
                        "fulfillment_order_id": fulfillment_order_id,
                        "hold_id": hold_id,
                    },
                }
                for hold_id in hold_ids
            ]
        )
        return [
            OperationResult(id=hold_id, hold_id=hold_id, error=result.error_text())
            for hold_id, result in zip(hold_ids, results, strict=True)
        ]

    def create_draft_order(self, spec: DraftOrderSpec) -> str:
        args: dict[str, Any] = {
            "customer_id": spec.customer_id,
            "note": spec.note,
            "line_items": [
                {
                    "title": line.title,
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_price_cents,
                }
                for line in spec.lines
            ],
            "custom_attributes": [
                {"key": key, "value": value}
                for key, value in spec.custom_attributes.items()
            ],
            "tags": list(spec.tags),
        }
        if spec.due_at is not None:
            args["payment_due_at"] = spec.due_at
        data = self._execute_one("create_draft_order", args)
        parsed = self._parse_data(DraftOrderData, "create_draft_order", data)
        return parsed.draft_order_id

    def complete_draft_order(self, draft_id: str) -> CompletedOrder:
        data = self._execute_one(
            "complete_draft_order",
            {"draft_order_id": draft_id, "payment_pending": True},
        )
        parsed = self._parse_data(CompletedOrderData, "complete_draft_order", data)
        return CompletedOrder(order_id=parsed.order_id, order_name=parsed.order_name)

    def send_invoice(
        self, order_id: str, subject: str, message_html: str
    ) -> OperationResult:
        (result,) = self.execute(
            [
                {
                    "op": "send_invoice",
                    "args": {
                        "order_id": order_id,
                        "subject": subject,
                        "message_html": message_html,
                    },
                }
            ]
        )
        return OperationResult(id=order_id, error=result.error_text())

    def cancel_order(self, order_id: str, reason: str) -> OperationResult:
        (result,) = self.execute(
            [{"op": "cancel_order", "args": {"order_id": order_id, "reason": reason}}]
        )
        return OperationResult(id=order_id, error=result.error_text())
