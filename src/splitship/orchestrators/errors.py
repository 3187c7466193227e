"""Saga outcomes and the failure taxonomy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SkipReason(Enum):
    """Why an event was acknowledged without doing any work."""

    MISSING_ORDER_FIELDS = "missing_order_fields"
    MISSING_CUSTOMER = "missing_customer"
    NO_SHIPPING_LINES = "no_shipping_lines"
    NO_SPLIT_REQUIRED = "no_split_required"
    UNKNOWN_SHIPPING_RATE = "unknown_shipping_level_or_price"
    SINGLE_PARCEL = "single_parcel"
    ALREADY_PROCESSED = "already_processed"
    USER_DECLINED = "user_chose_no_split"
    APP_DISABLED = "app_disabled"
    NOT_PAYMENT_ORDER = "not_payment_order"
    PAYMENT_NOT_SECURED = "payment_not_secured"
    NO_SPLIT_REQUEST = "no_split_request"
    NOT_SPLIT_ORDER = "not_split_order"

    @property
    def is_validation(self) -> bool:
        """Skips decided from the payload alone, before touching the store."""
        return self in _VALIDATION_SKIPS


_VALIDATION_SKIPS = frozenset(
    {
        SkipReason.MISSING_ORDER_FIELDS,
        SkipReason.MISSING_CUSTOMER,
        SkipReason.NO_SHIPPING_LINES,
        SkipReason.NO_SPLIT_REQUIRED,
        SkipReason.UNKNOWN_SHIPPING_RATE,
        SkipReason.SINGLE_PARCEL,
        SkipReason.NOT_PAYMENT_ORDER,
        SkipReason.PAYMENT_NOT_SECURED,
        SkipReason.NOT_SPLIT_ORDER,
    }
)


@dataclass(frozen=True, slots=True)
class SplitOutcome:
    """Result of handling one event. Skips are results, not errors."""

    order_id: str | None
    skipped: bool = False
    reason: SkipReason | None = None
    split_request_id: int | None = None
    payment_order_id: str | None = None
    draft_order_id: str | None = None
    status: str | None = None

    @property
    def reason_label(self) -> str:
        return self.reason.value if self.reason is not None else ""

    @classmethod
    def skip(
        cls,
        reason: SkipReason,
        order_id: str | None = None,
        *,
        split_request_id: int | None = None,
        status: str | None = None,
    ) -> SplitOutcome:
        return cls(
            order_id=order_id,
            skipped=True,
            reason=reason,
            split_request_id=split_request_id,
            status=status,
        )


class SplitError(Exception):
    """Base error for saga failures that must reach the job queue."""


class SplitInitError(SplitError):
    """The durable checkpoint could not be written; retry from the start."""


class TransientExternalFailure(SplitError):
    """An external call failed mid-saga; the request is marked FAILED."""


class PartialHoldFailure(TransientExternalFailure):
    """Some holds in a batch failed and the successful ones were released."""

    def __init__(
        self,
        message: str,
        *,
        failed: dict[str, str],
        rolled_back: list[str],
        rollback_errors: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.failed = failed
        self.rolled_back = rolled_back
        self.rollback_errors = rollback_errors or []


class HoldPersistenceError(SplitError):
    """Holds exist externally but could not be recorded locally.

    Needs manual reconciliation: the external holds are live and nothing in
    the store points at them.
    """
