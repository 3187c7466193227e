from __future__ import annotations

from collections import deque
from collections.abc import Callable
import threading
import time

from splitship.adapters.gateway.protocol import (
    CompletedOrder,
    DraftOrderSpec,
    FulfillmentGateway,
    FulfillmentOrder,
    OperationResult,
    SplitResult,
    SplitSpec,
)


class RateLimiter:
    """Sliding-window limiter shared by every worker thread in the process.

    At most ``max_ops`` acquisitions are granted within any ``period_seconds``
    window; ``acquire`` blocks until a slot frees up.
    """

    def __init__(
        self,
        max_ops: int,
        period_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_ops <= 0:
            raise ValueError(f"max_ops must be positive, got {max_ops}")
        if period_seconds <= 0:
            raise ValueError(f"period_seconds must be positive, got {period_seconds}")
        self._max_ops = max_ops
        self._period = period_seconds
        self._clock = clock
        self._sleep = sleep
        self._grants: deque[float] = deque()
        self._lock = threading.Lock()

    def acquire(self) -> float:
        """Block until an operation may proceed.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                while self._grants and now - self._grants[0] >= self._period:
                    self._grants.popleft()
                if len(self._grants) < self._max_ops:
                    self._grants.append(now)
                    return waited
                delay = self._period - (now - self._grants[0])
            self._sleep(delay)
            waited += delay


class RateLimitedGateway:
    """Wrap a gateway so every outbound call passes through one limiter."""

    def __init__(self, inner: FulfillmentGateway, limiter: RateLimiter) -> None:
        self._inner = inner
        self._limiter = limiter

    @property
    def inner(self) -> FulfillmentGateway:
        return self._inner

    def fetch_open_fulfillment_orders(self, order_id: str) -> list[FulfillmentOrder]:
        self._limiter.acquire()
        return self._inner.fetch_open_fulfillment_orders(order_id)

    def split_fulfillment_order(
        self, source_id: str, split_specs: list[SplitSpec]
    ) -> SplitResult:
        self._limiter.acquire()
        return self._inner.split_fulfillment_order(source_id, split_specs)

    def hold_fulfillment_orders(
        self, ids: list[str], reason: str, notes: str
    ) -> list[OperationResult]:
        self._limiter.acquire()
        return self._inner.hold_fulfillment_orders(ids, reason, notes)

    def release_holds(
        self, fulfillment_order_id: str, hold_ids: list[str]
    ) -> list[OperationResult]:
        self._limiter.acquire()
        return self._inner.release_holds(fulfillment_order_id, hold_ids)

    def create_draft_order(self, spec: DraftOrderSpec) -> str:
        self._limiter.acquire()
        return self._inner.create_draft_order(spec)

    def complete_draft_order(self, draft_id: str) -> CompletedOrder:
        self._limiter.acquire()
        return self._inner.complete_draft_order(draft_id)

    def send_invoice(
        self, order_id: str, subject: str, message_html: str
    ) -> OperationResult:
        self._limiter.acquire()
        return self._inner.send_invoice(order_id, subject, message_html)

    def cancel_order(self, order_id: str, reason: str) -> OperationResult:
        self._limiter.acquire()
        return self._inner.cancel_order(order_id, reason)
