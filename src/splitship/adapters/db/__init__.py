"""Saga persistence: SQLAlchemy models and the store facade."""

from __future__ import annotations

from splitship.adapters.db.facade import HoldRecord, SagaStore
from splitship.adapters.db.models import (
    Base,
    Customer,
    EventDedup,
    FulfillmentHold,
    InvalidTransitionError,
    Job,
    JobStatus,
    Order,
    Shop,
    SplitRequest,
    SplitStatus,
)

__all__ = [
    "Base",
    "Customer",
    "EventDedup",
    "FulfillmentHold",
    "HoldRecord",
    "InvalidTransitionError",
    "Job",
    "JobStatus",
    "Order",
    "SagaStore",
    "Shop",
    "SplitRequest",
    "SplitStatus",
]
