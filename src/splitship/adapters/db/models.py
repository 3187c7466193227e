from __future__ import annotations

from datetime import UTC, datetime
import enum

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class InvalidTransitionError(Exception):
    """Raised when a split request is moved to a status it cannot reach."""

    def __init__(self, current: SplitStatus, target: SplitStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid status transition: {current.value} -> {target.value}"
        )


class SplitStatus(enum.Enum):
    PENDING = "PENDING"
    APP_DISABLED = "APP_DISABLED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        """Terminal statuses accept no further saga transitions."""
        match self:
            case SplitStatus.COMPLETED | SplitStatus.FAILED | SplitStatus.CANCELLED:
                return True
            case SplitStatus.PENDING | SplitStatus.APP_DISABLED:
                return False
            case SplitStatus.AWAITING_PAYMENT:
                return False

    @property
    def skips_order_created(self) -> bool:
        """Whether a redelivered order-created event must short-circuit.

        Anything past PENDING has already triggered external side effects
        or reached a final decision. APP_DISABLED is re-evaluated so enabling
        the shop picks the order up on the next delivery.
        """
        match self:
            case SplitStatus.PENDING | SplitStatus.APP_DISABLED:
                return False
            case (
                SplitStatus.AWAITING_PAYMENT
                | SplitStatus.COMPLETED
                | SplitStatus.FAILED
                | SplitStatus.CANCELLED
            ):
                return True

    def can_transition_to(self, target: SplitStatus) -> bool:
        if target == self:
            return True
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[SplitStatus, frozenset[SplitStatus]] = {
    SplitStatus.PENDING: frozenset(
        {
            SplitStatus.APP_DISABLED,
            SplitStatus.AWAITING_PAYMENT,
            SplitStatus.COMPLETED,
            SplitStatus.FAILED,
            SplitStatus.CANCELLED,
        }
    ),
    SplitStatus.APP_DISABLED: frozenset(
        {SplitStatus.PENDING, SplitStatus.COMPLETED, SplitStatus.CANCELLED}
    ),
    SplitStatus.AWAITING_PAYMENT: frozenset(
        {SplitStatus.COMPLETED, SplitStatus.FAILED, SplitStatus.CANCELLED}
    ),
    # FAILED only leaves through the operator reset or a later payment capture.
    SplitStatus.FAILED: frozenset({SplitStatus.PENDING, SplitStatus.COMPLETED}),
    SplitStatus.COMPLETED: frozenset(),
    SplitStatus.CANCELLED: frozenset(),
}


class JobStatus(enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    DEAD = "dead"


class Shop(Base):
    """Shop reference row; carries the per-shop feature switch."""

    __tablename__ = "shops"

    shop_domain: Mapped[str] = mapped_column(String, primary_key=True)
    app_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )


class Order(Base):
    """Primary or payment order cross-reference. Never deleted."""

    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String, primary_key=True)
    order_name: Mapped[str | None] = mapped_column(String, nullable=True)
    shop_domain: Mapped[str] = mapped_column(String, nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )


class Customer(Base):
    """Customer reference row."""

    __tablename__ = "customers"

    customer_id: Mapped[str] = mapped_column(String, primary_key=True)
    shop_domain: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    locale: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )


class SplitRequest(Base):
    """Saga state for one primary order."""

    __tablename__ = "split_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    primary_order_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    shop_domain: Mapped[str] = mapped_column(String, nullable=False)
    user_choice: Mapped[bool] = mapped_column(Boolean, nullable=False)
    status: Mapped[SplitStatus] = mapped_column(
        Enum(SplitStatus, native_enum=False, length=32), nullable=False
    )
    calculated_parcels: Mapped[int] = mapped_column(Integer, nullable=False)
    shipping_level: Mapped[str] = mapped_column(String, nullable=False)
    additional_shipping_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False
    )
    payment_order_id: Mapped[str | None] = mapped_column(
        String, nullable=True, index=True
    )
    draft_order_id: Mapped[str | None] = mapped_column(String, nullable=True)
    error_log: Mapped[str | None] = mapped_column(Text, nullable=True)
    primary_order_cancelled_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP, nullable=True
    )
    payment_order_cancelled_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )

    # Relationships
    holds: Mapped[list[FulfillmentHold]] = relationship(
        "FulfillmentHold",
        back_populates="split_request",
        cascade="all, delete-orphan",
    )


class FulfillmentHold(Base):
    """An external hold placed on one fulfillment order of a split request."""

    __tablename__ = "fulfillment_holds"

    hold_id: Mapped[str] = mapped_column(String, primary_key=True)
    fulfillment_order_id: Mapped[str] = mapped_column(String, nullable=False)
    split_request_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("split_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    released: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )

    # Relationships
    split_request: Mapped[SplitRequest] = relationship(
        "SplitRequest", back_populates="holds"
    )


class Job(Base):
    """Durable queue entry for one inbound webhook delivery."""

    __tablename__ = "jobs"

    job_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    shop_domain: Mapped[str] = mapped_column(String, nullable=False)
    topic: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, native_enum=False, length=16),
        nullable=False,
        default=JobStatus.QUEUED,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    available_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )
    # Lease start of the current RUNNING claim.
    claimed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )


class EventDedup(Base):
    """Upstream event ids seen recently, used to drop duplicate deliveries."""

    __tablename__ = "event_dedup"
    __table_args__ = (UniqueConstraint("event_id", name="uq_event_dedup_event_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String, nullable=False)
    seen_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, default=utcnow
    )
