from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import loguru
from loguru import logger
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from splitship.adapters.db.models import (
    Base,
    Customer,
    FulfillmentHold,
    InvalidTransitionError,
    Order,
    Shop,
    SplitRequest,
    SplitStatus,
    utcnow,
)

_SPLIT_REQUEST_FIELDS = frozenset(
    {
        "shop_domain",
        "user_choice",
        "status",
        "calculated_parcels",
        "shipping_level",
        "additional_shipping_amount_cents",
        "payment_order_id",
        "draft_order_id",
        "error_log",
        "primary_order_cancelled_at",
        "payment_order_cancelled_at",
    }
)


@dataclass(frozen=True, slots=True)
class HoldRecord:
    hold_id: str
    fulfillment_order_id: str
    split_request_id: int


class SagaStore:
    """Durable saga state: reference rows, split requests and holds.

    Every write is keyed by a natural id so repeated calls from retried jobs
    converge on the same rows. Returned ORM objects are detached.
    """

    def __init__(self, url: str, *, logger_instance: loguru.Logger = logger) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///splitship.db")
            logger_instance: Logger used by the best-effort failure sink
        """
        self._url = url
        self._logger = logger_instance
        engine_kwargs: dict[str, Any] = {"echo": False}
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection so worker threads see the same database.
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self._engine = create_engine(url, **engine_kwargs)
        self._session_factory = sessionmaker(
            bind=self._engine, class_=Session, expire_on_commit=False
        )

    @property
    def url(self) -> str:
        return self._url

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    # Reference rows -------------------------------------------------------

    def upsert_shop(self, shop_domain: str) -> Shop:
        """Ensure a shop row exists; the feature switch is left untouched."""
        with self.session() as session:
            shop = session.get(Shop, shop_domain)
            if shop is None:
                shop = Shop(shop_domain=shop_domain, app_enabled=False)
                session.add(shop)
                session.flush()
            session.expunge(shop)
            return shop

    def set_shop_enabled(self, shop_domain: str, enabled: bool) -> Shop:
        with self.session() as session:
            shop = session.get(Shop, shop_domain)
            if shop is None:
                shop = Shop(shop_domain=shop_domain, app_enabled=enabled)
                session.add(shop)
            else:
                shop.app_enabled = enabled
                shop.updated_at = utcnow()
            session.flush()
            session.expunge(shop)
            return shop

    def upsert_order(
        self,
        *,
        order_id: str,
        shop_domain: str,
        order_name: str | None = None,
        customer_id: str | None = None,
    ) -> Order:
        """Insert or update an order reference row (last write wins)."""
        with self.session() as session:
            order = session.get(Order, order_id)
            if order is None:
                order = Order(
                    order_id=order_id,
                    order_name=order_name,
                    shop_domain=shop_domain,
                    customer_id=customer_id,
                )
                session.add(order)
            else:
                order.shop_domain = shop_domain
                if order_name is not None:
                    order.order_name = order_name
                if customer_id is not None:
                    order.customer_id = customer_id
                order.updated_at = utcnow()
            session.flush()
            session.expunge(order)
            return order

    def get_order(self, order_id: str) -> Order | None:
        with self.session() as session:
            order = session.get(Order, order_id)
            if order is not None:
                session.expunge(order)
            return order

    def mark_order_cancelled(
        self, order_id: str, cancelled_at: datetime, *, shop_domain: str
    ) -> Order:
        with self.session() as session:
            order = session.get(Order, order_id)
            if order is None:
                order = Order(order_id=order_id, shop_domain=shop_domain)
                session.add(order)
            order.cancelled_at = cancelled_at
            order.updated_at = utcnow()
            session.flush()
            session.expunge(order)
            return order

    def upsert_customer(
        self,
        *,
        customer_id: str,
        shop_domain: str,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        locale: str | None = None,
    ) -> Customer:
        with self.session() as session:
            customer = session.get(Customer, customer_id)
            if customer is None:
                customer = Customer(customer_id=customer_id, shop_domain=shop_domain)
                session.add(customer)
            customer.shop_domain = shop_domain
            customer.email = email
            customer.first_name = first_name
            customer.last_name = last_name
            customer.locale = locale
            customer.updated_at = utcnow()
            session.flush()
            session.expunge(customer)
            return customer

    # Split requests ---------------------------------------------------------

    def find_split_request(self, primary_order_id: str) -> SplitRequest | None:
        with self.session() as session:
            request = session.scalar(
                select(SplitRequest).where(
                    SplitRequest.primary_order_id == primary_order_id
                )
            )
            if request is not None:
                session.expunge(request)
            return request

    def find_split_request_by_payment_order(
        self, payment_order_id: str
    ) -> SplitRequest | None:
        with self.session() as session:
            request = session.scalar(
                select(SplitRequest).where(
                    SplitRequest.payment_order_id == payment_order_id
                )
            )
            if request is not None:
                session.expunge(request)
            return request

    def get_split_request(self, request_id: int) -> SplitRequest | None:
        with self.session() as session:
            request = session.get(SplitRequest, request_id)
            if request is not None:
                session.expunge(request)
            return request

    def list_split_requests(
        self, status: SplitStatus | None = None
    ) -> list[SplitRequest]:
        with self.session() as session:
            stmt = select(SplitRequest).order_by(SplitRequest.id)
            if status is not None:
                stmt = stmt.where(SplitRequest.status == status)
            requests = list(session.scalars(stmt))
            for request in requests:
                session.expunge(request)
            return requests

    def upsert_split_request(
        self, primary_order_id: str, **fields: Any
    ) -> SplitRequest:
        """Insert or update the split request keyed by ``primary_order_id``.

        Args:
            primary_order_id: Natural key of the request
            **fields: Column values to write

        Returns:
            The stored request

        Raises:
            ValueError: If an unknown field is passed
            InvalidTransitionError: If ``status`` cannot follow the stored one
        """
        unknown = set(fields) - _SPLIT_REQUEST_FIELDS
        if unknown:
            raise ValueError(f"Unknown split request fields: {sorted(unknown)}")

        with self.session() as session:
            request = session.scalar(
                select(SplitRequest).where(
                    SplitRequest.primary_order_id == primary_order_id
                )
            )
            if request is None:
                request = SplitRequest(primary_order_id=primary_order_id, **fields)
                session.add(request)
            else:
                target = fields.get("status")
                if target is not None and not request.status.can_transition_to(
                    target
                ):
                    raise InvalidTransitionError(request.status, target)
                for key, value in fields.items():
                    setattr(request, key, value)
                request.updated_at = utcnow()
            session.flush()
            session.expunge(request)
            return request

    def update_status(
        self, request_id: int, status: SplitStatus, **fields: Any
    ) -> SplitRequest:
        """Move a request to ``status`` and write extra columns alongside.

        Raises:
            LookupError: If the request does not exist
            InvalidTransitionError: If the transition is not allowed
        """
        unknown = set(fields) - _SPLIT_REQUEST_FIELDS
        if unknown:
            raise ValueError(f"Unknown split request fields: {sorted(unknown)}")

        with self.session() as session:
            request = session.get(SplitRequest, request_id)
            if request is None:
                raise LookupError(f"Split request {request_id} not found")
            if not request.status.can_transition_to(status):
                raise InvalidTransitionError(request.status, status)
            request.status = status
            for key, value in fields.items():
                setattr(request, key, value)
            request.updated_at = utcnow()
            session.flush()
            session.expunge(request)
            return request

    def stamp_cancellation(
        self,
        request_id: int,
        *,
        primary_order_cancelled_at: datetime | None = None,
        payment_order_cancelled_at: datetime | None = None,
    ) -> SplitRequest:
        """Write cancellation timestamps without touching the status.

        Cancellation timestamps are the only columns that may change after a
        request reaches a terminal status.
        """
        with self.session() as session:
            request = session.get(SplitRequest, request_id)
            if request is None:
                raise LookupError(f"Split request {request_id} not found")
            if primary_order_cancelled_at is not None:
                request.primary_order_cancelled_at = primary_order_cancelled_at
            if payment_order_cancelled_at is not None:
                request.payment_order_cancelled_at = payment_order_cancelled_at
            request.updated_at = utcnow()
            session.flush()
            session.expunge(request)
            return request

    def record_failure(self, request_id: int, error_message: str) -> None:
        """Best effort: mark the request FAILED with ``error_message``.

        Never raises. The caller is already propagating the original error
        and a broken store must not replace it.
        """
        self._logger.bind(split_request_id=request_id).error(
            "Split request {} failed: {}", request_id, error_message
        )
        try:
            with self.session() as session:
                request = session.get(SplitRequest, request_id)
                if request is None:
                    return
                if request.status.can_transition_to(SplitStatus.FAILED):
                    request.status = SplitStatus.FAILED
                request.error_log = error_message
                request.updated_at = utcnow()
        except Exception as e:  # noqa: BLE001 - failure sink must not raise
            self._logger.bind(split_request_id=request_id).warning(
                "Could not persist failure for split request {}: {}", request_id, e
            )

    def reset_split_request(self, request_id: int) -> SplitRequest:
        """Operator reset of a FAILED request back to PENDING."""
        with self.session() as session:
            request = session.get(SplitRequest, request_id)
            if request is None:
                raise LookupError(f"Split request {request_id} not found")
            if request.status != SplitStatus.FAILED:
                raise InvalidTransitionError(request.status, SplitStatus.PENDING)
            request.status = SplitStatus.PENDING
            request.updated_at = utcnow()
            session.flush()
            session.expunge(request)
            return request

    # Holds ------------------------------------------------------------------

    def insert_hold_records(self, records: Sequence[HoldRecord]) -> int:
        """Insert hold rows in one transaction; nothing is written on error.

        Plain inserts: a hold id that already exists fails the whole batch.
        """
        if not records:
            return 0
        with self.session() as session:
            session.add_all(
                FulfillmentHold(
                    hold_id=record.hold_id,
                    fulfillment_order_id=record.fulfillment_order_id,
                    split_request_id=record.split_request_id,
                    released=False,
                )
                for record in records
            )
            session.flush()
        return len(records)

    def list_holds(self, request_id: int) -> list[FulfillmentHold]:
        with self.session() as session:
            holds = list(
                session.scalars(
                    select(FulfillmentHold)
                    .where(FulfillmentHold.split_request_id == request_id)
                    .order_by(FulfillmentHold.created_at, FulfillmentHold.hold_id)
                )
            )
            for hold in holds:
                session.expunge(hold)
            return holds

    def list_active_holds(self, request_id: int) -> list[FulfillmentHold]:
        return [hold for hold in self.list_holds(request_id) if not hold.released]

    def mark_holds_released(self, hold_ids: Sequence[str]) -> int:
        """Flag holds as released. Already-released or unknown ids are ignored."""
        if not hold_ids:
            return 0
        with self.session() as session:
            holds = list(
                session.scalars(
                    select(FulfillmentHold).where(
                        FulfillmentHold.hold_id.in_(list(hold_ids))
                    )
                )
            )
            for hold in holds:
                hold.released = True
            return len(holds)
