"""Inbound order webhook payloads."""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any, Self

from pydantic import BaseModel, BeforeValidator, Field

from splitship.packing.parcel_packer import LineItem

SPLIT_CHOICE_ATTR = "split_choice"
SPLIT_COUNT_ATTR = "split_fulfillment_count"
PAYMENT_ORDER_ATTR = "is_additional_shipping_payment_order"
PRIMARY_ORDER_ATTR = "primary_order_id"

PAYMENT_SECURED_STATUSES = frozenset({"paid", "authorized"})


def _to_str(value: Any) -> Any:
    if isinstance(value, int | Decimal) and not isinstance(value, bool):
        return str(value)
    return value


ExternalId = Annotated[str, BeforeValidator(_to_str)]


def to_cents(amount: Decimal) -> int:
    """Convert a decimal currency amount to integer cents (half up)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PayloadModel(BaseModel):
    """Shared base for webhook payload models with a short parse alias."""

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class NoteAttribute(PayloadModel):
    name: str
    value: str | None = None


class LineItemPayload(PayloadModel):
    id: ExternalId
    quantity: int = 0
    price: Decimal = Decimal("0")
    total_discount: Decimal = Decimal("0")

    def to_line_item(self) -> LineItem:
        unit_price_cents = to_cents(self.price)
        total = self.price * self.quantity - self.total_discount
        return LineItem(
            line_item_id=self.id,
            quantity=self.quantity,
            unit_price_cents=unit_price_cents,
            total_cents=max(to_cents(total), 0),
        )


class ShippingLinePayload(PayloadModel):
    title: str | None = None


class CustomerPayload(PayloadModel):
    id: ExternalId
    admin_graphql_api_id: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    locale: str | None = None


class AddressPayload(PayloadModel):
    country_code: str | None = None


class OrderPayload(PayloadModel):
    """Order body shared by the create, paid and cancelled topics."""

    id: ExternalId | None = None
    admin_graphql_api_id: str | None = None
    name: str | None = None
    financial_status: str | None = None
    line_items: list[LineItemPayload] = Field(default_factory=list)
    shipping_lines: list[ShippingLinePayload] = Field(default_factory=list)
    customer: CustomerPayload | None = None
    customer_locale: str | None = None
    shipping_address: AddressPayload | None = None
    note_attributes: list[NoteAttribute] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cancelled_at: datetime | None = None

    def attribute(self, name: str) -> str | None:
        """Return the first non-empty note attribute value named ``name``."""
        for attr in self.note_attributes:
            if attr.name == name:
                return attr.value or None
        return None

    @property
    def split_choice(self) -> str | None:
        value = self.attribute(SPLIT_CHOICE_ATTR)
        return value.strip().lower() if value else None

    @property
    def split_count(self) -> int:
        """Checkout parcel count; unparseable values count as zero."""
        raw = self.attribute(SPLIT_COUNT_ATTR)
        if raw is None:
            return 0
        try:
            return int(raw.strip())
        except ValueError:
            return 0

    @property
    def requests_split_attributes(self) -> bool:
        return self.split_choice is not None and self.split_count > 1

    @property
    def is_payment_order(self) -> bool:
        return self.attribute(PAYMENT_ORDER_ATTR) == "true"

    @property
    def primary_order_id(self) -> str | None:
        return self.attribute(PRIMARY_ORDER_ATTR)

    @property
    def payment_secured(self) -> bool:
        return (self.financial_status or "").lower() in PAYMENT_SECURED_STATUSES

    @property
    def shipping_country_code(self) -> str | None:
        if self.shipping_address is None:
            return None
        return self.shipping_address.country_code

    @property
    def first_shipping_title(self) -> str | None:
        if not self.shipping_lines:
            return None
        return self.shipping_lines[0].title

    def locale(self, default: str) -> str:
        if self.customer_locale:
            return self.customer_locale
        if self.customer is not None and self.customer.locale:
            return self.customer.locale
        return default

    def packer_lines(self) -> list[LineItem]:
        return [line.to_line_item() for line in self.line_items]
