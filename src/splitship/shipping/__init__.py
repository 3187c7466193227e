"""Shipping-rate lookup."""

from __future__ import annotations

from splitship.shipping.rates import (
    DEFAULT_RATES_PATH,
    ShippingRate,
    ShippingRateError,
    ShippingRateTable,
)

__all__ = [
    "DEFAULT_RATES_PATH",
    "ShippingRate",
    "ShippingRateError",
    "ShippingRateTable",
]
