"""Parcel packing for split shipments."""

from __future__ import annotations

from splitship.packing.parcel_packer import (
    LineItem,
    LineItemUnit,
    Parcel,
    ParcelItem,
    explode_lines,
    pack,
    split_price,
)

__all__ = [
    "LineItem",
    "LineItemUnit",
    "Parcel",
    "ParcelItem",
    "explode_lines",
    "pack",
    "split_price",
]
