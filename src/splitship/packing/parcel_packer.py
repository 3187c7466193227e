"""Assign order line-item units to parcels under a per-parcel price cap.

Units priced above the cap ("heavy" units) each anchor their own parcel and
may absorb a small number of cheap units. Everything else is packed with
first-fit decreasing. All prices are integer cents.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_CAP_CENTS = 27_000
DEFAULT_ABSORB_BUDGET_CENTS = 6_000
DEFAULT_ABSORB_ITEMS = 2


@dataclass(frozen=True, slots=True)
class LineItem:
    """One order line as seen by the packer.

    ``total_cents`` is the line's net total. It defaults to
    ``unit_price_cents * quantity`` and differs when a discount applies.
    """

    line_item_id: str
    quantity: int
    unit_price_cents: int
    total_cents: int | None = None

    @property
    def line_total_cents(self) -> int:
        if self.total_cents is not None:
            return self.total_cents
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True, slots=True)
class LineItemUnit:
    price_cents: int
    line_index: int
    line_item_id: str


@dataclass(frozen=True, slots=True)
class ParcelItem:
    line_item_id: str
    quantity: int


@dataclass(frozen=True, slots=True)
class Parcel:
    items: tuple[ParcelItem, ...]
    total_cents: int
    anchored: bool = False

    @property
    def unit_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def quantity_of(self, line_item_id: str) -> int:
        return sum(
            item.quantity for item in self.items if item.line_item_id == line_item_id
        )


@dataclass(slots=True)
class _Bin:
    units: list[LineItemUnit] = field(default_factory=list)
    anchored: bool = False

    @property
    def total_cents(self) -> int:
        return sum(unit.price_cents for unit in self.units)


def split_price(total_cents: int, quantity: int) -> list[int]:
    """Split a line total into per-unit integer prices.

    The shares sum exactly to ``total_cents``; the first ``remainder`` units
    carry one extra cent.

    Args:
        total_cents: Line total in cents
        quantity: Number of units on the line

    Returns:
        List of ``quantity`` unit prices, or an empty list for quantity <= 0
    """
    if quantity <= 0:
        return []
    base, remainder = divmod(total_cents, quantity)
    return [base + 1 if i < remainder else base for i in range(quantity)]


def explode_lines(lines: list[LineItem]) -> list[LineItemUnit]:
    """Explode lines into individual priced units in input order."""
    units: list[LineItemUnit] = []
    for index, line in enumerate(lines):
        if line.quantity <= 0:
            continue
        for price in split_price(line.line_total_cents, line.quantity):
            units.append(
                LineItemUnit(
                    price_cents=price,
                    line_index=index,
                    line_item_id=line.line_item_id,
                )
            )
    return units


def pack(
    lines: list[LineItem],
    *,
    cap_cents: int = DEFAULT_CAP_CENTS,
    absorb_budget_cents: int = DEFAULT_ABSORB_BUDGET_CENTS,
    absorb_items: int = DEFAULT_ABSORB_ITEMS,
) -> list[Parcel]:
    """Pack order lines into parcels.

    Heavy-anchored parcels come first in anchor order, followed by the
    first-fit-decreasing bins. Zero-price units ride along in the first
    parcel.

    Args:
        lines: Order lines; empty or zero-quantity lines are ignored
        cap_cents: Per-parcel price cap for parcels without a heavy anchor
        absorb_budget_cents: Cents each heavy anchor may absorb
        absorb_items: Number of units each heavy anchor may absorb

    Returns:
        Parcels with same-line units consolidated; empty for empty input

    Raises:
        ValueError: If cap_cents is not positive or a budget is negative
    """
    if cap_cents <= 0:
        raise ValueError(f"cap_cents must be positive, got {cap_cents}")
    if absorb_budget_cents < 0 or absorb_items < 0:
        raise ValueError("Absorption budgets must not be negative")

    zero_units: list[LineItemUnit] = []
    heavy_units: list[LineItemUnit] = []
    light_units: list[LineItemUnit] = []
    for unit in explode_lines(lines):
        if unit.price_cents <= 0:
            zero_units.append(unit)
        elif unit.price_cents > cap_cents:
            heavy_units.append(unit)
        else:
            light_units.append(unit)

    anchored = [_Bin(units=[unit], anchored=True) for unit in heavy_units]

    # Stable sort keeps input order among equal prices.
    pool = sorted(light_units, key=lambda u: u.price_cents)
    for parcel in anchored:
        budget_cents = absorb_budget_cents
        budget_items = absorb_items
        remaining: list[LineItemUnit] = []
        for unit in pool:
            if budget_items > 0 and budget_cents >= unit.price_cents:
                parcel.units.append(unit)
                budget_items -= 1
                budget_cents -= unit.price_cents
            else:
                remaining.append(unit)
        pool = remaining

    residual: list[_Bin] = []
    free_capacity: list[int] = []
    for unit in sorted(pool, key=lambda u: u.price_cents, reverse=True):
        for index, capacity in enumerate(free_capacity):
            if unit.price_cents <= capacity:
                residual[index].units.append(unit)
                free_capacity[index] = capacity - unit.price_cents
                break
        else:
            residual.append(_Bin(units=[unit]))
            free_capacity.append(cap_cents - unit.price_cents)

    bins = anchored + residual
    if zero_units:
        if bins:
            bins[0].units.extend(zero_units)
        else:
            bins.append(_Bin(units=list(zero_units)))

    return [_consolidate(b) for b in bins]


def _consolidate(parcel: _Bin) -> Parcel:
    quantities: dict[str, int] = {}
    for unit in parcel.units:
        quantities[unit.line_item_id] = quantities.get(unit.line_item_id, 0) + 1
    return Parcel(
        items=tuple(
            ParcelItem(line_item_id=line_item_id, quantity=quantity)
            for line_item_id, quantity in quantities.items()
        ),
        total_cents=parcel.total_cents,
        anchored=parcel.anchored,
    )
