from __future__ import annotations

import pytest

from splitship.packing.parcel_packer import (
    LineItem,
    Parcel,
    ParcelItem,
    explode_lines,
    pack,
    split_price,
)


def _units_by_line(parcels: list[Parcel]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for parcel in parcels:
        for item in parcel.items:
            counts[item.line_item_id] = counts.get(item.line_item_id, 0) + item.quantity
    return counts


def test_split_price_distributes_remainder_to_first_units() -> None:
    assert split_price(1000, 3) == [334, 333, 333]
    assert split_price(1001, 2) == [501, 500]
    assert split_price(900, 3) == [300, 300, 300]


def test_split_price_zero_quantity_returns_empty() -> None:
    assert split_price(1000, 0) == []


def test_explode_lines_skips_zero_quantity_and_keeps_order() -> None:
    units = explode_lines(
        [
            LineItem("A", 2, 500),
            LineItem("B", 0, 900),
            LineItem("C", 1, 700),
        ]
    )

    assert [(u.line_item_id, u.price_cents) for u in units] == [
        ("A", 500),
        ("A", 500),
        ("C", 700),
    ]
    assert [u.line_index for u in units] == [0, 0, 2]


def test_explode_lines_uses_discounted_line_total() -> None:
    units = explode_lines([LineItem("A", 3, 500, total_cents=1000)])

    assert [u.price_cents for u in units] == [334, 333, 333]


def test_pack_fills_parcels_up_to_cap() -> None:
    """Four 1000-cent units under a 2700 cap pack two per parcel."""
    parcels = pack([LineItem("L1", 4, 1000)], cap_cents=2700)

    assert len(parcels) == 2
    for parcel in parcels:
        assert parcel.items == (ParcelItem("L1", 2),)
        assert parcel.total_cents == 2000
        assert parcel.anchored is False


def test_pack_heavy_unit_absorbs_cheap_units_within_budget() -> None:
    parcels = pack(
        [LineItem("H", 1, 30000), LineItem("S", 2, 2000)],
        cap_cents=27000,
        absorb_budget_cents=6000,
        absorb_items=2,
    )

    assert len(parcels) == 1
    assert parcels[0].anchored is True
    assert parcels[0].total_cents == 34000
    assert parcels[0].quantity_of("H") == 1
    assert parcels[0].quantity_of("S") == 2


def test_pack_absorption_stops_at_item_budget() -> None:
    parcels = pack(
        [LineItem("H", 1, 30000), LineItem("S", 3, 2000)],
        cap_cents=27000,
        absorb_budget_cents=6000,
        absorb_items=2,
    )

    assert len(parcels) == 2
    assert parcels[0].anchored is True
    assert parcels[0].total_cents == 34000
    assert parcels[1].items == (ParcelItem("S", 1),)
    assert parcels[1].anchored is False


def test_pack_absorption_stops_at_cent_budget() -> None:
    parcels = pack(
        [LineItem("H", 1, 30000), LineItem("S", 2, 4000)],
        cap_cents=27000,
        absorb_budget_cents=6000,
        absorb_items=2,
    )

    assert len(parcels) == 2
    assert parcels[0].quantity_of("S") == 1
    assert parcels[1].quantity_of("S") == 1


def test_pack_each_heavy_unit_gets_its_own_parcel() -> None:
    parcels = pack(
        [LineItem("H", 2, 30000), LineItem("S", 3, 1000)],
        cap_cents=27000,
        absorb_budget_cents=6000,
        absorb_items=2,
    )

    assert len(parcels) == 2
    assert all(parcel.anchored for parcel in parcels)
    assert [parcel.quantity_of("H") for parcel in parcels] == [1, 1]
    assert [parcel.quantity_of("S") for parcel in parcels] == [2, 1]
    assert [parcel.total_cents for parcel in parcels] == [32000, 31000]


def test_pack_anchored_parcels_come_first() -> None:
    parcels = pack(
        [LineItem("L", 2, 20000), LineItem("H", 1, 40000)],
        cap_cents=27000,
        absorb_budget_cents=0,
        absorb_items=0,
    )

    assert [parcel.anchored for parcel in parcels] == [True, False, False]
    assert parcels[0].items == (ParcelItem("H", 1),)


def test_pack_respects_cap_for_unanchored_parcels() -> None:
    lines = [
        LineItem("A", 2, 9000),
        LineItem("B", 1, 15000),
        LineItem("C", 3, 5000),
        LineItem("D", 1, 26000),
        LineItem("E", 4, 1234),
    ]

    parcels = pack(lines, cap_cents=27000)

    for parcel in parcels:
        if not parcel.anchored:
            assert parcel.total_cents <= 27000
    assert sum(p.total_cents for p in parcels) == sum(
        line.line_total_cents for line in lines
    )


def test_pack_keeps_every_unit() -> None:
    lines = [LineItem("A", 5, 7000), LineItem("B", 2, 30000), LineItem("C", 1, 100)]

    parcels = pack(lines)

    assert _units_by_line(parcels) == {"A": 5, "B": 2, "C": 1}


def test_pack_never_puts_two_heavy_units_together() -> None:
    parcels = pack([LineItem("H", 3, 28000), LineItem("G", 1, 50000)])

    for parcel in parcels:
        heavy = parcel.quantity_of("H") + parcel.quantity_of("G")
        assert heavy <= 1


def test_pack_is_cent_exact_with_discounts() -> None:
    lines = [LineItem("A", 3, 1000, total_cents=1000), LineItem("B", 7, 999)]

    parcels = pack(lines, cap_cents=2700)

    assert sum(p.total_cents for p in parcels) == 1000 + 7 * 999


def test_pack_is_deterministic() -> None:
    lines = [
        LineItem("A", 3, 12000),
        LineItem("B", 2, 8000),
        LineItem("C", 1, 30000),
        LineItem("D", 4, 1500),
    ]

    assert pack(lines) == pack(lines)


def test_pack_zero_price_units_join_first_parcel() -> None:
    parcels = pack(
        [LineItem("A", 2, 20000), LineItem("GIFT", 1, 0)], cap_cents=27000
    )

    assert len(parcels) == 2
    assert parcels[0].quantity_of("GIFT") == 1
    assert parcels[0].total_cents == 20000
    assert parcels[1].quantity_of("GIFT") == 0


def test_pack_only_zero_price_units_form_one_parcel() -> None:
    parcels = pack([LineItem("GIFT", 3, 0)])

    assert parcels == [Parcel(items=(ParcelItem("GIFT", 3),), total_cents=0)]


def test_pack_empty_input_returns_no_parcels() -> None:
    assert pack([]) == []
    assert pack([LineItem("A", 0, 1000)]) == []


def test_pack_consolidates_units_in_first_appearance_order() -> None:
    parcels = pack(
        [LineItem("A", 1, 1000), LineItem("B", 2, 1000), LineItem("C", 1, 1000)],
        cap_cents=27000,
    )

    assert len(parcels) == 1
    assert [item.line_item_id for item in parcels[0].items] == ["A", "B", "C"]
    assert parcels[0].quantity_of("B") == 2
    assert parcels[0].unit_count == 4


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"cap_cents": 0}, "cap_cents"),
        ({"absorb_budget_cents": -1}, "budgets"),
        ({"absorb_items": -1}, "budgets"),
    ],
)
def test_pack_rejects_invalid_configuration(
    kwargs: dict[str, int], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        pack([LineItem("A", 1, 1000)], **kwargs)
