from __future__ import annotations

from pathlib import Path

import pytest

from splitship.shipping.rates import (
    DEFAULT_RATES_PATH,
    ShippingRate,
    ShippingRateError,
    ShippingRateTable,
)


def build_table() -> ShippingRateTable:
    return ShippingRateTable.from_dict(
        {
            "rates": [
                {"match": "Express", "level": "3", "cost_per_parcel": {"TW": 45000}},
                {"match": "standard", "level": "1", "cost_per_parcel": 18000},
                {
                    "match": "free",
                    "level": "0",
                    "cost_per_parcel": {"TW": 0, "*": 5000},
                },
            ]
        }
    )


def test_lookup_matches_title_case_insensitively() -> None:
    table = build_table()

    rate = table.lookup("EXPRESS Delivery (3-5 days)", "tw")

    assert rate == ShippingRate(level="3", cost_per_parcel_cents=45000)


def test_lookup_uses_flat_cost_for_any_country() -> None:
    table = build_table()

    assert table.lookup("Standard shipping", "JP") == ShippingRate("1", 18000)
    assert table.lookup("Standard shipping", None) == ShippingRate("1", 18000)


def test_lookup_returns_none_for_unknown_country_without_fallback() -> None:
    table = build_table()

    assert table.lookup("Express", "US") is None


def test_lookup_treats_non_positive_cost_as_unresolved() -> None:
    table = build_table()

    assert table.lookup("Free shipping", "TW") is None
    assert table.lookup("Free shipping", "HK") == ShippingRate("0", 5000)


def test_lookup_returns_none_for_missing_or_unmatched_title() -> None:
    table = build_table()

    assert table.lookup(None, "TW") is None
    assert table.lookup("", "TW") is None
    assert table.lookup("Pickup in store", "TW") is None


def test_first_matching_rule_wins() -> None:
    table = ShippingRateTable.from_dict(
        {
            "rates": [
                {"match": "express", "level": "3", "cost_per_parcel": 100},
                {"match": "express plus", "level": "4", "cost_per_parcel": 200},
            ]
        }
    )

    assert table.lookup("Express Plus", "TW") == ShippingRate("3", 100)


def test_default_table_loads_from_package() -> None:
    table = ShippingRateTable.from_yaml(DEFAULT_RATES_PATH)

    assert table.lookup("Express", "TW") == ShippingRate("3", 45000)
    assert table.lookup("Standard", "FR") == ShippingRate("1", 22000)


def test_from_yaml_reads_custom_file(tmp_path: Path) -> None:
    path = tmp_path / "rates.yaml"
    path.write_text(
        "rates:\n  - match: courier\n    level: '2'\n    cost_per_parcel: 12345\n",
        encoding="utf-8",
    )

    table = ShippingRateTable.from_yaml(path)

    assert table.lookup("Courier", "TW") == ShippingRate("2", 12345)


def test_from_yaml_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ShippingRateError, match="Failed to load"):
        ShippingRateTable.from_yaml(tmp_path / "missing.yaml")


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"rates": "express"},
        {"rates": [{"level": "1", "cost_per_parcel": 1}]},
        {"rates": [{"match": "", "level": "1", "cost_per_parcel": 1}]},
        {"rates": [{"match": "x", "level": "1", "cost_per_parcel": "cheap"}]},
    ],
)
def test_from_dict_rejects_malformed_tables(data: dict) -> None:
    with pytest.raises(ShippingRateError):
        ShippingRateTable.from_dict(data)
