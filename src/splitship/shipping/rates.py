"""Shipping-rate lookup for additional parcels.

The table maps a fragment of the checkout shipping-line title to a shipping
level and a per-parcel cost, optionally varying by destination country.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_RATES_PATH = Path(__file__).with_name("shipping_rates.yaml")
ANY_COUNTRY = "*"


class ShippingRateError(Exception):
    """Raised when a shipping-rate table cannot be loaded."""


@dataclass(frozen=True, slots=True)
class ShippingRate:
    level: str
    cost_per_parcel_cents: int


@dataclass(frozen=True, slots=True)
class _RateRule:
    match: str
    level: str
    costs: dict[str, int]


class ShippingRateTable:
    """Resolve ``(level, cost_per_parcel)`` from a shipping-line title."""

    def __init__(self, rules: list[_RateRule]) -> None:
        self._rules = rules

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShippingRateTable:
        raw_rules = data.get("rates")
        if not isinstance(raw_rules, list):
            raise ShippingRateError("Shipping rate table must define a 'rates' list")

        rules: list[_RateRule] = []
        for index, raw in enumerate(raw_rules):
            try:
                match = str(raw["match"]).strip()
                level = str(raw["level"]).strip()
                raw_costs = raw["cost_per_parcel"]
            except (KeyError, TypeError) as e:
                raise ShippingRateError(
                    f"Shipping rate #{index} is missing a required key: {e}"
                ) from e
            if not match or not level:
                raise ShippingRateError(
                    f"Shipping rate #{index} needs a non-empty match and level"
                )
            if isinstance(raw_costs, int):
                costs = {ANY_COUNTRY: raw_costs}
            elif isinstance(raw_costs, dict):
                costs = {str(k).upper(): int(v) for k, v in raw_costs.items()}
            else:
                raise ShippingRateError(
                    f"Shipping rate #{index} cost_per_parcel must be an int or mapping"
                )
            rules.append(_RateRule(match=match.lower(), level=level, costs=costs))
        return cls(rules)

    @classmethod
    def from_yaml(cls, path: Path = DEFAULT_RATES_PATH) -> ShippingRateTable:
        """Load a rate table from a YAML file.

        Raises:
            ShippingRateError: If the file is missing or malformed
        """
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ShippingRateError(
                f"Failed to load shipping rates from {path}: {e}"
            ) from e
        if not isinstance(data, dict):
            raise ShippingRateError(f"Shipping rate file {path} must be a mapping")
        return cls.from_dict(data)

    def lookup(
        self, title: str | None, country_code: str | None
    ) -> ShippingRate | None:
        """Return the rate for a shipping-line title and destination.

        The first rule whose ``match`` occurs in the title (case-insensitive)
        wins. A country-specific cost beats the ``*`` fallback. Non-positive
        costs are treated as unresolved.
        """
        if not title:
            return None
        normalized = title.lower()
        country = (country_code or "").upper()
        for rule in self._rules:
            if rule.match not in normalized:
                continue
            cost = rule.costs.get(country, rule.costs.get(ANY_COUNTRY))
            if cost is None or cost <= 0:
                return None
            return ShippingRate(level=rule.level, cost_per_parcel_cents=cost)
        return None
