from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from splitship.shipping.rates import DEFAULT_RATES_PATH

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class PackingConfig:
    cap_cents: int = 27_000
    absorb_budget_cents: int = 6_000
    absorb_items: int = 2


@dataclass(frozen=True, slots=True)
class ConsumerConfig:
    """Job consumer tuning. Defaults mirror the upstream throttling limits."""

    concurrency: int = 5
    rate_limit_ops: int = 4
    rate_limit_period_seconds: float = 1.0
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    dedup_ttl_seconds: int = 24 * 3600
    poll_interval_seconds: float = 0.5
    job_lease_seconds: float = 300.0
    dedup_purge_interval_seconds: float = 3600.0


@dataclass(frozen=True, slots=True)
class SplitShipConfig:
    """Process configuration loaded once at startup."""

    database_url: str
    gateway_url: str | None = None
    gateway_token: str | None = None
    gateway_timeout_seconds: float = 30.0
    shipping_rates_path: Path = DEFAULT_RATES_PATH
    default_locale: str = "zh-CN"
    invoice_due_hours: int = 24
    cancel_counterpart_orders: bool = False
    packing: PackingConfig = PackingConfig()
    consumer: ConsumerConfig = ConsumerConfig()


def _require_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def _int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def load_packing_config_from_env() -> PackingConfig:
    return PackingConfig(
        cap_cents=_int_env("SPLITSHIP_PARCEL_CAP_CENTS", 27_000, minimum=1),
        absorb_budget_cents=_int_env("SPLITSHIP_ABSORB_BUDGET_CENTS", 6_000),
        absorb_items=_int_env("SPLITSHIP_ABSORB_ITEMS", 2),
    )


def load_consumer_config_from_env() -> ConsumerConfig:
    return ConsumerConfig(
        concurrency=_int_env("SPLITSHIP_WORKER_CONCURRENCY", 5, minimum=1),
        rate_limit_ops=_int_env("SPLITSHIP_RATE_LIMIT_OPS", 4, minimum=1),
        rate_limit_period_seconds=_float_env("SPLITSHIP_RATE_LIMIT_PERIOD", 1.0),
        max_attempts=_int_env("SPLITSHIP_MAX_ATTEMPTS", 3, minimum=1),
        backoff_base_seconds=_float_env("SPLITSHIP_BACKOFF_BASE_SECONDS", 1.0),
        dedup_ttl_seconds=_int_env("SPLITSHIP_DEDUP_TTL_SECONDS", 24 * 3600),
        poll_interval_seconds=_float_env("SPLITSHIP_POLL_INTERVAL_SECONDS", 0.5),
        job_lease_seconds=_float_env("SPLITSHIP_JOB_LEASE_SECONDS", 300.0),
        dedup_purge_interval_seconds=_float_env(
            "SPLITSHIP_DEDUP_PURGE_INTERVAL_SECONDS", 3600.0
        ),
    )


def load_config_from_env() -> SplitShipConfig:
    """Load process config from env and validate startup requirements."""
    database_url = _require_env("SPLITSHIP_DATABASE_URL")

    gateway_url = os.environ.get("SPLITSHIP_GATEWAY_URL", "").strip() or None
    gateway_token = os.environ.get("SPLITSHIP_GATEWAY_TOKEN", "").strip() or None
    if gateway_url and not gateway_token:
        raise ValueError(
            "SPLITSHIP_GATEWAY_TOKEN is required when SPLITSHIP_GATEWAY_URL is set"
        )

    rates_raw = os.environ.get("SPLITSHIP_SHIPPING_RATES_PATH", "").strip()
    shipping_rates_path = Path(rates_raw) if rates_raw else DEFAULT_RATES_PATH

    default_locale = os.environ.get("SPLITSHIP_DEFAULT_LOCALE", "zh-CN").strip()
    cancel_counterpart = (
        os.environ.get("SPLITSHIP_CANCEL_COUNTERPART_ORDERS", "false").strip().lower()
        in _TRUE_VALUES
    )

    return SplitShipConfig(
        database_url=database_url,
        gateway_url=gateway_url,
        gateway_token=gateway_token,
        gateway_timeout_seconds=_float_env("SPLITSHIP_GATEWAY_TIMEOUT_SECONDS", 30.0),
        shipping_rates_path=shipping_rates_path,
        default_locale=default_locale or "zh-CN",
        invoice_due_hours=_int_env("SPLITSHIP_INVOICE_DUE_HOURS", 24, minimum=1),
        cancel_counterpart_orders=cancel_counterpart,
        packing=load_packing_config_from_env(),
        consumer=load_consumer_config_from_env(),
    )
