from __future__ import annotations

from dataclasses import dataclass
import threading

from splitship.adapters.db.facade import SagaStore
from splitship.adapters.gateway.http import HttpFulfillmentGateway
from splitship.adapters.gateway.protocol import FulfillmentGateway
from splitship.adapters.gateway.rate_limited import RateLimitedGateway, RateLimiter
from splitship.core.config import SplitShipConfig
from splitship.jobs.consumer import JobConsumer
from splitship.jobs.queue import JobQueue
from splitship.jobs.router import TopicRouter, build_router
from splitship.orchestrators.reconcile import SplitReconciler
from splitship.orchestrators.split import GatewayFactory, SplitOrchestrator
from splitship.shipping.rates import ShippingRateTable


@dataclass(frozen=True, slots=True)
class Runtime:
    """Process-wide collaborators, built once at startup."""

    config: SplitShipConfig
    store: SagaStore
    queue: JobQueue
    orchestrator: SplitOrchestrator
    reconciler: SplitReconciler
    router: TopicRouter
    consumer: JobConsumer


def create_gateway_factory(
    config: SplitShipConfig, limiter: RateLimiter
) -> GatewayFactory:
    """Build per-shop HTTP gateways that all share one rate limiter."""
    if not config.gateway_url or not config.gateway_token:
        raise ValueError(
            "SPLITSHIP_GATEWAY_URL and SPLITSHIP_GATEWAY_TOKEN are required "
            "to process jobs"
        )
    base_url = config.gateway_url
    token = config.gateway_token
    cache: dict[str, FulfillmentGateway] = {}
    lock = threading.Lock()

    def gateway_for(shop: str) -> FulfillmentGateway:
        with lock:
            gateway = cache.get(shop)
            if gateway is None:
                gateway = RateLimitedGateway(
                    HttpFulfillmentGateway(
                        base_url=base_url,
                        token=token,
                        shop_domain=shop,
                        timeout_seconds=config.gateway_timeout_seconds,
                    ),
                    limiter,
                )
                cache[shop] = gateway
            return gateway

    return gateway_for


def create_runtime(
    config: SplitShipConfig,
    *,
    gateway_for: GatewayFactory | None = None,
    store: SagaStore | None = None,
) -> Runtime:
    """Wire store, queue, saga handlers and consumer from startup config.

    Args:
        config: Loaded process configuration
        gateway_for: Override for the gateway factory (defaults to HTTP)
        store: Override for the store (defaults to ``config.database_url``)
    """
    store = store or SagaStore(config.database_url)
    if gateway_for is None:
        limiter = RateLimiter(
            config.consumer.rate_limit_ops, config.consumer.rate_limit_period_seconds
        )
        gateway_for = create_gateway_factory(config, limiter)

    rates = ShippingRateTable.from_yaml(config.shipping_rates_path)
    orchestrator = SplitOrchestrator(
        store=store,
        gateway_for=gateway_for,
        rates=rates,
        packing=config.packing,
        default_locale=config.default_locale,
        invoice_due_hours=config.invoice_due_hours,
    )
    reconciler = SplitReconciler(
        store=store,
        gateway_for=gateway_for,
        cancel_counterpart_orders=config.cancel_counterpart_orders,
    )
    router = build_router(orchestrator, reconciler)
    queue = JobQueue(
        store,
        dedup_ttl_seconds=config.consumer.dedup_ttl_seconds,
        lease_seconds=config.consumer.job_lease_seconds,
    )
    consumer = JobConsumer(
        queue,
        router,
        concurrency=config.consumer.concurrency,
        max_attempts=config.consumer.max_attempts,
        backoff_base_seconds=config.consumer.backoff_base_seconds,
        poll_interval_seconds=config.consumer.poll_interval_seconds,
        dedup_purge_interval_seconds=config.consumer.dedup_purge_interval_seconds,
    )
    return Runtime(
        config=config,
        store=store,
        queue=queue,
        orchestrator=orchestrator,
        reconciler=reconciler,
        router=router,
        consumer=consumer,
    )
