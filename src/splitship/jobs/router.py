"""Route queued webhook jobs to saga handlers by topic."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from splitship.orchestrators.errors import SplitOutcome

if TYPE_CHECKING:
    from splitship.orchestrators.reconcile import SplitReconciler
    from splitship.orchestrators.split import SplitOrchestrator

# Handler type: sync function that takes (shop, payload) and returns an outcome
Handler = Callable[[str, dict[str, Any]], SplitOutcome]

ORDERS_CREATE = "orders/create"
ORDERS_PAID = "orders/paid"
ORDERS_CANCELLED = "orders/cancelled"


class UnknownTopicError(Exception):
    """Raised when a topic is not registered with the router."""

    def __init__(self, topic: str) -> None:
        self.topic = topic
        super().__init__(f"No handler for topic: {topic}")


class TopicRouter:
    """Route webhook topics to handlers.

    Maps topics (e.g., 'orders/create') to handler functions. Handlers run
    synchronously and receive the shop domain and the webhook body.

    Example:
        router = TopicRouter()
        router.register("orders/create", orchestrator.handle_order_created)
        outcome = router.dispatch("orders/create", "shop.example", payload)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, topic: str, handler: Handler) -> None:
        self._handlers[topic] = handler

    def dispatch(self, topic: str, shop: str, payload: dict[str, Any]) -> SplitOutcome:
        """Dispatch a job to its registered handler.

        Raises:
            UnknownTopicError: If no handler is registered for the topic
        """
        handler = self._handlers.get(topic)
        if handler is None:
            raise UnknownTopicError(topic)
        return handler(shop, payload)

    def has_topic(self, topic: str) -> bool:
        return topic in self._handlers

    @property
    def topics(self) -> list[str]:
        return list(self._handlers.keys())


def build_router(
    orchestrator: SplitOrchestrator, reconciler: SplitReconciler
) -> TopicRouter:
    router = TopicRouter()
    router.register(ORDERS_CREATE, orchestrator.handle_order_created)
    router.register(ORDERS_PAID, reconciler.handle_payment_captured)
    router.register(ORDERS_CANCELLED, reconciler.handle_order_cancelled)
    return router
