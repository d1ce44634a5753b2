import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Optional

import redis

from storefront.cart_slots import CartSlot, MemoryCartSlot, RedisCartSlot
from storefront.cart_store import CartStore
from storefront.catalog import CatalogService
from storefront.checkout import CheckoutSession, CheckoutState, CheckoutView
from storefront.config import Settings
from storefront.payment_gateway import HostedGateway, PaymentGateway, SimulatedGateway
from storefront.reconciler import OrderReconciler

logger = logging.getLogger(__name__)


def build_gateway(settings: Settings) -> PaymentGateway:
    """Pick the payment gateway named by configuration."""
    if settings.payment_gateway == "hosted":
        return HostedGateway(
            checkout_url=settings.gateway_checkout_url,
            merchant_id=settings.merchant_id,
            return_url=settings.gateway_return_url or None,
        )
    return SimulatedGateway(success_rate=settings.gateway_success_rate)


class _Visitor:
    def __init__(self, cart: CartStore, last_seen: float):
        self.cart = cart
        self.session: Optional[CheckoutSession] = None
        self.last_seen = last_seen

    @property
    def pinned(self) -> bool:
        """Sessions that still have to reach a terminal callback or support."""
        if self.session is None:
            return False
        return (
            self.session.state == CheckoutState.AWAITING_GATEWAY
            or self.session.view == CheckoutView.SUPPORT_REQUIRED
        )


class Storefront:
    """Per-visitor carts and checkout sessions over shared collaborators.

    Visitors are kept in least-recently-used order. A visitor idle for longer
    than cart_ttl_seconds is dropped, and once more than max_cached_visitors
    are held the least recently used ones are dropped too, except those with
    a payment attempt outstanding or a failed order write. Dropping a visitor
    on in-memory slots also drops their cart; with Redis the cart stays in
    its key and is reloaded on the next request.
    """

    def __init__(
        self,
        settings: Settings,
        catalog: CatalogService,
        gateway: PaymentGateway,
        redis_client: Optional[redis.Redis] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.catalog = catalog
        self.gateway = gateway
        self.redis_client = redis_client
        self.clock = clock
        self._memory_slots: Dict[str, str] = {}
        self._visitors: "OrderedDict[str, _Visitor]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._visitors)

    def cart_for(self, visitor_id: str) -> CartStore:
        with self._lock:
            return self._visit(visitor_id).cart

    def session_for(self, visitor_id: str) -> CheckoutSession:
        with self._lock:
            visitor = self._visit(visitor_id)
            if visitor.session is None:
                reconciler = OrderReconciler(self.catalog, visitor.cart, support_email=self.settings.support_email)
                visitor.session = CheckoutSession(visitor.cart, self.gateway, reconciler, currency=self.settings.currency)
                logger.info("Checkout session created", extra={"visitor_id": visitor_id})
            return visitor.session

    def _visit(self, visitor_id: str) -> _Visitor:
        now = self.clock()
        self._expire(now)

        visitor = self._visitors.get(visitor_id)
        if visitor is None:
            visitor = _Visitor(CartStore(self._slot_for(visitor_id)), now)
            self._visitors[visitor_id] = visitor
        else:
            visitor.last_seen = now
            self._visitors.move_to_end(visitor_id)

        self._shrink(keep=visitor_id)
        return visitor

    def _expire(self, now: float) -> None:
        cutoff = now - self.settings.cart_ttl_seconds
        # Oldest first, so stop at the first visitor seen after the cutoff
        while self._visitors:
            visitor_id, visitor = next(iter(self._visitors.items()))
            if visitor.last_seen > cutoff:
                break
            self._drop(visitor_id, "idle")

    def _shrink(self, keep: str) -> None:
        excess = len(self._visitors) - self.settings.max_cached_visitors
        if excess <= 0:
            return
        for visitor_id in list(self._visitors):
            if excess <= 0:
                break
            if visitor_id == keep or self._visitors[visitor_id].pinned:
                continue
            self._drop(visitor_id, "capacity")
            excess -= 1
        if excess > 0:
            logger.warning(f"{len(self._visitors)} visitors cached, {excess} over the limit are pinned by open payments")

    def _drop(self, visitor_id: str, reason: str) -> None:
        visitor = self._visitors.pop(visitor_id)
        if isinstance(visitor.cart.slot, MemoryCartSlot):
            visitor.cart.slot.delete()
        logger.info(f"Evicted visitor ({reason})", extra={"visitor_id": visitor_id})

    def _slot_for(self, visitor_id: str) -> CartSlot:
        if self.redis_client is not None:
            return RedisCartSlot(self.redis_client, visitor_id, ttl=self.settings.cart_ttl_seconds)
        return MemoryCartSlot(visitor_id, store=self._memory_slots)

    def close(self) -> None:
        if self.redis_client is not None:
            self.redis_client.close()
