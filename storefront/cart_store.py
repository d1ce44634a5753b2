"""
Cart Store

Owns the visitor's list of selected line items and keeps it in its cart slot.

Key Features:
    - One LineItem per product_id: adding a product already in the cart
      increments its quantity instead of appending a second entry
    - Every mutation re-reads the slot, computes the new list and writes the
      full snapshot back while holding the store lock, so two rapid adds never
      lose an update
    - snapshot() hands out an immutable tuple of frozen LineItems
    - Absent or corrupt slot content reads as an empty cart
    - Storage failures are not fatal: the store logs once, switches to
      in-memory mode and stays there for its lifetime

Example Usage:
    ```python
    store = CartStore(RedisCartSlot(redis_client, "visitor-123"))
    store.add("p-1", ProductUnit(name="Portfolio Kit", unit_price=Decimal("29.99")))
    store.add("p-1", ProductUnit(name="Portfolio Kit", unit_price=Decimal("29.99")))
    store.snapshot()
    # (LineItem(product_id='p-1', name='Portfolio Kit', unit_price=Decimal('29.99'), quantity=2, ...),)
    store.remove("p-404")   # no-op
    store.clear()
    ```
"""

import json
import logging
import threading
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from storefront.cart_slots import CartSlot
from storefront.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class ProductUnit(BaseModel):
    """Per-unit product data copied into a line item."""

    model_config = ConfigDict(frozen=True)

    name: str
    unit_price: Decimal = Field(ge=0)
    thumbnail_ref: Optional[str] = None
    download_ref: Optional[str] = None


class LineItem(BaseModel):
    """One product entry in a cart."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    thumbnail_ref: Optional[str] = None
    download_ref: Optional[str] = None


Snapshot = Tuple[LineItem, ...]


class CartStore:
    """Cart for a single visitor, persisted to a cart slot on every mutation."""

    def __init__(self, slot: CartSlot):
        self.slot = slot
        self.degraded = False
        self._lock = threading.Lock()
        self._items: List[LineItem] = []
        with self._lock:
            self._items = self._load()

    def add(self, product_id: str, unit_data: ProductUnit) -> Snapshot:
        """Add one unit of a product. Increment quantity if it is already in the cart."""

        def apply(items: List[LineItem]) -> List[LineItem]:
            for index, item in enumerate(items):
                if item.product_id == product_id:
                    items[index] = item.model_copy(update={"quantity": item.quantity + 1})
                    return items
            items.append(_line_item(product_id, unit_data))
            return items

        snapshot = self._mutate(apply)
        logger.info(f"Added item {product_id} to cart")
        return snapshot

    def remove(self, product_id: str) -> Snapshot:
        """Remove a product. Removing a product that is not in the cart does nothing."""
        snapshot = self._mutate(lambda items: [item for item in items if item.product_id != product_id])
        logger.info(f"Removed item {product_id} from cart")
        return snapshot

    def set_quantity(self, product_id: str, quantity: int) -> Snapshot:
        """Set a product's quantity. Quantity 0 removes it; unknown products are ignored."""
        if quantity < 0:
            raise ValueError(f"Invalid quantity {quantity} for product {product_id}")

        def apply(items: List[LineItem]) -> List[LineItem]:
            if quantity == 0:
                return [item for item in items if item.product_id != product_id]
            return [
                item.model_copy(update={"quantity": quantity}) if item.product_id == product_id else item
                for item in items
            ]

        return self._mutate(apply)

    def replace_with(self, product_id: str, unit_data: ProductUnit) -> Snapshot:
        """Buy-now: the cart becomes exactly this one product."""
        snapshot = self._mutate(lambda items: [_line_item(product_id, unit_data)])
        logger.info(f"Replaced cart contents with {product_id}")
        return snapshot

    def clear(self) -> Snapshot:
        """Empty the cart."""
        snapshot = self._mutate(lambda items: [])
        logger.info("Cleared cart")
        return snapshot

    def snapshot(self) -> Snapshot:
        """Read-only copy of the current cart."""
        with self._lock:
            self._items = self._load()
            return tuple(self._items)

    def is_empty(self) -> bool:
        return not self.snapshot()

    def _mutate(self, apply: Callable[[List[LineItem]], List[LineItem]]) -> Snapshot:
        with self._lock:
            items = apply(self._load())
            self._persist(items)
            return tuple(self._items)

    def _load(self) -> List[LineItem]:
        if self.degraded:
            return list(self._items)
        try:
            payload = self.slot.read()
        except StorageUnavailable as e:
            self._degrade(e)
            return list(self._items)
        return _decode(payload)

    def _persist(self, items: List[LineItem]) -> None:
        self._items = list(items)
        if self.degraded:
            return
        try:
            if items:
                self.slot.write(_encode(items))
            else:
                self.slot.delete()
        except StorageUnavailable as e:
            self._degrade(e)

    def _degrade(self, error: StorageUnavailable) -> None:
        self.degraded = True
        logger.warning(f"Cart storage unavailable, keeping cart in memory only: {error}")


def _line_item(product_id: str, unit_data: ProductUnit) -> LineItem:
    return LineItem(product_id=product_id, quantity=1, **unit_data.model_dump())


def _encode(items: List[LineItem]) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items])


def _decode(payload: Optional[str]) -> List[LineItem]:
    """Parse slot content. Anything unreadable is an empty cart."""
    if payload is None:
        return []
    try:
        raw = json.loads(payload)
        if not isinstance(raw, list):
            raise ValueError(f"expected a list, got {type(raw).__name__}")
        parsed = [LineItem.model_validate(entry) for entry in raw]
    except (ValueError, TypeError) as e:
        logger.warning(f"Discarding unreadable cart slot content: {e}")
        return []

    # Merge repeated product ids so the cart stays unique by product
    merged: List[LineItem] = []
    positions = {}
    for item in parsed:
        if item.product_id in positions:
            index = positions[item.product_id]
            merged[index] = merged[index].model_copy(update={"quantity": merged[index].quantity + item.quantity})
        else:
            positions[item.product_id] = len(merged)
            merged.append(item)
    return merged
