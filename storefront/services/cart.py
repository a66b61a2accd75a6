from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from storefront.models import CartLineItem
from storefront.services.pricing import order_total

logger = logging.getLogger(__name__)

VERIFY_URL = "/api/products/verify-cart"

MSG_REMOVED = "Some items were removed from your cart because they no longer exist in our inventory."
MSG_ADJUSTED = "Some quantities were adjusted based on available stock."
MSG_FAILED = "Failed to verify cart items with the database. Please try again."

# items -> verify-cart response payload
Verifier = Callable[[List[CartLineItem]], Dict[str, Any]]


@dataclass
class CartVerification:
    valid: bool
    items: List[CartLineItem] = field(default_factory=list)
    removed_items: List[Dict[str, Any]] = field(default_factory=list)
    message: Optional[str] = None


@dataclass
class CartSession:
    """Client-side cart. Only a successful verification may rewrite it."""
    items: List[CartLineItem] = field(default_factory=list)

    def _index(self, item_id: str) -> int:
        for i, it in enumerate(self.items):
            if it.id == item_id:
                return i
        return -1

    def add(self, item: CartLineItem, quantity: int = 1) -> None:
        i = self._index(item.id)
        if i > -1:
            current = self.items[i]
            self.items[i] = current.with_quantity(current.quantity + quantity)
        else:
            self.items.append(item.with_quantity(quantity))

    def remove(self, item_id: str) -> None:
        self.items = [it for it in self.items if it.id != item_id]

    def update_quantity(self, item_id: str, quantity: int) -> None:
        if quantity < 1:
            return
        self.items = [it.with_quantity(quantity) if it.id == item_id else it for it in self.items]

    def clear(self) -> None:
        self.items = []

    def replace(self, items: List[CartLineItem]) -> None:
        self.items = list(items)

    @property
    def item_count(self) -> int:
        return sum(it.quantity for it in self.items)

    @property
    def total(self) -> Decimal:
        return order_total((it.price, it.quantity) for it in self.items)

    def verify(self, verifier: Verifier) -> CartVerification:
        if not self.items:
            return CartVerification(valid=True)

        try:
            data = verifier(list(self.items))
            valid_items = [CartLineItem.from_dict(d) for d in data["validItems"]]
            removed = list(data.get("removedItems") or [])
            updated = list(data.get("updatedItems") or [])
            needs_update = bool(data.get("needsUpdate"))
        except Exception:
            logger.exception("cart verification failed, keeping cart as is")
            return CartVerification(valid=False, items=list(self.items), message=MSG_FAILED)

        if needs_update:
            self.replace(valid_items)
            if removed:
                return CartVerification(
                    valid=bool(valid_items), items=valid_items, removed_items=removed, message=MSG_REMOVED
                )
            if updated:
                return CartVerification(valid=True, items=valid_items, message=MSG_ADJUSTED)

        return CartVerification(valid=bool(valid_items), items=valid_items)


def http_verifier(client: Any, url: str = VERIFY_URL) -> Verifier:
    """Verifier backed by an HTTP client exposing ``post(url, json=...)``."""

    def _verify(items: List[CartLineItem]) -> Dict[str, Any]:
        resp = client.post(url, json={"items": [it.to_dict() for it in items]})
        resp.raise_for_status()
        return resp.json()

    return _verify
