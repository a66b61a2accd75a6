"""
Cart reconciliation: correct a client-held cart against the live catalog.

The reconciler is a pure function. It asks the catalog for every product in
the cart in a single batch, then walks the cart once, sorting each line into
one of three outcomes:

- the product is gone or out of stock -> ``removed_items``
- the product has less stock than requested -> quantity clamped, recorded in
  ``updated_items`` and kept in ``valid_items``
- otherwise -> kept in ``valid_items``

Price, name and image of every kept line always come from the catalog.
Duplicate lines for the same product are checked independently against the
same stock figure; stock is not deducted across them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Sequence

from storefront.constants import REASON_MISSING, REASON_OUT_OF_STOCK, REASON_QTY_ADJUSTED
from storefront.errors import InvalidInput
from storefront.models import CartLineItem, ProductRecord

logger = logging.getLogger(__name__)

CatalogLookup = Callable[[List[str]], Iterable[ProductRecord]]


@dataclass(frozen=True)
class RemovedItem:
    id: str
    name: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "reason": self.reason}


@dataclass(frozen=True)
class UpdatedItem:
    id: str
    name: str
    old_quantity: int
    new_quantity: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "oldQuantity": self.old_quantity,
            "newQuantity": self.new_quantity,
            "reason": self.reason,
        }


@dataclass
class ReconciliationResult:
    valid_items: List[CartLineItem] = field(default_factory=list)
    removed_items: List[RemovedItem] = field(default_factory=list)
    updated_items: List[UpdatedItem] = field(default_factory=list)
    empty_cart: bool = False

    @property
    def needs_update(self) -> bool:
        return bool(self.removed_items or self.updated_items)

    @property
    def valid(self) -> bool:
        # an empty cart is trivially valid
        return self.empty_cart or bool(self.valid_items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "validItems": [it.to_dict() for it in self.valid_items],
            "removedItems": [it.to_dict() for it in self.removed_items],
            "updatedItems": [it.to_dict() for it in self.updated_items],
            "needsUpdate": self.needs_update,
        }


def _authoritative(item: CartLineItem, product: ProductRecord, quantity: int) -> CartLineItem:
    return CartLineItem(
        id=item.id,
        name=product.name,
        price=product.price,
        quantity=quantity,
        image=product.first_image or item.image,
        original_price=item.original_price,
    )


def reconcile(cart_items: Sequence[CartLineItem], catalog_lookup: CatalogLookup) -> ReconciliationResult:
    if not isinstance(cart_items, (list, tuple)):
        raise InvalidInput("cart items must be a list")
    if not cart_items:
        return ReconciliationResult(empty_cart=True)

    ids = list(dict.fromkeys(it.id for it in cart_items))
    products = {p.id: p for p in catalog_lookup(ids)}

    result = ReconciliationResult()
    for item in cart_items:
        product = products.get(item.id)

        if product is None:
            result.removed_items.append(RemovedItem(item.id, item.name, REASON_MISSING))
            continue

        if product.stock < 1:
            result.removed_items.append(RemovedItem(item.id, product.name, REASON_OUT_OF_STOCK))
            continue

        if item.quantity > product.stock:
            result.updated_items.append(
                UpdatedItem(item.id, product.name, item.quantity, product.stock, REASON_QTY_ADJUSTED)
            )
            result.valid_items.append(_authoritative(item, product, product.stock))
        else:
            result.valid_items.append(_authoritative(item, product, item.quantity))

    logger.debug(
        "reconciled %d lines: valid=%d removed=%d updated=%d",
        len(cart_items),
        len(result.valid_items),
        len(result.removed_items),
        len(result.updated_items),
    )
    return result
