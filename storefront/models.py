from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storefront.errors import InvalidInput, ValidationError
from storefront.services.pricing import money_json, to_money


@dataclass(frozen=True)
class CartLineItem:
    """One line of a client-held cart. Prices are whatever the client claims."""
    id: str
    name: str
    price: Decimal
    quantity: int
    image: str = ""
    original_price: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, data: Any) -> "CartLineItem":
        if not isinstance(data, dict):
            raise InvalidInput("Each cart item must be an object")
        item_id = data.get("id")
        if not isinstance(item_id, str) or not item_id.strip():
            raise InvalidInput("Each cart item needs a string id")
        qty = data.get("quantity")
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
            raise InvalidInput(f"Item {item_id}: quantity must be an integer >= 1")
        try:
            price = to_money(data.get("price", 0))
            original = data.get("originalPrice")
            original_price = to_money(original) if original is not None else None
        except ValidationError as e:
            raise InvalidInput(f"Item {item_id}: {e.message}") from None
        return cls(
            id=item_id,
            name=str(data.get("name") or ""),
            price=price,
            quantity=qty,
            image=str(data.get("image") or ""),
            original_price=original_price,
        )

    def with_quantity(self, quantity: int) -> "CartLineItem":
        return replace(self, quantity=quantity)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "price": money_json(self.price),
            "quantity": self.quantity,
            "image": self.image,
        }
        if self.original_price is not None:
            out["originalPrice"] = money_json(self.original_price)
        return out


@dataclass(frozen=True)
class ProductRecord:
    """Authoritative catalog view used for cart checks."""
    id: str
    name: str
    price: Decimal
    stock: int
    images: List[str] = field(default_factory=list)

    @property
    def first_image(self) -> Optional[str]:
        return self.images[0] if self.images else None


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    description: str
    price: Decimal
    stock: int
    category: str
    status: str
    images: List[str]
    original_price: Optional[Decimal]
    discount: Optional[Decimal]
    is_on_sale: bool
    is_featured: bool
    created_at: str
    updated_at: str

    def record(self) -> ProductRecord:
        return ProductRecord(self.id, self.name, self.price, self.stock, list(self.images))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": money_json(self.price),
            "originalPrice": money_json(self.original_price),
            "discount": float(self.discount) if self.discount is not None else None,
            "isOnSale": self.is_on_sale,
            "isFeatured": self.is_featured,
            "stock": self.stock,
            "category": self.category,
            "status": self.status,
            "images": list(self.images),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
