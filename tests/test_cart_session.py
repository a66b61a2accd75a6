from decimal import Decimal

from storefront.models import CartLineItem
from storefront.services.cart import MSG_ADJUSTED, MSG_FAILED, MSG_REMOVED, CartSession, http_verifier


def item(item_id, price="10", quantity=1):
    return CartLineItem(id=item_id, name=f"item {item_id}", price=Decimal(price), quantity=quantity)


class TestCartEditing:
    def test_add_merges_same_product(self):
        cart = CartSession()
        cart.add(item("A"), 2)
        cart.add(item("B"))
        cart.add(item("A"), 3)

        assert [(it.id, it.quantity) for it in cart.items] == [("A", 5), ("B", 1)]
        assert cart.item_count == 6

    def test_update_quantity_ignores_values_below_one(self):
        cart = CartSession()
        cart.add(item("A"), 2)

        cart.update_quantity("A", 0)
        assert cart.items[0].quantity == 2

        cart.update_quantity("A", 7)
        assert cart.items[0].quantity == 7

    def test_remove_and_clear(self):
        cart = CartSession()
        cart.add(item("A"))
        cart.add(item("B"))

        cart.remove("A")
        assert [it.id for it in cart.items] == ["B"]

        cart.clear()
        assert cart.items == []
        assert cart.item_count == 0

    def test_total(self):
        cart = CartSession()
        cart.add(item("A", price="19.99"), 3)
        cart.add(item("B", price="0.02"), 1)

        assert cart.total == Decimal("59.99")


class TestVerify:
    def test_empty_cart_does_not_call_verifier(self):
        calls = []
        result = CartSession().verify(lambda items: calls.append(items))

        assert result.valid is True
        assert result.items == []
        assert calls == []

    def test_failure_leaves_cart_untouched(self):
        cart = CartSession()
        cart.add(item("A"), 4)
        before = list(cart.items)

        def down(items):
            raise ConnectionError("catalog unreachable")

        result = cart.verify(down)

        assert result.valid is False
        assert result.message == MSG_FAILED
        assert cart.items == before

    def test_malformed_response_leaves_cart_untouched(self):
        cart = CartSession()
        cart.add(item("A"), 4)

        result = cart.verify(lambda items: {"unexpected": True})

        assert result.valid is False
        assert cart.items[0].quantity == 4

    def test_removed_items_rewrite_cart(self):
        cart = CartSession()
        cart.add(item("A"))
        cart.add(item("B"))
        payload = {
            "validItems": [{"id": "A", "name": "Widget", "price": 12, "quantity": 1, "image": ""}],
            "removedItems": [{"id": "B", "name": "item B", "reason": "gone"}],
            "updatedItems": [],
            "needsUpdate": True,
        }

        result = cart.verify(lambda items: payload)

        assert result.valid is True
        assert result.message == MSG_REMOVED
        assert result.removed_items == payload["removedItems"]
        assert [(it.id, it.price) for it in cart.items] == [("A", Decimal("12.00"))]

    def test_adjusted_quantities_rewrite_cart(self):
        cart = CartSession()
        cart.add(item("A"), 9)
        payload = {
            "validItems": [{"id": "A", "name": "Widget", "price": 12, "quantity": 3, "image": ""}],
            "removedItems": [],
            "updatedItems": [{"id": "A", "name": "Widget", "oldQuantity": 9, "newQuantity": 3, "reason": "x"}],
            "needsUpdate": True,
        }

        result = cart.verify(lambda items: payload)

        assert result.message == MSG_ADJUSTED
        assert cart.items[0].quantity == 3

    def test_against_live_api(self, test_client):
        cart = CartSession()
        cart.add(item("A", price="1"), 5)
        cart.add(item("GONE"))
        cart.add(item("C", price="1"), 2)

        result = cart.verify(http_verifier(test_client))

        assert result.valid is True
        assert result.message == MSG_REMOVED
        assert [(it.id, it.quantity, it.price) for it in cart.items] == [
            ("A", 3, Decimal("12.00")),
            ("C", 2, Decimal("5.00")),
        ]
