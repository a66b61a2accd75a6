from storefront.bot.handlers import low_stock_text, order_text, orders_text, status_text
from storefront.db.sqlite import create_order, db_status

CUSTOMER = {
    "customer_name": "<Jane>",
    "customer_email": "jane@example.com",
    "address": "1 Main St",
    "city": "Springfield",
    "country": "US",
    "postal_code": "12345",
}


def test_low_stock_text():
    assert low_stock_text([], 5) == "✅ No products below 5 in stock"

    text = low_stock_text([{"id": "A", "name": "Widget", "stock": 2}], 5)
    assert "<b>Stock below 5</b>" in text
    assert "Widget | 2" in text


def test_orders_text_escapes_customer_input(db, products):
    order = create_order(db, CUSTOMER, [("A", 1)])

    text = orders_text([order])

    assert "&lt;Jane&gt;" in text
    assert "12.00 USD" in text
    assert orders_text([]) == "(no orders)"


def test_order_text_lists_items(db, products):
    order = create_order(db, CUSTOMER, [("C", 2)])

    text = order_text(order)

    assert order["id"] in text
    assert "Cable × 2 = 10.00 USD" in text


def test_status_text(db, products):
    text = status_text(db_status(db, low_stock_threshold=10))

    assert "products: 4" in text
    assert "low stock: 3" in text
