"""
Component tests for POST /api/products/verify-cart.

They run the real app against a temporary sqlite catalog seeded by the
``products`` fixture (A: 3 in stock @12, C: 10 @5, OUT: 0).
"""
import pytest
from fastapi.testclient import TestClient

URL = "/api/products/verify-cart"


class TestBadRequests:
    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"items": None},
            {"items": "A"},
            {"items": []},
            [],
        ],
    )
    def test_invalid_body(self, test_client: TestClient, body):
        response = test_client.post(URL, json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"

    def test_item_without_valid_quantity(self, test_client: TestClient):
        response = test_client.post(URL, json={"items": [{"id": "A", "price": 1, "quantity": 0}]})

        assert response.status_code == 400


class TestReconciliation:
    def test_mixed_cart(self, test_client: TestClient):
        items = [
            {"id": "A", "name": "Widget", "price": 10, "quantity": 5, "image": "x.png"},
            {"id": "B", "name": "Ghost", "price": 1, "quantity": 1, "image": ""},
            {"id": "OUT", "name": "Lamp", "price": 30, "quantity": 1, "image": ""},
            {"id": "C", "name": "Cable", "price": 1, "quantity": 2, "image": "c.png"},
        ]

        response = test_client.post(URL, json={"items": items})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["validCount"] == 2
        assert data["needsUpdate"] is True
        assert data["validItems"] == [
            {"id": "A", "name": "Widget", "price": 12.0, "quantity": 3, "image": "a1.png"},
            {"id": "C", "name": "Cable", "price": 5.0, "quantity": 2, "image": "c.png"},
        ]
        assert [r["id"] for r in data["removedItems"]] == ["B", "OUT"]
        assert data["updatedItems"] == [
            {
                "id": "A",
                "name": "Widget",
                "oldQuantity": 5,
                "newQuantity": 3,
                "reason": "Quantity adjusted to match available stock",
            }
        ]
        assert data["message"] == "Cart validation complete. Found 2 valid items, removed 2, updated 1."

    def test_clean_cart_needs_no_update(self, test_client: TestClient):
        response = test_client.post(
            URL, json={"items": [{"id": "C", "name": "Cable", "price": 5, "quantity": 2, "image": ""}]}
        )

        data = response.json()
        assert data["needsUpdate"] is False
        assert data["removedItems"] == []
        assert data["updatedItems"] == []
        assert data["message"] == "Cart validation complete. Found 1 valid items, removed 0, updated 0."

    def test_verification_does_not_touch_stock(self, test_client: TestClient):
        body = {"items": [{"id": "A", "name": "Widget", "price": 12, "quantity": 2, "image": ""}]}
        test_client.post(URL, json=body)
        test_client.post(URL, json=body)

        product = test_client.get("/api/products/public/A").json()
        assert product["stock"] == 3

    def test_catalog_failure_is_500_without_partial_result(self, test_client: TestClient):
        test_client.app.state.db.close()

        response = test_client.post(
            URL, json={"items": [{"id": "A", "name": "Widget", "price": 12, "quantity": 1}]}
        )

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Failed to validate cart items"
        assert "validItems" not in data

    def test_corrupt_catalog_row_is_500_json(self, test_client: TestClient, db):
        with db.transaction() as conn:
            conn.execute("UPDATE products SET images = 'not json' WHERE id = 'A'")

        response = test_client.post(
            URL, json={"items": [{"id": "A", "name": "Widget", "price": 12, "quantity": 1}]}
        )

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["error"] == "Failed to validate cart items"
