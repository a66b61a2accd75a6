"""
Component tests for checkout and order access.
"""
import pytest
from fastapi.testclient import TestClient

USER_EMAIL = "jane@example.com"


def stock_of(client: TestClient, pid: str) -> int:
    return client.get(f"/api/products/public/{pid}").json()["stock"]


class TestPlaceOrder:
    def test_guest_checkout(self, test_client: TestClient, order_body):
        response = test_client.post("/api/orders", json=order_body(("A", 2), ("C", 1)))

        assert response.status_code == 201
        data = response.json()
        order = data["order"]
        assert data["id"] == order["id"]
        assert order["userId"] is None
        assert order["status"] == "PENDING"
        assert order["totalAmount"] == 29.0
        assert stock_of(test_client, "A") == 1
        assert stock_of(test_client, "C") == 9

    def test_missing_fields(self, test_client: TestClient, order_body):
        body = order_body(("A", 1))
        del body["city"]

        response = test_client.post("/api/orders", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "Please fill all required fields"

    def test_empty_items(self, test_client: TestClient, order_body):
        response = test_client.post("/api/orders", json=order_body())

        assert response.status_code == 400

    def test_not_enough_stock(self, test_client: TestClient, order_body):
        response = test_client.post("/api/orders", json=order_body(("A", 4)))

        assert response.status_code == 400
        assert response.json()["error"] == "Insufficient stock"
        assert stock_of(test_client, "A") == 3

    def test_unknown_product(self, test_client: TestClient, order_body):
        response = test_client.post("/api/orders", json=order_body(("nope", 1)))

        assert response.status_code == 400
        assert response.json()["error"] == "Some products no longer exist in the database"

    def test_logged_in_order_is_linked_to_user(self, test_client: TestClient, order_body, auth_headers, users):
        response = test_client.post(
            "/api/orders", json=order_body(("C", 1), email="other@example.com"), headers=auth_headers("jane")
        )

        assert response.json()["order"]["userId"] == users["jane"]["id"]

    @pytest.mark.parametrize("headers", [{"Authorization": "Bearer stale"}, {"Cookie": "storefront_session=stale"}])
    def test_stale_token_checks_out_as_guest(self, test_client: TestClient, order_body, headers):
        response = test_client.post("/api/orders", json=order_body(("C", 1)), headers=headers)

        assert response.status_code == 201
        assert response.json()["order"]["userId"] is None

    def test_stale_token_still_refused_where_login_is_required(self, test_client: TestClient):
        response = test_client.get("/api/orders", headers={"Authorization": "Bearer stale"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid session"


class TestOrderAccess:
    def _place(self, client, order_body, email=USER_EMAIL):
        return client.post("/api/orders", json=order_body(("C", 2), email=email)).json()["order"]

    def test_my_orders_requires_login(self, test_client: TestClient):
        assert test_client.get("/api/orders").status_code == 401

    def test_my_orders_by_email(self, test_client: TestClient, order_body, auth_headers):
        order = self._place(test_client, order_body)
        self._place(test_client, order_body, email="someone@example.com")

        mine = test_client.get("/api/orders", headers=auth_headers("jane")).json()

        assert [o["id"] for o in mine] == [order["id"]]

    def test_owner_admin_and_stranger(self, test_client: TestClient, order_body, auth_headers):
        order = self._place(test_client, order_body)
        url = f"/api/orders/{order['id']}"

        assert test_client.get(url, headers=auth_headers("jane")).status_code == 200
        assert test_client.get(url, headers=auth_headers("admin")).status_code == 200
        assert test_client.get(url, headers=auth_headers("bob")).status_code == 403
        assert test_client.get("/api/orders/nope", headers=auth_headers("jane")).status_code == 404

    def test_owner_deletes_pending_order(self, test_client: TestClient, order_body, auth_headers):
        order = self._place(test_client, order_body)
        assert stock_of(test_client, "C") == 8

        response = test_client.delete(f"/api/orders/{order['id']}", headers=auth_headers("jane"))

        assert response.status_code == 204
        assert stock_of(test_client, "C") == 10

    def test_only_pending_orders_can_be_deleted(self, test_client: TestClient, order_body, auth_headers):
        order = self._place(test_client, order_body)
        test_client.put(
            f"/api/admin/orders/{order['id']}", json={"status": "SHIPPED"}, headers=auth_headers("admin")
        )

        response = test_client.delete(f"/api/orders/{order['id']}", headers=auth_headers("jane"))

        assert response.status_code == 400
        assert response.json()["message"] == "Only pending orders can be deleted"

    def test_invoice_pdf(self, test_client: TestClient, order_body, auth_headers):
        order = self._place(test_client, order_body)

        response = test_client.get(f"/api/orders/{order['id']}/invoice", headers=auth_headers("jane"))

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")


class TestAdminOrders:
    def test_list_filter_update_delete(self, test_client: TestClient, order_body, auth_headers):
        headers = auth_headers("admin")
        first = test_client.post("/api/orders", json=order_body(("C", 1))).json()["order"]
        second = test_client.post("/api/orders", json=order_body(("C", 1))).json()["order"]

        updated = test_client.put(
            f"/api/admin/orders/{first['id']}", json={"status": "PROCESSING", "city": "Shelbyville"}, headers=headers
        ).json()
        assert updated["status"] == "PROCESSING"
        assert updated["city"] == "Shelbyville"

        pending = test_client.get("/api/admin/orders", params={"status": "PENDING"}, headers=headers).json()
        assert [o["id"] for o in pending] == [second["id"]]

        bad = test_client.put(f"/api/admin/orders/{first['id']}", json={"status": "LOST"}, headers=headers)
        assert bad.status_code == 400

        assert test_client.delete(f"/api/admin/orders/{second['id']}", headers=headers).status_code == 204
        assert test_client.get(f"/api/admin/orders/{second['id']}", headers=headers).status_code == 404

    def test_non_admin_refused(self, test_client: TestClient, auth_headers):
        assert test_client.get("/api/admin/orders", headers=auth_headers("jane")).status_code == 401
        assert test_client.get("/api/admin/users", headers=auth_headers("jane")).status_code == 401

    def test_db_status(self, test_client: TestClient, auth_headers, order_body):
        test_client.post("/api/orders", json=order_body(("A", 1)))

        status = test_client.get("/api/admin/db-status", headers=auth_headers("admin")).json()

        assert status["status"] == "online"
        assert status["metrics"]["orders"] == 1
        assert status["metrics"]["users"] == 3
        assert [p["id"] for p in status["lowStockProducts"]] == ["OUT", "A", "OLD"]
