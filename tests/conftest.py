import dataclasses
from decimal import Decimal
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from storefront.config import Settings, settings
from storefront.constants import PRODUCT_INACTIVE, ROLE_ADMIN
from storefront.db.sqlite import Database, create_product, create_user, init_db
from storefront.services.auth import create_session_token, hash_password
from storefront.web.main import create_app

ADMIN_EMAIL = "admin@example.com"
USER_EMAIL = "jane@example.com"
PASSWORD = "secret123"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return dataclasses.replace(
        settings,
        db_path=str(tmp_path / "data" / "store.db"),
        export_dir=str(tmp_path / "exports"),
        backup_dir=str(tmp_path / "backups"),
        session_secret="test-secret",
        low_stock_threshold=10,
        break_glass_enabled=False,
        break_glass_email="",
        break_glass_password_hash="",
    )


@pytest.fixture
def db(test_settings):
    database = Database(test_settings.db_path).open()
    init_db(database)
    yield database
    database.close()


@pytest.fixture
def products(db):
    """A: 3 in stock, C: plenty, OUT: none, OLD: inactive."""
    return {
        "A": create_product(db, product_id="A", name="Widget", price=Decimal("12.00"), stock=3,
                            category="Tools", images=["a1.png", "a2.png"]),
        "C": create_product(db, product_id="C", name="Cable", price=Decimal("5.00"), stock=10,
                            category="Electronics", description="USB-C cable"),
        "OUT": create_product(db, product_id="OUT", name="Lamp", price=Decimal("40.00"), stock=0,
                              category="Home", is_on_sale=True, discount=Decimal("25")),
        "OLD": create_product(db, product_id="OLD", name="Old widget", price=Decimal("1.00"), stock=5,
                              status=PRODUCT_INACTIVE),
    }


@pytest.fixture
def users(db) -> Dict[str, dict]:
    return {
        "admin": create_user(db, ADMIN_EMAIL, "Admin", hash_password(PASSWORD), role=ROLE_ADMIN),
        "jane": create_user(db, USER_EMAIL, "Jane", hash_password(PASSWORD)),
        "bob": create_user(db, "bob@example.com", "Bob", hash_password(PASSWORD)),
    }


@pytest.fixture
def test_client(test_settings, products):
    with TestClient(create_app(test_settings)) as client:
        yield client


@pytest.fixture
def auth_headers(test_settings, users):
    def _headers(who: str) -> Dict[str, str]:
        token = create_session_token(test_settings, users[who])
        return {"Authorization": f"Bearer {token}"}

    return _headers


def order_payload(*lines, email: str = "guest@example.com") -> dict:
    return {
        "customerName": "Guest Buyer",
        "customerEmail": email,
        "customerPhone": "+100000000",
        "address": "1 Main St",
        "city": "Springfield",
        "country": "US",
        "postalCode": "12345",
        "paymentMethod": "card",
        "items": [{"productId": pid, "quantity": qty} for pid, qty in lines],
    }


@pytest.fixture
def order_body():
    return order_payload
