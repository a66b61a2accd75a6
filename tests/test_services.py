import dataclasses
import zipfile
from decimal import Decimal

import pytest

from storefront.config import _get_bool, _get_env
from storefront.db.sqlite import Database, create_order, get_user_by_email, list_products
from storefront.errors import ValidationError
from storefront.services.auth import verify_password
from storefront.services.backup import make_backup
from storefront.services.invoice_pdf import generate_order_pdf
from storefront.services.pricing import order_total, sale_price, to_money
from storefront.services.seed import DEMO_PRODUCTS, ensure_admin, main as seed_main, seed_demo_catalog
from storefront.utils.formatters import money, verify_summary

CUSTOMER = {
    "customer_name": "Jane",
    "customer_email": "jane@example.com",
    "address": "1 Main St",
    "city": "Springfield",
    "country": "US",
    "postal_code": "12345",
}


class TestPricing:
    def test_to_money_rounds_half_up(self):
        assert to_money("1.005") == Decimal("1.01")
        assert to_money(2) == Decimal("2.00")
        assert to_money(0.1) == Decimal("0.10")

    @pytest.mark.parametrize("bad", ["abc", "", None, True, "NaN", "inf"])
    def test_to_money_rejects(self, bad):
        with pytest.raises(ValidationError):
            to_money(bad)

    def test_sale_price(self):
        assert sale_price(Decimal("89.99"), Decimal("10")) == Decimal("80.99")
        assert sale_price(Decimal("10"), None) == Decimal("10.00")

    def test_order_total(self):
        assert order_total([(Decimal("19.99"), 3), (Decimal("0.01"), 1)]) == Decimal("59.98")

    def test_formatters(self):
        assert money(Decimal("3.5")) == "3.50 USD"
        assert verify_summary(1, 2, 3) == "Cart validation complete. Found 1 valid items, removed 2, updated 3."


class TestDocuments:
    def test_order_pdf(self, db, products, tmp_path):
        order = create_order(db, CUSTOMER, [("A", 1), ("C", 2)])

        path = generate_order_pdf(order, str(tmp_path / "pdf"))

        with open(path, "rb") as f:
            assert f.read(4) == b"%PDF"
        assert order["orderNumber"] in path

    def test_backup_contains_database_and_pdfs(self, db, products, test_settings):
        order = create_order(db, CUSTOMER, [("C", 1)])
        generate_order_pdf(order, test_settings.export_dir)

        path = make_backup(db, test_settings.backup_dir, test_settings.export_dir)

        with zipfile.ZipFile(path) as z:
            names = z.namelist()
        assert "db/storefront.db" in names
        assert f"orders/order_{order['orderNumber']}.pdf" in names


class TestSeed:
    def test_seed_once(self, db):
        assert seed_demo_catalog(db) == len(DEMO_PRODUCTS)
        assert seed_demo_catalog(db) == 0

        on_sale, _ = list_products(db, on_sale=True)
        assert sorted(p.name for p in on_sale) == ["Coffee Machine", "Running Shoes"]

    def test_ensure_admin(self, db):
        created = ensure_admin(db, "root@example.com", "s3cret!")

        assert created["role"] == "ADMIN"
        assert ensure_admin(db, "root@example.com", "other") is None
        assert verify_password("s3cret!", get_user_by_email(db, "root@example.com")["password_hash"])

    def test_cli_uses_settings_for_admin(self, test_settings):
        seed_main(dataclasses.replace(test_settings, seed_admin_email="ops@example.com", seed_admin_password="pw123456"))

        db = Database(test_settings.db_path).open()
        try:
            admin = get_user_by_email(db, "ops@example.com")
            assert admin["role"] == "ADMIN"
            assert list_products(db, limit=1)[1] == len(DEMO_PRODUCTS)
        finally:
            db.close()


class TestConfigHelpers:
    def test_env_aliases(self, monkeypatch):
        monkeypatch.delenv("SF_A", raising=False)
        monkeypatch.setenv("SF_B", "  value ")

        assert _get_env("SF_A", "SF_B") == "value"
        assert _get_env("SF_A", default="x") == "x"

    def test_bool(self, monkeypatch):
        monkeypatch.setenv("SF_FLAG", "Yes")
        assert _get_bool("SF_FLAG") is True
        monkeypatch.setenv("SF_FLAG", "0")
        assert _get_bool("SF_FLAG", default=True) is False
        monkeypatch.delenv("SF_FLAG")
        assert _get_bool("SF_FLAG", default=True) is True
