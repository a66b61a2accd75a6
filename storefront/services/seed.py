from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storefront.config import Settings, settings
from storefront.constants import ROLE_ADMIN
from storefront.db.sqlite import Database, create_product, create_user, get_user_by_email, init_db, list_products
from storefront.services.auth import hash_password

logger = logging.getLogger(__name__)

DEMO_PRODUCTS: List[Dict[str, Any]] = [
    {"name": "Wireless Earbuds", "price": "199.99", "stock": 50, "category": "Electronics",
     "description": "Noise-cancelling earbuds with 24h battery", "is_featured": True},
    {"name": "Smart Watch", "price": "299.99", "stock": 30, "category": "Electronics",
     "description": "Heart rate, GPS and sleep tracking"},
    {"name": "Running Shoes", "price": "89.99", "stock": 100, "category": "Sports",
     "description": "Lightweight trainers", "is_on_sale": True, "discount": "10"},
    {"name": "Pro Camera", "price": "1299.99", "stock": 15, "category": "Electronics",
     "description": "Full-frame mirrorless body"},
    {"name": "Laptop", "price": "899.99", "stock": 25, "category": "Electronics",
     "description": "14 inch, 16 GB RAM", "is_featured": True},
    {"name": "Yoga Mat", "price": "29.99", "stock": 200, "category": "Sports",
     "description": "Non-slip, 6 mm"},
    {"name": "Bluetooth Speaker", "price": "59.99", "stock": 40, "category": "Electronics",
     "description": "Waterproof portable speaker"},
    {"name": "Basketball", "price": "39.99", "stock": 50, "category": "Sports",
     "description": "Official size 7"},
    {"name": "Smart Home Kit", "price": "129.99", "stock": 20, "category": "Smart_Home",
     "description": "Hub, two plugs and a motion sensor"},
    {"name": "Coffee Machine", "price": "149.99", "stock": 30, "category": "Kitchen",
     "description": "Espresso and cappuccino", "is_on_sale": True, "discount": "15"},
]


def seed_demo_catalog(db: Database) -> int:
    """Insert the demo catalog into an empty store. Returns the number of products added."""
    _, total = list_products(db, limit=1, status=None)
    if total:
        logger.info("catalog already has %d products, skipping seed", total)
        return 0
    for p in DEMO_PRODUCTS:
        create_product(
            db,
            name=p["name"],
            price=Decimal(p["price"]),
            stock=p["stock"],
            description=p.get("description", ""),
            category=p.get("category", ""),
            is_on_sale=p.get("is_on_sale", False),
            discount=Decimal(p["discount"]) if "discount" in p else None,
            is_featured=p.get("is_featured", False),
        )
    return len(DEMO_PRODUCTS)


def ensure_admin(db: Database, email: str, password: str, name: str = "Admin User") -> Optional[Dict[str, Any]]:
    if get_user_by_email(db, email):
        return None
    return create_user(db, email, name, hash_password(password), role=ROLE_ADMIN)


def main(s: Optional[Settings] = None) -> None:
    s = s or settings
    logging.basicConfig(
        level=s.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    db = Database(s.db_path).open()
    try:
        init_db(db)
        added = seed_demo_catalog(db)
        logger.info("seeded %d products", added)

        email, password = s.seed_admin_email, s.seed_admin_password
        if email and password and ensure_admin(db, email, password):
            logger.info("admin user created: %s", email)
    finally:
        db.close()


if __name__ == "__main__":
    main()
