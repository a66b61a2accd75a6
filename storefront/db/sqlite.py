from __future__ import annotations

import json
import logging
import os
import random
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from storefront.config import settings
from storefront.constants import (
    ORDER_PENDING,
    ORDER_STATUSES,
    PAYMENT_CREDIT_CARD,
    PAYMENT_TYPES,
    PRODUCT_ACTIVE,
    PRODUCT_SORT_FIELDS,
    ROLE_ADMIN,
    ROLE_USER,
)
from storefront.errors import InfrastructureError, NotFoundError, PermissionDenied, ValidationError
from storefront.models import Product, ProductRecord
from storefront.services.pricing import line_total, money_json, sale_price, to_money

logger = logging.getLogger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")

# ids per "IN (...)" query, well under SQLITE_MAX_VARIABLE_NUMBER on old builds (999)
IN_CHUNK = 500

T = TypeVar("T")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _written(value: Optional[T], what: str, key: str) -> T:
    """Row re-read right after a successful write; missing means the database is broken."""
    if value is None:
        raise InfrastructureError(f"{what} {key} not found after write")
    return value


def _chunks(ids: Sequence[str], size: int = IN_CHUNK) -> Iterator[Sequence[str]]:
    for i in range(0, len(ids), size):
        yield ids[i:i + size]


class Database:
    """
    Process-wide handle on the sqlite database.

    Built once at startup and handed to request handlers by reference.
    One connection is shared; a lock serializes access to it because the web
    server runs sync handlers on a thread pool.
    """

    def __init__(self, path: str):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> "Database":
        with self._lock:
            if self._conn is not None:
                return self
            if self.path != ":memory:":
                os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
            try:
                conn = sqlite3.connect(self.path, check_same_thread=False)
            except sqlite3.Error as e:
                raise InfrastructureError(f"cannot open database: {e}") from e
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._conn = conn
            logger.info("database opened: %s", self.path)
            return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            logger.info("database closed: %s", self.path)

    def health_check(self) -> bool:
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except InfrastructureError as e:
            logger.warning("database health check failed: %s", e)
            return False

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                raise InfrastructureError("database is not open")
            try:
                yield self._conn
            except sqlite3.Error as e:
                raise InfrastructureError(str(e)) from e

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self.connection() as conn:
            conn.execute("BEGIN")
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise


def init_db(db: Database) -> None:
    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
        script = f.read()
    with db.connection() as conn:
        conn.executescript(script)
        conn.commit()


# ---------------- products ----------------

def _dec(v: Optional[str]) -> Optional[Decimal]:
    return Decimal(v) if v is not None else None


def _product_from_row(r: sqlite3.Row) -> Product:
    return Product(
        id=r["id"],
        name=r["name"],
        description=r["description"],
        price=Decimal(r["price"]),
        stock=int(r["stock"]),
        category=r["category"],
        status=r["status"],
        images=json.loads(r["images"] or "[]"),
        original_price=_dec(r["original_price"]),
        discount=_dec(r["discount"]),
        is_on_sale=bool(r["is_on_sale"]),
        is_featured=bool(r["is_featured"]),
        created_at=r["created_at"],
        updated_at=r["updated_at"],
    )


def _select_products_in(conn: sqlite3.Connection, ids: Sequence[str]) -> List[sqlite3.Row]:
    rows: List[sqlite3.Row] = []
    for part in _chunks(list(ids)):
        marks = ",".join("?" for _ in part)
        rows.extend(
            conn.execute(
                f"SELECT id, name, price, stock, images FROM products WHERE id IN ({marks})",
                tuple(part),
            ).fetchall()
        )
    return rows


def find_products_by_ids(db: Database, ids: Sequence[str]) -> List[ProductRecord]:
    """Batch lookup. Unknown ids are simply missing from the result."""
    if not ids:
        return []
    with db.connection() as conn:
        rows = _select_products_in(conn, ids)
    return [
        ProductRecord(
            id=r["id"],
            name=r["name"],
            price=Decimal(r["price"]),
            stock=int(r["stock"]),
            images=json.loads(r["images"] or "[]"),
        )
        for r in rows
    ]


def get_product(db: Database, product_id: str) -> Optional[Product]:
    with db.connection() as conn:
        row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
    return _product_from_row(row) if row else None


def list_products(
    db: Database,
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    on_sale: bool = False,
    featured: bool = False,
    sort: str = "name",
    order: str = "asc",
    limit: int = 50,
    offset: int = 0,
    status: Optional[str] = PRODUCT_ACTIVE,
) -> Tuple[List[Product], int]:
    where = ["1 = 1"]
    params: List[Any] = []
    if status:
        where.append("status = ?")
        params.append(status)

    if search:
        where.append("(lower(name) LIKE ? OR lower(description) LIKE ?)")
        like = f"%{search.lower()}%"
        params += [like, like]
    if category:
        where.append("lower(category) LIKE ?")
        params.append(f"%{category.lower()}%")
    if on_sale:
        where.append("is_on_sale = 1")
    if featured:
        where.append("is_featured = 1")
    if min_price is not None:
        where.append("CAST(price AS REAL) >= ?")
        params.append(float(min_price))
    if max_price is not None:
        where.append("CAST(price AS REAL) <= ?")
        params.append(float(max_price))

    if sort not in PRODUCT_SORT_FIELDS:
        raise ValidationError(f"cannot sort by {sort!r}")
    direction = "DESC" if order.lower() == "desc" else "ASC"
    sort_expr = "CAST(price AS REAL)" if sort == "price" else sort
    clause = " AND ".join(where)

    with db.connection() as conn:
        rows = conn.execute(
            f"SELECT * FROM products WHERE {clause} ORDER BY {sort_expr} {direction}, id LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        total = conn.execute(f"SELECT COUNT(*) FROM products WHERE {clause}", params).fetchone()[0]
    return [_product_from_row(r) for r in rows], int(total)


def search_products(db: Database, q: str) -> List[Product]:
    like = f"%{q.lower()}%"
    with db.connection() as conn:
        rows = conn.execute(
            """
            SELECT * FROM products
            WHERE lower(name) LIKE ? OR lower(description) LIKE ?
            ORDER BY created_at DESC, id
            """,
            (like, like),
        ).fetchall()
    return [_product_from_row(r) for r in rows]


def _product_values(
    price: Decimal, is_on_sale: bool, discount: Optional[Decimal]
) -> Tuple[str, Optional[str], Optional[str]]:
    # on sale: the entered price becomes original_price, the discounted one is charged
    if is_on_sale:
        d = discount or Decimal(0)
        return str(sale_price(price, d)), str(to_money(price)), str(d)
    return str(to_money(price)), None, None


def create_product(
    db: Database,
    *,
    name: str,
    price: Decimal,
    stock: int,
    description: str = "",
    category: str = "",
    images: Optional[List[str]] = None,
    is_on_sale: bool = False,
    discount: Optional[Decimal] = None,
    is_featured: bool = False,
    status: str = PRODUCT_ACTIVE,
    product_id: Optional[str] = None,
) -> Product:
    pid = product_id or _new_id()
    ts = _now()
    charged, original, disc = _product_values(price, is_on_sale, discount)
    with db.transaction() as conn:
        conn.execute(
            """
            INSERT INTO products(id, name, description, price, original_price, discount, is_on_sale,
                                 is_featured, stock, category, status, images, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                pid, name, description, charged, original, disc, int(is_on_sale),
                int(is_featured), stock, category, status, json.dumps(images or []), ts, ts,
            ),
        )
    logger.info("product created: %s (%s)", pid, name)
    return _written(get_product(db, pid), "product", pid)


def update_product(
    db: Database,
    product_id: str,
    *,
    name: str,
    price: Decimal,
    stock: int,
    description: str = "",
    category: str = "",
    images: Optional[List[str]] = None,
    is_on_sale: bool = False,
    discount: Optional[Decimal] = None,
    is_featured: bool = False,
    status: str = PRODUCT_ACTIVE,
) -> Product:
    charged, original, disc = _product_values(price, is_on_sale, discount)
    with db.transaction() as conn:
        cur = conn.execute(
            """
            UPDATE products SET name=?, description=?, price=?, original_price=?, discount=?, is_on_sale=?,
                   is_featured=?, stock=?, category=?, status=?, images=?, updated_at=?
            WHERE id=?
            """,
            (
                name, description, charged, original, disc, int(is_on_sale), int(is_featured),
                stock, category, status, json.dumps(images or []), _now(), product_id,
            ),
        )
        if cur.rowcount == 0:
            raise NotFoundError("Product not found")
    return _written(get_product(db, product_id), "product", product_id)


def delete_product(db: Database, product_id: str) -> None:
    with db.transaction() as conn:
        cur = conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
        if cur.rowcount == 0:
            raise NotFoundError("Product not found")
    logger.info("product deleted: %s", product_id)


def low_stock_products(db: Database, threshold: int, limit: int = 10) -> List[Dict[str, Any]]:
    with db.connection() as conn:
        rows = conn.execute(
            "SELECT id, name, stock FROM products WHERE stock < ? ORDER BY stock ASC, name LIMIT ?",
            (threshold, limit),
        ).fetchall()
    return [dict(r) for r in rows]


# ---------------- users ----------------

def _public_user(r: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": r["id"],
        "email": r["email"],
        "name": r["name"],
        "role": r["role"],
        "createdAt": r["created_at"],
        "updatedAt": r["updated_at"],
    }


def create_user(db: Database, email: str, name: str, password_hash: str, role: str = ROLE_USER) -> Dict[str, Any]:
    uid = _new_id()
    ts = _now()
    with db.transaction() as conn:
        exists = conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone()
        if exists:
            raise ValidationError("This email is already registered")
        conn.execute(
            "INSERT INTO users(id, email, name, password_hash, role, created_at, updated_at) VALUES(?,?,?,?,?,?,?)",
            (uid, email, name, password_hash, role, ts, ts),
        )
    return _written(get_user(db, uid), "user", uid)


def get_user(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    with db.connection() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return _public_user(row) if row else None


def get_user_by_email(db: Database, email: str) -> Optional[Dict[str, Any]]:
    """Includes ``password_hash``; never return this dict to a client."""
    with db.connection() as conn:
        row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
    if not row:
        return None
    user = _public_user(row)
    user["password_hash"] = row["password_hash"]
    return user


def update_user(db: Database, user_id: str, name: str, role: Optional[str] = None) -> Dict[str, Any]:
    if role is not None and role not in (ROLE_USER, ROLE_ADMIN):
        raise ValidationError("Invalid role")
    with db.transaction() as conn:
        cur = conn.execute(
            "UPDATE users SET name=?, role=COALESCE(?, role), updated_at=? WHERE id=?",
            (name, role, _now(), user_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError("User not found")
    return _written(get_user(db, user_id), "user", user_id)


def delete_user(db: Database, user_id: str) -> None:
    """Addresses and payment methods go with the user; orders stay, unlinked."""
    with db.transaction() as conn:
        cur = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        if cur.rowcount == 0:
            raise NotFoundError("User not found")
    logger.info("user deleted: %s", user_id)


def get_user_detail(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    with db.connection() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            return None
        orders = conn.execute(
            "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC, rowid DESC", (user_id,)
        ).fetchall()
        user = _public_user(row)
        user["orders"] = _load_orders(conn, orders)
    return user


def list_users(db: Database, search: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    where = ""
    params: List[Any] = []
    if search:
        where = " WHERE name LIKE ? OR email LIKE ?"
        params += [f"%{search}%", f"%{search}%"]
    with db.connection() as conn:
        total = int(conn.execute(f"SELECT COUNT(*) FROM users{where}", params).fetchone()[0])
        rows = conn.execute(
            f"SELECT * FROM users{where} ORDER BY created_at DESC, email LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        ).fetchall()
    return {
        "users": [_public_user(r) for r in rows],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": (total + limit - 1) // limit,
        },
    }


# ---------------- addresses / payment methods ----------------

# both tables keep at most one is_default row per user:
# the first row a user saves becomes default, and deleting the default promotes the newest remaining row

ADDRESS_FIELDS = ("full_name", "phone", "address", "city", "country", "postal_code")


def _address_to_dict(r: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": r["id"],
        "userId": r["user_id"],
        "fullName": r["full_name"],
        "phone": r["phone"],
        "address": r["address"],
        "city": r["city"],
        "country": r["country"],
        "postalCode": r["postal_code"],
        "isDefault": bool(r["is_default"]),
        "createdAt": r["created_at"],
        "updatedAt": r["updated_at"],
    }


def _payment_method_to_dict(r: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": r["id"],
        "userId": r["user_id"],
        "type": r["type"],
        "cardNumber": r["card_number"],
        "cardExpiry": r["card_expiry"],
        "isDefault": bool(r["is_default"]),
        "createdAt": r["created_at"],
        "updatedAt": r["updated_at"],
    }


def _clear_default(conn: sqlite3.Connection, table: str, user_id: str, keep_id: str = "") -> None:
    conn.execute(f"UPDATE {table} SET is_default = 0 WHERE user_id = ? AND id != ?", (user_id, keep_id))


def _promote_newest(conn: sqlite3.Connection, table: str, user_id: str) -> None:
    conn.execute(
        f"""
        UPDATE {table} SET is_default = 1 WHERE id = (
            SELECT id FROM {table} WHERE user_id = ? ORDER BY created_at DESC, rowid DESC LIMIT 1
        )
        """,
        (user_id,),
    )


def _insert_owned(conn: sqlite3.Connection, table: str, user_id: str, values: Dict[str, Any], is_default: bool) -> str:
    if is_default:
        _clear_default(conn, table, user_id)
    count = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE user_id = ?", (user_id,)).fetchone()[0]
    row_id = _new_id()
    ts = _now()
    cols = ["id", "user_id", *values, "is_default", "created_at", "updated_at"]
    conn.execute(
        f"INSERT INTO {table}({', '.join(cols)}) VALUES({', '.join('?' for _ in cols)})",
        (row_id, user_id, *values.values(), int(is_default or count == 0), ts, ts),
    )
    return row_id


def _update_owned(
    conn: sqlite3.Connection, table: str, row: sqlite3.Row, values: Dict[str, Any], is_default: Optional[bool]
) -> None:
    changes = {k: v for k, v in values.items() if v}
    if is_default is not None:
        changes["is_default"] = int(is_default)
        if is_default:
            _clear_default(conn, table, row["user_id"], keep_id=row["id"])
    cols = ", ".join(f"{k}=?" for k in changes)
    conn.execute(
        f"UPDATE {table} SET {cols + ', ' if cols else ''}updated_at=? WHERE id=?",
        (*changes.values(), _now(), row["id"]),
    )


def _delete_owned(conn: sqlite3.Connection, table: str, row: sqlite3.Row) -> None:
    conn.execute(f"DELETE FROM {table} WHERE id = ?", (row["id"],))
    if row["is_default"]:
        _promote_newest(conn, table, row["user_id"])


def _owned_row(conn: sqlite3.Connection, table: str, row_id: str, user_id: str, what: str) -> sqlite3.Row:
    row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"{what} does not exist")
    if row["user_id"] != user_id:
        raise PermissionDenied(f"No permission to access this {what.lower()}")
    return row


def list_addresses(db: Database, user_id: str) -> List[Dict[str, Any]]:
    with db.connection() as conn:
        rows = conn.execute(
            "SELECT * FROM addresses WHERE user_id = ? ORDER BY is_default DESC, created_at, rowid", (user_id,)
        ).fetchall()
    return [_address_to_dict(r) for r in rows]


def get_address(db: Database, user_id: str, address_id: str) -> Dict[str, Any]:
    with db.connection() as conn:
        return _address_to_dict(_owned_row(conn, "addresses", address_id, user_id, "Address"))


def create_address(db: Database, user_id: str, fields: Dict[str, Any], is_default: bool = False) -> Dict[str, Any]:
    values = {k: fields.get(k) for k in ADDRESS_FIELDS}
    missing = [k for k in ADDRESS_FIELDS if k != "phone" and not values[k]]
    if missing:
        raise ValidationError(f"missing: {', '.join(missing)}", error="Please fill all required fields")
    with db.transaction() as conn:
        address_id = _insert_owned(conn, "addresses", user_id, values, is_default)
        row = conn.execute("SELECT * FROM addresses WHERE id = ?", (address_id,)).fetchone()
    return _address_to_dict(row)


def update_address(
    db: Database, user_id: str, address_id: str, fields: Dict[str, Any], is_default: Optional[bool] = None
) -> Dict[str, Any]:
    """Partial update: empty values keep what is stored."""
    with db.transaction() as conn:
        row = _owned_row(conn, "addresses", address_id, user_id, "Address")
        _update_owned(conn, "addresses", row, {k: fields.get(k) for k in ADDRESS_FIELDS}, is_default)
        row = conn.execute("SELECT * FROM addresses WHERE id = ?", (address_id,)).fetchone()
    return _address_to_dict(row)


def delete_address(db: Database, user_id: str, address_id: str) -> None:
    with db.transaction() as conn:
        _delete_owned(conn, "addresses", _owned_row(conn, "addresses", address_id, user_id, "Address"))


def mask_card_number(card_number: str) -> str:
    digits = card_number.replace(" ", "")
    return "*" * max(len(digits) - 4, 0) + digits[-4:]


def list_payment_methods(db: Database, user_id: str) -> List[Dict[str, Any]]:
    with db.connection() as conn:
        rows = conn.execute(
            "SELECT * FROM payment_methods WHERE user_id = ? ORDER BY is_default DESC, created_at, rowid",
            (user_id,),
        ).fetchall()
    return [_payment_method_to_dict(r) for r in rows]


def get_payment_method(db: Database, user_id: str, method_id: str) -> Dict[str, Any]:
    with db.connection() as conn:
        return _payment_method_to_dict(_owned_row(conn, "payment_methods", method_id, user_id, "Payment method"))


def create_payment_method(
    db: Database,
    user_id: str,
    payment_type: str,
    card_number: Optional[str] = None,
    card_expiry: Optional[str] = None,
    is_default: bool = False,
) -> Dict[str, Any]:
    """Only the last four card digits are ever stored."""
    if payment_type not in PAYMENT_TYPES:
        raise ValidationError("Please select a payment method type")
    if payment_type == PAYMENT_CREDIT_CARD and not (card_number and card_expiry):
        raise ValidationError("Please fill in complete credit card information")
    values = {
        "type": payment_type,
        "card_number": mask_card_number(card_number) if payment_type == PAYMENT_CREDIT_CARD else None,
        "card_expiry": card_expiry,
    }
    with db.transaction() as conn:
        method_id = _insert_owned(conn, "payment_methods", user_id, values, is_default)
        row = conn.execute("SELECT * FROM payment_methods WHERE id = ?", (method_id,)).fetchone()
    return _payment_method_to_dict(row)


def update_payment_method(
    db: Database,
    user_id: str,
    method_id: str,
    payment_type: Optional[str] = None,
    card_expiry: Optional[str] = None,
    is_default: Optional[bool] = None,
) -> Dict[str, Any]:
    if payment_type is not None and payment_type not in PAYMENT_TYPES:
        raise ValidationError("Please select a payment method type")
    with db.transaction() as conn:
        row = _owned_row(conn, "payment_methods", method_id, user_id, "Payment method")
        _update_owned(conn, "payment_methods", row, {"type": payment_type, "card_expiry": card_expiry}, is_default)
        row = conn.execute("SELECT * FROM payment_methods WHERE id = ?", (method_id,)).fetchone()
    return _payment_method_to_dict(row)


def delete_payment_method(db: Database, user_id: str, method_id: str) -> None:
    with db.transaction() as conn:
        row = _owned_row(conn, "payment_methods", method_id, user_id, "Payment method")
        _delete_owned(conn, "payment_methods", row)


# ---------------- orders ----------------

def _order_number() -> str:
    return f"ORD-{str(int(time.time() * 1000))[-8:]}-{random.randint(0, 999)}"


def _order_to_dict(r: sqlite3.Row, items: List[sqlite3.Row]) -> Dict[str, Any]:
    return {
        "id": r["id"],
        "orderNumber": r["order_number"],
        "userId": r["user_id"],
        "customerName": r["customer_name"],
        "customerEmail": r["customer_email"],
        "customerPhone": r["customer_phone"],
        "address": r["address"],
        "city": r["city"],
        "country": r["country"],
        "postalCode": r["postal_code"],
        "paymentMethod": r["payment_method"],
        "totalAmount": money_json(Decimal(r["total_amount"])),
        "currency": r["currency"],
        "status": r["status"],
        "createdAt": r["created_at"],
        "updatedAt": r["updated_at"],
        "items": [
            {
                "id": it["id"],
                "productId": it["product_id"],
                "name": it["name"],
                "price": money_json(Decimal(it["price"])),
                "quantity": it["quantity"],
                "lineTotal": money_json(Decimal(it["line_total"])),
                "image": it["image"],
            }
            for it in items
        ],
    }


def _load_order(conn: sqlite3.Connection, order_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
    if not row:
        return None
    items = conn.execute("SELECT * FROM order_items WHERE order_id = ? ORDER BY id", (order_id,)).fetchall()
    return _order_to_dict(row, items)


def create_order(
    db: Database,
    customer: Dict[str, str],
    items: Sequence[Tuple[str, int]],
    payment_method: str = "",
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Place an order from ``(product_id, quantity)`` pairs.

    In one transaction:
    - every product must exist and have enough stock
    - stock is decremented
    - order + order_items are written with the catalog price
    """
    if not items:
        raise ValidationError("Order has no items")

    order_id = _new_id()
    ts = _now()
    with db.transaction() as conn:
        # 1) check products and stock
        wanted: Dict[str, int] = {}
        for pid, qty in items:
            wanted[pid] = wanted.get(pid, 0) + qty

        found = {r["id"]: r for r in _select_products_in(conn, list(wanted))}

        missing = [pid for pid in wanted if pid not in found]
        if missing:
            raise ValidationError(
                f"Products with ids {', '.join(missing)} not found",
                error="Some products no longer exist in the database",
            )
        for pid, qty in wanted.items():
            have = int(found[pid]["stock"])
            if have < qty:
                raise ValidationError(
                    f"Not enough stock for {found[pid]['name']}: have {have}, need {qty}",
                    error="Insufficient stock",
                )

        # 2) order header
        conn.execute(
            """
            INSERT INTO orders(id, order_number, user_id, customer_name, customer_email, customer_phone,
                               address, city, country, postal_code, payment_method, total_amount,
                               currency, status, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                order_id, _order_number(), user_id, customer["customer_name"], customer["customer_email"],
                customer.get("customer_phone"), customer["address"], customer["city"], customer["country"],
                customer["postal_code"], payment_method, "0", settings.currency, ORDER_PENDING, ts, ts,
            ),
        )

        # 3) lines + stock decrement
        total = Decimal(0)
        for pid, qty in items:
            prod = found[pid]
            price = Decimal(prod["price"])
            lt = line_total(price, qty)
            total += lt
            images = json.loads(prod["images"] or "[]")
            conn.execute(
                """
                INSERT INTO order_items(order_id, product_id, name, price, quantity, line_total, image)
                VALUES(?,?,?,?,?,?,?)
                """,
                (order_id, pid, prod["name"], str(price), qty, str(lt), images[0] if images else ""),
            )
        for pid, qty in wanted.items():
            conn.execute("UPDATE products SET stock = stock - ?, updated_at = ? WHERE id = ?", (qty, ts, pid))

        # 4) total
        conn.execute("UPDATE orders SET total_amount = ? WHERE id = ?", (str(to_money(total)), order_id))

        order = _load_order(conn, order_id)

    order = _written(order, "order", order_id)
    logger.info("order placed: %s total=%s", order["orderNumber"], order["totalAmount"])
    return order


def get_order(db: Database, order_id: str) -> Optional[Dict[str, Any]]:
    with db.connection() as conn:
        return _load_order(conn, order_id)


def _load_orders(conn: sqlite3.Connection, rows: List[sqlite3.Row]) -> List[Dict[str, Any]]:
    out = []
    for r in rows:
        items = conn.execute("SELECT * FROM order_items WHERE order_id = ? ORDER BY id", (r["id"],)).fetchall()
        out.append(_order_to_dict(r, items))
    return out


def list_orders_for_user(db: Database, user_id: str, email: str) -> List[Dict[str, Any]]:
    with db.connection() as conn:
        rows = conn.execute(
            "SELECT * FROM orders WHERE user_id = ? OR customer_email = ? ORDER BY created_at DESC, rowid DESC",
            (user_id, email),
        ).fetchall()
        return _load_orders(conn, rows)


def list_orders(db: Database, limit: Optional[int] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM orders"
    params: List[Any] = []
    if status:
        sql += " WHERE status = ?"
        params.append(status)
    sql += " ORDER BY created_at DESC, rowid DESC"
    if limit:
        sql += " LIMIT ?"
        params.append(limit)
    with db.connection() as conn:
        rows = conn.execute(sql, params).fetchall()
        return _load_orders(conn, rows)


ORDER_EDITABLE = (
    "customer_name",
    "customer_email",
    "customer_phone",
    "address",
    "city",
    "country",
    "postal_code",
    "status",
)


def update_order(db: Database, order_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    changes = {k: v for k, v in fields.items() if k in ORDER_EDITABLE and v is not None}
    status = changes.get("status")
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(f"unknown order status {status!r}")

    with db.transaction() as conn:
        if conn.execute("SELECT 1 FROM orders WHERE id = ?", (order_id,)).fetchone() is None:
            raise NotFoundError("Order not found")
        if changes:
            cols = ", ".join(f"{k}=?" for k in changes)
            conn.execute(
                f"UPDATE orders SET {cols}, updated_at=? WHERE id=?",
                (*changes.values(), _now(), order_id),
            )
        order = _load_order(conn, order_id)
    return _written(order, "order", order_id)


def delete_order(db: Database, order_id: str) -> None:
    """Delete an order. Stock taken by a still-pending order is put back."""
    with db.transaction() as conn:
        row = conn.execute("SELECT status FROM orders WHERE id = ?", (order_id,)).fetchone()
        if row is None:
            raise NotFoundError("Order not found")
        if row["status"] == ORDER_PENDING:
            lines = conn.execute(
                "SELECT product_id, quantity FROM order_items WHERE order_id = ?", (order_id,)
            ).fetchall()
            for ln in lines:
                conn.execute(
                    "UPDATE products SET stock = stock + ? WHERE id = ?",
                    (ln["quantity"], ln["product_id"]),
                )
        conn.execute("DELETE FROM orders WHERE id = ?", (order_id,))
    logger.info("order deleted: %s", order_id)


# ---------------- admin / audit ----------------

def db_status(db: Database, low_stock_threshold: int) -> Dict[str, Any]:
    with db.connection() as conn:
        ts = conn.execute("SELECT CURRENT_TIMESTAMP AS time").fetchone()["time"]
        metrics = {}
        for key, table in (
            ("users", "users"),
            ("products", "products"),
            ("orders", "orders"),
            ("orderItems", "order_items"),
            ("auditEvents", "audit_log"),
        ):
            metrics[key] = int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
        recent = conn.execute(
            """
            SELECT id, order_number, customer_name, total_amount, status, created_at
            FROM orders ORDER BY created_at DESC, rowid DESC LIMIT 5
            """
        ).fetchall()

    return {
        "status": "online",
        "timestamp": ts,
        "metrics": metrics,
        "recentOrders": [
            {
                "id": r["id"],
                "orderNumber": r["order_number"],
                "customerName": r["customer_name"],
                "totalAmount": money_json(Decimal(r["total_amount"])),
                "status": r["status"],
                "createdAt": r["created_at"],
            }
            for r in recent
        ],
        "lowStockProducts": low_stock_products(db, low_stock_threshold),
    }


def record_audit(db: Database, actor: str, action: str, success: bool, detail: str = "") -> None:
    with db.transaction() as conn:
        conn.execute(
            "INSERT INTO audit_log(ts, actor, action, success, detail) VALUES(?,?,?,?,?)",
            (_now(), actor, action, int(success), detail),
        )


def list_audit(db: Database, limit: int = 50) -> List[Dict[str, Any]]:
    with db.connection() as conn:
        rows = conn.execute("SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
    return [
        {
            "id": r["id"],
            "ts": r["ts"],
            "actor": r["actor"],
            "action": r["action"],
            "success": bool(r["success"]),
            "detail": r["detail"],
        }
        for r in rows
    ]
