from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from storefront.config import Settings, require_web_settings, settings as default_settings
from storefront.constants import ORDER_PENDING, PRODUCT_ACTIVE, ROLE_ADMIN, SESSION_COOKIE
from storefront.db.sqlite import (
    Database,
    create_address,
    create_order,
    create_payment_method,
    create_product,
    create_user,
    db_status,
    delete_address,
    delete_order,
    delete_payment_method,
    delete_product,
    delete_user,
    find_products_by_ids,
    get_address,
    get_order,
    get_payment_method,
    get_product,
    get_user,
    get_user_by_email,
    get_user_detail,
    init_db,
    list_addresses,
    list_audit,
    list_orders,
    list_orders_for_user,
    list_payment_methods,
    list_products,
    list_users,
    record_audit,
    search_products,
    update_address,
    update_order,
    update_payment_method,
    update_product,
    update_user,
)
from storefront.errors import (
    AuthError,
    InfrastructureError,
    InvalidInput,
    NotFoundError,
    PermissionDenied,
    StoreError,
    ValidationError,
)
from storefront.models import CartLineItem
from storefront.services.auth import (
    break_glass_login,
    create_session_token,
    decode_session_token,
    hash_password,
    verify_password,
)
from storefront.services.invoice_pdf import generate_order_pdf
from storefront.services.pricing import to_money
from storefront.services.reconcile import reconcile
from storefront.utils.formatters import verify_summary
from storefront.utils.validators import require_email, require_password

logger = logging.getLogger(__name__)

SORT_ALIASES = {
    "name": "name",
    "price": "price",
    "stock": "stock",
    "category": "category",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


# ---------------- request bodies ----------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ProductIn(_CamelModel):
    name: str = Field(min_length=1)
    description: str = ""
    price: Decimal = Field(ge=0)
    stock: int = Field(ge=0)
    category: str = ""
    images: List[str] = Field(default_factory=list)
    is_on_sale: bool = Field(default=False, alias="isOnSale")
    discount: Optional[Decimal] = Field(default=None, ge=0, le=100)
    is_featured: bool = Field(default=False, alias="isFeatured")
    status: Literal["active", "inactive"] = PRODUCT_ACTIVE


class OrderItemIn(_CamelModel):
    product_id: str = Field(alias="productId", min_length=1)
    quantity: int = Field(ge=1)


class OrderIn(_CamelModel):
    customer_name: str = Field(alias="customerName", min_length=1)
    customer_email: str = Field(alias="customerEmail", min_length=1)
    customer_phone: Optional[str] = Field(default=None, alias="customerPhone")
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    country: str = Field(min_length=1)
    postal_code: str = Field(alias="postalCode", min_length=1)
    payment_method: str = Field(default="", alias="paymentMethod")
    items: List[OrderItemIn] = Field(min_length=1)


class OrderUpdateIn(_CamelModel):
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    customer_phone: Optional[str] = Field(default=None, alias="customerPhone")
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    status: Optional[str] = None


class RegisterIn(BaseModel):
    name: Optional[str] = None
    email: str
    password: str


class CredentialsIn(BaseModel):
    email: str
    password: str


class ProfileIn(BaseModel):
    name: str = Field(min_length=1)


class UserUpdateIn(BaseModel):
    name: str = Field(min_length=1)
    role: Optional[Literal["USER", "ADMIN"]] = None


class AddressIn(_CamelModel):
    full_name: str = Field(alias="fullName", min_length=1)
    phone: Optional[str] = None
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    country: str = Field(min_length=1)
    postal_code: str = Field(alias="postalCode", min_length=1)
    is_default: Optional[bool] = Field(default=None, alias="isDefault")


class AddressPatchIn(_CamelModel):
    full_name: Optional[str] = Field(default=None, alias="fullName")
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    is_default: Optional[bool] = Field(default=None, alias="isDefault")


class PaymentMethodIn(_CamelModel):
    type: str
    card_number: Optional[str] = Field(default=None, alias="cardNumber")
    card_expiry: Optional[str] = Field(default=None, alias="cardExpiry")
    is_default: bool = Field(default=False, alias="isDefault")


class PaymentMethodPatchIn(_CamelModel):
    type: Optional[str] = None
    card_expiry: Optional[str] = Field(default=None, alias="cardExpiry")
    is_default: Optional[bool] = Field(default=None, alias="isDefault")


# ---------------- dependencies ----------------

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _session_token(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE)
    auth = request.headers.get("authorization", "")
    if not token and auth.lower().startswith("bearer "):
        token = auth[7:].strip()
    return token or None


def current_session(request: Request, s: Settings = Depends(get_settings)) -> Optional[Dict[str, Any]]:
    """Optional session: a stale or forged token counts as no session at all."""
    token = _session_token(request)
    if not token:
        return None
    try:
        return decode_session_token(s, token)
    except AuthError as e:
        logger.debug("ignoring session token: %s", e.message)
        return None


def require_session(request: Request, s: Settings = Depends(get_settings)) -> Dict[str, Any]:
    token = _session_token(request)
    if not token:
        raise AuthError("Please login first")
    return decode_session_token(s, token)


def require_account(
    db: Database = Depends(get_db), session: Dict[str, Any] = Depends(require_session)
) -> Dict[str, Any]:
    """Session backed by an existing users row; returns that user."""
    if session.get("break_glass"):
        raise PermissionDenied("Break-glass sessions have no account")
    user = get_user(db, session["sub"])
    if not user:
        raise NotFoundError("User does not exist")
    return user


def require_admin(session: Optional[Dict[str, Any]] = Depends(current_session)) -> Dict[str, Any]:
    if not session or session.get("role") != ROLE_ADMIN:
        raise AuthError("Not authorized to perform this action")
    return session


def _is_owner(order: Dict[str, Any], session: Dict[str, Any]) -> bool:
    return order["customerEmail"] == session.get("email") or (
        order["userId"] is not None and order["userId"] == session.get("sub")
    )


def _order_for(db: Database, order_id: str, session: Dict[str, Any]) -> Dict[str, Any]:
    order = get_order(db, order_id)
    if not order:
        raise NotFoundError("Order not found")
    if session.get("role") != ROLE_ADMIN and not _is_owner(order, session):
        raise PermissionDenied("No permission to access this order")
    return order


def _set_session_cookie(resp: Response, token: str, max_age_minutes: int) -> None:
    resp.set_cookie(SESSION_COOKIE, token, max_age=max_age_minutes * 60, httponly=True, samesite="lax")


def _parse_price_safe(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    try:
        return to_money(value)
    except ValidationError:
        logger.warning("ignoring unparsable price filter %r", value)
        return None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------- app ----------------

def create_app(s: Optional[Settings] = None) -> FastAPI:
    s = s or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        require_web_settings(s)
        db = Database(s.db_path).open()
        init_db(db)
        app.state.db = db
        try:
            yield
        finally:
            db.close()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.settings = s

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        if isinstance(exc, InfrastructureError) or exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.error, "message": exc.message})

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.error("%s %s crashed", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Server error", "message": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(p) for p in e["loc"][1:]) for e in exc.errors()})
        return JSONResponse(
            status_code=400,
            content={"error": "Please fill all required fields", "message": ", ".join(fields)},
        )

    # ---------------- health ----------------

    @app.get("/api/health")
    def health(db: Database = Depends(get_db)):
        ok = db.health_check()
        return JSONResponse(
            status_code=200 if ok else 503,
            content={"status": "ok" if ok else "error", "database": ok, "timestamp": _now_iso()},
        )

    # ---------------- cart ----------------

    @app.post("/api/products/verify-cart")
    def verify_cart(payload: Any = Body(default=None), db: Database = Depends(get_db)):
        items = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(items, list) or not items:
            raise InvalidInput("Please provide a valid items array")
        cart = [CartLineItem.from_dict(d) for d in items]

        try:
            result = reconcile(cart, lambda ids: find_products_by_ids(db, ids))
        except InvalidInput:
            raise
        except Exception as e:
            message = e.message if isinstance(e, StoreError) else str(e)
            raise InfrastructureError(message, error="Failed to validate cart items") from e

        body = result.to_dict()
        body.update(
            success=True,
            validCount=len(result.valid_items),
            message=verify_summary(len(result.valid_items), len(result.removed_items), len(result.updated_items)),
        )
        return body

    # ---------------- public catalog ----------------

    @app.get("/api/products/public")
    def public_products(
        db: Database = Depends(get_db),
        search: Optional[str] = None,
        category: Optional[str] = None,
        min_price: Optional[str] = Query(None, alias="minPrice"),
        max_price: Optional[str] = Query(None, alias="maxPrice"),
        is_on_sale: bool = Query(False, alias="isOnSale"),
        is_featured: bool = Query(False, alias="isFeatured"),
        sort: str = "name",
        order: Literal["asc", "desc"] = "asc",
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
    ):
        if sort not in SORT_ALIASES:
            raise ValidationError(f"cannot sort by {sort!r}")
        products, total = list_products(
            db,
            search=search,
            category=category,
            min_price=_parse_price_safe(min_price),
            max_price=_parse_price_safe(max_price),
            on_sale=is_on_sale,
            featured=is_featured,
            sort=SORT_ALIASES[sort],
            order=order,
            limit=limit,
            offset=offset,
        )
        return {
            "status": "success",
            "message": "Products retrieved successfully",
            "data": {
                "products": [p.to_dict() for p in products],
                "pagination": {
                    "total": total,
                    "limit": limit,
                    "offset": offset,
                    "hasMore": offset + len(products) < total,
                },
            },
            "timestamp": _now_iso(),
        }

    @app.get("/api/products/public/{product_id}")
    def public_product(product_id: str, db: Database = Depends(get_db)):
        product = get_product(db, product_id)
        if not product:
            raise NotFoundError("Product not found")
        return product.to_dict()

    @app.get("/api/products/search")
    def product_search(q: str = "", db: Database = Depends(get_db)):
        return [p.to_dict() for p in search_products(db, q)]

    # ---------------- admin catalog ----------------

    @app.get("/api/products")
    def admin_products(db: Database = Depends(get_db), _: Dict[str, Any] = Depends(require_admin)):
        products, _total = list_products(db, sort="created_at", order="desc", limit=1000, status=None)
        return [p.to_dict() for p in products]

    @app.post("/api/products", status_code=201)
    def admin_product_create(
        body: ProductIn, db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)
    ):
        product = create_product(db, **body.model_dump())
        record_audit(db, admin["email"], "product.create", True, product.id)
        return product.to_dict()

    @app.get("/api/products/{product_id}")
    def admin_product(product_id: str, db: Database = Depends(get_db), _: Dict[str, Any] = Depends(require_admin)):
        product = get_product(db, product_id)
        if not product:
            raise NotFoundError("Product not found")
        return product.to_dict()

    @app.put("/api/products/{product_id}")
    def admin_product_update(
        product_id: str,
        body: ProductIn,
        db: Database = Depends(get_db),
        admin: Dict[str, Any] = Depends(require_admin),
    ):
        product = update_product(db, product_id, **body.model_dump())
        record_audit(db, admin["email"], "product.update", True, product_id)
        return product.to_dict()

    @app.delete("/api/products/{product_id}", status_code=204)
    def admin_product_delete(
        product_id: str, db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)
    ):
        delete_product(db, product_id)
        record_audit(db, admin["email"], "product.delete", True, product_id)
        return Response(status_code=204)

    # ---------------- auth ----------------

    @app.post("/api/auth/register", status_code=201)
    def register(body: RegisterIn, db: Database = Depends(get_db)):
        email = require_email(body.email)
        password = require_password(body.password)
        name = (body.name or "").strip() or email.split("@")[0]
        user = create_user(db, email, name, hash_password(password))
        logger.info("user registered: %s", email)
        return {"message": "Registration successful", "user": user}

    @app.post("/api/auth/login")
    def login(body: CredentialsIn, db: Database = Depends(get_db), s: Settings = Depends(get_settings)):
        user = get_user_by_email(db, body.email.strip().lower())
        if not user or not verify_password(body.password, user.pop("password_hash")):
            raise AuthError("Invalid email or password")
        resp = JSONResponse({"user": user})
        _set_session_cookie(resp, create_session_token(s, user), s.session_ttl_minutes)
        return resp

    @app.post("/api/auth/logout")
    def logout():
        resp = JSONResponse({"success": True})
        resp.delete_cookie(SESSION_COOKIE)
        return resp

    @app.post("/api/admin/break-glass")
    def break_glass(
        body: CredentialsIn, request: Request, db: Database = Depends(get_db), s: Settings = Depends(get_settings)
    ):
        source = request.client.host if request.client else ""
        token = break_glass_login(db, s, body.email, body.password, source=source)
        resp = JSONResponse({"success": True, "expiresInMinutes": s.break_glass_ttl_minutes})
        _set_session_cookie(resp, token, s.break_glass_ttl_minutes)
        return resp

    # ---------------- profile ----------------

    @app.get("/api/users/profile")
    def profile(db: Database = Depends(get_db), session: Dict[str, Any] = Depends(require_session)):
        user = get_user(db, session["sub"])
        if not user:
            raise NotFoundError("User not found")
        return user

    @app.put("/api/users/profile")
    def profile_update(
        body: ProfileIn, db: Database = Depends(get_db), session: Dict[str, Any] = Depends(require_session)
    ):
        user = update_user(db, session["sub"], body.name.strip())
        return {"message": "Profile updated successfully", "user": user}

    # ---------------- address book ----------------

    @app.get("/api/user/addresses")
    def addresses(db: Database = Depends(get_db), user: Dict[str, Any] = Depends(require_account)):
        return list_addresses(db, user["id"])

    @app.post("/api/user/addresses", status_code=201)
    def address_create(
        body: AddressIn, db: Database = Depends(get_db), user: Dict[str, Any] = Depends(require_account)
    ):
        return create_address(
            db, user["id"], body.model_dump(exclude={"is_default"}), is_default=bool(body.is_default)
        )

    @app.get("/api/user/addresses/{address_id}")
    def address_detail(
        address_id: str, db: Database = Depends(get_db), user: Dict[str, Any] = Depends(require_account)
    ):
        return get_address(db, user["id"], address_id)

    @app.put("/api/user/addresses/{address_id}")
    def address_replace(
        address_id: str,
        body: AddressIn,
        db: Database = Depends(get_db),
        user: Dict[str, Any] = Depends(require_account),
    ):
        return update_address(
            db, user["id"], address_id, body.model_dump(exclude={"is_default"}), is_default=body.is_default
        )

    @app.patch("/api/user/addresses/{address_id}")
    def address_patch(
        address_id: str,
        body: AddressPatchIn,
        db: Database = Depends(get_db),
        user: Dict[str, Any] = Depends(require_account),
    ):
        return update_address(
            db, user["id"], address_id, body.model_dump(exclude={"is_default"}), is_default=body.is_default
        )

    @app.delete("/api/user/addresses/{address_id}")
    def address_delete(
        address_id: str, db: Database = Depends(get_db), user: Dict[str, Any] = Depends(require_account)
    ):
        delete_address(db, user["id"], address_id)
        return {"success": True, "message": "Address has been deleted"}

    # ---------------- saved payment methods ----------------

    @app.get("/api/user/payment-methods")
    def payment_methods(db: Database = Depends(get_db), user: Dict[str, Any] = Depends(require_account)):
        return list_payment_methods(db, user["id"])

    @app.post("/api/user/payment-methods", status_code=201)
    def payment_method_create(
        body: PaymentMethodIn, db: Database = Depends(get_db), user: Dict[str, Any] = Depends(require_account)
    ):
        return create_payment_method(
            db,
            user["id"],
            body.type,
            card_number=body.card_number,
            card_expiry=body.card_expiry,
            is_default=body.is_default,
        )

    @app.get("/api/user/payment-methods/{method_id}")
    def payment_method_detail(
        method_id: str, db: Database = Depends(get_db), user: Dict[str, Any] = Depends(require_account)
    ):
        return get_payment_method(db, user["id"], method_id)

    @app.api_route("/api/user/payment-methods/{method_id}", methods=["PUT", "PATCH"])
    def payment_method_update(
        method_id: str,
        body: PaymentMethodPatchIn,
        db: Database = Depends(get_db),
        user: Dict[str, Any] = Depends(require_account),
    ):
        return update_payment_method(
            db, user["id"], method_id, payment_type=body.type, card_expiry=body.card_expiry, is_default=body.is_default
        )

    @app.delete("/api/user/payment-methods/{method_id}")
    def payment_method_delete(
        method_id: str, db: Database = Depends(get_db), user: Dict[str, Any] = Depends(require_account)
    ):
        delete_payment_method(db, user["id"], method_id)
        return {"success": True, "message": "Payment method deleted"}

    # ---------------- orders ----------------

    @app.post("/api/orders", status_code=201)
    def order_create(
        body: OrderIn,
        db: Database = Depends(get_db),
        session: Optional[Dict[str, Any]] = Depends(current_session),
    ):
        user_id = None
        if session and not session.get("break_glass"):
            user_id = session["sub"]
        customer = body.model_dump(exclude={"items", "payment_method"})
        customer["customer_email"] = require_email(customer["customer_email"])
        order = create_order(
            db,
            customer,
            [(it.product_id, it.quantity) for it in body.items],
            payment_method=body.payment_method,
            user_id=user_id,
        )
        return {"order": order, "id": order["id"]}

    @app.get("/api/orders")
    def my_orders(db: Database = Depends(get_db), session: Dict[str, Any] = Depends(require_session)):
        return list_orders_for_user(db, session["sub"], session["email"])

    @app.get("/api/orders/{order_id}")
    def order_detail(order_id: str, db: Database = Depends(get_db), session: Dict[str, Any] = Depends(require_session)):
        return _order_for(db, order_id, session)

    @app.delete("/api/orders/{order_id}", status_code=204)
    def order_delete(order_id: str, db: Database = Depends(get_db), session: Dict[str, Any] = Depends(require_session)):
        order = _order_for(db, order_id, session)
        if order["status"] != ORDER_PENDING:
            raise ValidationError("Only pending orders can be deleted")
        delete_order(db, order_id)
        return Response(status_code=204)

    @app.get("/api/orders/{order_id}/invoice")
    def order_invoice(
        order_id: str,
        db: Database = Depends(get_db),
        s: Settings = Depends(get_settings),
        session: Dict[str, Any] = Depends(require_session),
    ):
        order = _order_for(db, order_id, session)
        path = generate_order_pdf(order, s.export_dir)
        return FileResponse(path, media_type="application/pdf", filename=f"order_{order['orderNumber']}.pdf")

    # ---------------- admin ----------------

    @app.get("/api/admin/orders")
    def admin_orders(
        status: Optional[str] = None,
        db: Database = Depends(get_db),
        _: Dict[str, Any] = Depends(require_admin),
    ):
        return list_orders(db, status=status)

    @app.get("/api/admin/orders/{order_id}")
    def admin_order(order_id: str, db: Database = Depends(get_db), _: Dict[str, Any] = Depends(require_admin)):
        order = get_order(db, order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    @app.put("/api/admin/orders/{order_id}")
    def admin_order_update(
        order_id: str,
        body: OrderUpdateIn,
        db: Database = Depends(get_db),
        admin: Dict[str, Any] = Depends(require_admin),
    ):
        order = update_order(db, order_id, body.model_dump())
        record_audit(db, admin["email"], "order.update", True, f"{order_id} status={order['status']}")
        return order

    @app.delete("/api/admin/orders/{order_id}", status_code=204)
    def admin_order_delete(
        order_id: str, db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)
    ):
        delete_order(db, order_id)
        record_audit(db, admin["email"], "order.delete", True, order_id)
        return Response(status_code=204)

    @app.get("/api/admin/users")
    def admin_users(
        search: str = "",
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        db: Database = Depends(get_db),
        _: Dict[str, Any] = Depends(require_admin),
    ):
        return list_users(db, search=search or None, page=page, limit=limit)

    @app.get("/api/admin/users/{user_id}")
    def admin_user(user_id: str, db: Database = Depends(get_db), _: Dict[str, Any] = Depends(require_admin)):
        user = get_user_detail(db, user_id)
        if not user:
            raise NotFoundError("User does not exist")
        return user

    @app.put("/api/admin/users/{user_id}")
    def admin_user_update(
        user_id: str,
        body: UserUpdateIn,
        db: Database = Depends(get_db),
        admin: Dict[str, Any] = Depends(require_admin),
    ):
        user = update_user(db, user_id, body.name.strip(), role=body.role)
        record_audit(db, admin["email"], "user.update", True, f"{user_id} role={user['role']}")
        return {"message": "User information updated successfully", "user": user}

    @app.delete("/api/admin/users/{user_id}")
    def admin_user_delete(
        user_id: str, db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)
    ):
        if user_id == admin["sub"]:
            raise ValidationError("Cannot delete the currently logged in admin account")
        delete_user(db, user_id)
        record_audit(db, admin["email"], "user.delete", True, user_id)
        return {"message": "User deleted successfully"}

    @app.get("/api/admin/db-status")
    def admin_db_status(
        db: Database = Depends(get_db),
        s: Settings = Depends(get_settings),
        _: Dict[str, Any] = Depends(require_admin),
    ):
        return db_status(db, s.low_stock_threshold)

    @app.get("/api/admin/audit")
    def admin_audit(
        limit: int = Query(50, ge=1, le=500),
        db: Database = Depends(get_db),
        _: Dict[str, Any] = Depends(require_admin),
    ):
        return list_audit(db, limit)

    return app


app = create_app()
