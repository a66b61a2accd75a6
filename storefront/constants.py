ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"

PRODUCT_ACTIVE = "active"
PRODUCT_INACTIVE = "inactive"

ORDER_STATUSES = {
    "PENDING": "Pending",
    "PROCESSING": "Processing",
    "SHIPPED": "Shipped",
    "DELIVERED": "Delivered",
    "CANCELLED": "Cancelled",
}
ORDER_PENDING = "PENDING"

# reconciliation reasons (returned to the client verbatim)
REASON_MISSING = "Product no longer exists in the database"
REASON_OUT_OF_STOCK = "Product is out of stock"
REASON_QTY_ADJUSTED = "Quantity adjusted to match available stock"

# columns accepted for ?sort= on the public catalog
PRODUCT_SORT_FIELDS = ("name", "price", "stock", "category", "created_at", "updated_at")

SESSION_COOKIE = "storefront_session"

PAYMENT_CREDIT_CARD = "CREDIT_CARD"
PAYMENT_TYPES = (PAYMENT_CREDIT_CARD, "PAYPAL", "BANK_TRANSFER")
