import re
from typing import Any

from storefront.errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LEN = 6


def require_email(v: Any) -> str:
    email = str(v or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email is required")
    return email


def require_password(v: Any) -> str:
    password = str(v or "")
    if len(password) < MIN_PASSWORD_LEN:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LEN} characters")
    return password
