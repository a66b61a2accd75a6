from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt

from storefront.config import Settings
from storefront.constants import ROLE_ADMIN
from storefront.db.sqlite import Database, record_audit
from storefront.errors import AuthError, PermissionDenied

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
BREAK_GLASS_ACTOR = "break-glass"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash in config or db
        logger.warning("password hash is not a valid bcrypt hash")
        return False


def create_session_token(
    s: Settings, user: Dict[str, Any], ttl_minutes: Optional[int] = None, break_glass: bool = False
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user["id"],
        "email": user["email"],
        "name": user.get("name") or "",
        "role": user["role"],
        "iat": now,
        "exp": now + timedelta(minutes=ttl_minutes or s.session_ttl_minutes),
    }
    if break_glass:
        payload["break_glass"] = True
    return jwt.encode(payload, s.session_secret, algorithm=JWT_ALGORITHM)


def decode_session_token(s: Settings, token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, s.session_secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Session expired") from None
    except jwt.InvalidTokenError:
        raise AuthError("Invalid session") from None


def break_glass_login(db: Database, s: Settings, email: str, password: str, source: str = "") -> str:
    """
    Emergency admin login against the credential held in configuration.

    Every attempt is written to the audit log, successful or not. Returns a
    short-lived admin session token.
    """
    detail = f"email={email} source={source}".strip()

    if not s.break_glass_enabled or not s.break_glass_email or not s.break_glass_password_hash:
        record_audit(db, BREAK_GLASS_ACTOR, "login", False, f"{detail} reason=disabled")
        logger.warning("break-glass login refused (disabled): %s", detail)
        raise PermissionDenied("Break-glass access is disabled")

    email_ok = hmac.compare_digest(email.strip().lower().encode(), s.break_glass_email.lower().encode())
    password_ok = verify_password(password, s.break_glass_password_hash)
    if not (email_ok and password_ok):
        record_audit(db, BREAK_GLASS_ACTOR, "login", False, f"{detail} reason=bad_credentials")
        logger.warning("break-glass login failed: %s", detail)
        raise AuthError("Invalid credentials")

    record_audit(db, BREAK_GLASS_ACTOR, "login", True, detail)
    logger.warning("break-glass login granted: %s", detail)
    user = {"id": BREAK_GLASS_ACTOR, "email": s.break_glass_email, "name": "Break-glass admin", "role": ROLE_ADMIN}
    return create_session_token(s, user, ttl_minutes=s.break_glass_ttl_minutes, break_glass=True)
