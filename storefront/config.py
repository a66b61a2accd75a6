from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]  # .../storefront repo root
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_int(*keys: str, default: int | None = None) -> int | None:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return int(v)


def _get_bool(*keys: str, default: bool = False) -> bool:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


def _get_path(*keys: str, default: str) -> str:
    v = _get_env(*keys, default=default)
    return str(v)


@dataclass(frozen=True)
class Settings:
    db_path: str
    export_dir: str
    backup_dir: str
    currency: str
    decimals: int
    log_level: str
    host: str
    port: int
    session_secret: str
    session_ttl_minutes: int
    low_stock_threshold: int
    break_glass_enabled: bool
    break_glass_email: str
    break_glass_password_hash: str
    break_glass_ttl_minutes: int
    bot_token: str
    admin_id: int
    seed_admin_email: str
    seed_admin_password: str


settings = Settings(
    db_path=_get_path("DB_PATH", "DATABASE_PATH", default=str(ROOT_DIR / "data" / "storefront.db")),
    export_dir=_get_path("EXPORT_DIR", default=str(ROOT_DIR / "exports")),
    backup_dir=_get_path("BACKUP_DIR", default=str(ROOT_DIR / "backups")),
    currency=_get_env("CURRENCY", default="USD") or "USD",
    decimals=_get_int("DECIMALS", default=2) or 2,
    log_level=(_get_env("LOG_LEVEL", default="INFO") or "INFO").upper(),
    host=_get_env("HOST", default="127.0.0.1") or "127.0.0.1",
    port=_get_int("PORT", default=8000) or 8000,
    session_secret=_get_env("SESSION_SECRET", "NEXTAUTH_SECRET", default="") or "",
    session_ttl_minutes=_get_int("SESSION_TTL_MINUTES", default=60 * 24) or 60 * 24,
    low_stock_threshold=_get_int("LOW_STOCK_THRESHOLD", default=10) or 10,
    break_glass_enabled=_get_bool("BREAK_GLASS_ENABLED", default=False),
    break_glass_email=_get_env("BREAK_GLASS_EMAIL", default="") or "",
    break_glass_password_hash=_get_env("BREAK_GLASS_PASSWORD_HASH", default="") or "",
    break_glass_ttl_minutes=_get_int("BREAK_GLASS_TTL_MINUTES", default=15) or 15,
    bot_token=_get_env("BOT_TOKEN", "TELEGRAM_BOT_TOKEN", default="") or "",
    admin_id=_get_int("ADMIN_ID", "ADMIN_TG_ID", "ADMIN_TG", default=0) or 0,
    seed_admin_email=(_get_env("SEED_ADMIN_EMAIL", default="") or "").lower(),
    seed_admin_password=_get_env("SEED_ADMIN_PASSWORD", default="") or "",
)


def require_web_settings(s: Settings) -> None:
    if not s.session_secret:
        raise RuntimeError("SESSION_SECRET is empty. Set SESSION_SECRET in .env")


def require_bot_settings(s: Settings) -> None:
    if not s.bot_token:
        raise RuntimeError("BOT_TOKEN is empty. Set BOT_TOKEN in .env")
    if not s.admin_id:
        raise RuntimeError("ADMIN_ID is empty. Set ADMIN_ID (or ADMIN_TG_ID) in .env")
