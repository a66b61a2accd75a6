from decimal import Decimal

from storefront.config import settings


def money(v: Decimal | float) -> str:
    return f"{float(v):.{settings.decimals}f} {settings.currency}"


def verify_summary(valid: int, removed: int, updated: int) -> str:
    return (
        f"Cart validation complete. Found {valid} valid items, "
        f"removed {removed}, updated {updated}."
    )
