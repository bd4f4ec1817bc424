"""Display formatting for prices, quantities, and option names."""

import datetime
from decimal import Decimal

from .models import Asset


def mn(val) -> str:
    """format numeric input as money"""

    # the format is faster than locale and doesn't require extra "stuff"
    return f"${val:,.2f}".replace("$-", "-$")


def format_qty(qty) -> str:
    """Render a quantity or strike without trailing zeros (25.500 -> 25.5, 100.00 -> 100)."""
    text = f"{Decimal(qty):f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")

    return text or "0"


def format_price(value: Decimal, asset: Asset) -> str:
    """Options show up to 3 decimals, stocks up to 2, always keeping at least 2."""
    places = 3 if asset.is_option else 2
    text = f"{value:.{places}f}".rstrip("0")

    whole, _, frac = text.partition(".")
    return f"{whole}.{frac.ljust(2, '0')}"


def format_pnl(value: Decimal) -> str:
    return f"{value:+.2f}"


def format_option_date(when: datetime.date) -> str:
    return when.strftime("%d %b %Y")


def format_expiry(when: datetime.date | None) -> str:
    if when is None:
        return "-"

    return format_option_date(when)


def format_option_display(root: str, expiry: datetime.date, strike: Decimal) -> str:
    return f"{root} {format_option_date(expiry)} ${format_qty(strike)}"
