"""Matching keys and OCC option symbol helpers.

A matching key is the stable identity for everything trading the same instrument:

    stock:AAPL
    option:GME260213C00025000
    strategy:Calendar:GME:2026-02-20:C25

OCC symbols are ROOT + YYMMDD + C/P + 8 digit strike (strike * 1000), so
GME260213C00025000 is GME Feb 13 2026 $25 Call."""

from __future__ import annotations

import datetime
import re
from collections.abc import Iterable
from decimal import Decimal
from typing import Final

from .fmt import format_qty
from .models import OptionParsed

STOCK_PREFIX: Final = "stock:"
OPTION_PREFIX: Final = "option:"
STRATEGY_PREFIX: Final = "strategy:"

OCC_RE = re.compile(r"^([A-Z]+)(\d{6})([CP])(\d{8})$")

D1000: Final = Decimal(1000)

# keyword (spaces removed, lowercase) -> strategy kind.
# Order matters: "ironcondor" must win over "condor".
STRATEGY_KEYWORDS = {
    "ironcondor": "IronCondor",
    "butterfly": "Butterfly",
    "calendar": "Calendar",
    "condor": "Condor",
    "diagonal": "Diagonal",
    "straddle": "Straddle",
    "strangle": "Strangle",
    "vertical": "Vertical",
    "spread": "Spread",
}


def stock_key(symbol: str) -> str:
    return f"{STOCK_PREFIX}{symbol}"


def option_key(occ: str) -> str:
    return f"{OPTION_PREFIX}{occ}"


def strategy_key(
    kind: str,
    root: str,
    expiry: datetime.date,
    legs: Iterable[tuple[str, Decimal]],
) -> str:
    """Build a strategy matching key from its kind, root, expiration, and (call_put, strike) legs."""
    legsKey = ",".join(
        f"{cp}{format_qty(strike)}" for cp, strike in sorted(set(legs))
    )
    key = f"{STRATEGY_PREFIX}{kind}:{root}:{expiry:%Y-%m-%d}"
    if legsKey:
        key = f"{key}:{legsKey}"

    return key


def option_symbol(match_key: str) -> str | None:
    """Return the OCC symbol embedded in an option matching key, or None for other keys."""
    if not match_key.startswith(OPTION_PREFIX):
        return None

    return match_key[len(OPTION_PREFIX) :] or None


def parse_option_symbol(symbol: str) -> OptionParsed | None:
    """Parse an OCC option symbol into its components (None if it isn't one)."""
    if not (m := OCC_RE.match(symbol.strip().upper())):
        return None

    root, yymmdd, callPut, strike = m.groups()
    try:
        expiry = datetime.datetime.strptime(yymmdd, "%y%m%d").date()
    except ValueError:
        return None

    return OptionParsed(
        root=root,
        expiry_date=expiry,
        call_put=callPut,
        strike=Decimal(strike) / D1000,
    )


def parse_option_key(match_key: str) -> OptionParsed | None:
    if (symbol := option_symbol(match_key)) is None:
        return None

    return parse_option_symbol(symbol)


def occ_symbol(root: str, expiry: datetime.date, call_put: str, strike: Decimal) -> str:
    return f"{root.upper()}{expiry:%y%m%d}{call_put}{int(strike * D1000):08d}"


def strategy_kind_from_name(name: str) -> str:
    """Map a broker strategy name like "Iron Condor" or "Calendar Spread" to a strategy kind."""
    normalized = name.replace(" ", "").lower()
    for keyword, kind in STRATEGY_KEYWORDS.items():
        if keyword in normalized:
            return kind

    return "Strategy"


def detect_strategy_kind(legs: Iterable[OptionParsed]) -> str:
    """Classify a multi-leg order by the shape of its legs."""
    legs = list(legs)
    expiries = {leg.expiry_date for leg in legs}
    strikes = {leg.strike for leg in legs}
    rights = {leg.call_put for leg in legs}

    if len(legs) >= 4:
        return "IronCondor" if len(rights) == 2 else "Condor"

    match (len(expiries) > 1, len(strikes) > 1):
        case (True, False):
            return "Calendar"
        case (False, True):
            return "Vertical"
        case (True, True):
            return "Diagonal"
        case _:
            return "Spread"
