"""Record types flowing through the ledger.

CRITICAL DATA MODEL CONSISTENCY PRINCIPLES:
==========================================

1. TRADE LEVEL (Trade class):
   - qty: ALWAYS positive (direction lives in `side`, never in the quantity sign)
   - price: ALWAYS non-negative, per-unit (per share or per contract before multiplier)
   - multiplier: 100 for option contracts, 1 for shares
   - Trades are immutable once created; only the lot ledger changes over time.

2. LOT LEVEL (Lot class):
   - qty: STRICTLY positive. A lot reaching zero is dropped on the spot, never stored.
   - side + price never change for a lot; partial closes create a smaller copy.

3. ROW LEVEL (ReportRow / PositionRow):
   - Display records for renderers. Quantities positive, direction in `side`.
   - PositionRow.initial_avg_price / adjusted_avg_price are only set on grouped spreads.

Strategy orders arrive as one parent Trade (net price, Asset.OptionStrategy) plus one
Trade per leg. Legs point back to their parent with `parent_strategy_seq` instead of
holding the parent object itself, so a batch of trades stays a flat indexed list.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Final, TypeAlias

ZERO: Final = Decimal(0)
OPTION_MULTIPLIER: Final = Decimal(100)
STOCK_MULTIPLIER: Final = Decimal(1)

# e.g. "stock:AAPL", "option:GME260213C00025000", "strategy:Calendar:GME:2026-02-20:C25"
MatchKey: TypeAlias = str


class Side(Enum):
    BUY = "Buy"
    SELL = "Sell"
    EXPIRE = "Expire"

    def __str__(self) -> str:
        return self.value


class Asset(Enum):
    STOCK = "Stock"
    OPTION = "Option"
    OPTION_STRATEGY = "Option Strategy"

    @property
    def multiplier(self) -> Decimal:
        match self:
            case Asset.STOCK:
                return STOCK_MULTIPLIER
            case Asset.OPTION | Asset.OPTION_STRATEGY:
                return OPTION_MULTIPLIER

    @property
    def is_option(self) -> bool:
        return self is not Asset.STOCK

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True, frozen=True)
class Trade:
    """One fill event: a stock trade, an option trade, a strategy parent, or a strategy leg.

    `seq` is assigned monotonically at load time and is the only tie-break between
    trades sharing a timestamp. Strategy legs carry `parent_strategy_seq` pointing
    at the parent Trade's `seq`."""

    seq: int
    timestamp: datetime.datetime
    instrument: str
    match_key: MatchKey
    asset: Asset
    option_kind: str
    side: Side
    qty: int
    price: Decimal
    multiplier: Decimal
    expiry: datetime.date | None = None
    parent_strategy_seq: int | None = None

    def __post_init__(self):
        # Direction is carried by `side`, so a negative price would flip the P&L math.
        if self.price < 0:
            raise ValueError(
                f"Negative prices are not allowed (seq {self.seq}: {self.price})"
            )

    @property
    def is_strategy_parent(self) -> bool:
        return self.asset is Asset.OPTION_STRATEGY

    @property
    def is_expiration(self) -> bool:
        return self.side is Side.EXPIRE

    @property
    def notional(self) -> Decimal:
        return self.qty * self.price * self.multiplier


@dataclass(slots=True, frozen=True)
class Lot:
    """A slice of open position at one price on one side."""

    side: Side
    qty: int
    price: Decimal

    def __post_init__(self):
        if self.qty <= 0:
            raise ValueError(f"Lot quantity must be positive, got {self.qty}")


# matching key -> open lots, oldest first
Positions: TypeAlias = dict[MatchKey, list[Lot]]


@dataclass(slots=True, frozen=True)
class ReportRow:
    timestamp: datetime.datetime
    instrument: str
    asset: Asset
    option_kind: str
    side: Side
    qty: int
    price: Decimal
    closed_qty: int
    realized: Decimal
    running: Decimal
    cash: Decimal
    total: Decimal
    fees: Decimal = ZERO
    is_strategy_leg: bool = False


@dataclass(slots=True, frozen=True)
class PositionRow:
    instrument: str
    asset: Asset
    option_kind: str
    side: Side
    qty: int
    avg_price: Decimal
    expiry: datetime.date | None
    is_strategy_leg: bool = False

    # only populated for rows belonging to a grouped spread
    initial_avg_price: Decimal | None = None
    adjusted_avg_price: Decimal | None = None


@dataclass(slots=True, frozen=True)
class OptionParsed:
    root: str
    expiry_date: datetime.date
    call_put: str
    strike: Decimal
