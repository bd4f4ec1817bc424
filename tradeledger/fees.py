import datetime
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass
from decimal import Decimal
from typing import TypeAlias

from .models import OPTION_MULTIPLIER, ZERO, Side, Trade

# Broker fee exports don't carry order ids, so fees are joined back to trades on
# what both sides do agree on: fill time, side, and quantity.
FeeKey: TypeAlias = tuple[datetime.datetime, Side, int]
FeeTable: TypeAlias = Mapping[FeeKey, Decimal]


def fee_key(trade: Trade) -> FeeKey:
    return (trade.timestamp, trade.side, trade.qty)


def add_fee(fees: MutableMapping[FeeKey, Decimal], key: FeeKey, amount: Decimal) -> None:
    """Record a fee, summing with any fee already stored under the same key."""
    fees[key] = fees.get(key, ZERO) + amount


def lookup_fee(fees: FeeTable | None, trade: Trade, legs: Iterable[Trade] = ()) -> Decimal:
    """Fee charged for `trade`.

    Strategy parents aren't billed themselves; their fee is the sum of their legs' fees."""
    if not fees:
        return ZERO

    if trade.is_strategy_parent:
        # legs sharing a key were already summed into one entry by add_fee
        keys = {fee_key(leg) for leg in legs}
        return sum((fees.get(key, ZERO) for key in keys), ZERO)

    return fees.get(fee_key(trade), ZERO)


D = Decimal
CENT = D("0.01")


@dataclass
class OptionFees:
    """Estimate of regulatory and clearing fees for an option order.

    Used when a broker export has fills but no fee columns.
    We carry fractional cents through and only round on display."""

    # Fee structure taken from "Fee Schedule" link at:
    # https://www.webull.com/pricing

    rate_sec: Decimal = D("0.00002780")  # per dollar sold, min 0.01 per leg, SELLS ONLY
    rate_taf: Decimal = D("0.00279")  # per CONTRACT, min 0.01 per leg, SELLS ONLY
    rate_orf: Decimal = D("0.02685")  # per contract, all, no maximum
    rate_occ: Decimal = D("0.02")  # per contract, all, max $55.00 per leg

    # Described as tuples (contractCount, contractPrice)
    # note: 'contractPrice' is the contract price, not the total price
    #       (i.e. 2.30 instead of 230.00)
    legs_buy: tuple[tuple[int, Decimal], ...] = ()
    legs_sell: tuple[tuple[int, Decimal], ...] = ()

    @classmethod
    def forTrade(cls, side: Side, qty: int, price: Decimal) -> "OptionFees":
        if side is Side.SELL:
            return cls(legs_sell=((qty, price),))

        return cls(legs_buy=((qty, price),))

    @property
    def contracts(self) -> int:
        """Contract count for all legs"""
        return sum(c for c, _ in self.legs_buy) + sum(c for c, _ in self.legs_sell)

    @property
    def sec(self) -> Decimal:
        # Calculated against the total dollar value of each sell leg
        # with a 0.01 floor PER LEG.
        return sum(
            (
                max(CENT, self.rate_sec * price * OPTION_MULTIPLIER * count)
                for count, price in self.legs_sell
            ),
            ZERO,
        )

    @property
    def taf(self) -> Decimal:
        # Sells based on contract count only
        # 0.01 floor PER LEG minimum
        # 5.95 ceiling PER LEG maximum
        return sum(
            (
                min(D("5.95"), max(CENT, self.rate_taf * count))
                for count, _ in self.legs_sell
            ),
            ZERO,
        )

    @property
    def orf(self) -> Decimal:
        # aggregate value across all legs, no per-leg math needed
        return self.rate_orf * self.contracts

    @property
    def occ(self) -> Decimal:
        # $55.00 ceiling PER LEG
        return sum(
            (
                min(D("55.00"), self.rate_occ * count)
                for count, _ in self.legs_sell + self.legs_buy
            ),
            ZERO,
        )

    @property
    def total(self) -> Decimal:
        return self.sec + self.taf + self.orf + self.occ
