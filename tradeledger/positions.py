"""Open position display with spread reconstruction.

Brokers only report what's in the account (one line per option contract), so after
the ledger pass we rebuild which open legs belong together:

    pass 1 (calendars): same root/strike/right, different expirations.
        Longs sorted furthest expiration first, shorts nearest first, then each short
        takes as much long quantity as is left. A leg can be split across several
        calendars when a roll only moved part of the position.
    pass 2 (verticals): same root/expiration/right, different strikes, for the legs
        pass 1 never touched.

Everything left becomes a standalone row.

Calendars and diagonals usually get rolled: the near short is bought back for a
profit and a new short is sold. Those banked roll credits lower the cost basis of
the long leg still held:

    adjusted long price = long price - credits / (qty * 100)
"""

from __future__ import annotations

import datetime
from collections import defaultdict
from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, replace
from decimal import Decimal

from loguru import logger

from .fmt import format_option_date
from .lots import apply_to_lots, average_price, total_qty
from .models import (
    OPTION_MULTIPLIER,
    ZERO,
    Asset,
    Lot,
    OptionParsed,
    PositionRow,
    Positions,
    Side,
    Trade,
)
from .symbols import parse_option_key

ROLL_ADJUSTED_KINDS = frozenset({"Calendar", "Diagonal"})


@dataclass(slots=True, frozen=True)
class Holding:
    """One open instrument: its display row plus what we know about it."""

    key: str
    row: PositionRow
    trade: Trade | None
    parsed: OptionParsed | None

    @property
    def is_long(self) -> bool:
        return self.row.side is Side.BUY

    def sized(self, qty: int) -> Holding:
        return replace(self, row=replace(self.row, qty=qty))


Group = list[Holding]


def build_position_rows(
    positions: Positions,
    trade_index: dict[str, Trade],
    trades: Sequence[Trade],
) -> list[PositionRow]:
    """Build display rows for open positions, grouping option legs into spreads."""
    holdings = build_holdings(positions, trade_index)
    groups = group_into_strategies(holdings)

    rows: list[PositionRow] = []
    for group in groups:
        if len(group) > 1:
            rows.extend(build_strategy_rows(group, trades))
        else:
            rows.append(group[0].row)

    return rows


def build_holdings(positions: Positions, trade_index: dict[str, Trade]) -> list[Holding]:
    holdings = []
    for key, lots in positions.items():
        if not lots or (qty := total_qty(lots)) <= 0:
            continue

        trade = trade_index.get(key)

        # strategy parents only exist for P&L; their legs are what we hold
        if trade is not None and trade.is_strategy_parent:
            continue

        row = PositionRow(
            instrument=trade.instrument if trade else key,
            asset=trade.asset if trade else Asset.STOCK,
            option_kind=(trade.option_kind if trade else "") or "-",
            side=lots[0].side,
            qty=qty,
            avg_price=average_price(lots),
            expiry=trade.expiry if trade else None,
        )

        parsed = parse_option_key(key) if row.asset is Asset.OPTION else None
        holdings.append(Holding(key, row, trade, parsed))

    return holdings


def group_into_strategies(holdings: Sequence[Holding]) -> list[Group]:
    """Split holdings into calendar groups, vertical groups, and standalone rows."""
    remaining = {h.key: h.row.qty for h in holdings}
    options = [h for h in holdings if h.parsed is not None]

    # pass 1: calendars
    groups: list[Group] = []
    locked: set[str] = set()
    for legs in bucket(
        options, lambda h: (h.parsed.root, h.parsed.strike, h.parsed.call_put)
    ):
        matched, touched = match_legs(
            legs,
            remaining,
            longOrder=lambda h: h.parsed.expiry_date,
            longDescending=True,
            shortOrder=lambda h: h.parsed.expiry_date,
        )
        groups.extend(matched)

        # split legs keep their leftover as a standalone position
        locked |= touched

    # pass 2: verticals among legs pass 1 never touched
    untouched = [h for h in options if h.key not in locked]
    for legs in bucket(
        untouched, lambda h: (h.parsed.root, h.parsed.expiry_date, h.parsed.call_put)
    ):
        matched, _ = match_legs(
            legs,
            remaining,
            longOrder=lambda h: h.parsed.strike,
            longDescending=False,
            shortOrder=lambda h: h.parsed.strike,
        )
        groups.extend(matched)

    # whatever is left stands alone
    for h in holdings:
        if (qty := remaining[h.key]) > 0:
            groups.append([h.sized(qty)])

    groups.sort(key=lambda g: (g[0].row.asset.value, g[0].row.instrument))

    logger.debug(
        "Grouped {} holdings into {} rows ({} spreads)",
        len(holdings),
        len(groups),
        sum(1 for g in groups if len(g) > 1),
    )

    return groups


def bucket(
    holdings: Iterable[Holding], keyfn: Callable[[Holding], Hashable]
) -> list[list[Holding]]:
    buckets: dict[Hashable, list[Holding]] = defaultdict(list)
    for h in holdings:
        buckets[keyfn(h)].append(h)

    return list(buckets.values())


def match_legs(
    legs: Sequence[Holding],
    remaining: dict[str, int],
    longOrder: Callable[[Holding], Hashable],
    longDescending: bool,
    shortOrder: Callable[[Holding], Hashable],
) -> tuple[list[Group], set[str]]:
    """Pair short legs with long legs by remaining quantity.

    `remaining` is consumed in place. Returns the two-leg groups created and the keys
    of every leg that took part in one."""
    longs = sorted(
        (h for h in legs if h.is_long), key=longOrder, reverse=longDescending
    )
    shorts = sorted((h for h in legs if not h.is_long), key=shortOrder)

    groups: list[Group] = []
    touched: set[str] = set()
    if not longs or not shorts:
        return groups, touched

    for short in shorts:
        for long in longs:
            if remaining[short.key] <= 0:
                break

            if remaining[long.key] <= 0:
                continue

            qty = min(remaining[long.key], remaining[short.key])
            groups.append([long.sized(qty), short.sized(qty)])

            remaining[long.key] -= qty
            remaining[short.key] -= qty
            touched |= {long.key, short.key}

    return groups, touched


def classify(group: Sequence[Holding]) -> str:
    expiries = {h.parsed.expiry_date for h in group}
    strikes = {h.parsed.strike for h in group}

    match (len(expiries) > 1, len(strikes) > 1):
        case (True, False):
            return "Calendar"
        case (False, True):
            return "Vertical"
        case (True, True):
            # grouping passes never pair across both; only hand-built groups get here
            return "Diagonal"
        case (False, False):
            return "Spread"


def build_strategy_rows(group: Group, trades: Sequence[Trade]) -> list[PositionRow]:
    """Summary row for a spread followed by its legs (furthest expiration first)."""
    kind = classify(group)
    first = group[0].parsed
    qty = group[0].row.qty

    credits = ZERO
    if kind in ROLL_ADJUSTED_KINDS:
        for strike in sorted({h.parsed.strike for h in group}):
            credits += closed_leg_credits(trades, first.root, strike, first.call_put)

    netInitial = ZERO
    netAdjusted = ZERO
    legRows: list[tuple[Holding, Decimal]] = []
    for h in group:
        initial = h.row.avg_price
        adjusted = initial
        if h.is_long and credits > 0:
            adjusted = initial - credits / (h.row.qty * OPTION_MULTIPLIER)

        if h.is_long:
            netInitial += initial
            netAdjusted += adjusted
        else:
            netInitial -= initial
            netAdjusted -= adjusted

        legRows.append((h, adjusted))

    longest = max(h.parsed.expiry_date for h in group)

    rows = [
        PositionRow(
            instrument=f"{first.root} {format_option_date(longest)}",
            asset=Asset.OPTION_STRATEGY,
            option_kind=kind,
            side=Side.BUY if netAdjusted >= 0 else Side.SELL,
            qty=qty,
            avg_price=abs(netAdjusted),
            expiry=longest,
            initial_avg_price=abs(netInitial),
            adjusted_avg_price=abs(netAdjusted),
        )
    ]

    legRows.sort(
        key=lambda pair: (pair[0].parsed.expiry_date, pair[0].parsed.strike),
        reverse=True,
    )
    for h, adjusted in legRows:
        rows.append(
            replace(
                h.row,
                is_strategy_leg=True,
                initial_avg_price=h.row.avg_price,
                adjusted_avg_price=adjusted,
            )
        )

    return rows


def closed_leg_credits(
    trades: Sequence[Trade], root: str, strike: Decimal, call_put: str
) -> Decimal:
    """Total roll credit banked from buying back short legs at one root/strike/right.

    Leg trades are replayed through a private FIFO ledger per expiration. Only P&L
    from BUY closes counts. Each time an expiration's ledger empties its positive P&L
    is banked and the counter starts over (a strike can be rolled many times), and
    expirations still open contribute whatever positive P&L they have so far."""
    legs: list[tuple[Trade, datetime.date]] = []
    for trade in trades:
        if trade.asset is not Asset.OPTION or trade.parent_strategy_seq is None:
            continue

        if trade.is_expiration:
            continue

        parsed = parse_option_key(trade.match_key)
        if parsed is None:
            continue

        if (parsed.root, parsed.strike, parsed.call_put) == (root, strike, call_put):
            legs.append((trade, parsed.expiry_date))

    legs.sort(key=lambda pair: (pair[0].timestamp, pair[0].seq))

    ledgers: dict[datetime.date, list[Lot]] = {}
    pnl: dict[datetime.date, Decimal] = defaultdict(lambda: ZERO)
    credits = ZERO

    for trade, expiry in legs:
        lots, realized, _ = apply_to_lots(
            ledgers.get(expiry, []), trade.side, trade.qty, trade.price, trade.multiplier
        )

        if trade.side is Side.BUY:
            pnl[expiry] += realized

        if lots:
            ledgers[expiry] = lots
            continue

        ledgers.pop(expiry, None)
        if pnl[expiry] > 0:
            credits += pnl[expiry]

        pnl[expiry] = ZERO

    # partial closes still count
    for expiry in ledgers:
        if pnl[expiry] > 0:
            credits += pnl[expiry]

    return credits
