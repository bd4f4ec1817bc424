"""Realized P&L ledger over a complete batch of trades.

The report is a fold over trades ordered by (timestamp, seq):

    state0 = ReportState(cash=initial)
    state1, row1 = step(state0, trade1)
    state2, row2 = step(state1, trade2)
    ...

Each step applies the trade to the lot ledger, then decides what (if anything) the
trade contributes to the running totals.

Strategy orders are the interesting part. A multi-leg order is one parent trade
carrying the net price plus one trade per leg:

    - legs always update their own option ledgers, but their rows are informational:
      zero realized, running totals frozen at the value before the leg.
    - the parent carries the P&L. It matches against its own strategy key first. When
      a SELL parent finds nothing to close there (a spread opened leg-by-leg or at a
      debit under a different key), realized P&L is recomputed from what the legs
      would close against their own ledgers. BUY parents never take the leg-derived
      value; their cost is entirely the parent price.
    - an expiring parent expires its legs' ledgers when it has at least two legs and
      reports their combined P&L; otherwise it only clears its own key.

Expirations that close nothing produce no row, and neither do the legs hanging off
such a parent.
"""

from __future__ import annotations

import datetime
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal

from loguru import logger

from .expirations import build_expiration_trades
from .fees import FeeTable, lookup_fee
from .lots import apply_lots_for, apply_trade, preview_trade, store_lots
from .models import ZERO, Positions, ReportRow, Side, Trade


@dataclass(slots=True)
class TradeBook:
    """Read-only index over the trades of one pass.

    Legs reference parents only by sequence number; this resolves those references."""

    trades: list[Trade]
    bySeq: dict[int, Trade] = field(init=False)
    legsByParent: dict[int, list[Trade]] = field(init=False)

    def __post_init__(self):
        self.bySeq = {t.seq: t for t in self.trades}

        legs: dict[int, list[Trade]] = defaultdict(list)
        for trade in self.trades:
            if (parent := self.parent_of(trade)) is not None:
                legs[parent].append(trade)

        self.legsByParent = dict(legs)

    def parent_of(self, trade: Trade) -> int | None:
        """Parent seq for a leg, or None for standalone trades and dangling references."""
        if trade.parent_strategy_seq is None:
            return None

        parent = self.bySeq.get(trade.parent_strategy_seq)
        if parent is None or not parent.is_strategy_parent:
            return None

        return parent.seq

    def legs_of(self, parent: Trade) -> list[Trade]:
        return self.legsByParent.get(parent.seq, [])


@dataclass(slots=True, frozen=True)
class ReportState:
    positions: Positions = field(default_factory=dict)
    running: Decimal = ZERO
    cash: Decimal = ZERO
    initial_amount: Decimal = ZERO

    # parents whose rows were dropped (their legs' rows are dropped too)
    suppressed: frozenset[int] = frozenset()

    # leg seq -> quantity closed on that leg by its parent's expiration
    expired_legs: Mapping[int, int] = field(default_factory=dict)

    @property
    def total(self) -> Decimal:
        return self.initial_amount + self.running


@dataclass(slots=True, frozen=True)
class TradeResult:
    positions: Positions
    realized: Decimal = ZERO
    closed_qty: int = 0
    expired_legs: Mapping[int, int] = field(default_factory=dict)


def process_trade(positions: Positions, trade: Trade, book: TradeBook) -> TradeResult:
    """Apply one trade to the ledger and compute its realized P&L and closed quantity."""
    if not trade.is_strategy_parent:
        updated, realized, closedQty = apply_trade(positions, trade)
        return TradeResult(updated, realized, closedQty)

    match trade.side:
        case Side.BUY | Side.SELL:
            return process_strategy_fill(positions, trade, book)
        case Side.EXPIRE:
            return process_strategy_expiration(positions, trade, book)


def process_strategy_fill(
    positions: Positions, trade: Trade, book: TradeBook
) -> TradeResult:
    lots = positions.get(trade.match_key, [])
    updated, realized, closedQty = apply_lots_for(lots, trade)

    # Closing a spread whose parent key holds nothing: the economics live in the legs.
    # BUY parents are left alone; their opening cost is the parent price.
    if trade.side is Side.SELL and realized == 0 and closedQty == 0:
        realized = sum(
            (preview_trade(positions, leg) for leg in book.legs_of(trade)), ZERO
        )
        logger.debug(
            "[{}] {} closes nothing on its own key, using leg P&L {}",
            trade.seq,
            trade.instrument,
            realized,
        )

    return TradeResult(store_lots(positions, trade.match_key, updated), realized, closedQty)


def process_strategy_expiration(
    positions: Positions, trade: Trade, book: TradeBook
) -> TradeResult:
    legs = book.legs_of(trade)
    if len(legs) < 2:
        # legs (if any) are expired on their own elsewhere in the pass
        return TradeResult(store_lots(positions, trade.match_key, []))

    realized = ZERO
    closedQty = 0
    expired: dict[int, int] = {}
    for leg in legs:
        lots = positions.get(leg.match_key, [])
        remaining, legRealized, legClosed = apply_lots_for(
            lots, replace(leg, side=Side.EXPIRE)
        )
        positions = store_lots(positions, leg.match_key, remaining)
        realized += legRealized
        closedQty = max(closedQty, legClosed)
        expired[leg.seq] = legClosed

    positions = store_lots(positions, trade.match_key, [])
    return TradeResult(positions, realized, closedQty, expired)


def step(
    state: ReportState,
    trade: Trade,
    book: TradeBook,
    fees: FeeTable | None = None,
) -> tuple[ReportState, ReportRow | None]:
    """Advance the report by one trade, returning the new state and the row to emit (if any)."""
    result = process_trade(state.positions, trade, book)
    state = replace(
        state,
        positions=result.positions,
        expired_legs={**state.expired_legs, **result.expired_legs}
        if result.expired_legs
        else state.expired_legs,
    )

    if (parent := book.parent_of(trade)) is not None:
        if parent in state.suppressed:
            return state, None

        qty = state.expired_legs.get(trade.seq, 0) if trade.is_expiration else trade.qty
        return state, ReportRow(
            timestamp=trade.timestamp,
            instrument=trade.instrument,
            asset=trade.asset,
            option_kind=trade.option_kind or "-",
            side=trade.side,
            qty=qty,
            price=trade.price,
            closed_qty=0,
            realized=ZERO,
            running=state.running,
            cash=state.cash,
            total=state.total,
            fees=lookup_fee(fees, trade),
            is_strategy_leg=True,
        )

    if trade.is_expiration and result.closed_qty == 0:
        if trade.is_strategy_parent:
            state = replace(state, suppressed=state.suppressed | {trade.seq})

        return state, None

    fee = lookup_fee(fees, trade, book.legs_of(trade))
    realized = result.realized - fee

    match trade.side:
        case Side.BUY:
            cash = state.cash - trade.notional
        case Side.SELL:
            cash = state.cash + trade.notional
        case Side.EXPIRE:
            cash = state.cash

    state = replace(state, running=state.running + realized, cash=cash - fee)

    return state, ReportRow(
        timestamp=trade.timestamp,
        instrument=trade.instrument,
        asset=trade.asset,
        option_kind=trade.option_kind or "-",
        side=trade.side,
        qty=result.closed_qty if trade.is_expiration else trade.qty,
        price=trade.price,
        closed_qty=result.closed_qty,
        realized=realized,
        running=state.running,
        cash=state.cash,
        total=state.total,
        fees=fee,
    )


def ordered_trades(
    trades: Sequence[Trade],
    since: datetime.date | None = None,
    today: datetime.date | None = None,
) -> list[Trade]:
    """Trades on or after `since` plus their synthetic expirations, in (timestamp, seq) order."""
    if today is None:
        today = datetime.date.today()

    kept = [t for t in trades if since is None or t.timestamp.date() >= since]
    kept.extend(build_expiration_trades(kept, today))

    return sorted(kept, key=lambda t: (t.timestamp, t.seq))


def compute_report(
    trades: Sequence[Trade],
    since: datetime.date | None = None,
    initial_amount: Decimal = ZERO,
    fees: FeeTable | None = None,
    today: datetime.date | None = None,
) -> tuple[list[ReportRow], Positions, Decimal]:
    """Compute the realized P&L report.

    Returns (rows, final positions, final running realized P&L)."""
    ordered = ordered_trades(trades, since, today)
    book = TradeBook(ordered)

    state = ReportState(cash=initial_amount, initial_amount=initial_amount)
    rows: list[ReportRow] = []

    for trade in ordered:
        state, row = step(state, trade, book, fees)
        if row is not None:
            rows.append(row)

    logger.info(
        "Processed {} trades into {} rows, {} open keys, realized {}",
        len(ordered),
        len(rows),
        len(state.positions),
        state.running,
    )

    return rows, state.positions, state.running


def build_trade_index(trades: Iterable[Trade]) -> dict[str, Trade]:
    """Map each matching key to the first trade seen for it (used for display metadata)."""
    index: dict[str, Trade] = {}
    for trade in trades:
        index.setdefault(trade.match_key, trade)

    return index
