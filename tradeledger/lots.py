"""FIFO lot matching.

Each matching key owns a list of open lots, oldest first. An incoming trade closes
opposite-side lots in order and whatever quantity is left over opens a new lot:

    lots: [(BUY 10 @ 5), (BUY 5 @ 6)]
    SELL 12 @ 7 (multiplier 1)
      -> closes 10 against the first lot:  (7 - 5) * 10 = +20
      -> closes 2 against the second lot:  (7 - 6) * 2  = +2
    lots: [(BUY 3 @ 6)], realized +22, closed 12

Expirations are not price based: every lot closes at zero, so longs lose what they
paid and shorts keep what they collected.

Everything here is pure. Callers get new lists/mappings back and decide what to keep.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from .models import ZERO, Lot, MatchKey, Positions, Side, Trade


def apply_to_lots(
    lots: Sequence[Lot],
    side: Side,
    qty: int,
    price: Decimal,
    multiplier: Decimal,
) -> tuple[list[Lot], Decimal, int]:
    """Apply a BUY or SELL against existing lots using FIFO matching.

    Returns (updated lots, realized P&L, closed quantity)."""
    remaining = qty
    realized = ZERO
    closedQty = 0
    updated: list[Lot] = []

    for lot in lots:
        if remaining > 0 and lot.side is not side:
            matched = min(remaining, lot.qty)

            # buying back a short: we sold at lot.price, paid price
            # selling out a long: we paid lot.price, received price
            if side is Side.BUY:
                perUnit = lot.price - price
            else:
                perUnit = price - lot.price

            realized += perUnit * matched * multiplier
            closedQty += matched
            remaining -= matched

            if (leftover := lot.qty - matched) > 0:
                updated.append(Lot(lot.side, leftover, lot.price))
        else:
            updated.append(lot)

    if remaining > 0:
        updated.append(Lot(side, remaining, price))

    return updated, realized, closedQty


def apply_expiration(
    lots: Sequence[Lot], multiplier: Decimal
) -> tuple[list[Lot], Decimal, int]:
    """Close every lot at zero value.

    Long lots lose their full premium, short lots keep it."""
    realized = ZERO
    closedQty = 0
    for lot in lots:
        value = lot.price * lot.qty * multiplier
        realized += -value if lot.side is Side.BUY else value
        closedQty += lot.qty

    return [], realized, closedQty


def apply_lots_for(
    lots: Sequence[Lot], trade: Trade
) -> tuple[list[Lot], Decimal, int]:
    """Route a trade to the matching or expiration rule based on its side."""
    match trade.side:
        case Side.EXPIRE:
            return apply_expiration(lots, trade.multiplier)
        case Side.BUY | Side.SELL:
            return apply_to_lots(
                lots, trade.side, trade.qty, trade.price, trade.multiplier
            )


def store_lots(positions: Positions, key: MatchKey, lots: list[Lot]) -> Positions:
    """Return a copy of `positions` with `key` replaced by `lots` (or removed when empty)."""
    updated = dict(positions)
    if lots:
        updated[key] = lots
    else:
        updated.pop(key, None)

    return updated


def apply_trade(positions: Positions, trade: Trade) -> tuple[Positions, Decimal, int]:
    """Apply a trade to its own matching key.

    Returns (new positions mapping, realized P&L, closed quantity). The input mapping
    is left untouched."""
    lots = positions.get(trade.match_key, [])
    updated, realized, closedQty = apply_lots_for(lots, trade)

    if updated == lots:
        return positions, realized, closedQty

    return store_lots(positions, trade.match_key, updated), realized, closedQty


def preview_trade(positions: Positions, trade: Trade) -> Decimal:
    """Realized P&L the trade would produce against current lots, without storing anything."""
    _, realized, _ = apply_lots_for(positions.get(trade.match_key, []), trade)
    return realized


def total_qty(lots: Sequence[Lot]) -> int:
    return sum(lot.qty for lot in lots)


def average_price(lots: Sequence[Lot]) -> Decimal:
    """Quantity weighted average lot price.

    Lots are never stored with zero quantity, so a non-empty ledger always has a
    positive total."""
    return sum((lot.price * lot.qty for lot in lots), ZERO) / total_qty(lots)
