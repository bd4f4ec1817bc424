"""Synthetic expiration trades.

Options that reach their expiration date without an explicit closing trade still
need to leave the ledger. For every expired matching key we append one EXPIRE
trade at the end of the expiration day with zero quantity and zero price; the
matcher decides what it actually closes from whatever lots are left at that point
of the pass (possibly nothing).

Strategy linkage is rebuilt for the synthetic trades: a leg stays attached to its
parent only when the parent also gets a synthetic expiration on the same day, and
a "spread" left with fewer than two attached legs is broken back into independent
legs.
"""

from __future__ import annotations

import datetime
from collections import Counter
from collections.abc import Sequence
from dataclasses import replace
from typing import Final

from loguru import logger

from .models import ZERO, Side, Trade

EXPIRATION_TIME: Final = datetime.time(23, 59, 59)


def expiration_timestamp(expiry: datetime.date) -> datetime.datetime:
    return datetime.datetime.combine(expiry, EXPIRATION_TIME)


def first_expired_by_key(
    trades: Sequence[Trade], today: datetime.date
) -> dict[str, Trade]:
    """First trade seen for each matching key whose expiration is before `today`."""
    firsts: dict[str, Trade] = {}
    for trade in trades:
        if trade.expiry is None or trade.expiry >= today:
            continue

        firsts.setdefault(trade.match_key, trade)

    return firsts


def build_expiration_trades(
    trades: Sequence[Trade], today: datetime.date
) -> list[Trade]:
    """Generate EXPIRE trades for every expired instrument in `trades`.

    Sequence numbers continue after the highest real sequence number, strategy
    parents first, then legs and standalone options."""
    if not trades:
        return []

    nextSeq = max(t.seq for t in trades) + 1
    firsts = first_expired_by_key(trades, today)

    parents = [t for t in firsts.values() if t.is_strategy_parent]
    others = [t for t in firsts.values() if not t.is_strategy_parent]

    result: list[Trade] = []

    # original parent seq -> synthetic parent trade
    syntheticParents: dict[int, Trade] = {}
    for trade in parents:
        expired = synthesize(trade, nextSeq, parent=None)
        syntheticParents[trade.seq] = expired
        result.append(expired)
        nextSeq += 1

    legs: list[Trade] = []
    for trade in others:
        parent = None
        if trade.parent_strategy_seq is not None:
            found = syntheticParents.get(trade.parent_strategy_seq)
            if found and found.expiry == trade.expiry:
                parent = found.seq

        expired = synthesize(trade, nextSeq, parent=parent)
        legs.append(expired)
        nextSeq += 1

    # a one-legged spread is just an option: detach it
    legCounts = Counter(
        leg.parent_strategy_seq
        for leg in legs
        if leg.parent_strategy_seq is not None
    )
    for idx, leg in enumerate(legs):
        if leg.parent_strategy_seq is not None and legCounts[leg.parent_strategy_seq] < 2:
            legs[idx] = replace(leg, parent_strategy_seq=None)

    result.extend(legs)

    logger.debug(
        "Synthesized {} expirations ({} strategy parents) before {}",
        len(result),
        len(parents),
        today,
    )

    return result


def synthesize(trade: Trade, seq: int, parent: int | None) -> Trade:
    """EXPIRE trade at the end of `trade`'s expiration day. `trade.expiry` must be set."""
    return Trade(
        seq=seq,
        timestamp=expiration_timestamp(trade.expiry),
        instrument=trade.instrument,
        match_key=trade.match_key,
        asset=trade.asset,
        option_kind=trade.option_kind,
        side=Side.EXPIRE,
        qty=0,
        price=ZERO,
        multiplier=trade.multiplier,
        expiry=trade.expiry,
        parent_strategy_seq=parent,
    )
