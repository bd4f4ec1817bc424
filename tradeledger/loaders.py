"""Load broker exports into Trade records and fee tables.

Order exports are JSON lines, one object per ticker, each with an `orderList`:

    {"orderList": [{"symbol": "GME $24.00", "subSymbol": "13 Feb 26 Call 100",
                    "filledTime": "02/03/2026 10:31:07 EST", "action": "BUY",
                    "quantity": "1", "filledPrice": "1.25", "fee": "0.03",
                    "commission": "0", "transactTime": 1770132667000}, ...]}

Orders sharing a `transactTime` were placed together, so they become one strategy
parent plus one leg trade each.

Trade CSV exports come in two flavors picked by file name: stock exports, and
"Options" exports where a strategy is one row with a Name and no Symbol followed
by its legs (Symbol, no Name) sharing the parent's Placed Time.

Sequence numbers are handed out in file order and can continue across files
through `seq_start`.
"""

from __future__ import annotations

import csv
import datetime
import re
from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path

import arrow  # type: ignore
import orjson
from loguru import logger

from .fees import FeeKey, OptionFees, add_fee
from .fmt import format_option_date, format_option_display
from .models import ZERO, Asset, OptionParsed, Side, Trade
from .symbols import (
    STRATEGY_PREFIX,
    detect_strategy_kind,
    occ_symbol,
    option_key,
    parse_option_symbol,
    stock_key,
    strategy_key,
    strategy_kind_from_name,
)

# "SPXW $6845.00" or "GME $24.00" -> root + strike
SYMBOL_RE = re.compile(r"^(.+?)\s+\$(.+)$")

# "13 Feb 26 Call 100" -> day, month, year, right, multiplier
SUBSYMBOL_RE = re.compile(r"^(\d{1,2})\s+(\w{3})\s+(\d{2,4})\s+(Call|Put)\s+(\d+)$")

TZ_SUFFIX_RE = re.compile(r"\s[A-Za-z]{3,4}$")
NUMERIC_RE = re.compile(r"[^\d.\-]")

TIME_FORMATS = ["MM/DD/YYYY HH:mm:ss", "M/D/YYYY H:mm:ss", "YYYY-MM-DD HH:mm:ss"]

PRICE_PLACES = Decimal("0.001")


def parse_time(value: str | None) -> datetime.datetime | None:
    """Parse a broker fill time, dropping any trailing timezone abbreviation."""
    if not value or not value.strip():
        return None

    text = TZ_SUFFIX_RE.sub("", value.strip())
    try:
        return arrow.get(text, TIME_FORMATS).naive
    except ValueError:
        return None


def parse_decimal(value) -> Decimal | None:
    """Parse broker numbers like "@1.25", "1,024.50", or "$3.00"."""
    if value is None:
        return None

    text = NUMERIC_RE.sub("", str(value).strip())
    if not text:
        return None

    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def parse_side(value: str | None) -> Side | None:
    match (value or "").strip().upper():
        case "BUY":
            return Side.BUY
        case "SELL":
            return Side.SELL
        case _:
            return None


def round_price(price: Decimal) -> Decimal:
    return price.quantize(PRICE_PLACES, rounding=ROUND_HALF_UP)


@dataclass(slots=True, frozen=True)
class ParsedOrder:
    option: OptionParsed
    occ: str
    filled: datetime.datetime
    transact: int
    side: Side
    qty: int
    price: Decimal
    fee: Decimal


def parse_order(elem: dict) -> ParsedOrder | None:
    """Convert one exported order into a ParsedOrder, or None if it can't be used."""
    try:
        symbol = elem["symbol"]
        subSymbol = elem["subSymbol"]
        transact = int(elem["transactTime"])
    except (KeyError, TypeError, ValueError):
        return None

    if not (sm := SYMBOL_RE.match(symbol.strip())):
        return None

    if not (sub := SUBSYMBOL_RE.match(subSymbol.strip())):
        return None

    root = sm.group(1).strip().upper()
    strike = parse_decimal(sm.group(2))
    day, month, year, right, _ = sub.groups()
    yearFormat = "%Y" if len(year) == 4 else "%y"
    try:
        expiry = datetime.datetime.strptime(
            f"{day} {month} {year}", f"%d %b {yearFormat}"
        ).date()
    except ValueError:
        return None

    filled = parse_time(elem.get("filledTime"))
    side = parse_side(elem.get("action"))
    qty = parse_decimal(elem.get("quantity"))
    price = parse_decimal(elem.get("filledPrice"))

    if strike is None or filled is None or side is None or not qty or price is None:
        return None

    if price < 0:
        return None

    callPut = "C" if right == "Call" else "P"
    fee = parse_decimal(elem.get("fee"))
    commission = parse_decimal(elem.get("commission"))
    if fee is None and commission is None:
        fee = OptionFees.forTrade(side, int(qty), price).total

    return ParsedOrder(
        option=OptionParsed(root, expiry, callPut, strike),
        occ=occ_symbol(root, expiry, callPut, strike),
        filled=filled,
        transact=transact,
        side=side,
        qty=int(qty),
        price=price,
        fee=(fee or ZERO) + (commission or ZERO),
    )


def load_orders_jsonl(
    path: str | Path, seq_start: int = 0
) -> tuple[list[Trade], dict[FeeKey, Decimal], int]:
    """Load an order export.

    Returns (trades, fee table keyed by (filled time, side, qty), next free seq)."""
    orders: list[ParsedOrder] = []
    skipped = 0

    with open(path, "rb") as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue

            try:
                doc = orjson.loads(line)
            except orjson.JSONDecodeError:
                logger.warning("[{}:{}] Skipping unparseable line", path, lineno)
                skipped += 1
                continue

            for elem in doc.get("orderList") or []:
                if (order := parse_order(elem)) is None:
                    skipped += 1
                    continue

                orders.append(order)

    if skipped:
        logger.warning("[{}] Skipped {} unusable orders", path, skipped)

    byTransact: dict[int, list[ParsedOrder]] = defaultdict(list)
    for order in sorted(orders, key=lambda o: o.transact):
        byTransact[order.transact].append(order)

    trades: list[Trade] = []
    fees: dict[FeeKey, Decimal] = {}
    seq = seq_start

    for transact in sorted(byTransact):
        group = byTransact[transact]
        if len(group) >= 2:
            seq = build_strategy_trades(group, trades, fees, seq)
        else:
            seq = build_standalone_trade(group[0], trades, fees, seq)

    logger.info("[{}] Loaded {} trades from {} orders", path, len(trades), len(orders))

    return trades, fees, seq


def option_trade(order: ParsedOrder, seq: int, parent: int | None = None) -> Trade:
    o = order.option
    return Trade(
        seq=seq,
        timestamp=order.filled,
        instrument=format_option_display(o.root, o.expiry_date, o.strike),
        match_key=option_key(order.occ),
        asset=Asset.OPTION,
        option_kind="Call" if o.call_put == "C" else "Put",
        side=order.side,
        qty=order.qty,
        price=round_price(order.price),
        multiplier=Asset.OPTION.multiplier,
        expiry=o.expiry_date,
        parent_strategy_seq=parent,
    )


def build_standalone_trade(
    order: ParsedOrder, trades: list[Trade], fees: dict[FeeKey, Decimal], seq: int
) -> int:
    trades.append(option_trade(order, seq))
    add_fee(fees, (order.filled, order.side, order.qty), order.fee)
    return seq + 1


def build_strategy_trades(
    orders: list[ParsedOrder], trades: list[Trade], fees: dict[FeeKey, Decimal], seq: int
) -> int:
    first = orders[0]
    qty = first.qty

    # parent price from raw (unrounded) leg prices to keep sub-penny precision
    netCash = sum(
        (o.price * o.qty if o.side is Side.SELL else -o.price * o.qty for o in orders),
        ZERO,
    )
    side = Side.SELL if netCash >= 0 else Side.BUY

    legs = [o.option for o in orders]
    kind = detect_strategy_kind(legs)
    expiry = max(leg.expiry_date for leg in legs)
    root = first.option.root

    parentSeq = seq
    trades.append(
        Trade(
            seq=parentSeq,
            timestamp=first.filled,
            instrument=f"{root} {format_option_date(expiry)}",
            match_key=strategy_key(
                kind, root, expiry, ((leg.call_put, leg.strike) for leg in legs)
            ),
            asset=Asset.OPTION_STRATEGY,
            option_kind=kind,
            side=side,
            qty=qty,
            price=abs(netCash) / qty,
            multiplier=Asset.OPTION_STRATEGY.multiplier,
            expiry=expiry,
        )
    )
    seq += 1

    for order in orders:
        trades.append(option_trade(order, seq, parent=parentSeq))
        add_fee(fees, (order.filled, order.side, order.qty), order.fee)
        seq += 1

    return seq


def load_fee_csv(path: str | Path) -> dict[FeeKey, Decimal]:
    """Load a fee export with Time, Side, Quantity, and Fees columns, summing duplicate keys."""
    fees: dict[FeeKey, Decimal] = {}
    skipped = 0

    with open(path, newline="") as f:
        for row in csv.DictReader(f):
            if not any((v or "").strip() for v in row.values()):
                continue

            when = parse_time(row.get("Time"))
            side = parse_side(row.get("Side"))
            qty = parse_decimal(row.get("Quantity"))
            amount = parse_decimal(row.get("Fees"))

            if when is None or side is None or qty is None or amount is None:
                skipped += 1
                continue

            add_fee(fees, (when, side, int(qty)), amount)

    if skipped:
        logger.warning("[{}] Skipped {} unusable fee rows", path, skipped)

    return fees


@dataclass(slots=True, frozen=True)
class RawTrade:
    """One row of a trade CSV export, before it becomes a Trade."""

    name: str
    symbol: str
    side: Side | None
    status: str
    filled: int
    price: Decimal | None
    placed: datetime.datetime | None
    filled_at: datetime.datetime | None

    @property
    def timestamp(self) -> datetime.datetime | None:
        return self.filled_at or self.placed

    @property
    def is_filled(self) -> bool:
        return (
            (not self.status or self.status.lower() == "filled")
            and self.side is not None
            and self.filled > 0
            and self.price is not None
            and self.price >= 0
            and self.timestamp is not None
        )

    @property
    def is_strategy_parent(self) -> bool:
        return bool(self.name) and not self.symbol


def parse_trade_row(row: dict) -> RawTrade:
    def text(name):
        return (row.get(name) or "").strip()

    filled = parse_decimal(row.get("Filled"))
    price = parse_decimal(row.get("Avg Price"))
    if price is None:
        price = parse_decimal(row.get("Price"))

    return RawTrade(
        name=text("Name"),
        symbol=text("Symbol"),
        side=parse_side(row.get("Side")),
        status=text("Status"),
        filled=int(filled) if filled else 0,
        price=price,
        placed=parse_time(row.get("Placed Time")),
        filled_at=parse_time(row.get("Filled Time")),
    )


def load_trades_csv(path: str | Path, seq_start: int = 0) -> tuple[list[Trade], int]:
    """Load a trade CSV export, keeping filled Buy/Sell rows only.

    Returns (trades, next free seq)."""
    with open(path, newline="") as f:
        raw = [
            parse_trade_row(row)
            for row in csv.DictReader(f)
            if any((v or "").strip() for v in row.values() if isinstance(v, str))
        ]

    if negative := sum(1 for rt in raw if rt.price is not None and rt.price < 0):
        logger.warning("[{}] Skipping {} rows with negative prices", path, negative)

    filled = [rt for rt in raw if rt.is_filled]
    if len(filled) != len(raw):
        logger.info("[{}] Ignoring {} unfilled or incomplete rows", path, len(raw) - len(filled))

    if "options" in Path(path).name.lower():
        trades, seq = build_option_trades(filled, seq_start)
    else:
        trades, seq = build_stock_trades(filled, seq_start)

    logger.info("[{}] Loaded {} trades", path, len(trades))

    return trades, seq


def build_stock_trades(rows: list[RawTrade], seq: int) -> tuple[list[Trade], int]:
    trades = []
    for rt in rows:
        if not rt.symbol:
            continue

        trades.append(
            Trade(
                seq=seq,
                timestamp=rt.timestamp,
                instrument=rt.symbol,
                match_key=stock_key(rt.symbol),
                asset=Asset.STOCK,
                option_kind="",
                side=rt.side,
                qty=rt.filled,
                price=rt.price,
                multiplier=Asset.STOCK.multiplier,
            )
        )
        seq += 1

    return trades, seq


def build_option_trades(rows: list[RawTrade], seq: int) -> tuple[list[Trade], int]:
    """Option rows: strategy parents, their legs, and standalone contracts."""
    parentTimes = {rt.placed for rt in rows if rt.is_strategy_parent and rt.placed}

    # placed time -> parsed legs of the strategy placed then
    strategyLegs: dict[datetime.datetime, list[OptionParsed]] = defaultdict(list)
    for rt in rows:
        if rt.placed in parentTimes and rt.symbol:
            if parsed := parse_option_symbol(rt.symbol):
                strategyLegs[rt.placed].append(parsed)

    trades: list[Trade] = []
    parentSeqs: dict[datetime.datetime, int] = {}

    for rt in rows:
        if rt.is_strategy_parent:
            trades.append(strategy_parent_trade(rt, seq, strategyLegs.get(rt.placed, [])))
            if rt.placed:
                parentSeqs[rt.placed] = seq

            seq += 1
            continue

        if not rt.symbol:
            continue

        if rt.placed in parentTimes and not rt.name:
            # legs listed before their parent row have nothing to attach to
            if (parent := parentSeqs.get(rt.placed)) is None:
                continue

            trades.append(csv_option_trade(rt, seq, parent))
        else:
            trades.append(csv_option_trade(rt, seq, None))

        seq += 1

    return trades, seq


def strategy_parent_trade(rt: RawTrade, seq: int, legs: list[OptionParsed]) -> Trade:
    kind = strategy_kind_from_name(rt.name)

    if legs:
        root = legs[0].root
        expiry = max(leg.expiry_date for leg in legs)
        instrument = f"{root} {format_option_date(expiry)}"
        key = strategy_key(kind, root, expiry, ((leg.call_put, leg.strike) for leg in legs))
    else:
        expiry = None
        instrument = rt.name
        key = f"{STRATEGY_PREFIX}{rt.name}"

    return Trade(
        seq=seq,
        timestamp=rt.timestamp,
        instrument=instrument,
        match_key=key,
        asset=Asset.OPTION_STRATEGY,
        option_kind=kind,
        side=rt.side,
        qty=rt.filled,
        price=rt.price,
        multiplier=Asset.OPTION_STRATEGY.multiplier,
        expiry=expiry,
    )


def csv_option_trade(rt: RawTrade, seq: int, parent: int | None) -> Trade:
    if parsed := parse_option_symbol(rt.symbol):
        instrument = format_option_display(parsed.root, parsed.expiry_date, parsed.strike)
        kind = "Call" if parsed.call_put == "C" else "Put"
        expiry = parsed.expiry_date
    else:
        instrument, kind, expiry = rt.symbol, "Option", None

    return Trade(
        seq=seq,
        timestamp=rt.timestamp,
        instrument=instrument,
        match_key=option_key(rt.symbol),
        asset=Asset.OPTION,
        option_kind=kind,
        side=rt.side,
        qty=rt.filled,
        price=rt.price,
        multiplier=Asset.OPTION.multiplier,
        expiry=expiry,
        parent_strategy_seq=parent,
    )
