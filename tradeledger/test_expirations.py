import datetime
from decimal import Decimal

from tradeledger.expirations import build_expiration_trades, expiration_timestamp
from tradeledger.fmt import format_option_display
from tradeledger.models import OPTION_MULTIPLIER, Asset, Side, Trade
from tradeledger.symbols import option_key, parse_option_symbol, strategy_key

D = Decimal

TODAY = datetime.date(2026, 3, 1)
OPENED = datetime.datetime(2026, 2, 2, 10, 0)

C25_FEB13 = "GME260213C00025000"
C30_FEB13 = "GME260213C00030000"
C25_FEB20 = "GME260220C00025000"


def opt(seq, occ, side=Side.BUY, qty=1, price="1.00", parent=None, when=OPENED):
    p = parse_option_symbol(occ)
    return Trade(
        seq=seq,
        timestamp=when,
        instrument=format_option_display(p.root, p.expiry_date, p.strike),
        match_key=option_key(occ),
        asset=Asset.OPTION,
        option_kind="Call" if p.call_put == "C" else "Put",
        side=side,
        qty=qty,
        price=D(price),
        multiplier=OPTION_MULTIPLIER,
        expiry=p.expiry_date,
        parent_strategy_seq=parent,
    )


def strat(seq, kind, occs, side=Side.BUY, qty=1, price="1.00", when=OPENED):
    parsed = [parse_option_symbol(o) for o in occs]
    expiry = max(p.expiry_date for p in parsed)
    return Trade(
        seq=seq,
        timestamp=when,
        instrument=f"GME {expiry:%d %b %Y}",
        match_key=strategy_key(kind, "GME", expiry, [(p.call_put, p.strike) for p in parsed]),
        asset=Asset.OPTION_STRATEGY,
        option_kind=kind,
        side=side,
        qty=qty,
        price=D(price),
        multiplier=OPTION_MULTIPLIER,
        expiry=expiry,
    )


def test_empty():
    assert build_expiration_trades([], TODAY) == []


def test_one_expiration_per_key():
    trades = [
        opt(0, C25_FEB13, Side.BUY, 2, "1.00"),
        opt(1, C25_FEB13, Side.SELL, 1, "2.00"),
    ]

    (expired,) = build_expiration_trades(trades, TODAY)

    assert expired.seq == 2
    assert expired.side is Side.EXPIRE
    assert expired.qty == 0
    assert expired.price == 0
    assert expired.match_key == option_key(C25_FEB13)
    assert expired.timestamp == datetime.datetime(2026, 2, 13, 23, 59, 59)
    assert expired.timestamp == expiration_timestamp(datetime.date(2026, 2, 13))
    assert expired.multiplier == OPTION_MULTIPLIER
    assert expired.parent_strategy_seq is None


def test_expiring_today_is_not_expired_yet():
    trades = [opt(0, C25_FEB13)]
    assert build_expiration_trades(trades, datetime.date(2026, 2, 13)) == []
    assert len(build_expiration_trades(trades, datetime.date(2026, 2, 14))) == 1


def test_stocks_never_expire():
    trades = [
        Trade(
            seq=0,
            timestamp=OPENED,
            instrument="AAPL",
            match_key="stock:AAPL",
            asset=Asset.STOCK,
            option_kind="",
            side=Side.BUY,
            qty=10,
            price=D(100),
            multiplier=D(1),
        )
    ]
    assert build_expiration_trades(trades, TODAY) == []


def test_vertical_keeps_linkage_parents_first():
    trades = [
        strat(10, "Vertical", [C25_FEB13, C30_FEB13]),
        opt(11, C25_FEB13, Side.BUY, parent=10),
        opt(12, C30_FEB13, Side.SELL, parent=10),
    ]

    parent, leg1, leg2 = build_expiration_trades(trades, TODAY)

    assert parent.asset is Asset.OPTION_STRATEGY
    assert parent.seq == 13
    assert (leg1.seq, leg2.seq) == (14, 15)
    assert leg1.parent_strategy_seq == 13
    assert leg2.parent_strategy_seq == 13
    assert leg1.timestamp == parent.timestamp


def test_calendar_legs_detached_from_parent():
    # parent expires with the far leg; the near leg expires a week earlier, which
    # leaves only one leg attached, so neither stays linked
    trades = [
        strat(0, "Calendar", [C25_FEB13, C25_FEB20]),
        opt(1, C25_FEB13, Side.SELL, parent=0),
        opt(2, C25_FEB20, Side.BUY, parent=0),
    ]

    expired = build_expiration_trades(trades, TODAY)
    legs = [t for t in expired if not t.is_strategy_parent]

    assert len(expired) == 3
    assert all(leg.parent_strategy_seq is None for leg in legs)


def test_leg_without_expiring_parent_is_standalone():
    # parent not part of the batch at all
    trades = [
        opt(5, C25_FEB13, Side.BUY, parent=1),
        opt(6, C30_FEB13, Side.SELL, parent=1),
    ]

    expired = build_expiration_trades(trades, TODAY)
    assert [t.parent_strategy_seq for t in expired] == [None, None]
    assert [t.seq for t in expired] == [7, 8]
