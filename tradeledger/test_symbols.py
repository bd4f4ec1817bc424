import datetime
from decimal import Decimal

from tradeledger.fmt import (
    format_expiry,
    format_option_display,
    format_pnl,
    format_price,
    format_qty,
    mn,
)
from tradeledger.models import Asset, OptionParsed
from tradeledger.symbols import (
    detect_strategy_kind,
    occ_symbol,
    option_key,
    option_symbol,
    parse_option_key,
    parse_option_symbol,
    stock_key,
    strategy_key,
    strategy_kind_from_name,
)

D = Decimal
FEB13 = datetime.date(2026, 2, 13)
FEB20 = datetime.date(2026, 2, 20)


def test_parse_occ():
    assert parse_option_symbol("GME260213C00025000") == OptionParsed(
        root="GME", expiry_date=FEB13, call_put="C", strike=D(25)
    )

    # fractional strikes and lowercase input
    spx = parse_option_symbol(" spxw261218p06845500 ")
    assert spx.root == "SPXW"
    assert spx.call_put == "P"
    assert spx.strike == D("6845.5")


def test_parse_occ_rejects_garbage():
    assert parse_option_symbol("AAPL") is None
    assert parse_option_symbol("GME261332C00025000") is None
    assert parse_option_symbol("GME260213X00025000") is None


def test_keys():
    assert stock_key("AAPL") == "stock:AAPL"
    assert option_key("GME260213C00025000") == "option:GME260213C00025000"

    assert option_symbol("option:GME260213C00025000") == "GME260213C00025000"
    assert option_symbol("stock:AAPL") is None
    assert parse_option_key("stock:AAPL") is None
    assert parse_option_key("option:GME260213C00025000").strike == D(25)


def test_strategy_key_orders_and_dedups_legs():
    legs = [("P", D(20)), ("C", D("30.00")), ("C", D(25)), ("C", D(25))]

    assert (
        strategy_key("Vertical", "GME", FEB20, legs)
        == "strategy:Vertical:GME:2026-02-20:C25,C30,P20"
    )
    assert strategy_key("Spread", "GME", FEB20, []) == "strategy:Spread:GME:2026-02-20"


def test_occ_symbol():
    assert occ_symbol("gme", FEB13, "C", D("24.00")) == "GME260213C00024000"
    assert occ_symbol("SPXW", FEB13, "P", D("6845.5")) == "SPXW260213P06845500"


def test_strategy_kind_from_name():
    assert strategy_kind_from_name("Iron Condor") == "IronCondor"
    assert strategy_kind_from_name("Condor") == "Condor"
    assert strategy_kind_from_name("Calendar Spread") == "Calendar"
    assert strategy_kind_from_name("Vertical") == "Vertical"
    assert strategy_kind_from_name("Custom") == "Strategy"


def test_detect_strategy_kind():
    def leg(expiry, cp, strike):
        return OptionParsed("GME", expiry, cp, D(strike))

    assert detect_strategy_kind([leg(FEB13, "C", 25), leg(FEB20, "C", 25)]) == "Calendar"
    assert detect_strategy_kind([leg(FEB13, "C", 25), leg(FEB13, "C", 30)]) == "Vertical"
    assert detect_strategy_kind([leg(FEB13, "C", 25), leg(FEB20, "C", 30)]) == "Diagonal"
    assert detect_strategy_kind([leg(FEB13, "C", 25), leg(FEB13, "P", 25)]) == "Spread"

    condor = [leg(FEB13, "C", s) for s in (20, 25, 30, 35)]
    assert detect_strategy_kind(condor) == "Condor"

    ironCondor = [leg(FEB13, "P", 20), leg(FEB13, "P", 25), leg(FEB13, "C", 30), leg(FEB13, "C", 35)]
    assert detect_strategy_kind(ironCondor) == "IronCondor"


def test_formatting():
    assert mn(D("1234.5")) == "$1,234.50"
    assert mn(D("-1234.5")) == "-$1,234.50"

    assert format_qty(D("25.500")) == "25.5"
    assert format_qty(D("100.00")) == "100"
    assert format_qty(3) == "3"
    assert format_qty(0) == "0"

    assert format_price(D("1.5"), Asset.OPTION) == "1.50"
    assert format_price(D("1.234"), Asset.OPTION) == "1.234"
    assert format_price(D("10"), Asset.OPTION_STRATEGY) == "10.00"
    assert format_price(D("100"), Asset.STOCK) == "100.00"
    assert format_price(D("12.346"), Asset.STOCK) == "12.35"

    assert format_pnl(D(100)) == "+100.00"
    assert format_pnl(D("-3.5")) == "-3.50"

    assert format_expiry(None) == "-"
    assert format_expiry(FEB13) == "13 Feb 2026"
    assert format_option_display("GME", FEB13, D("24.50")) == "GME 13 Feb 2026 $24.5"
