import datetime
from decimal import Decimal

import pytest

from tradeledger.lots import (
    apply_expiration,
    apply_to_lots,
    apply_trade,
    average_price,
    preview_trade,
)
from tradeledger.models import OPTION_MULTIPLIER, Asset, Lot, Side, Trade

D = Decimal
ONE = D(1)

EXAMPLE_DATE = datetime.datetime(2026, 2, 3, 10, 30)


def stock(seq, side, qty, price, symbol="AAPL"):
    return Trade(
        seq=seq,
        timestamp=EXAMPLE_DATE,
        instrument=symbol,
        match_key=f"stock:{symbol}",
        asset=Asset.STOCK,
        option_kind="",
        side=side,
        qty=qty,
        price=D(price),
        multiplier=ONE,
    )


def test_fifo_consumes_oldest_first():
    lots = [Lot(Side.BUY, 10, D(5)), Lot(Side.BUY, 5, D(6))]
    updated, realized, closed = apply_to_lots(lots, Side.SELL, 12, D(7), ONE)

    # 10 closed at +2 against the first lot, 2 closed at +1 against the second
    assert realized == D(2) * 10 + D(1) * 2
    assert closed == 12
    assert updated == [Lot(Side.BUY, 3, D(6))]


def test_fifo_multiplier():
    lots = [Lot(Side.BUY, 10, D(5)), Lot(Side.BUY, 5, D(6))]
    _, realized, _ = apply_to_lots(lots, Side.SELL, 12, D(7), OPTION_MULTIPLIER)
    assert realized == D(2200)


def test_buy_closes_short():
    lots = [Lot(Side.SELL, 2, D("3.50"))]
    updated, realized, closed = apply_to_lots(
        lots, Side.BUY, 1, D("1.00"), OPTION_MULTIPLIER
    )

    # sold at 3.50, bought back at 1.00
    assert realized == D(250)
    assert closed == 1
    assert updated == [Lot(Side.SELL, 1, D("3.50"))]


def test_buy_closes_short_at_loss():
    lots = [Lot(Side.SELL, 1, D("1.00"))]
    updated, realized, closed = apply_to_lots(
        lots, Side.BUY, 1, D("1.75"), OPTION_MULTIPLIER
    )

    assert realized == D(-75)
    assert closed == 1
    assert updated == []


def test_leftover_flips_side():
    lots = [Lot(Side.BUY, 2, D(1))]
    updated, realized, closed = apply_to_lots(lots, Side.SELL, 5, D(2), ONE)

    assert realized == D(2)
    assert closed == 2
    assert updated == [Lot(Side.SELL, 3, D(2))]


def test_same_side_appends_new_lot():
    lots = [Lot(Side.BUY, 1, D(1))]
    updated, realized, closed = apply_to_lots(lots, Side.BUY, 2, D(2), ONE)

    assert realized == 0
    assert closed == 0
    assert updated == [Lot(Side.BUY, 1, D(1)), Lot(Side.BUY, 2, D(2))]


def test_input_lots_untouched():
    lots = [Lot(Side.BUY, 10, D(5))]
    apply_to_lots(lots, Side.SELL, 4, D(6), ONE)
    assert lots == [Lot(Side.BUY, 10, D(5))]


def test_expiration_long_loses_premium():
    updated, realized, closed = apply_expiration(
        [Lot(Side.BUY, 1, D("3.50"))], OPTION_MULTIPLIER
    )
    assert updated == []
    assert realized == D(-350)
    assert closed == 1


def test_expiration_short_keeps_premium():
    updated, realized, closed = apply_expiration(
        [Lot(Side.SELL, 1, D("3.50"))], OPTION_MULTIPLIER
    )
    assert updated == []
    assert realized == D(350)
    assert closed == 1


def test_expiration_of_nothing():
    assert apply_expiration([], OPTION_MULTIPLIER) == ([], 0, 0)


def test_apply_trade_is_pure_and_prunes_empty_keys():
    positions = {"stock:AAPL": [Lot(Side.BUY, 10, D(100))]}

    updated, realized, closed = apply_trade(positions, stock(1, Side.SELL, 10, "110"))

    assert realized == D(100)
    assert closed == 10
    assert "stock:AAPL" not in updated

    # caller's mapping is unchanged
    assert positions == {"stock:AAPL": [Lot(Side.BUY, 10, D(100))]}


def test_apply_trade_opens_new_key():
    updated, realized, closed = apply_trade({}, stock(1, Side.BUY, 5, "20", "MSFT"))
    assert updated == {"stock:MSFT": [Lot(Side.BUY, 5, D(20))]}
    assert (realized, closed) == (0, 0)


def test_preview_does_not_store():
    positions = {"stock:AAPL": [Lot(Side.BUY, 10, D(100))]}
    assert preview_trade(positions, stock(1, Side.SELL, 5, "90")) == D(-50)
    assert positions == {"stock:AAPL": [Lot(Side.BUY, 10, D(100))]}


def test_zero_lot_rejected():
    with pytest.raises(ValueError):
        Lot(Side.BUY, 0, D(1))


def test_negative_price_rejected():
    with pytest.raises(ValueError):
        stock(1, Side.BUY, 1, "-1")


def test_average_price():
    lots = [Lot(Side.BUY, 10, D(100)), Lot(Side.BUY, 10, D(110))]
    assert average_price(lots) == D(105)
