"""Tabular views of report and position rows.

Renderers only format; all numbers come from the ledger unchanged."""

from collections.abc import Sequence
from decimal import Decimal

import pandas as pd  # type: ignore

from .fmt import format_expiry, format_pnl, format_price, format_qty, mn
from .models import ZERO, PositionRow, ReportRow

LEG_PREFIX = "  > "

REPORT_COLUMNS = [
    "Date",
    "Instrument",
    "Asset",
    "Option",
    "Side",
    "Qty",
    "Price",
    "Fees",
    "Closed Qty",
    "Realized P&L",
    "Running P&L",
    "Cash",
    "Total",
]

POSITION_COLUMNS = [
    "Instrument",
    "Asset",
    "Option",
    "Side",
    "Qty",
    "Avg Price",
    "Initial Price",
    "Expiry",
]

DAILY_COLUMNS = ["Date", "Daily P&L", "Cumulative P&L"]


def format_fee(fees: Decimal) -> str:
    return f"{fees:.2f}" if fees > 0 else "-"


def report_frame(rows: Sequence[ReportRow]) -> pd.DataFrame:
    records = []
    for row in rows:
        if row.is_strategy_leg:
            records.append(
                [
                    "",
                    f"{LEG_PREFIX}{row.instrument}",
                    str(row.asset),
                    row.option_kind,
                    str(row.side),
                    format_qty(row.qty),
                    format_price(row.price, row.asset),
                    format_fee(row.fees),
                    "-",
                    "",
                    "",
                    "",
                    "",
                ]
            )
            continue

        records.append(
            [
                row.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                row.instrument,
                str(row.asset),
                row.option_kind,
                str(row.side),
                format_qty(row.qty),
                format_price(row.price, row.asset),
                format_fee(row.fees),
                format_qty(row.closed_qty) if row.closed_qty else "-",
                format_pnl(row.realized),
                format_pnl(row.running),
                mn(row.cash),
                mn(row.total),
            ]
        )

    return pd.DataFrame(records, columns=REPORT_COLUMNS)


def positions_frame(rows: Sequence[PositionRow]) -> pd.DataFrame:
    records = []
    for row in rows:
        # grouped rows show the roll-adjusted basis when one exists
        price = row.adjusted_avg_price if row.adjusted_avg_price is not None else row.avg_price

        initial = "-"
        if row.initial_avg_price is not None and row.initial_avg_price != price:
            initial = format_price(row.initial_avg_price, row.asset)

        records.append(
            [
                f"{LEG_PREFIX}{row.instrument}" if row.is_strategy_leg else row.instrument,
                str(row.asset),
                row.option_kind,
                str(row.side),
                format_qty(row.qty),
                format_price(price, row.asset),
                initial,
                format_expiry(row.expiry),
            ]
        )

    return pd.DataFrame(records, columns=POSITION_COLUMNS)


def daily_pnl_frame(rows: Sequence[ReportRow]) -> pd.DataFrame:
    """Realized P&L per day plus the running total at the day's last realization."""
    df = pd.DataFrame(
        [
            (row.timestamp.date(), row.realized, row.running)
            for row in rows
            if not row.is_strategy_leg and row.realized != 0
        ],
        columns=["date", "realized", "running"],
    )

    if df.empty:
        return pd.DataFrame([], columns=DAILY_COLUMNS)

    # rows arrive in ledger order, so "last" is the end-of-day running P&L
    days = df.groupby("date", sort=True).agg(
        realized=("realized", lambda s: sum(s, ZERO)), running=("running", "last")
    )

    return pd.DataFrame(
        [
            [f"{day.Index:%Y-%m-%d}", format_pnl(day.realized), format_pnl(day.running)]
            for day in days.itertuples()
        ],
        columns=DAILY_COLUMNS,
    )


def render_text(
    rows: Sequence[ReportRow],
    positions: Sequence[PositionRow],
    running: Decimal,
    initial_amount: Decimal,
) -> str:
    """Plain text report: transactions, daily P&L, open positions, then the final P&L line."""
    lines = ["Realized P&L by Transaction", ""]
    if rows:
        lines.append(report_frame(rows).to_string(index=False))
    else:
        lines.append("No transactions.")

    lines.extend(["", "Daily P&L", ""])
    daily = daily_pnl_frame(rows)
    if daily.empty:
        lines.append("No daily P&L.")
    else:
        lines.append(daily.to_string(index=False))

    lines.extend(["", "Open Positions", ""])
    if positions:
        lines.append(positions_frame(positions).to_string(index=False))
    else:
        lines.append("No open positions.")

    lines.extend(
        [
            "",
            f"Final realized P&L: {format_pnl(running)}",
            f"Final amount: {mn(initial_amount + running)}",
        ]
    )

    return "\n".join(lines) + "\n"
