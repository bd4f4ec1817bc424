"""Command line entry point.

    tradeledger [--trades Options.csv ...] [--orders orders.jsonl ...] [--fees fees.csv]
                [--since 2025-01-01] [--initial-amount 25000]
                [--output text|csv] [--out PATH]

Settings not given on the command line fall back to `.env.tradeledger` / environment
(see config.py)."""

import argparse
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from loguru import logger

from .config import LedgerConfig, parse_date
from .fees import add_fee
from .loaders import load_fee_csv, load_orders_jsonl, load_trades_csv
from .positions import build_position_rows
from .render import daily_pnl_frame, positions_frame, render_text, report_frame
from .report import build_trade_index, compute_report


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="tradeledger", description="Realized P&L report from broker exports"
    )
    p.add_argument(
        "--trades",
        type=Path,
        action="append",
        default=[],
        help="trade CSV export (repeatable; 'Options' in the name means option trades)",
    )
    p.add_argument(
        "--orders",
        type=Path,
        action="append",
        default=[],
        help="JSONL order export (repeatable)",
    )
    p.add_argument("--fees", type=Path, help="CSV fee export (Time, Side, Quantity, Fees)")
    p.add_argument("--since", help="only include trades on or after this date (YYYY-MM-DD)")
    p.add_argument("--initial-amount", help="starting portfolio amount in dollars")
    p.add_argument("--output", choices=("text", "csv"), default="text")
    p.add_argument(
        "--out",
        type=Path,
        help="output file (text) or file prefix (csv); text goes to stdout when omitted",
    )

    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = LedgerConfig.load()
        since = parse_date(args.since, "--since") if args.since else config.since
        initial = config.initial_amount
        if args.initial_amount is not None:
            initial = Decimal(args.initial_amount)
    except (ValueError, InvalidOperation) as e:
        logger.error("Invalid settings: {}", e)
        return 1

    logger.remove()
    logger.add(sys.stderr, level=config.log_level)

    if not args.trades and not args.orders:
        logger.error("Nothing to report: pass --trades and/or --orders")
        return 1

    for path in [*args.trades, *args.orders, args.fees]:
        if path is not None and not path.exists():
            logger.error("Input file {} does not exist", path)
            return 1

    trades = []
    fees = {}
    seq = 0
    for path in args.trades:
        loaded, seq = load_trades_csv(path, seq)
        trades.extend(loaded)

    for path in args.orders:
        loaded, orderFees, seq = load_orders_jsonl(path, seq)
        trades.extend(loaded)
        for key, amount in orderFees.items():
            add_fee(fees, key, amount)

    if not trades:
        logger.warning("No trades found")
        return 0

    if args.fees:
        # an explicit fee export replaces fees embedded in the orders
        fees = load_fee_csv(args.fees)

    rows, positions, running = compute_report(trades, since, initial, fees)
    positionRows = build_position_rows(positions, build_trade_index(trades), trades)

    match args.output:
        case "csv":
            prefix = args.out or Path("tradeledger")
            report_frame(rows).to_csv(f"{prefix}-report.csv", index=False)
            positions_frame(positionRows).to_csv(f"{prefix}-positions.csv", index=False)
            daily_pnl_frame(rows).to_csv(f"{prefix}-daily.csv", index=False)
            logger.info("Wrote {0}-report.csv, {0}-positions.csv and {0}-daily.csv", prefix)
        case _:
            text = render_text(rows, positionRows, running, initial)
            if args.out:
                args.out.write_text(text)
                logger.info("Text report exported to {}", args.out)
            else:
                sys.stdout.write(text)

    return 0


if __name__ == "__main__":
    sys.exit(main())
