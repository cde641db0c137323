# deskledger/cli.py
"""
Command-line maintenance for the desk ledger.

    deskledger init-db
    deskledger reprocess
    deskledger trial-balance
    deskledger statement 3 --currency TOMAN --start 2025-01-01 --csv
"""

import argparse
import logging
import os
import sys
from datetime import date
from typing import List, Optional

from deskledger.db import session as db_session
from deskledger.db.models import Currency
from deskledger.db.session import UnitOfWork
from deskledger.domain.counterparts import CounterpartLedger
from deskledger.domain.errors import LedgerError
from deskledger.domain.journal import Journal
from deskledger.domain.settlement import SettlementEngine
from deskledger.io.statement_export import export_filename, statement_to_csv
from deskledger.utils.config import Config, LedgerSettings
from deskledger.utils.formatting import format_amount
from deskledger.utils.logger import setup_logging

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="deskledger", description="AED/TOMAN desk ledger maintenance")
    ap.add_argument("--config", help="Path to config.yaml (default: $DESKLEDGER_CONFIG or ./config.yaml)")
    ap.add_argument("--database", help="Database URL (overrides config and DATABASE_URL)")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables if they don't exist")
    sub.add_parser("reprocess", help="Rebuild every settlement allocation from the receipts")
    sub.add_parser("trial-balance", help="Debit/credit totals per currency")

    st = sub.add_parser("statement", help="Print a counterpart statement")
    st.add_argument("counterpart_id", type=int)
    st.add_argument("--currency", default=str(Currency.TOMAN), choices=[str(c) for c in Currency])
    st.add_argument("--start", type=_parse_date, help="From trade/receipt date (YYYY-MM-DD)")
    st.add_argument("--end", type=_parse_date, help="To trade/receipt date (YYYY-MM-DD)")
    st.add_argument("--csv", action="store_true", help="Write CSV to <name>_<CUR>_Statement.csv")
    return ap


def _cmd_init_db(uow: UnitOfWork, args) -> int:
    db_session.init_db()
    print("Database initialized")
    return 0


def _cmd_reprocess(uow: UnitOfWork, args) -> int:
    count = SettlementEngine.reprocess_all_receipts(uow)
    print(f"Reprocessed {count} receipts")
    return 0


def _cmd_trial_balance(uow: UnitOfWork, args) -> int:
    totals = Journal.get_trial_balance(uow.session)
    for t in totals:
        print(f"{t.currency:<6} debit {format_amount(t.total_debit):>20} credit {format_amount(t.total_credit):>20}")
    balanced = Journal.is_balanced(uow.session, uow.settings.balance_tolerance)
    print("Balanced" if balanced else "NOT BALANCED")
    return 0 if balanced else 1


def _cmd_statement(uow: UnitOfWork, args) -> int:
    statement = CounterpartLedger.get_statement(
        uow.session, args.counterpart_id, args.currency, start_date=args.start, end_date=args.end
    )
    if args.csv:
        filename = export_filename(statement)
        with open(filename, "w", encoding="utf-8", newline="") as f:
            f.write(statement_to_csv(statement))
        print(f"Wrote {len(statement.lines)} lines to {filename}")
        return 0

    print(f"{statement.counterpart.name} - {statement.currency}")
    for l in statement.lines:
        print(
            f"{l.transaction_date}  {l.transaction_type:<8} {l.description:<60} "
            f"{format_amount(l.debit_amount) if l.debit_amount else '':>14} "
            f"{format_amount(l.credit_amount) if l.credit_amount else '':>14} "
            f"{format_amount(l.balance_after):>16}"
        )
    print(f"Current balance: {format_amount(statement.current_balance)}")
    return 0


COMMANDS = {
    "init-db": _cmd_init_db,
    "reprocess": _cmd_reprocess,
    "trial-balance": _cmd_trial_balance,
    "statement": _cmd_statement,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = Config(args.config) if args.config else Config.get_instance()
    setup_logging(config)

    url = args.database or os.getenv("DATABASE_URL") or config.get("database.url")
    db_session.configure_engine(url)

    settings = LedgerSettings.from_config(config)
    with db_session.get_session() as session:
        uow = UnitOfWork(session, settings=settings)
        try:
            return COMMANDS[args.command](uow, args)
        except LedgerError as e:
            logger.error(f"{e.code}: {e.message}")
            print(f"Error: {e.message}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    sys.exit(main())
