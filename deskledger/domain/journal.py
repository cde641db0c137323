# deskledger/domain/journal.py
"""
Double-entry journal.

Entries are append-only: a header plus two or more lines whose debits equal
credits separately for every currency present. Corrections are new reversing
entries, never edits.
"""

import logging
import math
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from deskledger.db.models import Currency, JournalEntry, JournalEntryLine
from deskledger.db.session import UnitOfWork
from deskledger.domain.errors import NotFoundError, UnbalancedEntryError
from deskledger.domain.models import AccountBalance, CurrencyTotals, JournalLine

logger = logging.getLogger(__name__)


# code -> (name, type)
CHART_OF_ACCOUNTS: Dict[str, Tuple[str, str]] = {
    # Assets
    "1001": ("Cash - Toman", "ASSET"),
    "1002": ("Cash - AED", "ASSET"),
    "1003": ("Safe - Toman", "ASSET"),
    "1004": ("Safe - AED", "ASSET"),
    "1101": ("Counterpart Receivables - Toman", "ASSET"),
    "1102": ("Counterpart Receivables - AED", "ASSET"),
    "1201": ("Currency Inventory - Toman", "ASSET"),
    "1202": ("Currency Inventory - AED", "ASSET"),
    # Liabilities
    "2001": ("Counterpart Payables - Toman", "LIABILITY"),
    "2002": ("Counterpart Payables - AED", "LIABILITY"),
    # Equity
    "3001": ("Owner Equity", "EQUITY"),
    "3002": ("Retained Earnings", "EQUITY"),
    "3101": ("Currency Exchange Position - Toman", "EQUITY"),
    "3102": ("Currency Exchange Position - AED", "EQUITY"),
    # Revenue / expenses
    "4001": ("Trading Revenue - Currency Exchange", "REVENUE"),
    "5001": ("Trading Expenses", "EXPENSE"),
    "5002": ("Bank Charges", "EXPENSE"),
}

CASH = {Currency.TOMAN: "1001", Currency.AED: "1002"}
RECEIVABLES = {Currency.TOMAN: "1101", Currency.AED: "1102"}
INVENTORY = {Currency.TOMAN: "1201", Currency.AED: "1202"}
PAYABLES = {Currency.TOMAN: "2001", Currency.AED: "2002"}
EXCHANGE_POSITION = {Currency.TOMAN: "3101", Currency.AED: "3102"}
TRADING_REVENUE = "4001"
TRADING_EXPENSES = "5001"

# Relative slack for float sums at TOMAN magnitudes (totals reach ~1e12)
RELATIVE_TOLERANCE = 1e-12


def amounts_match(debit: float, credit: float, tolerance: float = 1e-6) -> bool:
    """Debit and credit agree within `tolerance` or RELATIVE_TOLERANCE, whichever is looser."""
    return math.isclose(debit, credit, rel_tol=RELATIVE_TOLERANCE, abs_tol=tolerance)


def line(account_code: str, currency: str, debit: float = 0.0, credit: float = 0.0,
         counterpart_id: Optional[int] = None) -> JournalLine:
    """Build a posting line, naming the account from the chart."""
    name, _ = CHART_OF_ACCOUNTS[account_code]
    return JournalLine(
        account_code=account_code,
        account_name=name,
        currency=str(currency),
        debit_amount=debit,
        credit_amount=credit,
        counterpart_id=counterpart_id,
    )


def purchase_lines(base_currency: str, quote_currency: str, amount: float, total_value: float) -> List[JournalLine]:
    """
    Buying `amount` of base for `total_value` of quote:
    Dr Currency Inventory[base] / Cr Payables[quote], each currency closed
    through its exchange-position account.
    """
    base, quote = Currency(base_currency), Currency(quote_currency)
    return [
        line(INVENTORY[base], base, debit=amount),
        line(EXCHANGE_POSITION[base], base, credit=amount),
        line(EXCHANGE_POSITION[quote], quote, debit=total_value),
        line(PAYABLES[quote], quote, credit=total_value),
    ]


def sale_lines(base_currency: str, quote_currency: str, amount: float, total_value: float,
               cost_basis: float, profit: float) -> List[JournalLine]:
    """
    Selling `amount` of base for `total_value` of quote:
    Dr Receivables[quote] / Cr Currency Inventory[base], cost basis released
    from the exchange position, and the difference booked as revenue or expense.
    """
    base, quote = Currency(base_currency), Currency(quote_currency)
    lines = [
        line(RECEIVABLES[quote], quote, debit=total_value),
        line(INVENTORY[base], base, credit=amount),
        line(EXCHANGE_POSITION[base], base, debit=amount),
        line(EXCHANGE_POSITION[quote], quote, credit=cost_basis),
    ]
    if profit > 0:
        lines.append(line(TRADING_REVENUE, quote, credit=profit))
    elif profit < 0:
        lines.append(line(TRADING_EXPENSES, quote, debit=abs(profit)))
    return lines


def reversed_lines(lines: Iterable) -> List[JournalLine]:
    """Mirror image of posted (or to-be-posted) lines: debits become credits."""
    return [
        JournalLine(
            account_code=l.account_code,
            account_name=l.account_name,
            currency=l.currency,
            debit_amount=l.credit_amount,
            credit_amount=l.debit_amount,
            counterpart_id=l.counterpart_id,
        )
        for l in lines
    ]


class Journal:
    """Posting and aggregation over journal_entries / journal_entry_lines."""

    @staticmethod
    def check_balanced(lines: List[JournalLine], tolerance: float = 1e-6) -> None:
        """Raise UnbalancedEntryError unless debits equal credits per currency."""
        if len(lines) < 2:
            raise UnbalancedEntryError(
                f"Journal entry needs at least 2 lines, got {len(lines)}",
                {"line_count": len(lines)},
            )

        totals = defaultdict(lambda: [0.0, 0.0])
        for l in lines:
            if l.debit_amount < 0 or l.credit_amount < 0:
                raise UnbalancedEntryError(
                    f"Negative amount on account {l.account_code}",
                    {"account_code": l.account_code},
                )
            totals[l.currency][0] += l.debit_amount
            totals[l.currency][1] += l.credit_amount

        for currency, (debit, credit) in totals.items():
            if not amounts_match(debit, credit, tolerance):
                raise UnbalancedEntryError(
                    f"Unbalanced {currency} lines: debit {debit} != credit {credit}",
                    {"currency": currency, "debit": debit, "credit": credit},
                )

    @staticmethod
    def post_entry(
        uow: UnitOfWork,
        lines: List[JournalLine],
        description: str,
        entry_date: date,
        trade_id: Optional[int] = None,
        receipt_id: Optional[int] = None,
        prefix: str = "JE",
    ) -> JournalEntry:
        """
        Append a balanced entry.

        Zero lines are dropped first. An unbalanced remainder is a caller bug and
        aborts the enclosing transaction.
        """
        lines = [l for l in lines if l.debit_amount or l.credit_amount]
        Journal.check_balanced(lines, uow.settings.balance_tolerance)

        with uow.transaction() as session:
            now = uow.clock.now()
            entry = JournalEntry(
                entry_number=uow.ids.next(prefix, uow.clock.today()),
                trade_id=trade_id,
                receipt_id=receipt_id,
                description=description,
                entry_date=entry_date,
                created_at=now,
            )
            session.add(entry)
            session.flush()

            for l in lines:
                session.add(JournalEntryLine(
                    journal_entry_id=entry.id,
                    account_code=l.account_code,
                    account_name=l.account_name,
                    debit_amount=l.debit_amount,
                    credit_amount=l.credit_amount,
                    currency=str(l.currency),
                    counterpart_id=l.counterpart_id,
                    created_at=now,
                ))
            session.flush()
            session.refresh(entry)

        logger.info(f"Posted journal entry {entry.entry_number}: {description} ({len(lines)} lines)")
        return entry

    @staticmethod
    def get_entry(session: Session, entry_id: int) -> JournalEntry:
        entry = session.get(JournalEntry, entry_id)
        if not entry:
            raise NotFoundError(f"Journal entry {entry_id} not found", {"entry_id": entry_id})
        return entry

    @staticmethod
    def get_entries(
        session: Session,
        limit: int = 50,
        offset: int = 0,
        trade_id: Optional[int] = None,
        receipt_id: Optional[int] = None,
    ) -> List[JournalEntry]:
        """Entries newest first; lines are available via entry.lines."""
        stmt = select(JournalEntry)
        if trade_id is not None:
            stmt = stmt.where(JournalEntry.trade_id == trade_id)
        if receipt_id is not None:
            stmt = stmt.where(JournalEntry.receipt_id == receipt_id)
        stmt = stmt.order_by(JournalEntry.created_at.desc(), JournalEntry.id.desc()).offset(offset).limit(limit)
        return list(session.exec(stmt).all())

    @staticmethod
    def get_lines(session: Session, entry_id: int) -> List[JournalEntryLine]:
        stmt = select(JournalEntryLine).where(
            JournalEntryLine.journal_entry_id == entry_id
        ).order_by(JournalEntryLine.id)
        return list(session.exec(stmt).all())

    @staticmethod
    def get_balances(
        session: Session,
        currency: Optional[str] = None,
        account_code: Optional[str] = None,
        tolerance: float = 1e-6,
    ) -> List[AccountBalance]:
        """sum(debit - credit) per account and currency, zero balances excluded."""
        balance = func.sum(JournalEntryLine.debit_amount - JournalEntryLine.credit_amount)
        stmt = select(
            JournalEntryLine.account_code,
            JournalEntryLine.account_name,
            JournalEntryLine.currency,
            balance,
        )
        if currency is not None:
            stmt = stmt.where(JournalEntryLine.currency == str(currency))
        if account_code is not None:
            stmt = stmt.where(JournalEntryLine.account_code == account_code)
        stmt = stmt.group_by(
            JournalEntryLine.account_code,
            JournalEntryLine.account_name,
            JournalEntryLine.currency,
        ).order_by(JournalEntryLine.account_code, JournalEntryLine.currency)

        results = []
        for code, name, cur, total in session.exec(stmt).all():
            total = total or 0.0
            if abs(total) <= tolerance:
                continue
            account_type = CHART_OF_ACCOUNTS.get(code, (None, None))[1]
            results.append(AccountBalance(
                account_code=code,
                account_name=name,
                account_type=account_type,
                currency=cur,
                balance=total,
            ))
        return results

    @staticmethod
    def get_trial_balance(session: Session) -> List[CurrencyTotals]:
        """Cumulative debits and credits per currency over the whole journal."""
        stmt = select(
            JournalEntryLine.currency,
            func.sum(JournalEntryLine.debit_amount),
            func.sum(JournalEntryLine.credit_amount),
        ).group_by(JournalEntryLine.currency).order_by(JournalEntryLine.currency)

        return [
            CurrencyTotals(currency=cur, total_debit=debit or 0.0, total_credit=credit or 0.0)
            for cur, debit, credit in session.exec(stmt).all()
        ]

    @staticmethod
    def is_balanced(session: Session, tolerance: float = 1e-6) -> bool:
        return all(
            amounts_match(t.total_debit, t.total_credit, tolerance) for t in Journal.get_trial_balance(session)
        )
