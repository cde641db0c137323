# deskledger/domain/counterparts.py
"""Per-counterpart running balances and their statement history."""

import logging
from datetime import date
from typing import List, Optional

from sqlmodel import Session, select

from deskledger.db.models import (
    CounterpartBalance,
    CounterpartStatementLine,
    Currency,
    TradingParty,
)
from deskledger.db.session import UnitOfWork
from deskledger.domain.errors import CounterpartyNotFoundError
from deskledger.domain.models import BalanceChange, Statement, StatementReconciliation

logger = logging.getLogger(__name__)


class CounterpartLedger:
    """
    Every balance mutation appends exactly one statement line, so replaying a
    counterpart's lines in creation order reproduces its balance.

    Sign convention: positive amounts are credits to the counterpart (they owe
    us less / we owe them more), negative amounts are debits.
    """

    @staticmethod
    def update_balance(
        uow: UnitOfWork,
        counterpart_id: int,
        currency: str,
        amount: float,
        transaction_type: str,
        description: str,
        transaction_date: date,
        trade_id: Optional[int] = None,
        receipt_id: Optional[int] = None,
    ) -> BalanceChange:
        """Apply a signed delta and append the matching statement line."""
        with uow.transaction() as session:
            now = uow.clock.now()
            balance = CounterpartLedger._get_balance_row(session, counterpart_id, currency)
            if balance is None:
                balance = CounterpartBalance(
                    counterpart_id=counterpart_id,
                    currency=str(currency),
                    balance=0.0,
                    updated_at=now,
                )
                session.add(balance)
                session.flush()

            previous = balance.balance
            new_balance = previous + amount
            balance.balance = new_balance
            balance.updated_at = now
            session.add(balance)

            session.add(CounterpartStatementLine(
                counterpart_id=counterpart_id,
                currency=str(currency),
                transaction_type=str(transaction_type),
                trade_id=trade_id,
                receipt_id=receipt_id,
                description=description,
                debit_amount=abs(amount) if amount < 0 else 0.0,
                credit_amount=amount if amount > 0 else 0.0,
                balance_after=new_balance,
                transaction_date=transaction_date,
                created_at=now,
            ))
            session.flush()

        logger.debug(
            f"Counterpart {counterpart_id} {currency}: {previous} -> {new_balance} ({transaction_type})"
        )
        return BalanceChange(previous_balance=previous, new_balance=new_balance, amount=amount)

    @staticmethod
    def _get_balance_row(session: Session, counterpart_id: int, currency: str) -> Optional[CounterpartBalance]:
        stmt = select(CounterpartBalance).where(
            CounterpartBalance.counterpart_id == counterpart_id,
            CounterpartBalance.currency == str(currency),
        )
        return session.exec(stmt).first()

    @staticmethod
    def _require_counterpart(session: Session, counterpart_id: int) -> TradingParty:
        party = session.get(TradingParty, counterpart_id)
        if not party:
            raise CounterpartyNotFoundError(counterpart_id)
        return party

    @staticmethod
    def get_balance(session: Session, counterpart_id: int, currency: str) -> float:
        row = CounterpartLedger._get_balance_row(session, counterpart_id, currency)
        return row.balance if row else 0.0

    @staticmethod
    def list_balances(
        session: Session,
        currency: Optional[str] = None,
        counterpart_id: Optional[int] = None,
    ) -> List[dict]:
        """Balance rows joined with counterpart names, ordered by name then currency."""
        stmt = select(CounterpartBalance, TradingParty.name).join(
            TradingParty, CounterpartBalance.counterpart_id == TradingParty.id, isouter=True
        )
        if currency is not None:
            stmt = stmt.where(CounterpartBalance.currency == str(currency))
        if counterpart_id is not None:
            stmt = stmt.where(CounterpartBalance.counterpart_id == counterpart_id)
        stmt = stmt.order_by(TradingParty.name, CounterpartBalance.currency)

        return [
            {
                "counterpart_id": row.counterpart_id,
                "counterpart_name": name,
                "currency": row.currency,
                "balance": row.balance,
                "updated_at": row.updated_at,
            }
            for row, name in session.exec(stmt).all()
        ]

    @staticmethod
    def get_counterpart_balances(session: Session, counterpart_id: int) -> List[CounterpartBalance]:
        """
        Both currency balances for one counterpart. Missing rows come back as
        unsaved zero placeholders; this read never writes.
        """
        CounterpartLedger._require_counterpart(session, counterpart_id)
        results = []
        for currency in (Currency.AED, Currency.TOMAN):
            row = CounterpartLedger._get_balance_row(session, counterpart_id, currency)
            if row is None:
                row = CounterpartBalance(counterpart_id=counterpart_id, currency=str(currency), balance=0.0)
            results.append(row)
        return results

    @staticmethod
    def get_statement_lines(
        session: Session,
        counterpart_id: int,
        currency: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        creation_order: bool = False,
    ) -> List[CounterpartStatementLine]:
        stmt = select(CounterpartStatementLine).where(
            CounterpartStatementLine.counterpart_id == counterpart_id,
            CounterpartStatementLine.currency == str(currency),
        )
        if start_date is not None:
            stmt = stmt.where(CounterpartStatementLine.transaction_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(CounterpartStatementLine.transaction_date <= end_date)

        if creation_order:
            stmt = stmt.order_by(CounterpartStatementLine.created_at, CounterpartStatementLine.id)
        else:
            stmt = stmt.order_by(
                CounterpartStatementLine.transaction_date,
                CounterpartStatementLine.created_at,
                CounterpartStatementLine.id,
            )
        return list(session.exec(stmt).all())

    @staticmethod
    def get_statement(
        session: Session,
        counterpart_id: int,
        currency: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Statement:
        """Statement for one counterpart and currency, optionally date-filtered."""
        party = CounterpartLedger._require_counterpart(session, counterpart_id)
        lines = CounterpartLedger.get_statement_lines(
            session, counterpart_id, currency, start_date=start_date, end_date=end_date
        )
        return Statement(
            counterpart=party,
            currency=str(currency),
            current_balance=CounterpartLedger.get_balance(session, counterpart_id, currency),
            lines=lines,
        )

    @staticmethod
    def reconcile_statement(
        session: Session,
        counterpart_id: int,
        currency: str,
        tolerance: float = 1e-6,
    ) -> StatementReconciliation:
        """Replay statement lines in creation order and compare with stored balances."""
        lines = CounterpartLedger.get_statement_lines(session, counterpart_id, currency, creation_order=True)

        running = 0.0
        first_mismatch = None
        for l in lines:
            running += l.credit_amount - l.debit_amount
            if first_mismatch is None and abs(running - l.balance_after) > tolerance:
                first_mismatch = l.id

        stored = CounterpartLedger.get_balance(session, counterpart_id, currency)
        result = StatementReconciliation(
            counterpart_id=counterpart_id,
            currency=str(currency),
            replayed_balance=running,
            stored_balance=stored,
            lines_checked=len(lines),
            first_mismatch_line_id=first_mismatch,
        )
        if not result.is_consistent:
            logger.warning(
                f"Statement for counterpart {counterpart_id} {currency} does not reconcile: "
                f"replayed {running}, stored {stored}, first mismatch line {first_mismatch}"
            )
        return result
