# deskledger/domain/metrics.py
"""Dashboard and reporting calculations."""

from datetime import date
from typing import Dict, Optional

import pandas as pd
from sqlalchemy import func
from sqlmodel import Session, select

from deskledger.db.models import Currency, JournalEntryLine, Trade, TradeStatus, TradingParty
from deskledger.domain.positions import PositionBook
from deskledger.utils.clock import SystemClock

# Cash and safe accounts per currency
CASH_ACCOUNTS = {
    Currency.TOMAN: ("1001", "1003"),
    Currency.AED: ("1002", "1004"),
}

PROFIT_STATUSES = [str(TradeStatus.PENDING), str(TradeStatus.PARTIAL), str(TradeStatus.COMPLETED)]


class MetricsCalculator:
    """Desk-level balances, profit and trade statistics."""

    @staticmethod
    def get_cash_balances(session: Session) -> pd.DataFrame:
        """
        Cash and safe balances from the journal.

        Returns DataFrame with columns: currency, balance, safe_balance
        """
        rows = []
        for currency, (cash_code, safe_code) in CASH_ACCOUNTS.items():
            totals = dict(session.exec(
                select(
                    JournalEntryLine.account_code,
                    func.sum(JournalEntryLine.debit_amount - JournalEntryLine.credit_amount),
                ).where(
                    JournalEntryLine.currency == str(currency),
                    JournalEntryLine.account_code.in_([cash_code, safe_code]),
                ).group_by(JournalEntryLine.account_code)
            ).all())
            rows.append(
                {
                    "currency": str(currency),
                    "balance": float(totals.get(cash_code) or 0.0),
                    "safe_balance": float(totals.get(safe_code) or 0.0),
                }
            )
        return pd.DataFrame(rows, columns=["currency", "balance", "safe_balance"])

    @staticmethod
    def get_profit_summary(session: Session, as_of: Optional[date] = None) -> Dict:
        """Realized profit per quote currency, all-time and month-to-date (by trade date)."""
        as_of = as_of or SystemClock().today()
        month_start = as_of.replace(day=1)

        trades = session.exec(
            select(Trade).where(Trade.status.in_(PROFIT_STATUSES))
        ).all()

        monthly = [t for t in trades if month_start <= t.trade_date <= as_of]
        return {
            "total_profit_toman": sum(t.profit_toman for t in trades),
            "total_profit_aed": sum(t.profit_aed for t in trades),
            "monthly_profit_toman": sum(t.profit_toman for t in monthly),
            "monthly_profit_aed": sum(t.profit_aed for t in monthly),
        }

    @staticmethod
    def get_trade_status_counts(session: Session) -> Dict[str, int]:
        stmt = select(Trade.status, func.count(Trade.id)).group_by(Trade.status)
        counts = {str(s): 0 for s in TradeStatus}
        for status, count in session.exec(stmt).all():
            counts[status] = count
        return counts

    @staticmethod
    def get_profit_curve(session: Session, currency: str = Currency.TOMAN) -> pd.DataFrame:
        """
        Daily realized profit in one quote currency.

        Returns DataFrame with columns: date, daily_profit, cumulative_profit, drawdown
        """
        columns = ["date", "daily_profit", "cumulative_profit", "drawdown"]
        profit_field = Trade.profit_toman if currency == Currency.TOMAN else Trade.profit_aed

        rows = session.exec(
            select(Trade.trade_date, profit_field).where(
                Trade.quote_currency == str(currency),
                Trade.status.in_(PROFIT_STATUSES),
            ).order_by(Trade.trade_date)
        ).all()

        if not rows:
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame([tuple(r) for r in rows], columns=["date", "profit"])
        daily = df.groupby("date", as_index=False).agg(daily_profit=("profit", "sum")).sort_values("date")
        daily["cumulative_profit"] = daily["daily_profit"].cumsum()
        peak = daily["cumulative_profit"].cummax().clip(lower=0.0)
        daily["drawdown"] = (daily["cumulative_profit"] - peak).where(peak > 0, 0.0)
        return daily[columns].reset_index(drop=True)

    @staticmethod
    def get_dashboard(session: Session, as_of: Optional[date] = None) -> Dict:
        """Everything the desk overview shows, in one call."""
        pending = session.exec(
            select(Trade, TradingParty.name)
            .join(TradingParty, Trade.counterparty_id == TradingParty.id, isouter=True)
            .where(Trade.status == str(TradeStatus.PENDING))
            .order_by(Trade.created_at.desc(), Trade.id.desc())
            .limit(10)
        ).all()
        recent = session.exec(
            select(Trade, TradingParty.name)
            .join(TradingParty, Trade.counterparty_id == TradingParty.id, isouter=True)
            .order_by(Trade.created_at.desc(), Trade.id.desc())
            .limit(20)
        ).all()

        return {
            "balances": MetricsCalculator.get_cash_balances(session).to_dict("records"),
            "pending_trades": [{"trade": t, "counterparty_name": name} for t, name in pending],
            "outstanding_positions": PositionBook.get_outstanding_positions(session),
            "recent_transactions": [{"trade": t, "counterparty_name": name} for t, name in recent],
            "profit_summary": MetricsCalculator.get_profit_summary(session, as_of),
            "trade_status_counts": MetricsCalculator.get_trade_status_counts(session),
        }
