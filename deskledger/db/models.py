# deskledger/db/models.py
"""
SQLModel definitions for the AED/TOMAN desk ledger.
Designed for SQLite locally, PostgreSQL in production.
"""

from datetime import date, datetime
from enum import StrEnum
from typing import Optional, List

import pytz
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship


def utc_now() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo on the way back)."""
    return datetime.now(pytz.UTC).replace(tzinfo=None)


class Currency(StrEnum):
    AED = "AED"
    TOMAN = "TOMAN"

    @property
    def other(self) -> "Currency":
        return Currency.TOMAN if self is Currency.AED else Currency.AED


class TradeType(StrEnum):
    BUY = "BUY"
    SELL = "SELL"
    BUY_SELL = "BUY_SELL"


class TradeStatus(StrEnum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class SettlementType(StrEnum):
    BASE = "BASE"
    QUOTE = "QUOTE"


class TransactionType(StrEnum):
    BUY = "BUY"
    SELL = "SELL"
    RECEIPT = "RECEIPT"


class ReceiptDirection(StrEnum):
    PAY = "pay"  # desk pays cash out
    RECEIVE = "receive"  # desk receives cash


class DeletionReason(StrEnum):
    DUPLICATE = "duplicate"
    FUNDS_RETURNED = "funds_returned"
    RECEIPT_NOT_LANDED = "receipt_not_landed"
    DATA_ERROR = "data_error"
    OTHER = "other"


class TradingParty(SQLModel, table=True):
    """Counterparty (buyer/seller) the desk trades with."""
    __tablename__ = "trading_parties"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    phone: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None)
    national_id: Optional[str] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)

    bank_accounts: List["BankAccount"] = Relationship(back_populates="counterpart")
    trades: List["Trade"] = Relationship(back_populates="counterparty")


class BankAccount(SQLModel, table=True):
    """Bank account used for TOMAN transfers; always owned by a trading party."""
    __tablename__ = "bank_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_number: str = Field(unique=True, index=True)
    bank_name: str = Field()
    currency: str = Field()  # AED or TOMAN
    counterpart_id: int = Field(foreign_key="trading_parties.id", index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)

    counterpart: TradingParty = Relationship(back_populates="bank_accounts")


class Trade(SQLModel, table=True):
    """A BUY, SELL or BUY_SELL trade with two independently settled legs."""
    __tablename__ = "trades"

    id: Optional[int] = Field(default=None, primary_key=True)
    trade_number: str = Field(unique=True, index=True)  # e.g., TRD-20250102-1a2b3c4d
    trade_type: str = Field()  # BUY, SELL or BUY_SELL
    status: str = Field(default=TradeStatus.PENDING, index=True)

    base_currency: str = Field()
    quote_currency: str = Field()
    amount: float = Field()  # Base-currency quantity
    rate: float = Field()
    total_value: float = Field()  # amount * rate, in quote currency

    counterparty_id: Optional[int] = Field(default=None, foreign_key="trading_parties.id", index=True)

    trade_date: date = Field(index=True)
    settlement_date_base: date = Field()
    settlement_date_quote: date = Field()

    # Settlement tracking (mutated only by the settlement engine)
    base_settled_amount: float = Field(default=0.0)
    quote_settled_amount: float = Field(default=0.0)
    is_base_fully_settled: bool = Field(default=False)
    is_quote_fully_settled: bool = Field(default=False)
    last_settlement_date: Optional[date] = Field(default=None)

    # Realized P&L (SELL only)
    profit_toman: float = Field(default=0.0)
    profit_aed: float = Field(default=0.0)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)

    counterparty: Optional[TradingParty] = Relationship(back_populates="trades")
    positions: List["TradePosition"] = Relationship(back_populates="trade")
    settlements: List["TradeSettlement"] = Relationship(back_populates="trade")


class TradePosition(SQLModel, table=True):
    """FIFO lot opened by a BUY trade and consumed by later SELLs."""
    __tablename__ = "trade_positions"

    id: Optional[int] = Field(default=None, primary_key=True)
    original_trade_id: int = Field(foreign_key="trades.id", index=True)
    currency: str = Field(index=True)
    original_amount: float = Field()
    remaining_amount: float = Field()  # 0 <= remaining <= original
    average_cost_rate: float = Field()  # Fixed at creation
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)

    trade: Trade = Relationship(back_populates="positions")


class PaymentReceipt(SQLModel, table=True):
    """
    Cash movement between the desk and a counterparty.

    TOMAN bank transfers carry payer_id + receiver_account_id; cash receipts
    (always for AED, optionally for TOMAN) carry receipt_type + trading_party_id.
    """
    __tablename__ = "payment_receipts"

    id: Optional[int] = Field(default=None, primary_key=True)
    tracking_last_5: str = Field(index=True)
    amount: float = Field()
    currency: str = Field(default=Currency.TOMAN)
    receipt_date: date = Field()
    notes: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, index=True)

    # Bank transfer fields
    payer_id: Optional[int] = Field(default=None, foreign_key="trading_parties.id")
    receiver_account_id: Optional[int] = Field(default=None, foreign_key="bank_accounts.id")

    # Cash fields
    receipt_type: Optional[str] = Field(default=None)  # pay or receive
    trading_party_id: Optional[int] = Field(default=None, foreign_key="trading_parties.id")
    individual_name: Optional[str] = Field(default=None)

    # Soft deletion
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: Optional[datetime] = Field(default=None)
    deletion_reason: Optional[str] = Field(default=None)
    deletion_reason_category: Optional[str] = Field(default=None)
    deleted_by: Optional[str] = Field(default=None)

    # Restoration
    is_restored: bool = Field(default=False)
    restored_at: Optional[datetime] = Field(default=None)
    restoration_reason: Optional[str] = Field(default=None)
    restored_by: Optional[str] = Field(default=None)


class TradeSettlement(SQLModel, table=True):
    """How much of which receipt was poured into which trade leg, in FIFO order."""
    __tablename__ = "trade_settlements"

    id: Optional[int] = Field(default=None, primary_key=True)
    trade_id: int = Field(foreign_key="trades.id", index=True)
    receipt_id: int = Field(foreign_key="payment_receipts.id", index=True)
    currency: str = Field()
    settled_amount: float = Field()
    settlement_type: str = Field()  # BASE or QUOTE
    settlement_date: date = Field()
    fifo_sequence: int = Field()  # Per (trade, settlement_type)
    created_at: datetime = Field(default_factory=utc_now)

    __table_args__ = (
        UniqueConstraint("trade_id", "receipt_id", "settlement_type", name="uq_trade_receipt_leg"),
    )

    trade: Trade = Relationship(back_populates="settlements")


class JournalEntry(SQLModel, table=True):
    """Journal header; append-only."""
    __tablename__ = "journal_entries"

    id: Optional[int] = Field(default=None, primary_key=True)
    entry_number: str = Field(unique=True, index=True)
    trade_id: Optional[int] = Field(default=None, foreign_key="trades.id", index=True)
    receipt_id: Optional[int] = Field(default=None, foreign_key="payment_receipts.id", index=True)
    description: str = Field()
    entry_date: date = Field()
    created_at: datetime = Field(default_factory=utc_now)

    lines: List["JournalEntryLine"] = Relationship(back_populates="entry")


class JournalEntryLine(SQLModel, table=True):
    """Single debit or credit line of a journal entry."""
    __tablename__ = "journal_entry_lines"

    id: Optional[int] = Field(default=None, primary_key=True)
    journal_entry_id: int = Field(foreign_key="journal_entries.id", index=True)
    account_code: str = Field(index=True)
    account_name: str = Field()
    debit_amount: float = Field(default=0.0)
    credit_amount: float = Field(default=0.0)
    currency: str = Field()
    counterpart_id: Optional[int] = Field(default=None, foreign_key="trading_parties.id")
    created_at: datetime = Field(default_factory=utc_now)

    entry: JournalEntry = Relationship(back_populates="lines")


class CounterpartBalance(SQLModel, table=True):
    """Running signed balance per (counterpart, currency)."""
    __tablename__ = "counterpart_balances"

    id: Optional[int] = Field(default=None, primary_key=True)
    counterpart_id: int = Field(foreign_key="trading_parties.id", index=True)
    currency: str = Field()
    balance: float = Field(default=0.0)
    updated_at: datetime = Field(default_factory=utc_now)

    __table_args__ = (
        UniqueConstraint("counterpart_id", "currency", name="uq_counterpart_currency"),
    )


class CounterpartStatementLine(SQLModel, table=True):
    """Audit row written alongside every counterpart balance mutation."""
    __tablename__ = "counterpart_statement_lines"

    id: Optional[int] = Field(default=None, primary_key=True)
    counterpart_id: int = Field(foreign_key="trading_parties.id", index=True)
    currency: str = Field()
    transaction_type: str = Field()  # BUY, SELL or RECEIPT

    trade_id: Optional[int] = Field(default=None, foreign_key="trades.id")
    receipt_id: Optional[int] = Field(default=None, foreign_key="payment_receipts.id")

    description: str = Field()
    debit_amount: float = Field(default=0.0)
    credit_amount: float = Field(default=0.0)
    balance_after: float = Field()

    transaction_date: date = Field(index=True)
    created_at: datetime = Field(default_factory=utc_now)
