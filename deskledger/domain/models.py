# deskledger/domain/models.py
"""Domain value objects."""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from deskledger.db.models import (
    Currency,
    PaymentReceipt,
    ReceiptDirection,
    Trade,
    TradePosition,
    TradingParty,
    CounterpartStatementLine,
)


# --- Journal ---

@dataclass
class JournalLine:
    """A line to be posted; becomes a JournalEntryLine row."""
    account_code: str
    account_name: str
    currency: str
    debit_amount: float = 0.0
    credit_amount: float = 0.0
    counterpart_id: Optional[int] = None


@dataclass
class AccountBalance:
    account_code: str
    account_name: str
    account_type: Optional[str]
    currency: str
    balance: float  # sum(debit - credit)


@dataclass
class CurrencyTotals:
    currency: str
    total_debit: float
    total_credit: float

    @property
    def difference(self) -> float:
        return self.total_debit - self.total_credit


# --- Positions ---

@dataclass
class LotAllocation:
    """Quantity taken from one lot during a sale (for FIFO matching)."""
    position_id: int
    amount: float
    rate: float

    @property
    def cost(self) -> float:
        return self.amount * self.rate


@dataclass
class Consumption:
    """Result of consuming inventory for a sale."""
    currency: str
    requested: float
    allocations: List[LotAllocation] = field(default_factory=list)
    shortfall: float = 0.0  # Quantity sold short (no lot behind it)

    @property
    def cost_basis(self) -> float:
        return sum(a.cost for a in self.allocations)

    @property
    def consumed(self) -> float:
        return sum(a.amount for a in self.allocations)


@dataclass
class OutstandingPosition:
    position: TradePosition
    trade_number: str
    trade_date: date


# --- Trades ---

@dataclass
class CreateTradeRequest:
    trade_type: str  # BUY, SELL or BUY_SELL
    base_currency: str
    quote_currency: str
    amount: float
    rate: float
    trade_date: Optional[date] = None
    counterparty_id: Optional[int] = None
    settlement_date_base: Optional[date] = None
    settlement_date_quote: Optional[date] = None
    sell_from_position_id: Optional[int] = None


@dataclass
class SellFromPositionRequest:
    position_id: int
    amount: float
    rate: float
    counterparty_id: Optional[int] = None
    trade_date: Optional[date] = None
    settlement_date_base: Optional[date] = None
    settlement_date_quote: Optional[date] = None


@dataclass
class TradeFilters:
    counterparty_id: Optional[int] = None
    status: Optional[str] = None
    base_currency: Optional[str] = None
    quote_currency: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class TradeProgress:
    """Fraction (0..1) of each currency leg's obligation extinguished."""
    progress_aed: float = 0.0
    progress_toman: float = 0.0

    def for_currency(self, currency: str) -> float:
        return self.progress_aed if currency == Currency.AED else self.progress_toman


@dataclass
class TradeView:
    """Trade as returned to callers: row plus derived, never-persisted fields."""
    trade: Trade
    counterparty_name: Optional[str] = None
    progress: TradeProgress = field(default_factory=TradeProgress)

    @property
    def id(self) -> int:
        return self.trade.id

    @property
    def progress_aed(self) -> float:
        return self.progress.progress_aed

    @property
    def progress_toman(self) -> float:
        return self.progress.progress_toman


# --- Receipts ---

@dataclass(frozen=True)
class TransferReceipt:
    """TOMAN bank transfer: payer pays into a counterpart-owned bank account."""
    payer_id: int
    receiver_account_id: int
    receiver_counterpart_id: Optional[int]


@dataclass(frozen=True)
class CashReceipt:
    """Cash handed to (receive) or by (pay) the desk on behalf of a trading party."""
    trading_party_id: int
    direction: ReceiptDirection
    individual_name: Optional[str] = None


@dataclass
class CreateReceiptRequest:
    tracking_last_5: str
    amount: float
    currency: str
    receipt_date: date
    notes: Optional[str] = None
    # Bank transfer
    payer_id: Optional[int] = None
    receiver_account_id: Optional[int] = None
    # Cash
    receipt_type: Optional[str] = None
    trading_party_id: Optional[int] = None
    individual_name: Optional[str] = None


@dataclass
class ReceiptOutcome:
    """
    Result of a receipt mutation. The accounting part is committed; settlement
    runs afterwards and a failure there only degrades the outcome.
    """
    receipt: PaymentReceipt
    settlement_error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.settlement_error is not None


@dataclass
class PaymentEvent:
    """Signed cash movement for one counterparty/currency (+ = they paid us)."""
    receipt_id: int
    amount: float


# --- Counterparts ---

@dataclass
class BalanceChange:
    previous_balance: float
    new_balance: float
    amount: float


@dataclass
class Statement:
    counterpart: TradingParty
    currency: str
    current_balance: float
    lines: List[CounterpartStatementLine]


@dataclass
class StatementReconciliation:
    counterpart_id: int
    currency: str
    replayed_balance: float
    stored_balance: float
    lines_checked: int
    first_mismatch_line_id: Optional[int] = None

    @property
    def is_consistent(self) -> bool:
        return self.first_mismatch_line_id is None and abs(self.replayed_balance - self.stored_balance) <= 1e-6
