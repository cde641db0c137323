# deskledger/domain/progress.py
"""
Stateless settlement progress.

Progress is recomputed from scratch on every read: the counterparty's net
payments in a currency are poured into its trades' obligations in creation
order, and each trade reports how full its bucket is. Nothing here writes.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlmodel import Session, select

from deskledger.db.models import Currency, PaymentReceipt, ReceiptDirection, Trade, TradeType
from deskledger.domain.models import CashReceipt, PaymentEvent, TradeProgress, TransferReceipt
from deskledger.domain.parties import PartyRegistry
from deskledger.utils.locks import ledger_lock

logger = logging.getLogger(__name__)

THEY_OWE_US = "they_owe_us"
WE_OWE_THEM = "we_owe_them"

EventKey = Tuple[int, str]


@dataclass
class Obligation:
    amount: float
    direction: str


def obligation_for(trade: Trade, currency: str) -> Optional[Obligation]:
    """What `trade` obliges in `currency`, or None (BUY_SELL, or a currency it doesn't touch)."""
    if trade.trade_type == TradeType.BUY:
        if currency == trade.base_currency:
            return Obligation(trade.amount, THEY_OWE_US)
        if currency == trade.quote_currency:
            return Obligation(trade.total_value, WE_OWE_THEM)
    elif trade.trade_type == TradeType.SELL:
        if currency == trade.base_currency:
            return Obligation(trade.amount, WE_OWE_THEM)
        if currency == trade.quote_currency:
            return Obligation(trade.total_value, THEY_OWE_US)
    return None


def payment_event_for(receipt: PaymentReceipt, terms, counterparty_id: int) -> Optional[PaymentEvent]:
    """Signed movement of `receipt` as seen from `counterparty_id` (+ means they paid us)."""
    if receipt.is_deleted:
        return None

    match terms:
        case TransferReceipt(payer_id=payer_id) if payer_id == counterparty_id:
            amount = receipt.amount
        case TransferReceipt(receiver_counterpart_id=receiver) if receiver == counterparty_id:
            amount = -receipt.amount
        case CashReceipt(trading_party_id=party, direction=direction) if party == counterparty_id:
            amount = receipt.amount if direction == ReceiptDirection.RECEIVE else -receipt.amount
        case _:
            return None

    if not amount:
        return None
    return PaymentEvent(receipt_id=receipt.id, amount=amount)


def _settled_for(
    trade: Trade,
    obligation: Obligation,
    currency: str,
    queue: Sequence[Trade],
    events: Iterable[PaymentEvent],
) -> float:
    net = sum(e.amount for e in events)
    if obligation.direction == WE_OWE_THEM:
        net = -net
    if net <= 0:
        return 0.0

    available = net
    for earlier in queue:
        if earlier.id == trade.id:
            return min(available, obligation.amount)
        earlier_obligation = obligation_for(earlier, currency)
        if earlier_obligation and earlier_obligation.direction == obligation.direction:
            available -= min(available, earlier_obligation.amount)

    # Trade not in its counterparty's queue
    return 0.0


def calculate_progress(
    trades: Iterable[Trade],
    counterparty_trades: Dict[int, List[Trade]],
    payment_events: Dict[EventKey, List[PaymentEvent]],
) -> Dict[int, TradeProgress]:
    """
    Pure bucket-and-pour progress.

    Args:
        trades: Trades to report on
        counterparty_trades: counterparty_id -> all its trades, ordered by created_at, id
        payment_events: (counterparty_id, currency) -> signed payment events

    Returns:
        trade_id -> TradeProgress, every value clamped to [0, 1]
    """
    result = {}
    for trade in trades:
        progress = TradeProgress()
        if trade.counterparty_id is not None:
            queue = counterparty_trades.get(trade.counterparty_id, [])
            for currency in (Currency.AED, Currency.TOMAN):
                obligation = obligation_for(trade, currency)
                if obligation is None or obligation.amount <= 0:
                    continue
                events = payment_events.get((trade.counterparty_id, str(currency)), [])
                settled = _settled_for(trade, obligation, currency, queue, events)
                value = min(max(settled / obligation.amount, 0.0), 1.0)
                if currency == Currency.AED:
                    progress.progress_aed = value
                else:
                    progress.progress_toman = value
        result[trade.id] = progress
    return result


def load_payment_events(session: Session, counterparty_id: int, currency: str) -> List[PaymentEvent]:
    """Signed events for one counterparty and currency, oldest first. Deleted receipts are skipped."""
    account_ids = PartyRegistry.account_ids_for(session, counterparty_id)

    involvement = [
        PaymentReceipt.payer_id == counterparty_id,
        PaymentReceipt.trading_party_id == counterparty_id,
    ]
    if account_ids:
        involvement.append(PaymentReceipt.receiver_account_id.in_(account_ids))

    stmt = select(PaymentReceipt).where(
        PaymentReceipt.currency == str(currency),
        PaymentReceipt.is_deleted == False,  # noqa: E712
        or_(*involvement),
    ).order_by(PaymentReceipt.receipt_date, PaymentReceipt.created_at, PaymentReceipt.id)

    events = []
    for receipt in session.exec(stmt).all():
        event = payment_event_for(receipt, PartyRegistry.receipt_terms(session, receipt), counterparty_id)
        if event:
            events.append(event)
    return events


def progress_for_trades(session: Session, trades: List[Trade]) -> Dict[int, TradeProgress]:
    """Load what calculate_progress needs for `trades` and run it under the ledger read lock."""
    with ledger_lock.read():
        counterparty_ids = {t.counterparty_id for t in trades if t.counterparty_id is not None}

        counterparty_trades = {}
        payment_events = {}
        for cp_id in counterparty_ids:
            stmt = select(Trade).where(Trade.counterparty_id == cp_id).order_by(Trade.created_at, Trade.id)
            counterparty_trades[cp_id] = list(session.exec(stmt).all())
            for currency in (Currency.AED, Currency.TOMAN):
                payment_events[(cp_id, str(currency))] = load_payment_events(session, cp_id, currency)

        return calculate_progress(trades, counterparty_trades, payment_events)
