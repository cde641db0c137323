# deskledger/domain/settlement.py
"""
Settlement engine.

Receipts are poured into a counterparty's open trades in creation order,
base leg before quote leg, each pour recorded as a TradeSettlement row.
The whole allocation can be thrown away and rebuilt from the receipts.
"""

import logging
from collections import defaultdict
from typing import Dict, List

from sqlalchemy import delete, func
from sqlmodel import Session, select

from deskledger.db.models import (
    Currency,
    PaymentReceipt,
    SettlementType,
    Trade,
    TradeSettlement,
    TradeStatus,
    TradeType,
)
from deskledger.db.session import UnitOfWork
from deskledger.domain.errors import (
    InvalidStateError,
    ReceiptAlreadySettledError,
    ReceiptNotFoundError,
    TradeNotFoundError,
)
from deskledger.domain.models import CashReceipt, TransferReceipt
from deskledger.domain.parties import PartyRegistry
from deskledger.utils.locks import ledger_lock

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (TradeStatus.COMPLETED, TradeStatus.CANCELLED)


def derive_status(trade: Trade, tolerance: float = 1e-6) -> str:
    """
    Status implied by the settled amounts.

    CANCELLED is terminal and BUY_SELL trades are complete on creation; for
    everything else both legs full means COMPLETED, any fill means PARTIAL.
    """
    if trade.status == TradeStatus.CANCELLED:
        return TradeStatus.CANCELLED
    if trade.trade_type == TradeType.BUY_SELL:
        return TradeStatus.COMPLETED
    if trade.is_base_fully_settled and trade.is_quote_fully_settled:
        return TradeStatus.COMPLETED
    if trade.base_settled_amount > tolerance or trade.quote_settled_amount > tolerance:
        return TradeStatus.PARTIAL
    return TradeStatus.PENDING


class SettlementEngine:
    """Bucket-and-pour allocation of receipts to trade legs."""

    @staticmethod
    def process_receipt(uow: UnitOfWork, receipt_id: int) -> None:
        """
        Allocate one receipt.

        Cash receipts settle their trading party only. Transfers settle the
        receiving account's owner first and then the payer, each with the full
        amount, since one transfer discharges obligations on both sides.

        Raises:
            ReceiptNotFoundError: unknown receipt
            InvalidStateError: receipt is deleted
            ReceiptAlreadySettledError: receipt already has allocations (use reprocess_all_receipts)
        """
        with uow.transaction() as session:
            receipt = session.get(PaymentReceipt, receipt_id)
            if not receipt:
                raise ReceiptNotFoundError(receipt_id)
            if receipt.is_deleted:
                raise InvalidStateError(
                    f"Receipt {receipt_id} is deleted and cannot be settled",
                    {"receipt_id": receipt_id},
                )
            already_settled = session.exec(
                select(TradeSettlement.id).where(TradeSettlement.receipt_id == receipt_id)
            ).first()
            if already_settled is not None:
                raise ReceiptAlreadySettledError(receipt_id)

            match PartyRegistry.receipt_terms(session, receipt):
                case CashReceipt(trading_party_id=party_id):
                    targets = [party_id]
                case TransferReceipt(payer_id=payer_id, receiver_counterpart_id=receiver_id):
                    targets = []
                    if receiver_id is not None:
                        targets.append(receiver_id)
                    if payer_id is not None and payer_id != receiver_id:
                        targets.append(payer_id)

            if not targets:
                logger.warning(f"Receipt {receipt_id} has no counterparty to settle, skipping")

            for counterparty_id in targets:
                SettlementEngine.apply_settlement_to_counterparty(uow, receipt, counterparty_id, receipt.amount)

        logger.info(f"Settlement processed for receipt {receipt_id} ({receipt.amount} {receipt.currency})")

    @staticmethod
    def apply_settlement_to_counterparty(
        uow: UnitOfWork,
        receipt: PaymentReceipt,
        counterparty_id: int,
        amount: float,
    ) -> float:
        """
        Pour `amount` into the counterparty's open trades, oldest first.

        Returns:
            The part of `amount` no trade leg could absorb
        """
        tolerance = uow.settings.balance_tolerance

        with uow.transaction() as session:
            stmt = select(Trade.id).where(
                Trade.counterparty_id == counterparty_id,
                Trade.status.not_in([str(s) for s in CLOSED_STATUSES]),
            ).order_by(Trade.created_at, Trade.id)
            trade_ids = list(session.exec(stmt).all())

            remaining = amount
            for trade_id in trade_ids:
                if remaining <= tolerance:
                    break

                trade = session.get(Trade, trade_id)
                if trade is None:
                    logger.warning(f"Trade {trade_id} vanished during settlement of receipt {receipt.id}, skipping")
                    continue

                legs = (
                    (SettlementType.BASE, trade.base_currency, trade.amount - trade.base_settled_amount),
                    (SettlementType.QUOTE, trade.quote_currency, trade.total_value - trade.quote_settled_amount),
                )
                for settlement_type, leg_currency, unsettled in legs:
                    if remaining <= tolerance:
                        break
                    if receipt.currency != leg_currency or unsettled <= tolerance:
                        continue

                    pour = min(remaining, unsettled)
                    SettlementEngine._record_settlement(uow, trade, receipt, pour, settlement_type)
                    SettlementEngine._update_trade_settlement(uow, trade, settlement_type, pour)
                    remaining -= pour

            session.flush()

        return max(remaining, 0.0)

    @staticmethod
    def _record_settlement(
        uow: UnitOfWork,
        trade: Trade,
        receipt: PaymentReceipt,
        amount: float,
        settlement_type: str,
    ) -> TradeSettlement:
        session = uow.session
        max_seq = session.exec(
            select(func.coalesce(func.max(TradeSettlement.fifo_sequence), 0)).where(
                TradeSettlement.trade_id == trade.id,
                TradeSettlement.settlement_type == str(settlement_type),
            )
        ).one()

        settlement = TradeSettlement(
            trade_id=trade.id,
            receipt_id=receipt.id,
            currency=receipt.currency,
            settled_amount=amount,
            settlement_type=str(settlement_type),
            settlement_date=uow.clock.today(),
            fifo_sequence=max_seq + 1,
            created_at=uow.clock.now(),
        )
        session.add(settlement)
        session.flush()
        return settlement

    @staticmethod
    def _update_trade_settlement(uow: UnitOfWork, trade: Trade, settlement_type: str, amount: float) -> None:
        tolerance = uow.settings.balance_tolerance

        if settlement_type == SettlementType.BASE:
            trade.base_settled_amount += amount
        else:
            trade.quote_settled_amount += amount

        trade.is_base_fully_settled = trade.base_settled_amount >= trade.amount - tolerance
        trade.is_quote_fully_settled = trade.quote_settled_amount >= trade.total_value - tolerance
        trade.status = derive_status(trade, tolerance)
        trade.last_settlement_date = uow.clock.today()
        trade.updated_at = uow.clock.now()
        uow.session.add(trade)

        logger.info(
            f"Trade {trade.trade_number}: +{amount} {settlement_type} -> {trade.status} "
            f"(base {trade.is_base_fully_settled}, quote {trade.is_quote_fully_settled})"
        )

    @staticmethod
    def reprocess_all_receipts(uow: UnitOfWork) -> int:
        """
        Rebuild every allocation from scratch.

        Clears all TradeSettlement rows, resets settled amounts and flags on
        every trade, then replays each live receipt in creation order. Running
        it twice yields the same allocation.

        Returns:
            Number of receipts replayed
        """
        with ledger_lock.write():
            with uow.transaction() as session:
                session.exec(delete(TradeSettlement))

                for trade in session.exec(select(Trade)).all():
                    trade.base_settled_amount = 0.0
                    trade.quote_settled_amount = 0.0
                    trade.is_base_fully_settled = False
                    trade.is_quote_fully_settled = False
                    trade.last_settlement_date = None
                    trade.status = derive_status(trade, uow.settings.balance_tolerance)
                    session.add(trade)
                session.flush()

                stmt = select(PaymentReceipt.id).where(
                    PaymentReceipt.is_deleted == False  # noqa: E712
                ).order_by(PaymentReceipt.created_at, PaymentReceipt.id)
                receipt_ids = list(session.exec(stmt).all())

                for receipt_id in receipt_ids:
                    SettlementEngine.process_receipt(uow, receipt_id)

        logger.info(f"Reprocessed {len(receipt_ids)} receipts")
        return len(receipt_ids)

    @staticmethod
    def get_trade_settlements(session: Session, trade_id: int) -> List[TradeSettlement]:
        """Allocation audit trail for one trade, by leg then FIFO sequence."""
        if not session.get(Trade, trade_id):
            raise TradeNotFoundError(trade_id)
        stmt = select(TradeSettlement).where(
            TradeSettlement.trade_id == trade_id
        ).order_by(TradeSettlement.settlement_type, TradeSettlement.fifo_sequence)
        return list(session.exec(stmt).all())

    @staticmethod
    def get_settlement_summary(session: Session) -> Dict:
        """Trade counts per status and settled / outstanding totals per currency."""
        counts = {str(s): 0 for s in TradeStatus}
        settled = defaultdict(float)
        outstanding = defaultdict(float)

        for trade in session.exec(select(Trade)).all():
            counts[trade.status] = counts.get(trade.status, 0) + 1
            if trade.trade_type == TradeType.BUY_SELL or trade.status == TradeStatus.CANCELLED:
                continue
            settled[trade.base_currency] += trade.base_settled_amount
            settled[trade.quote_currency] += trade.quote_settled_amount
            outstanding[trade.base_currency] += max(trade.amount - trade.base_settled_amount, 0.0)
            outstanding[trade.quote_currency] += max(trade.total_value - trade.quote_settled_amount, 0.0)

        return {
            "status_counts": counts,
            "settled": {str(c): settled[str(c)] for c in Currency},
            "outstanding": {str(c): outstanding[str(c)] for c in Currency},
        }
