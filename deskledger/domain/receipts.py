# deskledger/domain/receipts.py
"""
Payment receipts: creation, soft deletion and restoration.

Each mutation moves counterpart balances and posts a journal entry in one
transaction. Settlement is processed after that transaction commits; a
settlement failure does not undo the receipt and is reported on the outcome.
"""

import logging
from datetime import date
from typing import List, Optional, Tuple, Union

from sqlmodel import Session, select

from deskledger.db.models import (
    BankAccount,
    Currency,
    DeletionReason,
    PaymentReceipt,
    ReceiptDirection,
    TradingParty,
    TransactionType,
)
from deskledger.db.session import UnitOfWork
from deskledger.domain.counterparts import CounterpartLedger
from deskledger.domain.errors import (
    BankAccountNotFoundError,
    CounterpartyNotFoundError,
    InactiveBankAccountError,
    ReceiptAlreadyDeletedError,
    ReceiptNotDeletedError,
    ReceiptNotFoundError,
    ValidationError,
)
from deskledger.domain.journal import CASH, PAYABLES, RECEIVABLES, Journal, line, reversed_lines
from deskledger.domain.models import (
    CashReceipt,
    CreateReceiptRequest,
    JournalLine,
    ReceiptOutcome,
    TransferReceipt,
)
from deskledger.domain.parties import PartyRegistry
from deskledger.domain.settlement import SettlementEngine
from deskledger.utils.formatting import format_amount

logger = logging.getLogger(__name__)

ReceiptTerms = Union[TransferReceipt, CashReceipt]

# (counterpart_id, signed amount, description suffix)
BalanceEffect = Tuple[int, float, str]


def balance_effects(receipt: PaymentReceipt, terms: ReceiptTerms) -> List[BalanceEffect]:
    """
    Forward counterpart balance movements of a receipt.

    A transfer credits the payer (they owe us less) and debits the receiving
    account's owner (we owe them less). Cash received credits the trading
    party, cash paid out debits it.
    """
    match terms:
        case TransferReceipt(payer_id=payer_id, receiver_counterpart_id=receiver_id):
            effects = [(payer_id, receipt.amount, "Payment made")]
            if receiver_id is not None:
                effects.append((receiver_id, -receipt.amount, "Payment received"))
            return effects
        case CashReceipt(trading_party_id=party_id, direction=direction, individual_name=name):
            amount = receipt.amount if direction == ReceiptDirection.RECEIVE else -receipt.amount
            return [(party_id, amount, f"{receipt.currency} {direction} {name or ''}".rstrip())]


def journal_lines(receipt: PaymentReceipt, terms: ReceiptTerms) -> List[JournalLine]:
    """Forward journal lines of a receipt."""
    currency = Currency(receipt.currency)
    match terms:
        case TransferReceipt(payer_id=payer_id, receiver_counterpart_id=receiver_id):
            return [
                line(RECEIVABLES[currency], currency, debit=receipt.amount, counterpart_id=payer_id),
                line(PAYABLES[currency], currency, credit=receipt.amount, counterpart_id=receiver_id),
            ]
        case CashReceipt(trading_party_id=party_id, direction=ReceiptDirection.RECEIVE):
            return [
                line(CASH[currency], currency, debit=receipt.amount),
                line(RECEIVABLES[currency], currency, credit=receipt.amount, counterpart_id=party_id),
            ]
        case CashReceipt(trading_party_id=party_id):
            return [
                line(PAYABLES[currency], currency, debit=receipt.amount, counterpart_id=party_id),
                line(CASH[currency], currency, credit=receipt.amount),
            ]


def _entry_description(session: Session, receipt: PaymentReceipt, terms: ReceiptTerms) -> str:
    amount = format_amount(receipt.amount)
    match terms:
        case TransferReceipt(payer_id=payer_id, receiver_counterpart_id=receiver_id):
            payer = session.get(TradingParty, payer_id)
            receiver = session.get(TradingParty, receiver_id) if receiver_id is not None else None
            return (
                f"Receipt: {payer.name if payer else payer_id} paid {amount} {receipt.currency} "
                f"to {receiver.name if receiver else 'unknown'}"
            )
        case CashReceipt(trading_party_id=party_id, direction=direction, individual_name=name):
            party = session.get(TradingParty, party_id)
            preposition = "to" if direction == ReceiptDirection.PAY else "from"
            return (
                f"Receipt: {direction} {amount} {receipt.currency} {preposition} "
                f"{name or 'cash'} ({party.name if party else party_id})"
            )


class ReceiptService:
    """Receipt lifecycle and queries."""

    @staticmethod
    def _validate(session: Session, request: CreateReceiptRequest) -> ReceiptTerms:
        """Check the request and resolve it to its transfer or cash terms."""
        tracking = (request.tracking_last_5 or "").strip()
        if not tracking or len(tracking) > 20:
            raise ValidationError("tracking_last_5 must be 1-20 characters", {"tracking_last_5": request.tracking_last_5})
        if request.amount is None or request.amount <= 0:
            raise ValidationError("Receipt amount must be positive", {"amount": request.amount})
        if request.currency not in (Currency.AED, Currency.TOMAN):
            raise ValidationError(f"Unsupported currency {request.currency}", {"currency": request.currency})

        if request.receipt_type is not None or request.trading_party_id is not None:
            if request.receipt_type not in (ReceiptDirection.PAY, ReceiptDirection.RECEIVE):
                raise ValidationError(
                    "Cash receipts need receipt_type 'pay' or 'receive'",
                    {"receipt_type": request.receipt_type},
                )
            if request.trading_party_id is None or not (request.individual_name or "").strip():
                raise ValidationError("Cash receipts need trading_party_id and individual_name")
            if not session.get(TradingParty, request.trading_party_id):
                raise CounterpartyNotFoundError(request.trading_party_id)
            return CashReceipt(
                trading_party_id=request.trading_party_id,
                direction=ReceiptDirection(request.receipt_type),
                individual_name=request.individual_name.strip(),
            )

        if request.currency != Currency.TOMAN:
            raise ValidationError(
                "AED receipts are cash only: receipt_type, trading_party_id and individual_name are required",
                {"currency": request.currency},
            )
        if request.payer_id is None or request.receiver_account_id is None:
            raise ValidationError("TOMAN transfers need payer_id and receiver_account_id")
        if not session.get(TradingParty, request.payer_id):
            raise CounterpartyNotFoundError(request.payer_id)
        account = session.get(BankAccount, request.receiver_account_id)
        if not account:
            raise BankAccountNotFoundError(request.receiver_account_id)
        if not account.is_active:
            raise InactiveBankAccountError(request.receiver_account_id)
        return TransferReceipt(
            payer_id=request.payer_id,
            receiver_account_id=account.id,
            receiver_counterpart_id=account.counterpart_id,
        )

    @staticmethod
    def _apply_balances(
        uow: UnitOfWork,
        receipt: PaymentReceipt,
        terms: ReceiptTerms,
        sign: float,
        label: str,
        transaction_date: date,
    ) -> None:
        for counterpart_id, amount, suffix in balance_effects(receipt, terms):
            CounterpartLedger.update_balance(
                uow,
                counterpart_id,
                receipt.currency,
                sign * amount,
                TransactionType.RECEIPT,
                f"{label} - {suffix}",
                transaction_date,
                receipt_id=receipt.id,
            )

    @staticmethod
    def _settle_after_commit(uow: UnitOfWork, outcome: ReceiptOutcome, reprocess: bool) -> ReceiptOutcome:
        """
        Best-effort settlement once the receipt's own writes are done.

        When the caller holds an open transaction the receipt is not committed
        yet, so settlement runs under a savepoint and a failure discards only
        the partial allocation.
        """
        savepoint = uow.session.begin_nested() if uow.in_transaction else None
        try:
            if reprocess:
                SettlementEngine.reprocess_all_receipts(uow)
            else:
                SettlementEngine.process_receipt(uow, outcome.receipt.id)
        except Exception as e:
            if savepoint is not None:
                savepoint.rollback()
            logger.exception(f"Settlement processing failed for receipt {outcome.receipt.id} (receipt kept)")
            outcome.settlement_error = str(e)
        else:
            if savepoint is not None:
                savepoint.commit()
        return outcome

    @staticmethod
    def create_receipt(uow: UnitOfWork, request: CreateReceiptRequest) -> ReceiptOutcome:
        """
        Record a receipt, move balances, post its journal entry, then settle it.

        Raises:
            ValidationError: malformed request
            CounterpartyNotFoundError / BankAccountNotFoundError: unknown references
            InactiveBankAccountError: receiving account is disabled
        """
        with uow.transaction() as session:
            terms = ReceiptService._validate(session, request)

            receipt = PaymentReceipt(
                tracking_last_5=request.tracking_last_5.strip(),
                amount=request.amount,
                currency=str(request.currency),
                receipt_date=request.receipt_date,
                notes=request.notes,
                created_at=uow.clock.now(),
            )
            match terms:
                case TransferReceipt():
                    receipt.payer_id = terms.payer_id
                    receipt.receiver_account_id = terms.receiver_account_id
                case CashReceipt():
                    receipt.receipt_type = str(terms.direction)
                    receipt.trading_party_id = terms.trading_party_id
                    receipt.individual_name = terms.individual_name
            session.add(receipt)
            session.flush()

            label = f"Receipt #{receipt.id} - ...{receipt.tracking_last_5}"
            ReceiptService._apply_balances(uow, receipt, terms, 1.0, label, receipt.receipt_date)
            Journal.post_entry(
                uow,
                journal_lines(receipt, terms),
                _entry_description(session, receipt, terms),
                receipt.receipt_date,
                receipt_id=receipt.id,
                prefix="RCT",
            )

        logger.info(f"Created receipt #{receipt.id}: {receipt.amount} {receipt.currency}")
        return ReceiptService._settle_after_commit(uow, ReceiptOutcome(receipt=receipt), reprocess=False)

    @staticmethod
    def delete_receipt(
        uow: UnitOfWork,
        receipt_id: int,
        reason: str,
        reason_category: str,
        deleted_by: Optional[str] = None,
    ) -> ReceiptOutcome:
        """
        Soft-delete a receipt: reverse its balance movements and journal entry,
        then rebuild settlement without it.
        """
        if not reason or not reason.strip():
            raise ValidationError("Deletion reason is required")
        if reason_category not in {str(r) for r in DeletionReason}:
            raise ValidationError(f"Unknown deletion category {reason_category}", {"reason_category": reason_category})

        with uow.transaction() as session:
            receipt = ReceiptService.get_receipt(session, receipt_id)
            if receipt.is_deleted:
                raise ReceiptAlreadyDeletedError(receipt_id)

            terms = PartyRegistry.receipt_terms(session, receipt)
            today = uow.clock.today()
            label = f"Receipt #{receipt.id} Deleted - {reason_category}: {reason}"

            ReceiptService._apply_balances(uow, receipt, terms, -1.0, label, today)
            Journal.post_entry(
                uow,
                reversed_lines(journal_lines(receipt, terms)),
                label,
                today,
                receipt_id=receipt.id,
                prefix="RCT-DEL",
            )

            receipt.is_deleted = True
            receipt.deleted_at = uow.clock.now()
            receipt.deletion_reason = reason
            receipt.deletion_reason_category = str(reason_category)
            receipt.deleted_by = deleted_by or "Unknown"
            session.add(receipt)
            session.flush()

        logger.info(f"Deleted receipt #{receipt_id} ({reason_category})")
        return ReceiptService._settle_after_commit(uow, ReceiptOutcome(receipt=receipt), reprocess=True)

    @staticmethod
    def restore_receipt(
        uow: UnitOfWork,
        receipt_id: int,
        reason: str,
        restored_by: Optional[str] = None,
    ) -> ReceiptOutcome:
        """Undo a soft delete: re-apply the forward effects, then settle again."""
        if not reason or not reason.strip():
            raise ValidationError("Restoration reason is required")

        with uow.transaction() as session:
            receipt = ReceiptService.get_receipt(session, receipt_id)
            if not receipt.is_deleted:
                raise ReceiptNotDeletedError(receipt_id)

            terms = PartyRegistry.receipt_terms(session, receipt)
            today = uow.clock.today()
            label = f"Receipt #{receipt.id} Restored - {reason}"

            ReceiptService._apply_balances(uow, receipt, terms, 1.0, label, today)
            Journal.post_entry(
                uow,
                journal_lines(receipt, terms),
                label,
                today,
                receipt_id=receipt.id,
                prefix="RCT-RST",
            )

            receipt.is_deleted = False
            receipt.is_restored = True
            receipt.restored_at = uow.clock.now()
            receipt.restoration_reason = reason
            receipt.restored_by = restored_by or "Unknown"
            session.add(receipt)
            session.flush()

        logger.info(f"Restored receipt #{receipt_id}")
        return ReceiptService._settle_after_commit(
            uow, ReceiptOutcome(receipt=receipt), reprocess=uow.settings.reprocess_on_receipt_change
        )

    @staticmethod
    def get_receipt(session: Session, receipt_id: int) -> PaymentReceipt:
        receipt = session.get(PaymentReceipt, receipt_id)
        if not receipt:
            raise ReceiptNotFoundError(receipt_id)
        return receipt

    @staticmethod
    def list_receipts(
        session: Session,
        include_deleted: bool = False,
        only_deleted: bool = False,
        payer_id: Optional[int] = None,
        account_id: Optional[int] = None,
        currency: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[PaymentReceipt]:
        """Receipts newest first; deleted ones only when asked for."""
        stmt = select(PaymentReceipt)
        if only_deleted:
            stmt = stmt.where(PaymentReceipt.is_deleted == True)  # noqa: E712
        elif not include_deleted:
            stmt = stmt.where(PaymentReceipt.is_deleted == False)  # noqa: E712
        if payer_id is not None:
            stmt = stmt.where(PaymentReceipt.payer_id == payer_id)
        if account_id is not None:
            stmt = stmt.where(PaymentReceipt.receiver_account_id == account_id)
        if currency:
            stmt = stmt.where(PaymentReceipt.currency == str(currency))
        if start_date:
            stmt = stmt.where(PaymentReceipt.receipt_date >= start_date)
        if end_date:
            stmt = stmt.where(PaymentReceipt.receipt_date <= end_date)
        stmt = stmt.order_by(
            PaymentReceipt.receipt_date.desc(), PaymentReceipt.created_at.desc(), PaymentReceipt.id.desc()
        )
        return list(session.exec(stmt).all())
