# deskledger/domain/parties.py
"""Trading parties and the bank accounts they own."""

import logging
from typing import List, Optional, Union

from sqlalchemy import func, or_
from sqlmodel import Session, select

from deskledger.db.models import BankAccount, Currency, PaymentReceipt, ReceiptDirection, Trade, TradingParty
from deskledger.db.session import UnitOfWork
from deskledger.domain.errors import (
    BankAccountInUseError,
    BankAccountNotFoundError,
    CounterpartyNotFoundError,
    PartyInUseError,
    ValidationError,
)
from deskledger.domain.models import CashReceipt, TransferReceipt

logger = logging.getLogger(__name__)


class PartyRegistry:
    """Create and look up counterparties and bank accounts."""

    @staticmethod
    def create_party(
        uow: UnitOfWork,
        name: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        national_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TradingParty:
        if not name or not name.strip():
            raise ValidationError("Trading party name is required")

        with uow.transaction() as session:
            party = TradingParty(
                name=name.strip(),
                phone=phone,
                email=email,
                national_id=national_id,
                notes=notes,
                created_at=uow.clock.now(),
            )
            session.add(party)
            session.flush()

        logger.info(f"Created trading party #{party.id} ({party.name})")
        return party

    @staticmethod
    def get_party(session: Session, party_id: int) -> TradingParty:
        party = session.get(TradingParty, party_id)
        if not party:
            raise CounterpartyNotFoundError(party_id)
        return party

    @staticmethod
    def list_parties(session: Session) -> List[TradingParty]:
        return list(session.exec(select(TradingParty).order_by(TradingParty.name)).all())

    @staticmethod
    def update_party(
        uow: UnitOfWork,
        party_id: int,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        national_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TradingParty:
        """Change the given fields; None leaves a field as it is."""
        changes = {
            "name": name,
            "phone": phone,
            "email": email,
            "national_id": national_id,
            "notes": notes,
        }
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            raise ValidationError("No fields to update", {"party_id": party_id})
        if "name" in changes:
            if not changes["name"].strip():
                raise ValidationError("Trading party name is required")
            changes["name"] = changes["name"].strip()

        with uow.transaction() as session:
            party = PartyRegistry.get_party(session, party_id)
            for field, value in changes.items():
                setattr(party, field, value)
            session.add(party)
            session.flush()

        logger.info(f"Updated trading party #{party_id}: {', '.join(sorted(changes))}")
        return party

    @staticmethod
    def delete_party(uow: UnitOfWork, party_id: int) -> None:
        """
        Remove a party nothing refers to.

        Raises:
            PartyInUseError: the party has trades, receipts or bank accounts
        """
        with uow.transaction() as session:
            party = PartyRegistry.get_party(session, party_id)

            trade_count = session.exec(
                select(func.count(Trade.id)).where(Trade.counterparty_id == party_id)
            ).one()
            if trade_count:
                raise PartyInUseError(
                    "Cannot delete trading party that has associated trades",
                    {"party_id": party_id, "trade_count": trade_count},
                )

            receipt_count = session.exec(
                select(func.count(PaymentReceipt.id)).where(
                    or_(PaymentReceipt.payer_id == party_id, PaymentReceipt.trading_party_id == party_id)
                )
            ).one()
            account_count = len(PartyRegistry.account_ids_for(session, party_id))
            if receipt_count or account_count:
                raise PartyInUseError(
                    "Cannot delete trading party that has receipts or bank accounts",
                    {"party_id": party_id, "receipt_count": receipt_count, "account_count": account_count},
                )

            session.delete(party)
            session.flush()

        logger.info(f"Deleted trading party #{party_id}")

    @staticmethod
    def create_bank_account(
        uow: UnitOfWork,
        account_number: str,
        bank_name: str,
        currency: str,
        counterpart_id: int,
    ) -> BankAccount:
        if currency not in (Currency.AED, Currency.TOMAN):
            raise ValidationError(f"Unsupported currency {currency}", {"currency": currency})

        with uow.transaction() as session:
            PartyRegistry.get_party(session, counterpart_id)
            PartyRegistry._require_unique_number(session, account_number)

            account = BankAccount(
                account_number=account_number,
                bank_name=bank_name,
                currency=str(currency),
                counterpart_id=counterpart_id,
                is_active=True,
                created_at=uow.clock.now(),
            )
            session.add(account)
            session.flush()

        logger.info(f"Created bank account #{account.id} ({bank_name} {account_number}) for party {counterpart_id}")
        return account

    @staticmethod
    def _require_unique_number(session: Session, account_number: str) -> None:
        existing = session.exec(
            select(BankAccount).where(BankAccount.account_number == account_number)
        ).first()
        if existing:
            raise ValidationError(
                f"Bank account {account_number} already exists",
                {"account_number": account_number},
            )

    @staticmethod
    def get_bank_account(session: Session, account_id: int) -> BankAccount:
        account = session.get(BankAccount, account_id)
        if not account:
            raise BankAccountNotFoundError(account_id)
        return account

    @staticmethod
    def set_account_active(uow: UnitOfWork, account_id: int, is_active: bool) -> BankAccount:
        with uow.transaction() as session:
            account = PartyRegistry.get_bank_account(session, account_id)
            account.is_active = is_active
            session.add(account)
            session.flush()
        return account

    @staticmethod
    def update_bank_account(
        uow: UnitOfWork,
        account_id: int,
        account_number: Optional[str] = None,
        bank_name: Optional[str] = None,
        currency: Optional[str] = None,
        counterpart_id: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> BankAccount:
        """Change the given fields; None leaves a field as it is."""
        if all(v is None for v in (account_number, bank_name, currency, counterpart_id, is_active)):
            raise ValidationError("No fields to update", {"account_id": account_id})
        if currency is not None and currency not in (Currency.AED, Currency.TOMAN):
            raise ValidationError(f"Unsupported currency {currency}", {"currency": currency})

        with uow.transaction() as session:
            account = PartyRegistry.get_bank_account(session, account_id)
            if account_number is not None and account_number != account.account_number:
                PartyRegistry._require_unique_number(session, account_number)
                account.account_number = account_number
            if bank_name is not None:
                account.bank_name = bank_name
            if currency is not None:
                account.currency = str(currency)
            if counterpart_id is not None:
                PartyRegistry.get_party(session, counterpart_id)
                account.counterpart_id = counterpart_id
            if is_active is not None:
                account.is_active = is_active
            session.add(account)
            session.flush()

        logger.info(f"Updated bank account #{account_id}")
        return account

    @staticmethod
    def delete_bank_account(uow: UnitOfWork, account_id: int) -> None:
        """
        Remove an account no receipt was paid into.

        Raises:
            BankAccountInUseError: receipts reference the account; deactivate it instead
        """
        with uow.transaction() as session:
            account = PartyRegistry.get_bank_account(session, account_id)
            receipt_count = session.exec(
                select(func.count(PaymentReceipt.id)).where(PaymentReceipt.receiver_account_id == account_id)
            ).one()
            if receipt_count:
                raise BankAccountInUseError(
                    "Cannot delete account with existing receipts. Deactivate instead.",
                    {"account_id": account_id, "receipt_count": receipt_count},
                )
            session.delete(account)
            session.flush()

        logger.info(f"Deleted bank account #{account_id}")

    @staticmethod
    def account_ids_for(session: Session, counterpart_id: int) -> List[int]:
        stmt = select(BankAccount.id).where(BankAccount.counterpart_id == counterpart_id)
        return list(session.exec(stmt).all())

    @staticmethod
    def receipt_terms(session: Session, receipt: PaymentReceipt) -> Union[TransferReceipt, CashReceipt]:
        """
        Tagged view of a receipt row.

        Cash receipts carry a trading party and direction (all AED receipts, and
        TOMAN receipts recorded the AED way); everything else is a bank transfer.
        """
        if receipt.trading_party_id is not None and receipt.receipt_type:
            return CashReceipt(
                trading_party_id=receipt.trading_party_id,
                direction=ReceiptDirection(receipt.receipt_type),
                individual_name=receipt.individual_name,
            )

        if receipt.payer_id is not None or receipt.receiver_account_id is not None:
            receiver_counterpart_id = None
            if receipt.receiver_account_id is not None:
                account = session.get(BankAccount, receipt.receiver_account_id)
                receiver_counterpart_id = account.counterpart_id if account else None
            return TransferReceipt(
                payer_id=receipt.payer_id,
                receiver_account_id=receipt.receiver_account_id,
                receiver_counterpart_id=receiver_counterpart_id,
            )

        raise ValidationError(
            f"Receipt {receipt.id} has neither transfer nor cash details",
            {"receipt_id": receipt.id},
        )
