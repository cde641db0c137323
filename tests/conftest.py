# tests/conftest.py
"""Test configuration and fixtures."""

from datetime import date

import pytest
from sqlmodel import Session, create_engine, SQLModel
from sqlmodel.pool import StaticPool

import deskledger.db.models  # noqa: F401
from deskledger.db.models import Currency, TradeType, ReceiptDirection
from deskledger.db.session import UnitOfWork
from deskledger.domain.models import CreateReceiptRequest, CreateTradeRequest
from deskledger.domain.parties import PartyRegistry
from deskledger.domain.receipts import ReceiptService
from deskledger.domain.trades import TradeLedger
from deskledger.utils.clock import ManualClock, SequentialIdGenerator
from deskledger.utils.config import LedgerSettings


@pytest.fixture(name="session")
def session_fixture():
    """Create in-memory SQLite test database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="settings")
def settings_fixture():
    return LedgerSettings()


@pytest.fixture(name="uow")
def uow_fixture(session: Session, settings: LedgerSettings):
    """Unit of work with a deterministic clock and sequential document numbers."""
    return UnitOfWork(session, clock=ManualClock(), ids=SequentialIdGenerator(), settings=settings)


@pytest.fixture(name="alice")
def alice_fixture(uow):
    return PartyRegistry.create_party(uow, "Alice Exchange")


@pytest.fixture(name="bob")
def bob_fixture(uow):
    return PartyRegistry.create_party(uow, "Bob Trading")


@pytest.fixture(name="alice_account")
def alice_account_fixture(uow, alice):
    return PartyRegistry.create_bank_account(uow, "IR-0001", "Mellat", Currency.TOMAN, alice.id)


@pytest.fixture(name="bob_account")
def bob_account_fixture(uow, bob):
    return PartyRegistry.create_bank_account(uow, "IR-0002", "Saderat", Currency.TOMAN, bob.id)


@pytest.fixture(name="make_trade")
def make_trade_fixture(uow):
    """Factory: make_trade("BUY", 1000, 3, counterparty_id=...) -> TradeView (base AED, quote TOMAN)."""

    def _make(trade_type=TradeType.BUY, amount=1000.0, rate=3.0, counterparty_id=None,
              base=Currency.AED, quote=Currency.TOMAN, **kwargs):
        return TradeLedger.create_trade(uow, CreateTradeRequest(
            trade_type=trade_type,
            base_currency=base,
            quote_currency=quote,
            amount=amount,
            rate=rate,
            counterparty_id=counterparty_id,
            **kwargs,
        ))

    return _make


@pytest.fixture(name="make_transfer")
def make_transfer_fixture(uow):
    """Factory: TOMAN bank transfer from payer into receiver_account."""

    def _make(payer_id, receiver_account_id, amount, tracking="12345", receipt_date=date(2025, 1, 1)):
        return ReceiptService.create_receipt(uow, CreateReceiptRequest(
            tracking_last_5=tracking,
            amount=amount,
            currency=Currency.TOMAN,
            receipt_date=receipt_date,
            payer_id=payer_id,
            receiver_account_id=receiver_account_id,
        ))

    return _make


@pytest.fixture(name="make_cash")
def make_cash_fixture(uow):
    """Factory: cash receipt (AED by default) for a trading party."""

    def _make(party_id, amount, direction=ReceiptDirection.RECEIVE, currency=Currency.AED,
              individual_name="Courier", tracking="00001", receipt_date=date(2025, 1, 1)):
        return ReceiptService.create_receipt(uow, CreateReceiptRequest(
            tracking_last_5=tracking,
            amount=amount,
            currency=currency,
            receipt_date=receipt_date,
            receipt_type=direction,
            trading_party_id=party_id,
            individual_name=individual_name,
        ))

    return _make
