# tests/test_parties.py
import pytest

from deskledger.db.models import Currency, PaymentReceipt, ReceiptDirection
from deskledger.domain.errors import (
    BankAccountInUseError,
    BankAccountNotFoundError,
    CounterpartyNotFoundError,
    PartyInUseError,
    ValidationError,
)
from deskledger.domain.models import CashReceipt, TransferReceipt
from deskledger.domain.parties import PartyRegistry


def test_party_and_account_lifecycle(uow, session):
    party = PartyRegistry.create_party(uow, "  Zed Exchange ", phone="+971")
    account = PartyRegistry.create_bank_account(uow, "IR-9", "Melli", Currency.TOMAN, party.id)

    assert party.name == "Zed Exchange"
    assert account.is_active
    assert PartyRegistry.account_ids_for(session, party.id) == [account.id]

    PartyRegistry.set_account_active(uow, account.id, False)
    assert not PartyRegistry.get_bank_account(session, account.id).is_active

    with pytest.raises(ValidationError):
        PartyRegistry.create_bank_account(uow, "IR-9", "Melli", Currency.TOMAN, party.id)
    with pytest.raises(ValidationError):
        PartyRegistry.create_party(uow, " ")
    with pytest.raises(CounterpartyNotFoundError):
        PartyRegistry.create_bank_account(uow, "IR-10", "Melli", Currency.TOMAN, 404)
    with pytest.raises(BankAccountNotFoundError):
        PartyRegistry.get_bank_account(session, 404)


def test_list_parties_sorted(uow, session, bob, alice):
    assert [p.name for p in PartyRegistry.list_parties(session)] == ["Alice Exchange", "Bob Trading"]


def test_receipt_terms(session, alice, bob, alice_account):
    transfer = PaymentReceipt(tracking_last_5="1", amount=1.0, payer_id=bob.id, receiver_account_id=alice_account.id)
    assert PartyRegistry.receipt_terms(session, transfer) == TransferReceipt(
        payer_id=bob.id, receiver_account_id=alice_account.id, receiver_counterpart_id=alice.id
    )

    cash = PaymentReceipt(tracking_last_5="1", amount=1.0, currency="AED", receipt_type="pay",
                          trading_party_id=alice.id, individual_name="Sam")
    assert PartyRegistry.receipt_terms(session, cash) == CashReceipt(
        trading_party_id=alice.id, direction=ReceiptDirection.PAY, individual_name="Sam"
    )

    with pytest.raises(ValidationError):
        PartyRegistry.receipt_terms(session, PaymentReceipt(tracking_last_5="1", amount=1.0))


def test_update_party(uow, session, alice):
    updated = PartyRegistry.update_party(uow, alice.id, name=" Alice FX ", phone="+98 21 555")

    assert updated.name == "Alice FX"
    assert PartyRegistry.get_party(session, alice.id).phone == "+98 21 555"

    with pytest.raises(ValidationError):
        PartyRegistry.update_party(uow, alice.id)
    with pytest.raises(ValidationError):
        PartyRegistry.update_party(uow, alice.id, name="  ")
    with pytest.raises(CounterpartyNotFoundError):
        PartyRegistry.update_party(uow, 404, notes="gone")


def test_delete_party_guards_references(uow, session, alice, bob, alice_account, make_trade):
    make_trade("BUY", 10.0, 3.0, counterparty_id=bob.id)

    with pytest.raises(PartyInUseError) as exc_info:
        PartyRegistry.delete_party(uow, bob.id)
    assert exc_info.value.details["trade_count"] == 1

    with pytest.raises(PartyInUseError):
        PartyRegistry.delete_party(uow, alice.id)

    PartyRegistry.delete_bank_account(uow, alice_account.id)
    PartyRegistry.delete_party(uow, alice.id)

    assert [p.name for p in PartyRegistry.list_parties(session)] == ["Bob Trading"]
    with pytest.raises(CounterpartyNotFoundError):
        PartyRegistry.delete_party(uow, alice.id)


def test_update_and_delete_bank_account(uow, session, alice, bob, alice_account, bob_account, make_transfer):
    account = PartyRegistry.update_bank_account(
        uow, alice_account.id, bank_name="Tejarat", counterpart_id=bob.id, is_active=False
    )
    assert account.bank_name == "Tejarat"
    assert sorted(PartyRegistry.account_ids_for(session, bob.id)) == sorted([bob_account.id, alice_account.id])
    assert not account.is_active

    with pytest.raises(ValidationError):
        PartyRegistry.update_bank_account(uow, alice_account.id, account_number="IR-0002")
    with pytest.raises(ValidationError):
        PartyRegistry.update_bank_account(uow, alice_account.id, currency="USD")
    with pytest.raises(ValidationError):
        PartyRegistry.update_bank_account(uow, alice_account.id)

    make_transfer(alice.id, bob_account.id, 100.0)
    with pytest.raises(BankAccountInUseError):
        PartyRegistry.delete_bank_account(uow, bob_account.id)
    assert PartyRegistry.get_bank_account(session, bob_account.id).is_active
