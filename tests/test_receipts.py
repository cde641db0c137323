# tests/test_receipts.py
from datetime import date

import pytest
from sqlmodel import select

from deskledger.db.models import (
    Currency,
    JournalEntry,
    PaymentReceipt,
    ReceiptDirection,
    Trade,
    TradeSettlement,
    TradeStatus,
)
from deskledger.db.session import UnitOfWork
from deskledger.domain.counterparts import CounterpartLedger
from deskledger.domain.errors import (
    BankAccountNotFoundError,
    CounterpartyNotFoundError,
    InactiveBankAccountError,
    ReceiptAlreadyDeletedError,
    ReceiptNotDeletedError,
    ValidationError,
)
from deskledger.domain.journal import Journal
from deskledger.domain.models import CreateReceiptRequest, CreateTradeRequest
from deskledger.domain.parties import PartyRegistry
from deskledger.domain.receipts import ReceiptService
from deskledger.domain.settlement import SettlementEngine
from deskledger.domain.trades import TradeLedger
from deskledger.utils.clock import ManualClock, SequentialIdGenerator
from deskledger.utils.config import LedgerSettings


def _balances(session, *party_ids):
    session.expire_all()
    return {
        (pid, cur): CounterpartLedger.get_balance(session, pid, cur)
        for pid in party_ids
        for cur in (Currency.AED, Currency.TOMAN)
    }


def test_desk_walkthrough(uow, session, alice, bob, alice_account, make_trade, make_transfer):
    # BUY 1000 AED @ 3 from Alice
    buy = make_trade("BUY", 1000.0, 3.0, counterparty_id=alice.id)
    # SELL 600 AED @ 3.5 to Bob -> FIFO profit 600 * (3.5 - 3) = 300
    sell = make_trade("SELL", 600.0, 3.5, counterparty_id=bob.id)
    assert sell.trade.profit_toman == pytest.approx(300.0)

    before_receipt = _balances(session, alice.id, bob.id)

    # Bob pays 3000 TOMAN into Alice's account: completes the BUY quote leg
    outcome = make_transfer(bob.id, alice_account.id, 3000.0)
    assert not outcome.degraded

    buy_view = TradeLedger.get_trade_by_id(session, buy.id)
    assert buy_view.trade.is_quote_fully_settled
    assert buy_view.progress_toman == pytest.approx(1.0)
    assert buy_view.progress_aed == 0.0

    after = _balances(session, alice.id, bob.id)
    assert after[(alice.id, Currency.TOMAN)] == pytest.approx(0.0)
    assert after[(bob.id, Currency.TOMAN)] == pytest.approx(900.0)
    assert Journal.is_balanced(session)

    # Delete it again: balances and settlement go back, journal stays balanced
    deleted = ReceiptService.delete_receipt(uow, outcome.receipt.id, "Bounced", "receipt_not_landed", "ops")
    assert not deleted.degraded
    assert deleted.receipt.is_deleted
    assert deleted.receipt.deleted_by == "ops"

    assert _balances(session, alice.id, bob.id) == pytest.approx(before_receipt)
    assert Journal.is_balanced(session)
    assert session.exec(select(TradeSettlement)).all() == []

    buy_view = TradeLedger.get_trade_by_id(session, buy.id)
    assert buy_view.trade.status == TradeStatus.PENDING
    assert buy_view.trade.quote_settled_amount == 0.0
    assert buy_view.progress_toman == 0.0

    for party_id in (alice.id, bob.id):
        for currency in (Currency.AED, Currency.TOMAN):
            assert CounterpartLedger.reconcile_statement(session, party_id, currency).is_consistent


def test_receipt_journal_entries(session, alice, bob, alice_account, make_transfer, make_cash):
    transfer = make_transfer(bob.id, alice_account.id, 500.0)
    entry = Journal.get_entries(session, receipt_id=transfer.receipt.id)[0]
    assert entry.entry_number.startswith("RCT-20250101-")
    lines = {l.account_code: l for l in entry.lines}
    assert lines["1101"].debit_amount == 500.0 and lines["1101"].counterpart_id == bob.id
    assert lines["2001"].credit_amount == 500.0 and lines["2001"].counterpart_id == alice.id

    paid = make_cash(alice.id, 70.0, direction=ReceiptDirection.PAY)
    lines = {l.account_code: l for l in Journal.get_entries(session, receipt_id=paid.receipt.id)[0].lines}
    assert lines["2002"].debit_amount == 70.0
    assert lines["1002"].credit_amount == 70.0

    received = make_cash(alice.id, 30.0)
    lines = {l.account_code: l for l in Journal.get_entries(session, receipt_id=received.receipt.id)[0].lines}
    assert lines["1002"].debit_amount == 30.0
    assert lines["1102"].credit_amount == 30.0

    assert CounterpartLedger.get_balance(session, alice.id, Currency.AED) == pytest.approx(-40.0)


def test_toman_cash_receipt(session, alice, make_trade, make_cash):
    buy = make_trade("BUY", 100.0, 3.0, counterparty_id=alice.id)

    make_cash(alice.id, 300.0, direction=ReceiptDirection.PAY, currency=Currency.TOMAN)

    session.expire_all()
    assert session.get(Trade, buy.id).is_quote_fully_settled
    assert CounterpartLedger.get_balance(session, alice.id, Currency.TOMAN) == pytest.approx(0.0)
    assert TradeLedger.get_trade_by_id(session, buy.id).progress_toman == pytest.approx(1.0)


def test_restore_reapplies_effects(uow, session, alice, bob, alice_account, make_trade, make_transfer):
    buy = make_trade("BUY", 1000.0, 3.0, counterparty_id=alice.id)
    outcome = make_transfer(bob.id, alice_account.id, 1200.0)
    after_create = _balances(session, alice.id, bob.id)

    ReceiptService.delete_receipt(uow, outcome.receipt.id, "dup", "duplicate")
    restored = ReceiptService.restore_receipt(uow, outcome.receipt.id, "was fine", "ops")

    assert restored.receipt.is_restored
    assert not restored.receipt.is_deleted
    assert _balances(session, alice.id, bob.id) == pytest.approx(after_create)
    assert session.get(Trade, buy.id).quote_settled_amount == pytest.approx(1200.0)

    prefixes = sorted(e.entry_number.split("-2025")[0] for e in Journal.get_entries(session, receipt_id=outcome.receipt.id))
    assert prefixes == ["RCT", "RCT-DEL", "RCT-RST"]
    assert Journal.is_balanced(session)


def test_restore_incremental_when_reprocess_disabled(session, alice, bob, alice_account):
    uow = UnitOfWork(
        session,
        clock=ManualClock(),
        ids=SequentialIdGenerator(),
        settings=LedgerSettings(reprocess_on_receipt_change=False),
    )
    buy = TradeLedger.create_trade(uow, _buy_request(alice.id))
    outcome = ReceiptService.create_receipt(uow, _transfer_request(bob.id, alice_account.id, 1000.0))

    ReceiptService.delete_receipt(uow, outcome.receipt.id, "dup", "duplicate")
    session.expire_all()
    assert session.get(Trade, buy.id).quote_settled_amount == 0.0

    ReceiptService.restore_receipt(uow, outcome.receipt.id, "back")
    session.expire_all()
    assert session.get(Trade, buy.id).quote_settled_amount == pytest.approx(1000.0)


def test_delete_restore_state_errors(uow, alice, make_cash):
    outcome = make_cash(alice.id, 10.0)

    with pytest.raises(ReceiptNotDeletedError):
        ReceiptService.restore_receipt(uow, outcome.receipt.id, "why")

    ReceiptService.delete_receipt(uow, outcome.receipt.id, "oops", "data_error")
    with pytest.raises(ReceiptAlreadyDeletedError):
        ReceiptService.delete_receipt(uow, outcome.receipt.id, "oops", "data_error")

    with pytest.raises(ValidationError):
        ReceiptService.restore_receipt(uow, outcome.receipt.id, "  ")
    with pytest.raises(ValidationError):
        ReceiptService.delete_receipt(uow, outcome.receipt.id, "x", "not_a_category")


def test_create_receipt_validation(uow, session, alice, bob, alice_account):
    bad_requests = [
        (_transfer_request(bob.id, alice_account.id, -5.0), ValidationError),
        (_transfer_request(bob.id, alice_account.id, 5.0, tracking=""), ValidationError),
        (_transfer_request(999, alice_account.id, 5.0), CounterpartyNotFoundError),
        (_transfer_request(bob.id, 999, 5.0), BankAccountNotFoundError),
        (CreateReceiptRequest(tracking_last_5="1", amount=5.0, currency=Currency.AED,
                              receipt_date=date(2025, 1, 1), payer_id=bob.id,
                              receiver_account_id=alice_account.id), ValidationError),
        (CreateReceiptRequest(tracking_last_5="1", amount=5.0, currency=Currency.AED,
                              receipt_date=date(2025, 1, 1), receipt_type="receive",
                              trading_party_id=alice.id), ValidationError),
    ]
    for request, error in bad_requests:
        with pytest.raises(error):
            ReceiptService.create_receipt(uow, request)

    PartyRegistry.set_account_active(uow, alice_account.id, False)
    with pytest.raises(InactiveBankAccountError):
        ReceiptService.create_receipt(uow, _transfer_request(bob.id, alice_account.id, 5.0))

    assert session.exec(select(PaymentReceipt)).all() == []
    assert session.exec(select(JournalEntry)).all() == []


def test_settlement_failure_degrades_but_keeps_receipt(uow, session, alice, make_cash, monkeypatch):
    def boom(uow, receipt_id):
        raise RuntimeError("settlement offline")

    monkeypatch.setattr(SettlementEngine, "process_receipt", staticmethod(boom))

    outcome = make_cash(alice.id, 10.0)

    assert outcome.degraded
    assert "settlement offline" in outcome.settlement_error
    assert session.get(PaymentReceipt, outcome.receipt.id) is not None
    assert CounterpartLedger.get_balance(session, alice.id, Currency.AED) == pytest.approx(10.0)


def test_failed_settlement_inside_caller_transaction_leaves_no_partial_pour(
    uow, session, alice, make_trade, make_cash, monkeypatch
):
    view = make_trade("BUY", 100.0, 3.0, counterparty_id=alice.id)

    def fail_update(uow, trade, settlement_type, amount):
        raise RuntimeError("trade row unavailable")

    monkeypatch.setattr(SettlementEngine, "_update_trade_settlement", staticmethod(fail_update))

    with uow.transaction():
        outcome = make_cash(alice.id, 40.0)

    assert outcome.degraded
    session.expire_all()
    assert session.exec(select(TradeSettlement)).all() == []

    trade = session.get(Trade, view.id)
    assert trade.base_settled_amount == 0.0
    assert trade.status == TradeStatus.PENDING

    # The receipt itself is committed with the outer transaction
    assert session.get(PaymentReceipt, outcome.receipt.id) is not None
    assert CounterpartLedger.get_balance(session, alice.id, Currency.AED) == pytest.approx(-60.0)
    assert Journal.is_balanced(session)


def test_receipt_inside_caller_transaction_settles_on_commit(uow, session, alice, make_trade, make_cash):
    view = make_trade("BUY", 100.0, 3.0, counterparty_id=alice.id)

    with uow.transaction():
        outcome = make_cash(alice.id, 40.0)

    assert not outcome.degraded
    session.expire_all()
    assert session.get(Trade, view.id).base_settled_amount == pytest.approx(40.0)
    assert len(session.exec(select(TradeSettlement)).all()) == 1


def test_list_receipts_filters(uow, session, alice, bob, alice_account, make_transfer, make_cash):
    t1 = make_transfer(bob.id, alice_account.id, 100.0, receipt_date=date(2025, 1, 2))
    t2 = make_transfer(bob.id, alice_account.id, 200.0, tracking="22222", receipt_date=date(2025, 1, 5))
    cash = make_cash(alice.id, 5.0, receipt_date=date(2025, 1, 3))
    ReceiptService.delete_receipt(uow, t1.receipt.id, "dup", "duplicate")

    live = ReceiptService.list_receipts(session)
    assert [r.id for r in live] == [t2.receipt.id, cash.receipt.id]

    assert [r.id for r in ReceiptService.list_receipts(session, only_deleted=True)] == [t1.receipt.id]
    assert len(ReceiptService.list_receipts(session, include_deleted=True)) == 3
    assert [r.id for r in ReceiptService.list_receipts(session, currency=Currency.AED)] == [cash.receipt.id]
    assert [r.id for r in ReceiptService.list_receipts(
        session, payer_id=bob.id, include_deleted=True, end_date=date(2025, 1, 4)
    )] == [t1.receipt.id]


def _buy_request(counterparty_id):
    return CreateTradeRequest(
        trade_type="BUY", base_currency="AED", quote_currency="TOMAN",
        amount=1000.0, rate=3.0, counterparty_id=counterparty_id,
    )


def _transfer_request(payer_id, account_id, amount, tracking="12345"):
    return CreateReceiptRequest(
        tracking_last_5=tracking,
        amount=amount,
        currency=Currency.TOMAN,
        receipt_date=date(2025, 1, 1),
        payer_id=payer_id,
        receiver_account_id=account_id,
    )
