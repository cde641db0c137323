# tests/test_journal.py
from datetime import date

import pytest
from sqlmodel import select

from deskledger.db.models import Currency, JournalEntry
from deskledger.domain.errors import NotFoundError, UnbalancedEntryError
from deskledger.domain.journal import (
    Journal,
    line,
    purchase_lines,
    reversed_lines,
    sale_lines,
)


def _totals(lines):
    totals = {}
    for l in lines:
        debit, credit = totals.get(l.currency, (0.0, 0.0))
        totals[l.currency] = (debit + l.debit_amount, credit + l.credit_amount)
    return totals


def test_purchase_lines_balance_per_currency():
    lines = purchase_lines(Currency.AED, Currency.TOMAN, 1000.0, 3000.0)
    totals = _totals(lines)

    assert totals["AED"] == (1000.0, 1000.0)
    assert totals["TOMAN"] == (3000.0, 3000.0)
    assert {l.account_code for l in lines} == {"1202", "3102", "3101", "2001"}


def test_sale_lines_book_profit_and_loss():
    profit = sale_lines(Currency.AED, Currency.TOMAN, 600.0, 2100.0, 1800.0, 300.0)
    assert any(l.account_code == "4001" and l.credit_amount == 300.0 for l in profit)
    Journal.check_balanced(profit)

    loss = sale_lines(Currency.AED, Currency.TOMAN, 600.0, 1500.0, 1800.0, -300.0)
    assert any(l.account_code == "5001" and l.debit_amount == 300.0 for l in loss)
    Journal.check_balanced(loss)


def test_check_balanced_rejects_bad_entries():
    with pytest.raises(UnbalancedEntryError):
        Journal.check_balanced([line("1001", Currency.TOMAN, debit=10.0)])

    with pytest.raises(UnbalancedEntryError):
        Journal.check_balanced([
            line("1001", Currency.TOMAN, debit=10.0),
            line("2001", Currency.TOMAN, credit=9.0),
        ])

    # Balanced in total but not per currency
    with pytest.raises(UnbalancedEntryError):
        Journal.check_balanced([
            line("1001", Currency.TOMAN, debit=10.0),
            line("2002", Currency.AED, credit=10.0),
        ])

    with pytest.raises(UnbalancedEntryError):
        Journal.check_balanced([
            line("1001", Currency.TOMAN, debit=-10.0),
            line("2001", Currency.TOMAN, credit=-10.0),
        ])


def test_post_entry_numbers_and_drops_zero_lines(uow, session):
    lines = [
        line("1001", Currency.TOMAN, debit=500.0),
        line("2001", Currency.TOMAN, credit=500.0),
        line("4001", Currency.TOMAN),
    ]
    entry = Journal.post_entry(uow, lines, "Opening cash", date(2025, 1, 1))

    assert entry.entry_number == "JE-20250101-000001"
    stored = Journal.get_lines(session, entry.id)
    assert [l.account_code for l in stored] == ["1001", "2001"]
    assert stored[0].account_name == "Cash - Toman"


def test_unbalanced_post_leaves_no_trace(uow, session):
    with pytest.raises(UnbalancedEntryError):
        Journal.post_entry(
            uow,
            [line("1001", Currency.TOMAN, debit=1.0), line("2001", Currency.TOMAN, credit=2.0)],
            "bad",
            date(2025, 1, 1),
        )
    assert session.exec(select(JournalEntry)).all() == []


def test_reversing_entry_zeroes_balances(uow, session):
    lines = purchase_lines(Currency.AED, Currency.TOMAN, 100.0, 300.0)
    Journal.post_entry(uow, lines, "buy", date(2025, 1, 1))
    assert len(Journal.get_balances(session)) == 4

    Journal.post_entry(uow, reversed_lines(lines), "reverse buy", date(2025, 1, 2))

    assert Journal.get_balances(session) == []
    assert Journal.is_balanced(session)
    trial = {t.currency: t for t in Journal.get_trial_balance(session)}
    assert trial["AED"].total_debit == pytest.approx(200.0)
    assert trial["TOMAN"].total_credit == pytest.approx(600.0)


def test_get_balances_filters_and_signs(uow, session):
    Journal.post_entry(uow, purchase_lines(Currency.AED, Currency.TOMAN, 100.0, 300.0), "buy", date(2025, 1, 1))

    toman = Journal.get_balances(session, currency=Currency.TOMAN)
    by_code = {b.account_code: b.balance for b in toman}
    assert by_code == {"2001": -300.0, "3101": 300.0}

    inventory = Journal.get_balances(session, account_code="1202")
    assert len(inventory) == 1
    assert inventory[0].account_type == "ASSET"


def test_get_entries_newest_first(uow, session):
    first = Journal.post_entry(uow, purchase_lines(Currency.AED, Currency.TOMAN, 1.0, 3.0), "one", date(2025, 1, 1))
    second = Journal.post_entry(uow, purchase_lines(Currency.AED, Currency.TOMAN, 2.0, 6.0), "two", date(2025, 1, 1))

    entries = Journal.get_entries(session)
    assert [e.id for e in entries] == [second.id, first.id]
    assert len(entries[0].lines) == 4

    with pytest.raises(NotFoundError):
        Journal.get_entry(session, 999)


def test_balance_check_scales_with_toman_magnitudes():
    big = 4.5e12
    # A rounding-sized gap at this magnitude is still balanced
    Journal.check_balanced([
        line("1201", Currency.TOMAN, debit=big + 0.001),
        line("2001", Currency.TOMAN, credit=big),
    ])

    with pytest.raises(UnbalancedEntryError):
        Journal.check_balanced([
            line("1201", Currency.TOMAN, debit=big + 100.0),
            line("2001", Currency.TOMAN, credit=big),
        ])


def test_trial_balance_stays_balanced_at_desk_volumes(session, make_trade):
    for i in range(60):
        amount = 1_000.0 + i * 14_983.7
        make_trade("BUY", amount, 14_000.0 + i * 773.31)
        make_trade("SELL", amount * 0.9, 14_500.0 + i * 771.17)

    totals = {t.currency: t for t in Journal.get_trial_balance(session)}
    assert totals["TOMAN"].total_debit > 1e12
    assert Journal.is_balanced(session)
