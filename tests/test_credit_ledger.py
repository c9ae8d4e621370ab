import pytest
from sqlalchemy import func, select

from storyloom.db.models import CreditAccount, CreditTransaction
from storyloom.modules.credits import ledger


def _ledger_sum(db, user_id: str) -> int:
    with db.begin():
        return int(
            db.execute(
                select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(CreditTransaction.account_id == user_id)
            ).scalar_one()
        )


def _transaction_count(db, user_id: str) -> int:
    with db.begin():
        return int(
            db.execute(
                select(func.count()).select_from(CreditTransaction).where(CreditTransaction.account_id == user_id)
            ).scalar_one()
        )


def test_signup_bonus_is_granted_once(db) -> None:
    ledger.open_account(db, "kid-1")
    ledger.open_account(db, "kid-1")
    assert ledger.get_balance(db, "kid-1") == 15
    assert _transaction_count(db, "kid-1") == 1
    assert ledger.has_transaction(db, "kid-1", "signup_bonus", "kid-1") is True


def test_signup_bonus_survives_an_earlier_grant(db) -> None:
    ledger.credit(db, "kid-10", 4, "admin_grant", "promo")
    ledger.open_account(db, "kid-10")
    ledger.open_account(db, "kid-10")

    assert ledger.get_balance(db, "kid-10") == 19
    assert ledger.has_transaction(db, "kid-10", "signup_bonus", "kid-10") is True
    assert _transaction_count(db, "kid-10") == 2


def test_balance_is_sum_of_transactions(db) -> None:
    ledger.open_account(db, "kid-2")
    assert ledger.debit(db, "kid-2", 5, "story_creation", "story-a") is True
    assert ledger.credit(db, "kid-2", 2, "admin_grant", "gift-1") is True
    assert ledger.debit(db, "kid-2", 3, "segment_generation", "seg-1") is True

    assert ledger.get_balance(db, "kid-2") == 9
    assert _ledger_sum(db, "kid-2") == 9
    summary = ledger.get_account_summary(db, "kid-2")
    assert (summary.lifetime_earned, summary.lifetime_spent) == (17, 8)


def test_overdraft_is_rejected_without_writing(db) -> None:
    ledger.credit(db, "kid-3", 3, "admin_grant", "seed")
    before = _transaction_count(db, "kid-3")

    assert ledger.debit(db, "kid-3", 5, "story_creation", "story-b") is False
    assert ledger.get_balance(db, "kid-3") == 3
    assert _transaction_count(db, "kid-3") == before


def test_duplicate_reference_is_not_charged_twice(db) -> None:
    ledger.open_account(db, "kid-4")
    assert ledger.debit(db, "kid-4", 4, "story_creation", "story-c") is True
    assert ledger.debit(db, "kid-4", 4, "story_creation", "story-c") is True
    assert ledger.get_balance(db, "kid-4") == 11

    outcome = ledger.apply_transaction(db, user_id="kid-4", amount=-4, reason="story_creation", reference_id="story-c")
    assert outcome is ledger.LedgerOutcome.DUPLICATE


def test_same_reference_different_reason_is_distinct(db) -> None:
    ledger.open_account(db, "kid-5")
    ledger.debit(db, "kid-5", 5, "story_creation", "story-d")
    ledger.credit(db, "kid-5", 5, "story_creation_refund", "story-d")
    assert ledger.get_balance(db, "kid-5") == 15


def test_stale_sequence_is_retried(db, monkeypatch) -> None:
    ledger.open_account(db, "kid-6")
    real_sequence = ledger._account_sequence
    calls = {"n": 0}

    def stale_then_real(session, user_id):
        calls["n"] += 1
        value = real_sequence(session, user_id)
        # First read pretends another writer has not committed yet.
        return value - 1 if calls["n"] == 1 else value

    monkeypatch.setattr(ledger, "_account_sequence", stale_then_real)
    assert ledger.debit(db, "kid-6", 2, "story_creation", "story-e") is True
    assert calls["n"] == 2
    assert ledger.get_balance(db, "kid-6") == 13

    with db.begin():
        account = db.get(CreditAccount, "kid-6")
        assert account.sequence == 2


def test_concurrent_spend_cannot_overdraw(db, monkeypatch) -> None:
    ledger.credit(db, "kid-7", 5, "admin_grant", "seed")
    assert ledger.debit(db, "kid-7", 5, "story_creation", "story-f") is True

    # A second writer holding the balance and sequence it read before the first spend committed.
    real_sequence = ledger._account_sequence
    real_balance = ledger._balance
    monkeypatch.setattr(ledger, "_balance", lambda session, user_id: 5)
    monkeypatch.setattr(ledger, "_account_sequence", lambda session, user_id: real_sequence(session, user_id) - 1)
    with pytest.raises(RuntimeError, match="contention"):
        ledger.debit(db, "kid-7", 5, "story_creation", "story-g")
    monkeypatch.setattr(ledger, "_balance", real_balance)
    monkeypatch.setattr(ledger, "_account_sequence", real_sequence)

    assert ledger.get_balance(db, "kid-7") == 0
    assert _ledger_sum(db, "kid-7") == 0
    assert ledger.has_transaction(db, "kid-7", "story_creation", "story-g") is False


def test_spend_after_balance_is_used_up_is_rejected(db) -> None:
    ledger.credit(db, "kid-9", 5, "admin_grant", "seed")
    assert ledger.debit(db, "kid-9", 5, "story_creation", "story-i") is True
    assert ledger.debit(db, "kid-9", 1, "segment_generation", "seg-i") is False
    assert ledger.get_balance(db, "kid-9") == 0


def test_transactions_are_listed_newest_first(db) -> None:
    ledger.open_account(db, "kid-8")
    ledger.debit(db, "kid-8", 5, "story_creation", "story-h")
    entries, total = ledger.list_transactions(db, "kid-8", limit=10, offset=0)
    assert total == 2
    assert [entry.reason for entry in entries] == ["story_creation", "signup_bonus"]
    assert [entry.amount for entry in entries] == [-5, 15]
