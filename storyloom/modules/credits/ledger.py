"""Append-only credit ledger.

The balance of an account is never stored; it is the sum of its
transactions. Writers serialize on ``credit_accounts.sequence`` with a
compare-and-set update, so two concurrent spends cannot both observe the
same balance and commit.

Every function here opens its own transaction with ``db.begin()`` and must be
called with a session that has no transaction in progress.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storyloom.config import settings
from storyloom.db.models import CreditAccount, CreditTransaction
from storyloom.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

LEDGER_MAX_ATTEMPTS = 3
SIGNUP_BONUS_REASON = "signup_bonus"


class LedgerOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    INSUFFICIENT_FUNDS = "insufficient_funds"


class _StaleAccount(Exception):
    pass


@dataclass(frozen=True, slots=True)
class AccountSummary:
    user_id: str
    balance: int
    lifetime_earned: int
    lifetime_spent: int


@dataclass(frozen=True, slots=True)
class TransactionEntry:
    id: str
    amount: int
    reason: str
    reference_id: str | None
    created_at: object


def _balance(db: Session, user_id: str) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(CreditTransaction.account_id == user_id)
    ).scalar_one()
    return int(total or 0)


def _account_sequence(db: Session, user_id: str) -> int | None:
    return db.execute(
        select(CreditAccount.sequence).where(CreditAccount.user_id == user_id).with_for_update()
    ).scalar_one_or_none()


def _find_transaction(db: Session, *, user_id: str, reason: str, reference_id: str) -> CreditTransaction | None:
    return db.execute(
        select(CreditTransaction).where(
            CreditTransaction.account_id == user_id,
            CreditTransaction.reason == reason,
            CreditTransaction.reference_id == reference_id,
        )
    ).scalar_one_or_none()


def _append(db: Session, *, user_id: str, sequence: int, amount: int, reason: str, reference_id: str | None) -> None:
    values: dict = {"sequence": sequence + 1, "updated_at": utc_now_naive()}
    if amount > 0:
        values["lifetime_earned"] = CreditAccount.lifetime_earned + amount
    else:
        values["lifetime_spent"] = CreditAccount.lifetime_spent + (-amount)
    result = db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id, CreditAccount.sequence == sequence)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise _StaleAccount(user_id)
    db.add(
        CreditTransaction(
            account_id=user_id,
            sequence=sequence + 1,
            amount=amount,
            reason=reason,
            reference_id=reference_id,
        )
    )
    db.flush()


def _create_account(db: Session, user_id: str) -> int:
    db.add(CreditAccount(user_id=user_id, sequence=0, lifetime_earned=0, lifetime_spent=0))
    db.flush()
    return 0


def _apply_once(db: Session, *, user_id: str, amount: int, reason: str, reference_id: str | None) -> LedgerOutcome:
    sequence = _account_sequence(db, user_id)
    if sequence is None:
        sequence = _create_account(db, user_id)

    if reference_id is not None and _find_transaction(db, user_id=user_id, reason=reason, reference_id=reference_id):
        return LedgerOutcome.DUPLICATE

    if amount < 0 and _balance(db, user_id) + amount < 0:
        return LedgerOutcome.INSUFFICIENT_FUNDS

    _append(db, user_id=user_id, sequence=sequence, amount=amount, reason=reason, reference_id=reference_id)
    return LedgerOutcome.APPLIED


def _is_duplicate(db: Session, *, user_id: str, reason: str, reference_id: str | None) -> bool:
    if reference_id is None:
        return False
    with db.begin():
        return _find_transaction(db, user_id=user_id, reason=reason, reference_id=reference_id) is not None


def apply_transaction(
    db: Session,
    *,
    user_id: str,
    amount: int,
    reason: str,
    reference_id: str | None = None,
) -> LedgerOutcome:
    if amount == 0:
        raise ValueError("ledger amount must be non-zero")
    reason = reason.strip()
    if not reason:
        raise ValueError("ledger reason is required")

    for _ in range(LEDGER_MAX_ATTEMPTS):
        try:
            with db.begin():
                outcome = _apply_once(db, user_id=user_id, amount=amount, reason=reason, reference_id=reference_id)
        except _StaleAccount:
            logger.info("ledger sequence moved under writer user=%s reason=%s; retrying", user_id, reason)
            continue
        except IntegrityError:
            if _is_duplicate(db, user_id=user_id, reason=reason, reference_id=reference_id):
                outcome = LedgerOutcome.DUPLICATE
            else:
                logger.info("ledger write conflict user=%s reason=%s; retrying", user_id, reason)
                continue

        if outcome is LedgerOutcome.APPLIED:
            logger.info("ledger %+d user=%s reason=%s ref=%s", amount, user_id, reason, reference_id)
        elif outcome is LedgerOutcome.DUPLICATE:
            logger.info("ledger duplicate ignored user=%s reason=%s ref=%s", user_id, reason, reference_id)
        else:
            logger.info("ledger spend rejected user=%s amount=%d reason=%s", user_id, -amount, reason)
        return outcome

    raise RuntimeError(f"credit ledger contention for user {user_id}")


def debit(db: Session, user_id: str, amount: int, reason: str, reference_id: str | None = None) -> bool:
    if amount <= 0:
        raise ValueError("debit amount must be positive")
    outcome = apply_transaction(db, user_id=user_id, amount=-amount, reason=reason, reference_id=reference_id)
    return outcome is not LedgerOutcome.INSUFFICIENT_FUNDS


def credit(db: Session, user_id: str, amount: int, reason: str, reference_id: str | None = None) -> bool:
    if amount <= 0:
        raise ValueError("credit amount must be positive")
    apply_transaction(db, user_id=user_id, amount=amount, reason=reason, reference_id=reference_id)
    return True


def get_balance(db: Session, user_id: str) -> int:
    with db.begin():
        return _balance(db, user_id)


def has_transaction(db: Session, user_id: str, reason: str, reference_id: str) -> bool:
    return _is_duplicate(db, user_id=user_id, reason=reason, reference_id=reference_id)


def open_account(db: Session, user_id: str) -> None:
    """Create the account on first use and grant the signup bonus once.

    The bonus is keyed on its own ledger row, not on the account row.
    """
    bonus = int(settings.initial_free_credits)
    if bonus > 0:
        if not has_transaction(db, user_id, SIGNUP_BONUS_REASON, user_id):
            credit(db, user_id, bonus, SIGNUP_BONUS_REASON, reference_id=user_id)
        return
    with db.begin():
        exists = _account_sequence(db, user_id) is not None
    if exists:
        return
    try:
        with db.begin():
            _create_account(db, user_id)
    except IntegrityError:
        logger.debug("account %s created concurrently", user_id)


def get_account_summary(db: Session, user_id: str) -> AccountSummary:
    with db.begin():
        row = db.execute(
            select(CreditAccount.lifetime_earned, CreditAccount.lifetime_spent).where(CreditAccount.user_id == user_id)
        ).one_or_none()
        balance = _balance(db, user_id)
    earned, spent = (int(row[0]), int(row[1])) if row else (0, 0)
    return AccountSummary(user_id=user_id, balance=balance, lifetime_earned=earned, lifetime_spent=spent)


def list_transactions(db: Session, user_id: str, *, limit: int = 20, offset: int = 0) -> tuple[list[TransactionEntry], int]:
    with db.begin():
        total = db.execute(
            select(func.count()).select_from(CreditTransaction).where(CreditTransaction.account_id == user_id)
        ).scalar_one()
        rows = db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.account_id == user_id)
            .order_by(CreditTransaction.sequence.desc())
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        entries = [
            TransactionEntry(
                id=str(row.id),
                amount=int(row.amount),
                reason=row.reason,
                reference_id=row.reference_id,
                created_at=row.created_at,
            )
            for row in rows
        ]
    return entries, int(total)
