from datetime import timedelta
from decimal import Decimal

import pytest

from models import db
from models.credit_transaction import (
    CreditTransaction,
    LedgerImmutableError,
    TransactionStatus,
    TransactionType,
)
from services import ledger
from services.errors import InsufficientCredits, ValidationError


def test_bonus_moves_cached_and_ledger_balance_together(make_user):
    user = make_user()

    entry = ledger.apply(user.id, TransactionType.BONUS, 15, description="welcome")
    db.session.commit()

    assert entry.status == TransactionStatus.COMPLETED
    assert entry.balance_after == 15
    assert user.credits == 15
    assert ledger.balance(user.id) == 15
    assert ledger.verify_balance(user.id) == (15, 15)


def test_debit_beyond_balance_is_refused_without_writing(make_user):
    user = make_user(credits=5)

    with pytest.raises(InsufficientCredits) as exc:
        ledger.apply(user.id, TransactionType.USAGE, -8)
    db.session.rollback()

    assert exc.value.required == 8
    assert exc.value.available == 5
    assert exc.value.status_code == 402
    assert ledger.balance(user.id) == 5
    assert CreditTransaction.query.filter_by(user_id=user.id).count() == 1


def test_debit_to_exactly_zero_is_allowed(make_user):
    user = make_user(credits=8)

    ledger.apply(user.id, TransactionType.USAGE, -8)
    db.session.commit()

    assert ledger.verify_balance(user.id) == (0, 0)


@pytest.mark.parametrize("transaction_type, credits", [
    (TransactionType.USAGE, 3),
    (TransactionType.REFUND, -3),
    (TransactionType.PURCHASE, 0),
    ("GIFT", 3),
])
def test_sign_and_type_are_checked(make_user, transaction_type, credits):
    user = make_user()
    with pytest.raises(ValidationError):
        ledger.apply(user.id, transaction_type, credits)


def test_ledger_rows_cannot_be_updated(make_user):
    user = make_user(credits=10)
    entry = CreditTransaction.query.filter_by(user_id=user.id).one()

    entry.description = "rewritten history"
    with pytest.raises(LedgerImmutableError):
        db.session.flush()
    db.session.rollback()


def test_ledger_rows_cannot_be_deleted(make_user):
    user = make_user(credits=10)
    entry = CreditTransaction.query.filter_by(user_id=user.id).one()

    db.session.delete(entry)
    with pytest.raises(LedgerImmutableError):
        db.session.flush()
    db.session.rollback()


def test_failed_entries_do_not_count(make_user):
    user = make_user(credits=4)

    ledger.record_failed(user.id, TransactionType.PURCHASE, 10, notes="card declined")
    db.session.commit()

    assert ledger.balance(user.id) == 4
    assert CreditTransaction.query.filter_by(user_id=user.id, status=TransactionStatus.FAILED).count() == 1


@pytest.mark.parametrize("cost, expected", [
    (Decimal("80"), 8),
    (Decimal("80.01"), 9),
    (Decimal("112.50"), 12),
    (Decimal("0"), 0),
])
def test_credits_for_cost_rounds_up(app, cost, expected):
    assert ledger.credits_for_cost(cost) == expected


def test_expiring_credits_only_counts_purchases_inside_window(make_user, frozen_clock):
    user = make_user()
    now = frozen_clock()
    ledger.apply(user.id, TransactionType.PURCHASE, 10, expires_at=now + timedelta(days=10))
    ledger.apply(user.id, TransactionType.PURCHASE, 25, expires_at=now + timedelta(days=90))
    ledger.apply(user.id, TransactionType.BONUS, 5)
    db.session.commit()

    assert ledger.expiring_credits(user.id) == 10
    assert ledger.expiring_credits(user.id, within_days=120) == 35


def test_history_filters_and_paginates(make_user):
    user = make_user()
    for _ in range(3):
        ledger.apply(user.id, TransactionType.BONUS, 2)
    ledger.apply(user.id, TransactionType.USAGE, -1)
    db.session.commit()

    page = ledger.history(user.id, page=1, limit=2)
    assert page.total == 4
    assert len(page.items) == 2

    usage = ledger.history(user.id, transaction_type=TransactionType.USAGE)
    assert [t.credits for t in usage.items] == [-1]
