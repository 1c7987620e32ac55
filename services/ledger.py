"""Credit ledger: the only writer of User.credits."""

import logging
from datetime import timedelta
from decimal import Decimal, ROUND_CEILING
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy import func

from models import db
from models.credit_transaction import CreditTransaction, TransactionStatus, TransactionType
from models.user import User
from services.errors import InsufficientCredits, NotFound, ValidationError
from utils import clock

logger = logging.getLogger(__name__)

# entries that must add credits vs. entries that must remove them
_CREDIT_TYPES = {TransactionType.PURCHASE, TransactionType.REFUND, TransactionType.BONUS}
_DEBIT_TYPES = {TransactionType.USAGE, TransactionType.EXPIRATION}


def credits_for_cost(cost: Decimal) -> int:
    """Credits needed to cover a currency cost, rounded up in the platform's favour."""
    unit = Decimal(current_app.config.get("CREDIT_UNIT_VALUE", Decimal("10")))
    if cost <= 0:
        return 0
    return int((Decimal(cost) / unit).to_integral_value(rounding=ROUND_CEILING))


def balance(user_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(CreditTransaction.credits), 0))
        .filter(
            CreditTransaction.user_id == user_id,
            CreditTransaction.status == TransactionStatus.COMPLETED,
        )
        .scalar()
    )
    return int(total or 0)


def _lock_user(user_id: int) -> User:
    # FOR UPDATE serialises concurrent applies for the same user where the
    # backend supports row locks; the version column catches the rest.
    user = db.session.get(User, user_id, with_for_update=True, populate_existing=True)
    if not user:
        raise NotFound("User not found")
    return user


def _check_sign(transaction_type: str, credits: int) -> None:
    if transaction_type not in TransactionType.ALL:
        raise ValidationError(f"Unknown transaction type: {transaction_type}")
    if credits == 0:
        raise ValidationError("Credit amount must be non-zero")
    if transaction_type in _CREDIT_TYPES and credits < 0:
        raise ValidationError(f"{transaction_type} must add credits")
    if transaction_type in _DEBIT_TYPES and credits > 0:
        raise ValidationError(f"{transaction_type} must remove credits")


def apply(
    user_id: int,
    transaction_type: str,
    credits: int,
    *,
    booking_id: Optional[int] = None,
    package_id: Optional[int] = None,
    payment_id: Optional[int] = None,
    amount: Decimal = Decimal("0"),
    description: Optional[str] = None,
    notes: Optional[str] = None,
    expires_at=None,
) -> CreditTransaction:
    """
    Append a completed entry and move the cached balance by the same delta.

    A debit that would take the balance below zero raises
    InsufficientCredits before anything is written. The session is flushed,
    not committed: the caller commits together with its own changes.
    """
    credits = int(credits)
    _check_sign(transaction_type, credits)

    user = _lock_user(user_id)
    current = balance(user_id)
    if user.credits != current:
        logger.warning("cached balance drift for user %s: cached=%s ledger=%s", user_id, user.credits, current)

    next_balance = current + credits
    if credits < 0 and next_balance < 0:
        raise InsufficientCredits(required=-credits, available=current)

    now = clock.utcnow()
    entry = CreditTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        status=TransactionStatus.COMPLETED,
        credits=credits,
        amount=amount or Decimal("0"),
        balance_after=next_balance,
        booking_id=booking_id,
        package_id=package_id,
        payment_id=payment_id,
        description=description or transaction_type.lower(),
        notes=notes,
        processed_at=now,
        expires_at=expires_at,
    )
    db.session.add(entry)
    user.credits = next_balance
    db.session.flush()

    logger.info("ledger %s %+d for user %s (balance %d)", transaction_type, credits, user_id, next_balance)
    return entry


def record_failed(
    user_id: int,
    transaction_type: str,
    credits: int,
    *,
    package_id: Optional[int] = None,
    payment_id: Optional[int] = None,
    amount: Decimal = Decimal("0"),
    description: Optional[str] = None,
    notes: Optional[str] = None,
) -> CreditTransaction:
    """Append a FAILED entry; it never counts towards the balance."""
    entry = CreditTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        status=TransactionStatus.FAILED,
        credits=int(credits),
        amount=amount or Decimal("0"),
        package_id=package_id,
        payment_id=payment_id,
        description=description or transaction_type.lower(),
        notes=notes,
        processed_at=clock.utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def history(user_id: int, transaction_type=None, status=None, page: int = 1, limit: int = 10):
    q = CreditTransaction.query.filter_by(user_id=user_id)
    if transaction_type:
        q = q.filter_by(transaction_type=transaction_type)
    if status:
        q = q.filter_by(status=status)
    q = q.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
    return q.paginate(page=page, per_page=limit, error_out=False)


def expiring_credits(user_id: int, within_days: Optional[int] = None) -> int:
    """Purchased credits whose validity ends inside the window."""
    if within_days is None:
        within_days = current_app.config.get("EXPIRING_CREDITS_WINDOW_DAYS", 30)
    now = clock.utcnow()
    total = (
        db.session.query(func.coalesce(func.sum(CreditTransaction.credits), 0))
        .filter(
            CreditTransaction.user_id == user_id,
            CreditTransaction.transaction_type == TransactionType.PURCHASE,
            CreditTransaction.status == TransactionStatus.COMPLETED,
            CreditTransaction.expires_at.isnot(None),
            CreditTransaction.expires_at > now,
            CreditTransaction.expires_at <= now + timedelta(days=within_days),
        )
        .scalar()
    )
    return int(total or 0)


def verify_balance(user_id: int) -> Tuple[int, int]:
    """(cached, ledger) for one user; they must be equal."""
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user.credits, balance(user_id)
