from decimal import Decimal

from sqlalchemy import event

from models.db import db
from utils import clock


class TransactionType:
    PURCHASE = "PURCHASE"
    USAGE = "USAGE"
    REFUND = "REFUND"
    BONUS = "BONUS"
    EXPIRATION = "EXPIRATION"

    ALL = (PURCHASE, USAGE, REFUND, BONUS, EXPIRATION)


class TransactionStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    ALL = (PENDING, COMPLETED, FAILED, CANCELLED)


class CreditTransaction(db.Model):
    """Append-only ledger entry. Balance = sum(credits) over COMPLETED rows."""
    __tablename__ = "credit_transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TransactionStatus.COMPLETED)

    # positive = credit, negative = debit
    credits = db.Column(db.Integer, nullable=False)
    # currency amount, purchases only
    amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0"))
    balance_after = db.Column(db.Integer, nullable=True)

    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)
    package_id = db.Column(db.Integer, db.ForeignKey("credit_packages.id"), nullable=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    description = db.Column(db.String(500), nullable=False)
    notes = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime, default=clock.utcnow, nullable=False, index=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index("ix_credit_transactions_type_status", "transaction_type", "status"),
    )


class LedgerImmutableError(RuntimeError):
    pass


@event.listens_for(CreditTransaction, "before_update")
def _refuse_update(mapper, connection, target):
    raise LedgerImmutableError(f"credit transaction {target.id} is append-only")


@event.listens_for(CreditTransaction, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise LedgerImmutableError(f"credit transaction {target.id} is append-only")
