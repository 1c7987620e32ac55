from models.db import db
from utils import clock

class Payment(db.Model):
    """
    Gateway checkout for a credit package or a subscription cycle; exactly
    one of package_id / subscription_id is set. Nothing is granted until PAID.
    """
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    package_id = db.Column(db.Integer, db.ForeignKey("credit_packages.id"), nullable=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=True, index=True)

    provider = db.Column(db.String(20), nullable=False, default="STRIPE")  # STRIPE, MOCK
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="BRL")

    status = db.Column(db.String(20), nullable=False, default="INIT")  # INIT, PAID, FAILED
    stripe_session_id = db.Column(db.String(255), nullable=True, unique=True, index=True)

    created_at = db.Column(db.DateTime, default=clock.utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)

    package = db.relationship("CreditPackage")
    subscription = db.relationship("Subscription")
