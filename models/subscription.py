from models.db import db
from utils import clock


class SubscriptionStatus:
    PENDING = "PENDING"        # waiting for the first payment
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"    # still valid until end_date, will not renew
    INACTIVE = "INACTIVE"      # payment failed or replaced by another subscription

    ALL = (PENDING, ACTIVE, CANCELLED, INACTIVE)
    # statuses that still grant the plan while end_date is in the future
    LIVE = (ACTIVE, CANCELLED)


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # plan snapshot at subscription time; the catalog lives in config
    plan_id = db.Column(db.String(50), nullable=False)
    plan_name = db.Column(db.String(100), nullable=False)
    audience = db.Column(db.String(10), nullable=False)  # client, helper
    price = db.Column(db.Numeric(10, 2), nullable=False)
    credits_per_cycle = db.Column(db.Integer, nullable=False, default=0)
    commission_percent = db.Column(db.Integer, nullable=True)
    billing_cycle = db.Column(db.String(20), nullable=False, default="MONTHLY")

    status = db.Column(db.String(20), nullable=False, default=SubscriptionStatus.PENDING, index=True)
    auto_renew = db.Column(db.Boolean, nullable=False, default=True)

    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=clock.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=clock.utcnow, onupdate=clock.utcnow, nullable=False)

    user = db.relationship("User")

    @property
    def next_billing_date(self):
        if self.status == SubscriptionStatus.ACTIVE and self.auto_renew:
            return self.end_date
        return None

    def is_live(self, now) -> bool:
        return self.status in SubscriptionStatus.LIVE and self.end_date is not None and self.end_date > now
