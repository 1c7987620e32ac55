from models.db import db
from utils import clock


class BookingStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    ALL = (PENDING, CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED, REJECTED)
    TERMINAL = frozenset({COMPLETED, CANCELLED, REJECTED})
    # statuses that hold a helper's calendar slot
    BLOCKING = (PENDING, CONFIRMED)


class PaymentStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


BOOKING_TYPES = ("CONSULTATION", "SUPPORT", "TRAINING", "MAINTENANCE")


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    client_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    helper_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(1000), nullable=False)
    booking_type = db.Column(db.String(20), nullable=False, default="SUPPORT")
    specialty = db.Column(db.String(80), nullable=True)
    requirements = db.Column(db.String(500), nullable=True)

    scheduled_start = db.Column(db.DateTime, nullable=False)
    scheduled_end = db.Column(db.DateTime, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default="America/Sao_Paulo")

    # copied from the helper at creation, never recomputed
    hourly_rate_snapshot = db.Column(db.Numeric(10, 2), nullable=False)
    estimated_cost = db.Column(db.Numeric(10, 2), nullable=False)
    credits_reserved = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING, index=True)
    payment_status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING)

    actual_start = db.Column(db.DateTime, nullable=True)
    actual_end = db.Column(db.DateTime, nullable=True)
    actual_duration_minutes = db.Column(db.Integer, nullable=True)

    client_rating = db.Column(db.Integer, nullable=True)
    client_feedback = db.Column(db.String(500), nullable=True)
    resolution = db.Column(db.String(1000), nullable=True)
    notes = db.Column(db.String(1000), nullable=True)

    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=clock.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=clock.utcnow, onupdate=clock.utcnow, nullable=False)
    version = db.Column(db.Integer, nullable=False)

    client = db.relationship("User", foreign_keys=[client_id])
    helper = db.relationship("User", foreign_keys=[helper_id])

    __table_args__ = (
        db.CheckConstraint("duration_minutes >= 15 AND duration_minutes <= 480", name="ck_bookings_duration"),
        db.CheckConstraint("client_rating IS NULL OR (client_rating >= 1 AND client_rating <= 5)", name="ck_bookings_rating"),
        db.CheckConstraint("credits_reserved >= 0", name="ck_bookings_credits"),
        db.Index("ix_bookings_helper_window", "helper_id", "scheduled_start", "scheduled_end"),
    )
    __mapper_args__ = {"version_id_col": version}

    def is_participant(self, user_id) -> bool:
        return user_id in (self.client_id, self.helper_id)
