from decimal import Decimal

from models.db import db
from utils import clock

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def default_availability():
    return {day: day not in ("saturday", "sunday") for day in WEEKDAYS}


class HelperProfile(db.Model):
    """Capability block that lets a user take bookings as a helper."""
    __tablename__ = "helper_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    hourly_rate = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("80.00"))
    # derived by services.ratings, never set directly
    rating = db.Column(db.Numeric(3, 1), nullable=False, default=Decimal("0.0"))
    total_sessions = db.Column(db.Integer, nullable=False, default=0)

    experience_years = db.Column(db.Integer, nullable=False, default=0)
    bio = db.Column(db.String(500), nullable=True)
    specialties = db.Column(db.JSON, nullable=False, default=list)
    availability = db.Column(db.JSON, nullable=False, default=default_availability)

    created_at = db.Column(db.DateTime, default=clock.utcnow, nullable=False)

    user = db.relationship("User", back_populates="helper_profile")

    __table_args__ = (
        db.CheckConstraint("hourly_rate >= 0", name="ck_helper_profiles_rate"),
        db.CheckConstraint("rating >= 0 AND rating <= 5", name="ck_helper_profiles_rating"),
        db.CheckConstraint("experience_years >= 0 AND experience_years <= 50", name="ck_helper_profiles_experience"),
    )
