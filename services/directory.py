from datetime import date

from models import db
from models.helper_profile import HelperProfile, WEEKDAYS
from models.user import User
from services.errors import HelperUnavailable, NotFound


def find_user(user_id) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user:
        raise NotFound("User not found")
    return user


def find_active_helper(user_id) -> User:
    """Return the user if it can take bookings right now."""
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user or not user.is_active or not user.is_approved or user.helper_profile is None:
        raise HelperUnavailable("Helper not found or not available")
    return user


def list_available_helpers(specialty=None):
    q = (
        User.query
        .join(HelperProfile, HelperProfile.user_id == User.id)
        .filter(User.is_active.is_(True), User.is_approved.is_(True))
        .order_by(HelperProfile.rating.desc(), HelperProfile.total_sessions.desc(), User.id.asc())
    )
    helpers = q.all()
    if specialty:
        # specialties is a JSON list; filter here to stay portable across backends
        wanted = specialty.strip().lower()
        helpers = [
            u for u in helpers
            if any((s or "").lower() == wanted for s in (u.helper_profile.specialties or []))
        ]
    return helpers


def is_available_on(helper: User, day: date) -> bool:
    availability = helper.helper_profile.availability if helper.helper_profile else None
    if not availability:
        return True
    return bool(availability.get(WEEKDAYS[day.weekday()], False))
