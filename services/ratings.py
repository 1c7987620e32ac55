import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func

from models import db
from models.booking import Booking, BookingStatus
from models.helper_profile import HelperProfile

logger = logging.getLogger(__name__)


def _profile(helper_id: int) -> Optional[HelperProfile]:
    return HelperProfile.query.filter_by(user_id=helper_id).first()


def refresh_helper_rating(helper_id: int) -> Optional[Decimal]:
    """
    Recompute the helper's rating from every rated, completed booking.
    Full recomputation, so repeated or edited ratings never drift.
    """
    profile = _profile(helper_id)
    if profile is None:
        return None

    total, count = (
        db.session.query(func.sum(Booking.client_rating), func.count(Booking.client_rating))
        .filter(
            Booking.helper_id == helper_id,
            Booking.status == BookingStatus.COMPLETED,
            Booking.client_rating.isnot(None),
        )
        .one()
    )
    if not count:
        return profile.rating

    mean = Decimal(int(total)) / Decimal(int(count))
    profile.rating = mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    db.session.flush()
    logger.info("helper %s rating now %s over %d rating(s)", helper_id, profile.rating, count)
    return profile.rating


def record_completed_session(helper_id: int) -> int:
    profile = _profile(helper_id)
    if profile is None:
        return 0
    profile.total_sessions = (profile.total_sessions or 0) + 1
    db.session.flush()
    return profile.total_sessions
