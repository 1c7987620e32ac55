import logging
from datetime import datetime, timedelta
from typing import List, Optional

from models.booking import Booking, BookingStatus

logger = logging.getLogger(__name__)


def find_conflicts(
    helper_id: int,
    proposed_start: datetime,
    duration_minutes: int,
    exclude_booking_id: Optional[int] = None,
) -> List[Booking]:
    """
    Bookings of the helper that still hold their slot and overlap
    [proposed_start, proposed_start + duration). Intervals are half-open,
    so a booking ending exactly when the proposed one starts is no conflict.
    """
    proposed_end = proposed_start + timedelta(minutes=duration_minutes)

    q = Booking.query.filter(
        Booking.helper_id == helper_id,
        Booking.status.in_(BookingStatus.BLOCKING),
        Booking.scheduled_start < proposed_end,
        Booking.scheduled_end > proposed_start,
    )
    if exclude_booking_id is not None:
        q = q.filter(Booking.id != exclude_booking_id)

    conflicts = q.order_by(Booking.scheduled_start.asc()).all()
    if conflicts:
        logger.info(
            "helper %s has %d conflicting booking(s) for %s-%s",
            helper_id, len(conflicts), proposed_start.isoformat(), proposed_end.isoformat(),
        )
    return conflicts


def has_conflict(helper_id: int, proposed_start: datetime, duration_minutes: int,
                 exclude_booking_id: Optional[int] = None) -> bool:
    return bool(find_conflicts(helper_id, proposed_start, duration_minutes, exclude_booking_id))
