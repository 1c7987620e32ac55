"""
Booking lifecycle.

    PENDING -> CONFIRMED | REJECTED | CANCELLED
    CONFIRMED -> IN_PROGRESS | CANCELLED
    IN_PROGRESS -> COMPLETED

REJECTED, CANCELLED and COMPLETED are terminal. Credits move only on
confirmation (usage debit) and on cancelling a confirmed booking (refund),
always inside the same transaction as the status change.
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func

from models import db
from models.booking import BOOKING_TYPES, Booking, BookingStatus, PaymentStatus
from models.credit_transaction import TransactionType
from models.helper_profile import HelperProfile
from services import conflicts, directory, ledger, ratings
from services.base import transaction
from services.errors import (
    Forbidden,
    HelperUnavailable,
    InvalidTransition,
    LeadTimeViolation,
    NotFound,
    ScheduleConflict,
    ValidationError,
)
from services.signals import booking_completed, booking_started, notify
from utils import clock
from utils.audit import log_event

logger = logging.getLogger(__name__)

TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
}


def can_transition(current: str, requested: str) -> bool:
    return requested in TRANSITIONS.get(current, ())


def _ensure_transition(booking: Booking, requested: str) -> None:
    if booking.status in BookingStatus.TERMINAL:
        raise InvalidTransition(booking.status, requested, f"Booking is already {booking.status}")
    if not can_transition(booking.status, requested):
        raise InvalidTransition(booking.status, requested)


# ---------- input parsing ----------

def _parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("scheduled_date is required (YYYY-MM-DD)")
    raw = value.strip()
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        raise ValidationError("Invalid scheduled_date. Use YYYY-MM-DD")


def _parse_time(value) -> time:
    if not isinstance(value, str) or not TIME_RE.match(value.strip()):
        raise ValidationError("Invalid scheduled_time. Use HH:MM")
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def _parse_duration(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("duration_minutes must be an integer")
    try:
        duration = int(value)
    except (TypeError, ValueError):
        raise ValidationError("duration_minutes must be an integer")
    if isinstance(value, float) and value != duration:
        raise ValidationError("duration_minutes must be an integer")

    low = current_app.config.get("MIN_DURATION_MINUTES", 15)
    high = current_app.config.get("MAX_DURATION_MINUTES", 480)
    if duration < low or duration > high:
        raise ValidationError(f"duration_minutes must be between {low} and {high}")
    return duration


def parse_window(scheduled_date, scheduled_time, duration_minutes):
    """Validate the requested window; returns (start, duration_minutes)."""
    start = datetime.combine(_parse_date(scheduled_date), _parse_time(scheduled_time))
    return start, _parse_duration(duration_minutes)


def estimate_cost(duration_minutes: int, hourly_rate: Decimal) -> Decimal:
    return Decimal(duration_minutes) / Decimal(60) * Decimal(hourly_rate)


# ---------- loading ----------

def _load_for_update(booking_id) -> Booking:
    booking = None
    if booking_id is not None:
        booking = db.session.get(Booking, booking_id, with_for_update=True, populate_existing=True)
    if not booking:
        raise NotFound("Booking not found")
    return booking


def _require_helper(booking: Booking, helper_id) -> None:
    if booking.helper_id != helper_id:
        raise Forbidden("Only the booking's helper can do this")


def _app():
    return current_app._get_current_object()


# ---------- operations ----------

def schedule_booking(
    client_id,
    helper_id,
    scheduled_date,
    scheduled_time,
    duration_minutes,
    description,
    *,
    title=None,
    booking_type="SUPPORT",
    specialty=None,
    requirements=None,
    timezone=None,
) -> Booking:
    description = (description or "").strip() if isinstance(description, str) else ""
    if not description:
        raise ValidationError("description is required")
    if len(description) > 1000:
        raise ValidationError("description must be at most 1000 characters")

    booking_type = (booking_type or "SUPPORT").strip().upper() if isinstance(booking_type, str) else None
    if booking_type not in BOOKING_TYPES:
        raise ValidationError(f"booking_type must be one of {', '.join(BOOKING_TYPES)}")

    start, duration = parse_window(scheduled_date, scheduled_time, duration_minutes)
    if start <= clock.utcnow():
        raise ValidationError("Cannot schedule a booking in the past")
    if client_id == helper_id:
        raise ValidationError("You cannot book yourself")

    client = directory.find_user(client_id)
    if not client.is_active:
        raise Forbidden("Account is deactivated")

    with transaction():
        helper = directory.find_active_helper(helper_id)
        # serialise scheduling per helper so two requests cannot both pass the conflict check
        profile = (
            HelperProfile.query
            .filter_by(user_id=helper.id)
            .with_for_update()
            .one()
        )
        if not directory.is_available_on(helper, start.date()):
            raise HelperUnavailable("Helper does not work on that day")
        if conflicts.has_conflict(helper.id, start, duration):
            raise ScheduleConflict("Time slot not available")

        rate = Decimal(profile.hourly_rate if profile.hourly_rate is not None
                       else current_app.config["DEFAULT_HOURLY_RATE"])
        cost = estimate_cost(duration, rate)

        booking = Booking(
            client_id=client.id,
            helper_id=helper.id,
            title=((title or "").strip() or f"{booking_type.title()} session")[:200],
            description=description,
            booking_type=booking_type,
            specialty=(specialty or "").strip() or None,
            requirements=(requirements or "").strip() or None,
            scheduled_start=start,
            scheduled_end=start + timedelta(minutes=duration),
            duration_minutes=duration,
            timezone=timezone or current_app.config.get("DEFAULT_TIMEZONE", "America/Sao_Paulo"),
            hourly_rate_snapshot=rate,
            estimated_cost=cost.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            credits_reserved=ledger.credits_for_cost(cost),
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
        )
        db.session.add(booking)
        db.session.flush()
        log_event("BOOKING_CREATE", actor_id=client.id, entity="booking", entity_id=booking.id,
                  metadata={"helper_id": helper.id, "credits_reserved": booking.credits_reserved}, commit=False)

    logger.info("booking %s scheduled: client=%s helper=%s start=%s", booking.id, client.id, helper.id, start)
    return booking


def respond_to_booking(booking_id, helper_id, accept: bool, message=None) -> Booking:
    with transaction():
        booking = _load_for_update(booking_id)
        _require_helper(booking, helper_id)
        requested = BookingStatus.CONFIRMED if accept else BookingStatus.REJECTED
        _ensure_transition(booking, requested)

        if accept:
            if booking.credits_reserved > 0:
                ledger.apply(
                    booking.client_id,
                    TransactionType.USAGE,
                    -booking.credits_reserved,
                    booking_id=booking.id,
                    description=f"Booking #{booking.id} confirmed",
                )
            booking.payment_status = PaymentStatus.PAID

        booking.status = requested
        if message:
            booking.notes = message.strip()[:1000]

        log_event("BOOKING_CONFIRM" if accept else "BOOKING_REJECT", actor_id=helper_id,
                  entity="booking", entity_id=booking.id, commit=False)
    return booking


def start_booking(booking_id, helper_id) -> Booking:
    with transaction():
        booking = _load_for_update(booking_id)
        _require_helper(booking, helper_id)
        _ensure_transition(booking, BookingStatus.IN_PROGRESS)

        now = clock.utcnow()
        lead = current_app.config.get("START_LEAD_MINUTES", 15)
        if now < booking.scheduled_start - timedelta(minutes=lead):
            raise LeadTimeViolation(
                booking.status, BookingStatus.IN_PROGRESS,
                f"Booking can only be started from {lead} minutes before its scheduled time",
            )

        booking.status = BookingStatus.IN_PROGRESS
        booking.actual_start = now
        log_event("BOOKING_START", actor_id=helper_id, entity="booking", entity_id=booking.id, commit=False)

    notify(booking_started, _app(), booking=booking)
    return booking


def complete_booking(booking_id, helper_id, resolution=None, notes=None) -> Booking:
    # the cost captured at confirmation stands; no adjustment for the actual duration
    with transaction():
        booking = _load_for_update(booking_id)
        _require_helper(booking, helper_id)
        _ensure_transition(booking, BookingStatus.COMPLETED)

        now = clock.utcnow()
        started = booking.actual_start or now
        ended = max(now, started)
        booking.actual_end = ended
        booking.actual_duration_minutes = int((ended - started).total_seconds() / 60 + 0.5)
        if resolution:
            booking.resolution = resolution.strip()[:1000]
        if notes:
            booking.notes = notes.strip()[:1000]
        booking.status = BookingStatus.COMPLETED

        ratings.record_completed_session(booking.helper_id)
        log_event("BOOKING_COMPLETE", actor_id=helper_id, entity="booking", entity_id=booking.id,
                  metadata={"actual_duration_minutes": booking.actual_duration_minutes}, commit=False)

    notify(booking_completed, _app(), booking=booking)
    return booking


def cancel_booking(booking_id, user_id, reason=None) -> Booking:
    with transaction():
        booking = _load_for_update(booking_id)
        if not booking.is_participant(user_id):
            raise Forbidden("Access denied")
        _ensure_transition(booking, BookingStatus.CANCELLED)

        lead_hours = current_app.config.get("CANCEL_LEAD_HOURS", 2)
        if clock.utcnow() >= booking.scheduled_start - timedelta(hours=lead_hours):
            raise LeadTimeViolation(
                booking.status, BookingStatus.CANCELLED,
                f"Booking can only be cancelled more than {lead_hours} hours before its scheduled time",
            )

        refunded = 0
        if booking.status == BookingStatus.CONFIRMED and booking.payment_status == PaymentStatus.PAID:
            if booking.credits_reserved > 0:
                ledger.apply(
                    booking.client_id,
                    TransactionType.REFUND,
                    booking.credits_reserved,
                    booking_id=booking.id,
                    description=f"Refund for cancelled booking #{booking.id}",
                )
                refunded = booking.credits_reserved
            booking.payment_status = PaymentStatus.REFUNDED

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = clock.utcnow()
        booking.cancelled_by = user_id
        booking.cancel_reason = (reason or "").strip()[:255] or None

        log_event("BOOKING_CANCEL", actor_id=user_id, entity="booking", entity_id=booking.id,
                  metadata={"reason": booking.cancel_reason, "refunded_credits": refunded}, commit=False)
    return booking


def _parse_rating(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("rating must be between 1 and 5")
    try:
        rating = int(value)
    except (TypeError, ValueError):
        raise ValidationError("rating must be between 1 and 5")
    if isinstance(value, float) and value != rating:
        raise ValidationError("rating must be a whole number")
    if rating < 1 or rating > 5:
        raise ValidationError("rating must be between 1 and 5")
    return rating


def rate_booking(booking_id, client_id, rating, feedback=None) -> Booking:
    rating = _parse_rating(rating)
    with transaction():
        booking = _load_for_update(booking_id)
        if booking.client_id != client_id:
            raise Forbidden("Only the client can rate this booking")
        if booking.status != BookingStatus.COMPLETED:
            raise InvalidTransition(booking.status, "RATED", "Only completed bookings can be rated")

        booking.client_rating = rating
        if feedback:
            booking.client_feedback = feedback.strip()[:500]
        ratings.refresh_helper_rating(booking.helper_id)
        log_event("BOOKING_RATE", actor_id=client_id, entity="booking", entity_id=booking.id,
                  metadata={"rating": rating}, commit=False)
    return booking


# ---------- read side ----------

def get_booking_for(booking_id, user_id) -> Booking:
    booking = db.session.get(Booking, booking_id) if booking_id is not None else None
    if not booking:
        raise NotFound("Booking not found")
    if not booking.is_participant(user_id):
        raise Forbidden("Access denied")
    return booking


def list_bookings_for(user_id, status=None, booking_type=None, role=None, page=1, limit=10):
    if role == "client":
        q = Booking.query.filter(Booking.client_id == user_id)
    elif role == "helper":
        q = Booking.query.filter(Booking.helper_id == user_id)
    else:
        q = Booking.query.filter((Booking.client_id == user_id) | (Booking.helper_id == user_id))
    if status:
        q = q.filter(Booking.status == status.upper())
    if booking_type:
        q = q.filter(Booking.booking_type == booking_type.upper())
    q = q.order_by(Booking.scheduled_start.desc(), Booking.id.desc())
    return q.paginate(page=page, per_page=limit, error_out=False)


def call_access(booking_id, user_id) -> dict:
    """Whether a participant may join the booking's video call right now."""
    booking = get_booking_for(booking_id, user_id)
    return {
        "booking_id": booking.id,
        "room": f"booking-{booking.id}",
        "status": booking.status,
        "allowed": booking.status == BookingStatus.IN_PROGRESS,
    }


def helper_stats(helper_id) -> dict:
    rows = (
        db.session.query(Booking.status, func.count(Booking.id))
        .filter(Booking.helper_id == helper_id)
        .group_by(Booking.status)
        .all()
    )
    by_status = {status: 0 for status in BookingStatus.ALL}
    by_status.update({status: int(count) for status, count in rows})

    earned = (
        db.session.query(func.coalesce(func.sum(Booking.credits_reserved), 0))
        .filter(Booking.helper_id == helper_id, Booking.status == BookingStatus.COMPLETED)
        .scalar()
    )
    return {
        "bookings_by_status": by_status,
        "total_bookings": sum(by_status.values()),
        "credits_earned": int(earned or 0),
    }
