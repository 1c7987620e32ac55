from datetime import datetime
from decimal import Decimal

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.audit_log import AuditLog
from models.booking import Booking, BookingStatus, PaymentStatus
from models.credit_transaction import CreditTransaction, TransactionType
from models.helper_profile import WEEKDAYS
from services import bookings, ledger
from services.errors import (
    Forbidden,
    HelperUnavailable,
    InsufficientCredits,
    InvalidTransition,
    LeadTimeViolation,
    ValidationError,
)
from services.signals import booking_completed, booking_started

START = datetime(2030, 3, 5, 10, 0)


def _reload(booking_id):
    db.session.expire_all()
    return db.session.get(Booking, booking_id)


# ---------- scheduling ----------

def test_schedule_snapshots_rate_and_reserves_credits(book, helper_user):
    booking = book(duration=60)

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.scheduled_start == START
    assert booking.scheduled_end == datetime(2030, 3, 5, 11, 0)
    assert booking.hourly_rate_snapshot == Decimal("80.00")
    assert booking.estimated_cost == Decimal("80.00")
    assert booking.credits_reserved == 8
    assert booking.booking_type == "SUPPORT"

    # later rate changes never touch an existing booking
    helper_user.helper_profile.hourly_rate = Decimal("200.00")
    db.session.commit()
    assert _reload(booking.id).credits_reserved == 8


def test_credits_round_up_in_platforms_favour(book, make_user):
    helper = make_user(helper=True, hourly_rate="75.00")
    booking = book(duration=90, helper=helper)

    assert booking.estimated_cost == Decimal("112.50")
    assert booking.credits_reserved == 12


def test_scheduling_does_not_check_credits(make_user, helper_user):
    broke = make_user()
    booking = bookings.schedule_booking(broke.id, helper_user.id, "2030-03-05", "10:00", 60, "Help")
    assert booking.status == BookingStatus.PENDING


@pytest.mark.parametrize("kwargs", [
    {"time": "25:00"},
    {"time": "9.30"},
    {"duration": 10},
    {"duration": 481},
    {"date": "05/03/2030"},
    {"date": "2030-03-03"},
    {"booking_type": "therapy"},
])
def test_schedule_rejects_bad_input(book, kwargs):
    with pytest.raises(ValidationError):
        book(**kwargs)


def test_cannot_book_yourself(helper_user):
    with pytest.raises(ValidationError):
        bookings.schedule_booking(helper_user.id, helper_user.id, "2030-03-05", "10:00", 60, "Help")


def test_unapproved_helper_cannot_be_booked(book, make_user):
    pending = make_user(helper=True, approved=False)
    with pytest.raises(HelperUnavailable):
        book(helper=pending)


def test_user_without_helper_profile_cannot_be_booked(book, make_user):
    with pytest.raises(HelperUnavailable):
        book(helper=make_user())


def test_helper_weekday_availability_is_respected(book, make_user):
    no_tuesdays = make_user(helper=True, availability={d: d != "tuesday" for d in WEEKDAYS})
    with pytest.raises(HelperUnavailable):
        book(helper=no_tuesdays)
    assert book(helper=no_tuesdays, date="2030-03-06").id


# ---------- respond ----------

def test_accept_debits_the_client_in_the_same_unit(book, helper_user, client_user):
    booking = book()

    bookings.respond_to_booking(booking.id, helper_user.id, accept=True, message="See you then")

    booking = _reload(booking.id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.PAID
    assert booking.notes == "See you then"
    assert ledger.verify_balance(client_user.id) == (12, 12)

    usage = CreditTransaction.query.filter_by(booking_id=booking.id).one()
    assert usage.transaction_type == TransactionType.USAGE
    assert usage.credits == -8


def test_accept_with_insufficient_credits_leaves_booking_pending(book, helper_user, make_user):
    poor = make_user(credits=3)
    booking = book(client=poor)

    with pytest.raises(InsufficientCredits) as exc:
        bookings.respond_to_booking(booking.id, helper_user.id, accept=True)

    assert exc.value.details == {"required": 8, "available": 3}
    booking = _reload(booking.id)
    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert ledger.verify_balance(poor.id) == (3, 3)
    assert CreditTransaction.query.filter_by(booking_id=booking.id).count() == 0


def test_reject_has_no_ledger_effect_and_is_terminal(book, helper_user, client_user):
    booking = book()

    bookings.respond_to_booking(booking.id, helper_user.id, accept=False)

    assert _reload(booking.id).status == BookingStatus.REJECTED
    assert ledger.balance(client_user.id) == 20
    with pytest.raises(InvalidTransition):
        bookings.respond_to_booking(booking.id, helper_user.id, accept=True)


def test_only_the_helper_may_respond(book, client_user):
    booking = book()
    with pytest.raises(Forbidden):
        bookings.respond_to_booking(booking.id, client_user.id, accept=True)


# ---------- start / complete ----------

def test_start_opens_fifteen_minutes_before(book, helper_user, frozen_clock):
    booking = book()
    bookings.respond_to_booking(booking.id, helper_user.id, accept=True)

    frozen_clock.set(datetime(2030, 3, 5, 9, 44))
    with pytest.raises(LeadTimeViolation) as exc:
        bookings.start_booking(booking.id, helper_user.id)
    assert isinstance(exc.value, InvalidTransition)
    assert _reload(booking.id).status == BookingStatus.CONFIRMED

    frozen_clock.set(datetime(2030, 3, 5, 9, 45))
    started = bookings.start_booking(booking.id, helper_user.id)
    assert started.status == BookingStatus.IN_PROGRESS
    assert started.actual_start == datetime(2030, 3, 5, 9, 45)


def test_pending_booking_cannot_be_started(book, helper_user, frozen_clock):
    booking = book()
    frozen_clock.set(START)
    with pytest.raises(InvalidTransition):
        bookings.start_booking(booking.id, helper_user.id)


def test_complete_records_duration_and_session_without_moving_credits(book, helper_user, client_user, frozen_clock):
    booking = book()
    bookings.respond_to_booking(booking.id, helper_user.id, accept=True)
    frozen_clock.set(datetime(2030, 3, 5, 9, 50))
    bookings.start_booking(booking.id, helper_user.id)

    frozen_clock.set(datetime(2030, 3, 5, 10, 55, 20))
    done = bookings.complete_booking(booking.id, helper_user.id, resolution="Reinstalled driver")

    assert done.status == BookingStatus.COMPLETED
    assert done.actual_end == datetime(2030, 3, 5, 10, 55, 20)
    assert done.actual_duration_minutes == 65
    assert done.resolution == "Reinstalled driver"
    assert helper_user.helper_profile.total_sessions == 1
    assert ledger.verify_balance(client_user.id) == (12, 12)
    # the funding bonus and the usage debit; completion adds nothing
    assert CreditTransaction.query.filter_by(user_id=client_user.id).count() == 2

    with pytest.raises(InvalidTransition, match="already COMPLETED"):
        bookings.complete_booking(booking.id, helper_user.id)


def test_start_and_complete_emit_signals(app, book, helper_user, frozen_clock):
    received = []

    def receiver(sender, booking, **extra):
        received.append((sender, booking.id, booking.status))

    booking = book()
    bookings.respond_to_booking(booking.id, helper_user.id, accept=True)
    frozen_clock.set(START)

    with booking_started.connected_to(receiver), booking_completed.connected_to(receiver):
        bookings.start_booking(booking.id, helper_user.id)
        bookings.complete_booking(booking.id, helper_user.id)

    assert received == [
        (app, booking.id, BookingStatus.IN_PROGRESS),
        (app, booking.id, BookingStatus.COMPLETED),
    ]


# ---------- cancel ----------

def test_cancel_pending_needs_no_refund(book, client_user):
    booking = book()

    cancelled = bookings.cancel_booking(booking.id, client_user.id, reason="Fixed it myself")

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.PENDING
    assert cancelled.cancelled_by == client_user.id
    assert cancelled.cancel_reason == "Fixed it myself"
    assert ledger.balance(client_user.id) == 20


def test_cancel_confirmed_refunds_atomically(book, helper_user, client_user):
    booking = book()
    bookings.respond_to_booking(booking.id, helper_user.id, accept=True)
    assert ledger.balance(client_user.id) == 12

    cancelled = bookings.cancel_booking(booking.id, helper_user.id)

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.REFUNDED
    assert ledger.verify_balance(client_user.id) == (20, 20)
    entries = CreditTransaction.query.filter_by(booking_id=booking.id).order_by(CreditTransaction.id).all()
    assert [(e.transaction_type, e.credits) for e in entries] == [
        (TransactionType.USAGE, -8),
        (TransactionType.REFUND, 8),
    ]


def test_cancel_closes_two_hours_before_start(book, client_user, frozen_clock):
    booking = book()

    frozen_clock.set(datetime(2030, 3, 5, 8, 0))
    with pytest.raises(LeadTimeViolation):
        bookings.cancel_booking(booking.id, client_user.id)

    frozen_clock.set(datetime(2030, 3, 5, 7, 59))
    assert bookings.cancel_booking(booking.id, client_user.id).status == BookingStatus.CANCELLED


def test_strangers_cannot_cancel(book, make_user):
    booking = book()
    with pytest.raises(Forbidden):
        bookings.cancel_booking(booking.id, make_user().id)


def test_cancelled_slot_can_be_booked_again(book, client_user):
    booking = book()
    bookings.cancel_booking(booking.id, client_user.id)
    assert book().status == BookingStatus.PENDING


# ---------- rate ----------

def _completed(book, helper_user, frozen_clock, time="10:00"):
    booking = book(time=time)
    bookings.respond_to_booking(booking.id, helper_user.id, accept=True)
    saved = frozen_clock()
    frozen_clock.set(booking.scheduled_start)
    bookings.start_booking(booking.id, helper_user.id)
    bookings.complete_booking(booking.id, helper_user.id)
    frozen_clock.set(saved)
    return booking


def test_rating_updates_helper_average(book, helper_user, client_user, frozen_clock):
    first = _completed(book, helper_user, frozen_clock, time="10:00")
    second = _completed(book, helper_user, frozen_clock, time="12:00")

    bookings.rate_booking(first.id, client_user.id, 5, feedback="Great")
    bookings.rate_booking(second.id, client_user.id, 4)

    profile = helper_user.helper_profile
    assert profile.rating == Decimal("4.5")
    assert profile.total_sessions == 2

    # re-rating replaces the earlier value
    bookings.rate_booking(second.id, client_user.id, 2)
    assert profile.rating == Decimal("3.5")


def test_only_completed_bookings_by_their_client_can_be_rated(book, helper_user, client_user, frozen_clock):
    pending = book(time="15:00")
    with pytest.raises(InvalidTransition):
        bookings.rate_booking(pending.id, client_user.id, 5)

    done = _completed(book, helper_user, frozen_clock)
    with pytest.raises(Forbidden):
        bookings.rate_booking(done.id, helper_user.id, 5)
    for bad in (0, 6, "five", 4.5, True):
        with pytest.raises(ValidationError):
            bookings.rate_booking(done.id, client_user.id, bad)


# ---------- read side ----------

def test_participants_only_and_call_gating(book, helper_user, client_user, make_user, frozen_clock):
    booking = book()
    with pytest.raises(Forbidden):
        bookings.get_booking_for(booking.id, make_user().id)

    assert bookings.call_access(booking.id, client_user.id)["allowed"] is False

    bookings.respond_to_booking(booking.id, helper_user.id, accept=True)
    frozen_clock.set(START)
    bookings.start_booking(booking.id, helper_user.id)
    access = bookings.call_access(booking.id, client_user.id)
    assert access == {"booking_id": booking.id, "room": f"booking-{booking.id}",
                      "status": BookingStatus.IN_PROGRESS, "allowed": True}


def test_list_bookings_filters_by_role_and_status(book, helper_user, client_user):
    first = book(time="10:00")
    book(time="12:00")
    bookings.respond_to_booking(first.id, helper_user.id, accept=False)

    as_client = bookings.list_bookings_for(client_user.id, role="client")
    assert as_client.total == 2
    assert bookings.list_bookings_for(client_user.id, role="helper").total == 0

    rejected = bookings.list_bookings_for(helper_user.id, status="rejected")
    assert [b.id for b in rejected.items] == [first.id]


def test_balance_invariant_holds_after_a_busy_day(book, helper_user, client_user, frozen_clock):
    a = book(time="10:00")
    b = book(time="12:00")
    c = book(time="14:00", duration=30)
    bookings.respond_to_booking(a.id, helper_user.id, accept=True)
    bookings.respond_to_booking(b.id, helper_user.id, accept=True)
    bookings.respond_to_booking(c.id, helper_user.id, accept=False)
    bookings.cancel_booking(b.id, client_user.id)

    cached, from_ledger = ledger.verify_balance(client_user.id)
    assert cached == from_ledger == 12


def test_failing_receiver_does_not_undo_a_committed_start(app, book, helper_user, frozen_clock):
    booking = book()
    bookings.respond_to_booking(booking.id, helper_user.id, accept=True)
    frozen_clock.set(START)

    def broken(sender, booking, **extra):
        raise RuntimeError("relay down")

    with booking_started.connected_to(broken):
        started = bookings.start_booking(booking.id, helper_user.id)

    assert started.status == BookingStatus.IN_PROGRESS
    db.session.expire_all()
    assert db.session.get(Booking, booking.id).status == BookingStatus.IN_PROGRESS
    # the audit receiver still ran
    assert AuditLog.query.filter_by(action="CALL_OPENED", entity_id=str(booking.id)).count() == 1


def test_audit_receivers_are_connected_once(app):
    before = len(booking_started.receivers), len(booking_completed.receivers)

    create_app(TestConfig)
    create_app(TestConfig)

    assert (len(booking_started.receivers), len(booking_completed.receivers)) == before
