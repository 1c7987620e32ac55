import threading

import pytest
from sqlalchemy import text

from app import create_app
from config import TestConfig
from models import db
from models.audit_log import AuditLog
from models.booking import BookingStatus
from models.credit_transaction import CreditTransaction, TransactionType
from models.user import User
from services import bookings, ledger
from services.base import transaction
from services.errors import ConcurrentUpdate, InsufficientCredits, InvalidTransition
from utils.audit import log_event
from utils.seed import seed_roles


@pytest.fixture
def app(frozen_clock, tmp_path):
    """Same as the shared fixture, but on a database file so threads get their own connections."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "race.db")
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _race(app, *calls):
    """Run each call in its own thread and app context; returns one outcome per call."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def run(i, call):
        with app.app_context():
            try:
                barrier.wait()
                call()
                outcomes[i] = "ok"
            except (ConcurrentUpdate, InsufficientCredits, InvalidTransition) as exc:
                outcomes[i] = type(exc).__name__
            except Exception as exc:
                outcomes[i] = repr(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=run, args=(i, call)) for i, call in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_two_confirmations_never_overdraw_the_client(app, make_user, helper_user, book):
    client = make_user(credits=10)
    client_id, helper_id = client.id, helper_user.id
    first_id = book(time="10:00", client=client).id
    second_id = book(time="12:00", client=client).id
    db.session.close()

    outcomes = _race(
        app,
        lambda: bookings.respond_to_booking(first_id, helper_id, accept=True),
        lambda: bookings.respond_to_booking(second_id, helper_id, accept=True),
    )

    assert sorted(outcomes)[1] == "ok", outcomes
    assert sorted(outcomes)[0] in ("ConcurrentUpdate", "InsufficientCredits"), outcomes

    assert ledger.verify_balance(client_id) == (2, 2)
    usage = CreditTransaction.query.filter_by(user_id=client_id, transaction_type=TransactionType.USAGE).all()
    assert [u.credits for u in usage] == [-8]
    statuses = sorted(bookings.get_booking_for(b, client_id).status for b in (first_id, second_id))
    assert statuses == [BookingStatus.CONFIRMED, BookingStatus.PENDING]


def test_double_accept_of_one_booking_debits_once(app, client_user, helper_user, book):
    client_id, helper_id = client_user.id, helper_user.id
    booking_id = book().id
    db.session.close()

    outcomes = _race(
        app,
        lambda: bookings.respond_to_booking(booking_id, helper_id, accept=True),
        lambda: bookings.respond_to_booking(booking_id, helper_id, accept=True),
    )

    assert outcomes.count("ok") == 1, outcomes
    assert [o for o in outcomes if o != "ok"][0] in ("ConcurrentUpdate", "InvalidTransition"), outcomes

    assert ledger.verify_balance(client_id) == (12, 12)
    assert CreditTransaction.query.filter_by(booking_id=booking_id).count() == 1


def test_lost_version_check_rolls_the_unit_back(app, client_user):
    user_id = client_user.id
    user = db.session.get(User, user_id)
    version_before = user.version

    with pytest.raises(ConcurrentUpdate):
        with transaction():
            # another writer bumps the row after it was read
            db.session.execute(text("UPDATE users SET version = version + 1 WHERE id = :id"), {"id": user_id})
            user.full_name = "Overwritten"
            log_event("PROFILE_UPDATE", actor_id=user_id, entity="user", entity_id=user_id, commit=False)

    db.session.expire_all()
    fresh = db.session.get(User, user_id)
    assert fresh.full_name == "Carla Client"
    assert fresh.version == version_before
    assert AuditLog.query.filter_by(action="PROFILE_UPDATE").count() == 0
    # the session is usable again after the rollback
    fresh.full_name = "Carla C."
    db.session.commit()
    assert db.session.get(User, user_id).full_name == "Carla C."
