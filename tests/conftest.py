from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.credit_transaction import TransactionType
from models.helper_profile import HelperProfile, WEEKDAYS
from models.user import User, Role
from security.password import hash_password
from services import bookings, ledger
from utils import clock
from utils.seed import seed_roles

# a Monday
NOW = datetime(2030, 3, 4, 9, 0)
PASSWORD = "secret123"


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def set(self, value):
        self.now = value

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def frozen_clock(monkeypatch):
    fc = FrozenClock(NOW)
    monkeypatch.setattr(clock, "utcnow", fc)
    return fc


@pytest.fixture
def app(frozen_clock):
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(email=None, full_name="Test User", credits=0, helper=False, hourly_rate="80.00",
              availability=None, approved=True, admin=False, specialties=None):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            password_hash=hash_password(PASSWORD),
            full_name=full_name,
            is_approved=approved,
        )
        if helper:
            user.helper_profile = HelperProfile(
                hourly_rate=Decimal(hourly_rate),
                experience_years=3,
                specialties=specialties if specialties is not None else ["networking"],
                availability=availability if availability is not None else {d: True for d in WEEKDAYS},
            )
        if admin:
            user.roles.append(Role.query.filter_by(name="ADMIN").one())
        db.session.add(user)
        db.session.commit()

        if credits:
            ledger.apply(user.id, TransactionType.BONUS, credits, description="test credits")
            db.session.commit()
        return user

    return _make


@pytest.fixture
def client_user(make_user):
    return make_user(email="client@example.com", full_name="Carla Client", credits=20)


@pytest.fixture
def helper_user(make_user):
    return make_user(email="helper@example.com", full_name="Hugo Helper", helper=True)


@pytest.fixture
def book(client_user, helper_user):
    """Schedule a booking on Tuesday 2030-03-05 with sensible defaults."""
    def _book(time="10:00", duration=60, date="2030-03-05", client=None, helper=None, **kwargs):
        return bookings.schedule_booking(
            (client or client_user).id,
            (helper or helper_user).id,
            date,
            time,
            duration,
            "Printer will not connect to the network",
            **kwargs,
        )
    return _book


def _login(http_client, email, password=PASSWORD):
    resp = http_client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return {"X-CSRF-Token": resp.get_json()["data"]["csrf_token"]}


@pytest.fixture
def login():
    """Log a test client in; returns the headers carrying the CSRF token."""
    return _login
