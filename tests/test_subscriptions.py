from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from models import db
from models.credit_transaction import CreditTransaction, TransactionType
from models.payment import Payment
from models.subscription import Subscription, SubscriptionStatus
from services import ledger, purchases, subscriptions
from services.errors import InvalidTransition, NotFound, ValidationError
from services.subscriptions import AlreadySubscribed

NOW = datetime(2030, 3, 4, 9, 0)


@pytest.fixture
def test_mode(app):
    app.config["CREDITS_TEST_MODE"] = True


def _event(event_type, payment):
    return {
        "type": event_type,
        "data": {"object": {"id": payment.stripe_session_id, "metadata": {"payment_id": str(payment.id)}}},
    }


def test_plans_follow_the_audience(app, http, helper_user, login):
    anonymous = http.get("/subscriptions/plans").get_json()["data"]
    assert [p["id"] for p in anonymous] == ["client_basic", "client_premium", "client_enterprise"]
    assert anonymous[1]["credits"] == 120
    assert anonymous[1]["price"] == "59.90"

    helper_http = app.test_client()
    login(helper_http, helper_user.email)
    for_helper = helper_http.get("/subscriptions/plans").get_json()["data"]
    assert [p["id"] for p in for_helper] == ["helper_basic", "helper_professional", "helper_expert"]
    assert for_helper[0]["commission"] == 70


def test_test_mode_subscription_is_active_and_credits_once(http, client_user, login, test_mode):
    headers = login(http, client_user.email)

    resp = http.post("/subscriptions/subscribe", json={"plan_id": "client_premium"}, headers=headers)

    assert resp.status_code == 200
    sub = resp.get_json()["data"]["subscription"]
    assert sub["status"] == "ACTIVE"
    assert sub["start_date"] == NOW.isoformat()
    assert sub["end_date"] == (NOW + timedelta(days=30)).isoformat()
    assert sub["next_billing_date"] == sub["end_date"]
    assert ledger.verify_balance(client_user.id) == (140, 140)

    current = http.get("/subscriptions/current").get_json()["data"]
    assert current["plan_id"] == "client_premium"

    again = http.post("/subscriptions/subscribe", json={"plan_id": "client_basic"}, headers=headers)
    assert again.status_code == 409
    assert again.get_json()["error"] == "AlreadySubscribed"
    assert ledger.balance(client_user.id) == 140


def test_unknown_plan_and_anonymous_subscribe(http, client_user, login):
    assert http.post("/subscriptions/subscribe", json={"plan_id": "client_basic"}).status_code == 401

    headers = login(http, client_user.email)
    # helper plans are not offered to clients
    resp = http.post("/subscriptions/subscribe", json={"plan_id": "helper_expert"}, headers=headers)
    assert resp.status_code == 404
    assert http.post("/subscriptions/subscribe", json={}, headers=headers).status_code == 400


def test_stripe_subscription_is_activated_once_by_webhook(app, http, client_user, login):
    headers = login(http, client_user.email)
    fake_session = {"id": "cs_sub_1", "url": "https://checkout.stripe.test/cs_sub_1"}

    with patch("stripe.checkout.Session.create", return_value=fake_session) as create:
        resp = http.post("/subscriptions/subscribe", json={"plan_id": "client_basic"}, headers=headers)

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["checkout_url"] == fake_session["url"]
    assert data["subscription"]["status"] == "PENDING"
    kwargs = create.call_args.kwargs
    assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 2990
    assert kwargs["metadata"]["subscription_id"] == str(data["subscription"]["id"])
    assert "/subscriptions/success?" in kwargs["success_url"]

    # nothing is granted before payment
    assert http.get("/subscriptions/current").get_json()["data"] is None
    assert ledger.balance(client_user.id) == 20

    payment = db.session.get(Payment, data["payment_id"])
    webhook = app.test_client()
    with patch("stripe.Webhook.construct_event", return_value=_event("checkout.session.completed", payment)):
        for _ in range(2):
            assert webhook.post("/webhooks/stripe", data=b"{}").status_code == 200

    db.session.expire_all()
    sub = db.session.get(Subscription, data["subscription"]["id"])
    assert sub.status == SubscriptionStatus.ACTIVE
    assert ledger.verify_balance(client_user.id) == (70, 70)
    entry = CreditTransaction.query.filter_by(payment_id=payment.id).one()
    assert entry.transaction_type == TransactionType.PURCHASE
    assert entry.description == "Subscription: Basic"


def test_expired_checkout_leaves_subscription_inactive(app, client_user):
    with patch("stripe.checkout.Session.create", return_value={"id": "cs_sub_2", "url": "https://x.test"}):
        sub, payment, _ = purchases.start_subscription(client_user.id, "client_basic")

    webhook = app.test_client()
    with patch("stripe.Webhook.construct_event", return_value=_event("checkout.session.expired", payment)):
        assert webhook.post("/webhooks/stripe", data=b"{}").status_code == 200

    db.session.expire_all()
    assert db.session.get(Subscription, sub.id).status == SubscriptionStatus.INACTIVE
    assert db.session.get(Payment, payment.id).status == "FAILED"
    assert CreditTransaction.query.filter_by(payment_id=payment.id).count() == 0
    assert subscriptions.current_subscription(client_user.id) is None


def test_helper_plan_grants_no_credits(helper_user, test_mode):
    sub, _, _ = purchases.start_subscription(helper_user.id, "helper_professional")

    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.audience == "helper"
    assert sub.commission_percent == 80
    assert ledger.balance(helper_user.id) == 0


def test_cancel_reactivate_and_auto_renew(client_user, test_mode):
    purchases.start_subscription(client_user.id, "client_basic")

    cancelled = subscriptions.cancel(client_user.id, reason="  Too expensive ")
    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.auto_renew is False
    assert cancelled.cancel_reason == "Too expensive"
    assert cancelled.next_billing_date is None
    # still paid for until the end of the cycle
    assert subscriptions.current_subscription(client_user.id).id == cancelled.id

    with pytest.raises(InvalidTransition):
        subscriptions.cancel(client_user.id)
    with pytest.raises(InvalidTransition):
        subscriptions.set_auto_renew(client_user.id, True)

    reactivated = subscriptions.reactivate(client_user.id)
    assert reactivated.status == SubscriptionStatus.ACTIVE
    assert reactivated.auto_renew is True
    assert reactivated.cancel_reason is None
    with pytest.raises(InvalidTransition):
        subscriptions.reactivate(client_user.id)

    assert subscriptions.set_auto_renew(client_user.id, False).next_billing_date is None
    with pytest.raises(ValidationError):
        subscriptions.set_auto_renew(client_user.id, "yes")


def test_subscription_lapses_after_its_cycle(client_user, frozen_clock, test_mode):
    purchases.start_subscription(client_user.id, "client_basic")
    subscriptions.cancel(client_user.id)

    frozen_clock.set(NOW + timedelta(days=30, seconds=1))

    assert subscriptions.current_subscription(client_user.id) is None
    with pytest.raises(NotFound):
        subscriptions.reactivate(client_user.id)

    renewed, _, _ = purchases.start_subscription(client_user.id, "client_premium")
    assert renewed.status == SubscriptionStatus.ACTIVE
    assert renewed.end_date == datetime(2030, 5, 3, 9, 0, 1)
    assert ledger.balance(client_user.id) == 20 + 50 + 120


def test_paying_a_second_checkout_replaces_the_pending_one(client_user):
    with patch("stripe.checkout.Session.create", side_effect=[
        {"id": "cs_a", "url": "https://x.test/a"},
        {"id": "cs_b", "url": "https://x.test/b"},
    ]):
        first, _, _ = purchases.start_subscription(client_user.id, "client_basic")
        second, payment, _ = purchases.start_subscription(client_user.id, "client_premium")

    purchases.settle_payment(payment.id)

    db.session.expire_all()
    assert db.session.get(Subscription, first.id).status == SubscriptionStatus.INACTIVE
    assert subscriptions.current_subscription(client_user.id).id == second.id
    with pytest.raises(AlreadySubscribed):
        purchases.start_subscription(client_user.id, "client_basic")


def test_payment_history_lists_subscription_payments_only(app, http, client_user, login, test_mode):
    headers = login(http, client_user.email)
    http.post("/subscriptions/subscribe", json={"plan_id": "client_basic"}, headers=headers)
    # a package purchase is not part of the subscription history
    db.session.add(Payment(user_id=client_user.id, amount=10, status="INIT"))
    db.session.commit()

    history = http.get("/subscriptions/payment-history").get_json()
    assert history["pagination"]["total"] == 1
    row = history["data"][0]
    assert row["status"] == "PAID"
    assert row["amount"] == "29.90"
    assert row["provider"] == "MOCK"
    assert row["description"] == "Basic"


def test_subscription_routes_over_http(http, client_user, login, test_mode):
    headers = login(http, client_user.email)
    http.post("/subscriptions/subscribe", json={"plan_id": "client_basic"}, headers=headers)

    resp = http.post("/subscriptions/auto-renew", json={"auto_renew": False}, headers=headers)
    assert resp.get_json()["data"] == {"auto_renew": False}

    cancelled = http.post("/subscriptions/cancel", json={"reason": "Moving"}, headers=headers)
    assert cancelled.get_json()["data"]["status"] == "CANCELLED"

    reactivated = http.post("/subscriptions/reactivate", headers=headers)
    assert reactivated.status_code == 200
    assert reactivated.get_json()["data"]["auto_renew"] is True

    again = http.post("/subscriptions/reactivate", headers=headers)
    assert again.status_code == 409
    assert again.get_json()["details"] == {"current": "ACTIVE", "requested": "ACTIVE"}
