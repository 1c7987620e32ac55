"""
Subscription plans and the subscription lifecycle.

    PENDING -> ACTIVE (first payment settled) | INACTIVE (checkout failed)
    ACTIVE <-> CANCELLED (until end_date; cancelled plans do not renew)

Payment collection goes through services.purchases, which calls
``activate`` and ``deactivate`` from the payment settlement path.
A subscription whose end_date has passed simply stops being live.
"""

import logging
from datetime import timedelta
from decimal import Decimal

from flask import current_app

from models import db
from models.credit_transaction import TransactionType
from models.payment import Payment
from models.subscription import Subscription, SubscriptionStatus
from services import ledger
from services.base import transaction
from services.errors import BookingError, InvalidTransition, NotFound, ValidationError
from utils import clock
from utils.audit import log_event

logger = logging.getLogger(__name__)

CYCLE_DAYS = {
    "WEEKLY": 7,
    "BIWEEKLY": 14,
    "MONTHLY": 30,
    "QUARTERLY": 90,
    "SEMIANNUALLY": 182,
    "YEARLY": 365,
}


class AlreadySubscribed(BookingError):
    status_code = 409


def audience_for(user) -> str:
    return "helper" if user is not None and user.is_helper else "client"


def plans_for(user):
    catalog = current_app.config.get("SUBSCRIPTION_PLANS") or {}
    return list(catalog.get(audience_for(user)) or catalog.get("client") or [])


def find_plan(user, plan_id) -> dict:
    if not isinstance(plan_id, str) or not plan_id.strip():
        raise ValidationError("plan_id is required")
    for plan in plans_for(user):
        if plan["id"] == plan_id.strip():
            return plan
    raise NotFound("Subscription plan not found")


def current_subscription(user_id):
    """The subscription the user is entitled to right now, or None."""
    now = clock.utcnow()
    return (
        Subscription.query
        .filter(
            Subscription.user_id == user_id,
            Subscription.status.in_(SubscriptionStatus.LIVE),
            Subscription.end_date > now,
        )
        .order_by(Subscription.end_date.desc(), Subscription.id.desc())
        .first()
    )


def _lock_current(user_id) -> Subscription:
    sub = current_subscription(user_id)
    if sub is None:
        raise NotFound("You have no active subscription")
    return db.session.get(Subscription, sub.id, with_for_update=True, populate_existing=True)


def open_subscription(user, plan: dict) -> Subscription:
    """Add a PENDING subscription for ``plan``; the caller commits it with its payment."""
    if current_subscription(user.id) is not None:
        raise AlreadySubscribed("You already have a subscription; cancel or reactivate it instead")

    cycle = plan.get("billing_cycle", "MONTHLY")
    if cycle not in CYCLE_DAYS:
        raise ValidationError(f"Unsupported billing cycle: {cycle}")

    sub = Subscription(
        user_id=user.id,
        plan_id=plan["id"],
        plan_name=plan["name"],
        audience=audience_for(user),
        price=Decimal(str(plan["price"])),
        credits_per_cycle=int(plan.get("credits") or 0),
        commission_percent=plan.get("commission"),
        billing_cycle=cycle,
        status=SubscriptionStatus.PENDING,
        auto_renew=True,
    )
    db.session.add(sub)
    return sub


def activate(sub: Subscription, payment: Payment, now) -> None:
    """
    Start the paid cycle. Runs inside the settlement transaction; any
    other pending or live subscription of the user is closed so only the
    paid one remains.
    """
    others = (
        Subscription.query
        .filter(
            Subscription.user_id == sub.user_id,
            Subscription.id != sub.id,
            Subscription.status != SubscriptionStatus.INACTIVE,
        )
        .all()
    )
    for other in others:
        other.status = SubscriptionStatus.INACTIVE

    sub.status = SubscriptionStatus.ACTIVE
    sub.auto_renew = True
    sub.start_date = now
    sub.end_date = now + timedelta(days=CYCLE_DAYS[sub.billing_cycle])
    sub.cancelled_at = None
    sub.cancel_reason = None

    if sub.credits_per_cycle > 0:
        ledger.apply(
            sub.user_id,
            TransactionType.PURCHASE,
            sub.credits_per_cycle,
            payment_id=payment.id,
            amount=payment.amount,
            description=f"Subscription: {sub.plan_name}",
        )
    log_event("SUBSCRIPTION_ACTIVATE", actor_id=sub.user_id, entity="subscription", entity_id=sub.id,
              metadata={"plan_id": sub.plan_id, "credits": sub.credits_per_cycle,
                        "replaced": [o.id for o in others]}, commit=False)
    logger.info("subscription %s active for user %s until %s", sub.id, sub.user_id, sub.end_date)


def deactivate(sub: Subscription, reason: str) -> None:
    if sub.status != SubscriptionStatus.PENDING:
        return
    sub.status = SubscriptionStatus.INACTIVE
    log_event("SUBSCRIPTION_FAILED", actor_id=sub.user_id, entity="subscription", entity_id=sub.id,
              metadata={"reason": reason}, commit=False)


def cancel(user_id, reason=None) -> Subscription:
    with transaction():
        sub = _lock_current(user_id)
        if sub.status != SubscriptionStatus.ACTIVE:
            raise InvalidTransition(sub.status, SubscriptionStatus.CANCELLED, "Subscription is already cancelled")
        sub.status = SubscriptionStatus.CANCELLED
        sub.auto_renew = False
        sub.cancelled_at = clock.utcnow()
        reason = reason.strip()[:255] if isinstance(reason, str) else ""
        sub.cancel_reason = reason or None
        log_event("SUBSCRIPTION_CANCEL", actor_id=user_id, entity="subscription", entity_id=sub.id,
                  metadata={"reason": sub.cancel_reason}, commit=False)
    return sub


def reactivate(user_id) -> Subscription:
    with transaction():
        sub = _lock_current(user_id)
        if sub.status != SubscriptionStatus.CANCELLED:
            raise InvalidTransition(sub.status, SubscriptionStatus.ACTIVE, "Subscription is not cancelled")
        sub.status = SubscriptionStatus.ACTIVE
        sub.auto_renew = True
        sub.cancelled_at = None
        sub.cancel_reason = None
        log_event("SUBSCRIPTION_REACTIVATE", actor_id=user_id, entity="subscription", entity_id=sub.id,
                  commit=False)
    return sub


def set_auto_renew(user_id, enabled) -> Subscription:
    if not isinstance(enabled, bool):
        raise ValidationError("auto_renew must be true or false")
    with transaction():
        sub = _lock_current(user_id)
        if sub.status != SubscriptionStatus.ACTIVE:
            raise InvalidTransition(sub.status, SubscriptionStatus.ACTIVE, "Reactivate the subscription first")
        sub.auto_renew = enabled
        log_event("SUBSCRIPTION_AUTO_RENEW", actor_id=user_id, entity="subscription", entity_id=sub.id,
                  metadata={"auto_renew": enabled}, commit=False)
    return sub


def payment_history(user_id, page=1, limit=10):
    q = (
        Payment.query
        .filter(Payment.user_id == user_id, Payment.subscription_id.isnot(None))
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    return q.paginate(page=page, per_page=limit, error_out=False)
