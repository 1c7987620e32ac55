"""Gateway checkouts for credit packages and subscriptions; nothing is granted until paid."""

import logging
from datetime import timedelta
from decimal import Decimal
from urllib.parse import urlencode

import stripe
from flask import current_app

from models import db
from models.credit_package import CreditPackage
from models.credit_transaction import TransactionType
from models.payment import Payment
from services import directory, ledger, subscriptions
from services.base import transaction
from services.errors import BookingError, NotFound, ValidationError
from utils import clock
from utils.audit import log_event

logger = logging.getLogger(__name__)


class PaymentProviderError(BookingError):
    status_code = 502


def find_package(package_id) -> CreditPackage:
    pkg = None
    if isinstance(package_id, int) and not isinstance(package_id, bool):
        pkg = db.session.get(CreditPackage, package_id)
    elif isinstance(package_id, str) and package_id.strip():
        pkg = CreditPackage.query.filter_by(slug=package_id.strip()).first()
    if not pkg or not pkg.is_active:
        raise NotFound("Credit package not found")
    return pkg


def active_packages():
    return (
        CreditPackage.query
        .filter_by(is_active=True)
        .order_by(CreditPackage.credits.asc(), CreditPackage.id.asc())
        .all()
    )


def _checkout_session(payment: Payment, product_name: str, return_path: str = "credits"):
    secret = current_app.config.get("STRIPE_SECRET_KEY")
    if not secret:
        raise PaymentProviderError("Stripe secret key not configured")
    stripe.api_key = secret

    base = current_app.config.get("FRONTEND_BASE_URL", "").rstrip("/")
    query = urlencode({"payment_id": payment.id})
    try:
        return stripe.checkout.Session.create(
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": payment.currency.lower(),
                    "product_data": {"name": product_name},
                    # smallest currency unit
                    "unit_amount": int(Decimal(payment.amount) * 100),
                },
                "quantity": 1,
            }],
            success_url=f"{base}/{return_path}/success?{query}",
            cancel_url=f"{base}/{return_path}/cancel?{query}",
            metadata={
                "payment_id": str(payment.id),
                "user_id": str(payment.user_id),
                "package_id": str(payment.package_id or ""),
                "subscription_id": str(payment.subscription_id or ""),
            },
        )
    except stripe.StripeError as exc:
        logger.error("stripe checkout failed for payment %s: %s", payment.id, exc)
        raise PaymentProviderError("Could not start checkout") from exc


def start_purchase(user_id: int, package_id):
    """
    Returns (payment, checkout_url). checkout_url is None when the purchase
    was completed on the spot by the mock provider (CREDITS_TEST_MODE).
    """
    package = find_package(package_id)
    test_mode = bool(current_app.config.get("CREDITS_TEST_MODE"))

    payment = Payment(
        user_id=user_id,
        package_id=package.id,
        provider="MOCK" if test_mode else "STRIPE",
        amount=package.price,
        currency=current_app.config.get("CURRENCY", "BRL"),
        status="INIT",
    )
    db.session.add(payment)
    db.session.commit()

    if test_mode:
        settle_payment(payment.id)
        return payment, None

    session = _checkout_session(payment, f"{package.name} ({package.credits} credits)")
    payment.stripe_session_id = session["id"]
    db.session.commit()

    log_event("PAYMENT_SESSION_CREATED", actor_id=user_id, entity="payment", entity_id=payment.id,
              metadata={"stripe_session_id": session["id"], "package": package.slug})
    return payment, session["url"]


def start_subscription(user_id: int, plan_id):
    """
    Open a PENDING subscription and its first payment. Returns
    (subscription, payment, checkout_url); as with packages, checkout_url
    is None when the mock provider settled the payment on the spot.
    """
    user = directory.find_user(user_id)
    plan = subscriptions.find_plan(user, plan_id)
    test_mode = bool(current_app.config.get("CREDITS_TEST_MODE"))

    sub = subscriptions.open_subscription(user, plan)
    payment = Payment(
        user_id=user.id,
        subscription=sub,
        provider="MOCK" if test_mode else "STRIPE",
        amount=sub.price,
        currency=current_app.config.get("CURRENCY", "BRL"),
        status="INIT",
    )
    db.session.add(payment)
    db.session.commit()
    log_event("SUBSCRIPTION_CREATE", actor_id=user.id, entity="subscription", entity_id=sub.id,
              metadata={"plan_id": sub.plan_id, "payment_id": payment.id})

    if test_mode:
        settle_payment(payment.id)
        return sub, payment, None

    session = _checkout_session(payment, f"{sub.plan_name} subscription", return_path="subscriptions")
    payment.stripe_session_id = session["id"]
    db.session.commit()
    return sub, payment, session["url"]


def _lock_payment(payment_id) -> Payment:
    payment = db.session.get(Payment, payment_id, with_for_update=True, populate_existing=True)
    if not payment:
        raise NotFound("Payment not found")
    return payment


def settle_payment(payment_id: int) -> bool:
    """Mark a payment PAID and grant what it bought. False when it was already settled."""
    with transaction():
        payment = _lock_payment(payment_id)
        if payment.status != "INIT":
            logger.info("payment %s already %s, skipping", payment.id, payment.status)
            return False

        now = clock.utcnow()
        payment.status = "PAID"
        payment.paid_at = now

        if payment.subscription_id is not None:
            subscriptions.activate(payment.subscription, payment, now)
            metadata = {"subscription_id": payment.subscription_id, "provider": payment.provider}
        else:
            package = payment.package
            ledger.apply(
                payment.user_id,
                TransactionType.PURCHASE,
                package.credits,
                package_id=package.id,
                payment_id=payment.id,
                amount=payment.amount,
                description=f"Purchase: {package.name}",
                expires_at=now + timedelta(days=package.validity_days) if package.validity_days else None,
            )
            metadata = {"credits": package.credits, "provider": payment.provider}
        log_event("PAYMENT_PAID", actor_id=payment.user_id, entity="payment", entity_id=payment.id,
                  metadata=metadata, commit=False)
    return True


def fail_payment(payment_id: int, reason: str = "checkout expired") -> bool:
    with transaction():
        payment = _lock_payment(payment_id)
        if payment.status != "INIT":
            return False
        payment.status = "FAILED"
        if payment.subscription_id is not None:
            subscriptions.deactivate(payment.subscription, reason)
        else:
            ledger.record_failed(
                payment.user_id,
                TransactionType.PURCHASE,
                payment.package.credits,
                package_id=payment.package_id,
                payment_id=payment.id,
                amount=payment.amount,
                description=f"Purchase failed: {payment.package.name}",
                notes=reason,
            )
        log_event("PAYMENT_FAILED", actor_id=payment.user_id, entity="payment", entity_id=payment.id,
                  metadata={"reason": reason}, commit=False)
    return True


def grant_bonus(admin_id: int, user_id: int, credits, reason=None):
    if isinstance(credits, bool) or not isinstance(credits, int) or credits <= 0:
        raise ValidationError("credits must be a positive integer")
    with transaction():
        entry = ledger.apply(
            user_id,
            TransactionType.BONUS,
            credits,
            description=(reason or "Bonus credits").strip()[:255],
            notes=f"granted by user {admin_id}",
        )
        log_event("CREDITS_GRANT", actor_id=admin_id, entity="user", entity_id=user_id,
                  metadata={"credits": credits}, commit=False)
    return entry
