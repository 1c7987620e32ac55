import logging

import stripe
from flask import Blueprint, request, jsonify, current_app

from models import db
from models.payment import Payment
from services import purchases

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


def _find_payment(session_obj):
    meta = session_obj.get("metadata") or {}
    payment_id = meta.get("payment_id")
    if payment_id and str(payment_id).isdigit():
        payment = db.session.get(Payment, int(payment_id))
        if payment:
            return payment
    session_id = session_obj.get("id")
    if session_id:
        return Payment.query.filter_by(stripe_session_id=session_id).first()
    return None


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not endpoint_secret:
        return jsonify(success=False, message="Webhook secret not configured", error="NOT_CONFIGURED"), 500

    try:
        event = stripe.Webhook.construct_event(
            request.data, request.headers.get("Stripe-Signature"), endpoint_secret
        )
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify(success=False, message="Invalid webhook signature", error="BAD_SIGNATURE"), 400

    event_type = event["type"]
    if event_type in ("checkout.session.completed", "checkout.session.expired"):
        session_obj = event["data"]["object"]
        payment = _find_payment(session_obj)
        if payment is None:
            logger.warning("stripe %s for unknown session %s", event_type, session_obj.get("id"))
        elif event_type == "checkout.session.completed":
            purchases.settle_payment(payment.id)
        else:
            purchases.fail_payment(payment.id)

    # stripe retries anything but 2xx; duplicate deliveries are no-ops
    return jsonify(received=True), 200
