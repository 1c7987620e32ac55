from flask import Blueprint, request, jsonify, g

from services import purchases, subscriptions
from utils.auth_context import login_required
from utils.serializers import page_json, payment_json, plan_json, subscription_json

subscriptions_bp = Blueprint("subscriptions", __name__, url_prefix="/subscriptions")


@subscriptions_bp.get("/plans")
def list_plans():
    # anonymous visitors see the client plans
    user = getattr(g, "user", None)
    return jsonify(success=True, data=[plan_json(p) for p in subscriptions.plans_for(user)]), 200


@subscriptions_bp.get("/current")
@login_required
def current():
    sub = subscriptions.current_subscription(g.user.id)
    return jsonify(success=True, data=subscription_json(sub) if sub else None), 200


@subscriptions_bp.post("/subscribe")
@login_required
def subscribe():
    data = request.get_json(silent=True) or {}
    sub, payment, checkout_url = purchases.start_subscription(g.user.id, data.get("plan_id"))

    if checkout_url is None:
        return jsonify(
            success=True,
            message="Subscription active",
            data={"payment_id": payment.id, "subscription": subscription_json(sub)},
        ), 200
    return jsonify(
        success=True,
        data={"payment_id": payment.id, "checkout_url": checkout_url, "subscription": subscription_json(sub)},
    ), 200


@subscriptions_bp.post("/cancel")
@login_required
def cancel():
    data = request.get_json(silent=True) or {}
    sub = subscriptions.cancel(g.user.id, data.get("reason"))
    return jsonify(success=True, message="Subscription cancelled", data=subscription_json(sub)), 200


@subscriptions_bp.post("/reactivate")
@login_required
def reactivate():
    sub = subscriptions.reactivate(g.user.id)
    return jsonify(success=True, message="Subscription reactivated", data=subscription_json(sub)), 200


@subscriptions_bp.post("/auto-renew")
@login_required
def auto_renew():
    data = request.get_json(silent=True) or {}
    sub = subscriptions.set_auto_renew(g.user.id, data.get("auto_renew"))
    return jsonify(success=True, data={"auto_renew": sub.auto_renew}), 200


@subscriptions_bp.get("/payment-history")
@login_required
def payment_history():
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    limit = max(1, min(request.args.get("limit", 10, type=int) or 10, 100))
    result = subscriptions.payment_history(g.user.id, page=page, limit=limit)
    return jsonify(
        success=True,
        data=[payment_json(p) for p in result.items],
        pagination=page_json(result),
    ), 200
