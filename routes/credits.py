from decimal import Decimal, InvalidOperation

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.credit_package import CreditPackage
from models.credit_transaction import TransactionStatus, TransactionType
from security.rbac import require_roles
from services import ledger, purchases
from services.errors import ValidationError
from utils.audit import log_event
from utils.auth_context import login_required
from utils.serializers import package_json, page_json, transaction_json

credits_bp = Blueprint("credits", __name__, url_prefix="/credits")


@credits_bp.get("/packages")
def list_packages():
    return jsonify(success=True, data=[package_json(p) for p in purchases.active_packages()]), 200


@credits_bp.post("/packages")
@require_roles("ADMIN")
def create_package():
    data = request.get_json(silent=True) or {}
    slug = (data.get("slug") or "").strip().lower()
    name = (data.get("name") or "").strip()
    credits = data.get("credits")
    discount = data.get("discount", 0)
    validity_days = data.get("validity_days")

    if not slug or not name:
        raise ValidationError("slug and name are required")
    if isinstance(credits, bool) or not isinstance(credits, int) or credits < 1:
        raise ValidationError("credits must be a positive integer")
    if isinstance(discount, bool) or not isinstance(discount, int) or not 0 <= discount <= 100:
        raise ValidationError("discount must be between 0 and 100")
    if validity_days is not None and (isinstance(validity_days, bool) or not isinstance(validity_days, int) or validity_days < 1):
        raise ValidationError("validity_days must be a positive integer")
    try:
        price = Decimal(str(data.get("price")))
    except (InvalidOperation, ValueError):
        raise ValidationError("price must be a number")
    if not price.is_finite() or price <= 0:
        raise ValidationError("price must be greater than zero")

    pkg = CreditPackage(
        slug=slug,
        name=name,
        description=(data.get("description") or "").strip() or name,
        credits=credits,
        price=price.quantize(Decimal("0.01")),
        discount=discount,
        is_popular=bool(data.get("is_popular", False)),
        features=[str(f) for f in (data.get("features") or [])],
        validity_days=validity_days,
    )
    db.session.add(pkg)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(success=False, message="Package slug already exists", error="DUPLICATE"), 409

    log_event("PACKAGE_CREATE", actor_id=g.user.id, entity="credit_package", entity_id=pkg.id)
    return jsonify(success=True, data=package_json(pkg)), 201


@credits_bp.post("/purchase")
@login_required
def purchase():
    data = request.get_json(silent=True) or {}
    payment, checkout_url = purchases.start_purchase(g.user.id, data.get("package_id"))

    if checkout_url is None:
        return jsonify(
            success=True,
            message="Credits added",
            data={"payment_id": payment.id, "status": payment.status, "balance": ledger.balance(g.user.id)},
        ), 200
    return jsonify(
        success=True,
        data={"payment_id": payment.id, "status": payment.status, "checkout_url": checkout_url},
    ), 200


@credits_bp.post("/grant")
@require_roles("ADMIN")
def grant():
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise ValidationError("user_id is required")
    entry = purchases.grant_bonus(g.user.id, user_id, data.get("credits"), reason=data.get("reason"))
    return jsonify(success=True, message="Credits granted", data=transaction_json(entry)), 201


@credits_bp.get("/balance")
@login_required
def balance():
    return jsonify(success=True, data={
        "credits": ledger.balance(g.user.id),
        "expiring_credits": ledger.expiring_credits(g.user.id),
        "expiring_window_days": current_app.config.get("EXPIRING_CREDITS_WINDOW_DAYS", 30),
        "credit_value": str(current_app.config.get("CREDIT_UNIT_VALUE")),
        "currency": current_app.config.get("CURRENCY", "BRL"),
    }), 200


@credits_bp.get("/transactions")
@login_required
def transactions():
    transaction_type = (request.args.get("type") or "").upper() or None
    status = (request.args.get("status") or "").upper() or None
    if transaction_type and transaction_type not in TransactionType.ALL:
        raise ValidationError("Unknown transaction type")
    if status and status not in TransactionStatus.ALL:
        raise ValidationError("Unknown transaction status")

    page = max(request.args.get("page", 1, type=int) or 1, 1)
    limit = max(1, min(request.args.get("limit", 10, type=int) or 10, 100))
    result = ledger.history(g.user.id, transaction_type=transaction_type, status=status, page=page, limit=limit)
    return jsonify(
        success=True,
        data=[transaction_json(t) for t in result.items],
        pagination=page_json(result),
    ), 200
