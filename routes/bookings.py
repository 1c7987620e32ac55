from flask import Blueprint, request, jsonify, g

from services import bookings
from services.errors import ValidationError
from utils.auth_context import login_required
from utils.serializers import booking_json, page_json

bookings_bp = Blueprint("bookings", __name__, url_prefix="/bookings")


def _body() -> dict:
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("Body must be a JSON object")
    return data


def _page_args():
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    limit = request.args.get("limit", 10, type=int) or 10
    return page, max(1, min(limit, 100))


@bookings_bp.post("")
@login_required
def create_booking():
    data = _body()
    helper_id = data.get("helper_id")
    if not isinstance(helper_id, int) or isinstance(helper_id, bool):
        raise ValidationError("helper_id is required")

    booking = bookings.schedule_booking(
        g.user.id,
        helper_id,
        data.get("scheduled_date"),
        data.get("scheduled_time"),
        data.get("duration_minutes"),
        data.get("description"),
        title=data.get("title"),
        booking_type=data.get("booking_type") or "SUPPORT",
        specialty=data.get("specialty"),
        requirements=data.get("requirements"),
        timezone=data.get("timezone"),
    )
    return jsonify(success=True, message="Booking created", data=booking_json(booking)), 201


@bookings_bp.get("")
@login_required
def list_bookings():
    role = request.args.get("role")
    if role not in (None, "client", "helper"):
        raise ValidationError("role must be client or helper")
    page, limit = _page_args()
    result = bookings.list_bookings_for(
        g.user.id,
        status=request.args.get("status"),
        booking_type=request.args.get("type"),
        role=role,
        page=page,
        limit=limit,
    )
    return jsonify(success=True, data=[booking_json(b) for b in result.items], pagination=page_json(result)), 200


@bookings_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id):
    booking = bookings.get_booking_for(booking_id, g.user.id)
    return jsonify(success=True, data=booking_json(booking)), 200


@bookings_bp.post("/<int:booking_id>/respond")
@login_required
def respond(booking_id):
    data = _body()
    accept = data.get("accept")
    if not isinstance(accept, bool):
        raise ValidationError("accept must be true or false")
    booking = bookings.respond_to_booking(booking_id, g.user.id, accept, message=data.get("message"))
    message = "Booking confirmed" if accept else "Booking rejected"
    return jsonify(success=True, message=message, data=booking_json(booking)), 200


@bookings_bp.post("/<int:booking_id>/start")
@login_required
def start(booking_id):
    booking = bookings.start_booking(booking_id, g.user.id)
    return jsonify(success=True, message="Booking started", data=booking_json(booking)), 200


@bookings_bp.post("/<int:booking_id>/complete")
@login_required
def complete(booking_id):
    data = _body()
    booking = bookings.complete_booking(
        booking_id, g.user.id, resolution=data.get("resolution"), notes=data.get("notes")
    )
    return jsonify(success=True, message="Booking completed", data=booking_json(booking)), 200


@bookings_bp.post("/<int:booking_id>/cancel")
@login_required
def cancel(booking_id):
    data = _body()
    booking = bookings.cancel_booking(booking_id, g.user.id, reason=data.get("reason"))
    return jsonify(success=True, message="Booking cancelled", data=booking_json(booking)), 200


@bookings_bp.post("/<int:booking_id>/rate")
@login_required
def rate(booking_id):
    data = _body()
    booking = bookings.rate_booking(booking_id, g.user.id, data.get("rating"), feedback=data.get("feedback"))
    return jsonify(success=True, message="Thanks for your feedback", data=booking_json(booking)), 200


@bookings_bp.get("/<int:booking_id>/call-access")
@login_required
def call_access(booking_id):
    return jsonify(success=True, data=bookings.call_access(booking_id, g.user.id)), 200
