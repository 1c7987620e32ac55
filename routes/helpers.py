from decimal import Decimal, InvalidOperation

from flask import Blueprint, jsonify, request, g

from models import db
from models.helper_profile import HelperProfile, WEEKDAYS, default_availability
from security.rbac import require_helper
from services import bookings, directory
from services.errors import NotFound, ValidationError
from utils.audit import log_event
from utils.auth_context import login_required
from utils.serializers import user_json

helpers_bp = Blueprint("helpers", __name__, url_prefix="/helpers")


def apply_helper_fields(user, data: dict) -> HelperProfile:
    """Validate and copy helper-profile fields onto user, creating the profile if needed."""
    profile = user.helper_profile
    if profile is None:
        profile = HelperProfile(
            hourly_rate=Decimal("80.00"),
            rating=Decimal("0.0"),
            total_sessions=0,
            experience_years=0,
            specialties=[],
            availability=default_availability(),
        )
        user.helper_profile = profile

    if "hourly_rate" in data:
        try:
            rate = Decimal(str(data["hourly_rate"]))
        except (InvalidOperation, ValueError):
            raise ValidationError("hourly_rate must be a number")
        if not rate.is_finite() or rate < 0:
            raise ValidationError("hourly_rate must be zero or more")
        profile.hourly_rate = rate.quantize(Decimal("0.01"))

    if "experience_years" in data:
        years = data["experience_years"]
        if isinstance(years, bool) or not isinstance(years, int) or not 0 <= years <= 50:
            raise ValidationError("experience_years must be an integer between 0 and 50")
        profile.experience_years = years

    if "bio" in data:
        bio = (data["bio"] or "").strip()
        if len(bio) > 500:
            raise ValidationError("bio must be at most 500 characters")
        profile.bio = bio or None

    if "specialties" in data:
        specialties = data["specialties"]
        if not isinstance(specialties, list) or not all(isinstance(s, str) for s in specialties):
            raise ValidationError("specialties must be a list of strings")
        profile.specialties = [s.strip() for s in specialties if s.strip()]

    if "availability" in data:
        availability = data["availability"]
        if not isinstance(availability, dict):
            raise ValidationError("availability must be an object of weekday -> bool")
        merged = dict(profile.availability or default_availability())
        for day, value in availability.items():
            key = str(day).lower()
            if key not in WEEKDAYS or not isinstance(value, bool):
                raise ValidationError(f"Invalid availability entry: {day}")
            merged[key] = value
        profile.availability = merged

    return profile


@helpers_bp.get("")
def list_helpers():
    specialty = request.args.get("specialty")
    helpers = directory.list_available_helpers(specialty=specialty)
    return jsonify(success=True, data=[user_json(u) for u in helpers]), 200


@helpers_bp.get("/<int:helper_id>")
def get_helper(helper_id):
    user = directory.find_user(helper_id)
    if not user.is_helper or not user.is_active or not user.is_approved:
        raise NotFound("Helper not found")
    return jsonify(success=True, data=user_json(user)), 200


@helpers_bp.put("/me")
@login_required
def update_my_profile():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("Body must be a JSON object")

    becoming_helper = not g.user.is_helper
    apply_helper_fields(g.user, data)
    if becoming_helper:
        g.user.is_approved = False
    db.session.commit()

    log_event("HELPER_PROFILE_UPDATE", actor_id=g.user.id, entity="user", entity_id=g.user.id,
              metadata={"fields": sorted(data.keys()), "created": becoming_helper})
    return jsonify(success=True, data=user_json(g.user, include_private=True)), 200


@helpers_bp.get("/me/stats")
@require_helper
def my_stats():
    profile = g.user.helper_profile
    stats = bookings.helper_stats(g.user.id)
    stats.update({
        "rating": float(profile.rating or 0),
        "total_sessions": profile.total_sessions,
    })
    return jsonify(success=True, data=stats), 200
