from flask import Blueprint, jsonify, g, request

from models import db
from models.helper_profile import HelperProfile
from models.user import User, Role
from security.rbac import require_roles
from security.session import revoke_all_sessions
from services.directory import find_user
from services.errors import Forbidden, ValidationError
from utils.audit import log_event
from utils.serializers import user_json

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.get("/users")
@require_roles("ADMIN")
def list_users():
    role_filter = (request.args.get("role") or "").strip().upper()
    q = User.query
    if role_filter:
        q = q.join(User.roles).filter(Role.name == role_filter)

    users = q.order_by(User.created_at.desc()).limit(200).all()
    return jsonify(success=True, data=[user_json(u, include_private=True) for u in users]), 200


@admin_bp.get("/helpers/pending")
@require_roles("ADMIN")
def pending_helpers():
    users = (
        User.query
        .join(HelperProfile, HelperProfile.user_id == User.id)
        .filter(User.is_approved.is_(False), User.is_active.is_(True))
        .order_by(User.created_at.asc())
        .all()
    )
    return jsonify(success=True, data=[user_json(u, include_private=True) for u in users]), 200


@admin_bp.post("/helpers/<int:user_id>/approve")
@require_roles("ADMIN")
def approve_helper(user_id: int):
    user = find_user(user_id)
    if not user.is_helper:
        raise ValidationError("User has no helper profile")

    user.is_approved = True
    db.session.commit()

    log_event("ADMIN_APPROVE_HELPER", actor_id=g.user.id, entity="user", entity_id=user.id)
    return jsonify(success=True, message="Helper approved", data=user_json(user, include_private=True)), 200


@admin_bp.post("/users/<int:user_id>/deactivate")
@require_roles("ADMIN")
def deactivate_user(user_id: int):
    user = find_user(user_id)
    if user.id == g.user.id:
        raise Forbidden("Cannot deactivate your own account")

    user.is_active = False
    db.session.commit()
    revoked = revoke_all_sessions(user.id)

    log_event("ADMIN_DEACTIVATE_USER", actor_id=g.user.id, entity="user", entity_id=user.id,
              metadata={"revoked_sessions": revoked})
    return jsonify(success=True, message="User deactivated", data=user_json(user, include_private=True)), 200
