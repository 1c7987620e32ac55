from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.user import User, Role
from security.csrf import issue_csrf_token, clear_csrf_token, new_csrf_token
from security.password import hash_password, verify_password, validate_password
from security.session import create_session, revoke_session, revoke_all_sessions
from utils.audit import log_event
from utils.auth_context import login_required
from utils.serializers import user_json
from routes.helpers import apply_helper_fields


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def _error(message, status, code, details=None):
    return jsonify(success=False, message=message, error=code, details=details or {}), status


@auth_bp.post("/register")
def register():
    """
    Everyone registers as a member who can book. Passing a ``helper``
    object also creates a helper profile, which stays invisible to
    clients until an admin approves it.
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    full_name = (data.get("full_name") or "").strip()
    phone_number = (data.get("phone_number") or "").strip() or None
    helper_data = data.get("helper")

    if not _is_valid_email(email):
        return _error("Invalid email", 400, "VALIDATION_ERROR")
    if not full_name or len(full_name) > 100:
        return _error("full_name is required (max 100 characters)", 400, "VALIDATION_ERROR")
    problems = validate_password(password)
    if problems:
        return _error("Password does not meet policy", 400, "VALIDATION_ERROR", {"password": problems})
    if helper_data is not None and not isinstance(helper_data, dict):
        return _error("helper must be an object", 400, "VALIDATION_ERROR")

    if User.query.filter_by(email=email).first():
        log_event("REGISTER_FAIL_EMAIL_EXISTS", metadata={"email": email})
        return _error("Email already registered", 409, "EMAIL_EXISTS")

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        phone_number=phone_number,
    )
    db.session.add(user)

    member_role = Role.query.filter_by(name="MEMBER").first()
    if member_role:
        user.roles.append(member_role)

    if helper_data is not None:
        # raises ValidationError before anything is committed
        apply_helper_fields(user, helper_data)
        user.is_approved = False

    db.session.commit()
    log_event("REGISTER_SUCCESS", actor_id=user.id, metadata={"helper": user.is_helper})

    return jsonify(success=True, message="Registered successfully", data=user_json(user, include_private=True)), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", actor_id=user.id if user else None, metadata={"email": email})
        return _error("Invalid credentials", 401, "INVALID_CREDENTIALS")
    if not user.is_active:
        log_event("LOGIN_FAIL_INACTIVE", actor_id=user.id)
        return _error("Account is deactivated", 403, "ACCOUNT_INACTIVE")

    # one live session per user
    revoked_count = revoke_all_sessions(user.id)
    raw_token = create_session(user.id)

    csrf_token = new_csrf_token()
    resp = jsonify(
        success=True,
        message="Login OK",
        data={"user": user_json(user, include_private=True), "csrf_token": csrf_token},
    )
    resp.set_cookie(
        current_app.config.get("AUTH_COOKIE_NAME", "helperhub_session"),
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )
    issue_csrf_token(resp, csrf_token)

    log_event("LOGIN_SUCCESS", actor_id=user.id, metadata={"revoked_sessions": revoked_count})
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(success=True, data=user_json(g.user, include_private=True)), 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "helperhub_session")
    revoke_session(request.cookies.get(cookie_name))
    log_event("LOGOUT", actor_id=g.user.id)

    resp = jsonify(success=True, message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    clear_csrf_token(resp)
    return resp, 200


@auth_bp.put("/me")
@login_required
def update_me():
    """Contact details only; email and password are not editable here."""
    data = request.get_json(silent=True) or {}
    user = g.user
    changed = []

    if "full_name" in data:
        full_name = data.get("full_name")
        full_name = full_name.strip() if isinstance(full_name, str) else ""
        if not full_name or len(full_name) > 100:
            return _error("full_name is required (max 100 characters)", 400, "VALIDATION_ERROR")
        user.full_name = full_name
        changed.append("full_name")

    if "phone_number" in data:
        phone_number = data.get("phone_number")
        if phone_number is not None and not isinstance(phone_number, str):
            return _error("phone_number must be a string", 400, "VALIDATION_ERROR")
        phone_number = (phone_number or "").strip() or None
        if phone_number and len(phone_number) > 30:
            return _error("phone_number is too long (max 30 characters)", 400, "VALIDATION_ERROR")
        user.phone_number = phone_number
        changed.append("phone_number")

    db.session.commit()
    log_event("PROFILE_UPDATE", actor_id=user.id, entity="user", entity_id=user.id, metadata={"fields": changed})
    return jsonify(success=True, message="Profile updated", data=user_json(user, include_private=True)), 200
