import secrets
from flask import request, jsonify, current_app

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

def new_csrf_token() -> str:
    return secrets.token_urlsafe(32)

def issue_csrf_token(resp, token=None):
    """Sets the double-submit cookie; the client echoes it in X-CSRF-Token."""
    resp.set_cookie(
        CSRF_COOKIE,
        token or new_csrf_token(),
        httponly=False,  # must be readable by client JS
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return resp

def clear_csrf_token(resp):
    resp.delete_cookie(CSRF_COOKIE, path="/")
    return resp

def require_csrf():
    cookie_token = request.cookies.get(CSRF_COOKIE)
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or not secrets.compare_digest(cookie_token, header_token):
        return jsonify(success=False, message="CSRF validation failed", error="CSRF_FAILED"), 403
    return None
