from functools import wraps
from flask import g, jsonify

def has_role(role_name: str) -> bool:
    user = getattr(g, "user", None)
    return bool(user) and user.has_role(role_name)

def require_roles(*role_names: str):
    """
    Usage: @require_roles("ADMIN")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(success=False, message="Authentication required", error="UNAUTHENTICATED"), 401
            if not any(user.has_role(name) for name in role_names):
                return jsonify(success=False, message="Forbidden", error="FORBIDDEN"), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator

def require_helper(fn):
    """Endpoint only makes sense for users carrying a helper profile."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = getattr(g, "user", None)
        if user is None:
            return jsonify(success=False, message="Authentication required", error="UNAUTHENTICATED"), 401
        if not user.is_helper:
            return jsonify(success=False, message="Helper profile required", error="FORBIDDEN"), 403
        return fn(*args, **kwargs)
    return wrapper
