from functools import wraps
from flask import g, jsonify

from models import db
from models.user import User
from security.session import get_session_from_request

def load_current_user():
    g.user = None
    g.session = None
    sess = get_session_from_request()
    if not sess:
        return
    user = db.session.get(User, sess.user_id)
    if not user or not user.is_active:
        return
    g.session = sess
    g.user = user

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(success=False, message="Authentication required", error="UNAUTHENTICATED"), 401
        return fn(*args, **kwargs)
    return wrapper
