import hashlib
import secrets
from datetime import timedelta
from flask import request, current_app

from models import db
from models.session import AuthSession
from utils import clock

def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

def client_ip():
    return request.headers.get("X-Forwarded-For", request.remote_addr)

def create_session(user_id: int) -> str:
    """
    Stores a new login session and returns the raw token for the cookie.
    Only its hash is persisted.
    """
    raw_token = secrets.token_urlsafe(32)
    now = clock.utcnow()
    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)

    db.session.add(AuthSession(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        created_at=now,
        last_seen_at=now,
        expires_at=now + timedelta(seconds=lifetime),
        ip=client_ip(),
        user_agent=(request.headers.get("User-Agent") or "")[:255],
    ))
    db.session.commit()
    return raw_token

def get_session_from_request():
    raw_token = request.cookies.get(current_app.config.get("AUTH_COOKIE_NAME", "helperhub_session"))
    if not raw_token:
        return None

    sess = AuthSession.query.filter_by(token_hash=_hash_token(raw_token), revoked=False).first()
    if not sess:
        return None

    now = clock.utcnow()
    if sess.expires_at <= now:
        return None

    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 30 * 60)
    last_seen = sess.last_seen_at or sess.created_at
    if last_seen + timedelta(seconds=idle_seconds) <= now:
        return None

    sess.last_seen_at = now
    db.session.commit()
    return sess

def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    sess = AuthSession.query.filter_by(token_hash=_hash_token(raw_token)).first()
    if not sess:
        return False
    sess.revoked = True
    db.session.commit()
    return True

def revoke_all_sessions(user_id: int) -> int:
    sessions = AuthSession.query.filter_by(user_id=user_id, revoked=False).all()
    for s in sessions:
        s.revoked = True
    db.session.commit()
    return len(sessions)
