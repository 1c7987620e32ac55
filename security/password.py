import bcrypt
from flask import current_app

def validate_password(plain_password) -> list:
    """Returns a list of problems; empty when the password is acceptable."""
    if not isinstance(plain_password, str):
        return ["Password must be a string"]
    min_len = int(current_app.config.get("PASSWORD_MIN_LENGTH", 6))
    errors = []
    if len(plain_password) < min_len:
        errors.append(f"Password must be at least {min_len} characters")
    # bcrypt only looks at the first 72 bytes
    if len(plain_password.encode("utf-8")) > 72:
        errors.append("Password must be at most 72 bytes")
    return errors

def hash_password(plain_password: str) -> str:
    if not isinstance(plain_password, str) or not plain_password:
        raise ValueError("Password must be a non-empty string")
    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")

def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash in the database
        return False
