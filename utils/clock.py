from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now; every timestamp in the database is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
