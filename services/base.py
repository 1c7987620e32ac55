import logging
from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from models import db
from services.errors import ConcurrentUpdate

logger = logging.getLogger(__name__)


@contextmanager
def transaction():
    """
    One unit of work: commit on success, roll back on any error.

    Ledger entries and the booking transition they belong to are written
    inside the same unit, so either both land or neither does.
    """
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("concurrent update lost: %s", exc)
        raise ConcurrentUpdate("The record was modified by another request; reload and try again") from exc
    except Exception:
        db.session.rollback()
        raise
