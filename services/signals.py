"""
Booking lifecycle signals for the video-call signaling relay.

The relay connects receivers to these signals and decides whether a call
may be established; the booking core never reads anything back.
"""

import logging

from blinker import Namespace

logger = logging.getLogger(__name__)

_signals = Namespace()

# sender is the Flask app, keyword argument ``booking``
booking_started = _signals.signal("booking-started")
booking_completed = _signals.signal("booking-completed")


def notify(signal, sender, **kwargs):
    """
    Deliver ``signal`` to each receiver in turn. The booking change is
    already committed when this runs, so a failing receiver is logged and
    the remaining receivers still get the event.
    """
    for receiver in signal.receivers_for(sender):
        try:
            receiver(sender, **kwargs)
        except Exception:
            logger.exception("receiver %r failed on %s", receiver, signal.name)
