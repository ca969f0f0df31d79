# services/notification.py
import logging

from models.trip import PassengerStatus
from utils.clock import utcnow

logger = logging.getLogger(__name__)


def notify(db, recipient_id, kind: str, related_id, title: str = "", message: str = "") -> bool:
    """Store a notification record. Never raises."""
    try:
        db.notifications.insert_one({
            "recipient": recipient_id,
            "type": kind,
            "title": title,
            "message": message,
            "related_id": related_id,
            "related_model": "Trip",
            "is_read": False,
            "created_at": utcnow(),
        })
        return True
    except Exception:
        logger.exception("Failed to store %s notification for %s", kind, recipient_id)
        return False


def notify_accepted_passengers(db, trip: dict, kind: str, title: str, message: str) -> int:
    sent = 0
    for passenger in trip.get("passengers") or []:
        if passenger.get("status") == PassengerStatus.accepted.value:
            if notify(db, passenger["user"], kind, trip["_id"], title, message):
                sent += 1
    return sent
