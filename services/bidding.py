# services/bidding.py
"""Driver bids on open trip requests.

Many drivers may bid on one ``pending_driver`` trip; the requester then
accepts exactly one. Accepting flips the chosen bid, declines every other
pending bid, assigns the driver and fixes the price in one conditional
write, so a second accept (or a racing decline) sees a changed version
and fails with ``ConflictError``.
"""
import logging

from bson import ObjectId

from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from models.trip import BidStatus, TripStatus
from models.user import role_of
from services import pricing
from services.notification import notify
from services.trip_service import commit, get_trip
from utils.clock import utcnow
from utils.serialize import parse_object_id

logger = logging.getLogger(__name__)

REQUIRED_VEHICLE_FIELDS = ("brand", "model", "license_plate", "seats", "color", "year")


def has_complete_vehicle(user: dict) -> bool:
    vehicle = user.get("vehicle") or {}
    return all(vehicle.get(field) not in (None, "") for field in REQUIRED_VEHICLE_FIELDS)


def find_bid(trip: dict, bid_id: ObjectId):
    for bid in trip.get("driver_requests") or []:
        if bid["_id"] == bid_id:
            return bid
    return None


def submit_bid(db, driver: dict, trip_id, proposed_price: int, message=None, now=None):
    now = now or utcnow()
    trip = get_trip(db, trip_id)

    if trip["status"] != TripStatus.pending_driver.value:
        raise ConflictError("This booking request is no longer available")
    if trip["requested_by"] == driver["_id"]:
        raise AuthorizationError("You cannot bid on your own booking request")
    if any(b["driver"] == driver["_id"] for b in trip.get("driver_requests") or []):
        raise ConflictError("You have already requested this booking")
    if not role_of(driver).can_drive:
        raise AuthorizationError("Only registered drivers can request bookings")
    if not has_complete_vehicle(driver):
        raise ValidationError("Please complete your vehicle information first")
    if trip.get("max_price") is not None and proposed_price > trip["max_price"]:
        raise ValidationError(
            f"Proposed price exceeds passenger's maximum budget of {trip['max_price']} {trip.get('currency', 'VND')}"
        )

    bid = {
        "_id": ObjectId(),
        "driver": driver["_id"],
        "proposed_price": proposed_price,
        "message": (message or "").strip() or None,
        "status": BidStatus.pending.value,
        "requested_at": now,
        "responded_at": None,
    }
    # the filter re-checks status and uniqueness so concurrent bidders don't need a version match
    result = db.trips.update_one(
        {
            "_id": trip["_id"],
            "status": TripStatus.pending_driver.value,
            "driver_requests.driver": {"$ne": driver["_id"]},
        },
        {"$push": {"driver_requests": bid}, "$set": {"updated_at": now}, "$inc": {"version": 1}},
    )
    if result.matched_count == 0:
        current = get_trip(db, trip["_id"])
        if current["status"] != TripStatus.pending_driver.value:
            raise ConflictError("This booking request is no longer available")
        raise ConflictError("You have already requested this booking")

    logger.info("Driver %s bid %s on trip %s", driver["_id"], proposed_price, trip["_id"])
    notify(db, trip["requested_by"], "driver_request", trip["_id"], "New Driver Request",
           f"{driver.get('full_name', 'A driver')} offered {proposed_price} {trip.get('currency', 'VND')} for your trip.")
    return get_trip(db, trip["_id"]), bid


def resolve_bid(db, user: dict, trip_id, request_id, action: str, now=None) -> dict:
    now = now or utcnow()
    trip = get_trip(db, trip_id)
    bid_id = parse_object_id(request_id, "request_id")

    if trip["requested_by"] != user["_id"]:
        raise AuthorizationError("Only the trip requester can respond to driver requests")
    if trip["status"] != TripStatus.pending_driver.value:
        raise ConflictError("This booking request is no longer pending")

    bid = find_bid(trip, bid_id)
    if bid is None:
        raise NotFoundError("Driver request not found")
    if bid["status"] != BidStatus.pending.value:
        raise ConflictError("This driver request has already been responded to")

    if action == "accept":
        return _accept(db, trip, bid, now)
    if action == "decline":
        return _decline(db, trip, bid, now)
    raise ValidationError('Invalid action. Use "accept" or "decline"')


def _accept(db, trip: dict, bid: dict, now) -> dict:
    if trip.get("max_price") is not None and bid["proposed_price"] > trip["max_price"]:
        raise ValidationError("This offer is above your current maximum budget")
    driver = db.users.find_one({"_id": bid["driver"]}) or {}

    bids, declined = [], []
    for other in trip["driver_requests"]:
        if other["_id"] == bid["_id"]:
            other = dict(other, status=BidStatus.accepted.value, responded_at=now)
        elif other["status"] == BidStatus.pending.value:
            other = dict(other, status=BidStatus.declined.value, responded_at=now)
            declined.append(other["driver"])
        bids.append(other)

    updated = commit(db, trip, {
        "driver_requests": bids,
        "status": TripStatus.confirmed.value,
        "driver": bid["driver"],
        "price": bid["proposed_price"],
        "vehicle_type_used": pricing.classify_vehicle(driver.get("vehicle")),
        "confirmed_at": now,
    }, expect_status=TripStatus.pending_driver)
    logger.info("Trip %s confirmed with driver %s at %s (%d other bids declined)",
                trip["_id"], bid["driver"], bid["proposed_price"], len(declined))

    notify(db, bid["driver"], "driver_request_accepted", trip["_id"], "Request Accepted",
           "The passenger accepted your offer. Waiting for payment.")
    for driver_id in declined:
        notify(db, driver_id, "driver_request_declined", trip["_id"], "Request Declined",
               "The passenger chose another driver for this trip.")
    return updated


def _decline(db, trip: dict, bid: dict, now) -> dict:
    bids = [
        dict(b, status=BidStatus.declined.value, responded_at=now) if b["_id"] == bid["_id"] else b
        for b in trip["driver_requests"]
    ]
    updated = commit(db, trip, {"driver_requests": bids}, expect_status=TripStatus.pending_driver)
    logger.info("Trip %s: bid from driver %s declined", trip["_id"], bid["driver"])
    notify(db, bid["driver"], "driver_request_declined", trip["_id"], "Request Declined",
           "The passenger declined your offer.")
    return updated
