# services/trip_service.py
"""Booking (trip) lifecycle.

A trip document is the aggregate root: its bids (``driver_requests``)
and passenger roster are embedded, and every mutation goes through
:func:`commit`, a single conditional ``find_one_and_update`` keyed on the
document's ``version`` counter. A writer that read a stale copy matches
nothing and gets a ``ConflictError`` instead of overwriting someone
else's change.

Authorization follows the state: while ``pending_driver`` only the
requester may touch the trip; from ``confirmed`` on only the assigned
driver may.
"""
import logging
import math
from typing import Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from models.trip import TERMINAL_STATUSES, BidStatus, PassengerStatus, TripStatus
from models.user import role_of
from services import pricing
from services.notification import notify, notify_accepted_passengers
from utils.clock import local_zone, to_storage, utcnow
from utils.serialize import parse_object_id

logger = logging.getLogger(__name__)

MAX_PRICE_BUFFER = 1.2
DEFAULT_SEARCH_RADIUS_M = 10000

SORTS = {
    "date_asc": [("departure_time", ASCENDING)],
    "date_desc": [("departure_time", DESCENDING)],
    "price_asc": [("price", ASCENDING)],
    "price_desc": [("price", DESCENDING)],
}


# === Store helpers ===

def get_trip(db, trip_id) -> dict:
    oid = parse_object_id(trip_id, "trip_id") if isinstance(trip_id, str) else trip_id
    trip = db.trips.find_one({"_id": oid})
    if not trip:
        raise NotFoundError("Trip not found")
    return trip


def commit(db, trip: dict, changes: dict, expect_status: Optional[TripStatus] = None) -> dict:
    """Apply ``changes`` only if nobody else wrote the trip since it was read."""
    query = {"_id": trip["_id"], "version": trip.get("version", 0)}
    if expect_status is not None:
        query["status"] = expect_status.value
    changes = dict(changes, updated_at=utcnow())
    updated = db.trips.find_one_and_update(
        query,
        {"$set": changes, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Trip was modified by another request, please retry")
    return updated


def accepted_passengers(trip: dict) -> list:
    return [p for p in trip.get("passengers") or [] if p.get("status") == PassengerStatus.accepted.value]


def is_requester(trip: dict, user: dict) -> bool:
    return trip.get("requested_by") == user["_id"]


def is_driver(trip: dict, user: dict) -> bool:
    return trip.get("driver") is not None and trip.get("driver") == user["_id"]


def authorize_mutation(trip: dict, user: dict, action: str = "update") -> None:
    requester, driver = is_requester(trip, user), is_driver(trip, user)
    if not requester and not driver:
        raise AuthorizationError(f"Not authorized to {action} this trip")

    status = TripStatus(trip["status"])
    if status in TERMINAL_STATUSES:
        raise ConflictError(f"Cannot {action} a {status.value} trip")
    if status is TripStatus.pending_driver and not requester:
        raise AuthorizationError(f"Only the trip requester can {action} pending trips")
    if status is not TripStatus.pending_driver and not driver:
        raise AuthorizationError(f"Only the assigned driver can {action} confirmed trips")


def _geo_point(coordinates) -> dict:
    return {"type": "Point", "coordinates": [coordinates.lng, coordinates.lat]}


def _location_doc(location) -> dict:
    return {"address": location.address.strip(), "coordinates": _geo_point(location.coordinates)}


def _stop_doc(stop) -> dict:
    doc = _location_doc(stop)
    doc["estimated_arrival_time"] = to_storage(stop.estimated_arrival_time)
    return doc


# === Pricing ===

def estimate_trip_price(start, end, vehicle_type: str, departure_time, now=None, vehicle_year=None) -> dict:
    now = now or utcnow()
    vehicle = {"type": vehicle_type, "year": vehicle_year or now.year - pricing.DEFAULT_VEHICLE_AGE}
    return pricing.estimate(start, end, vehicle, departure_time, now=now, tz=local_zone())


def estimate_for_user(user: dict, payload, now=None) -> dict:
    vehicle = user.get("vehicle") or {}
    vehicle_type = payload.vehicle_type.value if payload.vehicle_type else pricing.classify_vehicle(vehicle)
    result = estimate_trip_price(
        payload.start_location.coordinates,
        payload.end_location.coordinates,
        vehicle_type,
        payload.departure_time,
        now=now,
        vehicle_year=vehicle.get("year"),
    )
    return {
        "estimated_price": result["price"],
        "currency": "VND",
        "breakdown": result["breakdown"],
        "distance": result["breakdown"]["distance_in_km"],
        "vehicle_type": vehicle_type,
    }


def vehicle_types() -> list:
    return [{"type": t, "base_rate": rate} for t, rate in pricing.BASE_RATES.items()]


# === Create ===

def create_trip(db, user: dict, payload, now=None):
    if not role_of(user).can_ride:
        raise AuthorizationError("Only passengers can request trips")

    now = now or utcnow()
    vehicle_type = payload.preferred_vehicle_type.value
    estimate = estimate_trip_price(
        payload.start_location.coordinates,
        payload.end_location.coordinates,
        vehicle_type,
        payload.departure_time,
        now=now,
    )
    estimated_price = estimate["price"]
    max_price = payload.max_price
    if max_price is None:
        max_price = int(math.ceil(round(estimated_price * MAX_PRICE_BUFFER, 6)))

    doc = {
        "requested_by": user["_id"],
        "driver": None,
        "start_location": _location_doc(payload.start_location),
        "end_location": _location_doc(payload.end_location),
        "stops": [_stop_doc(s) for s in payload.stops],
        "departure_time": to_storage(payload.departure_time),
        "estimated_arrival_time": to_storage(payload.estimated_arrival_time),
        "actual_departure_time": None,
        "actual_arrival_time": None,
        "available_seats": payload.available_seats,
        "preferred_vehicle_type": vehicle_type,
        "vehicle_type_used": None,
        "price": 0,
        "estimated_price": estimated_price,
        "max_price": max_price,
        "currency": (payload.currency or "VND").upper(),
        "notes": payload.notes,
        "request_note": payload.request_note,
        "driver_requests": [],
        "passengers": [],
        "status": TripStatus.pending_driver.value,
        "recurring": payload.recurring.model_dump() if payload.recurring else {"is_recurring": False},
        "cancellation_reason": None,
        "confirmed_at": None,
        "paid_at": None,
        "created_at": now,
        "updated_at": now,
        "version": 0,
    }
    result = db.trips.insert_one(doc)
    doc["_id"] = result.inserted_id
    logger.info("Trip %s requested by %s (estimate %s, max %s)", doc["_id"], user["_id"], estimated_price, max_price)

    pricing_info = {
        "estimated_price": estimated_price,
        "max_price": max_price,
        "breakdown": estimate["breakdown"],
        "preferred_vehicle_type": vehicle_type,
        "currency": doc["currency"],
    }
    return doc, pricing_info


# === Query ===

def build_trip_query(user_id, role: str = "passenger", status: Optional[str] = None,
                     from_date=None, to_date=None, seats: Optional[int] = None,
                     start_lat=None, start_lng=None, end_lat=None, end_lng=None,
                     distance: Optional[int] = None) -> dict:
    if role == "driver":
        query = {"status": TripStatus.pending_driver.value}
    else:
        query = {"requested_by": user_id}

    if status:
        query["status"] = TripStatus(status).value

    if from_date or to_date:
        query["departure_time"] = {}
        if from_date:
            query["departure_time"]["$gte"] = to_storage(from_date)
        if to_date:
            query["departure_time"]["$lte"] = to_storage(to_date)

    if seats:
        query["available_seats"] = {"$gte": seats}

    radius = (distance or DEFAULT_SEARCH_RADIUS_M) / 1000 / pricing.EARTH_RADIUS_KM
    if start_lat is not None and start_lng is not None:
        query["start_location.coordinates"] = {
            "$geoWithin": {"$centerSphere": [[start_lng, start_lat], radius]}
        }
    if end_lat is not None and end_lng is not None:
        query["end_location.coordinates"] = {
            "$geoWithin": {"$centerSphere": [[end_lng, end_lat], radius]}
        }
    return query


def find_page(db, query: dict, sort: Optional[str] = None, page: int = 1, limit: int = 10) -> dict:
    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    cursor = (
        db.trips.find(query)
        .sort(SORTS.get(sort or "date_asc", SORTS["date_asc"]))
        .skip((page - 1) * limit)
        .limit(limit)
    )
    items = list(cursor)
    total = db.trips.count_documents(query)
    return {
        "count": len(items),
        "total": total,
        "pagination": {
            "current_page": page,
            "total_pages": math.ceil(total / limit),
            "limit": limit,
        },
        "data": items,
    }


def list_trips(db, user: dict, role: str = "passenger", sort=None, page=1, limit=10, **filters) -> dict:
    if role == "driver" and not role_of(user).can_drive:
        raise AuthorizationError("Only registered drivers can browse open requests")
    query = build_trip_query(user["_id"], role=role, **filters)
    return find_page(db, query, sort=sort, page=page, limit=limit)


def list_driver_trips(db, user: dict, status=None, page=1, limit=10) -> dict:
    query = {"driver": user["_id"]}
    if status:
        query["status"] = TripStatus(status).value
    return find_page(db, query, sort="date_desc", page=page, limit=limit)


def list_joined_trips(db, user: dict, status=None, page=1, limit=10) -> dict:
    query = {"passengers.user": user["_id"]}
    if status:
        query["status"] = TripStatus(status).value
    return find_page(db, query, sort="date_desc", page=page, limit=limit)


# === Update / delete ===

def update_trip(db, user: dict, trip_id, payload) -> dict:
    trip = get_trip(db, trip_id)
    authorize_mutation(trip, user, "update")

    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        raise ValidationError("No fields to update")

    changes, priced_out = {}, []
    for key in ("notes", "request_note"):
        if key in fields:
            changes[key] = fields[key]
    for key in ("departure_time", "estimated_arrival_time"):
        if fields.get(key) is not None:
            changes[key] = to_storage(getattr(payload, key))
    if payload.stops is not None:
        changes["stops"] = [_stop_doc(s) for s in payload.stops]
    if payload.available_seats is not None:
        if payload.available_seats < len(accepted_passengers(trip)):
            raise ValidationError("Available seats cannot be lower than the accepted passenger count")
        changes["available_seats"] = payload.available_seats
    if payload.max_price is not None:
        if trip["status"] != TripStatus.pending_driver.value:
            raise ValidationError("Maximum price can only change before a driver is accepted")
        changes["max_price"] = payload.max_price
        bids = []
        for bid in trip.get("driver_requests") or []:
            if bid["status"] == BidStatus.pending.value and bid["proposed_price"] > payload.max_price:
                bid = dict(bid, status=BidStatus.declined.value, responded_at=utcnow())
                priced_out.append(bid["driver"])
            bids.append(bid)
        if priced_out:
            changes["driver_requests"] = bids

    updated = commit(db, trip, changes)
    logger.info("Trip %s updated by %s: %s", trip["_id"], user["_id"], sorted(changes))
    for driver_id in priced_out:
        notify(db, driver_id, "driver_request_declined", trip["_id"], "Request Declined",
               "The passenger lowered their budget below your offer.")
    notify_accepted_passengers(
        db, updated, "trip_updated", "Trip Updated", "A trip you are joining has been updated."
    )
    return updated


def delete_trip(db, user: dict, trip_id) -> None:
    trip = get_trip(db, trip_id)
    status = TripStatus(trip["status"])
    requester, driver = is_requester(trip, user), is_driver(trip, user)

    if not requester and not driver:
        raise AuthorizationError("Not authorized to delete this trip")

    if status is TripStatus.pending_driver:
        if not requester:
            raise AuthorizationError("Only the trip requester can delete pending trips")
    elif status is TripStatus.confirmed:
        if not driver:
            raise AuthorizationError("Only the assigned driver can delete confirmed trips")
        if accepted_passengers(trip):
            raise ConflictError("Cannot delete a trip with accepted passengers. Cancel it instead.")
    elif status in (TripStatus.paid, TripStatus.in_progress, TripStatus.completed):
        raise ConflictError("Cannot delete paid trips. Cancel it instead.")
    else:
        raise ConflictError(f"Cannot delete a {status.value} trip")

    result = db.trips.delete_one({"_id": trip["_id"], "version": trip.get("version", 0)})
    if result.deleted_count == 0:
        raise ConflictError("Trip was modified by another request, please retry")
    logger.info("Trip %s deleted by %s", trip["_id"], user["_id"])


# === Lifecycle ===

def cancel_trip(db, user: dict, trip_id, reason: Optional[str] = None, now=None) -> dict:
    now = now or utcnow()
    trip = get_trip(db, trip_id)
    status = TripStatus(trip["status"])

    if status is TripStatus.completed:
        raise ConflictError("Cannot cancel a completed trip")
    if status is TripStatus.cancelled:
        raise ConflictError("Trip is already cancelled")
    if not role_of(user).is_admin:
        authorize_mutation(trip, user, "cancel")

    bids = []
    for bid in trip.get("driver_requests") or []:
        if bid["status"] == BidStatus.pending.value:
            bid = dict(bid, status=BidStatus.declined.value, responded_at=now)
        bids.append(bid)

    updated = commit(db, trip, {
        "status": TripStatus.cancelled.value,
        "cancellation_reason": reason,
        "cancelled_at": now,
        "cancelled_by": user["_id"],
        "driver_requests": bids,
    }, expect_status=status)
    logger.info("Trip %s cancelled by %s (was %s)", trip["_id"], user["_id"], status.value)

    notify_accepted_passengers(
        db, updated, "trip_cancelled", "Trip Cancelled",
        f"A trip you were planning to join has been cancelled. {reason or ''}".strip(),
    )
    passenger_ids = {p["user"] for p in accepted_passengers(updated)}
    if not is_requester(trip, user) and trip["requested_by"] not in passenger_ids:
        notify(db, trip["requested_by"], "trip_cancelled", trip["_id"], "Trip Cancelled",
               "Your trip request has been cancelled.")
    return updated


# status -> (required current status, timestamp field)
PROGRESS = {
    TripStatus.in_progress: (TripStatus.paid, "actual_departure_time"),
    TripStatus.completed: (TripStatus.in_progress, "actual_arrival_time"),
}


def update_status(db, user: dict, trip_id, new_status: str, reason: Optional[str] = None, now=None) -> dict:
    target = TripStatus(new_status)
    if target is TripStatus.cancelled:
        return cancel_trip(db, user, trip_id, reason, now=now)
    if target not in PROGRESS:
        raise ValidationError("Status must be one of: in_progress, completed, cancelled")

    now = now or utcnow()
    trip = get_trip(db, trip_id)
    if not is_driver(trip, user):
        raise AuthorizationError("Not authorized to update this trip status")

    required, stamp = PROGRESS[target]
    if trip["status"] != required.value:
        raise ConflictError(f"Only {required.value} trips can move to {target.value}")

    updated = commit(db, trip, {"status": target.value, stamp: now}, expect_status=required)
    logger.info("Trip %s moved %s -> %s", trip["_id"], required.value, target.value)

    label = target.value.replace("_", " ")
    notify_accepted_passengers(
        db, updated, f"trip_{target.value}", f"Trip {label.capitalize()}",
        f"Your trip has been updated to {label}.",
    )
    return updated


def complete_trip(db, user: dict, trip_id, now=None) -> dict:
    return update_status(db, user, trip_id, TripStatus.completed.value, now=now)
