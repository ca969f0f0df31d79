# routes/trip.py
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from database import get_db
from models.trip import (
    CancelRequest,
    DriverRequestAction,
    DriverRequestCreate,
    PriceEstimateRequest,
    StatusUpdate,
    TripCreate,
    TripStatus,
    TripUpdate,
)
from services import bidding, trip_service
from utils.auth import get_current_user
from utils.serialize import serialize_doc

router = APIRouter()


def _page(result: dict) -> dict:
    result["data"] = [serialize_doc(t) for t in result["data"]]
    return result


# === GET: Vehicle types (public) ===
@router.get("/vehicle-types")
async def get_vehicle_types():
    return {"data": trip_service.vehicle_types()}


# === POST: Price estimate, nothing stored ===
@router.post("/estimate-price")
def estimate_price(payload: PriceEstimateRequest, current_user=Depends(get_current_user)):
    return {"data": trip_service.estimate_for_user(current_user, payload)}


# === POST: Create booking request (passenger) ===
@router.post("/", status_code=201)
def create_trip(payload: TripCreate, current_user=Depends(get_current_user), db=Depends(get_db)):
    trip, pricing = trip_service.create_trip(db, current_user, payload)
    return {
        "message": "Booking request created successfully. Waiting for drivers to respond.",
        "data": serialize_doc(trip),
        "pricing": pricing,
    }


# === GET: List trips, role-filtered ===
@router.get("/")
def get_trips(
    role: Literal["passenger", "driver"] = Query("passenger"),
    status: Optional[TripStatus] = Query(None),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    seats: Optional[int] = Query(None, ge=1),
    start_lat: Optional[float] = Query(None, ge=-90, le=90),
    start_lng: Optional[float] = Query(None, ge=-180, le=180),
    end_lat: Optional[float] = Query(None, ge=-90, le=90),
    end_lng: Optional[float] = Query(None, ge=-180, le=180),
    distance: Optional[int] = Query(None, ge=1, description="Search radius in metres"),
    sort: Optional[str] = Query("date_asc", pattern="^(date_asc|date_desc|price_asc|price_desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user=Depends(get_current_user),
    db=Depends(get_db),
):
    result = trip_service.list_trips(
        db, current_user, role=role, sort=sort, page=page, limit=limit,
        status=status.value if status else None,
        from_date=from_date, to_date=to_date, seats=seats,
        start_lat=start_lat, start_lng=start_lng, end_lat=end_lat, end_lng=end_lng,
        distance=distance,
    )
    return _page(result)


# === GET: Trips I drive ===
@router.get("/my-trips")
def get_my_trips(
    status: Optional[TripStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user=Depends(get_current_user),
    db=Depends(get_db),
):
    return _page(trip_service.list_driver_trips(db, current_user, status=status, page=page, limit=limit))


# === GET: Trips I joined as passenger ===
@router.get("/my-joined-trips")
def get_my_joined_trips(
    status: Optional[TripStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user=Depends(get_current_user),
    db=Depends(get_db),
):
    return _page(trip_service.list_joined_trips(db, current_user, status=status, page=page, limit=limit))


@router.get("/{trip_id}")
def get_trip(trip_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"data": serialize_doc(trip_service.get_trip(db, trip_id))}


@router.put("/{trip_id}")
def update_trip(trip_id: str, payload: TripUpdate, current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"data": serialize_doc(trip_service.update_trip(db, current_user, trip_id, payload))}


@router.delete("/{trip_id}")
def delete_trip(trip_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    trip_service.delete_trip(db, current_user, trip_id)
    return {"message": "Trip deleted", "data": {}}


# === Lifecycle ===
@router.patch("/{trip_id}/cancel")
def cancel_trip(trip_id: str, payload: Optional[CancelRequest] = None,
                current_user=Depends(get_current_user), db=Depends(get_db)):
    reason = payload.reason if payload else None
    return {"data": serialize_doc(trip_service.cancel_trip(db, current_user, trip_id, reason))}


@router.patch("/{trip_id}/status")
def update_trip_status(trip_id: str, payload: StatusUpdate,
                       current_user=Depends(get_current_user), db=Depends(get_db)):
    trip = trip_service.update_status(db, current_user, trip_id, payload.status, payload.reason)
    return {"message": f"Trip status updated to {payload.status}", "data": serialize_doc(trip)}


@router.patch("/{trip_id}/complete")
def complete_trip(trip_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"data": serialize_doc(trip_service.complete_trip(db, current_user, trip_id))}


# === Driver bids ===
@router.post("/{trip_id}/driver-request")
def driver_request(trip_id: str, payload: DriverRequestCreate,
                   current_user=Depends(get_current_user), db=Depends(get_db)):
    trip, bid = bidding.submit_bid(db, current_user, trip_id, payload.proposed_price, payload.message)
    return {
        "message": "Driver request submitted successfully",
        "data": {"trip_id": str(trip["_id"]), "request": serialize_doc(bid)},
    }


@router.patch("/{trip_id}/driver-requests/{request_id}")
def respond_to_driver_request(trip_id: str, request_id: str, payload: DriverRequestAction,
                              current_user=Depends(get_current_user), db=Depends(get_db)):
    trip = bidding.resolve_bid(db, current_user, trip_id, request_id, payload.action)
    if payload.action == "accept":
        return {
            "message": "Driver request accepted! Please proceed to payment.",
            "data": {
                "trip": serialize_doc(trip),
                "needs_payment": True,
                "accepted_driver": str(trip["driver"]),
                "final_price": trip["price"],
            },
        }
    return {"message": "Driver request declined", "data": serialize_doc(trip)}
