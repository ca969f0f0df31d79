# models/trip.py
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class TripStatus(str, Enum):
    pending_driver = "pending_driver"
    confirmed = "confirmed"
    paid = "paid"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


TERMINAL_STATUSES = (TripStatus.completed, TripStatus.cancelled)


class VehicleType(str, Enum):
    motorcycle = "motorcycle"
    car = "car"
    suv = "suv"
    luxury = "luxury"


class BidStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class PassengerStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    cancelled = "cancelled"


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Location(BaseModel):
    address: str = Field(min_length=1)
    coordinates: Coordinates


class Stop(Location):
    estimated_arrival_time: Optional[datetime] = None


class Recurring(BaseModel):
    is_recurring: bool = False
    pattern: Literal["daily", "weekdays", "weekends", "weekly"] = "daily"
    end_date: Optional[datetime] = None


class TripCreate(BaseModel):
    start_location: Location
    end_location: Location
    departure_time: datetime
    estimated_arrival_time: Optional[datetime] = None
    stops: List[Stop] = []
    available_seats: int = Field(default=1, ge=1)
    preferred_vehicle_type: VehicleType = VehicleType.car
    max_price: Optional[int] = Field(default=None, ge=0)
    currency: str = "VND"
    notes: Optional[str] = None
    request_note: Optional[str] = None
    recurring: Optional[Recurring] = None


class TripUpdate(BaseModel):
    departure_time: Optional[datetime] = None
    estimated_arrival_time: Optional[datetime] = None
    stops: Optional[List[Stop]] = None
    available_seats: Optional[int] = Field(default=None, ge=1)
    max_price: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    request_note: Optional[str] = None


class PriceEstimateRequest(BaseModel):
    start_location: Location
    end_location: Location
    departure_time: datetime
    vehicle_type: Optional[VehicleType] = None


class DriverRequestCreate(BaseModel):
    proposed_price: int = Field(ge=0)
    message: Optional[str] = None


class DriverRequestAction(BaseModel):
    action: Literal["accept", "decline"]


class StatusUpdate(BaseModel):
    status: Literal["in_progress", "completed", "cancelled"]
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
