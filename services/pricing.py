# services/pricing.py
"""Trip price estimation.

The estimate seeds bid negotiation: a booking's default ``max_price`` is
derived from it, and driver bids are checked against that ceiling.
Everything here is pure; "now" and the local timezone are parameters so
callers and tests control them.
"""
import math
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

EARTH_RADIUS_KM = 6371

BASE_RATES = {
    "motorcycle": 5000,
    "car": 10000,
    "suv": 12000,
    "luxury": 15000,
}
DEFAULT_VEHICLE_TYPE = "car"
DEFAULT_VEHICLE_AGE = 3

PEAK_HOURS = ((7, 9), (16, 19))
PEAK_MULTIPLIER = 1.2

LUXURY_BRANDS = ("mercedes", "bmw", "audi", "lexus")


def _lat_lng(point):
    if isinstance(point, dict):
        return float(point["lat"]), float(point["lng"])
    return float(point.lat), float(point.lng)


def haversine_km(start, end) -> float:
    lat1, lng1 = _lat_lng(start)
    lat2, lng2 = _lat_lng(end)
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def base_rate(vehicle_type: Optional[str]) -> int:
    return BASE_RATES.get(vehicle_type or DEFAULT_VEHICLE_TYPE, BASE_RATES[DEFAULT_VEHICLE_TYPE])


def peak_hour_multiplier(departure_time: datetime, tz: Optional[ZoneInfo] = None) -> float:
    # aware datetimes are read in the service's local zone, naive ones as-is
    if departure_time.tzinfo is not None and tz is not None:
        departure_time = departure_time.astimezone(tz)
    hour = departure_time.hour
    if any(lo <= hour <= hi for lo, hi in PEAK_HOURS):
        return PEAK_MULTIPLIER
    return 1.0


def quality_multiplier(vehicle_year: int, current_year: int) -> float:
    age = current_year - vehicle_year
    if age <= 2:
        return 1.1
    if age <= 5:
        return 1.0
    return 0.9


def classify_vehicle(vehicle: Optional[dict]) -> str:
    """Map a registered vehicle to a pricing class."""
    if not vehicle or not vehicle.get("brand"):
        return DEFAULT_VEHICLE_TYPE
    brand = vehicle["brand"].lower()
    if any(b in brand for b in LUXURY_BRANDS):
        return "luxury"
    seats = vehicle.get("seats") or 4
    if seats <= 2:
        return "motorcycle"
    if seats > 5:
        return "suv"
    return "car"


def estimate(start, end, vehicle: Optional[dict], departure_time: datetime,
             now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> dict:
    now = now or datetime.now()
    vehicle = vehicle or {}
    vehicle_type = vehicle.get("type") or DEFAULT_VEHICLE_TYPE
    vehicle_year = vehicle.get("year") or now.year - DEFAULT_VEHICLE_AGE

    distance = haversine_km(start, end)
    rate = base_rate(vehicle_type)
    peak = peak_hour_multiplier(departure_time, tz)
    quality = quality_multiplier(vehicle_year, now.year)

    # trim float noise so an exact multiple of 1000 does not round up a step
    raw = round(distance * rate * peak * quality, 6)
    price = int(math.ceil(raw / 1000) * 1000)

    return {
        "price": price,
        "breakdown": {
            "distance_in_km": round(distance, 1),
            "base_rate": rate,
            "peak_hour_multiplier": peak,
            "quality_multiplier": quality,
        },
    }
