# seed.py
from datetime import timedelta

from passlib.context import CryptContext

from database import db, ensure_indexes
from utils.clock import utcnow

pwd_context = CryptContext(schemes=["bcrypt"])

# === CLEAR OLD DATA ===
for name in ("users", "trips", "payments", "notifications", "ratings"):
    db[name].delete_many({})

print("Old data removed\n")
ensure_indexes(db)

# ================== 1. USERS ==================
result = db.users.insert_many([
    {
        "full_name": "Admin Carpool",
        "email": "admin@carpool.vn",
        "password": pwd_context.hash("admin123"),
        "role": "admin",
        "is_active": True,
    },
    {
        "full_name": "Nguyen Van An",
        "email": "an@gmail.com",
        "password": pwd_context.hash("123456"),
        "role": "passenger",
        "is_active": True,
    },
    {
        "full_name": "Tran Thi Binh",
        "email": "binh@gmail.com",
        "password": pwd_context.hash("123456"),
        "role": "driver",
        "is_active": True,
        "vehicle": {"brand": "Toyota", "model": "Vios", "license_plate": "51A-123.45",
                    "seats": 4, "color": "white", "year": 2022},
    },
    {
        "full_name": "Le Van Cuong",
        "email": "cuong@gmail.com",
        "password": pwd_context.hash("123456"),
        "role": "both",
        "is_active": True,
        "vehicle": {"brand": "Honda", "model": "Air Blade", "license_plate": "59X1-678.90",
                    "seats": 2, "color": "black", "year": 2019},
    },
])
admin_id, passenger_id, driver_id, both_id = result.inserted_ids
print("Admin, 1 passenger, 2 drivers created")

# ================== 2. OPEN BOOKING REQUEST ==================
now = utcnow()
trip = {
    "requested_by": passenger_id,
    "driver": None,
    "start_location": {"address": "227 Nguyen Van Cu, District 5",
                       "coordinates": {"type": "Point", "coordinates": [106.6814, 10.7631]}},
    "end_location": {"address": "Landmark 81, Binh Thanh",
                     "coordinates": {"type": "Point", "coordinates": [106.7218, 10.7951]}},
    "stops": [],
    "departure_time": now + timedelta(days=1),
    "available_seats": 1,
    "preferred_vehicle_type": "car",
    "price": 0,
    "estimated_price": 53000,
    "max_price": 64000,
    "currency": "VND",
    "driver_requests": [],
    "passengers": [],
    "status": "pending_driver",
    "recurring": {"is_recurring": False},
    "created_at": now,
    "updated_at": now,
    "version": 0,
}
trip_id = db.trips.insert_one(trip).inserted_id

print(f"Open booking request: {trip_id}\n")
print("SEED DONE")
print(f"Passenger X-User-ID: {passenger_id}")
print(f"Driver    X-User-ID: {driver_id}")
print(f"Both      X-User-ID: {both_id}")
print(f"Admin     X-User-ID: {admin_id}")
