from datetime import datetime, timedelta

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import config
from database import get_db
from main import app
from models.trip import TripCreate
from services import bidding, payment_service, trip_service, vnpay

START = {"address": "227 Nguyen Van Cu, District 5", "coordinates": {"lat": 10.7631, "lng": 106.6814}}
END = {"address": "Landmark 81, Binh Thanh", "coordinates": {"lat": 10.7951, "lng": 106.7218}}

VEHICLE = {"brand": "Toyota", "model": "Vios", "license_plate": "51A-123.45", "seats": 4, "color": "white", "year": 2022}


@pytest.fixture
def db():
    return mongomock.MongoClient().carpool_test


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(role="passenger", vehicle=None, name=None):
        doc = {
            "_id": ObjectId(),
            "full_name": name or f"{role} user",
            "email": f"{ObjectId()}@example.com",
            "password": "x",
            "role": role,
            "is_active": True,
        }
        if vehicle is not None:
            doc["vehicle"] = vehicle
        db.users.insert_one(doc)
        return doc

    return _make


@pytest.fixture
def passenger(make_user):
    return make_user("passenger", name="Passenger")


@pytest.fixture
def driver_a(make_user):
    return make_user("driver", vehicle=dict(VEHICLE), name="Driver A")


@pytest.fixture
def driver_b(make_user):
    return make_user("both", vehicle=dict(VEHICLE, license_plate="51B-999.99", brand="BMW"), name="Driver B")


def auth(user) -> dict:
    return {"X-User-ID": str(user["_id"])}


def trip_payload(**overrides) -> dict:
    payload = {
        "start_location": START,
        "end_location": END,
        "departure_time": (datetime.now() + timedelta(days=1)).replace(hour=8, minute=0, second=0, microsecond=0).isoformat(),
        "preferred_vehicle_type": "car",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_trip(db, passenger):
    def _make(user=None, **overrides):
        trip, _ = trip_service.create_trip(db, user or passenger, TripCreate(**trip_payload(**overrides)))
        return trip

    return _make


def signed_return(txn_ref, amount, response_code="00", transaction_status=None, **extra) -> dict:
    params = {
        "vnp_TmnCode": config.VNP_TMN_CODE,
        "vnp_TxnRef": txn_ref,
        "vnp_Amount": str(int(amount) * 100),
        "vnp_OrderInfo": "Payment for trip",
        "vnp_ResponseCode": response_code,
        "vnp_TransactionStatus": transaction_status or ("00" if response_code == "00" else "02"),
        "vnp_TransactionNo": "14012345",
        "vnp_BankCode": "NCB",
        "vnp_PayDate": "20260301120000",
    }
    params.update(extra)
    params["vnp_SecureHash"] = vnpay.create_secure_hash(params, config.VNP_HASH_SECRET)
    return params


@pytest.fixture
def confirmed_trip(db, passenger, driver_a, make_trip):
    trip = make_trip(max_price=100000)
    trip, bid = bidding.submit_bid(db, driver_a, trip["_id"], 95000)
    return bidding.resolve_bid(db, passenger, str(trip["_id"]), str(bid["_id"]), "accept")


@pytest.fixture
def paid_trip(db, passenger, confirmed_trip):
    checkout = payment_service.create_checkout(db, passenger, str(confirmed_trip["_id"]))
    payment_service.handle_return(db, signed_return(checkout["txn_ref"], checkout["amount"]))
    return db.trips.find_one({"_id": confirmed_trip["_id"]})
