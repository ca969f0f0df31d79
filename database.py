# database.py
from pymongo import MongoClient, ASCENDING, DESCENDING, GEOSPHERE
import config

client = MongoClient(config.MONGODB_URI)
db = client[config.MONGODB_DB]


def get_db():
    return db


def ensure_indexes(database):
    # collections: users, trips, payments, notifications, ratings
    database.trips.create_index([("requested_by", ASCENDING), ("departure_time", ASCENDING)])
    database.trips.create_index([("driver", ASCENDING), ("departure_time", ASCENDING)])
    database.trips.create_index([("status", ASCENDING), ("departure_time", ASCENDING)])
    database.trips.create_index([("start_location.coordinates", GEOSPHERE)])
    database.trips.create_index([("end_location.coordinates", GEOSPHERE)])
    database.trips.create_index("driver_requests.driver")
    database.trips.create_index("passengers.user")

    database.payments.create_index("vnp_txn_ref", unique=True)
    database.payments.create_index([("user", ASCENDING), ("trip", ASCENDING)])
    database.payments.create_index([("created_at", DESCENDING)])

    database.notifications.create_index([("recipient", ASCENDING), ("created_at", DESCENDING)])
    database.ratings.create_index(
        [("trip", ASCENDING), ("rater", ASCENDING), ("rated", ASCENDING)], unique=True
    )
    database.users.create_index("email", unique=True)
