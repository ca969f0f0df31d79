# routes/rating.py
from typing import List

from fastapi import APIRouter, HTTPException, Depends
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from database import get_db
from models.rating import RatingCreate, RatingOut
from models.trip import PassengerStatus, TripStatus
from utils.auth import get_current_user
from utils.clock import utcnow

router = APIRouter()


def _role_in_trip(trip: dict, user_id):
    if trip.get("driver") == user_id:
        return "driver"
    if trip.get("requested_by") == user_id:
        return "passenger"
    for p in trip.get("passengers") or []:
        if p["user"] == user_id and p.get("status") == PassengerStatus.accepted.value:
            return "passenger"
    return None


def update_user_rating(db, user_id, role: str):
    pipeline = [
        {"$match": {"rated": user_id, "rated_user_role": role}},
        {"$group": {"_id": None, "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]
    agg = list(db.ratings.aggregate(pipeline))
    if agg:
        db.users.update_one(
            {"_id": user_id},
            {"$set": {f"rating.as_{role}": {"average": round(agg[0]["avg"], 1), "total_reviews": agg[0]["count"]}}},
        )


# === CREATE RATING (participants of a completed trip) ===
@router.post("/", response_model=RatingOut, status_code=201)
def create_rating(rating_in: RatingCreate, current_user=Depends(get_current_user), db=Depends(get_db)):
    if not ObjectId.is_valid(rating_in.trip_id) or not ObjectId.is_valid(rating_in.rated_user_id):
        raise HTTPException(400, "trip_id or rated_user_id is not valid")

    trip = db.trips.find_one({"_id": ObjectId(rating_in.trip_id)})
    if not trip:
        raise HTTPException(404, "Trip not found")
    if trip.get("status") != TripStatus.completed.value:
        raise HTTPException(400, "Only completed trips can be rated")

    rated_id = ObjectId(rating_in.rated_user_id)
    if rated_id == current_user["_id"]:
        raise HTTPException(400, "You cannot rate yourself")
    if _role_in_trip(trip, current_user["_id"]) is None:
        raise HTTPException(403, "Only trip participants can rate")
    rated_role = _role_in_trip(trip, rated_id)
    if rated_role is None:
        raise HTTPException(400, "Rated user did not take part in this trip")

    rating_doc = {
        "trip": trip["_id"],
        "rater": current_user["_id"],
        "rated": rated_id,
        "rated_user_role": rated_role,
        "rating": rating_in.rating,
        "comment": rating_in.comment,
        "created_at": utcnow(),
    }
    if db.ratings.find_one({"trip": trip["_id"], "rater": current_user["_id"], "rated": rated_id}):
        raise HTTPException(400, "You have already rated this user for this trip")
    try:
        result = db.ratings.insert_one(rating_doc)
    except DuplicateKeyError:
        raise HTTPException(400, "You have already rated this user for this trip")

    update_user_rating(db, rated_id, rated_role)

    return RatingOut(
        id=str(result.inserted_id),
        trip_id=str(trip["_id"]),
        rater_id=str(current_user["_id"]),
        rater_name=current_user.get("full_name", "Anonymous"),
        rated_user_role=rated_role,
        rating=rating_in.rating,
        comment=rating_in.comment,
        created_at=rating_doc["created_at"],
    )


# === RATINGS RECEIVED BY A USER ===
@router.get("/user/{user_id}", response_model=List[RatingOut])
def get_user_ratings(user_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    if not ObjectId.is_valid(user_id):
        raise HTTPException(400, "user_id is not valid")

    pipeline = [
        {"$match": {"rated": ObjectId(user_id)}},
        {"$sort": {"created_at": -1}},
        {"$lookup": {"from": "users", "localField": "rater", "foreignField": "_id", "as": "rater_info"}},
        {"$unwind": {"path": "$rater_info", "preserveNullAndEmptyArrays": True}},
    ]
    out = []
    for r in db.ratings.aggregate(pipeline):
        rater = r.get("rater_info") or {}
        out.append(RatingOut(
            id=str(r["_id"]),
            trip_id=str(r["trip"]),
            rater_id=str(r["rater"]),
            rater_name=rater.get("full_name", "Anonymous"),
            rated_user_role=r["rated_user_role"],
            rating=r["rating"],
            comment=r.get("comment"),
            created_at=r["created_at"],
        ))
    return out
