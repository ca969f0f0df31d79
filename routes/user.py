# routes/user.py
import logging

from fastapi import APIRouter, HTTPException, Depends
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from database import get_db
from models.user import UserCreate, UserLogin, UserOut, VehicleInfo, role_of
from utils.auth import get_current_user
from utils.clock import utcnow

router = APIRouter()
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = logging.getLogger(__name__)


def _user_out(user: dict) -> UserOut:
    return UserOut(
        id=str(user["_id"]),
        full_name=user["full_name"],
        email=user["email"],
        phone=user.get("phone"),
        role=role_of(user),
        vehicle=user.get("vehicle"),
        rating=user.get("rating"),
    )


# Register passenger / driver
@router.post("/register", status_code=201)
def register(user_in: UserCreate, db=Depends(get_db)):
    if user_in.role.is_admin:
        raise HTTPException(403, "Admin accounts cannot self-register")
    if user_in.role.can_drive and user_in.vehicle is None:
        raise HTTPException(400, "Drivers must register a vehicle")
    if db.users.find_one({"email": user_in.email}):
        raise HTTPException(400, "Email already in use")

    user_doc = user_in.model_dump(mode="json")
    user_doc["password"] = pwd_context.hash(user_in.password)
    user_doc["is_active"] = True
    user_doc["created_at"] = utcnow()
    try:
        result = db.users.insert_one(user_doc)
    except DuplicateKeyError:
        raise HTTPException(400, "Email already in use")
    user_doc["_id"] = result.inserted_id
    logger.info("Registered %s %s", user_doc["role"], result.inserted_id)
    return {"msg": "User created", "user": _user_out(user_doc)}


# Login (credential check only)
@router.post("/login")
def login(user_in: UserLogin, db=Depends(get_db)):
    user = db.users.find_one({"email": user_in.email})
    if not user or not pwd_context.verify(user_in.password, user["password"]):
        raise HTTPException(400, "Login failed")
    return {"msg": "Login successful", "user": _user_out(user)}


@router.get("/me", response_model=UserOut)
def me(current_user=Depends(get_current_user)):
    return _user_out(current_user)


# Drivers keep their vehicle registration up to date here; bids require it
@router.put("/me/vehicle", response_model=UserOut)
def update_vehicle(vehicle: VehicleInfo, current_user=Depends(get_current_user), db=Depends(get_db)):
    if not role_of(current_user).can_drive:
        raise HTTPException(403, "Only drivers can register a vehicle")
    db.users.update_one(
        {"_id": current_user["_id"]},
        {"$set": {"vehicle": vehicle.model_dump(), "updated_at": utcnow()}},
    )
    current_user["vehicle"] = vehicle.model_dump()
    return _user_out(current_user)
