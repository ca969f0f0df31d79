# utils/auth.py
from fastapi import Depends, Header, HTTPException
from bson import ObjectId

from database import get_db


def get_current_user(
    x_user_id: str = Header(None, alias="X-User-ID"),
    db=Depends(get_db),
):
    if not x_user_id:
        raise HTTPException(401, "X-User-ID header is required")
    if not ObjectId.is_valid(x_user_id):
        raise HTTPException(400, "X-User-ID is not a valid id")

    user = db.users.find_one({"_id": ObjectId(x_user_id)}, {"password": 0})
    if not user:
        raise HTTPException(401, "Unknown user")
    if not user.get("is_active", True):
        raise HTTPException(401, "Account has been deactivated")
    return user
