# models/user.py
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional


class Role(str, Enum):
    passenger = "passenger"
    driver = "driver"
    both = "both"
    admin = "admin"

    @property
    def can_drive(self) -> bool:
        return self in (Role.driver, Role.both)

    @property
    def can_ride(self) -> bool:
        return self in (Role.passenger, Role.both)

    @property
    def is_admin(self) -> bool:
        return self is Role.admin


def role_of(user: dict) -> Role:
    try:
        return Role(user.get("role", Role.passenger.value))
    except ValueError:
        return Role.passenger


class VehicleInfo(BaseModel):
    brand: str
    model: str
    license_plate: str
    seats: int = Field(ge=1, le=50)
    color: str
    year: int = Field(ge=1950, le=2100)


class UserCreate(BaseModel):
    full_name: str
    email: str
    password: str
    phone: Optional[str] = None
    role: Role = Role.passenger
    vehicle: Optional[VehicleInfo] = None


class UserLogin(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: str
    full_name: str
    email: str
    phone: Optional[str] = None
    role: Role = Role.passenger
    vehicle: Optional[VehicleInfo] = None
    rating: Optional[dict] = None
