# models/payment.py
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
    refunded = "refunded"


TERMINAL_PAYMENT_STATUSES = (
    PaymentStatus.completed,
    PaymentStatus.failed,
    PaymentStatus.cancelled,
    PaymentStatus.refunded,
)


class PaymentCreate(BaseModel):
    trip_id: str
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
