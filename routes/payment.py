# routes/payment.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from database import get_db
from models.payment import PaymentCreate, PaymentStatus
from services import payment_service
from utils.auth import get_current_user
from utils.serialize import serialize_doc

router = APIRouter()


# === GET: VNPay return (public, called by the gateway redirect) ===
@router.get("/vnpay/return")
def vnpay_return(request: Request, db=Depends(get_db)):
    url = payment_service.handle_return(db, dict(request.query_params))
    return RedirectResponse(url, status_code=302)


# === POST: Start checkout for a confirmed trip ===
@router.post("/create")
def create_payment(payload: PaymentCreate, request: Request,
                   current_user=Depends(get_current_user), db=Depends(get_db)):
    ip_addr = request.client.host if request.client else "127.0.0.1"
    data = payment_service.create_checkout(
        db, current_user, payload.trip_id,
        return_url=payload.return_url, cancel_url=payload.cancel_url, ip_addr=ip_addr,
    )
    return {"message": "Payment URL created successfully", "data": data}


@router.get("/")
def get_payment_history(
    status: Optional[PaymentStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user=Depends(get_current_user),
    db=Depends(get_db),
):
    result = payment_service.payment_history(db, current_user, status=status, page=page, limit=limit)
    result["data"] = [serialize_doc(p) for p in result["data"]]
    return result


@router.get("/{payment_id}")
def get_payment(payment_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"data": serialize_doc(payment_service.get_payment_for(db, current_user, payment_id))}


@router.patch("/{payment_id}/cancel")
def cancel_payment(payment_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    payment = payment_service.cancel_payment(db, current_user, payment_id)
    return {"message": "Payment cancelled successfully", "data": serialize_doc(payment)}
