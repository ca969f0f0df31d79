# services/payment_service.py
"""Checkout and gateway reconciliation.

A payment starts ``pending`` and leaves that state exactly once: every
terminal transition is a conditional update on ``status == "pending"``,
so a duplicate gateway callback or a callback racing a user cancel can
only win once. The callback path never raises; whatever happens it ends
in a redirect back to the frontend.
"""
import logging
import math
from datetime import timedelta
from typing import Optional
from urllib.parse import urlencode

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import config
from errors import AuthorizationError, ConflictError, IntegrityError, NotFoundError
from models.payment import TERMINAL_PAYMENT_STATUSES, PaymentStatus
from models.trip import TERMINAL_STATUSES, PassengerStatus, TripStatus
from services import vnpay
from services.notification import notify
from services.trip_service import accepted_passengers, commit, get_trip
from utils.clock import utcnow
from utils.serialize import parse_object_id

logger = logging.getLogger(__name__)

ROSTER_RETRIES = 3


def is_expired(payment: dict, now=None) -> bool:
    now = now or utcnow()
    return payment.get("expired_at") is not None and payment["expired_at"] < now


def get_payment(db, payment_id) -> dict:
    payment = db.payments.find_one({"_id": parse_object_id(payment_id, "payment_id")})
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


# === Checkout ===

def create_checkout(db, user: dict, trip_id, return_url: Optional[str] = None,
                    cancel_url: Optional[str] = None, ip_addr: str = "127.0.0.1", now=None) -> dict:
    now = now or utcnow()
    trip = get_trip(db, trip_id)

    if trip.get("driver") == user["_id"]:
        raise AuthorizationError("Driver cannot pay for their own trip")
    if trip["status"] != TripStatus.confirmed.value:
        raise ConflictError(f"Cannot pay for a trip with status: {trip['status']}")

    existing = db.payments.find(
        {
            "user": user["_id"],
            "trip": trip["_id"],
            "status": {"$in": [PaymentStatus.pending.value, PaymentStatus.completed.value]},
        }
    )
    for payment in existing:
        if payment["status"] == PaymentStatus.completed.value:
            raise ConflictError("You have already paid for this trip")
        if not is_expired(payment, now):
            raise ConflictError("You have a pending payment for this trip")

    if len(accepted_passengers(trip)) >= trip["available_seats"]:
        raise ConflictError("Trip is full")

    amount = trip["price"]
    order_info = f"Payment for trip from {trip['start_location']['address']} to {trip['end_location']['address']}"
    doc = {
        "user": user["_id"],
        "trip": trip["_id"],
        "amount": amount,
        "currency": trip.get("currency", config.DEFAULT_CURRENCY),
        "vnp_order_info": order_info,
        "status": PaymentStatus.pending.value,
        "return_url": return_url,
        "cancel_url": cancel_url,
        "vnp_response": {},
        "created_at": now,
        "completed_at": None,
        "expired_at": now + timedelta(minutes=config.PAYMENT_TTL_MINUTES),
        "note": None,
    }
    for _ in range(3):
        doc["vnp_txn_ref"] = vnpay.generate_txn_ref(now)
        try:
            result = db.payments.insert_one(dict(doc))
            break
        except DuplicateKeyError:
            continue
    else:
        raise ConflictError("Could not allocate a transaction reference, please retry")
    doc["_id"] = result.inserted_id

    payment_url = vnpay.create_payment_url(
        amount, order_info, doc["vnp_txn_ref"], now, return_url=return_url, ip_addr=ip_addr
    )
    logger.info("Payment %s (%s) created for trip %s by %s, amount %s",
                doc["_id"], doc["vnp_txn_ref"], trip["_id"], user["_id"], amount)

    driver = db.users.find_one({"_id": trip["driver"]}, {"full_name": 1}) or {}
    return {
        "payment_id": str(doc["_id"]),
        "payment_url": payment_url,
        "amount": amount,
        "currency": doc["currency"],
        "txn_ref": doc["vnp_txn_ref"],
        "trip_info": {
            "from": trip["start_location"]["address"],
            "to": trip["end_location"]["address"],
            "departure_time": trip["departure_time"],
            "driver": driver.get("full_name"),
        },
        "expires_at": doc["expired_at"],
    }


# === Gateway callback ===

def _redirect(**params) -> str:
    params = {k: v for k, v in params.items() if v is not None}
    return f"{config.VNP_FRONTEND_RETURN_URL}?{urlencode(params)}"


def _redirect_for(payment: dict, data: dict) -> str:
    status = payment["status"]
    if status == PaymentStatus.completed.value:
        return _redirect(
            status="success",
            paymentId=str(payment["_id"]),
            amount=str(payment["amount"]),
            transactionNo=payment.get("vnp_transaction_no") or data.get("transaction_no") or "",
            tripId=str(payment["trip"]),
            message="Payment completed successfully",
        )
    if status == PaymentStatus.failed.value:
        return _redirect(
            status="failed",
            paymentId=str(payment["_id"]),
            responseCode=data.get("response_code"),
            message=payment.get("note") or "Payment failed",
        )
    return _redirect(status="error", paymentId=str(payment["_id"]), message=f"Payment is {status}")


def handle_return(db, params: dict, now=None) -> str:
    """Reconcile a gateway callback and return the frontend redirect URL."""
    try:
        return _handle_return(db, params, now or utcnow())
    except IntegrityError as exc:
        logger.warning("Rejected VNPay return for %s: %s", params.get("vnp_TxnRef"), exc.message)
        return _redirect(status="error", message=exc.message)
    except Exception:
        logger.exception("VNPay return handling failed for %s", params.get("vnp_TxnRef"))
        return _redirect(status="error", message="Server error occurred")


def _handle_return(db, params: dict, now) -> str:
    data = vnpay.verify_return(params)
    if not data["is_valid"]:
        raise IntegrityError("Invalid VNPay response signature")

    payment = db.payments.find_one({"vnp_txn_ref": data["txn_ref"]}) if data["txn_ref"] else None
    if not payment:
        logger.warning("VNPay return for unknown reference %s", data["txn_ref"])
        return _redirect(status="error", message="Payment not found")

    if PaymentStatus(payment["status"]) in TERMINAL_PAYMENT_STATUSES:
        logger.info("Duplicate VNPay return for %s, payment already %s", data["txn_ref"], payment["status"])
        return _redirect_for(payment, data)

    if data["amount"] != payment["amount"]:
        logger.warning("VNPay amount %s does not match payment %s amount %s",
                       data["amount"], payment["_id"], payment["amount"])
        return _redirect(status="error", paymentId=str(payment["_id"]), message="Amount mismatch")

    if vnpay.is_success(data["response_code"], data["transaction_status"]):
        changes = {
            "status": PaymentStatus.completed.value,
            "completed_at": now,
            "vnp_response": data["raw"],
            "vnp_transaction_no": data["transaction_no"],
            "vnp_bank_code": data["bank_code"],
            "vnp_bank_tran_no": data["bank_tran_no"],
            "vnp_card_type": data["card_type"],
            "vnp_pay_date": data["pay_date"],
        }
    else:
        changes = {
            "status": PaymentStatus.failed.value,
            "vnp_response": data["raw"],
            "note": vnpay.status_message(data["response_code"]),
        }

    updated = db.payments.find_one_and_update(
        {"_id": payment["_id"], "status": PaymentStatus.pending.value},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # lost the race to another callback or a cancel
        current = db.payments.find_one({"_id": payment["_id"]})
        logger.info("Payment %s resolved concurrently as %s", payment["_id"], current["status"])
        return _redirect_for(current, data)

    if updated["status"] == PaymentStatus.completed.value:
        logger.info("Payment %s completed (%s)", updated["_id"], data["transaction_no"])
        earlier = db.payments.find_one({
            "_id": {"$ne": updated["_id"]},
            "user": updated["user"],
            "trip": updated["trip"],
            "status": PaymentStatus.completed.value,
        })
        if earlier:
            flag_refund(db, updated, f"trip already paid by payment {earlier['_id']}")
        else:
            reconcile_roster(db, updated, now)
    else:
        logger.info("Payment %s failed with code %s", updated["_id"], data["response_code"])
    return _redirect_for(updated, data)


def flag_refund(db, payment: dict, reason: str) -> None:
    logger.warning("Completed payment %s needs manual refund: %s", payment["_id"], reason)
    db.payments.update_one(
        {"_id": payment["_id"]},
        {"$set": {"needs_refund": True, "note": f"Refund required: {reason}"}},
    )


def reconcile_roster(db, payment: dict, now) -> Optional[dict]:
    """Record a completed payment on the trip's passenger roster."""
    for _ in range(ROSTER_RETRIES):
        trip = db.trips.find_one({"_id": payment["trip"]})
        if trip is None:
            logger.warning("Completed payment %s references missing trip %s", payment["_id"], payment["trip"])
            return None
        if TripStatus(trip["status"]) in TERMINAL_STATUSES:
            flag_refund(db, payment, f"trip {trip['_id']} is {trip['status']}")
            return trip

        passengers = [dict(p) for p in trip.get("passengers") or []]
        entry = next((p for p in passengers if p["user"] == payment["user"]), None)
        if entry is None:
            if len(accepted_passengers(trip)) >= trip["available_seats"]:
                flag_refund(db, payment, f"trip {trip['_id']} is full")
                return trip
            entry = {"user": payment["user"], "requested_at": now}
            passengers.append(entry)
        entry.update({
            "status": PassengerStatus.accepted.value,
            "payment_status": PaymentStatus.completed.value,
            "payment_id": payment["_id"],
            "updated_at": now,
        })

        changes = {"passengers": passengers}
        settled = (
            trip["status"] == TripStatus.confirmed.value
            and payment["user"] == trip["requested_by"]
            and payment["amount"] >= trip["price"]
        )
        if settled:
            changes.update(status=TripStatus.paid.value, paid_at=now)

        try:
            updated = commit(db, trip, changes)
        except ConflictError:
            continue

        if settled:
            logger.info("Trip %s paid", trip["_id"])
        if updated.get("driver"):
            notify(db, updated["driver"], "payment_completed", updated["_id"], "Payment Received",
                   f"A passenger paid {payment['amount']} {payment.get('currency', 'VND')} for your trip.")
        return updated

    logger.error("Could not record payment %s on trip %s after %d attempts",
                 payment["_id"], payment["trip"], ROSTER_RETRIES)
    return None


# === Queries / cancel ===

def get_payment_for(db, user: dict, payment_id) -> dict:
    payment = get_payment(db, payment_id)
    if payment["user"] != user["_id"]:
        trip = db.trips.find_one({"_id": payment["trip"]}, {"driver": 1}) or {}
        if trip.get("driver") != user["_id"]:
            raise AuthorizationError("Access denied")
    return payment


def payment_history(db, user: dict, status: Optional[str] = None, page: int = 1, limit: int = 10) -> dict:
    query = {"user": user["_id"]}
    if status:
        query["status"] = PaymentStatus(status).value
    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    items = list(
        db.payments.find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    )
    total = db.payments.count_documents(query)
    return {
        "count": len(items),
        "total": total,
        "pagination": {"current_page": page, "total_pages": math.ceil(total / limit), "limit": limit},
        "data": items,
    }


def cancel_payment(db, user: dict, payment_id) -> dict:
    payment = get_payment(db, payment_id)
    if payment["user"] != user["_id"]:
        raise AuthorizationError("Access denied")

    updated = db.payments.find_one_and_update(
        {"_id": payment["_id"], "status": PaymentStatus.pending.value},
        {"$set": {"status": PaymentStatus.cancelled.value, "cancelled_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Can only cancel pending payments")
    logger.info("Payment %s cancelled by %s", payment["_id"], user["_id"])
    return updated
