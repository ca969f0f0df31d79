# services/vnpay.py
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import quote_plus, urlencode

import config
from utils.clock import local_zone

STATUS_MESSAGES = {
    "00": "Transaction successful",
    "07": "Amount debited. Transaction suspected of fraud or unusual activity.",
    "09": "Card or account is not registered for internet banking.",
    "10": "Card or account verification failed more than 3 times.",
    "11": "Payment window expired. Please try again.",
    "12": "Card or account is locked.",
    "13": "Wrong one-time password (OTP).",
    "24": "Customer cancelled the transaction.",
    "51": "Insufficient account balance.",
    "65": "Daily transaction limit exceeded.",
    "75": "Paying bank is under maintenance.",
    "79": "Wrong payment password entered too many times.",
    "99": "Other error.",
}


def _hash_data(params: dict) -> str:
    items = sorted((k, v) for k, v in params.items() if v not in (None, ""))
    return "&".join(f"{k}={quote_plus(str(v))}" for k, v in items)


def create_secure_hash(params: dict, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), _hash_data(params).encode("utf-8"), hashlib.sha512).hexdigest()


def verify_secure_hash(params: dict, secret: str) -> bool:
    data = {k: v for k, v in params.items() if k.startswith("vnp_")}
    received = data.pop("vnp_SecureHash", None) or ""
    data.pop("vnp_SecureHashType", None)
    expected = create_secure_hash(data, secret)
    return hmac.compare_digest(expected.lower(), received.lower())


def format_datetime(dt: datetime) -> str:
    # gateway timestamps are local wall-clock time
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(local_zone()).strftime("%Y%m%d%H%M%S")


def generate_txn_ref(now: datetime) -> str:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return f"TXN{int(now.timestamp() * 1000)}{secrets.randbelow(1000):03d}"


def create_payment_url(amount: int, order_info: str, txn_ref: str, now: datetime,
                       return_url: str = None, ip_addr: str = "127.0.0.1") -> str:
    params = {
        "vnp_Version": config.VNP_VERSION,
        "vnp_Command": config.VNP_COMMAND,
        "vnp_TmnCode": config.VNP_TMN_CODE,
        "vnp_Locale": config.VNP_LOCALE,
        "vnp_CurrCode": config.VNP_CURR_CODE,
        "vnp_TxnRef": txn_ref,
        "vnp_OrderInfo": order_info,
        "vnp_OrderType": "other",
        "vnp_Amount": int(amount) * 100,
        "vnp_ReturnUrl": return_url or config.VNP_RETURN_URL,
        "vnp_IpAddr": ip_addr or "127.0.0.1",
        "vnp_CreateDate": format_datetime(now),
        "vnp_ExpireDate": format_datetime(now + timedelta(minutes=config.PAYMENT_TTL_MINUTES)),
    }
    secure_hash = create_secure_hash(params, config.VNP_HASH_SECRET)
    query = _hash_data(params)
    return f"{config.VNP_URL}?{query}&{urlencode({'vnp_SecureHash': secure_hash})}"


def _to_amount(raw) -> int:
    try:
        return int(raw) // 100
    except (TypeError, ValueError):
        return 0


def verify_return(params: dict) -> dict:
    return {
        "is_valid": verify_secure_hash(params, config.VNP_HASH_SECRET),
        "response_code": params.get("vnp_ResponseCode"),
        "transaction_status": params.get("vnp_TransactionStatus"),
        "txn_ref": params.get("vnp_TxnRef"),
        "amount": _to_amount(params.get("vnp_Amount")),
        "order_info": params.get("vnp_OrderInfo"),
        "pay_date": params.get("vnp_PayDate"),
        "transaction_no": params.get("vnp_TransactionNo"),
        "bank_code": params.get("vnp_BankCode"),
        "bank_tran_no": params.get("vnp_BankTranNo"),
        "card_type": params.get("vnp_CardType"),
        "raw": dict(params),
    }


def status_message(response_code: str) -> str:
    return STATUS_MESSAGES.get(response_code, "Unknown error")


def is_success(response_code: str, transaction_status: str) -> bool:
    return response_code == "00" and transaction_status == "00"
