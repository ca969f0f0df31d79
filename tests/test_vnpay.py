import re
from datetime import datetime
from urllib.parse import parse_qs, urlparse

import config
from services import vnpay

SECRET = "TESTSECRET"


def test_hash_ignores_empty_values_and_order():
    a = vnpay.create_secure_hash({"vnp_B": "2", "vnp_A": "x y", "vnp_C": ""}, SECRET)
    b = vnpay.create_secure_hash({"vnp_A": "x y", "vnp_B": "2"}, SECRET)
    assert a == b
    assert len(a) == 128


def test_hash_data_is_sorted_and_plus_encoded():
    assert vnpay._hash_data({"vnp_b": "a&b", "vnp_a": "x y"}) == "vnp_a=x+y&vnp_b=a%26b"


def test_verify_accepts_signed_params_and_rejects_tampering():
    params = {"vnp_TxnRef": "TXN1", "vnp_Amount": "9500000", "vnp_ResponseCode": "00"}
    params["vnp_SecureHash"] = vnpay.create_secure_hash(params, SECRET)
    params["vnp_SecureHashType"] = "HmacSHA512"
    assert vnpay.verify_secure_hash(params, SECRET)

    params["vnp_Amount"] = "100"
    assert not vnpay.verify_secure_hash(params, SECRET)


def test_verify_rejects_missing_hash():
    assert not vnpay.verify_secure_hash({"vnp_TxnRef": "TXN1"}, SECRET)


def test_payment_url_is_signed():
    now = datetime(2026, 3, 1, 5, 0, 0)
    url = vnpay.create_payment_url(95000, "Payment for trip", "TXN42", now, ip_addr="10.0.0.1")

    assert url.startswith(config.VNP_URL + "?")
    params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
    assert params["vnp_Amount"] == "9500000"
    assert params["vnp_TxnRef"] == "TXN42"
    assert params["vnp_OrderInfo"] == "Payment for trip"
    assert params["vnp_IpAddr"] == "10.0.0.1"
    assert params["vnp_ReturnUrl"] == config.VNP_RETURN_URL
    # 05:00 UTC is noon in Ho Chi Minh City
    assert params["vnp_CreateDate"] == "20260301120000"
    assert params["vnp_ExpireDate"] == "20260301121500"
    assert vnpay.verify_secure_hash(params, config.VNP_HASH_SECRET)


def test_txn_ref_format():
    ref = vnpay.generate_txn_ref(datetime(2026, 3, 1, 5, 0, 0))
    assert re.fullmatch(r"TXN\d{13}\d{3}", ref)


def test_verify_return_extracts_fields():
    params = {"vnp_TxnRef": "TXN1", "vnp_Amount": "9500000", "vnp_ResponseCode": "24"}
    data = vnpay.verify_return(params)
    assert data["is_valid"] is False
    assert data["amount"] == 95000
    assert data["response_code"] == "24"
    assert vnpay.verify_return({})["amount"] == 0


def test_status_messages():
    assert vnpay.status_message("24") == "Customer cancelled the transaction."
    assert vnpay.status_message("xx") == "Unknown error"
    assert vnpay.is_success("00", "00")
    assert not vnpay.is_success("00", "01")
    assert not vnpay.is_success("24", "00")
