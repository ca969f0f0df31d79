# config.py
from dotenv import load_dotenv
import os

load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "carpool")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOCAL_TIMEZONE = os.getenv("LOCAL_TIMEZONE", "Asia/Ho_Chi_Minh")
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]

# Payment
PAYMENT_TTL_MINUTES = int(os.getenv("PAYMENT_TTL_MINUTES", "15"))
DEFAULT_CURRENCY = "VND"

# VNPay sandbox defaults
VNP_TMN_CODE = os.getenv("VNP_TMN_CODE", "4680X3ZG")
VNP_HASH_SECRET = os.getenv("VNP_HASH_SECRET", "J5RKHN2SW0YUS4L6MYSYQRXIA6W9NZ6I")
VNP_URL = os.getenv("VNP_URL", "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html")
VNP_RETURN_URL = os.getenv("VNP_RETURN_URL", "http://localhost:8000/api/payments/vnpay/return")
VNP_FRONTEND_RETURN_URL = os.getenv("VNP_FRONTEND_RETURN_URL", "http://localhost:3000/vnpay-return")
VNP_VERSION = os.getenv("VNP_VERSION", "2.1.0")
VNP_COMMAND = os.getenv("VNP_COMMAND", "pay")
VNP_CURR_CODE = os.getenv("VNP_CURR_CODE", "VND")
VNP_LOCALE = os.getenv("VNP_LOCALE", "vn")
