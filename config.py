# config.py
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [p.strip() for p in raw.split(",") if p.strip()]


# ------------------------------------------------------------
# MongoDB
# ------------------------------------------------------------

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017").strip()
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "seabite").strip()

# ------------------------------------------------------------
# Sessions / cookies
# ------------------------------------------------------------

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "seabite.sid").strip()
SESSION_TTL_DAYS = _env_int("SESSION_TTL_DAYS", 14)
SESSION_TOUCH_AFTER_HOURS = _env_int("SESSION_TOUCH_AFTER_HOURS", 24)
COOKIE_MAX_AGE_DAYS = _env_int("COOKIE_MAX_AGE_DAYS", 7)
COOKIE_SECURE = _env_bool("COOKIE_SECURE", True)

ALLOWED_ORIGINS = _env_list(
    "ALLOWED_ORIGINS",
    "https://seabite.co.in,https://www.seabite.co.in,http://localhost:5173",
)

# ------------------------------------------------------------
# Razorpay
# ------------------------------------------------------------

RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "").strip()
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "").strip()
RAZORPAY_CURRENCY = os.getenv("RAZORPAY_CURRENCY", "INR").strip()

# ------------------------------------------------------------
# Email (Resend)
# ------------------------------------------------------------

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "").strip()
SENDER_EMAIL = os.getenv("SENDER_EMAIL", "SeaBite Official <orders@seabite.co.in>").strip()
CLIENT_BASE_URL = os.getenv("CLIENT_BASE_URL", "http://localhost:5173").strip().rstrip("/")

# ------------------------------------------------------------
# Cloudinary (product images)
# ------------------------------------------------------------

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "").strip()
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "").strip()
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "").strip()
CLOUDINARY_FOLDER = os.getenv("CLOUDINARY_FOLDER", "seabite/products").strip()
MAX_UPLOAD_BYTES = _env_int("MAX_UPLOAD_BYTES", 5 * 1024 * 1024)

# ------------------------------------------------------------
# Store rules
# ------------------------------------------------------------

ALLOWED_DELIVERY_STATES = _env_list("ALLOWED_DELIVERY_STATES", "Andhra Pradesh,Telangana,AP,TS")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
